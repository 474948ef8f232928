"""
datarecon - row-level reconciliation of migrated datasets
"""

__version__ = "0.1.0"
