"""
Monitoring Module
"""

from datarecon.services.monitoring.logging import setup_logging, CorrelationJsonFormatter

__all__ = [
    "setup_logging",
    "CorrelationJsonFormatter",
]
