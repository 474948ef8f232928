"""
Database Models
"""

from datarecon.models.reconciliation_run import ReconciliationRun, RunState
from datarecon.models.reconciliation_record import ReconciliationRecord
from datarecon.models.results import ColumnMeta, DatasetMeta, DatasetResults, MatchStatus, RunResults

__all__ = [
    "ReconciliationRun",
    "RunState",
    "ReconciliationRecord",
    "ColumnMeta",
    "DatasetMeta",
    "DatasetResults",
    "MatchStatus",
    "RunResults",
]
