"""
Reconciliation Errors

ConfigurationError - bad datasource reference, query definition or config file
ExecutionError     - a source/target query or row digest failed during a run
StoreError         - the record store could not create/update runs or records
"""


class ReconciliationError(Exception):
    """Base class for all errors raised by the reconciliation core."""


class ConfigurationError(ReconciliationError):
    pass


class ExecutionError(ReconciliationError):
    pass


class RunCancelledError(ExecutionError):
    """Raised when a run is unwound by a cancellation signal."""


class StoreError(ReconciliationError):
    pass
