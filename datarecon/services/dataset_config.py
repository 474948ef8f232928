"""
Dataset Definitions
Source/target query bindings and the per-dataset configuration that pairs them
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple
import enum
import threading

import structlog
from sqlalchemy import text
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import SQLAlchemyError

from datarecon.config import settings
from datarecon.exceptions import ConfigurationError, ExecutionError, RunCancelledError
from datarecon.services.datasources import DataSourceRegistry

logger = structlog.get_logger(__name__)


class DataLoadRole(str, enum.Enum):
    SOURCE = "Source"
    TARGET = "Target"


@dataclass
class DataLoadDefinition:
    """
    One side of a dataset: a datasource reference plus the query to run on it.

    The query comes from `query` when it is non-empty, otherwise from the
    contents of `query_file`. Call populate() before run_query().
    """
    datasource_ref: str
    query: Optional[str] = None
    query_file: Optional[str] = None
    role: Optional[DataLoadRole] = None
    fetch_size: int = field(default_factory=lambda: settings.query_fetch_size)

    engine: Optional[Engine] = field(default=None, init=False, repr=False)
    query_statement: Optional[str] = field(default=None, init=False, repr=False)

    @property
    def datasource_descriptor(self) -> str:
        role = self.role.value if self.role else "Unassigned"
        return f"{role}(ref={self.datasource_ref})"

    def populate(self, registry: DataSourceRegistry) -> None:
        """
        Bind the datasource handle and resolve the query statement.

        Raises:
            ConfigurationError: unknown datasource, or no usable query
        """
        try:
            self.engine = registry.get(self.datasource_ref)
        except ConfigurationError as e:
            raise ConfigurationError(f"{self.datasource_descriptor}: {e}") from e
        self.query_statement = self.resolve_statement()

    def resolve_statement(self) -> str:
        if self.query and self.query.strip():
            return self.query

        if self.query_file:
            try:
                content = Path(self.query_file).read_text(encoding="utf-8")
            except OSError as e:
                raise ConfigurationError(
                    f"Cannot load query statement from queryFile [{self.query_file}] "
                    f"for {self.datasource_descriptor}"
                ) from e
            if content.endswith("\n"):
                content = content[:-1]
            if content.strip():
                return content

        raise ConfigurationError(
            f"Either query or queryFile must be provided for {self.datasource_descriptor}!"
        )

    def run_query(self) -> "QueryStream":
        """
        Lazily stream the rows of the resolved statement.

        Raises:
            ConfigurationError: binding was never populated
        """
        if self.engine is None or self.query_statement is None:
            raise ConfigurationError(f"{self.datasource_descriptor} has not been populated")
        return QueryStream(self)


def _declared_type(type_code: Any, driver_connection: Any) -> Optional[str]:
    """Name of a result column's type as reported by the DBAPI driver, if any."""
    if type_code is None:
        return None
    if isinstance(type_code, str):
        return type_code
    # psycopg reports type OIDs; its adapters know their names
    adapters = getattr(driver_connection, "adapters", None)
    if adapters is not None:
        info = adapters.types.get(type_code)
        if info is not None:
            return info.name
    return getattr(type_code, "__name__", str(type_code))


class QueryStream:
    """
    Forward-only iterator over one query's rows.

    A single connection is held while rows are produced and returned to the
    pool on exhaustion, on error and on close(). cancel() may be called from
    another thread to abort a statement that is still executing or fetching.

    Raises (while iterating):
        ExecutionError: connecting or executing failed on the datasource
        RunCancelledError: the stream was cancelled
    """

    def __init__(self, definition: DataLoadDefinition):
        self.definition = definition
        self.columns: Optional[List[Tuple[str, Optional[str]]]] = None
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._driver_connection = None
        self._rows = self._stream()

    def __iter__(self) -> Iterator[Row]:
        return self

    def __next__(self) -> Row:
        return next(self._rows)

    def close(self) -> None:
        self._rows.close()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Interrupt the running statement at the driver, if one is running."""
        self._cancelled.set()
        with self._lock:
            driver_connection = self._driver_connection
            if driver_connection is None:
                return
            try:
                if hasattr(driver_connection, "cancel"):
                    driver_connection.cancel()
                elif hasattr(driver_connection, "interrupt"):
                    driver_connection.interrupt()
            except Exception as e:
                logger.warning(
                    "query_cancel_failed",
                    datasource=self.definition.datasource_descriptor,
                    error=str(e),
                )

    def _cancelled_error(self) -> RunCancelledError:
        return RunCancelledError(f"{self.definition.datasource_descriptor} query cancelled")

    def _stream(self) -> Iterator[Row]:
        definition = self.definition
        try:
            with definition.engine.connect() as connection:
                with self._lock:
                    self._driver_connection = connection.connection.driver_connection
                try:
                    if self.cancelled:
                        raise self._cancelled_error()
                    result = connection.execution_options(
                        stream_results=True, yield_per=definition.fetch_size
                    ).execute(text(definition.query_statement))
                    self.columns = [
                        (column[0], _declared_type(column[1], self._driver_connection))
                        for column in result.cursor.description
                    ]
                    for row in result:
                        yield row
                finally:
                    with self._lock:
                        self._driver_connection = None
        except SQLAlchemyError as e:
            if self.cancelled:
                raise self._cancelled_error() from e
            logger.error("query_failed", datasource=definition.datasource_descriptor, error=str(e))
            raise ExecutionError(f"Query failed on {definition.datasource_descriptor}: {e}") from e


@dataclass
class DatasetConfiguration:
    source: DataLoadDefinition
    target: DataLoadDefinition
    key_column: Optional[str] = None
    cron_expression: Optional[str] = None
    name: Optional[str] = None

    def __post_init__(self):
        self.source.role = DataLoadRole.SOURCE
        self.target.role = DataLoadRole.TARGET

    def populate(self, registry: DataSourceRegistry) -> None:
        self.source.populate(registry)
        self.target.populate(registry)


@dataclass
class ReconciliationConfiguration:
    datasets: Dict[str, DatasetConfiguration]
    trigger_on_start: List[str] = field(default_factory=list)

    def populate(self, registry: DataSourceRegistry) -> None:
        """Validate and bind every dataset before any run can start."""
        for name, dataset in self.datasets.items():
            dataset.name = name
            dataset.populate(registry)
            logger.info(
                "dataset_populated",
                dataset_id=name,
                source=dataset.source.datasource_descriptor,
                target=dataset.target.datasource_descriptor,
            )

    def get(self, dataset_id: str) -> DatasetConfiguration:
        try:
            return self.datasets[dataset_id]
        except KeyError:
            raise ConfigurationError(f"Dataset [{dataset_id}] not found!") from None
