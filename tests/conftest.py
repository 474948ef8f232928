"""
Shared fixtures: file-backed SQLite databases for the record store and for
source/target datasources.
"""

from typing import Dict, Iterable, Tuple

import pytest
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker

from datarecon.database import Base
from datarecon.services.datasources import DataSourceRegistry
from datarecon.services.dataset_config import (
    DataLoadDefinition,
    DatasetConfiguration,
    ReconciliationConfiguration,
)
from datarecon.services.record_store import RecordStore, RunStore
from datarecon.services.reconciliation import ReconciliationService

# Source {Test0, Test1, Test2} / target {Test0, Test1', Test3}
SOURCE_ROWS = [("Test0", "User0", 10), ("Test1", "User1", 20), ("Test2", "User2", 30)]
TARGET_ROWS = [("Test0", "User0", 10), ("Test1", "User1", 21), ("Test3", "User3", 40)]

TEST_QUERY = "SELECT name AS MigrationKey, value, amount FROM test_data ORDER BY name"

# Aggregates for tens of seconds on SQLite before producing its single row
SLOW_QUERY = (
    "WITH RECURSIVE cnt(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM cnt WHERE x < 200000000) "
    "SELECT 'K0' AS MigrationKey, sum(x) AS total FROM cnt"
)


class ConnectionCounter:
    """Counts pool checkouts/checkins on an engine."""

    def __init__(self, engine):
        self.checkouts = 0
        self.checkins = 0
        event.listen(engine, "checkout", self._on_checkout)
        event.listen(engine, "checkin", self._on_checkin)

    def _on_checkout(self, dbapi_connection, connection_record, connection_proxy):
        self.checkouts += 1

    def _on_checkin(self, dbapi_connection, connection_record):
        self.checkins += 1

    @property
    def open(self) -> int:
        return self.checkouts - self.checkins


def make_datasource(path, rows: Iterable[Tuple[str, str, int]]):
    engine = create_engine(f"sqlite:///{path}", connect_args={"timeout": 30})
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE test_data (name TEXT PRIMARY KEY, value TEXT, amount INTEGER)"))
        for name, value, amount in rows:
            conn.execute(
                text("INSERT INTO test_data (name, value, amount) VALUES (:name, :value, :amount)"),
                {"name": name, "value": value, "amount": amount},
            )
    return engine


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'store.db'}", connect_args={"timeout": 30})
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def run_store(session_factory):
    return RunStore(session_factory)


@pytest.fixture
def record_store(session_factory):
    return RecordStore(session_factory)


@pytest.fixture
def source_engine(tmp_path):
    engine = make_datasource(tmp_path / "source.db", SOURCE_ROWS)
    yield engine
    engine.dispose()


@pytest.fixture
def target_engine(tmp_path):
    engine = make_datasource(tmp_path / "target.db", TARGET_ROWS)
    yield engine
    engine.dispose()


@pytest.fixture
def registry(source_engine, target_engine):
    return DataSourceRegistry({"source1": source_engine, "target1": target_engine})


def make_dataset(source_query: str = TEST_QUERY, target_query: str = TEST_QUERY, **kwargs) -> DatasetConfiguration:
    return DatasetConfiguration(
        source=DataLoadDefinition("source1", source_query),
        target=DataLoadDefinition("target1", target_query),
        **kwargs,
    )


@pytest.fixture
def reconciliation_config(registry) -> ReconciliationConfiguration:
    datasets: Dict[str, DatasetConfiguration] = {
        "test-dataset": make_dataset(),
        "bad-query-dataset": make_dataset(target_query="SELECT name, value FROM missing_table"),
    }
    config = ReconciliationConfiguration(datasets=datasets, trigger_on_start=["test-dataset"])
    config.populate(registry)
    return config


@pytest.fixture
def service(reconciliation_config, run_store, record_store):
    return ReconciliationService(reconciliation_config, run_store, record_store, batch_size=2)
