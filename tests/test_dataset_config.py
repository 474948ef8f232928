"""
Tests for source/target query bindings.

Tests cover:
- datasource resolution from the registry
- query vs queryFile precedence and file loading
- streaming rows with connection release on success, failure and early close
- cancelling a stream at the driver
"""

from types import SimpleNamespace
import threading
import time

import pytest
from unittest.mock import Mock
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError

from datarecon.exceptions import ConfigurationError, ExecutionError, RunCancelledError
from datarecon.services.datasources import DataSourceRegistry
from datarecon.services.dataset_config import (
    DataLoadDefinition,
    DataLoadRole,
    DatasetConfiguration,
    ReconciliationConfiguration,
    _declared_type,
)
from tests.conftest import ConnectionCounter, SLOW_QUERY, TEST_QUERY

TEST_SOURCE_NAME = "source1"
TEST_QUERY_STATEMENT = "SELECT * FROM somewhere"
TEST_QUERY_FROM_FILE = "SELECT * FROM elsewhere"


@pytest.fixture
def query_file(tmp_path):
    path = tmp_path / "test-query.sql"
    path.write_text(TEST_QUERY_FROM_FILE + "\n", encoding="utf-8")
    return str(path)


@pytest.fixture
def mock_registry():
    engine = Mock()
    return DataSourceRegistry({TEST_SOURCE_NAME: engine})


def make_definition(query=None, query_file=None, role=DataLoadRole.SOURCE):
    return DataLoadDefinition(TEST_SOURCE_NAME, query, query_file, role=role)


class TestPopulate:
    """Tests for DataLoadDefinition.populate()."""

    def test_binds_engine_from_registry(self, mock_registry):
        definition = make_definition(TEST_QUERY_STATEMENT)

        definition.populate(mock_registry)

        assert definition.engine is mock_registry.get(TEST_SOURCE_NAME)
        assert definition.query_statement == TEST_QUERY_STATEMENT

    def test_unknown_datasource_names_the_source(self):
        definition = make_definition(TEST_QUERY_STATEMENT)

        with pytest.raises(ConfigurationError, match=TEST_SOURCE_NAME):
            definition.populate(DataSourceRegistry())

    def test_loads_query_from_file_trimming_one_newline(self, mock_registry, query_file):
        definition = make_definition("", query_file)

        definition.populate(mock_registry)

        assert definition.query_statement == TEST_QUERY_FROM_FILE

    def test_only_one_trailing_newline_is_trimmed(self, mock_registry, tmp_path):
        path = tmp_path / "two-newlines.sql"
        path.write_text(TEST_QUERY_FROM_FILE + "\n\n", encoding="utf-8")
        definition = make_definition(None, str(path))

        definition.populate(mock_registry)

        assert definition.query_statement == TEST_QUERY_FROM_FILE + "\n"

    def test_unreadable_query_file_fails(self, mock_registry):
        definition = make_definition("", "test-invalid-query.sql")

        with pytest.raises(ConfigurationError, match="Cannot load query statement from queryFile"):
            definition.populate(mock_registry)

    def test_inline_query_wins_over_query_file(self, mock_registry, query_file):
        definition = make_definition(TEST_QUERY_STATEMENT, query_file)

        definition.populate(mock_registry)

        assert definition.query_statement == TEST_QUERY_STATEMENT

    def test_inline_query_wins_over_invalid_query_file(self, mock_registry):
        definition = make_definition(TEST_QUERY_STATEMENT, "test-invalid-query.sql")

        definition.populate(mock_registry)

        assert definition.query_statement == TEST_QUERY_STATEMENT

    def test_blank_inline_query_falls_back_to_query_file(self, mock_registry, query_file):
        definition = make_definition("  \n\t", query_file)

        definition.populate(mock_registry)

        assert definition.query_statement == TEST_QUERY_FROM_FILE

    def test_blank_inline_query_without_file_fails(self, mock_registry):
        definition = make_definition("   ")

        with pytest.raises(ConfigurationError, match="query or queryFile"):
            definition.populate(mock_registry)

    def test_neither_query_nor_query_file_fails(self, mock_registry):
        definition = make_definition("", "")

        with pytest.raises(ConfigurationError, match="query or queryFile"):
            definition.populate(mock_registry)

    def test_empty_query_file_fails(self, mock_registry, tmp_path):
        path = tmp_path / "empty.sql"
        path.write_text("\n", encoding="utf-8")
        definition = make_definition("", str(path))

        with pytest.raises(ConfigurationError, match="query or queryFile"):
            definition.populate(mock_registry)


class TestDescriptor:

    def test_short_descriptor_with_role(self):
        assert make_definition(TEST_QUERY_STATEMENT).datasource_descriptor == "Source(ref=source1)"

    def test_dataset_assigns_roles(self):
        dataset = DatasetConfiguration(
            source=DataLoadDefinition("a", TEST_QUERY_STATEMENT),
            target=DataLoadDefinition("b", TEST_QUERY_STATEMENT),
        )

        assert dataset.source.datasource_descriptor == "Source(ref=a)"
        assert dataset.target.datasource_descriptor == "Target(ref=b)"


class TestReconciliationConfiguration:

    def test_populate_names_datasets(self, mock_registry):
        config = ReconciliationConfiguration(datasets={
            "ds": DatasetConfiguration(
                source=DataLoadDefinition(TEST_SOURCE_NAME, TEST_QUERY_STATEMENT),
                target=DataLoadDefinition(TEST_SOURCE_NAME, TEST_QUERY_STATEMENT),
            )
        })

        config.populate(mock_registry)

        assert config.get("ds").name == "ds"

    def test_populate_rejects_bad_binding(self, mock_registry):
        config = ReconciliationConfiguration(datasets={
            "ds": DatasetConfiguration(
                source=DataLoadDefinition(TEST_SOURCE_NAME, TEST_QUERY_STATEMENT),
                target=DataLoadDefinition("missing", TEST_QUERY_STATEMENT),
            )
        })

        with pytest.raises(ConfigurationError, match="missing"):
            config.populate(mock_registry)

    def test_unknown_dataset(self):
        with pytest.raises(ConfigurationError, match="not found"):
            ReconciliationConfiguration(datasets={}).get("nope")


class TestRunQuery:
    """Tests for DataLoadDefinition.run_query() against SQLite."""

    def test_streams_rows_and_releases_connection(self, source_engine):
        counter = ConnectionCounter(source_engine)
        definition = make_definition(TEST_QUERY)
        definition.populate(DataSourceRegistry({TEST_SOURCE_NAME: source_engine}))

        rows = list(definition.run_query())

        assert [row[0] for row in rows] == ["Test0", "Test1", "Test2"]
        assert counter.checkouts == 1
        assert counter.open == 0

    def test_is_lazy_until_iterated(self, source_engine):
        counter = ConnectionCounter(source_engine)
        definition = make_definition(TEST_QUERY)
        definition.populate(DataSourceRegistry({TEST_SOURCE_NAME: source_engine}))

        stream = definition.run_query()

        assert counter.checkouts == 0
        stream.close()

    def test_releases_connection_after_failed_query(self, source_engine):
        counter = ConnectionCounter(source_engine)
        definition = make_definition("SELECT * FROM missing_table")
        definition.populate(DataSourceRegistry({TEST_SOURCE_NAME: source_engine}))

        with pytest.raises(ExecutionError, match="Source\\(ref=source1\\)") as exc_info:
            list(definition.run_query())

        assert exc_info.value.__cause__ is not None
        assert counter.checkouts == 1
        assert counter.open == 0

    def test_releases_connection_when_closed_early(self, source_engine):
        counter = ConnectionCounter(source_engine)
        definition = make_definition(TEST_QUERY)
        definition.populate(DataSourceRegistry({TEST_SOURCE_NAME: source_engine}))

        stream = definition.run_query()
        first = next(stream)
        assert counter.open == 1

        stream.close()

        assert first[0] == "Test0"
        assert counter.open == 0

    def test_unpopulated_definition_fails(self):
        with pytest.raises(ConfigurationError, match="has not been populated"):
            next(make_definition(TEST_QUERY).run_query())

    def test_unreachable_datasource_fails_as_execution_error(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'missing' / 'dir.db'}")
        definition = make_definition(TEST_QUERY)
        definition.populate(DataSourceRegistry({TEST_SOURCE_NAME: engine}))

        with pytest.raises(ExecutionError, match="Source\\(ref=source1\\)") as exc_info:
            list(definition.run_query())

        assert isinstance(exc_info.value.__cause__, OperationalError)
        assert not isinstance(exc_info.value, RunCancelledError)
        engine.dispose()

    def test_columns_are_known_once_executed(self, source_engine):
        definition = make_definition(TEST_QUERY)
        definition.populate(DataSourceRegistry({TEST_SOURCE_NAME: source_engine}))

        stream = definition.run_query()
        assert stream.columns is None

        next(stream)
        stream.close()

        # SQLite declares no result column types
        assert stream.columns == [("MigrationKey", None), ("value", None), ("amount", None)]


class TestQueryStreamCancel:
    """Tests for QueryStream.cancel()."""

    def test_cancel_before_start_never_executes(self, source_engine):
        counter = ConnectionCounter(source_engine)
        definition = make_definition(TEST_QUERY)
        definition.populate(DataSourceRegistry({TEST_SOURCE_NAME: source_engine}))
        stream = definition.run_query()

        stream.cancel()

        with pytest.raises(RunCancelledError):
            next(stream)
        assert stream.columns is None
        assert counter.open == 0

    def test_cancel_interrupts_running_statement(self, source_engine):
        counter = ConnectionCounter(source_engine)
        definition = make_definition(SLOW_QUERY)
        definition.populate(DataSourceRegistry({TEST_SOURCE_NAME: source_engine}))
        stream = definition.run_query()
        timer = threading.Timer(0.5, stream.cancel)

        started = time.monotonic()
        timer.start()
        with pytest.raises(RunCancelledError):
            next(stream)
        timer.join()

        assert time.monotonic() - started < 5
        assert counter.open == 0

    def test_cancel_after_close_is_harmless(self, source_engine):
        definition = make_definition(TEST_QUERY)
        definition.populate(DataSourceRegistry({TEST_SOURCE_NAME: source_engine}))
        stream = definition.run_query()
        rows = list(stream)

        stream.cancel()

        assert len(rows) == 3
        assert stream.cancelled


class TestDeclaredType:

    def test_untyped_column(self):
        assert _declared_type(None, object()) is None

    def test_type_name_reported_by_driver(self):
        assert _declared_type("VARCHAR", object()) == "VARCHAR"

    def test_type_oid_resolved_through_driver_adapters(self):
        driver = SimpleNamespace(adapters=SimpleNamespace(types={23: SimpleNamespace(name="int4")}))

        assert _declared_type(23, driver) == "int4"

    def test_unknown_type_oid(self):
        driver = SimpleNamespace(adapters=SimpleNamespace(types={}))

        assert _declared_type(99999, driver) == "99999"
