"""
Record Store
Persistence for reconciliation runs and their per-key records
"""

from typing import Iterator, List, Mapping, Optional

import structlog
from sqlalchemy import case, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from datarecon.exceptions import StoreError
from datarecon.models.reconciliation_record import ReconciliationRecord
from datarecon.models.reconciliation_run import ReconciliationRun, utcnow
from datarecon.models.results import MatchStatus
from datarecon.services.dataset_config import DataLoadRole

logger = structlog.get_logger(__name__)

SOURCE_ONLY = "sourceOnly"
TARGET_ONLY = "targetOnly"
MATCHED = "matched"
MISMATCHED = "mismatched"

_DIGEST_COLUMNS = {
    DataLoadRole.SOURCE: "source_data",
    DataLoadRole.TARGET: "target_data",
}

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class RunStore:
    """Create, complete and look up reconciliation runs."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self.logger = logger.bind(store="run")

    def create_run(self, dataset_id: str) -> ReconciliationRun:
        """
        Insert a run and return it detached, with its assigned id.

        The row is committed immediately so a run that later fails is still
        visible with completed_time NULL.
        """
        session: Session = self.session_factory()
        try:
            run = ReconciliationRun(dataset_id=dataset_id)
            session.add(run)
            session.commit()
            session.refresh(run)
            session.expunge(run)
            self.logger.info("run_created", run_id=run.id, dataset_id=dataset_id)
            return run
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(f"Failed to create run for dataset [{dataset_id}]: {e}") from e
        finally:
            session.close()

    def complete_run(self, run: ReconciliationRun) -> ReconciliationRun:
        """
        Stamp completed_time and persist it.

        Transient attributes (results, state) are carried over to the returned run.

        Raises:
            StoreError: the run no longer exists or the update failed
        """
        session: Session = self.session_factory()
        try:
            stored = session.get(ReconciliationRun, run.id)
            if stored is None:
                raise StoreError(f"Run [{run.id}] no longer exists")

            stored.completed_time = utcnow()
            session.commit()
            session.refresh(stored)
            session.expunge(stored)

            stored.results = run.results
            stored.state = run.state
            self.logger.info("run_completed", run_id=stored.id, dataset_id=stored.dataset_id)
            return stored
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(f"Failed to complete run [{run.id}]: {e}") from e
        finally:
            session.close()

    def get_run(self, run_id: int) -> Optional[ReconciliationRun]:
        session: Session = self.session_factory()
        try:
            run = session.get(ReconciliationRun, run_id)
            if run is not None:
                session.expunge(run)
            return run
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load run [{run_id}]: {e}") from e
        finally:
            session.close()

    def list_runs(self, dataset_id: Optional[str] = None, limit: int = 50) -> List[ReconciliationRun]:
        """Most recent runs first, optionally for a single dataset."""
        session: Session = self.session_factory()
        try:
            query = select(ReconciliationRun)
            if dataset_id:
                query = query.where(ReconciliationRun.dataset_id == dataset_id)
            query = query.order_by(ReconciliationRun.id.desc()).limit(limit)

            runs = list(session.scalars(query))
            for run in runs:
                session.expunge(run)
            return runs
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list runs: {e}") from e
        finally:
            session.close()


class RecordStore:
    """
    Per-key digest records.

    All writes go through INSERT ... ON CONFLICT DO UPDATE keyed by
    (reconciliation_run_id, migration_key), so source and target writers can
    report the same key concurrently and in any order.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self.logger = logger.bind(store="record")

    def _insert_for(self, session: Session):
        dialect = session.get_bind().dialect.name
        try:
            return _INSERT_BY_DIALECT[dialect]
        except KeyError:
            raise StoreError(f"Record upserts are not supported on dialect [{dialect}]") from None

    def upsert_record(self, run_id: int, migration_key: str, role: DataLoadRole, digest: str) -> None:
        self.upsert_records(run_id, role, {migration_key: digest})

    def upsert_records(self, run_id: int, role: DataLoadRole, digests: Mapping[str, str]) -> int:
        """
        Set the `role` digest for each key in one transaction.

        Keys not yet recorded are inserted with the other side left NULL;
        existing records have only the reporting side overwritten. Rows are
        written in key order so concurrent source and target batches lock
        shared keys in the same order.

        Returns:
            Number of keys written
        """
        if not digests:
            return 0

        column = _DIGEST_COLUMNS[role]
        session: Session = self.session_factory()
        try:
            insert = self._insert_for(session)
            stmt = insert(ReconciliationRecord.__table__)
            stmt = stmt.on_conflict_do_update(
                index_elements=["reconciliation_run_id", "migration_key"],
                set_={column: stmt.excluded[column]},
            )
            session.execute(
                stmt,
                [
                    {"reconciliation_run_id": run_id, "migration_key": key, column: digest}
                    for key, digest in sorted(digests.items())
                ],
            )
            session.commit()
            return len(digests)
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(f"Failed to upsert {role.value} records for run [{run_id}]: {e}") from e
        finally:
            session.close()

    def match_status_for(self, run_id: int) -> MatchStatus:
        """
        Count the run's records by match status in a single grouped query.

        Returns all-zero counts for a run without records.
        """
        status = case(
            (ReconciliationRecord.target_data.is_(None), SOURCE_ONLY),
            (ReconciliationRecord.source_data.is_(None), TARGET_ONLY),
            (ReconciliationRecord.source_data == ReconciliationRecord.target_data, MATCHED),
            else_=MISMATCHED,
        ).label("match_status")

        matching_data = (
            select(status)
            .where(ReconciliationRecord.reconciliation_run_id == run_id)
            .subquery("matching_data")
        )
        query = select(matching_data.c.match_status, func.count().label("count")).group_by(
            matching_data.c.match_status
        )

        session: Session = self.session_factory()
        try:
            summary = MatchStatus()
            for match_status, count in session.execute(query):
                summary = summary + _to_match_status(match_status, count)
            return summary
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to count records for run [{run_id}]: {e}") from e
        finally:
            session.close()

    def records_for(self, run_id: int) -> Iterator[ReconciliationRecord]:
        """Stream a run's records ordered by migration key."""
        session: Session = self.session_factory()
        try:
            query = (
                select(ReconciliationRecord)
                .where(ReconciliationRecord.reconciliation_run_id == run_id)
                .order_by(ReconciliationRecord.migration_key)
                .execution_options(yield_per=500)
            )
            for record in session.scalars(query):
                session.expunge(record)
                yield record
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to load records for run [{run_id}]: {e}") from e
        finally:
            session.close()


def _to_match_status(match_status: str, count: int) -> MatchStatus:
    if match_status == SOURCE_ONLY:
        return MatchStatus(source_only=count)
    if match_status == TARGET_ONLY:
        return MatchStatus(target_only=count)
    if match_status == MATCHED:
        return MatchStatus(matched=count)
    if match_status == MISMATCHED:
        return MatchStatus(mismatched=count)
    raise StoreError(f"Invalid match_status [{match_status}]")
