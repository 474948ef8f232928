"""
ReconciliationService
Streams a dataset's source and target queries, digests each row, merges the
digests by migration key in the record store and summarises the outcome
"""

from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, as_completed, wait
from typing import Callable, Dict, Iterable, Iterator, Optional, Tuple
import threading

import structlog
from sqlalchemy.orm import sessionmaker

from datarecon.config import settings
from datarecon.exceptions import RunCancelledError
from datarecon.models.reconciliation_run import ReconciliationRun, RunState
from datarecon.models.results import DatasetMeta, DatasetResults, RunResults
from datarecon.services.dataset_config import (
    DataLoadRole,
    DatasetConfiguration,
    QueryStream,
    ReconciliationConfiguration,
)
from datarecon.services.record_store import RecordStore, RunStore
from datarecon.services.row_digest import ColumnMetaCollector, hash_row

logger = structlog.get_logger(__name__)

# How often a running stream pair checks the caller's cancel event
_CANCEL_POLL_SECONDS = 0.1


class ReconciliationService:
    """
    Runs dataset reconciliations.

    Per run:
    1. Persist a new run (so failed runs stay auditable)
    2. Stream source and target concurrently, one worker thread each,
       upserting digests into the record store
    3. Aggregate match status with a single grouped query
    4. Stamp the run completed and return it with transient results

    A failure on either side cancels the other side and fails the run.
    Records written before the failure are kept.
    """

    def __init__(
        self,
        config: ReconciliationConfiguration,
        run_store: RunStore,
        record_store: RecordStore,
        batch_size: Optional[int] = None,
        max_concurrent_runs: Optional[int] = None,
    ):
        """
        Initialize ReconciliationService.

        Args:
            config: Populated dataset configuration
            run_store: Store for run lifecycle rows
            record_store: Store for per-key digest records
            batch_size: Record upserts per transaction (default from settings)
            max_concurrent_runs: Parallel datasets in run_ignore_failure (default from settings)
        """
        self.config = config
        self.run_store = run_store
        self.record_store = record_store
        self.batch_size = batch_size or settings.record_batch_size
        self.max_concurrent_runs = max_concurrent_runs or settings.max_concurrent_runs

    @classmethod
    def from_session_factory(cls, config: ReconciliationConfiguration, session_factory: sessionmaker, **kwargs):
        return cls(config, RunStore(session_factory), RecordStore(session_factory), **kwargs)

    def run_for(self, dataset_id: str, cancel: Optional[threading.Event] = None) -> ReconciliationRun:
        """
        Reconcile one dataset end-to-end.

        Args:
            dataset_id: Configured dataset identifier
            cancel: Optional event; setting it unwinds both streams

        Returns:
            The completed run with `results` attached

        Raises:
            ConfigurationError: unknown dataset
            ExecutionError: a query or row digest failed (RunCancelledError if cancelled)
            StoreError: the record store failed
        """
        dataset = self.config.get(dataset_id)

        run = self.run_store.create_run(dataset_id)
        run.state = RunState.CREATED
        log = logger.bind(run_id=run.id, dataset_id=dataset_id)
        log.info("reconciliation_started")

        try:
            self._transition(run, RunState.STREAMING, log)
            source_results, target_results = self._stream_both(run, dataset, cancel)

            self._transition(run, RunState.AGGREGATING, log)
            summary = self.record_store.match_status_for(run.id)
            run.results = RunResults(source=source_results, target=target_results, summary=summary)

            completed = self.run_store.complete_run(run)
            self._transition(completed, RunState.COMPLETED, log)
        except Exception as e:
            run.state = RunState.ERRORED
            log.error("reconciliation_failed", error=str(e), error_type=type(e).__name__)
            raise

        log.info(
            "reconciliation_completed",
            source_rows=source_results.rows,
            target_rows=target_results.rows,
            source_only=summary.source_only,
            target_only=summary.target_only,
            matched=summary.matched,
            mismatched=summary.mismatched,
        )
        return completed

    def run_ignore_failure(self, dataset_ids: Iterable[str]) -> Iterator[ReconciliationRun]:
        """
        Reconcile several datasets concurrently, skipping the ones that fail.

        Yields completed runs in completion order. A failing dataset is logged
        and left out; it never stops the others.
        """
        dataset_ids = list(dataset_ids)
        if not dataset_ids:
            return

        workers = min(self.max_concurrent_runs, len(dataset_ids))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="recon-trigger") as pool:
            futures = {pool.submit(self.run_for, dataset_id): dataset_id for dataset_id in dataset_ids}
            for future in as_completed(futures):
                dataset_id = futures[future]
                try:
                    run = future.result()
                except Exception as e:
                    logger.error(
                        "reconciliation_skipped",
                        dataset_id=dataset_id,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                    continue
                yield run

    def _transition(self, run: ReconciliationRun, state: RunState, log) -> None:
        previous = run.state
        run.state = state
        log.info("run_state_changed", from_state=previous.value if previous else None, to_state=state.value)

    def _stream_both(
        self,
        run: ReconciliationRun,
        dataset: DatasetConfiguration,
        cancel: Optional[threading.Event],
    ) -> Tuple[DatasetResults, DatasetResults]:
        stop = threading.Event()

        def should_stop() -> bool:
            return stop.is_set() or (cancel is not None and cancel.is_set())

        streams = [definition.run_query() for definition in (dataset.source, dataset.target)]
        results: Dict[DataLoadRole, DatasetResults] = {}
        # Leaving the with-block joins both workers, so neither stream's
        # connection outlives this call.
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix=f"recon-run-{run.id}") as pool:
            futures = {
                pool.submit(self._stream_side, run.id, stream, dataset.key_column, should_stop):
                    stream.definition.role
                for stream in streams
            }
            pending = set(futures)
            try:
                while pending:
                    done, pending = wait(pending, timeout=_CANCEL_POLL_SECONDS, return_when=FIRST_COMPLETED)
                    for future in done:
                        results[futures[future]] = future.result()
                    if pending and cancel is not None and cancel.is_set():
                        raise RunCancelledError(f"Run [{run.id}] cancelled")
            except BaseException:
                stop.set()
                # Streams blocked in execute or fetch never see `stop`
                for stream in streams:
                    stream.cancel()
                raise

        return results[DataLoadRole.SOURCE], results[DataLoadRole.TARGET]

    def _stream_side(
        self,
        run_id: int,
        stream: QueryStream,
        key_column: Optional[str],
        should_stop: Callable[[], bool],
    ) -> DatasetResults:
        definition = stream.definition
        role = definition.role
        rows = 0
        collector: Optional[ColumnMetaCollector] = None
        batch: Dict[str, str] = {}

        try:
            for row in stream:
                if should_stop():
                    raise RunCancelledError(
                        f"{definition.datasource_descriptor} stream cancelled for run [{run_id}]"
                    )
                if collector is None:
                    collector = ColumnMetaCollector(stream.columns)
                collector.observe(row)

                hashed = hash_row(row, key_column)
                batch[hashed.migration_key] = hashed.hashed_value
                rows += 1

                if len(batch) >= self.batch_size:
                    self.record_store.upsert_records(run_id, role, batch)
                    batch = {}

            self.record_store.upsert_records(run_id, role, batch)
        except Exception as e:
            logger.warning(
                "stream_failed",
                run_id=run_id,
                datasource=definition.datasource_descriptor,
                rows=rows,
                error=str(e),
            )
            raise
        finally:
            stream.close()

        logger.info("stream_completed", run_id=run_id, datasource=definition.datasource_descriptor, rows=rows)
        meta = collector.meta() if collector is not None else DatasetMeta()
        return DatasetResults(rows=rows, meta=meta)


# Module-level instance, set at application startup
reconciliation_service: Optional[ReconciliationService] = None


def init_reconciliation_service(
    config: ReconciliationConfiguration,
    session_factory: sessionmaker,
) -> ReconciliationService:
    global reconciliation_service
    reconciliation_service = ReconciliationService.from_session_factory(config, session_factory)
    return reconciliation_service
