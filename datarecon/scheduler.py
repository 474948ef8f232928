"""
APScheduler Background Jobs

Startup trigger for the configured `triggerOnStart` datasets plus one cron job
per dataset that declares a schedule.
"""

from typing import List, Optional

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from datarecon.services.reconciliation import ReconciliationService

logger = structlog.get_logger(__name__)


def run_scheduled_reconciliations(service: ReconciliationService, dataset_ids: List[str]) -> List[int]:
    """
    Run datasets through the failure-isolating trigger.

    Returns:
        Ids of the runs that completed
    """
    try:
        completed = [run.id for run in service.run_ignore_failure(dataset_ids)]
        logger.info(
            "scheduled_reconciliation_finished",
            requested=dataset_ids,
            completed_runs=completed,
        )
        return completed
    except Exception as e:
        logger.error("scheduled_reconciliation_crashed", requested=dataset_ids, error=str(e), exc_info=True)
        return []


def build_scheduler(service: ReconciliationService, timezone: str = "UTC") -> BackgroundScheduler:
    """
    Create a scheduler with all reconciliation jobs registered, not yet started.

    Args:
        service: ReconciliationService holding the dataset configuration
        timezone: Timezone for cron expressions

    Returns:
        BackgroundScheduler instance
    """
    scheduler = BackgroundScheduler(timezone=timezone)
    config = service.config

    if config.trigger_on_start:
        # No trigger: runs once as soon as the scheduler starts
        scheduler.add_job(
            run_scheduled_reconciliations,
            args=[service, list(config.trigger_on_start)],
            id="trigger_on_start",
            name="Startup reconciliation trigger",
            replace_existing=True,
        )
        logger.info("job_registered", job="trigger_on_start", datasets=config.trigger_on_start)

    for dataset_id, dataset in sorted(config.datasets.items()):
        if not dataset.cron_expression:
            continue
        scheduler.add_job(
            run_scheduled_reconciliations,
            trigger=CronTrigger.from_crontab(dataset.cron_expression, timezone=timezone),
            args=[service, [dataset_id]],
            id=f"reconciliation_{dataset_id}",
            name=f"Scheduled reconciliation for {dataset_id}",
            replace_existing=True,
        )
        logger.info("job_registered", job=f"reconciliation_{dataset_id}", schedule=dataset.cron_expression)

    return scheduler


def start_scheduler(
    service: ReconciliationService,
    environment: str = "production",
    timezone: str = "UTC",
) -> Optional[BackgroundScheduler]:
    """
    Start background scheduler with all jobs.

    Args:
        service: ReconciliationService to run jobs against
        environment: Current environment (skip scheduler in testing)
        timezone: Timezone for cron expressions

    Returns:
        The running BackgroundScheduler, or None in testing
    """
    if environment == "testing":
        logger.info("scheduler_skipped", reason="testing_environment")
        return None

    scheduler = build_scheduler(service, timezone=timezone)
    scheduler.start()
    logger.info("scheduler_started", jobs=[job.id for job in scheduler.get_jobs()])
    return scheduler


def stop_scheduler(scheduler: Optional[BackgroundScheduler]):
    """
    Stop background scheduler gracefully.

    Args:
        scheduler: BackgroundScheduler instance to stop
    """
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")


__all__ = [
    "build_scheduler",
    "start_scheduler",
    "stop_scheduler",
    "run_scheduled_reconciliations",
]
