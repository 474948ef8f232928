"""
Reconciliation Runs API Router
Triggers dataset reconciliations and exposes stored runs
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
import structlog

from datarecon.exceptions import ConfigurationError, ReconciliationError
from datarecon.middleware import get_correlation_id
from datarecon.models.reconciliation_run import ReconciliationRun
from datarecon.services import reconciliation
from datarecon.services.reconciliation import ReconciliationService

logger = structlog.get_logger()

router = APIRouter(prefix="/runs", tags=["runs"])


class RunCreationParams(BaseModel):
    """Request body for a single dataset run"""
    dataset_id: str = Field(..., alias="datasetId", min_length=1)

    class Config:
        populate_by_name = True


class BatchRunParams(BaseModel):
    """Request body for a multi-dataset run"""
    dataset_ids: List[str] = Field(..., alias="datasetIds", min_length=1)

    class Config:
        populate_by_name = True


def get_reconciliation_service() -> ReconciliationService:
    if reconciliation.reconciliation_service is None:
        raise HTTPException(status_code=503, detail="Reconciliation service not configured")
    return reconciliation.reconciliation_service


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_run(run: ReconciliationRun) -> Dict[str, Any]:
    return {
        "id": run.id,
        "datasetId": run.dataset_id,
        "createdTime": _iso(run.created_time),
        "updatedTime": _iso(run.updated_time),
        "completedTime": _iso(run.completed_time),
        "results": run.results.to_dict() if run.results else None,
    }


@router.post("")
def create_run(
    params: RunCreationParams,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Run a reconciliation for one dataset and return the completed run

    Raises:
        400: Unknown dataset or invalid dataset configuration
        500: Query or record store failure
    """
    logger.info("run_requested", dataset_id=params.dataset_id, correlation_id=get_correlation_id())
    try:
        run = service.run_for(params.dataset_id)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ReconciliationError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return serialize_run(run)


@router.post("/batch")
def create_runs(
    params: BatchRunParams,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Run several datasets; datasets that fail are left out of the response
    """
    logger.info("batch_run_requested", dataset_ids=params.dataset_ids, correlation_id=get_correlation_id())
    runs = [serialize_run(run) for run in service.run_ignore_failure(params.dataset_ids)]
    return {"requested": len(params.dataset_ids), "completed": len(runs), "runs": runs}


@router.get("")
def list_runs(
    dataset_id: Optional[str] = Query(None, alias="datasetId", description="Filter by dataset"),
    limit: int = Query(50, ge=1, le=200, description="Maximum number of runs to return"),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    List recent runs (newest first)
    """
    try:
        runs = service.run_store.list_runs(dataset_id=dataset_id, limit=limit)
    except ReconciliationError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"runs": [serialize_run(run) for run in runs]}


@router.get("/{run_id}")
def get_run(
    run_id: int,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Get a stored run. Results are only returned by the call that ran it.

    Raises:
        404: Run not found
    """
    try:
        run = service.run_store.get_run(run_id)
    except ReconciliationError as e:
        raise HTTPException(status_code=500, detail=str(e))

    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return serialize_run(run)
