"""
Datasets API Router
Lists the configured datasets
"""

from fastapi import APIRouter, Depends

from datarecon.routers.runs import get_reconciliation_service
from datarecon.services.reconciliation import ReconciliationService

router = APIRouter(prefix="/datasets", tags=["datasets"])


@router.get("")
async def list_datasets(service: ReconciliationService = Depends(get_reconciliation_service)):
    """List datasets with their source/target datasource descriptors"""
    datasets = []
    for dataset_id, dataset in sorted(service.config.datasets.items()):
        datasets.append({
            "id": dataset_id,
            "source": dataset.source.datasource_descriptor,
            "target": dataset.target.datasource_descriptor,
            "keyColumn": dataset.key_column,
            "schedule": dataset.cron_expression,
        })
    return {"datasets": datasets, "triggerOnStart": service.config.trigger_on_start}
