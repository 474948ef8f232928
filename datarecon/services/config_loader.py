"""
Reconciliation Config Loader
Reads datasources and dataset definitions from YAML and validates them with pydantic
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError

from datarecon.exceptions import ConfigurationError
from datarecon.services.datasources import DataSourceRegistry
from datarecon.services.dataset_config import (
    DataLoadDefinition,
    DatasetConfiguration,
    ReconciliationConfiguration,
)

logger = structlog.get_logger(__name__)


class DataSourceSchema(BaseModel):
    url: str
    pool_size: Optional[int] = Field(None, alias="poolSize", ge=1)
    max_overflow: Optional[int] = Field(None, alias="maxOverflow", ge=0)

    class Config:
        populate_by_name = True


class DataLoadSchema(BaseModel):
    datasource_ref: str = Field(..., alias="datasourceRef")
    query: Optional[str] = None
    query_file: Optional[str] = Field(None, alias="queryFile")

    class Config:
        populate_by_name = True


class ScheduleSchema(BaseModel):
    cron_expression: str = Field(..., alias="cronExpression")

    class Config:
        populate_by_name = True


class DatasetSchema(BaseModel):
    source: DataLoadSchema
    target: DataLoadSchema
    key_column: Optional[str] = Field(None, alias="keyColumn")
    schedule: Optional[ScheduleSchema] = None

    class Config:
        populate_by_name = True


class ReconciliationSchema(BaseModel):
    trigger_on_start: List[str] = Field(default_factory=list, alias="triggerOnStart")
    datasets: Dict[str, DatasetSchema] = Field(default_factory=dict)

    class Config:
        populate_by_name = True


class ConfigFileSchema(BaseModel):
    datasources: Dict[str, DataSourceSchema] = Field(default_factory=dict)
    reconciliation: ReconciliationSchema = Field(default_factory=ReconciliationSchema)


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"Reconciliation config file not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Top-level YAML must be a mapping: {path}")
    return data


def _resolve_query_file(query_file: Optional[str], base_dir: Path) -> Optional[str]:
    if not query_file:
        return query_file
    candidate = Path(query_file)
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return str(candidate)


def _to_definition(schema: DataLoadSchema, base_dir: Path) -> DataLoadDefinition:
    return DataLoadDefinition(
        datasource_ref=schema.datasource_ref,
        query=schema.query,
        query_file=_resolve_query_file(schema.query_file, base_dir),
    )


def parse_config(data: Dict[str, Any], base_dir: Path) -> Tuple[Dict[str, Dict[str, Any]], ReconciliationConfiguration]:
    """
    Validate a raw config mapping.

    Returns:
        (datasource options by name, unpopulated ReconciliationConfiguration)
    """
    try:
        parsed = ConfigFileSchema.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid reconciliation config: {e}") from e

    datasets = {}
    for dataset_id, dataset in parsed.reconciliation.datasets.items():
        datasets[dataset_id] = DatasetConfiguration(
            source=_to_definition(dataset.source, base_dir),
            target=_to_definition(dataset.target, base_dir),
            key_column=dataset.key_column,
            cron_expression=dataset.schedule.cron_expression if dataset.schedule else None,
        )

    datasources = {name: ds.model_dump() for name, ds in parsed.datasources.items()}
    config = ReconciliationConfiguration(
        datasets=datasets,
        trigger_on_start=list(parsed.reconciliation.trigger_on_start),
    )
    return datasources, config


def load_reconciliation_config(
    path: Union[str, Path],
    registry: Optional[DataSourceRegistry] = None,
) -> Tuple[DataSourceRegistry, ReconciliationConfiguration]:
    """
    Load, validate and populate the reconciliation config.

    Args:
        path: YAML file with `datasources` and `reconciliation` sections
        registry: Pre-built registry; when omitted, engines are created
            from the `datasources` section

    Returns:
        (registry, populated configuration)

    Raises:
        ConfigurationError: unreadable/invalid file or invalid dataset binding
    """
    path = Path(path)
    datasources, config = parse_config(_read_yaml(path), base_dir=path.parent)

    if registry is None:
        registry = DataSourceRegistry.from_config(datasources)

    config.populate(registry)
    logger.info(
        "reconciliation_config_loaded",
        path=str(path),
        datasets=sorted(config.datasets),
        trigger_on_start=config.trigger_on_start,
    )
    return registry, config
