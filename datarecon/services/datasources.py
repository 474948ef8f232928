"""
Data Source Registry
Resolves logical datasource names to SQLAlchemy engines
"""

from typing import Dict, Iterable, Mapping, Optional, Any
import structlog
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url

from datarecon.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)


class DataSourceRegistry:
    """
    Named query-execution handles.

    Every source/target binding refers to a datasource by name; the registry
    is injected into the bindings when they are populated.
    """

    def __init__(self, engines: Optional[Mapping[str, Engine]] = None):
        self._engines: Dict[str, Engine] = dict(engines or {})

    def register(self, name: str, engine: Engine) -> None:
        self._engines[name] = engine

    def get(self, name: str) -> Engine:
        try:
            return self._engines[name]
        except KeyError:
            raise ConfigurationError(
                f"Cannot locate datasource named [{name}] in the datasource registry"
            ) from None

    def names(self) -> Iterable[str]:
        return sorted(self._engines)

    def __contains__(self, name: str) -> bool:
        return name in self._engines

    def dispose(self) -> None:
        """Close every pooled connection held by the registered engines."""
        for name, engine in self._engines.items():
            engine.dispose()
            logger.info("datasource_disposed", datasource=name)

    @classmethod
    def from_config(cls, datasources: Mapping[str, Mapping[str, Any]]) -> "DataSourceRegistry":
        """
        Build engines for each configured datasource.

        Args:
            datasources: {name: {"url": ..., "pool_size": ..., "max_overflow": ...}}

        Returns:
            DataSourceRegistry with one engine per datasource
        """
        registry = cls()
        for name, options in datasources.items():
            url = options["url"]
            engine_kwargs: Dict[str, Any] = {"pool_pre_ping": True}

            # SQLite engines use a singleton/static pool without overflow settings
            if make_url(url).get_backend_name() != "sqlite":
                if options.get("pool_size") is not None:
                    engine_kwargs["pool_size"] = options["pool_size"]
                if options.get("max_overflow") is not None:
                    engine_kwargs["max_overflow"] = options["max_overflow"]

            registry.register(name, create_engine(url, **engine_kwargs))
            logger.info("datasource_registered", datasource=name, backend=make_url(url).get_backend_name())
        return registry
