from __future__ import annotations

import logging
from functools import lru_cache
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional

from .schemas import QueryConfig, TableQueryResult
from .validators import sanitize_query_params
from .versioning import VersionLike, get_sql

logger = logging.getLogger(__name__)


class QueryCatalog:
    """
    Read-only lookup of QueryConfig by name.

    Built once from a static list; duplicate names are rejected at construction.
    """

    def __init__(self, configs: Iterable[QueryConfig]):
        by_name: dict[str, QueryConfig] = {}
        for config in configs:
            if config.name in by_name:
                raise ValueError(f"Duplicate query config name: {config.name}")
            by_name[config.name] = config
        self._configs = MappingProxyType(by_name)

    def get_query_config_by_name(self, name: str) -> Optional[QueryConfig]:
        return self._configs.get(name)

    def has_table(self, name: str) -> bool:
        return name in self._configs

    def names(self) -> List[str]:
        return sorted(self._configs)

    def build_table_query(
        self,
        name: str,
        search_params: Optional[Mapping[str, object]] = None,
        version: Optional[VersionLike] = None,
    ) -> Optional[TableQueryResult]:
        """Merge the config's default params with caller params (caller wins).

        ``query`` is the SQL variant for ``version``; an unknown version gets
        the earliest variant.
        """
        config = self._configs.get(name)
        if config is None:
            return None
        merged: dict[str, object] = dict(config.default_params)
        merged.update(search_params or {})
        params = sanitize_query_params(merged)
        return TableQueryResult(
            query=get_sql(config, version),
            query_params=params or None,
            config=config,
        )

    def __len__(self) -> int:
        return len(self._configs)


@lru_cache(maxsize=1)
def default_catalog() -> QueryCatalog:
    from .query_configs import QUERY_CONFIGS

    catalog = QueryCatalog(QUERY_CONFIGS)
    logger.info(f"[catalog] {len(catalog)} query configs loaded")
    return catalog


def get_query_config_by_name(name: str) -> Optional[QueryConfig]:
    return default_catalog().get_query_config_by_name(name)
