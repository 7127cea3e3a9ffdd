from __future__ import annotations

import logging
from functools import lru_cache
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Optional, Union

from ..intervals import ClickHouseInterval
from ..schemas import ChartQueryParams, ChartQueryResult, MultiChartQueryResult

logger = logging.getLogger(__name__)

ChartResult = Union[ChartQueryResult, MultiChartQueryResult]
ChartBuilder = Callable[[ChartQueryParams], ChartResult]


class ChartRegistry:
    """
    Read-only mapping from chart key to its query builder.

    Builders are pure: they fill in their own defaults, never touch the server
    and may be called from any number of requests at once.

    Example:
        >>> registry = ChartRegistry({"one": lambda p: ChartQueryResult(query="SELECT 1")})
        >>> registry.build_chart_query("one").query
        'SELECT 1'
    """

    def __init__(self, builders: Mapping[str, ChartBuilder]):
        self._builders = MappingProxyType(dict(builders))

    def build_chart_query(self, key: str, params: Optional[ChartQueryParams] = None) -> ChartResult:
        """Run the builder for ``key``.

        Raises:
            KeyError: ``key`` is not registered; callers check has_chart first
        """
        builder = self._builders.get(key)
        if builder is None:
            raise KeyError(f"Chart not found: {key}")
        return builder(params or ChartQueryParams())

    def has_chart(self, key: str) -> bool:
        return key in self._builders

    def available_charts(self) -> List[str]:
        return list(self._builders)

    def __contains__(self, key: object) -> bool:
        return key in self._builders

    def __len__(self) -> int:
        return len(self._builders)


def merge_builders(*groups: Mapping[str, ChartBuilder]) -> Dict[str, ChartBuilder]:
    merged: Dict[str, ChartBuilder] = {}
    for group in groups:
        for key, builder in group.items():
            if key in merged:
                raise ValueError(f"Duplicate chart key: {key}")
            merged[key] = builder
    return merged


@lru_cache(maxsize=1)
def default_chart_registry() -> ChartRegistry:
    from .merge_charts import MERGE_CHARTS
    from .query_charts import QUERY_CHARTS
    from .security_charts import SECURITY_CHARTS
    from .system_charts import SYSTEM_CHARTS

    registry = ChartRegistry(merge_builders(QUERY_CHARTS, MERGE_CHARTS, SYSTEM_CHARTS, SECURITY_CHARTS))
    logger.info(f"[charts] registry ready with {len(registry)} charts")
    return registry


# --- helpers shared by the chart modules ---

def interval_or(params: ChartQueryParams, default: ClickHouseInterval) -> ClickHouseInterval:
    return params.interval or default


def hours_or(params: ChartQueryParams, default: Optional[int]) -> Optional[int]:
    # An explicit 0 is kept: it means "no time window"
    return params.last_hours if params.last_hours is not None else default


def and_clause(condition: str) -> str:
    return f"AND {condition}" if condition else ""
