"""
Query monitoring charts: counts, durations, memory and cache usage from query_log.
"""
from __future__ import annotations

from ..intervals import ClickHouseInterval, apply_interval, build_time_filter, fill_step, now_or_today
from ..schemas import ChartQueryParams, ChartQueryResult, SqlVariant
from .registry import and_clause, hours_or, interval_or

_FAILED_TYPES = "['ExceptionBeforeStart', 'ExceptionWhileProcessing']"


def query_count_today(params: ChartQueryParams) -> ChartQueryResult:
    return ChartQueryResult(query="""
    SELECT COUNT() AS count
    FROM merge('system', '^query_log')
    WHERE type = 'QueryFinish'
      AND toDate(event_time) = today()
    """)


def query_count(params: ChartQueryParams) -> ChartQueryResult:
    interval = interval_or(params, ClickHouseInterval.DAY)
    time_filter = and_clause(build_time_filter(hours_or(params, 24 * 14)))
    return ChartQueryResult(query=f"""
    WITH event_count AS (
      SELECT {apply_interval(interval, 'event_time')},
             COUNT() AS query_count
      FROM merge('system', '^query_log')
      WHERE type = 'QueryFinish'
            {time_filter}
      GROUP BY event_time
      ORDER BY event_time WITH FILL TO {now_or_today(interval)} STEP {fill_step(interval)}
    ),
    query_kind AS (
      SELECT {apply_interval(interval, 'event_time')},
             query_kind,
             COUNT() AS count
      FROM merge('system', '^query_log')
      WHERE type = 'QueryFinish'
            {time_filter}
      GROUP BY 1, 2
      ORDER BY 3 DESC
    ),
    breakdown AS (
      SELECT event_time,
             groupArray((query_kind, count)) AS breakdown
      FROM query_kind
      GROUP BY 1
    )
    SELECT event_time,
           query_count,
           breakdown.breakdown AS breakdown
    FROM event_count
    LEFT JOIN breakdown USING event_time
    ORDER BY 1
    """)


def query_count_by_user(params: ChartQueryParams) -> ChartQueryResult:
    interval = interval_or(params, ClickHouseInterval.DAY)
    time_filter = and_clause(build_time_filter(hours_or(params, 24 * 14)))
    return ChartQueryResult(query=f"""
    SELECT {apply_interval(interval, 'event_time')},
           user,
           COUNT(*) AS count
    FROM merge('system', '^query_log')
    WHERE type = 'QueryFinish'
          {time_filter}
          AND user != ''
    GROUP BY 1, 2
    ORDER BY 1 ASC, 3 DESC
    """)


def query_duration(params: ChartQueryParams) -> ChartQueryResult:
    interval = interval_or(params, ClickHouseInterval.DAY)
    time_filter = and_clause(build_time_filter(hours_or(params, 24 * 14)))
    return ChartQueryResult(query=f"""
    SELECT {apply_interval(interval, 'event_time')},
           AVG(query_duration_ms) AS query_duration_ms,
           ROUND(query_duration_ms / 1000, 2) AS query_duration_s
    FROM merge('system', '^query_log')
    WHERE type = 'QueryFinish'
          {time_filter}
    GROUP BY event_time
    ORDER BY event_time ASC
    WITH FILL TO {now_or_today(interval)} STEP {fill_step(interval)}
    """)


def query_memory(params: ChartQueryParams) -> ChartQueryResult:
    interval = interval_or(params, ClickHouseInterval.DAY)
    time_filter = and_clause(build_time_filter(hours_or(params, 24 * 14)))
    return ChartQueryResult(query=f"""
    SELECT {apply_interval(interval, 'event_time')},
           AVG(memory_usage) AS memory_usage,
           formatReadableSize(memory_usage) AS readable_memory_usage
    FROM merge('system', '^query_log')
    WHERE type = 'QueryFinish'
          {time_filter}
    GROUP BY event_time
    ORDER BY event_time ASC
    """)


def query_type(params: ChartQueryParams) -> ChartQueryResult:
    time_filter = and_clause(build_time_filter(hours_or(params, 24)))
    return ChartQueryResult(query=f"""
    SELECT type,
           COUNT() AS query_count
    FROM merge('system', '^query_log')
    WHERE type = 'QueryFinish'
          {time_filter}
    GROUP BY 1
    ORDER BY 1
    """)


def query_cache(params: ChartQueryParams) -> ChartQueryResult:
    return ChartQueryResult(query="""
    SELECT
      sumIf(result_size, stale = 0) AS total_result_size,
      sumIf(result_size, stale = 1) AS total_staled_result_size,
      formatReadableSize(total_result_size) AS readable_total_result_size,
      formatReadableSize(total_staled_result_size) AS readable_total_staled_result_size
    FROM system.query_cache
    """)


def query_cache_usage(params: ChartQueryParams) -> ChartQueryResult:
    time_filter = and_clause(build_time_filter(hours_or(params, 24 * 7)))
    current = f"""
    SELECT
      query_cache_usage,
      COUNT() AS query_count,
      round(100 * query_count / sum(query_count) OVER (), 2) AS percentage
    FROM merge('system', '^query_log')
    WHERE type = 'QueryFinish'
          {time_filter}
    GROUP BY query_cache_usage
    ORDER BY query_count DESC
    """
    # query_log.query_cache_usage appeared in 24.1
    placeholder = "SELECT 'Not available' AS query_cache_usage, 0 AS query_count, 0 AS percentage"
    return ChartQueryResult(
        query=current,
        sql=(
            SqlVariant(since="1.0", sql=placeholder, description="query_cache_usage column not available before v24.1"),
            SqlVariant(since="24.1", sql=current),
        ),
    )


def failed_query_count(params: ChartQueryParams) -> ChartQueryResult:
    interval = interval_or(params, ClickHouseInterval.MINUTE)
    time_filter = and_clause(build_time_filter(hours_or(params, 24 * 7)))
    return ChartQueryResult(query=f"""
    WITH event_count AS (
      SELECT {apply_interval(interval, 'event_time')},
             COUNT() AS query_count
      FROM merge('system', '^query_log')
      WHERE type IN {_FAILED_TYPES}
            {time_filter}
      GROUP BY 1
      ORDER BY 1
    ),
    query_type AS (
      SELECT {apply_interval(interval, 'event_time')},
             type AS query_type,
             COUNT() AS count
      FROM merge('system', '^query_log')
      WHERE type IN {_FAILED_TYPES}
            {time_filter}
      GROUP BY 1, 2
      ORDER BY 3 DESC
    ),
    breakdown AS (
      SELECT event_time,
             groupArray((query_type, count)) AS breakdown
      FROM query_type
      GROUP BY 1
    )
    SELECT event_time,
           query_count,
           breakdown.breakdown AS breakdown
    FROM event_count
    LEFT JOIN breakdown USING event_time
    ORDER BY 1
    """)


def failed_query_count_by_user(params: ChartQueryParams) -> ChartQueryResult:
    interval = interval_or(params, ClickHouseInterval.DAY)
    time_filter = and_clause(build_time_filter(hours_or(params, 24 * 14)))
    return ChartQueryResult(query=f"""
    SELECT {apply_interval(interval, 'event_time')},
           user,
           countDistinct(query_id) AS count
    FROM merge('system', '^query_log')
    WHERE type IN {_FAILED_TYPES}
          {time_filter}
    GROUP BY 1, 2
    ORDER BY 1 ASC, 3 DESC
    """)


QUERY_CHARTS = {
    "query-count-today": query_count_today,
    "query-count": query_count,
    "query-count-by-user": query_count_by_user,
    "query-duration": query_duration,
    "query-memory": query_memory,
    "query-type": query_type,
    "query-cache": query_cache,
    "query-cache-usage": query_cache_usage,
    "failed-query-count": failed_query_count,
    "failed-query-count-by-user": failed_query_count_by_user,
}
