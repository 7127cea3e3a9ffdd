"""
Merge activity charts from metric_log, part_log and system.merges.
"""
from __future__ import annotations

from ..intervals import ClickHouseInterval, apply_interval, fill_step, now_or_today
from ..schemas import ChartQueryParams, ChartQueryResult, ChartSubQuery, MultiChartQueryResult
from .registry import hours_or, interval_or

TOTAL_MEMORY_QUERY = """
    SELECT metric, value AS total, formatReadableSize(total) AS readable_total
    FROM system.asynchronous_metrics
    WHERE metric = 'CGroupMemoryUsed'
       OR metric = 'OSMemoryTotal'
    ORDER BY metric ASC
    LIMIT 1
"""


def merge_count(params: ChartQueryParams) -> ChartQueryResult:
    interval = interval_or(params, ClickHouseInterval.FIVE_MINUTES)
    hours = int(hours_or(params, 12) or 0)
    return ChartQueryResult(
        query=f"""
    SELECT {apply_interval(interval, 'event_time')},
           avg(CurrentMetric_Merge) AS avg_CurrentMetric_Merge,
           avg(CurrentMetric_PartMutation) AS avg_CurrentMetric_PartMutation
    FROM merge('system', '^metric_log')
    WHERE event_time >= (now() - INTERVAL {hours} HOUR)
    GROUP BY 1
    ORDER BY 1
    WITH FILL TO {now_or_today(interval)} STEP {fill_step(interval)}
    """,
        optional=True,
        table_check="system.metric_log",
    )


def merge_avg_duration(params: ChartQueryParams) -> ChartQueryResult:
    interval = interval_or(params, ClickHouseInterval.DAY)
    hours = int(hours_or(params, 24 * 14) or 0)
    return ChartQueryResult(query=f"""
    SELECT {apply_interval(interval, 'event_time')},
           AVG(duration_ms) AS avg_duration_ms,
           formatReadableTimeDelta(avg_duration_ms / 1000, 'seconds', 'milliseconds') AS readable_avg_duration_ms,
           bar(avg_duration_ms, 0, MAX(avg_duration_ms) OVER ()) AS bar
    FROM merge('system', '^part_log')
    WHERE event_time >= (now() - INTERVAL {hours} HOUR)
      AND event_type = 'MergeParts'
      AND merge_reason = 'RegularMerge'
    GROUP BY 1
    ORDER BY 1 ASC
    WITH FILL TO {now_or_today(interval)} STEP {fill_step(interval)}
    """)


def merge_sum_read_rows(params: ChartQueryParams) -> ChartQueryResult:
    interval = interval_or(params, ClickHouseInterval.DAY)
    hours = int(hours_or(params, 24 * 14) or 0)
    return ChartQueryResult(query=f"""
    SELECT {apply_interval(interval, 'event_time')},
           SUM(read_rows) AS sum_read_rows,
           log10(sum_read_rows) * 100 AS sum_read_rows_scale,
           formatReadableQuantity(sum_read_rows) AS readable_sum_read_rows
    FROM merge('system', '^part_log')
    WHERE event_time >= (now() - INTERVAL {hours} HOUR)
      AND event_type = 'MergeParts'
      AND merge_reason = 'RegularMerge'
    GROUP BY 1
    ORDER BY 1 ASC
    WITH FILL TO {now_or_today(interval)} STEP {fill_step(interval)}
    """)


def summary_used_by_merges(params: ChartQueryParams) -> MultiChartQueryResult:
    return MultiChartQueryResult(queries=(
        ChartSubQuery(key="used", query="""
    SELECT SUM(memory_usage) AS memory_usage,
           formatReadableSize(memory_usage) AS readable_memory_usage
    FROM system.merges
    """),
        ChartSubQuery(key="totalMem", query=TOTAL_MEMORY_QUERY),
        ChartSubQuery(key="rowsReadWritten", query="""
    SELECT SUM(rows_read) AS rows_read,
           SUM(rows_written) AS rows_written,
           formatReadableQuantity(rows_read) AS readable_rows_read,
           formatReadableQuantity(rows_written) AS readable_rows_written
    FROM system.merges
    """),
        ChartSubQuery(key="bytesReadWritten", query="""
    SELECT SUM(bytes_read_uncompressed) AS bytes_read,
           SUM(bytes_written_uncompressed) AS bytes_written,
           formatReadableSize(bytes_read) AS readable_bytes_read,
           formatReadableSize(bytes_written) AS readable_bytes_written
    FROM system.merges
    """),
    ))


MERGE_CHARTS = {
    "merge-count": merge_count,
    "merge-avg-duration": merge_avg_duration,
    "merge-sum-read-rows": merge_sum_read_rows,
    "summary-used-by-merges": summary_used_by_merges,
}
