"""
Server resource charts: memory, CPU, disks, backups, parts and running work.
"""
from __future__ import annotations

import math

from ..intervals import ClickHouseInterval, apply_interval
from ..schemas import ChartQueryParams, ChartQueryResult, ChartSubQuery, MultiChartQueryResult
from ..validators import is_valid_number
from .merge_charts import TOTAL_MEMORY_QUERY
from .registry import hours_or, interval_or

DEFAULT_TOP_TABLES = 7


def memory_usage(params: ChartQueryParams) -> ChartQueryResult:
    interval = interval_or(params, ClickHouseInterval.TEN_MINUTES)
    hours = int(hours_or(params, 24) or 0)
    return ChartQueryResult(
        query=f"""
    SELECT {apply_interval(interval, 'event_time')},
           avg(CurrentMetric_MemoryTracking) AS avg_memory,
           formatReadableSize(avg_memory) AS readable_avg_memory
    FROM merge('system', '^metric_log')
    WHERE event_time >= (now() - INTERVAL {hours} HOUR)
    GROUP BY 1
    ORDER BY 1 ASC
    """,
        optional=True,
        table_check="system.metric_log",
    )


def cpu_usage(params: ChartQueryParams) -> ChartQueryResult:
    interval = interval_or(params, ClickHouseInterval.TEN_MINUTES)
    hours = int(hours_or(params, 24) or 0)
    return ChartQueryResult(
        query=f"""
    SELECT {apply_interval(interval, 'event_time')},
           avg(ProfileEvent_OSCPUVirtualTimeMicroseconds) / 1000000 AS avg_cpu
    FROM merge('system', '^metric_log')
    WHERE event_time >= (now() - INTERVAL {hours} HOUR)
    GROUP BY 1
    ORDER BY 1
    """,
        optional=True,
        table_check="system.metric_log",
    )


def disk_size(params: ChartQueryParams) -> ChartQueryResult:
    name = (params.params or {}).get("name")
    condition = "WHERE name = {name: String}" if name else ""
    return ChartQueryResult(
        query=f"""
    SELECT name,
           (total_space - unreserved_space) AS used_space,
           formatReadableSize(used_space) AS readable_used_space,
           total_space,
           formatReadableSize(total_space) AS readable_total_space
    FROM system.disks
    {condition}
    ORDER BY name
    """,
        query_params={"name": str(name)} if name else None,
    )


def disks_usage(params: ChartQueryParams) -> ChartQueryResult:
    interval = interval_or(params, ClickHouseInterval.DAY)
    hours = int(hours_or(params, 24 * 30) or 0)
    return ChartQueryResult(
        query=f"""
    WITH CAST(sumMap(map(metric, value)), 'Map(LowCardinality(String), UInt32)') AS map
    SELECT {apply_interval(interval, 'event_time')},
           map['DiskAvailable_default'] AS DiskAvailable_default,
           map['DiskUsed_default'] AS DiskUsed_default,
           formatReadableSize(DiskAvailable_default) AS readable_DiskAvailable_default,
           formatReadableSize(DiskUsed_default) AS readable_DiskUsed_default
    FROM merge('system', '^asynchronous_metric_log')
    WHERE event_time >= (now() - toIntervalHour({hours}))
    GROUP BY 1
    ORDER BY 1 ASC
    """,
        optional=True,
        table_check="system.asynchronous_metric_log",
    )


def backup_size(params: ChartQueryParams) -> ChartQueryResult:
    # No default window: without lastHours every backup is summed
    hours = params.last_hours
    start_condition = f"AND start_time > (now() - INTERVAL {int(hours)} HOUR)" if hours else ""
    return ChartQueryResult(
        query=f"""
    SELECT SUM(total_size) AS total_size,
           SUM(uncompressed_size) AS uncompressed_size,
           SUM(compressed_size) AS compressed_size,
           formatReadableSize(total_size) AS readable_total_size,
           formatReadableSize(uncompressed_size) AS readable_uncompressed_size,
           formatReadableSize(compressed_size) AS readable_compressed_size
    FROM system.backup_log
    WHERE status = 'BACKUP_CREATED'
          {start_condition}
    """,
        optional=True,
        table_check="system.backup_log",
    )


def new_parts_created(params: ChartQueryParams) -> ChartQueryResult:
    interval = interval_or(params, ClickHouseInterval.FIFTEEN_MINUTES)
    hours = int(hours_or(params, 24) or 0)
    return ChartQueryResult(query=f"""
    SELECT {apply_interval(interval, 'event_time')},
           count() AS new_parts,
           table,
           sum(rows) AS total_rows,
           formatReadableQuantity(total_rows) AS readable_total_rows,
           sum(size_in_bytes) AS total_bytes_on_disk,
           formatReadableSize(total_bytes_on_disk) AS readable_total_bytes_on_disk
    FROM system.part_log
    WHERE (event_type = 'NewPart')
      AND (event_time > (now() - toIntervalHour({hours})))
    GROUP BY event_time, table
    ORDER BY event_time ASC, table DESC
    """)


def summary_used_by_running_queries(params: ChartQueryParams) -> MultiChartQueryResult:
    return MultiChartQueryResult(queries=(
        ChartSubQuery(key="main", query="""
    SELECT COUNT() AS query_count,
           SUM(memory_usage) AS memory_usage,
           formatReadableSize(memory_usage) AS readable_memory_usage
    FROM system.processes
    """),
        ChartSubQuery(key="totalMem", query=TOTAL_MEMORY_QUERY),
        ChartSubQuery(key="todayQueryCount", query="""
    SELECT COUNT() AS query_count
    FROM system.query_log
    WHERE type = 'QueryStart'
      AND query_start_time >= today()
    """),
        ChartSubQuery(key="rowsReadWritten", query="""
    SELECT SUM(read_rows) AS rows_read,
           SUM(written_rows) AS rows_written,
           formatReadableQuantity(rows_read) AS readable_rows_read,
           formatReadableQuantity(rows_written) AS readable_rows_written
    FROM system.processes
    """),
    ))


def summary_used_by_mutations(params: ChartQueryParams) -> ChartQueryResult:
    return ChartQueryResult(query="""
    SELECT COUNT() AS running_count
    FROM system.mutations
    WHERE is_done = 0
    """)


def _top_limit(raw) -> int:
    if isinstance(raw, str) and raw.strip().isdigit():
        raw = int(raw.strip())
    if is_valid_number(raw) and math.isfinite(raw) and raw >= 1:
        return int(raw)
    return DEFAULT_TOP_TABLES


def top_table_size(params: ChartQueryParams) -> ChartQueryResult:
    limit = _top_limit((params.params or {}).get("limit"))
    return ChartQueryResult(query=f"""
    SELECT (database || '.' || table) AS table,
           sum(data_compressed_bytes) AS compressed_bytes,
           sum(data_uncompressed_bytes) AS uncompressed_bytes,
           formatReadableSize(compressed_bytes) AS compressed,
           formatReadableSize(uncompressed_bytes) AS uncompressed,
           round(uncompressed_bytes / compressed_bytes, 2) AS compr_rate,
           sum(rows) AS total_rows,
           formatReadableQuantity(sum(rows)) AS readable_total_rows,
           count() AS part_count
    FROM system.parts
    WHERE (active = 1) AND (database != 'system') AND (table LIKE '%')
    GROUP BY 1
    ORDER BY compressed_bytes DESC
    LIMIT {limit}
    """)


SYSTEM_CHARTS = {
    "memory-usage": memory_usage,
    "cpu-usage": cpu_usage,
    "disk-size": disk_size,
    "disks-usage": disks_usage,
    "backup-size": backup_size,
    "new-parts-created": new_parts_created,
    "summary-used-by-running-queries": summary_used_by_running_queries,
    "summary-used-by-mutations": summary_used_by_mutations,
    "top-table-size": top_table_size,
}
