"""
Static table query definitions served through /api/tables.

``column_formats`` values are display hints passed through to the frontend
untouched.
"""
from __future__ import annotations

from .schemas import QueryConfig, SqlVariant

_PART_INFO_BASE = """
    WITH parts_data AS (
      SELECT *,
             round(data_uncompressed_bytes / nullIf(data_compressed_bytes, 0), 2) AS compression_ratio
      FROM system.parts
      WHERE database = {{database: String}}
        AND table = {{table: String}}
        AND active = 1
    )
    SELECT name,
           partition,
           level,
           round(level * 100.0 / nullIf(max(level) OVER (), 0), 2) AS pct_level,
           rows,
           formatReadableQuantity(rows) AS readable_rows,
           round(rows * 100.0 / nullIf(max(rows) OVER (), 0), 2) AS pct_rows,
           data_compressed_bytes,
           formatReadableSize(data_compressed_bytes) AS readable_compressed,
           data_uncompressed_bytes,
           formatReadableSize(data_uncompressed_bytes) AS readable_uncompressed,
           compression_ratio,
           marks,
           {primary_key_columns},
           modification_time,
           min_date,
           max_date,
           disk_name,
           path
    FROM parts_data
    ORDER BY name ASC
"""

PART_INFO = QueryConfig(
    name="part-info",
    description="Information about currently active parts and levels for a table",
    sql=(
        SqlVariant(
            since="19.1",
            description="Base query - primary_key_bytes_in_memory not available",
            sql=_PART_INFO_BASE.format(primary_key_columns=(
                "0 AS primary_key_bytes_in_memory,\n"
                "           '-' AS readable_primary_key_size"
            )),
        ),
        SqlVariant(
            since="21.8",
            description="Includes primary_key_bytes_in_memory columns",
            sql=_PART_INFO_BASE.format(primary_key_columns=(
                "primary_key_bytes_in_memory,\n"
                "           formatReadableSize(primary_key_bytes_in_memory) AS readable_primary_key_size"
            )),
        ),
    ),
    columns=(
        "name", "partition", "level", "readable_rows", "readable_compressed",
        "readable_uncompressed", "compression_ratio", "marks",
        "readable_primary_key_size", "modification_time", "min_date", "max_date", "disk_name",
    ),
    column_formats={
        "name": "code",
        "partition": "code",
        "level": "background-bar",
        "readable_rows": "background-bar",
        "modification_time": "related-time",
        "disk_name": "colored-badge",
    },
    default_params={"database": "default", "table": ""},
)

RUNNING_QUERIES = QueryConfig(
    name="running-queries",
    description="Queries currently executing on the server",
    sql="""
    SELECT *,
           query_id AS query_detail,
           multiIf(elapsed < 30, format('{} seconds', round(elapsed, 1)),
                   elapsed < 90, 'a minute',
                   formatReadableTimeDelta(elapsed, 'days', 'minutes')) AS readable_elapsed,
           round(100 * elapsed / max(elapsed) OVER ()) AS pct_elapsed,
           formatReadableQuantity(read_rows) AS readable_read_rows,
           formatReadableQuantity(written_rows) AS readable_written_rows,
           formatReadableSize(peak_memory_usage) AS readable_peak_memory_usage,
           formatReadableSize(memory_usage) AS readable_memory_usage,
           round(100 * memory_usage / max(memory_usage) OVER ()) AS pct_memory_usage,
           if(total_rows_approx > 0 AND query_kind = 'Select',
              toString(round((100 * read_rows) / total_rows_approx, 2)) || '%', '') AS progress
    FROM system.processes
    WHERE is_cancelled = 0
    ORDER BY elapsed
    """,
    columns=(
        "query", "query_detail", "user", "readable_memory_usage", "readable_elapsed",
        "progress", "readable_read_rows", "readable_written_rows",
    ),
    column_formats={
        "query": "code-dialog",
        "query_detail": "link",
        "user": "colored-badge",
        "readable_elapsed": "background-bar",
        "readable_memory_usage": "background-bar",
        "progress": "background-bar",
    },
)

DISKS = QueryConfig(
    name="disks",
    description="Disk space per configured disk",
    sql="""
    SELECT name,
           path,
           (total_space - unreserved_space) AS used_space,
           formatReadableSize(used_space) AS readable_used_space,
           unreserved_space,
           formatReadableSize(unreserved_space) AS readable_unreserved_space,
           free_space,
           formatReadableSize(free_space) AS readable_free_space,
           total_space,
           formatReadableSize(total_space) AS readable_total_space,
           toString(round(100.0 * free_space / total_space, 2)) || '%' AS percent_free,
           keep_free_space
    FROM system.disks
    ORDER BY name
    """,
    columns=(
        "name", "path", "readable_used_space", "readable_total_space",
        "readable_unreserved_space", "readable_free_space", "percent_free", "keep_free_space",
    ),
    column_formats={"name": "colored-badge"},
)

DATABASE_DISK_USAGE = QueryConfig(
    name="database-disk-usage",
    sql="""
    SELECT database,
           SUM(bytes_on_disk) AS used_space,
           ROUND(100.0 * used_space / SUM(used_space) OVER (), 2) AS pct_used_space,
           formatReadableSize(used_space) AS readable_used_space,
           SUM(data_compressed_bytes) AS data_compressed,
           formatReadableSize(data_compressed) AS readable_data_compressed
    FROM system.parts
    WHERE active
    GROUP BY 1
    ORDER BY 2 DESC
    """,
    columns=("database", "readable_used_space", "readable_data_compressed"),
    column_formats={"readable_used_space": "background-bar"},
)

DATABASE_DISK_USAGE_BY_DATABASE = QueryConfig(
    name="database-disk-usage-by-database",
    sql="""
    SELECT table,
           SUM(bytes_on_disk) AS used_space,
           ROUND(100.0 * used_space / SUM(used_space) OVER (), 2) AS pct_used_space,
           formatReadableSize(used_space) AS readable_used_space,
           SUM(data_compressed_bytes) AS data_compressed,
           formatReadableSize(data_compressed) AS readable_data_compressed
    FROM system.parts
    WHERE active AND database = {database: String}
    GROUP BY 1
    ORDER BY 2 DESC
    """,
    columns=("table", "readable_used_space", "readable_data_compressed"),
    column_formats={"readable_used_space": "background-bar"},
    default_params={"database": "default"},
)

TABLES_LIST = QueryConfig(
    name="tables-list",
    description="List of tables in a database",
    sql="""
    SELECT database,
           table,
           engine,
           sum(bytes_on_disk) AS compressed,
           formatReadableSize(compressed) AS readable_compressed,
           sum(data_uncompressed_bytes) AS uncompressed,
           formatReadableSize(uncompressed) AS readable_uncompressed,
           round(compressed / uncompressed, 2) AS compr_rate,
           sum(rows) AS total_rows,
           formatReadableQuantity(total_rows) AS readable_total_rows,
           count() AS parts_count
    FROM system.parts
    WHERE active
      AND database = {database: String}
    GROUP BY database, table, engine
    ORDER BY compressed DESC
    """,
    columns=(
        "table", "engine", "readable_compressed", "readable_uncompressed",
        "compr_rate", "readable_total_rows", "parts_count",
    ),
    column_formats={"table": "link", "engine": "colored-badge"},
    default_params={"database": ""},
)

BACKUPS = QueryConfig(
    name="backups",
    description="Backup and restore operations",
    sql="""
    SELECT id,
           name,
           status,
           error,
           start_time,
           end_time,
           formatReadableTimeDelta(end_time - start_time) AS duration,
           num_files,
           formatReadableSize(total_size) AS readable_total_size,
           formatReadableSize(compressed_size) AS readable_compressed_size
    FROM system.backup_log
    ORDER BY start_time DESC
    """,
    columns=(
        "name", "status", "error", "start_time", "duration",
        "num_files", "readable_total_size", "readable_compressed_size",
    ),
    column_formats={"status": "colored-badge"},
    optional=True,
    table_check="system.backup_log",
    docs="https://clickhouse.com/docs/operations/backup",
)

QUERY_CONFIGS: tuple[QueryConfig, ...] = (
    RUNNING_QUERIES,
    PART_INFO,
    DISKS,
    DATABASE_DISK_USAGE,
    DATABASE_DISK_USAGE_BY_DATABASE,
    TABLES_LIST,
    BACKUPS,
)
