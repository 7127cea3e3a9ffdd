"""
Table references in SQL text.

Used to decide which system tables a query depends on when a config does not
name them through ``table_check``.
"""
from __future__ import annotations

import logging
import re
from typing import List

import sqlglot
from sqlglot import exp

logger = logging.getLogger(__name__)

# System tables that only exist with specific server configuration
OPTIONAL_TABLES: frozenset[str] = frozenset({
    "system.metric_log",
    "system.asynchronous_metric_log",
    "system.backup_log",
    "system.error_log",
    "system.zookeeper",
    "system.crash_log",
    "system.text_log",
    "system.trace_log",
    "system.session_log",
    "system.opentelemetry_span_log",
    "system.query_views_log",
    "system.processors_profile_log",
})

_REGEX_PATTERNS = (
    re.compile(r"(?:FROM|JOIN)\s+(\w+\.\w+)", re.IGNORECASE),
    re.compile(r"EXISTS\s*\(\s*SELECT\s+[^)]*FROM\s+(\w+\.\w+)", re.IGNORECASE),
    re.compile(r"IN\s*\(\s*SELECT\s+[^)]*FROM\s+(\w+\.\w+)", re.IGNORECASE),
)

# merge('system', '^query_log') reads every table matching the regex
_MERGE_FN = re.compile(r"merge\s*\(\s*'(\w+)'\s*,\s*'\^?(\w+)'\s*\)", re.IGNORECASE)


def _regex_tables(sql: str) -> List[str]:
    found: List[str] = []
    for pattern in _REGEX_PATTERNS:
        for name in pattern.findall(sql):
            if name not in found:
                found.append(name)
    return found


def _merge_tables(sql: str) -> List[str]:
    return [f"{db}.{table}" for db, table in _MERGE_FN.findall(sql)]


def extract_tables(sql: str) -> List[str]:
    """Return the distinct ``database.table`` names referenced by ``sql``.

    Parses with the ClickHouse dialect; CTE names and unqualified tables are
    skipped. Falls back to regex scanning when the text does not parse, and
    always includes tables read through ``merge('db', '^table')``.

    Example:
        >>> extract_tables("SELECT * FROM system.backup_log b JOIN system.disks d ON 1")
        ['system.backup_log', 'system.disks']
    """
    if not sql or not sql.strip():
        return []
    found: List[str] = []
    try:
        tree = sqlglot.parse_one(sql, dialect="clickhouse")
        ctes = {cte.alias_or_name for cte in tree.find_all(exp.CTE)}
        for table in tree.find_all(exp.Table):
            db = table.db
            name = table.name
            if not db or not name or name in ctes:
                continue
            full = f"{db}.{name}"
            if full not in found:
                found.append(full)
    except sqlglot.errors.SqlglotError as e:
        logger.debug(f"[tables] sqlglot could not parse query, using regex scan: {e}")
        found = _regex_tables(sql)
    for full in _merge_tables(sql):
        if full not in found:
            found.append(full)
    return found


def references_optional_table(sql: str) -> bool:
    return any(t in OPTIONAL_TABLES for t in extract_tables(sql))


def split_table_name(full_name: str) -> tuple[str, str]:
    """``"system.metric_log"`` -> ``("system", "metric_log")``; raises ValueError if unqualified."""
    db, sep, table = (full_name or "").partition(".")
    if not sep or not db or not table:
        raise ValueError(f"Expected database.table, got {full_name!r}")
    return db, table
