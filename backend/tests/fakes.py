"""
Scripted in-memory executor standing in for ClickHouse.
"""
from __future__ import annotations

from typing import Any, List, Optional, Tuple

from querygate.executor import ExecutionError, ExecutionResult


class FakeExecutor:
    """Answers SQL by substring rules; the first matching rule wins.

    Version probes, system.tables lookups and has_data checks get sensible
    defaults unless a rule overrides them.
    """

    def __init__(self, host: str = "ch-1", version: Optional[str] = "24.3.1.1", rows: Any = None):
        self.host = host
        self.version = version
        self.rows = [{"value": 1}] if rows is None else rows
        self.rules: List[Tuple[str, Any]] = []
        self.calls: List[Tuple[str, Any, str]] = []

    def on(self, needle: str, outcome: Any) -> "FakeExecutor":
        self.rules.append((needle, outcome))
        return self

    def queries(self) -> List[str]:
        return [sql for sql, _, _ in self.calls]

    def execute(self, sql, params=None, fmt="JSONEachRow"):
        self.calls.append((sql, params, fmt))
        if "SELECT version()" in sql:
            if self.version is None:
                raise ExecutionError("Connection refused")
            return ExecutionResult([{"version": self.version}])
        for needle, outcome in self.rules:
            if needle in sql:
                if isinstance(outcome, Exception):
                    raise outcome
                return ExecutionResult(outcome, query_id="q-1", duration=0.01)
        if "FROM system.tables" in sql:
            return ExecutionResult([{"exists": 1}])
        if "AS has_data" in sql:
            return ExecutionResult([{"has_data": 1}])
        return ExecutionResult(self.rows, query_id="q-1", duration=0.01)

