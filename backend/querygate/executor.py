"""
Execution collaborator: runs resolved SQL against ClickHouse over HTTP.

The gateway only needs ``execute(sql, params) -> rows`` raising
``ExecutionError`` with the server's message. Per-host caches for the detected
server version and table existence live here as well.
"""
from __future__ import annotations

import json
import logging
import re
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

import httpx

from .config import Settings
from .validators import RequestValidationError, truncate_string
from .versioning import ServerVersion, parse_version

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ExecutionError(Exception):
    """Raised by executors; ``str(e)`` is the raw server or transport message."""


@dataclass
class ExecutionResult:
    data: Any
    query_id: str = ""
    duration: float = 0.0

    @property
    def rows(self) -> int:
        if self.data is None:
            return -1
        if isinstance(self.data, list):
            return len(self.data)
        if isinstance(self.data, dict) and "rows" in self.data:
            return int(self.data.get("rows") or 0)
        return 0


class Executor(Protocol):
    host: str

    def execute(
        self,
        sql: str,
        params: Optional[Mapping[str, str]] = None,
        fmt: str = "JSONEachRow",
    ) -> ExecutionResult:
        ...


def _decode(text: str, fmt: str) -> Any:
    if fmt == "JSONEachRow":
        return [json.loads(line) for line in text.splitlines() if line.strip()]
    if fmt == "JSON":
        return json.loads(text) if text.strip() else None
    return text


class ClickHouseHttpExecutor:
    """
    Minimal ClickHouse HTTP interface client.

    Parameters are bound server-side: each entry of ``params`` is sent as a
    ``param_<name>`` query argument and referenced in SQL as ``{name: Type}``.
    """

    def __init__(
        self,
        url: str,
        user: str = "default",
        password: Optional[str] = None,
        database: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url.rstrip("/")
        self.host = httpx.URL(self.url).host or self.url
        self._database = database
        auth = (user, password or "") if user else None
        self._client = client or httpx.Client(timeout=timeout, auth=auth)

    def execute(
        self,
        sql: str,
        params: Optional[Mapping[str, str]] = None,
        fmt: str = "JSONEachRow",
    ) -> ExecutionResult:
        query_args: Dict[str, str] = {"default_format": fmt}
        if self._database:
            query_args["database"] = self._database
        for name, value in (params or {}).items():
            query_args[f"param_{name}"] = value
        start = time.perf_counter()
        try:
            resp = self._client.post(self.url, params=query_args, content=sql.encode("utf-8"))
        except httpx.TimeoutException as e:
            raise ExecutionError(f"Connection timeout contacting {self.host}: {e}") from e
        except httpx.HTTPError as e:
            raise ExecutionError(f"Connection error contacting {self.host}: {e}") from e
        duration = time.perf_counter() - start
        if resp.status_code != 200:
            raise ExecutionError(resp.text.strip() or f"HTTP {resp.status_code} from {self.host}")
        query_id = resp.headers.get("X-ClickHouse-Query-Id", "")
        logger.debug(f"[executor] {self.host} query {query_id} took {duration:.3f}s: {truncate_string(' '.join(sql.split()), 200)}")
        return ExecutionResult(data=_decode(resp.text, fmt), query_id=query_id, duration=duration)

    def close(self) -> None:
        self._client.close()


def build_executors(settings: Settings) -> List[ClickHouseHttpExecutor]:
    return [
        ClickHouseHttpExecutor(
            url,
            user=settings.clickhouse_user,
            password=settings.clickhouse_password,
            database=settings.clickhouse_database,
            timeout=settings.query_timeout_seconds,
        )
        for url in settings.clickhouse_hosts_list
    ]


def pick_executor(executors: Sequence[Executor], host_id: int) -> Executor:
    if 0 <= host_id < len(executors):
        return executors[host_id]
    raise RequestValidationError(
        f"Invalid hostId: {host_id}. Available hosts: {', '.join(str(i) for i in range(len(executors)))} (total: {len(executors)})"
    )


@dataclass
class _Entry:
    value: Any
    stored_at: float


@dataclass
class _TtlCache:
    ttl_seconds: float
    clock: Callable[[], float] = time.monotonic
    _items: Dict[Any, _Entry] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def get(self, key: Any) -> Tuple[bool, Any]:
        with self._lock:
            entry = self._items.get(key)
            if entry is None:
                return False, None
            if self.clock() - entry.stored_at >= self.ttl_seconds:
                del self._items[key]
                return False, None
            return True, entry.value

    def put(self, key: Any, value: Any) -> None:
        with self._lock:
            self._items[key] = _Entry(value, self.clock())

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


class VersionCache:
    """Detected server version per host id. Failed detections are not cached."""

    def __init__(self, ttl_seconds: float = 24 * 60 * 60, clock: Callable[[], float] = time.monotonic):
        self._cache = _TtlCache(ttl_seconds, clock)

    def get_version(self, host_id: int, executor: Executor) -> Optional[ServerVersion]:
        hit, cached = self._cache.get(host_id)
        if hit:
            return cached
        try:
            result = executor.execute("SELECT version() AS version")
        except ExecutionError as e:
            logger.error(f"[executor] version detection failed for host {host_id}: {e}")
            return None
        rows = result.data if isinstance(result.data, list) else []
        version = parse_version(rows[0].get("version")) if rows else None
        if version is None:
            logger.error(f"[executor] host {host_id} returned no readable version")
            return None
        self._cache.put(host_id, version)
        logger.debug(f"[executor] host {host_id}: ClickHouse {version.raw}")
        return version

    def clear(self) -> None:
        self._cache.clear()


class TableExistenceCache:
    """Whether ``database.table`` exists on a host, remembered for ``ttl_seconds``."""

    def __init__(self, ttl_seconds: float = 5 * 60, clock: Callable[[], float] = time.monotonic):
        self._cache = _TtlCache(ttl_seconds, clock)

    def table_exists(self, host_id: int, executor: Executor, database: str, table: str) -> bool:
        key = (host_id, database, table)
        hit, cached = self._cache.get(key)
        if hit:
            return cached
        try:
            result = executor.execute(
                "SELECT count() > 0 AS exists FROM system.tables "
                "WHERE database = {database: String} AND name = {table: String}",
                {"database": database, "table": table},
            )
        except ExecutionError as e:
            logger.warning(f"[executor] table check for {database}.{table} failed on host {host_id}: {e}")
            return False
        rows = result.data if isinstance(result.data, list) else []
        exists = bool(rows) and _truthy(rows[0].get("exists"))
        self._cache.put(key, exists)
        return exists

    def clear(self) -> None:
        self._cache.clear()


def table_has_data(executor: Executor, database: str, table: str) -> bool:
    if not (_IDENTIFIER.match(database) and _IDENTIFIER.match(table)):
        raise ValueError(f"Invalid table name: {database}.{table}")
    try:
        result = executor.execute(f"SELECT count() > 0 AS has_data FROM {database}.{table} LIMIT 1")
    except ExecutionError as e:
        logger.warning(f"[executor] data check for {database}.{table} failed: {e}")
        return False
    rows = result.data if isinstance(result.data, list) else []
    return bool(rows) and _truthy(rows[0].get("has_data"))


def _truthy(value: Any) -> bool:
    # JSONEachRow renders UInt8 as a number, some settings render it as a string
    return value in (1, True, "1", "true")
