"""
Gateway orchestration.

Every request follows the same path: build or look up SQL, validate it,
resolve the version-specific text, check optional tables, execute, then wrap
rows or a classified error in the response envelope.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, List, Mapping, Optional, Sequence

from fastapi.responses import JSONResponse

from .catalog import QueryCatalog, default_catalog
from .charts.registry import ChartRegistry, default_chart_registry
from .config import settings
from .errors import classify_error, is_optional_failure, map_error_type_to_status_code
from .executor import (
    ExecutionError,
    Executor,
    TableExistenceCache,
    VersionCache,
    build_executors,
    pick_executor,
    table_has_data,
)
from .metrics import record_error, record_query
from .schemas import (
    ApiError,
    ApiErrorType,
    ApiResponse,
    ChartQueryParams,
    DataRequest,
    DataStatus,
    MultiChartQueryResult,
    ResponseMetadata,
)
from .tables import OPTIONAL_TABLES, extract_tables, split_table_name
from .validators import (
    RequestValidationError,
    parse_host_id,
    sanitize_query_params,
    truncate_string,
    validate_data_request,
    validate_sql_query,
)
from .versioning import ServerVersion, get_table_info_message, select_versioned_sql, table_supported_by

logger = logging.getLogger(__name__)

EMPTY_RESULT_MESSAGE = "Query executed successfully but returned no data."


@dataclass
class GatewayResponse:
    status_code: int
    body: ApiResponse

    def payload(self) -> dict:
        return self.body.to_payload()

    def json_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.payload())


@dataclass
class TableStatus:
    status: DataStatus
    message: str
    checked: List[str]
    missing: Optional[List[str]] = None


def _compact(sql: str) -> str:
    return " ".join(sql.split())


def _ms_since(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def error_response(error: ApiError, *, host: str = "", api: Optional[str] = None, duration: float = 0) -> GatewayResponse:
    """Failure envelope with the status mapped from ``error.type``."""
    return GatewayResponse(
        map_error_type_to_status_code(error.type),
        ApiResponse(success=False, error=error, metadata=ResponseMetadata(host=host, duration=duration, api=api)),
    )


class QueryGateway:
    """
    Runs charts, catalog table queries and ad-hoc SELECTs against configured hosts.

    Args:
        executors: one executor per hostId, index = hostId
        charts: chart registry (defaults to every built-in chart)
        catalog: query config catalog (defaults to the built-in configs)
        version_cache: per-host server version cache
        table_cache: per-host table existence cache
    """

    def __init__(
        self,
        executors: Sequence[Executor],
        *,
        charts: Optional[ChartRegistry] = None,
        catalog: Optional[QueryCatalog] = None,
        version_cache: Optional[VersionCache] = None,
        table_cache: Optional[TableExistenceCache] = None,
    ):
        self.executors = list(executors)
        self.charts = charts if charts is not None else default_chart_registry()
        self.catalog = catalog if catalog is not None else default_catalog()
        self.version_cache = version_cache if version_cache is not None else VersionCache()
        self.table_cache = table_cache if table_cache is not None else TableExistenceCache()

    def executor_for(self, host_id: int) -> Executor:
        return pick_executor(self.executors, host_id)

    def server_version(self, host_id: int) -> Optional[ServerVersion]:
        return self.version_cache.get_version(host_id, self.executor_for(host_id))

    # --- public entry points ---

    def run_chart(self, name: str, host_id: Any, params: Optional[ChartQueryParams] = None, api: Optional[str] = None) -> GatewayResponse:
        if not self.charts.has_chart(name):
            return error_response(
                ApiError(
                    type=ApiErrorType.TABLE_NOT_FOUND,
                    message=f"Chart not found: {name}",
                    details={"availableCharts": ", ".join(self.charts.available_charts())},
                ),
                api=api,
            )
        try:
            return self._chart(name, parse_host_id(host_id), params or ChartQueryParams(), api)
        except RequestValidationError as e:
            return error_response(e.error, api=api)

    def run_table(self, name: str, host_id: Any, search_params: Optional[Mapping[str, Any]] = None, api: Optional[str] = None) -> GatewayResponse:
        if not self.catalog.has_table(name):
            return error_response(
                ApiError(
                    type=ApiErrorType.TABLE_NOT_FOUND,
                    message=f"Query config not found: {name}",
                    details={"availableTables": ", ".join(self.catalog.names())},
                ),
                api=api,
            )
        try:
            return self._table(name, parse_host_id(host_id), search_params or {}, api)
        except RequestValidationError as e:
            return error_response(e.error, api=api)

    def run_data(self, body: Mapping[str, Any]) -> GatewayResponse:
        invalid = validate_data_request(body)
        if invalid is not None:
            return error_response(invalid)
        try:
            host_id = parse_host_id(body.get("hostId"))
            executor = self.executor_for(host_id)
            sql = body["query"]
            validate_sql_query(sql)
            raw_params = body.get("queryParams")
            if raw_params is not None and not isinstance(raw_params, Mapping):
                raise RequestValidationError("Invalid queryParams: must be an object")
        except RequestValidationError as e:
            return error_response(e.error)
        request = DataRequest(
            query=sql,
            hostId=host_id,
            queryParams=dict(raw_params) if raw_params is not None else None,
            format=body.get("format") or "JSONEachRow",
        )
        return self._execute(
            "data",
            request.hostId,
            executor,
            request.query,
            sanitize_query_params(request.queryParams),
            fmt=request.format,
        )

    # --- flows ---

    def _chart(self, name: str, host_id: int, params: ChartQueryParams, api: Optional[str]) -> GatewayResponse:
        executor = self.executor_for(host_id)
        built = self.charts.build_chart_query(name, params)
        if isinstance(built, MultiChartQueryResult):
            return self._multi(name, executor, built, api)

        version = self.server_version(host_id)
        sql = select_versioned_sql(built.sql, version) if built.sql else built.query
        validate_sql_query(sql)
        logger.debug(f"[gateway] chart {name} host={host_id} version={version} variants={len(built.sql or ())}")

        tables = built.tables_to_check
        status = self._check_tables(host_id, executor, tables, version) if tables else None
        if status is not None and status.status is DataStatus.TABLE_NOT_FOUND:
            return self._no_data(executor, sql, version, status, api)
        return self._execute(
            "chart",
            host_id,
            executor,
            sql,
            sanitize_query_params(built.query_params),
            optional=built.optional,
            tables=tables,
            version=version,
            status=status,
            api=api,
        )

    def _table(self, name: str, host_id: int, search_params: Mapping[str, Any], api: Optional[str]) -> GatewayResponse:
        executor = self.executor_for(host_id)
        version = self.server_version(host_id)
        built = self.catalog.build_table_query(name, search_params, version)
        config = built.config
        sql = built.query
        if not config.disable_sql_validation:
            validate_sql_query(sql)

        tables: List[str] = []
        status = None
        if config.optional:
            tables = config.tables_to_check or extract_tables(sql)
            status = self._check_tables(host_id, executor, tables, version) if tables else None
            if status is not None and status.status is DataStatus.TABLE_NOT_FOUND:
                logger.warning(f"[gateway] skipping {name}: missing tables {status.missing}")
                return self._no_data(executor, sql, version, status, api)
        return self._execute(
            "table",
            host_id,
            executor,
            sql,
            built.query_params or {},
            optional=config.optional,
            tables=tables,
            version=version,
            status=status,
            api=api,
        )

    def _multi(self, name: str, executor: Executor, built: MultiChartQueryResult, api: Optional[str]) -> GatewayResponse:
        start = time.perf_counter()
        data: dict[str, Any] = {}
        first_error: Optional[ApiError] = None
        for sub in built.queries:
            validate_sql_query(sub.query)
            try:
                data[sub.key] = executor.execute(sub.query).data
            except ExecutionError as e:
                data[sub.key] = None
                message = str(e)
                kind = classify_error(message)
                if is_optional_failure(kind, message, optional=sub.optional, sql=sub.query):
                    continue
                record_error(kind.value)
                if first_error is None:
                    first_error = ApiError(type=kind, message=message, details={"key": sub.key, "host": executor.host})
        if first_error is not None:
            logger.error(f"[gateway] multi-query chart {name} error: {first_error.message}")
        record_query("chart", "ok" if first_error is None else "error", _ms_since(start))
        combined_sql = "\n\n".join(
            f"-- Query {i}: {sub.key}\n{sub.query.strip()}" for i, sub in enumerate(built.queries, start=1)
        )
        return GatewayResponse(
            200,
            ApiResponse(
                success=first_error is None,
                data=data,
                error=first_error,
                metadata=ResponseMetadata(host=executor.host, sql=combined_sql, api=api),
            ),
        )

    # --- helpers ---

    def _check_tables(self, host_id: int, executor: Executor, tables: Sequence[str], version: Optional[ServerVersion]) -> Optional[TableStatus]:
        checked = list(tables)
        missing: List[str] = []
        for full in checked:
            try:
                db, table = split_table_name(full)
            except ValueError:
                missing.append(full)
                continue
            if not table_supported_by(full, version) or not self.table_cache.table_exists(host_id, executor, db, table):
                missing.append(full)
        if missing:
            return TableStatus(DataStatus.TABLE_NOT_FOUND, get_table_info_message(missing[0]), checked, missing)
        for full in checked:
            if not table_has_data(executor, *split_table_name(full)):
                return TableStatus(
                    DataStatus.TABLE_EMPTY,
                    f"Table {full} exists but contains no data. The table may need time to collect metrics.",
                    checked,
                )
        return None

    def _no_data(self, executor: Executor, sql: str, version: Optional[ServerVersion], status: TableStatus, api: Optional[str]) -> GatewayResponse:
        return GatewayResponse(
            200,
            ApiResponse(
                success=True,
                data=[],
                metadata=ResponseMetadata(
                    host=executor.host,
                    clickhouseVersion=version.raw if version else None,
                    status=status.status,
                    statusMessage=status.message,
                    checkedTables=status.checked or None,
                    missingTables=status.missing,
                    sql=_compact(sql),
                    api=api,
                ),
            ),
        )

    def _execute(
        self,
        kind: str,
        host_id: int,
        executor: Executor,
        sql: str,
        params: Mapping[str, str],
        *,
        fmt: str = "JSONEachRow",
        optional: bool = False,
        tables: Sequence[str] = (),
        version: Optional[ServerVersion] = None,
        status: Optional[TableStatus] = None,
        api: Optional[str] = None,
    ) -> GatewayResponse:
        start = time.perf_counter()
        try:
            result = executor.execute(sql, dict(params) or None, fmt)
        except ExecutionError as e:
            elapsed = _ms_since(start)
            message = str(e)
            error_type = classify_error(message)
            if is_optional_failure(error_type, message, optional=optional, sql=sql):
                missing = list(tables) or [t for t in extract_tables(sql) if t in OPTIONAL_TABLES]
                logger.info(f"[gateway] {kind} on host {host_id} has no data: {truncate_string(message, 200)}")
                record_query(kind, "degraded", elapsed)
                degraded = TableStatus(
                    DataStatus.TABLE_NOT_FOUND,
                    get_table_info_message(missing[0]) if missing else message,
                    list(tables),
                    missing or None,
                )
                return self._no_data(executor, sql, version, degraded, api)
            logger.error(f"[gateway] {kind} failed on host {host_id} ({error_type.value}): {truncate_string(message, 500)}")
            record_query(kind, "error", elapsed)
            record_error(error_type.value)
            return error_response(
                ApiError(type=error_type, message=message, details={"host": executor.host}),
                host=executor.host,
                api=api,
                duration=elapsed / 1000,
            )

        record_query(kind, "ok", _ms_since(start))
        data = result.data
        if status is None and (data is None or (isinstance(data, list) and not data)):
            status = TableStatus(DataStatus.EMPTY, EMPTY_RESULT_MESSAGE, list(tables))
        return GatewayResponse(
            200,
            ApiResponse(
                success=True,
                data=data,
                metadata=ResponseMetadata(
                    host=executor.host,
                    queryId=result.query_id,
                    duration=result.duration,
                    rows=result.rows,
                    clickhouseVersion=version.raw if version else None,
                    status=status.status if status else DataStatus.OK,
                    statusMessage=status.message if status else None,
                    checkedTables=(status.checked or None) if status else None,
                    sql=_compact(sql),
                    api=api,
                ),
            ),
        )


@lru_cache(maxsize=1)
def get_gateway() -> QueryGateway:
    """FastAPI dependency; one gateway per process built from settings."""
    executors = build_executors(settings)
    logger.info(f"[gateway] {len(executors)} ClickHouse host(s) configured")
    return QueryGateway(
        executors,
        version_cache=VersionCache(settings.version_cache_ttl_seconds),
        table_cache=TableExistenceCache(settings.table_cache_ttl_seconds),
    )
