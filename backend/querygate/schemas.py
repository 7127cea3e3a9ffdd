from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator
from pydantic.config import ConfigDict

from .intervals import ClickHouseInterval
from .versioning import parse_version

# Caller-supplied parameter values before sanitize_query_params
Scalar = Union[str, int, float, bool, None]


class ApiErrorType(str, Enum):
    TABLE_NOT_FOUND = "table_not_found"
    VALIDATION_ERROR = "validation_error"
    QUERY_ERROR = "query_error"
    NETWORK_ERROR = "network_error"
    PERMISSION_ERROR = "permission_error"


class DataStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    TABLE_NOT_FOUND = "table_not_found"
    TABLE_EMPTY = "table_empty"


class ApiError(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: ApiErrorType
    message: str
    details: Optional[Dict[str, Any]] = None


# --- Response envelope ---
class ResponseMetadata(BaseModel):
    host: str = ""
    queryId: str = ""
    duration: float = 0
    rows: int = 0
    clickhouseVersion: Optional[str] = None
    status: Optional[DataStatus] = None
    statusMessage: Optional[str] = None
    checkedTables: Optional[List[str]] = None
    missingTables: Optional[List[str]] = None
    sql: Optional[str] = None
    api: Optional[str] = None


class ApiResponse(BaseModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[ApiError] = None
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)

    def to_payload(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class HealthResponse(BaseModel):
    status: str = "ok"
    app: str
    env: str
    hosts: int = 0


class DataRequest(BaseModel):
    """Shape of POST /data bodies once they pass validate_data_request."""

    query: str
    hostId: int
    queryParams: Optional[Dict[str, Any]] = None
    format: str = "JSONEachRow"


# --- Query definitions ---
class SqlVariant(BaseModel):
    """One SQL text valid from server version ``since`` onward."""

    model_config = ConfigDict(frozen=True)

    since: str
    sql: str
    description: str = ""
    columns: Optional[Tuple[str, ...]] = None

    @field_validator("since")
    @classmethod
    def _since_is_version(cls, v: str) -> str:
        if parse_version(v) is None:
            raise ValueError(f"Invalid since version: {v!r}")
        return v


class QueryConfig(BaseModel):
    """Static table query definition, looked up by ``name`` and never mutated."""

    model_config = ConfigDict(frozen=True)

    name: str
    sql: Union[str, Tuple[SqlVariant, ...]]
    description: str = ""
    columns: Tuple[str, ...] = ()
    column_formats: Dict[str, Any] = Field(default_factory=dict)
    default_params: Dict[str, str] = Field(default_factory=dict)
    optional: bool = False
    table_check: Optional[Union[str, Tuple[str, ...]]] = None
    disable_sql_validation: bool = False
    docs: Optional[str] = None

    @field_validator("sql")
    @classmethod
    def _variants_sorted(cls, v):
        if isinstance(v, str):
            return v
        if not v:
            raise ValueError("VersionedSql array cannot be empty")
        versions = [parse_version(item.since) for item in v]
        if any(b < a for a, b in zip(versions, versions[1:])):
            raise ValueError("SQL variants must be sorted ascending by since")
        return v

    @property
    def tables_to_check(self) -> List[str]:
        if self.table_check is None:
            return []
        if isinstance(self.table_check, str):
            return [self.table_check]
        return list(self.table_check)


# --- Charts ---
class ChartQueryParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    interval: Optional[ClickHouseInterval] = None
    last_hours: Optional[int] = None
    params: Optional[Dict[str, Scalar]] = None


class ChartQueryResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str
    query_params: Optional[Dict[str, Scalar]] = None
    optional: bool = False
    table_check: Optional[Union[str, Tuple[str, ...]]] = None
    # Version-specific replacements for ``query``, oldest first
    sql: Optional[Tuple[SqlVariant, ...]] = None

    @property
    def tables_to_check(self) -> List[str]:
        if self.table_check is None:
            return []
        if isinstance(self.table_check, str):
            return [self.table_check]
        return list(self.table_check)


class ChartSubQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    query: str
    optional: bool = False


class MultiChartQueryResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    queries: Tuple[ChartSubQuery, ...]


class TableQueryResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    query: str
    query_params: Optional[Dict[str, str]] = None
    config: QueryConfig
