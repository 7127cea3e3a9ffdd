"""
Classification of raw execution errors into ApiErrorType, HTTP status mapping
and the optional-table degradation rule.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Union

from .schemas import ApiError, ApiErrorType
from .tables import references_optional_table

_TABLE_MISSING_PHRASES = ("not found", "doesn't exist", "does not exist", "missing", "unknown table")
_PERMISSION_PHRASES = ("permission", "access denied", "authentication", "unauthorized", "forbidden")
_NETWORK_PHRASES = ("network", "connection", "timeout", "econnrefused", "enotfound", "etimedout")
# "expected" also matches "unexpected token", so syntax errors reported that way
# classify as validation errors; rule order below is load-bearing
_VALIDATION_PHRASES = ("invalid", "missing required", "required parameter", "must be", "expected", "validation")
_SYNTAX_PHRASES = ("syntax error", "parse error", "unexpected token")

_ZOOKEEPER_PHRASES = (
    "zookeeper",
    "keeper",
    "coordination::exception",
    "no_zookeeper",
)

ERROR_TYPE_STATUS_MAP: Dict[ApiErrorType, int] = {
    ApiErrorType.VALIDATION_ERROR: 400,
    ApiErrorType.PERMISSION_ERROR: 403,
    ApiErrorType.TABLE_NOT_FOUND: 404,
    ApiErrorType.NETWORK_ERROR: 503,
    ApiErrorType.QUERY_ERROR: 500,
}

EXTENDED_STATUS_MAP: Dict[str, int] = {
    "timeout": 408,
    "rate_limit": 429,
    "unknown": 500,
}

ERROR_DESCRIPTIONS: Dict[ApiErrorType, str] = {
    ApiErrorType.VALIDATION_ERROR: "Invalid request parameters or data format",
    ApiErrorType.PERMISSION_ERROR: "Insufficient permissions to access the requested resource",
    ApiErrorType.TABLE_NOT_FOUND: "Requested table or resource does not exist",
    ApiErrorType.NETWORK_ERROR: "Network connection error or service unavailable",
    ApiErrorType.QUERY_ERROR: "Error executing the database query",
}


def error_message(error: Any) -> str:
    if isinstance(error, BaseException):
        return str(error)
    if isinstance(error, str):
        return error
    return "Unknown error occurred"


def _has_any(text: str, phrases) -> bool:
    return any(p in text for p in phrases)


def classify_error(error: Union[str, BaseException, Any]) -> ApiErrorType:
    """Map raw error text from the server or transport to an ApiErrorType.

    Rules are tried in order and the first hit wins:
        1. "table" plus a missing-table phrase -> table_not_found
        2. permission / auth phrases          -> permission_error
        3. network / socket phrases           -> network_error
        4. parameter / shape phrases          -> validation_error
        5. syntax phrases                     -> query_error
    Anything else is a query_error.

    Example:
        >>> classify_error("Table system.x not found")
        <ApiErrorType.TABLE_NOT_FOUND: 'table_not_found'>
        >>> classify_error("Unexpected token ')'")
        <ApiErrorType.VALIDATION_ERROR: 'validation_error'>
    """
    text = error_message(error).lower()
    if "table" in text and _has_any(text, _TABLE_MISSING_PHRASES):
        return ApiErrorType.TABLE_NOT_FOUND
    if _has_any(text, _PERMISSION_PHRASES):
        return ApiErrorType.PERMISSION_ERROR
    if _has_any(text, _NETWORK_PHRASES):
        return ApiErrorType.NETWORK_ERROR
    if _has_any(text, _VALIDATION_PHRASES):
        return ApiErrorType.VALIDATION_ERROR
    if _has_any(text, _SYNTAX_PHRASES):
        return ApiErrorType.QUERY_ERROR
    return ApiErrorType.QUERY_ERROR


def build_api_error(error: Any, details: Optional[Dict[str, Any]] = None) -> ApiError:
    return ApiError(type=classify_error(error), message=error_message(error), details=details)


def _coerce_type(error_type: Any) -> Optional[ApiErrorType]:
    if isinstance(error_type, ApiErrorType):
        return error_type
    try:
        return ApiErrorType(error_type)
    except ValueError:
        return None


def map_error_type_to_status_code(error_type: Any) -> int:
    kind = _coerce_type(error_type)
    if kind is None:
        return 500
    return ERROR_TYPE_STATUS_MAP.get(kind, 500)


def map_extended_error_type_to_status_code(error_type: Any) -> int:
    """Like map_error_type_to_status_code but also knows timeout, rate_limit and unknown."""
    kind = _coerce_type(error_type)
    if kind is not None:
        return ERROR_TYPE_STATUS_MAP[kind]
    return EXTENDED_STATUS_MAP.get(str(error_type), 500)


def is_client_error_code(error_type: Any) -> bool:
    return 400 <= map_error_type_to_status_code(error_type) < 500


def is_server_error_code(error_type: Any) -> bool:
    return 500 <= map_error_type_to_status_code(error_type) < 600


def get_error_description(error_type: Any) -> str:
    kind = _coerce_type(error_type)
    if kind is None:
        return "Unknown error"
    return ERROR_DESCRIPTIONS.get(kind, "Unknown error")


def is_zookeeper_unavailable(message: str) -> bool:
    return _has_any((message or "").lower(), _ZOOKEEPER_PHRASES)


def is_optional_failure(
    error_type: ApiErrorType,
    message: str,
    *,
    optional: bool = False,
    sql: Optional[str] = None,
) -> bool:
    """True when a failed query should be reported as "no data" instead of an error.

    Applies only to queries marked optional or reading a table from OPTIONAL_TABLES,
    and only for missing tables, permission errors or ZooKeeper being unavailable.
    """
    if not optional and not (sql and references_optional_table(sql)):
        return False
    if error_type in (ApiErrorType.TABLE_NOT_FOUND, ApiErrorType.PERMISSION_ERROR):
        return True
    return is_zookeeper_unavailable(message)
