"""
Request validation and SQL safety checks.

Validators return ``None`` when the input is acceptable and an ``ApiError`` of
type ``validation_error`` otherwise. The two raising entry points,
``parse_host_id`` and ``validate_sql_query``, raise ``RequestValidationError``
carrying the same ``ApiError``.
"""
from __future__ import annotations

import json
import re
from typing import Any, Iterable, Mapping, Optional, Sequence

from .schemas import ApiError, ApiErrorType

SUPPORTED_FORMATS: tuple[str, ...] = ("JSONEachRow", "JSON", "CSV", "TSV")

# Ordered; the first match wins and all produce the same rejection message
SQL_INJECTION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(DROP|DELETE|INSERT|UPDATE|ALTER|CREATE|TRUNCATE)\b", re.IGNORECASE),
    re.compile(r"\b(EXEC|EXECUTE|SCRIPT)\b", re.IGNORECASE),
    re.compile(r"--(\s|$)"),
    re.compile(r"/\*"),
    re.compile(r"\*/"),
    re.compile(r";\s*(DROP|DELETE|INSERT|UPDATE)", re.IGNORECASE),
    re.compile(r"';.*--"),
    re.compile(r"'.*OR.*'.*=.*'", re.IGNORECASE),
    re.compile(r'".*OR.*".*=.*"', re.IGNORECASE),
    re.compile(r"\bor\s+1\s*=\s*1\b", re.IGNORECASE),
    re.compile(r"\bunion\s+select\b", re.IGNORECASE),
)

DANGEROUS_SQL_MESSAGE = "Potentially dangerous SQL detected. Only SELECT queries are allowed."
SELECT_ONLY_MESSAGE = "Only SELECT queries are allowed"
EMPTY_SQL_MESSAGE = "SQL query cannot be empty"

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class RequestValidationError(ValueError):
    """Raised by the throwing validators; ``error`` is the envelope-ready ApiError."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.error = ApiError(type=ApiErrorType.VALIDATION_ERROR, message=message, details=details)


class _Missing:
    """Marks a parameter entry that should be dropped rather than bound."""

    _instance: Optional["_Missing"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()


def _invalid(message: str) -> ApiError:
    return ApiError(type=ApiErrorType.VALIDATION_ERROR, message=message)


def _parse_int_prefix(value: Any) -> Optional[int]:
    """Leading-integer parse: ``"12"`` and ``"12abc"`` give 12, ``"abc"`` gives None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value == value and value not in (float("inf"), float("-inf")) else None
    if isinstance(value, str):
        m = _LEADING_INT.match(value)
        return int(m.group(1)) if m else None
    return None


def is_supported_format(value: Any) -> bool:
    return isinstance(value, str) and value in SUPPORTED_FORMATS


def validate_host_id(value: Any) -> Optional[ApiError]:
    if value is None or value == "":
        return _invalid("Missing required field: hostId")
    parsed = _parse_int_prefix(value)
    if parsed is None or parsed < 0:
        return _invalid("Invalid hostId: must be a non-negative number")
    return None


def parse_host_id(value: Any) -> int:
    """Return the host index from a query-string value or raise RequestValidationError."""
    if value is None or value == "":
        raise RequestValidationError("Missing required parameter: hostId")
    parsed = _parse_int_prefix(value)
    if parsed is None or parsed < 0:
        raise RequestValidationError("Invalid hostId: must be a non-negative number")
    return parsed


def validate_format(value: Any) -> Optional[ApiError]:
    if value is None:
        return None
    supported = ", ".join(SUPPORTED_FORMATS)
    if not isinstance(value, str):
        return _invalid(f"Invalid format: must be a string. Supported formats: {supported}")
    if value not in SUPPORTED_FORMATS:
        return _invalid(f"Invalid format. Supported formats: {supported}")
    return None


def validate_enum_value(value: Any, allowed: Sequence[str], field_name: str) -> Optional[ApiError]:
    if value is None:
        return None
    if not isinstance(value, str):
        return _invalid(f"Invalid {field_name}: must be a string")
    if value not in allowed:
        return _invalid(f"Invalid {field_name}: must be one of {', '.join(allowed)}")
    return None


def validate_required_string(value: Any, field_name: str) -> Optional[ApiError]:
    if not isinstance(value, str) or not value.strip():
        return _invalid(f"Missing required field: {field_name}")
    return None


def validate_search_params(params: Mapping[str, Any], required: Iterable[str]) -> Optional[ApiError]:
    """Fail on the first entry of ``required`` that is absent or blank."""
    for name in required:
        value = params.get(name)
        if value is None or not str(value).strip():
            return _invalid(f"Missing required parameter: {name}")
    return None


def validate_data_request(body: Mapping[str, Any]) -> Optional[ApiError]:
    return (
        validate_required_string(body.get("query"), "query")
        or validate_host_id(body.get("hostId"))
        or validate_format(body.get("format"))
    )


def validate_sql_query(sql: Any) -> None:
    """Reject anything that is not a plain read query.

    Mutating keywords match as whole words anywhere in the text, string
    literals included, so ``WHERE action = 'DELETE'`` is rejected while
    ``deleted_at`` style identifiers pass.

    Raises:
        RequestValidationError: empty text, an unsafe shape, or a statement
            that does not start with SELECT or WITH
    """
    if not isinstance(sql, str) or not sql.strip():
        raise RequestValidationError(EMPTY_SQL_MESSAGE)
    for pattern in SQL_INJECTION_PATTERNS:
        if pattern.search(sql):
            raise RequestValidationError(DANGEROUS_SQL_MESSAGE, {"pattern": pattern.pattern})
    head = sql.strip().upper()
    if not (head.startswith("SELECT") or head.startswith("WITH")):
        raise RequestValidationError(SELECT_ONLY_MESSAGE)


def check_sql_query(sql: Any) -> Optional[ApiError]:
    try:
        validate_sql_query(sql)
    except RequestValidationError as e:
        return e.error
    return None


def _stringify(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(_stringify(v) for v in value)
    if isinstance(value, Mapping):
        return _canonical_json(value)
    return str(value)


def _canonical_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def sanitize_query_params(raw: Optional[Mapping[str, Any]]) -> dict[str, str]:
    """Flatten an arbitrary parameter map into strings for ``param_*`` binding.

    - ``MISSING`` entries are dropped
    - ``None`` becomes ""
    - booleans become "true"/"false", integral floats lose their ".0"
    - lists join their stringified elements with commas
    - mappings become compact JSON

    Example:
        >>> sanitize_query_params({"a": [1, 2, 3], "b": None, "c": MISSING, "d": {"k": 1}})
        {'a': '1,2,3', 'b': '', 'd': '{"k":1}'}
    """
    out: dict[str, str] = {}
    for key, value in (raw or {}).items():
        if value is MISSING:
            continue
        if value is None:
            out[key] = ""
        elif isinstance(value, Mapping):
            out[key] = _canonical_json(value)
        else:
            out[key] = _stringify(value)
    return out


def truncate_string(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def is_valid_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value == value
