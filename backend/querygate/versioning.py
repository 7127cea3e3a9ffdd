"""
ClickHouse server version parsing and version-aware SQL selection.

Version detection is best-effort: ``parse_version`` returns ``None`` for text it
cannot read and every resolver treats ``None`` as "unknown server", which always
selects the most conservative SQL variant.
"""
from __future__ import annotations

import functools
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

_LEADING_DIGITS = re.compile(r"\d+")


@functools.total_ordering
@dataclass(frozen=True, eq=False)
class ServerVersion:
    """Parsed ``major.minor.patch[.build]`` server version.

    Ordering and equality use all four components with missing ones read as 0,
    so ``24.5`` == ``24.5.0`` == ``24.5.0.0``. ``raw`` keeps the original text.
    """

    major: int
    minor: int = 0
    patch: int = 0
    build: Optional[int] = None
    raw: str = ""

    @property
    def key(self) -> Tuple[int, int, int, int]:
        return (self.major, self.minor, self.patch, self.build or 0)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ServerVersion):
            return NotImplemented
        return self.key == other.key

    def __lt__(self, other: "ServerVersion") -> bool:
        if not isinstance(other, ServerVersion):
            return NotImplemented
        return self.key < other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __str__(self) -> str:
        if self.raw:
            return self.raw
        parts = [self.major, self.minor, self.patch]
        if self.build is not None:
            parts.append(self.build)
        return ".".join(str(p) for p in parts)


VersionLike = Union[ServerVersion, str]


def parse_version(text: Any) -> Optional[ServerVersion]:
    """Parse dotted version text like ``"24.3.1.1"``.

    Reads up to four dot-separated numeric components. A component with a
    trailing suffix (``"1-lts"``) contributes its numeric prefix and ends the
    parse. Returns ``None`` when not even the major component is numeric.

    Example:
        >>> parse_version("24.3.1.1").key
        (24, 3, 1, 1)
        >>> parse_version("unknown") is None
        True
    """
    if not isinstance(text, str):
        return None
    raw = text.strip()
    if not raw:
        return None
    nums: list[int] = []
    for part in raw.split(".")[:4]:
        m = _LEADING_DIGITS.match(part)
        if not m:
            break
        nums.append(int(m.group(0)))
        if m.end() != len(part):
            break
    if not nums:
        return None
    return ServerVersion(
        major=nums[0],
        minor=nums[1] if len(nums) > 1 else 0,
        patch=nums[2] if len(nums) > 2 else 0,
        build=nums[3] if len(nums) > 3 else None,
        raw=raw,
    )


def _require_version(value: VersionLike) -> ServerVersion:
    if isinstance(value, ServerVersion):
        return value
    parsed = parse_version(value)
    if parsed is None:
        raise ValueError(f"Invalid version: {value!r}")
    return parsed


def _as_version(value: Optional[VersionLike]) -> Optional[ServerVersion]:
    if value is None or isinstance(value, ServerVersion):
        return value
    return parse_version(value)


def compare_versions(a: VersionLike, b: VersionLike) -> int:
    """Return -1, 0 or 1. Text operands are parsed; unreadable text raises ValueError."""
    va, vb = _require_version(a), _require_version(b)
    if va < vb:
        return -1
    if va > vb:
        return 1
    return 0


def meets_min_version(version: VersionLike, major: int, minor: int = 0, patch: int = 0) -> bool:
    return _require_version(version) >= ServerVersion(major, minor, patch)


def version_matches_range(
    version: VersionLike,
    min_version: Optional[str] = None,
    max_version: Optional[str] = None,
) -> bool:
    """True when ``min_version <= version < max_version``; either bound may be omitted."""
    v = _require_version(version)
    if min_version and v < _require_version(min_version):
        return False
    if max_version and v >= _require_version(max_version):
        return False
    return True


# --- Semver-style ranges ---

@dataclass(frozen=True)
class SemverRange:
    min: Optional[ServerVersion] = None
    max: Optional[ServerVersion] = None
    min_inclusive: bool = True
    max_inclusive: bool = True


def _next_major(v: ServerVersion) -> ServerVersion:
    return ServerVersion(v.major + 1, 0, 0, raw=f"{v.major + 1}.0.0")


def _next_minor(v: ServerVersion) -> ServerVersion:
    return ServerVersion(v.major, v.minor + 1, 0, raw=f"{v.major}.{v.minor + 1}.0")


def parse_semver_range(text: str) -> SemverRange:
    """Parse range text into bounds.

    Supported forms:
        ``^24.1``        >=24.1 <25.0.0
        ``~24.1.2``      >=24.1.2 <24.2.0
        ``>=24.1 <24.5`` compound, any of ``>= > <= <``
        ``=24.1``/``24.1`` same as ``^24.1``

    An empty range has no bounds and matches every version.
    """
    trimmed = (text or "").strip()
    if not trimmed:
        return SemverRange()
    if trimmed.startswith("^"):
        v = _require_version(trimmed[1:])
        return SemverRange(min=v, max=_next_major(v), max_inclusive=False)
    if trimmed.startswith("~"):
        v = _require_version(trimmed[1:])
        return SemverRange(min=v, max=_next_minor(v), max_inclusive=False)

    lo: Optional[ServerVersion] = None
    hi: Optional[ServerVersion] = None
    lo_inc = hi_inc = True
    for part in trimmed.split():
        if part.startswith(">="):
            lo, lo_inc = _require_version(part[2:]), True
        elif part.startswith(">"):
            lo, lo_inc = _require_version(part[1:]), False
        elif part.startswith("<="):
            hi, hi_inc = _require_version(part[2:]), True
        elif part.startswith("<"):
            hi, hi_inc = _require_version(part[1:]), False
        elif part.startswith("=") or part[:1].isdigit():
            lo = _require_version(part.lstrip("="))
            lo_inc = True
            hi, hi_inc = _next_major(lo), False
        else:
            raise ValueError(f"Invalid version range component: {part!r}")
    return SemverRange(min=lo, max=hi, min_inclusive=lo_inc, max_inclusive=hi_inc)


def matches_semver_range(version: VersionLike, text: str) -> bool:
    v = _require_version(version)
    bounds = parse_semver_range(text)
    if bounds.min is not None:
        if v < bounds.min or (v == bounds.min and not bounds.min_inclusive):
            return False
    if bounds.max is not None:
        if v > bounds.max or (v == bounds.max and not bounds.max_inclusive):
            return False
    return True


def select_query_variant(
    default: str,
    variants: Iterable[Tuple[str, str]],
    version: Optional[VersionLike],
) -> str:
    """Return the SQL of the first ``(range, sql)`` pair whose range matches ``version``.

    Falls back to ``default`` when the version is unknown or nothing matches.
    """
    current = _as_version(version)
    if current is None:
        return default
    for rng, sql in variants:
        if matches_semver_range(current, rng):
            return sql
    return default


# --- Versioned SQL ("since" variants) ---

def select_versioned_sql(sql: Union[str, Sequence[Any]], version: Optional[VersionLike]) -> str:
    """Pick the SQL text to run against a server of ``version``.

    ``sql`` is either plain text (returned unchanged) or a sequence of variants
    exposing ``since`` and ``sql``, ordered oldest first. The newest variant whose
    ``since`` is <= ``version`` wins. An unknown version, or one older than every
    variant, gets the earliest variant.

    Raises:
        ValueError: when the variant sequence is empty

    Example:
        >>> select_versioned_sql([SqlVariant(since="23.8", sql="S1"),
        ...                       SqlVariant(since="24.1", sql="S2")], "24.5.1.1")
        'S2'
    """
    if isinstance(sql, str):
        return sql
    variants = list(sql or [])
    if not variants:
        raise ValueError("VersionedSql array cannot be empty")
    current = _as_version(version)
    if current is None:
        return variants[0].sql
    newest_first = sorted(variants, key=lambda v: _require_version(v.since), reverse=True)
    for variant in newest_first:
        if current >= _require_version(variant.since):
            return variant.sql
    return variants[0].sql


def get_sql(config: Any, version: Optional[VersionLike]) -> str:
    """Resolve a query config's ``sql`` for ``version``."""
    return select_versioned_sql(config.sql, version)


def get_sql_for_display(sql: Union[str, Sequence[Any]]) -> str:
    # Listing only; execution always goes through select_versioned_sql
    if isinstance(sql, str):
        return sql
    variants = list(sql or [])
    if not variants:
        return ""
    return variants[-1].sql


# --- Known system tables ---

@dataclass(frozen=True)
class SystemTableInfo:
    description: str
    min_version: Optional[Tuple[int, int]] = None
    requires_config: bool = False
    config_key: Optional[str] = None


SYSTEM_TABLE_INFO: dict[str, SystemTableInfo] = {
    "system.metric_log": SystemTableInfo(
        description="Historical metrics log. Requires <metric_log> in server config.",
        min_version=(20, 5),
        requires_config=True,
        config_key="metric_log",
    ),
    "system.asynchronous_metric_log": SystemTableInfo(
        description="Historical async metrics. Requires <asynchronous_metric_log> in server config.",
        min_version=(20, 5),
        requires_config=True,
        config_key="asynchronous_metric_log",
    ),
    "system.part_log": SystemTableInfo(
        description="Part operations log. Requires <part_log> in server config. Usually enabled by default.",
        requires_config=True,
        config_key="part_log",
    ),
    "system.query_log": SystemTableInfo(
        description="Query execution log. Requires <query_log> in server config. Usually enabled by default.",
        requires_config=True,
        config_key="query_log",
    ),
    "system.backup_log": SystemTableInfo(
        description="Backup operations log. Requires backup configuration and <backup_log> in server config.",
        min_version=(22, 0),
        requires_config=True,
        config_key="backup_log",
    ),
    "system.error_log": SystemTableInfo(
        description="Error log. Requires <error_log> in server config. Available since 22.8.",
        min_version=(22, 8),
        requires_config=True,
        config_key="error_log",
    ),
    "system.session_log": SystemTableInfo(
        description="Login and session events. Requires <session_log> in server config.",
        requires_config=True,
        config_key="session_log",
    ),
    "system.zookeeper": SystemTableInfo(
        description="ZooKeeper data. Requires ZooKeeper/Keeper configuration in server.",
        requires_config=True,
    ),
}


def get_table_info_message(full_table_name: str) -> str:
    info = SYSTEM_TABLE_INFO.get(full_table_name)
    if info is None:
        return f"Table {full_table_name} may require specific configuration."
    return info.description


def table_supported_by(full_table_name: str, version: Optional[VersionLike]) -> bool:
    """False only when the table is known to need a newer server than ``version``."""
    info = SYSTEM_TABLE_INFO.get(full_table_name)
    current = _as_version(version)
    if info is None or info.min_version is None or current is None:
        return True
    return meets_min_version(current, *info.min_version)
