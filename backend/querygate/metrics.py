from __future__ import annotations

import threading
from typing import Dict, Tuple

# In-process metrics registry (single worker): counters, gauges and summaries (sum, count)

LabelItems = Tuple[Tuple[str, str], ...]
SeriesKey = Tuple[str, LabelItems]

_lock = threading.Lock()
_counters: Dict[SeriesKey, float] = {}
_gauges: Dict[SeriesKey, float] = {}
_summaries: Dict[SeriesKey, Tuple[float, int]] = {}


def _key(name: str, labels: Dict[str, str] | None) -> SeriesKey:
    return name, tuple(sorted((str(k), str(v)) for k, v in (labels or {}).items()))


def counter_inc(name: str, labels: Dict[str, str] | None = None, amount: float = 1.0) -> None:
    with _lock:
        k = _key(name, labels)
        _counters[k] = _counters.get(k, 0.0) + float(amount)


def gauge_inc(name: str, amount: float = 1.0, labels: Dict[str, str] | None = None) -> None:
    with _lock:
        k = _key(name, labels)
        _gauges[k] = _gauges.get(k, 0.0) + float(amount)


def gauge_dec(name: str, amount: float = 1.0, labels: Dict[str, str] | None = None) -> None:
    gauge_inc(name, -float(amount), labels)


def summary_observe(name: str, value: float, labels: Dict[str, str] | None = None) -> None:
    with _lock:
        k = _key(name, labels)
        s, c = _summaries.get(k, (0.0, 0))
        _summaries[k] = (s + float(value), c + 1)


def record_query(kind: str, outcome: str, duration_ms: float) -> None:
    """Count one gateway query (chart, table, data) and its latency by outcome."""
    counter_inc("querygate_queries_total", {"kind": kind, "outcome": outcome})
    summary_observe("querygate_query_duration_ms", duration_ms, {"kind": kind})


def record_error(error_type: str) -> None:
    counter_inc("querygate_errors_total", {"type": error_type})


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _fmt_labels(items: LabelItems) -> str:
    if not items:
        return ""
    return "{" + ",".join(f'{k}="{_escape(v)}"' for k, v in items) + "}"


def render_prometheus() -> str:
    """Prometheus text exposition; one TYPE line per metric family."""
    lines: list[str] = []
    typed: set[str] = set()

    def _type(name: str, kind: str) -> None:
        if name not in typed:
            typed.add(name)
            lines.append(f"# TYPE {name} {kind}")

    with _lock:
        for (name, items), val in sorted(_counters.items()):
            _type(name, "counter")
            lines.append(f"{name}{_fmt_labels(items)} {val}")
        for (name, items), val in sorted(_gauges.items()):
            _type(name, "gauge")
            lines.append(f"{name}{_fmt_labels(items)} {val}")
        for (name, items), (s, c) in sorted(_summaries.items()):
            _type(name, "summary")
            lines.append(f"{name}_sum{_fmt_labels(items)} {s}")
            lines.append(f"{name}_count{_fmt_labels(items)} {c}")
    return "\n".join(lines) + "\n"


def snapshot() -> dict:
    """Programmatic view of every series.

    {
      counters:  [ { name, labels: {..}, value } ],
      gauges:    [ { name, labels: {..}, value } ],
      summaries: [ { name, labels: {..}, sum, count } ],
    }
    """
    with _lock:
        return {
            "counters": [{"name": n, "labels": dict(i), "value": v} for (n, i), v in _counters.items()],
            "gauges": [{"name": n, "labels": dict(i), "value": v} for (n, i), v in _gauges.items()],
            "summaries": [
                {"name": n, "labels": dict(i), "sum": s, "count": c} for (n, i), (s, c) in _summaries.items()
            ],
        }


def reset() -> None:
    with _lock:
        _counters.clear()
        _gauges.clear()
        _summaries.clear()
