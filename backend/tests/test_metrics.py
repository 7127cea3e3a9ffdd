"""
Tests for the in-process metrics registry.
"""
from querygate import metrics


class TestMetricsRegistry:
    """Counters, gauges and summaries"""

    def test_counter_and_summary(self):
        """record_query feeds both the counter and the latency summary"""
        metrics.record_query("chart", "ok", 12.0)
        metrics.record_query("chart", "ok", 8.0)
        snap = metrics.snapshot()
        counters = {c["name"]: c for c in snap["counters"]}
        assert counters["querygate_queries_total"]["value"] == 2.0
        assert counters["querygate_queries_total"]["labels"] == {"kind": "chart", "outcome": "ok"}
        summary = snap["summaries"][0]
        assert (summary["sum"], summary["count"]) == (20.0, 2)

    def test_gauge(self):
        """Gauges go up and down"""
        metrics.gauge_inc("inflight", 2)
        metrics.gauge_dec("inflight")
        assert metrics.snapshot()["gauges"][0]["value"] == 1.0

    def test_render(self):
        """Each family gets one TYPE line and labels are escaped"""
        metrics.record_error("query_error")
        metrics.record_error("query_error")
        metrics.counter_inc("odd", {"path": 'a"b'})
        text = metrics.render_prometheus()
        assert text.count("# TYPE querygate_errors_total counter") == 1
        assert 'querygate_errors_total{type="query_error"} 2.0' in text
        assert 'odd{path="a\\"b"} 1.0' in text

    def test_reset(self):
        """reset clears every series"""
        metrics.counter_inc("x")
        metrics.reset()
        assert metrics.snapshot() == {"counters": [], "gauges": [], "summaries": []}
