"""
Tests for the gateway request flows against a scripted executor.
"""
from querygate import metrics
from querygate.executor import ExecutionError
from querygate.intervals import ClickHouseInterval
from querygate.schemas import ChartQueryParams
from querygate.service import QueryGateway

from fakes import FakeExecutor

MISSING_METRIC_LOG = "Code: 60. DB::Exception: Table system.metric_log doesn't exist. (UNKNOWN_TABLE)"


def _counter(name, **labels):
    for c in metrics.snapshot()["counters"]:
        if c["name"] == name and all(c["labels"].get(k) == v for k, v in labels.items()):
            return c["value"]
    return 0


class TestRunChart:
    """Single-query charts"""

    def test_success_envelope(self, gateway, executor):
        """Rows come back with host, version and the executed SQL"""
        resp = gateway.run_chart("query-count", 0, ChartQueryParams(last_hours=6), api="/api/charts/query-count")
        body = resp.payload()
        assert resp.status_code == 200
        assert body["success"] is True
        assert body["data"] == [{"value": 1}]
        meta = body["metadata"]
        assert meta["host"] == "ch-1"
        assert meta["clickhouseVersion"] == "24.3.1.1"
        assert meta["status"] == "ok"
        assert meta["rows"] == 1
        assert meta["queryId"] == "q-1"
        assert meta["api"] == "/api/charts/query-count"
        assert "INTERVAL 6 HOUR" in meta["sql"]
        assert "\n" not in meta["sql"]
        assert _counter("querygate_queries_total", kind="chart", outcome="ok") == 1

    def test_unknown_chart(self, gateway, executor):
        """Unknown charts are 404 with the list of available ones"""
        resp = gateway.run_chart("nope", 0)
        body = resp.payload()
        assert resp.status_code == 404
        assert body["success"] is False
        assert body["error"]["type"] == "table_not_found"
        assert body["error"]["message"] == "Chart not found: nope"
        assert "query-count" in body["error"]["details"]["availableCharts"]
        assert executor.calls == []

    def test_missing_host_id(self, gateway):
        """hostId is required"""
        resp = gateway.run_chart("query-count", None)
        assert resp.status_code == 400
        assert resp.payload()["error"]["message"] == "Missing required parameter: hostId"

    def test_host_id_out_of_range(self, gateway):
        """hostId must name a configured host"""
        resp = gateway.run_chart("query-count", "3")
        assert resp.status_code == 400
        assert "Available hosts: 0 (total: 1)" in resp.payload()["error"]["message"]

    def test_version_specific_sql(self):
        """Older servers run the older variant"""
        executor = FakeExecutor(version="23.8.1")
        QueryGateway([executor]).run_chart("query-cache-usage", 0)
        assert "Not available" in executor.queries()[-1]

    def test_unknown_version_runs_earliest_variant(self):
        """A failed version probe falls back to the earliest variant"""
        executor = FakeExecutor(version=None)
        body = QueryGateway([executor]).run_chart("query-cache-usage", 0).payload()
        assert body["success"] is True
        assert "clickhouseVersion" not in body["metadata"]
        assert "Not available" in executor.queries()[-1]

    def test_empty_result(self):
        """No rows is success with status empty"""
        body = QueryGateway([FakeExecutor(rows=[])]).run_chart("query-count", 0).payload()
        assert body["success"] is True
        assert body["data"] == []
        assert body["metadata"]["status"] == "empty"

    def test_query_error(self):
        """Server errors are classified and counted"""
        executor = FakeExecutor().on("query_kind", ExecutionError("Code: 62. Syntax error: failed at position 10"))
        resp = QueryGateway([executor]).run_chart("query-count", 0)
        body = resp.payload()
        assert resp.status_code == 500
        assert body["error"]["type"] == "query_error"
        assert body["error"]["details"] == {"host": "ch-1"}
        assert _counter("querygate_errors_total", type="query_error") == 1

    def test_required_table_missing_is_an_error(self):
        """Missing tables in non-optional charts stay errors"""
        executor = FakeExecutor().on("query_kind", ExecutionError("Table system.query_log doesn't exist"))
        resp = QueryGateway([executor]).run_chart("query-count", 0)
        assert resp.status_code == 404
        assert resp.payload()["error"]["type"] == "table_not_found"


class TestOptionalCharts:
    """Charts over configuration-dependent tables"""

    def test_missing_table_skips_query(self):
        """A missing optional table returns no data without running the chart"""
        executor = FakeExecutor().on("FROM system.tables", [{"exists": 0}])
        resp = QueryGateway([executor]).run_chart("memory-usage", 0, ChartQueryParams(interval=ClickHouseInterval.HOUR))
        body = resp.payload()
        assert resp.status_code == 200
        assert body["success"] is True
        assert body["data"] == []
        meta = body["metadata"]
        assert meta["status"] == "table_not_found"
        assert meta["missingTables"] == ["system.metric_log"]
        assert meta["checkedTables"] == ["system.metric_log"]
        assert "<metric_log>" in meta["statusMessage"]
        assert not any("CurrentMetric_MemoryTracking" in q for q in executor.queries())

    def test_empty_table(self):
        """An existing but empty table still runs, flagged table_empty"""
        executor = FakeExecutor(rows=[]).on("AS has_data", [{"has_data": 0}])
        body = QueryGateway([executor]).run_chart("memory-usage", 0).payload()
        assert body["success"] is True
        assert body["metadata"]["status"] == "table_empty"
        assert any("CurrentMetric_MemoryTracking" in q for q in executor.queries())

    def test_execution_failure_degrades(self):
        """A missing-table error at run time is reported as no data"""
        executor = FakeExecutor().on("CurrentMetric_MemoryTracking", ExecutionError(MISSING_METRIC_LOG))
        resp = QueryGateway([executor]).run_chart("memory-usage", 0)
        body = resp.payload()
        assert resp.status_code == 200
        assert body["success"] is True
        assert body["metadata"]["status"] == "table_not_found"
        assert body["metadata"]["missingTables"] == ["system.metric_log"]
        assert _counter("querygate_queries_total", kind="chart", outcome="degraded") == 1

    def test_network_error_not_degraded(self):
        """Only missing tables, permissions and ZooKeeper degrade"""
        executor = FakeExecutor().on("CurrentMetric_MemoryTracking", ExecutionError("Connection refused"))
        resp = QueryGateway([executor]).run_chart("memory-usage", 0)
        assert resp.status_code == 503
        assert resp.payload()["error"]["type"] == "network_error"

    def test_session_chart_without_session_log(self):
        """Login charts report the session_log configuration hint"""
        executor = FakeExecutor().on("FROM system.tables", [{"exists": 0}])
        body = QueryGateway([executor]).run_chart("login-success-rate", 0).payload()
        assert body["success"] is True
        assert body["metadata"]["missingTables"] == ["system.session_log"]
        assert "<session_log>" in body["metadata"]["statusMessage"]
        assert not any("LoginSuccess" in q for q in executor.queries())

    def test_table_check_cached(self):
        """Repeated requests reuse the existence check"""
        executor = FakeExecutor()
        gateway = QueryGateway([executor])
        gateway.run_chart("memory-usage", 0)
        gateway.run_chart("memory-usage", 0)
        assert sum("FROM system.tables" in q for q in executor.queries()) == 1


class TestMultiQueryCharts:
    """Charts made of several named sub-queries"""

    def test_all_succeed(self, gateway):
        """Each sub-query fills its key"""
        body = gateway.run_chart("summary-used-by-merges", 0).payload()
        assert body["success"] is True
        assert set(body["data"]) == {"used", "totalMem", "rowsReadWritten", "bytesReadWritten"}
        assert "-- Query 1: used" in body["metadata"]["sql"]

    def test_partial_failure(self):
        """One failing sub-query does not stop the others"""
        executor = FakeExecutor().on("bytes_read_uncompressed", ExecutionError("Connection refused"))
        resp = QueryGateway([executor]).run_chart("summary-used-by-merges", 0)
        body = resp.payload()
        assert resp.status_code == 200
        assert body["success"] is False
        assert body["error"]["type"] == "network_error"
        assert body["error"]["details"]["key"] == "bytesReadWritten"
        assert body["data"]["used"] == [{"value": 1}]
        assert "bytesReadWritten" not in body["data"] or body["data"]["bytesReadWritten"] is None


class TestRunTable:
    """Catalog table queries"""

    def test_part_info(self, gateway, executor):
        """Defaults merge with caller params and the newest applicable variant runs"""
        resp = gateway.run_table("part-info", "0", {"table": "events"})
        assert resp.status_code == 200
        sql, params, fmt = executor.calls[-1]
        assert "formatReadableSize(primary_key_bytes_in_memory)" in sql
        assert params == {"database": "default", "table": "events"}
        assert fmt == "JSONEachRow"

    def test_part_info_old_server(self):
        """Older servers get the placeholder columns"""
        executor = FakeExecutor(version="20.3")
        QueryGateway([executor]).run_table("part-info", 0, {"table": "events"})
        assert "0 AS primary_key_bytes_in_memory" in executor.queries()[-1]

    def test_unknown_table_query(self, gateway):
        """Unknown names are 404"""
        resp = gateway.run_table("nope", 0)
        assert resp.status_code == 404
        assert "backups" in resp.payload()["error"]["details"]["availableTables"]

    def test_optional_config_missing_table(self):
        """backups without backup_log returns no data"""
        executor = FakeExecutor().on("FROM system.tables", [{"exists": 0}])
        body = QueryGateway([executor]).run_table("backups", 0).payload()
        assert body["success"] is True
        assert body["data"] == []
        assert body["metadata"]["missingTables"] == ["system.backup_log"]

    def test_optional_config_old_server(self):
        """Tables newer than the server are skipped without a lookup"""
        executor = FakeExecutor(version="21.3")
        body = QueryGateway([executor]).run_table("backups", 0).payload()
        assert body["metadata"]["status"] == "table_not_found"
        assert not any("system.tables" in q for q in executor.queries())


class TestRunData:
    """Ad-hoc SELECT execution"""

    def test_success(self):
        """Params are sanitized and the format is forwarded"""
        executor = FakeExecutor(rows="1,2\n")
        body = {"query": "SELECT 1", "hostId": "0", "format": "CSV", "queryParams": {"ids": [1, 2]}}
        resp = QueryGateway([executor]).run_data(body)
        assert resp.status_code == 200
        assert resp.payload()["data"] == "1,2\n"
        assert executor.calls == [("SELECT 1", {"ids": "1,2"}, "CSV")]

    def test_validation_order(self, gateway):
        """query is checked first"""
        resp = gateway.run_data({"hostId": 0})
        assert resp.status_code == 400
        assert resp.payload()["error"]["message"] == "Missing required field: query"

    def test_dangerous_sql(self, gateway, executor):
        """Unsafe SQL never reaches the server"""
        resp = gateway.run_data({"query": "DROP TABLE x", "hostId": 0})
        assert resp.status_code == 400
        assert resp.payload()["error"]["type"] == "validation_error"
        assert executor.calls == []

    def test_params_must_be_object(self, gateway):
        """queryParams must be a mapping"""
        resp = gateway.run_data({"query": "SELECT 1", "hostId": 0, "queryParams": [1]})
        assert resp.status_code == 400

    def test_permission_error(self):
        """Permission failures map to 403"""
        executor = FakeExecutor().on("SELECT 1", ExecutionError("Code: 497. Not enough privileges. Access denied"))
        resp = QueryGateway([executor]).run_data({"query": "SELECT 1", "hostId": 0})
        assert resp.status_code == 403
        assert resp.payload()["error"]["type"] == "permission_error"
