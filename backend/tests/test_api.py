"""
HTTP-level tests for the FastAPI routes.
"""
import pytest
from fastapi.testclient import TestClient

from querygate.main import app
from querygate.service import QueryGateway, get_gateway

from fakes import FakeExecutor


@pytest.fixture
def client(executor):
    app.dependency_overrides[get_gateway] = lambda: QueryGateway([executor])
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


class TestHealthAndMetrics:
    """Service endpoints"""

    def test_healthz(self, client):
        """Health reports app name and host count"""
        resp = client.get("/api/healthz")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.json()["hosts"] >= 1

    def test_metrics_exposition(self, client):
        """Request metrics are exported in Prometheus text format"""
        client.get("/api/charts/query-count", params={"hostId": 0})
        text = client.get("/api/metrics").text
        assert "# TYPE querygate_request_duration_ms summary" in text
        assert 'querygate_queries_total{kind="chart",outcome="ok"} 1.0' in text


class TestChartRoutes:
    """GET /api/charts"""

    def test_list(self, client):
        """All chart keys are listed"""
        charts = client.get("/api/charts").json()["charts"]
        assert "memory-usage" in charts

    def test_run(self, client, executor):
        """Query string params reach the builder"""
        resp = client.get("/api/charts/query-count", params={"hostId": 0, "interval": "toStartOfHour", "lastHours": 3})
        body = resp.json()
        assert resp.status_code == 200
        assert body["success"] is True
        assert body["metadata"]["api"] == "/api/charts/query-count"
        assert "toStartOfHour(event_time)" in executor.queries()[-1]
        assert "INTERVAL 3 HOUR" in executor.queries()[-1]

    def test_extra_params_json(self, client, executor):
        """params is a JSON object of builder options"""
        client.get("/api/charts/top-table-size", params={"hostId": 0, "params": '{"limit": 3}'})
        assert executor.queries()[-1].rstrip().endswith("LIMIT 3")

    @pytest.mark.parametrize("query,message", [
        ({"hostId": 0, "interval": "toStartOfYear"}, "Invalid interval"),
        ({"hostId": 0, "lastHours": "abc"}, "Invalid lastHours"),
        ({"hostId": 0, "params": "[1]"}, "Invalid params"),
        ({}, "Missing required parameter: hostId"),
    ])
    def test_bad_params(self, client, query, message):
        """Malformed query strings are 400 validation errors"""
        resp = client.get("/api/charts/query-count", params=query)
        assert resp.status_code == 400
        assert resp.json()["error"]["type"] == "validation_error"
        assert resp.json()["error"]["message"].startswith(message)

    def test_unknown(self, client):
        """Unknown charts are 404"""
        resp = client.get("/api/charts/nope", params={"hostId": 0})
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "Chart not found: nope"


class TestTableRoutes:
    """GET /api/tables"""

    def test_list(self, client):
        """Catalog names are listed"""
        assert "part-info" in client.get("/api/tables").json()["tables"]

    def test_run_binds_query_string(self, client, executor):
        """Everything except hostId is bound as a parameter"""
        resp = client.get("/api/tables/part-info", params={"hostId": 0, "database": "logs", "table": "hits"})
        assert resp.status_code == 200
        _, params, _ = executor.calls[-1]
        assert params == {"database": "logs", "table": "hits"}


class TestDataRoute:
    """POST /api/data"""

    def test_run(self, client, executor):
        """A valid body executes"""
        resp = client.post("/api/data", json={"query": "SELECT 1", "hostId": 0})
        assert resp.status_code == 200
        assert resp.json()["data"] == [{"value": 1}]

    def test_rejects_mutation(self, client, executor):
        """Mutations are refused before execution"""
        resp = client.post("/api/data", json={"query": "DELETE FROM t WHERE 1", "hostId": 0})
        assert resp.status_code == 400
        assert executor.calls == []

    def test_rejects_non_object_body(self, client):
        """The body must be a JSON object"""
        resp = client.post("/api/data", content=b"[1, 2]", headers={"content-type": "application/json"})
        assert resp.status_code == 400
        resp = client.post("/api/data", content=b"not json", headers={"content-type": "application/json"})
        assert resp.status_code == 400

    def test_unknown_host(self):
        """Hosts are looked up by index"""
        app.dependency_overrides[get_gateway] = lambda: QueryGateway([FakeExecutor("a"), FakeExecutor("b")])
        try:
            with TestClient(app) as c:
                resp = c.post("/api/data", json={"query": "SELECT 1", "hostId": 2})
        finally:
            app.dependency_overrides.clear()
        assert resp.status_code == 400
        assert "(total: 2)" in resp.json()["error"]["message"]


class TestUnexpectedErrors:
    """Exceptions that escape the gateway"""

    def test_envelope_returned(self):
        """Unhandled exceptions become a 500 query_error envelope"""
        executor = FakeExecutor().on("SELECT 1", RuntimeError("executor exploded"))
        app.dependency_overrides[get_gateway] = lambda: QueryGateway([executor])
        try:
            with TestClient(app, raise_server_exceptions=False) as c:
                resp = c.post("/api/data", json={"query": "SELECT 1", "hostId": 0})
        finally:
            app.dependency_overrides.clear()
        assert resp.status_code == 500
        assert resp.json()["error"] == {"type": "query_error", "message": "executor exploded"}
