"""
Tests for the HTTP transport (Starlette app).
"""
import json

import httpx
import pytest
from starlette.testclient import TestClient

from qbcore.quickbase.client import QuickBaseClient
from qbgateway.mcp.http_server import create_app
from qbgateway.mcp.server import QuickBaseMCPServer
from qbgateway.mcp.tools import TOOLS


@pytest.fixture
def http(config, fake_qb):
    qb = QuickBaseClient(config, transport=httpx.MockTransport(fake_qb), retry_backoff=0)
    app = create_app(QuickBaseMCPServer(client=qb))
    with TestClient(app) as test_client:
        yield test_client


class TestApiEndpoints:
    """Health and tool listing."""

    def test_health(self, http) -> None:
        resp = http.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["service"] == "quickbase-mcp"
        assert data["tools_count"] == len(TOOLS)

    def test_tools(self, http) -> None:
        data = http.get("/api/tools").json()
        assert data["count"] == len(TOOLS)
        assert data["tools"][0]["name"] == TOOLS[0]["name"]


class TestMcpEndpoints:
    """JSON-RPC over HTTP."""

    def test_initialize(self, http) -> None:
        resp = http.post("/mcp", json={"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}})
        assert resp.status_code == 200
        assert resp.json()["result"]["serverInfo"]["name"] == "quickbase-mcp"

    def test_tool_call(self, http, fake_qb) -> None:
        fake_qb.add("GET", "/apps/bapp123", {"id": "bapp123", "name": "Dealer"})
        resp = http.post("/mcp", json={
            "jsonrpc": "2.0", "id": 2, "method": "tools/call",
            "params": {"name": "quickbase_get_app_info", "arguments": {}},
        })
        text = resp.json()["result"]["content"][0]["text"]
        assert json.loads(text)["name"] == "Dealer"

    def test_sse_response_when_requested(self, http) -> None:
        resp = http.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 3, "method": "ping"},
            headers={"Accept": "application/json, text/event-stream"},
        )
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.text.startswith("event: message\ndata: ")
        payload = json.loads(resp.text.split("data: ", 1)[1].strip())
        assert payload == {"jsonrpc": "2.0", "id": 3, "result": {}}

    def test_notification_accepted(self, http) -> None:
        resp = http.post("/mcp/message", json={"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert resp.status_code == 202

    def test_parse_error(self, http) -> None:
        resp = http.post("/mcp/message", content=b"{oops", headers={"Content-Type": "application/json"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == -32700

    def test_message_endpoint(self, http) -> None:
        resp = http.post("/mcp/message?session_id=abc", json={"jsonrpc": "2.0", "id": 9, "method": "tools/list"})
        assert len(resp.json()["result"]["tools"]) == len(TOOLS)

    def test_params_must_be_object(self, http) -> None:
        resp = http.post("/mcp", json={"jsonrpc": "2.0", "id": 4, "method": "tools/call", "params": ["x"]})
        assert resp.status_code == 200
        assert resp.json()["error"]["code"] == -32600

    def test_internal_error_reported(self, http, monkeypatch) -> None:
        def broken():
            raise RuntimeError("registry unavailable")

        monkeypatch.setattr(http.app.state.mcp, "get_tools", broken)
        resp = http.post("/mcp/message", json={"jsonrpc": "2.0", "id": 5, "method": "tools/list"})
        assert resp.status_code == 200
        assert resp.json()["error"]["code"] == -32603
        assert resp.json()["id"] == 5
