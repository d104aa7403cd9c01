import pytest
from fastapi.testclient import TestClient

from rtm_fakes import ok
from rtm_mcp.errors import INVALID_REQUEST, PARSE_ERROR
from rtm_mcp.http_app import create_app
from rtm_mcp.protocol import ProtocolSession
from rtm_mcp.tools import build_tools

TOKEN = "s3cret"


@pytest.fixture
def protocol(rtm_tools):
    return ProtocolSession(build_tools(rtm_tools))


@pytest.fixture
def http(protocol):
    return TestClient(create_app(protocol, auth_token=TOKEN))


def _rpc(msg_id, method, params=None):
    return {"jsonrpc": "2.0", "id": msg_id, "method": method, "params": params or {}}


def test_health(http):
    response = http.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["server"] == "RTM MCP Server"
    assert body["timestamp"]


def test_root_banner(http):
    response = http.get("/")
    assert "POST JSON-RPC requests to /mcp" in response.text


def test_initialize_without_token(http):
    response = http.post("/mcp", json=_rpc(1, "initialize"))

    assert response.status_code == 200
    assert response.json()["result"]["serverInfo"]["name"] == "rtm-mcp"


def test_initialized_notification_without_token(http):
    response = http.post("/mcp", json={"jsonrpc": "2.0", "method": "notifications/initialized"})
    assert response.status_code == 202


def test_tools_list_requires_token(http):
    response = http.post("/mcp", json=_rpc(2, "tools/list"))

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == 'Bearer realm="RTM MCP Server"'
    assert response.json()["error"]["code"] == INVALID_REQUEST
    assert response.json()["id"] == 2


def test_wrong_token_rejected(http):
    response = http.post("/mcp", json=_rpc(2, "tools/list"), headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


def test_tools_list_with_token(http):
    response = http.post("/mcp", json=_rpc(2, "tools/list"), headers={"Authorization": f"Bearer {TOKEN}"})

    assert response.status_code == 200
    assert len(response.json()["result"]["tools"]) == 30


def test_access_header_bypasses_bearer(http):
    response = http.post("/mcp", json=_rpc(2, "tools/list"), headers={"Cf-Access-Jwt-Assertion": "jwt"})
    assert response.status_code == 200


def test_legacy_path_routes_the_same(fake_rtm, http):
    fake_rtm.on("rtm.test.echo", ok(test="hello"))

    response = http.post(
        "/sse",
        json=_rpc(3, "tools/call", {"name": "test_connection"}),
        headers={"Authorization": f"Bearer {TOKEN}"},
    )

    assert response.status_code == 200
    assert "connection successful" in response.json()["result"]["content"][0]["text"]


def test_unparseable_body(http):
    response = http.post("/mcp", content=b"{not json", headers={"Content-Type": "application/json"})

    assert response.status_code == 400
    assert response.json() == {"jsonrpc": "2.0", "id": None, "error": {"code": PARSE_ERROR, "message": "Parse error"}}


def test_no_auth_configured_allows_everything(protocol):
    http = TestClient(create_app(protocol))

    response = http.post("/mcp", json=_rpc(2, "tools/list"))

    assert response.status_code == 200


def test_discovery_includes_access_endpoints(protocol):
    http = TestClient(create_app(protocol, team_domain="team.cloudflareaccess.com"))

    body = http.get("/mcp-discovery").json()

    assert body["mcp_endpoint"] == "/mcp"
    assert body["auth"]["token_url"] == "https://team.cloudflareaccess.com/cdn-cgi/access/token"
