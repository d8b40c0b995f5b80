"""
Integration tests for the MCP connection endpoints.
"""

import json
from urllib.parse import parse_qs, urlparse

import pytest

from chatapi.mcp.models import now_ms

ENDPOINT = "https://example.com/mcp"
CALLBACK_URI = "http://testserver/mcp/oauth/callback"


def _state_from(auth_url: str) -> str:
    return parse_qs(urlparse(auth_url).query)["state"][0]


@pytest.mark.integration
class TestConnectFlow:
    """Connect, complete the OAuth callback, list and disconnect."""

    def test_end_to_end(self, client, fake_redis, oauth_server):
        response = client.post(
            "/mcp/connect",
            json={"endpoint": ENDPOINT, "name": "Test", "sessionId": "sess-1"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["requiresAuth"] is True
        assert data["sessionId"] == "sess-1"
        connection_id = data["connectionId"]

        params = parse_qs(urlparse(data["authUrl"]).query)
        assert data["authUrl"].startswith("https://example.com/authorize?")
        assert params["client_id"] == ["client_123"]
        assert params["redirect_uri"] == [CALLBACK_URI]
        assert params["code_challenge_method"] == ["S256"]

        registration = json.loads(oauth_server.requests_to("/register")[0].content)
        assert registration["redirect_uris"] == [CALLBACK_URI]

        before = now_ms()
        callback = client.get(
            "/mcp/oauth/callback",
            params={"code": "code-1", "state": _state_from(data["authUrl"])},
        )

        assert callback.status_code == 200
        assert callback.headers["content-type"].startswith("text/html")
        assert "mcp-oauth-success" in callback.text
        assert connection_id in callback.text

        stored = json.loads(fake_redis.data[f"conn:sess-1:{connection_id}"])
        assert stored["accessToken"] == "tok_abc"
        assert before + 3_600_000 <= stored["tokenExpiresAt"] <= now_ms() + 3_600_000

        listed = client.post("/mcp/list", json={"sessionId": "sess-1"})

        assert listed.status_code == 200
        assert listed.json() == {
            "connections": [
                {
                    "id": connection_id,
                    "name": "Test",
                    "endpoint": ENDPOINT,
                    "hasAuth": True,
                    "createdAt": stored["createdAt"],
                }
            ]
        }

        removed = client.post(
            "/mcp/disconnect", json={"connectionId": connection_id, "sessionId": "sess-1"}
        )

        assert removed.status_code == 200
        assert removed.json() == {"success": True, "message": "MCP connection removed successfully"}
        assert client.post("/mcp/list", json={"sessionId": "sess-1"}).json() == {"connections": []}

    def test_pending_connection_is_listed_without_auth(self, client):
        data = client.post(
            "/mcp/connect", json={"endpoint": ENDPOINT, "sessionId": "sess-1"}
        ).json()

        connections = client.post("/mcp/list", json={"sessionId": "sess-1"}).json()["connections"]

        assert [c["id"] for c in connections] == [data["connectionId"]]
        assert connections[0]["hasAuth"] is False
        assert connections[0]["name"] == "example.com"

    def test_callback_replay_is_rejected(self, client, oauth_server):
        data = client.post(
            "/mcp/connect", json={"endpoint": ENDPOINT, "sessionId": "sess-1"}
        ).json()
        params = {"code": "code-1", "state": _state_from(data["authUrl"])}

        first = client.get("/mcp/oauth/callback", params=params)
        second = client.get("/mcp/oauth/callback", params=params)

        assert first.status_code == 200
        assert second.status_code == 400
        assert "Invalid or expired state parameter" in second.text
        assert len(oauth_server.requests_to("/token")) == 1

    def test_sessions_are_isolated(self, client):
        client.post("/mcp/connect", json={"endpoint": ENDPOINT, "sessionId": "sess-1"})

        response = client.post("/mcp/list", json={"sessionId": "sess-2"})

        assert response.json() == {"connections": []}

    def test_connect_without_auth(self, client, oauth_server):
        response = client.post(
            "/mcp/connect",
            json={"endpoint": ENDPOINT, "sessionId": "sess-1", "requiresAuth": False},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["connection"]["hasAuth"] is False
        assert oauth_server.requests == []

    def test_static_client(self, client, oauth_server):
        response = client.post(
            "/mcp/connect",
            json={
                "endpoint": ENDPOINT,
                "sessionId": "sess-1",
                "clientId": "static-client",
                "authorizationEndpoint": "https://auth.example.com/authorize",
                "tokenEndpoint": "https://example.com/token",
            },
        )

        assert response.status_code == 200
        auth_url = response.json()["authUrl"]
        assert auth_url.startswith("https://auth.example.com/authorize?")
        assert oauth_server.requests == []

    def test_authorize_with_connection_id(self, client):
        response = client.post(
            "/mcp/oauth/authorize",
            json={"endpoint": ENDPOINT, "sessionId": "sess-1", "connectionId": "my-conn"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["connectionId"] == "my-conn"
        assert data["sessionId"] == "sess-1"
        assert "requiresAuth" not in data


@pytest.mark.integration
class TestCallbackErrors:
    def test_provider_error_makes_no_store_calls(self, client, fake_redis):
        response = client.get(
            "/mcp/oauth/callback",
            params={"error": "access_denied", "error_description": "User denied"},
        )

        assert response.status_code == 400
        assert "mcp-oauth-error" in response.text
        assert "access_denied" in response.text
        assert fake_redis.calls == []

    def test_security_headers(self, client):
        response = client.get("/mcp/oauth/callback", params={"error": "access_denied"})

        assert response.headers["content-security-policy"] == (
            "default-src 'none'; script-src 'unsafe-inline'"
        )
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["cache-control"] == "no-store"

    def test_hostile_error_is_escaped(self, client):
        response = client.get(
            "/mcp/oauth/callback",
            params={"error": "x", "error_description": "<script>alert(1)</script>"},
        )

        assert "<script>alert(1)</script>" not in response.text
        assert "&lt;script&gt;alert(1)&lt;/script&gt;" in response.text

    def test_token_exchange_failure(self, client, oauth_server):
        oauth_server.token_status = 400
        oauth_server.token_body = "invalid_grant"
        data = client.post(
            "/mcp/connect", json={"endpoint": ENDPOINT, "sessionId": "sess-1"}
        ).json()

        response = client.get(
            "/mcp/oauth/callback",
            params={"code": "code-1", "state": _state_from(data["authUrl"])},
        )

        assert response.status_code == 500
        assert "Authentication Failed" in response.text
        assert "OAuth token exchange failed: 400 invalid_grant" in response.text


@pytest.mark.integration
class TestErrors:
    def test_registration_failure(self, client, oauth_server, fake_redis):
        oauth_server.registration_status = 500
        oauth_server.registration_body = {"error": "server_error"}

        response = client.post("/mcp/connect", json={"endpoint": ENDPOINT, "sessionId": "sess-1"})

        assert response.status_code == 502
        assert response.json()["error"] == "REGISTRATION_FAILED"
        assert fake_redis.data == {}

    def test_missing_client_id(self, client, oauth_server):
        oauth_server.registration_body = {"client_name": "no id"}

        response = client.post("/mcp/connect", json={"endpoint": ENDPOINT, "sessionId": "sess-1"})

        assert response.status_code == 502
        assert response.json()["message"] == "Invalid registration response: missing client_id"

    def test_validation_error(self, client):
        response = client.post("/mcp/connect", json={"endpoint": "not-a-url", "sessionId": "s"})

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "VALIDATION_ERROR"
        assert any(e["field"] == "endpoint" for e in data["details"]["errors"])

    def test_disconnect_unknown_connection_succeeds(self, client):
        response = client.post(
            "/mcp/disconnect", json={"connectionId": "nope", "sessionId": "sess-1"}
        )

        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_disconnect_rejects_unsafe_id(self, client):
        response = client.post(
            "/mcp/disconnect", json={"connectionId": "a:b", "sessionId": "sess-1"}
        )

        assert response.status_code == 400


@pytest.mark.integration
class TestNotConfigured:
    """Without REDIS_URL every MCP endpoint fails fast."""

    @pytest.mark.parametrize(
        "path,body",
        [
            ("/mcp/connect", {"endpoint": ENDPOINT, "sessionId": "sess-1"}),
            ("/mcp/oauth/authorize", {"endpoint": ENDPOINT, "sessionId": "s", "connectionId": "c"}),
            ("/mcp/list", {"sessionId": "sess-1"}),
            ("/mcp/disconnect", {"connectionId": "c", "sessionId": "sess-1"}),
            ("/mcp/connect", {}),
        ],
    )
    def test_json_endpoints_return_503(self, unconfigured_client, oauth_server, path, body):
        response = unconfigured_client.post(path, json=body)

        assert response.status_code == 503
        data = response.json()
        assert data["error"] == "REDIS_CONFIG_MISSING"
        assert data["message"] == "MCP features are not configured"
        assert oauth_server.requests == []

    @pytest.mark.parametrize("path", ["/mcp/connect", "/mcp/list"])
    def test_malformed_body_still_returns_503(self, unconfigured_client, path):
        response = unconfigured_client.post(
            path,
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 503
        assert response.json()["error"] == "REDIS_CONFIG_MISSING"

    def test_callback_renders_error_page(self, unconfigured_client):
        response = unconfigured_client.get(
            "/mcp/oauth/callback", params={"code": "c", "state": "s"}
        )

        assert response.status_code == 503
        assert response.headers["content-type"].startswith("text/html")
        assert "mcp-oauth-error" in response.text
        assert "REDIS_CONFIG_MISSING" in response.text


@pytest.mark.integration
class TestConnectors:
    def test_lists_built_in_connectors(self, unconfigured_client):
        response = unconfigured_client.get("/mcp/connectors")

        assert response.status_code == 200
        connectors = response.json()["connectors"]
        sentry = next(c for c in connectors if c["id"] == "sentry")
        assert sentry["endpoint"] == "https://mcp.sentry.dev/mcp"
        assert sentry["requiresApiKey"] is False
