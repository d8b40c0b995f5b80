"""
Pytest configuration and fixtures for Chat API tests.
"""

import os
import re
from typing import Any, Dict, Generator, List, Optional, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient

# Set test environment
os.environ["ENVIRONMENT"] = "development"
os.environ["REDIS_URL"] = ""
os.environ["PUBLIC_ORIGIN"] = ""

from chatapi.config import Settings, get_settings
from chatapi.main import app
from chatapi.mcp.dependencies import get_http_client, get_redis_provider
from chatapi.mcp.discovery import WELL_KNOWN_PATH
from chatapi.services.redis_store import RedisClientProvider

MCP_ORIGIN = "https://example.com"
MCP_ENDPOINT = f"{MCP_ORIGIN}/mcp"


def _glob_to_regex(pattern: str) -> "re.Pattern[str]":
    """Translate a Redis MATCH pattern, honouring backslash escapes."""
    out = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if char == "*":
            out.append(".*")
        elif char == "?":
            out.append(".")
        else:
            out.append(re.escape(char))
        i += 1
    return re.compile("^" + "".join(out) + "$", re.DOTALL)


class FakeRedis:
    """The subset of redis.asyncio.Redis used by the stores."""

    def __init__(self) -> None:
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.calls: List[Tuple[str, Any]] = []

    def calls_to(self, method: str) -> List[Any]:
        return [args for name, args in self.calls if name == method]

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        self.calls.append(("set", key))
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def get(self, key: str) -> Optional[str]:
        self.calls.append(("get", key))
        return self.data.get(key)

    async def getdel(self, key: str) -> Optional[str]:
        self.calls.append(("getdel", key))
        self.ttls.pop(key, None)
        return self.data.pop(key, None)

    async def delete(self, *keys: str) -> int:
        self.calls.append(("delete", keys))
        removed = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                self.ttls.pop(key, None)
                removed += 1
        return removed

    async def scan(self, cursor: int = 0, match: Optional[str] = None, count: Optional[int] = None):
        self.calls.append(("scan", match))
        regex = _glob_to_regex(match) if match else None
        keys = sorted(k for k in self.data if regex is None or regex.match(k))
        # Two-key pages so callers have to follow the cursor
        page = keys[cursor:cursor + 2]
        next_cursor = cursor + 2 if cursor + 2 < len(keys) else 0
        return next_cursor, page

    async def mget(self, keys: List[str]) -> List[Optional[str]]:
        self.calls.append(("mget", tuple(keys)))
        return [self.data.get(k) for k in keys]

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass


class MockOAuthServer:
    """
    An MCP server's authorization server behind httpx.MockTransport.

    Without ``metadata`` the well-known document is a 404, so clients fall
    back to ``/register``, ``/authorize`` and ``/token`` on the origin.
    """

    def __init__(self, origin: str = MCP_ORIGIN) -> None:
        self.origin = origin
        self.metadata: Optional[Dict[str, Any]] = None
        self.registration_status = 201
        self.registration_body: Any = {"client_id": "client_123"}
        self.token_status = 200
        self.token_body: Any = {
            "access_token": "tok_abc",
            "token_type": "bearer",
            "expires_in": 3600,
            "refresh_token": "ref_xyz",
        }
        self.requests: List[httpx.Request] = []

    def requests_to(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    @staticmethod
    def _json(status: int, body: Any) -> httpx.Response:
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, text=str(body))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == WELL_KNOWN_PATH:
            if self.metadata is None:
                return httpx.Response(404, text="Not Found")
            return httpx.Response(200, json=self.metadata)
        if path == "/register":
            return self._json(self.registration_status, self.registration_body)
        if path == "/token":
            return self._json(self.token_status, self.token_body)
        return httpx.Response(404, text="Not Found")


@pytest.fixture
def test_settings() -> Settings:
    """Settings with Redis configured."""
    return Settings(
        environment="development",
        cors_origins="*",
        redis_url="redis://fake:6379/0",
        mcp_client_name="Test MCP Client",
    )


@pytest.fixture
def unconfigured_settings() -> Settings:
    return Settings(environment="development", cors_origins="*", redis_url="")


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def oauth_server() -> MockOAuthServer:
    return MockOAuthServer()


@pytest.fixture
def http_client(oauth_server) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(oauth_server.handler))


@pytest.fixture
def redis_provider(test_settings, fake_redis) -> RedisClientProvider:
    return RedisClientProvider(test_settings, client=fake_redis)


@pytest.fixture
def client(test_settings, redis_provider, http_client) -> Generator[TestClient, None, None]:
    """Test client wired to the fake Redis and the mock OAuth server."""
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_redis_provider] = lambda: redis_provider
    app.dependency_overrides[get_http_client] = lambda: http_client
    with TestClient(app) as c:
        app.state.settings = test_settings
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def unconfigured_client(unconfigured_settings, http_client) -> Generator[TestClient, None, None]:
    """Test client for an app without REDIS_URL."""
    app.dependency_overrides[get_settings] = lambda: unconfigured_settings
    app.dependency_overrides[get_http_client] = lambda: http_client
    with TestClient(app) as c:
        app.state.settings = unconfigured_settings
        yield c
    app.dependency_overrides.clear()
