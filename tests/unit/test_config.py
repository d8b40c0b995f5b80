"""
Unit tests for application settings.
"""

import pytest
from pydantic import ValidationError

from chatapi.config import Settings


class TestSettings:
    def test_defaults(self):
        settings = Settings(redis_url="")

        assert settings.mcp_state_ttl_seconds == 600
        assert settings.mcp_client_name == "Chat MCP Client"
        assert not settings.redis_configured

    def test_redis_token_is_optional(self):
        settings = Settings(redis_url="redis://localhost:6379/0", redis_token="")

        assert settings.redis_configured

    def test_public_origin_trailing_slash_is_stripped(self):
        settings = Settings(public_origin="https://chat.example.com/")

        assert settings.public_origin == "https://chat.example.com"

    def test_public_origin_requires_scheme(self):
        with pytest.raises(ValidationError):
            Settings(public_origin="chat.example.com")

    def test_state_ttl_is_capped(self):
        with pytest.raises(ValidationError):
            Settings(mcp_state_ttl_seconds=601)

    def test_production_rejects_wildcard_cors(self):
        with pytest.raises(ValidationError):
            Settings(environment="production", cors_origins="*")

    def test_production_requires_https_origin(self):
        with pytest.raises(ValidationError):
            Settings(
                environment="production",
                cors_origins="https://chat.example.com",
                public_origin="http://chat.example.com",
            )

    def test_cors_origins_list(self):
        settings = Settings(cors_origins="https://a.example.com, https://b.example.com")

        assert settings.cors_origins_list == ["https://a.example.com", "https://b.example.com"]
