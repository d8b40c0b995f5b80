from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings with validation.

    All sensitive values should be provided via environment variables.
    """

    # Environment
    environment: str = Field(
        default="development",
        description="Environment: development, staging, production"
    )

    # CORS - comma-separated origins or * for development
    cors_origins: str = Field(
        default="*",
        description="Comma-separated list of allowed origins, or * for all (dev only)"
    )

    # Externally visible origin of this app (scheme://host[:port]).
    # Used for OAuth redirect_uri, client_uri and postMessage target origin.
    public_origin: Optional[str] = Field(
        default=None,
        description="Public origin of the app; defaults to the request origin"
    )

    # Redis (MCP OAuth state and connection storage)
    redis_url: str = Field(
        default="",
        description="Redis connection URL; MCP endpoints answer 503 when unset"
    )
    redis_token: str = Field(
        default="",
        description="Redis password/token, if not embedded in REDIS_URL"
    )

    # MCP OAuth
    mcp_client_name: str = Field(
        default="Chat MCP Client",
        description="client_name sent during dynamic client registration"
    )
    mcp_discovery_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Timeout for OAuth metadata discovery"
    )
    mcp_http_timeout_seconds: float = Field(
        default=15.0, gt=0, description="Timeout for registration and token requests"
    )
    mcp_state_ttl_seconds: int = Field(
        default=600, gt=0, le=600, description="Lifetime of an OAuth state token"
    )
    mcp_connection_ttl_seconds: int = Field(
        default=3600 * 24 * 7, gt=0, description="Lifetime of a stored MCP connection"
    )

    # Misc
    log_level: str = "INFO"
    debug: bool = False

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "staging", "production"}
        if v.lower() not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v.lower()

    @field_validator("public_origin")
    @classmethod
    def validate_public_origin(cls, v: Optional[str]) -> Optional[str]:
        if not v:
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError("public_origin must start with http:// or https://")
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate that required settings are properly configured in production."""
        if self.environment != "production":
            return self

        errors = []

        # CORS should not be wildcard in production
        if self.cors_origins == "*":
            errors.append("CORS_ORIGINS must not be '*' in production")

        if self.public_origin and not self.public_origin.startswith("https://"):
            errors.append("PUBLIC_ORIGIN must use https in production")

        if errors:
            raise ValueError(
                "Production configuration errors:\n- " + "\n- ".join(errors)
            )

        return self

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def redis_configured(self) -> bool:
        """MCP features need a Redis URL; the token is optional."""
        return bool(self.redis_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
