"""Built-in MCP connectors offered in the connect dialog."""

from __future__ import annotations

from typing import List, Optional

from pydantic import Field

from chatapi.mcp.models import CamelModel


class BuiltInConnector(CamelModel):
    id: str
    name: str
    description: str
    endpoint: str
    icon: Optional[str] = None
    requires_api_key: bool = False
    api_key_label: Optional[str] = None
    api_key_placeholder: Optional[str] = None
    docs_url: Optional[str] = None


class ConnectorCatalog(CamelModel):
    connectors: List[BuiltInConnector] = Field(default_factory=list)


BUILT_IN_CONNECTORS: List[BuiltInConnector] = [
    BuiltInConnector(
        id="sentry",
        name="Sentry",
        description=(
            "Connect to Sentry for error tracking, issue management, "
            "and performance monitoring"
        ),
        endpoint="https://mcp.sentry.dev/mcp",
        icon="\U0001F50D",
        requires_api_key=False,
        docs_url="https://docs.sentry.io/product/sentry-mcp/",
    ),
]
