"""Chat API backend: MCP server connections over OAuth 2.0."""

__version__ = "1.0.0"
