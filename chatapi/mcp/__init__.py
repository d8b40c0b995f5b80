"""
MCP (Model Context Protocol) server connections.

Lets a browser session attach remote MCP servers that are protected by
OAuth 2.0 authorization code + PKCE.

Flow:
1. POST /mcp/connect discovers endpoints, registers a public client and
   stores a single-use ``state`` record in Redis
2. The browser opens ``authUrl`` in a popup
3. GET /mcp/oauth/callback exchanges the code and stores tokens on the
   connection, then posts a message back to the opener
4. POST /mcp/list and /mcp/disconnect manage stored connections
"""
