"""
Terminal HTML pages rendered into the OAuth popup.

Each page posts a single message to ``window.opener`` at the app's own origin
and then closes itself. Values that may come from the query string (``error``,
``error_description``) are escaped for the HTML body and for the inline script.
"""

from __future__ import annotations

import html
import json
from typing import Any, Dict

from starlette.responses import HTMLResponse

SUCCESS_MESSAGE_TYPE = "mcp-oauth-success"
ERROR_MESSAGE_TYPE = "mcp-oauth-error"

CONTENT_SECURITY_POLICY = "default-src 'none'; script-src 'unsafe-inline'"

PAGE_HEADERS = {
    "Content-Security-Policy": CONTENT_SECURITY_POLICY,
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}

_SCRIPT_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "'": "\\u0027",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}

_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>{title}</title>
    <script>
      (function () {{
        var message = {message};
        var targetOrigin = {target_origin};
        if (window.opener) {{
          window.opener.postMessage(message, targetOrigin);
        }}
        setTimeout(function () {{ window.close(); }}, {close_delay_ms});
      }})();
    </script>
  </head>
  <body>
    <h1>{heading}</h1>
    <p>{body}</p>
    <p>This window will close automatically...</p>
  </body>
</html>
"""


def script_json(value: Any) -> str:
    """Serialize ``value`` for embedding inside an inline ``<script>`` block."""
    encoded = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    for char, replacement in _SCRIPT_ESCAPES.items():
        encoded = encoded.replace(char, replacement)
    return encoded


def render_page(
    title: str,
    heading: str,
    body: str,
    message: Dict[str, Any],
    target_origin: str,
    close_delay_ms: int = 0,
) -> str:
    return _PAGE_TEMPLATE.format(
        title=html.escape(title),
        heading=html.escape(heading),
        body=html.escape(body),
        message=script_json(message),
        target_origin=script_json(target_origin),
        close_delay_ms=int(close_delay_ms),
    )


def success_page(connection_id: str, session_id: str, target_origin: str) -> HTMLResponse:
    content = render_page(
        title="OAuth Success",
        heading="Authentication Successful",
        body="You can now close this window.",
        message={
            "type": SUCCESS_MESSAGE_TYPE,
            "connectionId": connection_id,
            "sessionId": session_id,
        },
        target_origin=target_origin,
    )
    return HTMLResponse(content=content, status_code=200, headers=PAGE_HEADERS)


def error_page(
    error: str,
    description: str,
    target_origin: str,
    status_code: int = 400,
    heading: str = "Authentication Error",
) -> HTMLResponse:
    content = render_page(
        title="OAuth Error",
        heading=heading,
        body=description or error,
        message={
            "type": ERROR_MESSAGE_TYPE,
            "error": error,
            "description": description or "Unknown error",
        },
        target_origin=target_origin,
        close_delay_ms=3000,
    )
    return HTMLResponse(content=content, status_code=status_code, headers=PAGE_HEADERS)
