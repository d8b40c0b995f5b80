"""
Opener-side model of the OAuth popup handshake.

The opener waits for exactly one ``mcp-oauth-success`` / ``mcp-oauth-error``
message from the popup it opened. Messages are accepted only when they come
from that popup *and* from the app's own origin or the provider's origin.
Window closure cannot be observed as an event, so a watchdog polls
``is_closed`` until the flow resolves or the timeout elapses.

Every listener and timer is registered with a ``CleanupRegistry``; the owner
calls ``run_all()`` on teardown so nothing outlives it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, List, Literal, Mapping, Optional

from chatapi.logger import logger
from chatapi.mcp.pages import ERROR_MESSAGE_TYPE, SUCCESS_MESSAGE_TYPE

DEFAULT_POLL_INTERVAL = 0.5
DEFAULT_TIMEOUT = 300.0


class CleanupRegistry:
    """Cancellation callbacks, each run at most once."""

    def __init__(self) -> None:
        self._callbacks: List[Callable[[], None]] = []

    def __len__(self) -> int:
        return len(self._callbacks)

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it."""
        self._callbacks.append(callback)

        def unregister() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unregister

    def run_all(self) -> None:
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:  # noqa: BLE001
                logger.warning("cleanup_callback_failed", error=str(e))


@dataclass(frozen=True)
class HandshakeResult:
    status: Literal["success", "error"]
    connection_id: Optional[str] = None
    session_id: Optional[str] = None
    error: Optional[str] = None
    description: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


class PopupHandshake:
    """pending -> resolved{success|error}"""

    def __init__(
        self,
        popup: Any,
        own_origin: str,
        provider_origin: Optional[str] = None,
        close_popup: Optional[Callable[[], None]] = None,
        registry: Optional[CleanupRegistry] = None,
        timeout: float = DEFAULT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.popup = popup
        self.allowed_origins = {own_origin}
        if provider_origin:
            self.allowed_origins.add(provider_origin)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.result: Optional[HandshakeResult] = None

        self._close_popup = close_popup
        self._resolved = asyncio.Event()
        self._watchdog: Optional[asyncio.Task] = None
        self._registry = registry if registry is not None else CleanupRegistry()
        self._unregister = self._registry.register(self._teardown)

    @property
    def state(self) -> Literal["pending", "resolved"]:
        return "resolved" if self.result is not None else "pending"

    def deliver(self, source: Any, origin: str, data: Any) -> bool:
        """
        Offer a window message to the handshake.

        Returns True when the message resolved the handshake.
        """
        if self.result is not None:
            return False

        if source is not self.popup:
            return False

        if origin not in self.allowed_origins:
            logger.warning("mcp_oauth_message_origin_rejected", origin=origin)
            return False

        if not isinstance(data, Mapping):
            return False

        message_type = data.get("type")
        if message_type == SUCCESS_MESSAGE_TYPE:
            self._resolve(
                HandshakeResult(
                    status="success",
                    connection_id=data.get("connectionId"),
                    session_id=data.get("sessionId"),
                )
            )
            return True
        if message_type == ERROR_MESSAGE_TYPE:
            self._resolve(
                HandshakeResult(
                    status="error",
                    error=data.get("error") or "unknown_error",
                    description=data.get("description"),
                )
            )
            return True
        return False

    def watch(self, is_closed: Callable[[], bool]) -> asyncio.Task:
        """Start the popup-closed watchdog. Must be called inside a running loop."""
        if self._watchdog is None:
            self._watchdog = asyncio.get_running_loop().create_task(self._poll(is_closed))
        return self._watchdog

    async def wait(self) -> HandshakeResult:
        await self._resolved.wait()
        return self.result

    async def _poll(self, is_closed: Callable[[], bool]) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        while self.result is None:
            if is_closed():
                self._resolve(
                    HandshakeResult(
                        status="error",
                        error="popup_closed",
                        description="Authorization window was closed before completing",
                    )
                )
                return
            if loop.time() >= deadline:
                self._resolve(
                    HandshakeResult(
                        status="error",
                        error="timeout",
                        description="Authorization timed out",
                    )
                )
                return
            await asyncio.sleep(self.poll_interval)

    def _resolve(self, result: HandshakeResult) -> None:
        if self.result is not None:
            return
        self.result = result
        self._resolved.set()
        self._unregister()
        self._teardown()

    def _teardown(self) -> None:
        # Runs on resolution, or from the owner's registry on unmount
        if self.result is None:
            self.result = HandshakeResult(status="error", error="cancelled")
            self._resolved.set()

        watchdog, self._watchdog = self._watchdog, None
        if watchdog is not None and not watchdog.done() and watchdog is not _current_task():
            watchdog.cancel()

        close_popup, self._close_popup = self._close_popup, None
        if close_popup is not None:
            close_popup()


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
