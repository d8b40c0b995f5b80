"""
Redis Store Service

Provides Redis-backed storage for MCP OAuth state tokens and MCP connections.
There is no in-memory fallback: state tokens must be single-use
across every app instance, so MCP endpoints refuse to run without Redis.
"""

from __future__ import annotations

import re
from typing import List, Optional, Union

import redis.asyncio as redis
from pydantic import ValidationError

from chatapi.config import Settings
from chatapi.logger import logger
from chatapi.mcp.errors import ConfigMissingError, StateCorruptedError, StateNotFoundError
from chatapi.mcp.models import MCPConnection, OAuthStateRecord

OAUTH_STATE_PREFIX = "oauth:state:"
CONNECTION_PREFIX = "conn:"
SCAN_BATCH_SIZE = 100

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def escape_glob(value: str) -> str:
    """Escape Redis MATCH metacharacters so ``value`` matches literally."""
    return _GLOB_SPECIAL.sub(r"\\\1", value)


def _decode(raw: Union[str, bytes]) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8")
    return raw


class RedisClientProvider:
    """
    Lazily builds one Redis client per process.

    Held on ``app.state`` and closed on shutdown; routes receive the client
    through a dependency instead of reaching for a module-level global.
    """

    def __init__(self, settings: Settings, client: Optional[redis.Redis] = None) -> None:
        self._settings = settings
        self._client = client

    @property
    def configured(self) -> bool:
        return self._settings.redis_configured

    def get_client(self) -> redis.Redis:
        if not self.configured:
            raise ConfigMissingError()
        if self._client is None:
            kwargs = {"decode_responses": True}
            if self._settings.redis_token:
                kwargs["password"] = self._settings.redis_token
            self._client = redis.from_url(self._settings.redis_url, **kwargs)
            logger.info("redis_client_created")
        return self._client

    async def ping(self) -> bool:
        try:
            return bool(await self.get_client().ping())
        except ConfigMissingError:
            return False
        except redis.RedisError as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("redis_client_closed")


class OAuthStateStore:
    """Single-use OAuth ``state`` tokens with a short TTL."""

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    @staticmethod
    def _key(state: str) -> str:
        return f"{OAUTH_STATE_PREFIX}{state}"

    async def put(self, state: str, record: OAuthStateRecord, ttl_seconds: int = 600) -> None:
        await self._redis.set(
            self._key(state),
            record.model_dump_json(by_alias=True, exclude_none=True),
            ex=ttl_seconds,
        )

    async def take_once(self, state: str) -> OAuthStateRecord:
        """
        Atomically read and delete a state record.

        GETDEL guarantees a single winner when the same state is presented
        concurrently; every other caller sees StateNotFoundError.

        Raises:
            StateNotFoundError: The state expired, was already used, or never existed.
            StateCorruptedError: The stored payload failed validation.
        """
        raw = await self._redis.getdel(self._key(state))
        if raw is None:
            raise StateNotFoundError()

        try:
            return OAuthStateRecord.model_validate_json(_decode(raw))
        except (ValidationError, UnicodeDecodeError) as e:
            logger.error(
                "security_oauth_state_corrupted",
                state_prefix=state[:8],
                error_type=type(e).__name__,
            )
            raise StateCorruptedError(
                "Invalid OAuth state data - possible data corruption or tampering"
            ) from e


class ConnectionStore:
    """MCP connections keyed by ``conn:{session_id}:{connection_id}``."""

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client

    @staticmethod
    def _key(session_id: str, connection_id: str) -> str:
        return f"{CONNECTION_PREFIX}{session_id}:{connection_id}"

    @staticmethod
    def _parse(key: str, raw: Union[str, bytes, None]) -> Optional[MCPConnection]:
        if raw is None:
            return None
        try:
            return MCPConnection.model_validate_json(_decode(raw))
        except (ValidationError, UnicodeDecodeError) as e:
            # Skipped, not raised
            logger.warning(
                "mcp_connection_invalid",
                key=key,
                error_type=type(e).__name__,
            )
            return None

    async def put(
        self,
        session_id: str,
        connection: MCPConnection,
        ttl_seconds: int = 3600 * 24 * 7,
    ) -> None:
        await self._redis.set(
            self._key(session_id, connection.id),
            connection.model_dump_json(by_alias=True, exclude_none=True),
            ex=ttl_seconds,
        )

    async def get(self, session_id: str, connection_id: str) -> Optional[MCPConnection]:
        key = self._key(session_id, connection_id)
        connection = self._parse(key, await self._redis.get(key))
        if connection is not None and connection.id != connection_id:
            logger.warning("mcp_connection_id_mismatch", key=key)
            return None
        return connection

    async def list(self, session_id: str) -> List[MCPConnection]:
        """
        Collect a session's connections with a non-blocking SCAN.

        Only keys of the exact form ``conn:{session_id}:{id}`` count, so a
        session whose id is a prefix of another's never sees its records.
        """
        prefix = self._key(session_id, "")
        pattern = f"{escape_glob(prefix)}*"

        keys: List[str] = []
        seen = set()
        cursor = 0
        while True:
            cursor, batch = await self._redis.scan(
                cursor=cursor, match=pattern, count=SCAN_BATCH_SIZE
            )
            for raw_key in batch:
                key = _decode(raw_key)
                suffix = key[len(prefix):]
                if not key.startswith(prefix) or not suffix or ":" in suffix:
                    continue
                if key not in seen:
                    seen.add(key)
                    keys.append(key)
            if int(cursor) == 0:
                break

        if not keys:
            return []

        values = await self._redis.mget(keys)
        connections = []
        for key, raw in zip(keys, values):
            connection = self._parse(key, raw)
            if connection is None:
                continue
            if connection.id != key[len(prefix):]:
                logger.warning("mcp_connection_id_mismatch", key=key)
                continue
            connections.append(connection)

        connections.sort(key=lambda c: c.created_at)
        return connections

    async def delete(self, session_id: str, connection_id: str) -> bool:
        """Delete a connection. Returns whether a record existed."""
        removed = await self._redis.delete(self._key(session_id, connection_id))
        return bool(removed)
