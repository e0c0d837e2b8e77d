"""Prepared-session stores for two-phase passport issuance.

A session moves ``Prepared -> Finalized | Expired``. :meth:`take` is the only
way to read one and removes it in the same step, so at most one finalize call
can consume a given session. Expiry is passive: checked on access or by an
explicit :meth:`sweep_expired`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

import redis.asyncio as redis

from dpp_anchor.core.config import Settings
from dpp_anchor.core.logging import get_logger
from dpp_anchor.modules.passports.schemas import PreparedSession

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@runtime_checkable
class PreparedSessionStore(Protocol):
    async def put(self, session: PreparedSession) -> None: ...

    async def take(self, session_id: str) -> PreparedSession | None:
        """Fetch and delete; ``None`` when missing or expired."""
        ...

    async def sweep_expired(self) -> int: ...


class InMemoryPreparedSessionStore:
    """Process-wide store shared by every request handled by this process."""

    def __init__(self, *, clock: Clock = _utcnow) -> None:
        self._sessions: dict[str, PreparedSession] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    async def put(self, session: PreparedSession) -> None:
        async with self._lock:
            self._sessions[session.session_id] = session

    async def take(self, session_id: str) -> PreparedSession | None:
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None or session.is_expired(self._clock()):
            return None
        return session

    async def sweep_expired(self) -> int:
        now = self._clock()
        async with self._lock:
            expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.debug("prepared_sessions_swept", count=len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


class RedisPreparedSessionStore:
    """Redis-backed store for multi-instance deployments.

    Sessions are stored as JSON with a key TTL; ``GETDEL`` gives the atomic
    fetch-and-delete.
    """

    KEY_PREFIX = "dpp:prepared:"

    def __init__(self, client: redis.Redis, *, clock: Clock = _utcnow) -> None:
        self._redis = client
        self._clock = clock

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    async def put(self, session: PreparedSession) -> None:
        ttl = max(1, int((session.expires_at - self._clock()).total_seconds()))
        await self._redis.set(
            self._key(session.session_id),
            session.model_dump_json(by_alias=True),
            ex=ttl,
        )

    async def take(self, session_id: str) -> PreparedSession | None:
        raw = await self._redis.getdel(self._key(session_id))
        if raw is None:
            return None
        session = PreparedSession.model_validate_json(raw)
        if session.is_expired(self._clock()):
            return None
        return session

    async def sweep_expired(self) -> int:
        # Redis evicts expired keys on its own.
        return 0

    async def aclose(self) -> None:
        await self._redis.aclose()


def create_prepared_session_store(settings: Settings) -> PreparedSessionStore:
    """Instantiate the store named by ``settings.prepared_session_backend``."""
    if settings.prepared_session_backend == "redis":
        client = redis.from_url(str(settings.redis_url), decode_responses=True)  # type: ignore[no-untyped-call]
        return RedisPreparedSessionStore(client)
    return InMemoryPreparedSessionStore()
