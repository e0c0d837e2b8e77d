"""Tests for prepared-session stores (two-phase issuance)."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from dpp_anchor.core.config import Settings
from dpp_anchor.core.crypto.hashing import Granularity
from dpp_anchor.modules.passports.schemas import CreatePassportFormInput, PreparedSession
from dpp_anchor.modules.passports.sessions import (
    InMemoryPreparedSessionStore,
    RedisPreparedSessionStore,
    create_prepared_session_store,
)

START = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _session(session_id: str = "prep-1", ttl: timedelta = timedelta(minutes=15)) -> PreparedSession:
    form = CreatePassportFormInput.model_validate(
        {
            "productId": "PROD-001",
            "productName": "Widget",
            "issuerAddress": "0x" + "ab" * 20,
        }
    )
    return PreparedSession(
        session_id=session_id,
        form_input=form,
        document={"productId": "PROD-001"},
        signing_payload={"iss": "did:key:z6Mk"},
        issuer_did="did:key:z6Mk",
        disclosure_mode="did_key",
        granularity=Granularity.PRODUCT_CLASS,
        created_at=START,
        expires_at=START + ttl,
    )


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_take_consumes_session(self) -> None:
        store = InMemoryPreparedSessionStore(clock=FakeClock(START))
        await store.put(_session())

        taken = await store.take("prep-1")
        assert taken is not None
        assert taken.issuer_did == "did:key:z6Mk"
        assert await store.take("prep-1") is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_unknown_session(self) -> None:
        store = InMemoryPreparedSessionStore(clock=FakeClock(START))
        assert await store.take("missing") is None

    @pytest.mark.asyncio
    async def test_expired_session_is_not_returned(self) -> None:
        clock = FakeClock(START)
        store = InMemoryPreparedSessionStore(clock=clock)
        await store.put(_session())

        clock.now = START + timedelta(minutes=15)
        assert await store.take("prep-1") is None

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(self) -> None:
        clock = FakeClock(START)
        store = InMemoryPreparedSessionStore(clock=clock)
        await store.put(_session("short", ttl=timedelta(minutes=1)))
        await store.put(_session("long", ttl=timedelta(hours=1)))

        clock.now = START + timedelta(minutes=5)
        assert await store.sweep_expired() == 1
        assert len(store) == 1
        assert await store.take("long") is not None


class TestRedisStore:
    @pytest.mark.asyncio
    async def test_put_sets_json_with_ttl(self) -> None:
        client = AsyncMock()
        store = RedisPreparedSessionStore(client, clock=FakeClock(START))
        await store.put(_session())

        client.set.assert_awaited_once()
        args, kwargs = client.set.call_args
        assert args[0] == "dpp:prepared:prep-1"
        assert '"sessionId":"prep-1"' in args[1]
        assert kwargs["ex"] == 900

    @pytest.mark.asyncio
    async def test_take_uses_getdel(self) -> None:
        client = AsyncMock()
        client.getdel.return_value = _session().model_dump_json(by_alias=True)
        store = RedisPreparedSessionStore(client, clock=FakeClock(START))

        taken = await store.take("prep-1")

        client.getdel.assert_awaited_once_with("dpp:prepared:prep-1")
        assert taken is not None
        assert taken.form_input.product_id == "PROD-001"

    @pytest.mark.asyncio
    async def test_take_missing_or_expired(self) -> None:
        client = AsyncMock()
        client.getdel.return_value = None
        store = RedisPreparedSessionStore(client, clock=FakeClock(START + timedelta(hours=1)))
        assert await store.take("prep-1") is None

        client.getdel.return_value = _session().model_dump_json(by_alias=True)
        assert await store.take("prep-1") is None

    @pytest.mark.asyncio
    async def test_sweep_is_noop(self) -> None:
        store = RedisPreparedSessionStore(AsyncMock())
        assert await store.sweep_expired() == 0


def test_factory_defaults_to_memory(settings: Settings) -> None:
    assert isinstance(create_prepared_session_store(settings), InMemoryPreparedSessionStore)


def test_factory_builds_redis_store() -> None:
    settings = Settings(prepared_session_backend="redis", redis_url="redis://localhost:6379/0")
    assert isinstance(create_prepared_session_store(settings), RedisPreparedSessionStore)
