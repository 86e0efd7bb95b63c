"""
Webhook event idempotency stores.
"""
from unittest.mock import AsyncMock

import pytest

from boxoffice.model.db import SessionAsync
from boxoffice.model.webhookevents import new_store
from boxoffice.model.webhookevents._redis import (
    WebhookEventStore as RedisStore,
    k_evt,
)
from boxoffice.model.webhookevents._sql import WebhookEventStore as SqlStore


class TestSqlStore:

    async def test_mark_then_seen(self) -> None:
        async with SessionAsync() as session:
            store = SqlStore(db=session)
            assert await store.is_event_seen("evt_1") is False
            assert await store.mark_event_seen("evt_1") is True
            assert await store.is_event_seen("evt_1") is True

    async def test_second_mark_reports_duplicate(self) -> None:
        async with SessionAsync() as a, SessionAsync() as b:
            assert await SqlStore(db=a).mark_event_seen("evt_2") is True
            assert await SqlStore(db=b).mark_event_seen("evt_2") is False

    async def test_missing_id(self) -> None:
        async with SessionAsync() as session:
            store = SqlStore(db=session)
            assert await store.is_event_seen(None) is False
            assert await store.mark_event_seen(None) is True

    async def test_factory_selects_sql(self) -> None:
        async with SessionAsync() as session:
            assert isinstance(new_store(db=session), SqlStore)
        with pytest.raises(RuntimeError):
            new_store()


class TestRedisStore:

    async def test_mark_uses_set_nx_with_ttl(self) -> None:
        r = AsyncMock()
        r.set.return_value = True
        store = RedisStore(r=r, ttl_seconds=60)

        assert await store.mark_event_seen("evt_1") is True
        r.set.assert_awaited_once_with(k_evt("evt_1"), "1", nx=True, ex=60)

    async def test_mark_existing(self) -> None:
        r = AsyncMock()
        r.set.return_value = None
        store = RedisStore(r=r, ttl_seconds=60)
        assert await store.mark_event_seen("evt_1") is False

    async def test_seen(self) -> None:
        r = AsyncMock()
        r.exists.return_value = 1
        store = RedisStore(r=r, ttl_seconds=60)
        assert await store.is_event_seen("evt_1") is True
        r.exists.assert_awaited_once_with("webhook:processed:evt_1")
        assert await store.is_event_seen(None) is False
