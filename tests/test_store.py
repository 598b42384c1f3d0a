"""Tests for the key store implementations and backend selection."""

from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest
from conftest import USER_ID
from test_helpers import T0

from prism_keys.config import Settings
from prism_keys.db import InMemoryKeyStore, PostgresKeyStore, load_key_store
from prism_keys.errors import DuplicateKeyError, StoreError
from prism_keys.models.key_models import (
    AuthorizedUser,
    CooldownRecord,
    KeyRecord,
    KeyTier,
    LogChannelConfig,
    LogEntry,
    LogLevel,
)


def sample_key(code="PrismKey - AAAA - BBBB - CCCC - DDDD", created=T0, **overrides):
    values = dict(
        code=code,
        ownerId=USER_ID,
        ownerLabel="player",
        createdAt=created,
        expiresAt=created + timedelta(hours=24),
        tier=KeyTier.SHORT_LIVED,
    )
    values.update(overrides)
    return KeyRecord(**values)


class TestKeyRecord:
    def test_expiry_must_follow_creation(self):
        with pytest.raises(ValueError):
            sample_key(expiresAt=T0)

    def test_effective_tier_falls_back_to_prefix(self):
        record = sample_key(code="PrismYEAR - AAAA", tier=None)
        assert record.effective_tier is KeyTier.YEAR
        assert record.transferable is True

    def test_unknown_prefix_without_tier_is_personal(self):
        record = sample_key(code="Mystery - AAAA", tier=None)
        assert record.effective_tier is None
        assert record.transferable is False

    def test_usable_requires_active_and_unexpired(self):
        record = sample_key()
        assert record.is_usable_at(T0 + timedelta(hours=1))
        assert not record.is_usable_at(T0 + timedelta(hours=24))
        assert not record.model_copy(update={"active": False}).is_usable_at(T0)


class TestInMemoryKeyStore:
    @pytest.mark.asyncio
    async def test_duplicate_code_rejected(self, store):
        await store.create_key(sample_key())
        with pytest.raises(DuplicateKeyError):
            await store.create_key(sample_key())

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, store):
        created = await store.create_key(sample_key())
        created.active = False
        assert (await store.get_key(created.code)).active is True

    @pytest.mark.asyncio
    async def test_expire_is_idempotent_and_ignores_unknown(self, store):
        record = await store.create_key(sample_key())
        await store.expire_key(record.code)
        await store.expire_key(record.code)
        await store.expire_key("unknown")
        assert (await store.get_key(record.code)).active is False
        assert await store.list_active_keys() == []

    @pytest.mark.asyncio
    async def test_recent_keys_newest_first_with_limit(self, store):
        for hour in range(3):
            await store.create_key(sample_key(code=f"PrismKey - {hour}", created=T0 + timedelta(hours=hour)))

        recent = await store.list_recent_keys(2)

        assert [record.code for record in recent] == ["PrismKey - 2", "PrismKey - 1"]

    @pytest.mark.asyncio
    async def test_cooldown_upsert_replaces_marker(self, store):
        first = CooldownRecord(ownerId=USER_ID, ownerLabel="a", lastIssuedAt=T0, cooldownEndsAt=T0 + timedelta(hours=24))
        second = first.model_copy(update={"ownerLabel": "b", "lastIssuedAt": T0 + timedelta(hours=1)})

        await store.upsert_cooldown(first)
        await store.upsert_cooldown(second)

        assert await store.list_cooldowns() == [second]
        assert await store.remove_cooldown(USER_ID) is True
        assert await store.remove_cooldown(USER_ID) is False

    @pytest.mark.asyncio
    async def test_logs_get_ids_and_newest_first(self, store):
        await store.append_log(LogEntry(timestamp=T0, level=LogLevel.INFO, message="first"))
        await store.append_log(LogEntry(timestamp=T0, level=LogLevel.WARN, message="second"))
        await store.append_log(LogEntry(timestamp=T0 - timedelta(minutes=1), level=LogLevel.ERROR, message="older"))

        logs = await store.list_recent_logs()

        assert [entry.message for entry in logs] == ["second", "first", "older"]
        assert [entry.id for entry in logs] == [2, 1, 3]

    @pytest.mark.asyncio
    async def test_user_upsert_keeps_created_at(self, store):
        first = await store.upsert_user(AuthorizedUser(id="1", displayName="one"))
        second = await store.upsert_user(AuthorizedUser(id="1", displayName="uno"))

        assert second.displayName == "uno"
        assert second.createdAt == first.createdAt
        assert (await store.get_user("1")).displayName == "uno"

    @pytest.mark.asyncio
    async def test_log_channel_roundtrip(self, store):
        assert await store.get_log_channel() is None
        await store.set_log_channel(LogChannelConfig(channelId="c1", guildId="g1"))
        assert (await store.get_log_channel()).channelId == "c1"


class FakePool:
    """Minimal asyncpg pool stand-in handing out one mocked connection."""

    def __init__(self, conn):
        self.conn = conn

    @asynccontextmanager
    async def acquire(self):
        yield self.conn


def key_row(**overrides):
    row = {
        "key_code": "PrismKey - AAAA - BBBB - CCCC - DDDD",
        "discord_user_id": USER_ID,
        "discord_username": "player",
        "created_at": T0,
        "expires_at": T0 + timedelta(hours=24),
        "is_active": True,
        "tier": "short_lived",
    }
    row.update(overrides)
    return row


@pytest.fixture
def conn():
    conn = MagicMock()
    conn.fetchrow = AsyncMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchval = AsyncMock()
    conn.execute = AsyncMock()
    return conn


@pytest.fixture
def pg_store(conn):
    store = PostgresKeyStore("postgresql://test")
    store.pool = FakePool(conn)
    return store


class TestPostgresKeyStore:
    @pytest.mark.asyncio
    async def test_uninitialized_store_raises_store_error(self):
        with pytest.raises(StoreError):
            await PostgresKeyStore("postgresql://test").get_key("x")

    @pytest.mark.asyncio
    async def test_create_key_maps_row(self, pg_store, conn):
        conn.fetchrow.return_value = key_row()

        record = await pg_store.create_key(sample_key())

        assert record.tier is KeyTier.SHORT_LIVED
        assert record.ownerLabel == "player"
        args = conn.fetchrow.call_args.args
        assert args[1] == "PrismKey - AAAA - BBBB - CCCC - DDDD"
        assert args[-1] == "short_lived"

    @pytest.mark.asyncio
    async def test_legacy_rows_have_no_tier(self, pg_store, conn):
        conn.fetch.return_value = [key_row(tier=None), key_row(key_code="PrismVIP - X", tier="bogus")]

        records = await pg_store.list_all_keys()

        assert [record.tier for record in records] == [None, None]
        assert records[1].effective_tier is KeyTier.MONTH

    @pytest.mark.asyncio
    async def test_unique_violation_becomes_duplicate_key_error(self, pg_store, conn):
        conn.fetchrow.side_effect = asyncpg.UniqueViolationError("duplicate key")

        with pytest.raises(DuplicateKeyError):
            await pg_store.create_key(sample_key())

    @pytest.mark.asyncio
    async def test_driver_errors_become_store_error(self, pg_store, conn):
        conn.fetchrow.side_effect = asyncpg.PostgresError("boom")

        with pytest.raises(StoreError):
            await pg_store.get_key("x")

    @pytest.mark.asyncio
    async def test_connection_errors_become_store_error(self, pg_store, conn):
        conn.fetch.side_effect = ConnectionRefusedError("refused")

        with pytest.raises(StoreError):
            await pg_store.list_all_keys()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tag,expected", [("DELETE 1", True), ("DELETE 0", False)])
    async def test_remove_cooldown_reads_command_tag(self, pg_store, conn, tag, expected):
        conn.execute.return_value = tag
        assert await pg_store.remove_cooldown(USER_ID) is expected

    @pytest.mark.asyncio
    async def test_append_log_returns_assigned_id(self, pg_store, conn):
        conn.fetchrow.return_value = {
            "id": 7,
            "timestamp": T0,
            "level": "WARN",
            "message": "denied",
            "discord_user_id": USER_ID,
        }

        entry = await pg_store.append_log(LogEntry(timestamp=T0, level=LogLevel.WARN, message="denied"))

        assert entry.id == 7
        assert entry.level is LogLevel.WARN

    @pytest.mark.asyncio
    async def test_log_channel_stored_as_json(self, pg_store, conn):
        config = LogChannelConfig(channelId="c1", guildId="g1", boundBy=USER_ID)

        await pg_store.set_log_channel(config)
        conn.fetchval.return_value = conn.execute.call_args.args[2]

        assert await pg_store.get_log_channel() == config

    @pytest.mark.asyncio
    async def test_missing_log_channel(self, pg_store, conn):
        conn.fetchval.return_value = None
        assert await pg_store.get_log_channel() is None

    @pytest.mark.asyncio
    async def test_ping(self, pg_store, conn):
        conn.fetchval.return_value = 1
        assert await pg_store.ping() is True


class TestLoadKeyStore:
    def test_memory(self):
        assert isinstance(load_key_store(Settings(key_store="memory")), InMemoryKeyStore)

    def test_postgres(self):
        store = load_key_store(Settings(key_store="postgres", database_url="postgresql://db/keys"))
        assert isinstance(store, PostgresKeyStore)
        assert store.dsn == "postgresql://db/keys"

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            load_key_store(Settings(key_store="sqlite"))
