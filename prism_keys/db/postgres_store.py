"""PostgreSQL implementation of the key store.

Key Features:
    - Async connection pooling with asyncpg
    - Idempotent schema bootstrap, including the ``tier`` column for tables
      created before tiers were stored
    - Connection retry at startup via tenacity
    - Driver exceptions translated into ``StoreError`` / ``DuplicateKeyError``

Table names and column names match the deployed schema (``keys``,
``user_cooldowns``, ``bot_logs``, ``users``) so existing data keeps working.
"""

import json
from contextlib import asynccontextmanager
from typing import Any, Optional

import asyncpg
import structlog
from asyncpg.pool import Pool
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import DuplicateKeyError, StoreError
from ..models.key_models import (
    AuthorizedUser,
    CooldownRecord,
    KeyRecord,
    KeyTier,
    LogChannelConfig,
    LogEntry,
    LogLevel,
)
from .store import KeyStore

logger = structlog.get_logger()

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS keys (
    id SERIAL PRIMARY KEY,
    key_code TEXT NOT NULL UNIQUE,
    discord_user_id TEXT NOT NULL,
    discord_username TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    expires_at TIMESTAMPTZ NOT NULL,
    is_active BOOLEAN NOT NULL DEFAULT TRUE
);
ALTER TABLE keys ADD COLUMN IF NOT EXISTS tier TEXT;
CREATE INDEX IF NOT EXISTS idx_keys_discord_user_id ON keys (discord_user_id);
CREATE INDEX IF NOT EXISTS idx_keys_created_at ON keys (created_at DESC);

CREATE TABLE IF NOT EXISTS user_cooldowns (
    id SERIAL PRIMARY KEY,
    discord_user_id TEXT NOT NULL UNIQUE,
    discord_username TEXT NOT NULL,
    last_key_generated TIMESTAMPTZ NOT NULL,
    cooldown_ends TIMESTAMPTZ NOT NULL
);

CREATE TABLE IF NOT EXISTS bot_logs (
    id SERIAL PRIMARY KEY,
    timestamp TIMESTAMPTZ NOT NULL,
    level TEXT NOT NULL,
    message TEXT NOT NULL,
    discord_user_id TEXT
);
CREATE INDEX IF NOT EXISTS idx_bot_logs_timestamp ON bot_logs (timestamp DESC);

CREATE TABLE IF NOT EXISTS users (
    id VARCHAR PRIMARY KEY,
    email VARCHAR UNIQUE,
    display_name VARCHAR NOT NULL,
    avatar_url VARCHAR,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS bot_settings (
    name TEXT PRIMARY KEY,
    value JSONB NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

LOG_CHANNEL_SETTING = "log_channel"

_KEY_COLUMNS = "key_code, discord_user_id, discord_username, created_at, expires_at, is_active, tier"
_COOLDOWN_COLUMNS = "discord_user_id, discord_username, last_key_generated, cooldown_ends"


def _parse_tier(value: Optional[str]) -> Optional[KeyTier]:
    if not value:
        return None
    try:
        return KeyTier(value)
    except ValueError:
        return None


def _key_from_row(row: Any) -> KeyRecord:
    return KeyRecord(
        code=row["key_code"],
        ownerId=row["discord_user_id"],
        ownerLabel=row["discord_username"],
        createdAt=row["created_at"],
        expiresAt=row["expires_at"],
        active=row["is_active"],
        tier=_parse_tier(row["tier"]),
    )


def _cooldown_from_row(row: Any) -> CooldownRecord:
    return CooldownRecord(
        ownerId=row["discord_user_id"],
        ownerLabel=row["discord_username"],
        lastIssuedAt=row["last_key_generated"],
        cooldownEndsAt=row["cooldown_ends"],
    )


def _log_from_row(row: Any) -> LogEntry:
    return LogEntry(
        id=row["id"],
        timestamp=row["timestamp"],
        level=LogLevel(row["level"]),
        message=row["message"],
        actorId=row["discord_user_id"],
    )


def _user_from_row(row: Any) -> AuthorizedUser:
    return AuthorizedUser(
        id=row["id"],
        email=row["email"],
        displayName=row["display_name"],
        avatarUrl=row["avatar_url"],
        createdAt=row["created_at"],
        updatedAt=row["updated_at"],
    )


class PostgresKeyStore(KeyStore):
    """Async PostgreSQL key store backed by an asyncpg pool."""

    def __init__(self, dsn: str, min_size: int = 1, max_size: int = 10):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.pool: Optional[Pool] = None

    async def initialize(self) -> None:
        """Create the connection pool and bootstrap the schema.

        The first connection is retried with exponential backoff so the service
        survives a database that comes up slightly after it.
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(3),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                retry=retry_if_exception_type((OSError, asyncpg.PostgresError)),
                reraise=True,
            ):
                with attempt:
                    self.pool = await asyncpg.create_pool(
                        self.dsn,
                        min_size=self.min_size,
                        max_size=self.max_size,
                        command_timeout=30,
                    )

            async with self.pool.acquire() as conn:
                await conn.execute(SCHEMA_SQL)

            logger.info("PostgreSQL key store initialized", pool_size=self.pool.get_size())
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            logger.error("Failed to initialize PostgreSQL key store", error=str(e))
            raise StoreError(f"Could not initialize key store: {e}") from e

    async def close(self) -> None:
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("PostgreSQL connection pool closed")

    @asynccontextmanager
    async def _connection(self, operation: str):
        """Acquire a pooled connection, translating driver errors into StoreError."""
        if self.pool is None:
            raise StoreError(f"Key store not initialized ({operation})")
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except asyncpg.UniqueViolationError as e:
            raise DuplicateKeyError(f"{operation}: unique constraint violated") from e
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error("Key store operation failed", operation=operation, error=str(e))
            raise StoreError(f"{operation} failed: {e}") from e

    async def ping(self) -> bool:
        async with self._connection("ping") as conn:
            return await conn.fetchval("SELECT 1") == 1

    # Keys

    async def create_key(self, record: KeyRecord) -> KeyRecord:
        async with self._connection("create_key") as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO keys ({_KEY_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING {_KEY_COLUMNS}
                """,
                record.code,
                record.ownerId,
                record.ownerLabel,
                record.createdAt,
                record.expiresAt,
                record.active,
                record.tier.value if record.tier else None,
            )
        return _key_from_row(row)

    async def get_key(self, code: str) -> Optional[KeyRecord]:
        async with self._connection("get_key") as conn:
            row = await conn.fetchrow(f"SELECT {_KEY_COLUMNS} FROM keys WHERE key_code = $1", code)
        return _key_from_row(row) if row else None

    async def list_active_keys(self) -> list[KeyRecord]:
        async with self._connection("list_active_keys") as conn:
            rows = await conn.fetch(f"SELECT {_KEY_COLUMNS} FROM keys WHERE is_active = TRUE")
        return [_key_from_row(row) for row in rows]

    async def list_all_keys(self) -> list[KeyRecord]:
        async with self._connection("list_all_keys") as conn:
            rows = await conn.fetch(f"SELECT {_KEY_COLUMNS} FROM keys")
        return [_key_from_row(row) for row in rows]

    async def list_recent_keys(self, limit: int = 10) -> list[KeyRecord]:
        async with self._connection("list_recent_keys") as conn:
            rows = await conn.fetch(
                f"SELECT {_KEY_COLUMNS} FROM keys ORDER BY created_at DESC LIMIT $1", limit
            )
        return [_key_from_row(row) for row in rows]

    async def expire_key(self, code: str) -> None:
        async with self._connection("expire_key") as conn:
            await conn.execute("UPDATE keys SET is_active = FALSE WHERE key_code = $1", code)

    # Cooldown markers

    async def get_cooldown(self, owner_id: str) -> Optional[CooldownRecord]:
        async with self._connection("get_cooldown") as conn:
            row = await conn.fetchrow(
                f"SELECT {_COOLDOWN_COLUMNS} FROM user_cooldowns WHERE discord_user_id = $1", owner_id
            )
        return _cooldown_from_row(row) if row else None

    async def upsert_cooldown(self, cooldown: CooldownRecord) -> CooldownRecord:
        async with self._connection("upsert_cooldown") as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO user_cooldowns ({_COOLDOWN_COLUMNS})
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (discord_user_id) DO UPDATE SET
                    discord_username = EXCLUDED.discord_username,
                    last_key_generated = EXCLUDED.last_key_generated,
                    cooldown_ends = EXCLUDED.cooldown_ends
                RETURNING {_COOLDOWN_COLUMNS}
                """,
                cooldown.ownerId,
                cooldown.ownerLabel,
                cooldown.lastIssuedAt,
                cooldown.cooldownEndsAt,
            )
        return _cooldown_from_row(row)

    async def list_cooldowns(self) -> list[CooldownRecord]:
        async with self._connection("list_cooldowns") as conn:
            rows = await conn.fetch(f"SELECT {_COOLDOWN_COLUMNS} FROM user_cooldowns")
        return [_cooldown_from_row(row) for row in rows]

    async def remove_cooldown(self, owner_id: str) -> bool:
        async with self._connection("remove_cooldown") as conn:
            result = await conn.execute("DELETE FROM user_cooldowns WHERE discord_user_id = $1", owner_id)
        # asyncpg returns the command tag, e.g. "DELETE 1"
        return result.split()[-1] != "0"

    # Audit log

    async def append_log(self, entry: LogEntry) -> LogEntry:
        async with self._connection("append_log") as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO bot_logs (timestamp, level, message, discord_user_id)
                VALUES ($1, $2, $3, $4)
                RETURNING id, timestamp, level, message, discord_user_id
                """,
                entry.timestamp,
                entry.level.value,
                entry.message,
                entry.actorId,
            )
        return _log_from_row(row)

    async def list_recent_logs(self, limit: int = 50) -> list[LogEntry]:
        async with self._connection("list_recent_logs") as conn:
            rows = await conn.fetch(
                """
                SELECT id, timestamp, level, message, discord_user_id
                FROM bot_logs
                ORDER BY timestamp DESC, id DESC
                LIMIT $1
                """,
                limit,
            )
        return [_log_from_row(row) for row in rows]

    # Dashboard profiles

    async def get_user(self, user_id: str) -> Optional[AuthorizedUser]:
        async with self._connection("get_user") as conn:
            row = await conn.fetchrow("SELECT * FROM users WHERE id = $1", user_id)
        return _user_from_row(row) if row else None

    async def upsert_user(self, user: AuthorizedUser) -> AuthorizedUser:
        async with self._connection("upsert_user") as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO users (id, email, display_name, avatar_url)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (id) DO UPDATE SET
                    email = EXCLUDED.email,
                    display_name = EXCLUDED.display_name,
                    avatar_url = EXCLUDED.avatar_url,
                    updated_at = now()
                RETURNING *
                """,
                user.id,
                user.email,
                user.displayName,
                user.avatarUrl,
            )
        return _user_from_row(row)

    # Bot settings

    async def get_log_channel(self) -> Optional[LogChannelConfig]:
        async with self._connection("get_log_channel") as conn:
            value = await conn.fetchval("SELECT value FROM bot_settings WHERE name = $1", LOG_CHANNEL_SETTING)
        if value is None:
            return None
        return LogChannelConfig.model_validate(json.loads(value))

    async def set_log_channel(self, config: LogChannelConfig) -> LogChannelConfig:
        async with self._connection("set_log_channel") as conn:
            await conn.execute(
                """
                INSERT INTO bot_settings (name, value, updated_at)
                VALUES ($1, $2::jsonb, now())
                ON CONFLICT (name) DO UPDATE SET value = EXCLUDED.value, updated_at = now()
                """,
                LOG_CHANNEL_SETTING,
                config.model_dump_json(),
            )
        return config
