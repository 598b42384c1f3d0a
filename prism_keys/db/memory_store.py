"""In-process ``KeyStore`` used by the test suite and for local development.

State lives in plain dictionaries and lists. Records are copied on the way in
and out so callers can never mutate stored state by accident, which keeps the
behaviour close to a real database round-trip.
"""

from datetime import datetime, timezone
from itertools import count
from typing import Optional

import structlog

from ..errors import DuplicateKeyError
from ..models.key_models import (
    AuthorizedUser,
    CooldownRecord,
    KeyRecord,
    LogChannelConfig,
    LogEntry,
)
from .store import KeyStore

logger = structlog.get_logger()


class InMemoryKeyStore(KeyStore):
    def __init__(self):
        self.keys: dict[str, KeyRecord] = {}
        self.cooldowns: dict[str, CooldownRecord] = {}
        self.logs: list[LogEntry] = []
        self.users: dict[str, AuthorizedUser] = {}
        self.log_channel: Optional[LogChannelConfig] = None
        self._log_ids = count(1)

    async def initialize(self) -> None:
        logger.info("Using in-memory key store; data is lost on restart")

    # Keys

    async def create_key(self, record: KeyRecord) -> KeyRecord:
        if record.code in self.keys:
            raise DuplicateKeyError(f"Key code already exists: {record.code}")
        self.keys[record.code] = record.model_copy()
        return record.model_copy()

    async def get_key(self, code: str) -> Optional[KeyRecord]:
        record = self.keys.get(code)
        return record.model_copy() if record else None

    async def list_active_keys(self) -> list[KeyRecord]:
        return [record.model_copy() for record in self.keys.values() if record.active]

    async def list_all_keys(self) -> list[KeyRecord]:
        return [record.model_copy() for record in self.keys.values()]

    async def list_recent_keys(self, limit: int = 10) -> list[KeyRecord]:
        ordered = sorted(self.keys.values(), key=lambda record: record.createdAt, reverse=True)
        return [record.model_copy() for record in ordered[:limit]]

    async def expire_key(self, code: str) -> None:
        record = self.keys.get(code)
        if record is not None:
            self.keys[code] = record.model_copy(update={"active": False})

    # Cooldown markers

    async def get_cooldown(self, owner_id: str) -> Optional[CooldownRecord]:
        cooldown = self.cooldowns.get(owner_id)
        return cooldown.model_copy() if cooldown else None

    async def upsert_cooldown(self, cooldown: CooldownRecord) -> CooldownRecord:
        self.cooldowns[cooldown.ownerId] = cooldown.model_copy()
        return cooldown.model_copy()

    async def list_cooldowns(self) -> list[CooldownRecord]:
        return [cooldown.model_copy() for cooldown in self.cooldowns.values()]

    async def remove_cooldown(self, owner_id: str) -> bool:
        return self.cooldowns.pop(owner_id, None) is not None

    # Audit log

    async def append_log(self, entry: LogEntry) -> LogEntry:
        stored = entry.model_copy(update={"id": next(self._log_ids)})
        self.logs.append(stored)
        return stored.model_copy()

    async def list_recent_logs(self, limit: int = 50) -> list[LogEntry]:
        # Entries sharing a timestamp are ordered by id.
        ordered = sorted(self.logs, key=lambda entry: (entry.timestamp, entry.id or 0), reverse=True)
        return [entry.model_copy() for entry in ordered[:limit]]

    # Dashboard profiles

    async def get_user(self, user_id: str) -> Optional[AuthorizedUser]:
        user = self.users.get(user_id)
        return user.model_copy() if user else None

    async def upsert_user(self, user: AuthorizedUser) -> AuthorizedUser:
        now = datetime.now(timezone.utc)
        existing = self.users.get(user.id)
        created_at = existing.createdAt if existing and existing.createdAt else (user.createdAt or now)
        stored = user.model_copy(update={"createdAt": created_at, "updatedAt": now})
        self.users[user.id] = stored
        return stored.model_copy()

    # Bot settings

    async def get_log_channel(self) -> Optional[LogChannelConfig]:
        return self.log_channel.model_copy() if self.log_channel else None

    async def set_log_channel(self, config: LogChannelConfig) -> LogChannelConfig:
        self.log_channel = config.model_copy()
        return config.model_copy()
