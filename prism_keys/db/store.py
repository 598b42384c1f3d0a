"""Abstract persistence contract for keys, cooldowns, audit logs and profiles.

Every component above the store (issuance, validation, sweeper, dashboard)
talks to this interface only. Implementations guarantee request-level
atomicity per operation and nothing more: no caller relies on multi-record
transactions, and no component caches key state in memory, so every decision
re-reads the store.

Failure Contract:
    Implementations raise ``StoreError`` (or ``DuplicateKeyError`` for a
    repeated key code) and never leak driver exceptions.

Key Semantics:
    - ``list_active_keys`` filters on the ``active`` flag only. Callers check
      expiry themselves; "active" and "not yet expired" are always tested
      together where it matters.
    - ``expire_key`` is idempotent so concurrent sweepers are harmless.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..models.key_models import (
    AuthorizedUser,
    CooldownRecord,
    KeyRecord,
    LogChannelConfig,
    LogEntry,
)


class KeyStore(ABC):
    """Async storage interface consumed by the key engine."""

    async def initialize(self) -> None:
        """Prepare connections and schema. No-op by default."""

    async def close(self) -> None:
        """Release connections. No-op by default."""

    async def ping(self) -> bool:
        """Cheap reachability probe used by the health endpoint."""
        return True

    # Keys

    @abstractmethod
    async def create_key(self, record: KeyRecord) -> KeyRecord:
        """Persist a new key; raises DuplicateKeyError if the code exists."""

    @abstractmethod
    async def get_key(self, code: str) -> Optional[KeyRecord]:
        ...

    @abstractmethod
    async def list_active_keys(self) -> list[KeyRecord]:
        ...

    @abstractmethod
    async def list_all_keys(self) -> list[KeyRecord]:
        ...

    @abstractmethod
    async def list_recent_keys(self, limit: int = 10) -> list[KeyRecord]:
        """Newest first by ``createdAt``."""

    @abstractmethod
    async def expire_key(self, code: str) -> None:
        """Set ``active=False``. Idempotent; unknown codes are ignored."""

    # Cooldown markers

    @abstractmethod
    async def get_cooldown(self, owner_id: str) -> Optional[CooldownRecord]:
        ...

    @abstractmethod
    async def upsert_cooldown(self, cooldown: CooldownRecord) -> CooldownRecord:
        """Create or replace the marker keyed on ``ownerId``."""

    @abstractmethod
    async def list_cooldowns(self) -> list[CooldownRecord]:
        ...

    @abstractmethod
    async def remove_cooldown(self, owner_id: str) -> bool:
        """Delete the marker; returns whether one existed."""

    # Audit log

    @abstractmethod
    async def append_log(self, entry: LogEntry) -> LogEntry:
        """Append an entry and return it with its assigned id."""

    @abstractmethod
    async def list_recent_logs(self, limit: int = 50) -> list[LogEntry]:
        """Newest first by ``timestamp``."""

    # Dashboard profiles

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[AuthorizedUser]:
        ...

    @abstractmethod
    async def upsert_user(self, user: AuthorizedUser) -> AuthorizedUser:
        """Insert or update; ``createdAt`` survives updates, ``updatedAt`` is refreshed."""

    # Bot settings

    @abstractmethod
    async def get_log_channel(self) -> Optional[LogChannelConfig]:
        ...

    @abstractmethod
    async def set_log_channel(self, config: LogChannelConfig) -> LogChannelConfig:
        ...
