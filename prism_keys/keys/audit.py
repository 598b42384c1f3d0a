"""Audit log sink.

Every security- or operationally-relevant outcome produces exactly one entry
in the store's append-only log table with an explicit level:

    INFO   normal successful state transitions
    WARN   authorization denials only
    ERROR  failures that prevented an operation from completing

Each entry is mirrored to structlog. Writing the audit trail is never allowed
to fail the operation being audited: an append failure is logged and
swallowed, and the optional Discord announcement is best-effort.
"""

from typing import Optional, Protocol

import structlog

from ..db.store import KeyStore
from ..errors import StoreError
from ..models.key_models import LogEntry, LogLevel
from .clock import Clock, utc_now

logger = structlog.get_logger()


class Announcer(Protocol):
    async def announce(self, level: LogLevel, message: str) -> None:
        ...


_STRUCTLOG_METHODS = {
    LogLevel.INFO: "info",
    LogLevel.WARN: "warning",
    LogLevel.ERROR: "error",
}


class AuditLog:
    """Append-only audit trail backed by a ``KeyStore``."""

    def __init__(self, store: KeyStore, notifier: Optional[Announcer] = None, clock: Clock = utc_now):
        self.store = store
        self.notifier = notifier
        self.clock = clock

    async def record(
        self,
        level: LogLevel,
        message: str,
        actor_id: Optional[str] = None,
        announcement: Optional[str] = None,
    ) -> Optional[LogEntry]:
        """Append one entry and optionally announce it to the log channel.

        Args:
            level: Entry level.
            message: Human-readable message stored in the log table.
            actor_id: Identity the event is attributed to, if any.
            announcement: Text forwarded to the Discord log channel.

        Returns:
            Optional[LogEntry]: The stored entry, or None if the append failed.
        """
        log_fields = {"audit": True, "actor_id": actor_id}
        if level is LogLevel.WARN:
            log_fields["security_event"] = True
        getattr(logger, _STRUCTLOG_METHODS[level])(message, **log_fields)

        entry = LogEntry(timestamp=self.clock(), level=level, message=message, actorId=actor_id)
        stored: Optional[LogEntry] = None
        try:
            stored = await self.store.append_log(entry)
        except StoreError as e:
            logger.error("Failed to append audit entry", level=level.value, message=message, error=str(e))

        if announcement and self.notifier is not None:
            await self.notifier.announce(level, announcement)

        return stored

    async def info(self, message: str, actor_id: Optional[str] = None, announcement: Optional[str] = None):
        return await self.record(LogLevel.INFO, message, actor_id, announcement)

    async def warn(self, message: str, actor_id: Optional[str] = None, announcement: Optional[str] = None):
        return await self.record(LogLevel.WARN, message, actor_id, announcement)

    async def error(self, message: str, actor_id: Optional[str] = None, announcement: Optional[str] = None):
        return await self.record(LogLevel.ERROR, message, actor_id, announcement)
