"""Expiration sweeper.

A scheduled job owned by the process lifecycle: ``start()`` launches an
asyncio task that calls ``sweep_once()`` every ``interval`` seconds until
``stop()`` cancels it. Each key is handled independently so one failed
expire or log append never aborts the rest of the sweep. ``expire_key`` is
idempotent, so overlapping sweepers in separate processes are safe.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional

import structlog

from ..db.store import KeyStore
from ..errors import StoreError
from .audit import AuditLog
from .clock import Clock, utc_now

logger = structlog.get_logger()


@dataclass
class SweepReport:
    expired: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class ExpirationSweeper:
    def __init__(self, store: KeyStore, audit: AuditLog, interval: float = 60.0, clock: Clock = utc_now):
        self.store = store
        self.audit = audit
        self.interval = interval
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep_once(self) -> SweepReport:
        """Deactivate every active key whose ``expiresAt`` has passed."""
        report = SweepReport()
        now = self.clock()
        try:
            keys = await self.store.list_all_keys()
        except StoreError as e:
            logger.error("Sweep could not list keys", error=str(e))
            return report

        for record in keys:
            if not record.active or record.expiresAt > now:
                continue
            try:
                await self.store.expire_key(record.code)
            except StoreError as e:
                logger.error("Failed to expire key", code=record.code, error=str(e))
                report.failed.append(record.code)
                continue
            report.expired.append(record.code)
            await self.audit.info(f"Key {record.code} expired for {record.ownerLabel}", actor_id=record.ownerId)

        if report.expired or report.failed:
            logger.info("Sweep completed", expired=len(report.expired), failed=len(report.failed))
        return report

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep_once()
            except Exception as e:
                # Keep the timer alive; the next tick retries.
                logger.error("Unexpected error during sweep", error=str(e), exc_info=True)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        logger.info("Expiration sweeper started", interval_seconds=self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Expiration sweeper stopped")
