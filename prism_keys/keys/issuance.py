"""Key issuance engine.

Decides, per request and per user, whether to mint a new key or hand back an
existing one, enforces tier authorization, and records every outcome in the
audit log.

Tier Rules:
    | Tier        | Who may request       | Reuse                             |
    |-------------|-----------------------|-----------------------------------|
    | short-lived | anyone                | existing usable key of that owner |
    | month       | allowlisted issuers   | never, always mint                |
    | year        | allowlisted issuers   | never, always mint                |
    | lifetime    | allowlisted issuers   | never, always mint                |

Concurrency:
    The short-lived path is check-then-create with no lock. Two simultaneous
    first requests from one user can both mint a key; the extra key is
    harmless and expires normally. When several usable keys exist the most
    recently created one is returned.

Failure Semantics:
    Denials raise ``AuthorizationError`` after a WARN audit entry and before
    any store access. Any ``StoreError`` while reading or creating keys is
    audited at ERROR, attributed to the requester, and re-raised as
    ``IssuanceFailedError``.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

import structlog

from ..db.store import KeyStore
from ..errors import AuthorizationError, IssuanceFailedError, StoreError
from ..models.key_models import CooldownRecord, IssuanceResult, KeyRecord, KeyTier, Requester
from .audit import AuditLog
from .clock import Clock, utc_now
from .codes import generate_key_code

logger = structlog.get_logger()

# (emoji, duration phrase) used in log channel announcements for elevated tiers
_ELEVATED_ANNOUNCEMENTS = {
    KeyTier.MONTH: ("👑", "30-day"),
    KeyTier.YEAR: ("🚀", "365-day"),
    KeyTier.LIFETIME: ("♾️", "lifetime"),
}


def format_time_left(remaining: timedelta) -> str:
    """Render a remaining duration as ``"{h}h {m}m"`` or ``"{m}m"``."""
    total_minutes = int(remaining.total_seconds() // 60)
    if total_minutes <= 0:
        return "0m"
    hours, minutes = divmod(total_minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class KeyIssuanceEngine:
    """Issues keys for already-authenticated requesters."""

    def __init__(
        self,
        store: KeyStore,
        audit: AuditLog,
        elevated_issuers: Iterable[str],
        durations: dict[KeyTier, timedelta],
        clock: Clock = utc_now,
        badge_ids: Iterable[str] = (),
    ):
        self.store = store
        self.audit = audit
        self.elevated_issuers = frozenset(elevated_issuers)
        self.durations = durations
        self.clock = clock
        # Users whose fresh-issuance announcements carry a crown badge
        self.badge_ids = frozenset(badge_ids)

    def can_issue(self, requester_id: str, tier: KeyTier) -> bool:
        return not tier.elevated or requester_id in self.elevated_issuers

    async def issue(self, requester: Requester, tier: KeyTier) -> IssuanceResult:
        """Issue or reuse a key of ``tier`` for ``requester``.

        Args:
            requester: Authenticated identity and display label.
            tier: Requested tier.

        Returns:
            IssuanceResult: Code, window, and whether an existing key was returned.

        Raises:
            AuthorizationError: Requester may not issue ``tier``.
            IssuanceFailedError: The store failed; an ERROR entry was recorded.
        """
        if not self.can_issue(requester.id, tier):
            await self.audit.warn(
                f"Unauthorized {tier.label} key attempt by {requester.label}",
                actor_id=requester.id,
                announcement=(
                    f"⚠️ **Unauthorized Access** - {requester.label} tried to generate "
                    f"a {tier.label} key without permission"
                ),
            )
            raise AuthorizationError(
                f"You do not have permission to generate {tier.label} keys.",
                requester_id=requester.id,
                tier=tier.value,
            )

        now = self.clock()
        try:
            if tier is KeyTier.SHORT_LIVED:
                existing = await self._find_reusable(requester.id, now)
                if existing is not None:
                    return await self._reuse(requester, existing, now)
            record = await self._mint(requester, tier, now)
        except StoreError as e:
            await self.audit.error(
                f"Failed to generate {tier.label} key for {requester.label}: {e}",
                actor_id=requester.id,
                announcement=f"❌ **Error** - Failed to generate {tier.label} key for {requester.label}",
            )
            raise IssuanceFailedError(f"Could not issue {tier.label} key") from e

        if tier is KeyTier.SHORT_LIVED:
            await self._mark_cooldown(record)
            badge = " 👑" if requester.id in self.badge_ids else ""
            await self.audit.info(
                f"New key generated for {requester.label}: {record.code}",
                actor_id=requester.id,
                announcement=(
                    f"🆕 **New Key Generated** - {requester.label}{badge} received a new {tier.label} key"
                ),
            )
        else:
            emoji, phrase = _ELEVATED_ANNOUNCEMENTS[tier]
            await self.audit.info(
                f"{tier.label.capitalize()} key generated by VIP {requester.label}: {record.code}",
                actor_id=requester.id,
                announcement=(
                    f"{emoji} **{tier.label.capitalize()} Key Generated** - VIP {requester.label} "
                    f"created a new {phrase} transferable key"
                ),
            )

        return IssuanceResult(
            code=record.code,
            tier=tier,
            createdAt=record.createdAt,
            expiresAt=record.expiresAt,
            wasReused=False,
        )

    async def _find_reusable(self, owner_id: str, now: datetime) -> Optional[KeyRecord]:
        candidates = [
            record
            for record in await self.store.list_all_keys()
            if record.ownerId == owner_id and record.is_usable_at(now)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda record: record.createdAt)

    async def _reuse(self, requester: Requester, existing: KeyRecord, now: datetime) -> IssuanceResult:
        remaining = format_time_left(existing.expiresAt - now)
        await self.audit.info(
            f"Existing key returned for {requester.label}: {existing.code}",
            actor_id=requester.id,
            announcement=(
                f"🔑 **Key Reused** - {requester.label} received their existing key ({remaining} remaining)"
            ),
        )
        return IssuanceResult(
            code=existing.code,
            tier=existing.effective_tier or KeyTier.SHORT_LIVED,
            createdAt=existing.createdAt,
            expiresAt=existing.expiresAt,
            wasReused=True,
        )

    async def _mint(self, requester: Requester, tier: KeyTier, now: datetime) -> KeyRecord:
        record = KeyRecord(
            code=generate_key_code(tier, now),
            ownerId=requester.id,
            ownerLabel=requester.label,
            createdAt=now,
            expiresAt=now + self.durations[tier],
            active=True,
            tier=tier,
        )
        return await self.store.create_key(record)

    async def _mark_cooldown(self, record: KeyRecord) -> None:
        cooldown = CooldownRecord(
            ownerId=record.ownerId,
            ownerLabel=record.ownerLabel,
            lastIssuedAt=record.createdAt,
            cooldownEndsAt=record.expiresAt,
        )
        try:
            await self.store.upsert_cooldown(cooldown)
        except StoreError as e:
            logger.warning("Failed to update cooldown marker", owner_id=record.ownerId, error=str(e))
