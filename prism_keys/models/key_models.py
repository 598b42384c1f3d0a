"""Pydantic models for Prism key records, audit entries and service results.

This module defines the data structures shared by the store, the key engine,
the command front-end and the HTTP API. Field names are camelCase because the
same models are serialized as-is by the dashboard endpoints.

Model Categories:
    - Persistent records: KeyRecord, CooldownRecord, LogEntry, AuthorizedUser,
      LogChannelConfig
    - Engine inputs and outputs: Requester, IssuanceResult, ValidationOutcome,
      LegacyValidationResult
    - Dashboard responses: DashboardStats, BotStatus

Tier Handling:
    Every key carries an explicit ``tier`` computed once at issuance. Records
    written before the column existed have ``tier=None``; for those the tier is
    recovered from the code prefix through ``KeyRecord.effective_tier``.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class KeyTier(str, Enum):
    """Key tiers, ordered from shortest to longest lived.

    SHORT_LIVED keys are personal: only the recorded owner may use them, and a
    second request inside the validity window returns the same key. The other
    tiers are transferable and may only be issued by allowlisted users.
    """

    SHORT_LIVED = "short_lived"
    MONTH = "month"
    YEAR = "year"
    LIFETIME = "lifetime"

    @property
    def transferable(self) -> bool:
        return self is not KeyTier.SHORT_LIVED

    @property
    def elevated(self) -> bool:
        """Whether issuing this tier requires an allowlisted issuer."""
        return self is not KeyTier.SHORT_LIVED

    @property
    def label(self) -> str:
        return _TIER_LABELS[self]


_TIER_LABELS = {
    KeyTier.SHORT_LIVED: "24-hour",
    KeyTier.MONTH: "month",
    KeyTier.YEAR: "year",
    KeyTier.LIFETIME: "lifetime",
}


class LogLevel(str, Enum):
    """Audit levels. WARN is reserved for authorization denials."""

    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


class KeyRecord(BaseModel):
    """One issued credential.

    Created only by the issuance engine; the only mutation is the transition
    ``active -> False`` performed by the sweeper or an explicit expire.
    Records are never deleted in normal operation.
    """

    code: str = Field(..., description="Globally unique, tier-tagged key code")
    ownerId: str = Field(..., description="External identity of the issuing user")
    ownerLabel: str = Field(..., description="Display name captured at issuance")
    createdAt: datetime
    expiresAt: datetime
    active: bool = True
    tier: Optional[KeyTier] = Field(None, description="None only for records that predate tier storage")

    @model_validator(mode="after")
    def check_window(self):
        if self.expiresAt <= self.createdAt:
            raise ValueError("expiresAt must be later than createdAt")
        return self

    @property
    def effective_tier(self) -> Optional[KeyTier]:
        if self.tier is not None:
            return self.tier
        # Imported lazily: codes.py depends on this module.
        from ..keys.codes import tier_from_code

        return tier_from_code(self.code)

    @property
    def transferable(self) -> bool:
        tier = self.effective_tier
        return tier is not None and tier.transferable

    def is_usable_at(self, now: datetime) -> bool:
        """Active and not yet expired; the two checks always go together."""
        return self.active and self.expiresAt > now


class CooldownRecord(BaseModel):
    """Advisory per-user issuance marker, unique on ``ownerId``."""

    ownerId: str
    ownerLabel: str
    lastIssuedAt: datetime
    cooldownEndsAt: datetime


class LogEntry(BaseModel):
    """Immutable audit record."""

    id: Optional[int] = None
    timestamp: datetime
    level: LogLevel
    message: str
    actorId: Optional[str] = None


class AuthorizedUser(BaseModel):
    """Dashboard user profile cached on first successful login."""

    id: str
    email: Optional[str] = None
    displayName: str
    avatarUrl: Optional[str] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class LogChannelConfig(BaseModel):
    """Discord channel that receives audit announcements."""

    channelId: str
    guildId: Optional[str] = None
    boundBy: Optional[str] = None
    boundAt: Optional[datetime] = None


class Requester(BaseModel):
    """Already-authenticated identity asking for a key."""

    id: str
    label: str


class IssuanceResult(BaseModel):
    code: str
    tier: KeyTier
    createdAt: datetime
    expiresAt: datetime
    wasReused: bool = False


class ValidationOutcome(BaseModel):
    """Answer to "is this code usable by this caller right now".

    A negative answer is a normal result carrying a ``reason``; it is never
    raised as an exception.
    """

    valid: bool
    reason: Optional[str] = None
    expiresAt: Optional[datetime] = None
    ownerLabel: Optional[str] = None
    message: Optional[str] = None


class LegacyValidationResult(BaseModel):
    """Unchecked validation kept for clients that predate ownership checks."""

    valid: bool
    key: Optional[KeyRecord] = None
    message: str


class DashboardStats(BaseModel):
    totalKeys: int
    activeKeys: int
    usersToday: int
    successRate: float


class BotStatus(BaseModel):
    online: bool
    uptime: str
