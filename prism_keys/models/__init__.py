"""Data models for the Prism key service."""

from .key_models import (
    AuthorizedUser,
    BotStatus,
    CooldownRecord,
    DashboardStats,
    IssuanceResult,
    KeyRecord,
    KeyTier,
    LegacyValidationResult,
    LogChannelConfig,
    LogEntry,
    LogLevel,
    Requester,
    ValidationOutcome,
)

__all__ = [
    "AuthorizedUser",
    "BotStatus",
    "CooldownRecord",
    "DashboardStats",
    "IssuanceResult",
    "KeyRecord",
    "KeyTier",
    "LegacyValidationResult",
    "LogChannelConfig",
    "LogEntry",
    "LogLevel",
    "Requester",
    "ValidationOutcome",
]
