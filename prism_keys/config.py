"""Environment configuration and logging setup for the Prism key service.

All settings are read once from the process environment (after ``load_dotenv``
has merged a local ``.env`` file) into an immutable ``Settings`` model. Nothing
else in the package reads ``os.environ`` directly, so tests construct
``Settings`` explicitly instead of patching the environment.

Environment Variables:
    - DISCORD_TOKEN / DISCORD_BOT_TOKEN: Bot token for Discord REST calls
    - DISCORD_CLIENT_ID, DISCORD_CLIENT_SECRET: Application id and OAuth secret
    - DISCORD_PUBLIC_KEY: Hex Ed25519 key used to verify interaction requests
    - DISCORD_GUILD_ID, DISCORD_CHANNEL_ID: Optional command restrictions
    - DISCORD_WHITELIST_USERS: Privileged users (log channel binding, badge)
    - DISCORD_MONTH_KEY_USERS: Allowlisted issuers of month/year/lifetime keys
    - VIP_USER_IDS: Dashboard viewers
    - DISCORD_LOGS_CHANNEL_ID: Log channel used until one is bound
    - DATABASE_URL, KEY_STORE: Persistence backend selection
    - SESSION_SECRET, OAUTH_REDIRECT_URI, CORS_ORIGINS: Dashboard plumbing
    - SWEEP_INTERVAL_SECONDS, LIFETIME_KEY_DAYS, VALIDATE_RATE_LIMIT, LOG_LEVEL
"""

import logging
import os
import secrets
from datetime import timedelta
from typing import Optional

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from .models.key_models import KeyTier

# 50 years stands in for "never expires" without a separate representation.
DEFAULT_LIFETIME_KEY_DAYS = 50 * 365


def _split_ids(raw: Optional[str]) -> frozenset[str]:
    if not raw:
        return frozenset()
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


class Settings(BaseModel):
    """Immutable service configuration."""

    model_config = ConfigDict(frozen=True)

    discord_token: str = ""
    discord_client_id: str = ""
    discord_client_secret: str = ""
    discord_public_key: str = ""
    guild_id: Optional[str] = None
    command_channel_id: Optional[str] = None
    logs_channel_id: Optional[str] = None

    whitelist_users: frozenset[str] = frozenset()
    elevated_issuers: frozenset[str] = frozenset()
    vip_user_ids: frozenset[str] = frozenset()

    database_url: str = "postgresql://postgres@localhost/prism_keys"
    key_store: str = "postgres"

    session_secret: str = Field(default_factory=lambda: secrets.token_hex(32))
    oauth_redirect_uri: str = "http://localhost:8000/api/callback"
    cors_origins: tuple[str, ...] = ("http://localhost:5173",)

    sweep_interval_seconds: float = 60.0
    lifetime_key_days: int = DEFAULT_LIFETIME_KEY_DAYS
    validate_rate_limit: str = "120/minute"
    log_level: str = "INFO"

    @property
    def bot_configured(self) -> bool:
        """The bot can only come online with both a token and an application id."""
        return bool(self.discord_token.strip() and self.discord_client_id.strip())

    @property
    def oauth_configured(self) -> bool:
        return bool(self.discord_client_id and self.discord_client_secret)

    def tier_durations(self) -> dict[KeyTier, timedelta]:
        return {
            KeyTier.SHORT_LIVED: timedelta(hours=24),
            KeyTier.MONTH: timedelta(days=30),
            KeyTier.YEAR: timedelta(days=365),
            KeyTier.LIFETIME: timedelta(days=self.lifetime_key_days),
        }

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        env = os.getenv

        values = {
            "discord_token": env("DISCORD_TOKEN") or env("DISCORD_BOT_TOKEN") or "",
            "discord_client_id": env("DISCORD_CLIENT_ID", ""),
            "discord_client_secret": env("DISCORD_CLIENT_SECRET", ""),
            "discord_public_key": env("DISCORD_PUBLIC_KEY", ""),
            "guild_id": env("DISCORD_GUILD_ID") or None,
            "command_channel_id": env("DISCORD_CHANNEL_ID") or None,
            "logs_channel_id": env("DISCORD_LOGS_CHANNEL_ID") or None,
            "whitelist_users": _split_ids(env("DISCORD_WHITELIST_USERS")),
            "elevated_issuers": _split_ids(env("DISCORD_MONTH_KEY_USERS")),
            "vip_user_ids": _split_ids(env("VIP_USER_IDS")),
            "database_url": env("DATABASE_URL", cls.model_fields["database_url"].default),
            "key_store": env("KEY_STORE", "postgres").lower(),
            "oauth_redirect_uri": env("OAUTH_REDIRECT_URI", cls.model_fields["oauth_redirect_uri"].default),
            "cors_origins": tuple(_split_ids(env("CORS_ORIGINS")) or ("http://localhost:5173",)),
            "sweep_interval_seconds": float(env("SWEEP_INTERVAL_SECONDS", "60")),
            "lifetime_key_days": int(env("LIFETIME_KEY_DAYS", str(DEFAULT_LIFETIME_KEY_DAYS))),
            "validate_rate_limit": env("VALIDATE_RATE_LIMIT", "120/minute"),
            "log_level": env("LOG_LEVEL", "INFO").upper(),
        }
        session_secret = env("SESSION_SECRET")
        if session_secret:
            values["session_secret"] = session_secret

        return cls(**values)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def configure_logging(level: str = "INFO") -> None:
    """Route structlog through stdlib logging with console rendering."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level, logging.INFO))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
