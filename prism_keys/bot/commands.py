"""Slash-command routing and reply rendering.

Each issuance command maps 1:1 to a ``KeyIssuanceEngine.issue`` call and an
ephemeral reply carrying a single embed. Every path through ``dispatch``
returns a reply, including unexpected failures.

Restrictions:
    - With ``DISCORD_GUILD_ID`` set, commands from any other guild are refused.
    - With ``DISCORD_CHANNEL_ID`` set, ``generate24key`` is only served in
      that channel. Elevated tiers and ``setup-logs`` work in any channel.
"""

from datetime import datetime
from typing import Any, Iterable, Optional

import structlog

from ..db.store import KeyStore
from ..errors import AuthorizationError, IssuanceFailedError, StoreError
from ..keys.audit import AuditLog
from ..keys.clock import Clock, utc_now
from ..keys.issuance import KeyIssuanceEngine
from ..models.key_models import IssuanceResult, KeyTier, LogChannelConfig
from .interactions import Interaction, ephemeral_embed

logger = structlog.get_logger()

COMMAND_TIERS = {
    "generate24key": KeyTier.SHORT_LIVED,
    "generate1mkey": KeyTier.MONTH,
    "generateyearkey": KeyTier.YEAR,
    "generatelifetime": KeyTier.LIFETIME,
}
SETUP_LOGS_COMMAND = "setup-logs"

COLOR_SUCCESS = 0x57F287
COLOR_ERROR = 0xED4245
COLOR_BLURPLE = 0x5865F2

# (color, title, duration field, footer) for transferable tiers
_ELEVATED_REPLIES = {
    KeyTier.MONTH: (0xFFD700, "👑 Month Key Generated!", "30 Days", "🎁 This key can be used by anyone you share it with!"),
    KeyTier.YEAR: (0xFF6B35, "🚀 Year Key Generated!", "365 Days", "🎯 This key can be used by anyone you share it with!"),
    KeyTier.LIFETIME: (0x9B59B6, "♾️ Lifetime Key Generated!", None, "♾️ This key will last a lifetime and can be shared with anyone!"),
}
_ELEVATED_DESCRIPTIONS = {
    KeyTier.MONTH: "Your 1-month transferable executor key has been generated.",
    KeyTier.YEAR: "Your 1-year transferable executor key has been generated.",
    KeyTier.LIFETIME: "Your lifetime transferable executor key has been generated.",
}

GENERIC_ERROR = "An error occurred while processing your command. Please try again later."


def discord_timestamp(moment: datetime) -> str:
    return f"<t:{int(moment.timestamp())}:F>"


def error_embed(title: str, description: str) -> dict[str, Any]:
    return {"color": COLOR_ERROR, "title": f"❌ {title}", "description": description}


def short_lived_embed(result: IssuanceResult) -> dict[str, Any]:
    fresh = not result.wasReused
    return {
        "color": COLOR_SUCCESS,
        "title": "✅ Key Generated Successfully!" if fresh else "🔑 Your Active Key",
        "description": (
            "Your 24-hour executor key has been generated." if fresh else "Here is your current active key."
        ),
        "fields": [
            {"name": "🔑 Your Key", "value": f"```{result.code}```", "inline": False},
            {"name": "⏰ Expires", "value": discord_timestamp(result.expiresAt), "inline": True},
            {"name": "🔄 Status", "value": "New Key" if fresh else "Existing Key", "inline": True},
        ],
        "footer": {
            "text": (
                "New key created! You will receive the same key until it expires."
                if fresh
                else "This is your current active key. You will get a new one when this expires."
            )
        },
    }


def elevated_embed(result: IssuanceResult, lifetime_days: int) -> dict[str, Any]:
    color, title, duration, footer = _ELEVATED_REPLIES[result.tier]
    if duration is None:
        duration = f"Lifetime ({lifetime_days // 365} Years)"
    return {
        "color": color,
        "title": title,
        "description": _ELEVATED_DESCRIPTIONS[result.tier],
        "fields": [
            {"name": "🔑 Your Transferable Key", "value": f"```{result.code}```", "inline": False},
            {"name": "⏰ Expires", "value": discord_timestamp(result.expiresAt), "inline": True},
            {"name": "🔄 Duration", "value": duration, "inline": True},
            {"name": "📤 Transferable", "value": "Yes - Can be shared with anyone", "inline": True},
        ],
        "footer": {"text": footer},
    }


class CommandRouter:
    def __init__(
        self,
        engine: KeyIssuanceEngine,
        store: KeyStore,
        audit: AuditLog,
        guild_id: Optional[str] = None,
        command_channel_id: Optional[str] = None,
        log_channel_admins: Iterable[str] = (),
        lifetime_days: int = 50 * 365,
        clock: Clock = utc_now,
    ):
        self.engine = engine
        self.store = store
        self.audit = audit
        self.guild_id = guild_id
        self.command_channel_id = command_channel_id
        self.log_channel_admins = frozenset(log_channel_admins)
        self.lifetime_days = lifetime_days
        self.clock = clock

    async def dispatch(self, interaction: Interaction) -> dict[str, Any]:
        """Route an application command and return the interaction response."""
        try:
            embed = await self._route(interaction)
        except Exception as e:
            logger.error(
                "Error handling interaction",
                command=interaction.command_name,
                error=str(e),
                exc_info=True,
            )
            actor_id = interaction.user.id if interaction.user else None
            await self.audit.error(f"Command {interaction.command_name} failed: {e}", actor_id=actor_id)
            embed = error_embed("Error", GENERIC_ERROR)
        return ephemeral_embed(embed)

    async def _route(self, interaction: Interaction) -> dict[str, Any]:
        name = interaction.command_name
        if self.guild_id and interaction.guild_id != self.guild_id:
            return error_embed("Server Restricted", "This bot only works in the authorized server.")

        if name == "generate24key" and self.command_channel_id and interaction.channel_id != self.command_channel_id:
            return error_embed("Channel Restricted", "This command can only be used in the designated channel.")

        if name in COMMAND_TIERS:
            return await self._issue(interaction, COMMAND_TIERS[name])
        if name == SETUP_LOGS_COMMAND:
            return await self._setup_logs(interaction)

        logger.warning("Unknown command received", command=name)
        return error_embed("Unknown Command", "This command is not recognised.")

    async def _issue(self, interaction: Interaction, tier: KeyTier) -> dict[str, Any]:
        requester = interaction.requester()
        try:
            result = await self.engine.issue(requester, tier)
        except AuthorizationError:
            return error_embed(
                "Access Denied",
                f"You do not have permission to generate {tier.label} keys. Only VIP users can use this command.",
            )
        except IssuanceFailedError:
            return error_embed(
                "Error",
                f"An error occurred while generating your {tier.label} key. Please try again later.",
            )

        if tier is KeyTier.SHORT_LIVED:
            return short_lived_embed(result)
        return elevated_embed(result, self.lifetime_days)

    async def _setup_logs(self, interaction: Interaction) -> dict[str, Any]:
        requester = interaction.requester()
        if not interaction.is_administrator and requester.id not in self.log_channel_admins:
            await self.audit.warn(f"Unauthorized setup-logs attempt by {requester.label}", actor_id=requester.id)
            return error_embed("Access Denied", "You need Administrator permissions to use this command.")

        if not interaction.channel_id:
            return error_embed("Error", "This command must be used in a server channel.")

        config = LogChannelConfig(
            channelId=interaction.channel_id,
            guildId=interaction.guild_id,
            boundBy=requester.id,
            boundAt=self.clock(),
        )
        try:
            await self.store.set_log_channel(config)
        except StoreError as e:
            await self.audit.error(f"Setup logs command failed for {requester.label}: {e}", actor_id=requester.id)
            return error_embed(
                "Error", "An error occurred while setting up the logs channel. Please try again later."
            )

        await self.audit.info(
            f"Logs channel set to {config.channelId} by admin: {requester.label}",
            actor_id=requester.id,
            announcement=f"🔧 Logs channel configured by {requester.label}. All bot activities will now be logged here.",
        )
        return {
            "color": COLOR_BLURPLE,
            "title": "✅ Logs Channel Set",
            "description": f"This channel (<#{config.channelId}>) has been set as the bot logs channel.",
            "fields": [
                {
                    "name": "📝 What will be logged:",
                    "value": "• Key generation events\n• User cooldown status\n• VIP user activities\n• Bot errors and warnings",
                    "inline": False,
                }
            ],
            "timestamp": config.boundAt.isoformat(),
        }
