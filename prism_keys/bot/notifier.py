"""Best-effort announcements to the Discord log channel.

The target channel is whatever ``setup-logs`` last persisted, falling back to
``DISCORD_LOGS_CHANNEL_ID``. Nothing here ever raises: an unreachable store,
a missing token, an offline bot or a failed HTTP call is logged and dropped.
"""

from typing import Optional

import httpx
import structlog

from ..db.store import KeyStore
from ..errors import StoreError
from ..keys.clock import Clock, utc_now
from ..models.key_models import LogLevel
from .presence import BotPresence
from .rest import DiscordRestClient

logger = structlog.get_logger()

LEVEL_COLORS = {
    LogLevel.INFO: 0x5865F2,
    LogLevel.WARN: 0xFEE75C,
    LogLevel.ERROR: 0xED4245,
}


class LogChannelNotifier:
    def __init__(
        self,
        rest: DiscordRestClient,
        store: KeyStore,
        presence: BotPresence,
        fallback_channel_id: Optional[str] = None,
        clock: Clock = utc_now,
    ):
        self.rest = rest
        self.store = store
        self.presence = presence
        self.fallback_channel_id = fallback_channel_id
        self.clock = clock

    async def resolve_channel(self) -> Optional[str]:
        try:
            config = await self.store.get_log_channel()
        except StoreError as e:
            logger.warning("Could not read log channel setting", error=str(e))
            config = None
        if config is not None:
            return config.channelId
        return self.fallback_channel_id

    async def announce(self, level: LogLevel, message: str) -> None:
        if not self.rest.configured or not self.presence.online:
            return

        channel_id = await self.resolve_channel()
        if not channel_id:
            return

        payload = {
            "embeds": [
                {
                    "description": message,
                    "color": LEVEL_COLORS[level],
                    "timestamp": self.clock().isoformat(),
                }
            ]
        }
        try:
            await self.rest.create_message(channel_id, payload)
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to send log channel message", channel_id=channel_id, error=str(e))
