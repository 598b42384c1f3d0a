"""Slash-command definitions and startup registration."""

from typing import Optional

import httpx
import structlog
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..keys.audit import AuditLog
from .presence import BotPresence
from .rest import DiscordRestClient

logger = structlog.get_logger()

# Discord application command type 1: CHAT_INPUT
SLASH_COMMANDS = [
    {"name": "generate24key", "type": 1, "description": "Generate a 24-hour key for executor access"},
    {"name": "generate1mkey", "type": 1, "description": "Generate a 1-month transferable key (VIP only)"},
    {"name": "generateyearkey", "type": 1, "description": "Generate a 1-year transferable key (VIP only)"},
    {"name": "generatelifetime", "type": 1, "description": "Generate a lifetime transferable key (VIP only)"},
    {"name": "setup-logs", "type": 1, "description": "Set this channel as the bot logs channel (admin only)"},
]


async def register_commands(
    rest: DiscordRestClient,
    application_id: str,
    guild_id: Optional[str],
    presence: BotPresence,
    audit: AuditLog,
    attempts: int = 3,
) -> bool:
    """Register slash commands and bring the bot online.

    Retries transient HTTP failures with exponential backoff. On success the
    presence is marked online and an INFO audit entry is written; on final
    failure an ERROR entry is written and the bot stays offline.

    Returns:
        bool: Whether registration succeeded.
    """
    if not rest.configured or not application_id.strip():
        logger.warning("Skipping command registration - Discord bot configuration missing")
        return False

    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(httpx.HTTPError),
        ):
            with attempt:
                await rest.put_commands(application_id, SLASH_COMMANDS, guild_id=guild_id)
    except RetryError as e:
        cause = e.last_attempt.exception()
        logger.error("Error registering Discord commands", error=str(cause))
        await audit.error(f"Failed to register Discord slash commands: {cause}")
        return False

    logger.info(
        "Discord slash commands registered",
        scope=f"guild {guild_id}" if guild_id else "global",
        count=len(SLASH_COMMANDS),
    )
    presence.mark_online()
    await audit.info("Bot started successfully. Slash commands registered.")
    return True
