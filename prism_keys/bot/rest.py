"""Minimal Discord REST client for the bot token.

Only the two calls the service needs are wrapped: bulk-overwriting slash
commands and posting a message to a channel. Callers own retry policy.
"""

from typing import Any, Optional

import httpx
import structlog

logger = structlog.get_logger()

DISCORD_API_BASE = "https://discord.com/api/v10"


class DiscordRestClient:
    def __init__(
        self,
        token: str,
        base_url: str = DISCORD_API_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.token = token
        self.client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bot {token}",
                "Content-Type": "application/json",
            },
        )

    @property
    def configured(self) -> bool:
        return bool(self.token.strip())

    async def put_commands(
        self, application_id: str, commands: list[dict[str, Any]], guild_id: Optional[str] = None
    ) -> list[dict[str, Any]]:
        """Overwrite the application's slash commands, scoped to a guild when given."""
        if guild_id:
            path = f"/applications/{application_id}/guilds/{guild_id}/commands"
        else:
            path = f"/applications/{application_id}/commands"
        response = await self.client.put(path, json=commands)
        response.raise_for_status()
        return response.json()

    async def create_message(self, channel_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self.client.post(f"/channels/{channel_id}/messages", json=payload)
        response.raise_for_status()
        return response.json()

    async def close(self) -> None:
        await self.client.aclose()
