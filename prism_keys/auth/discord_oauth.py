"""Discord OAuth2 client for dashboard login (``identify`` scope)."""

from typing import Any, Optional
from urllib.parse import urlencode

import httpx
import structlog

from ..bot.rest import DISCORD_API_BASE
from ..errors import OAuthError
from ..models.key_models import AuthorizedUser

logger = structlog.get_logger()

AUTHORIZE_URL = "https://discord.com/oauth2/authorize"
CDN_BASE = "https://cdn.discordapp.com"


def avatar_url(profile: dict[str, Any]) -> Optional[str]:
    avatar = profile.get("avatar")
    if not avatar:
        return None
    return f"{CDN_BASE}/avatars/{profile['id']}/{avatar}.png"


def profile_to_user(profile: dict[str, Any]) -> AuthorizedUser:
    return AuthorizedUser(
        id=profile["id"],
        email=profile.get("email"),
        displayName=profile.get("global_name") or profile.get("username") or profile["id"],
        avatarUrl=avatar_url(profile),
    )


class DiscordOAuthClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        base_url: str = DISCORD_API_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.client = httpx.AsyncClient(base_url=base_url, timeout=10.0, transport=transport)

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def authorize_url(self, state: str) -> str:
        query = urlencode(
            {
                "client_id": self.client_id,
                "redirect_uri": self.redirect_uri,
                "response_type": "code",
                "scope": "identify",
                "state": state,
            }
        )
        return f"{AUTHORIZE_URL}?{query}"

    async def exchange_code(self, code: str) -> str:
        """Trade an authorization code for an access token."""
        try:
            response = await self.client.post(
                "/oauth2/token",
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.redirect_uri,
                },
            )
            response.raise_for_status()
            return response.json()["access_token"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error("OAuth code exchange failed", error=str(e))
            raise OAuthError("Could not exchange authorization code") from e

    async def fetch_profile(self, access_token: str) -> dict[str, Any]:
        try:
            response = await self.client.get(
                "/users/@me", headers={"Authorization": f"Bearer {access_token}"}
            )
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to fetch Discord profile", error=str(e))
            raise OAuthError("Could not fetch Discord profile") from e

    async def close(self) -> None:
        await self.client.aclose()
