"""Dashboard identity: Discord OAuth login, signed sessions and VIP gating."""

from .auth import get_session_user, require_vip_user
from .discord_oauth import DiscordOAuthClient, profile_to_user
from .session import OAUTH_STATE_COOKIE, SESSION_COOKIE, SESSION_MAX_AGE, SessionSigner

__all__ = [
    "DiscordOAuthClient",
    "OAUTH_STATE_COOKIE",
    "SESSION_COOKIE",
    "SESSION_MAX_AGE",
    "SessionSigner",
    "get_session_user",
    "profile_to_user",
    "require_vip_user",
]
