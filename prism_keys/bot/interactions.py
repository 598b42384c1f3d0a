"""Discord interaction webhook: signature verification and payload parsing.

Discord signs every interaction request with the application's Ed25519 key.
The signed message is the ``X-Signature-Timestamp`` header value followed by
the raw request body; the signature arrives hex-encoded in
``X-Signature-Ed25519``. Requests that fail verification must be rejected
with 401 or Discord disables the endpoint.
"""

from typing import Any, Optional

import structlog
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import ed25519
from pydantic import BaseModel

from ..models.key_models import Requester

logger = structlog.get_logger()

# Interaction types
PING = 1
APPLICATION_COMMAND = 2

# Interaction response types
PONG = 1
CHANNEL_MESSAGE_WITH_SOURCE = 4

EPHEMERAL_FLAG = 1 << 6
ADMINISTRATOR_PERMISSION = 1 << 3


class InteractionVerifier:
    def __init__(self, public_key_hex: str):
        self.public_key: Optional[ed25519.Ed25519PublicKey] = None
        if public_key_hex:
            try:
                self.public_key = ed25519.Ed25519PublicKey.from_public_bytes(bytes.fromhex(public_key_hex))
            except ValueError as e:
                logger.error("Invalid DISCORD_PUBLIC_KEY; interactions will be rejected", error=str(e))

    def verify(self, signature: Optional[str], timestamp: Optional[str], body: bytes) -> bool:
        if self.public_key is None or not signature or not timestamp:
            return False
        try:
            self.public_key.verify(bytes.fromhex(signature), timestamp.encode() + body)
        except (InvalidSignature, ValueError):
            return False
        return True


class DiscordUser(BaseModel):
    id: str
    username: str
    discriminator: Optional[str] = None

    @property
    def label(self) -> str:
        """``username#discriminator``, or the bare username for migrated accounts."""
        if self.discriminator and self.discriminator != "0":
            return f"{self.username}#{self.discriminator}"
        return self.username


class Interaction(BaseModel):
    """The subset of an interaction payload the command router needs."""

    type: int
    guild_id: Optional[str] = None
    channel_id: Optional[str] = None
    command_name: Optional[str] = None
    user: Optional[DiscordUser] = None
    permissions: int = 0

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "Interaction":
        # Guild interactions nest the user under "member"; DMs carry it at the top level
        member = payload.get("member") or {}
        user = member.get("user") or payload.get("user")
        data = payload.get("data") or {}
        return cls(
            type=payload["type"],
            guild_id=payload.get("guild_id"),
            channel_id=payload.get("channel_id") or (payload.get("channel") or {}).get("id"),
            command_name=data.get("name"),
            user=DiscordUser.model_validate(user) if user else None,
            permissions=int(member.get("permissions") or 0),
        )

    @property
    def is_administrator(self) -> bool:
        return bool(self.permissions & ADMINISTRATOR_PERMISSION)

    def requester(self) -> Requester:
        if self.user is None:
            raise ValueError("Interaction carries no user")
        return Requester(id=self.user.id, label=self.user.label)


def pong() -> dict[str, Any]:
    return {"type": PONG}


def ephemeral_embed(embed: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": CHANNEL_MESSAGE_WITH_SOURCE,
        "data": {"embeds": [embed], "flags": EPHEMERAL_FLAG},
    }
