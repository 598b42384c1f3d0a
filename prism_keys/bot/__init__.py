"""Discord command front-end: interactions, command routing, registration and log channel."""

from .commands import CommandRouter
from .interactions import Interaction, InteractionVerifier
from .notifier import LogChannelNotifier
from .presence import BotPresence
from .registration import SLASH_COMMANDS, register_commands
from .rest import DiscordRestClient

__all__ = [
    "BotPresence",
    "CommandRouter",
    "DiscordRestClient",
    "Interaction",
    "InteractionVerifier",
    "LogChannelNotifier",
    "SLASH_COMMANDS",
    "register_commands",
]
