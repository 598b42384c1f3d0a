"""Bot readiness and uptime tracking."""

from datetime import datetime
from typing import Optional

from ..keys.clock import Clock, utc_now
from ..models.key_models import BotStatus


class BotPresence:
    """Tracks whether slash commands are registered and since when.

    The bot is considered online once registration has succeeded; uptime is
    measured from that moment.
    """

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock
        self.started_at: Optional[datetime] = None

    @property
    def online(self) -> bool:
        return self.started_at is not None

    def mark_online(self) -> None:
        self.started_at = self.clock()

    def mark_offline(self) -> None:
        self.started_at = None

    def uptime(self) -> str:
        if self.started_at is None:
            return "0s"
        elapsed = max(int((self.clock() - self.started_at).total_seconds()), 0)
        days, rest = divmod(elapsed, 86400)
        hours, rest = divmod(rest, 3600)
        minutes = rest // 60
        return f"{days}d {hours}h {minutes}m"

    def status(self) -> BotStatus:
        return BotStatus(online=self.online, uptime=self.uptime())
