"""Dashboard summary statistics."""

from datetime import datetime, time, timezone

from ..db.store import KeyStore
from ..models.key_models import DashboardStats
from .clock import Clock, utc_now


def start_of_day(moment: datetime) -> datetime:
    """UTC midnight of the day containing ``moment``."""
    return datetime.combine(moment.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)


async def compute_stats(store: KeyStore, clock: Clock = utc_now) -> DashboardStats:
    """Aggregate key counts for the dashboard.

    ``activeKeys`` counts keys flagged active. Keys past expiry count until the
    sweeper deactivates them.
    ``successRate`` is the active share of all keys, 100 when there are none.
    """
    now = clock()
    keys = await store.list_all_keys()
    active = [record for record in keys if record.active]
    midnight = start_of_day(now)
    users_today = {record.ownerId for record in keys if record.createdAt >= midnight}

    total = len(keys)
    success_rate = len(active) / total * 100 if total else 100.0

    return DashboardStats(
        totalKeys=total,
        activeKeys=len(active),
        usersToday=len(users_today),
        successRate=success_rate,
    )
