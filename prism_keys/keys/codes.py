"""Key code generation and tier recovery.

Key codes are human-facing strings built from a tier prefix and groups of four
uppercase alphanumerics joined by ``" - "``:

    short-lived  PrismKey  - XXXX x4
    month        PrismVIP  - XXXX x5 - TTT
    year         PrismYEAR - XXXX x6 - TTTT
    lifetime     PrismLIFE - XXXX x7 - TTTTRRR

``T`` is the tail of the base-36 millisecond timestamp and ``R`` is random
base-36 noise. The suffixes lower the collision odds for long-lived keys since
no uniqueness check against the store happens before insert.

The prefix is kept so a tier can always be recovered from the code alone,
which is what records written before tiers were stored rely on.
"""

import secrets
import string
from datetime import datetime, timezone
from typing import Optional

from ..models.key_models import KeyTier

ALPHABET = string.ascii_uppercase + string.digits
BASE36_DIGITS = string.digits + string.ascii_uppercase
SEPARATOR = " - "
GROUP_LENGTH = 4

TIER_PREFIXES = {
    KeyTier.SHORT_LIVED: "PrismKey",
    KeyTier.MONTH: "PrismVIP",
    KeyTier.YEAR: "PrismYEAR",
    KeyTier.LIFETIME: "PrismLIFE",
}

GROUP_COUNTS = {
    KeyTier.SHORT_LIVED: 4,
    KeyTier.MONTH: 5,
    KeyTier.YEAR: 6,
    KeyTier.LIFETIME: 7,
}

# (timestamp chars, random chars) appended after the groups
SUFFIX_SHAPES = {
    KeyTier.SHORT_LIVED: (0, 0),
    KeyTier.MONTH: (3, 0),
    KeyTier.YEAR: (4, 0),
    KeyTier.LIFETIME: (4, 3),
}

_PREFIX_TO_TIER = {prefix: tier for tier, prefix in TIER_PREFIXES.items()}


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base-36 encoding requires a non-negative value")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def _random_chars(alphabet: str, count: int) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(count))


def generate_key_code(tier: KeyTier, now: Optional[datetime] = None) -> str:
    """Produce a fresh code for ``tier``.

    Args:
        tier: Tier whose prefix and shape to use.
        now: Instant used for the timestamp fragment; defaults to the current time.

    Returns:
        str: Code whose prefix identifies ``tier``.
    """
    groups = [_random_chars(ALPHABET, GROUP_LENGTH) for _ in range(GROUP_COUNTS[tier])]
    parts = [TIER_PREFIXES[tier], *groups]

    timestamp_chars, random_chars = SUFFIX_SHAPES[tier]
    if timestamp_chars:
        moment = now or datetime.now(timezone.utc)
        stamp = to_base36(int(moment.timestamp() * 1000))[-timestamp_chars:]
        parts.append(stamp + _random_chars(BASE36_DIGITS, random_chars))

    return SEPARATOR.join(parts)


def tier_from_code(code: str) -> Optional[KeyTier]:
    """Recover the tier encoded in a code's prefix, or None if unrecognised."""
    if not code:
        return None
    prefix = code.split(SEPARATOR, 1)[0].strip()
    return _PREFIX_TO_TIER.get(prefix)

