"""Key lifecycle engine: code generation, issuance, validation, expiry and audit."""

from .audit import AuditLog
from .clock import utc_now
from .codes import generate_key_code, tier_from_code
from .issuance import KeyIssuanceEngine
from .stats import compute_stats
from .sweeper import ExpirationSweeper, SweepReport
from .validation import KeyValidationService

__all__ = [
    "AuditLog",
    "ExpirationSweeper",
    "KeyIssuanceEngine",
    "KeyValidationService",
    "SweepReport",
    "compute_stats",
    "generate_key_code",
    "tier_from_code",
    "utc_now",
]
