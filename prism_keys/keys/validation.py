"""Key validation service.

Answers "is this code usable by this caller right now". Checks run in a fixed
order and the first failing one decides the reason:

    1. unknown code                          -> "Key not found"
    2. personal key used by someone else     -> "Key does not belong to this user"
    3. inactive or past ``expiresAt``        -> "Key has expired or is inactive"

Transferability comes from the stored tier, falling back to the code prefix
for records that predate tier storage.
"""

from typing import Optional

import structlog

from ..db.store import KeyStore
from ..errors import NotFoundError, StoreError
from ..models.key_models import LegacyValidationResult, ValidationOutcome
from .audit import AuditLog
from .clock import Clock, utc_now

logger = structlog.get_logger()

REASON_NOT_FOUND = "Key not found"
REASON_NOT_OWNER = "Key does not belong to this user"
REASON_EXPIRED = "Key has expired or is inactive"
MESSAGE_VALID_FOR_USER = "Key is valid for this user"
MESSAGE_VALID = "Key is valid"


class KeyValidationService:
    def __init__(self, store: KeyStore, audit: AuditLog, clock: Clock = utc_now):
        self.store = store
        self.audit = audit
        self.clock = clock

    async def validate(self, code: str, caller_id: Optional[str] = None) -> ValidationOutcome:
        """Owner-checked validation.

        Raises:
            StoreError: The lookup failed; an ERROR entry was recorded.
        """
        record = await self._lookup(code, caller_id)
        if record is None:
            logger.info("Validation rejected", reason=REASON_NOT_FOUND, caller_id=caller_id)
            return ValidationOutcome(valid=False, reason=REASON_NOT_FOUND)

        if not record.transferable and caller_id is not None and caller_id != record.ownerId:
            await self.audit.warn(
                f"Key {record.code} owned by {record.ownerLabel} presented by another user",
                actor_id=caller_id,
            )
            return ValidationOutcome(valid=False, reason=REASON_NOT_OWNER)

        if not record.is_usable_at(self.clock()):
            logger.info("Validation rejected", reason=REASON_EXPIRED, caller_id=caller_id)
            return ValidationOutcome(valid=False, reason=REASON_EXPIRED)

        return ValidationOutcome(
            valid=True,
            expiresAt=record.expiresAt,
            ownerLabel=record.ownerLabel,
            message=MESSAGE_VALID_FOR_USER,
        )

    async def validate_legacy(self, code: str) -> LegacyValidationResult:
        """Unchecked validation for clients that predate ownership checks.

        Raises:
            NotFoundError: Unknown code.
            StoreError: The lookup failed; an ERROR entry was recorded.
        """
        record = await self._lookup(code, None)
        if record is None:
            raise NotFoundError(REASON_NOT_FOUND)
        if record.is_usable_at(self.clock()):
            return LegacyValidationResult(valid=True, key=record, message=MESSAGE_VALID)
        return LegacyValidationResult(valid=False, message=REASON_EXPIRED)

    async def _lookup(self, code: str, caller_id: Optional[str]):
        try:
            return await self.store.get_key(code)
        except StoreError as e:
            await self.audit.error(f"Key validation failed: {e}", actor_id=caller_id)
            raise
