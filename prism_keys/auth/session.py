"""Signed dashboard session tokens.

A token is ``<user_id>.<issued_at>.<signature>`` where the signature is an
HMAC-SHA256 over the first two parts keyed with ``SESSION_SECRET``. Tokens
carry no server-side state; rotating the secret logs everyone out.
"""

import hashlib
import hmac
from datetime import timedelta
from typing import Optional

import structlog

from ..keys.clock import Clock, utc_now

logger = structlog.get_logger()

SESSION_COOKIE = "prism_session"
OAUTH_STATE_COOKIE = "prism_oauth_state"
SESSION_MAX_AGE = timedelta(days=7)


class SessionSigner:
    def __init__(self, secret: str, max_age: timedelta = SESSION_MAX_AGE, clock: Clock = utc_now):
        self._secret = secret.encode()
        self.max_age = max_age
        self.clock = clock

    def _signature(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode(), hashlib.sha256).hexdigest()

    def sign(self, user_id: str) -> str:
        payload = f"{user_id}.{int(self.clock().timestamp())}"
        return f"{payload}.{self._signature(payload)}"

    def unsign(self, token: Optional[str]) -> Optional[str]:
        """Return the user id from a valid, unexpired token, otherwise None."""
        if not token:
            return None
        parts = token.split(".")
        if len(parts) != 3:
            return None
        user_id, issued_at, signature = parts
        payload = f"{user_id}.{issued_at}"
        if not hmac.compare_digest(self._signature(payload), signature):
            logger.warning("Session signature mismatch", security_event=True)
            return None
        try:
            age = self.clock().timestamp() - int(issued_at)
        except ValueError:
            return None
        if age < 0 or age > self.max_age.total_seconds():
            return None
        return user_id
