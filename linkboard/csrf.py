"""Stateless CSRF tokens.

A token is ``<mac>:<issued>`` where ``mac`` is HMAC-SHA256 over the
subject id, the action name and the issue time, keyed by the site secret.
Nothing is stored server side: validity is recomputed from the inputs.
"""

import base64
import hashlib
import hmac
import time
from typing import Callable

DEFAULT_TIMEOUT = 24 * 60 * 60
# tokens stamped slightly in the future are tolerated (clock skew between workers)
FUTURE_GRACE = 60


def _clean(value: str) -> str:
    return value.replace("\\", "\\\\").replace(":", "\\:")


class CSRFGenerator:
    def __init__(
        self,
        secret: str,
        timeout: int = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        if not secret:
            raise ValueError("CSRF secret must not be empty")
        self.secret = secret.encode("utf-8")
        self.timeout = timeout
        self.clock = clock

    def _mac(self, subject_id: str, action: str, issued: int) -> str:
        message = f"{_clean(subject_id)}:{_clean(action)}:{issued}".encode("utf-8")
        digest = hmac.new(self.secret, message, hashlib.sha256).digest()
        return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

    def generate(self, subject_id: str, action: str) -> str:
        issued = int(self.clock())
        return f"{self._mac(subject_id, action, issued)}:{issued}"

    def valid(self, token: str, subject_id: str, action: str) -> bool:
        if not token or ":" not in token:
            return False
        mac, _, issued_raw = token.rpartition(":")
        try:
            issued = int(issued_raw)
        except ValueError:
            return False
        now = int(self.clock())
        if now - issued >= self.timeout:
            return False
        if issued > now + FUTURE_GRACE:
            return False
        expected = self._mac(subject_id, action, issued)
        return hmac.compare_digest(mac.encode("ascii", "replace"), expected.encode("ascii"))


class SubjectCSRF:
    """A generator bound to one subject, the form-facing interface."""

    def __init__(self, generator: CSRFGenerator, subject_id: str):
        self.generator = generator
        self.subject_id = subject_id

    def generate(self, action: str) -> str:
        return self.generator.generate(self.subject_id, action)

    def valid(self, token: str, action: str) -> bool:
        return self.generator.valid(token, self.subject_id, action)
