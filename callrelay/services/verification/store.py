"""Verification codes sent by SMS."""
import logging
import secrets
import time
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class VerificationStore:
    """Keeps one pending code per phone number. Codes are single use."""

    def __init__(
        self,
        ttl_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._codes: Dict[str, Tuple[str, float]] = {}

    def issue(self, number: str) -> str:
        """Create a four digit code for a number, replacing any pending one."""
        code = str(1000 + secrets.randbelow(9000))
        self._codes[number] = (code, self._clock())
        logger.info(f"[VERIFY] Issued code for {number}")
        return code

    def verify(self, number: str, code: str) -> bool:
        entry = self._codes.get(number)
        if entry is None:
            logger.info(f"[VERIFY] No pending code for {number}")
            return False
        expected, issued_at = entry
        if self._clock() - issued_at > self.ttl_seconds:
            del self._codes[number]
            logger.info(f"[VERIFY] Code for {number} expired")
            return False
        if code.strip() != expected:
            return False
        del self._codes[number]
        return True

    def pending(self, number: str) -> Optional[str]:
        entry = self._codes.get(number)
        return entry[0] if entry else None
