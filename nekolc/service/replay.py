from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Callable

from nekolc.logging import get_logger

logger = get_logger(__name__)

DEFAULT_REPLAY_WINDOW_SECONDS = 300


@dataclass(frozen=True)
class DeviceSignatureAssertion:
    identifier: str
    timestamp: int
    signature: str


class ReplayGuard:
    """Accepts device assertions signed with the shared secret within a time window.

    The expected signature is the hex SHA-256 of identifier, decimal
    timestamp and secret concatenated, which is what launcher clients compute.
    """

    def __init__(
        self,
        secret: str,
        *,
        window_seconds: int = DEFAULT_REPLAY_WINDOW_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("signing secret must not be empty")
        self._secret = secret
        self.window_seconds = window_seconds
        self._clock = clock

    def expected_signature(self, identifier: str, timestamp: int) -> str:
        data = f"{identifier}{int(timestamp)}{self._secret}"
        return hashlib.sha256(data.encode()).hexdigest()

    def verify(self, assertion: DeviceSignatureAssertion) -> bool:
        expected = self.expected_signature(assertion.identifier, assertion.timestamp)
        if not hmac.compare_digest(
            expected.encode(), (assertion.signature or "").encode()
        ):
            logger.warning(
                "replay_signature_mismatch", identifier=assertion.identifier
            )
            return False
        skew = abs(int(self._clock()) - int(assertion.timestamp))
        if skew > self.window_seconds:
            logger.warning(
                "replay_timestamp_outside_window",
                identifier=assertion.identifier,
                skew_seconds=skew,
                window_seconds=self.window_seconds,
            )
            return False
        return True
