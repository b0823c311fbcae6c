from __future__ import annotations

import hmac
from typing import Mapping, Optional, Protocol

from nekolc.config import Settings


class CredentialBackend(Protocol):
    def verify(self, username: str, password: str) -> bool: ...


class StaticCredentialBackend:
    """Username/password table held in configuration.

    Stands in for a real user directory; the launcher server ships a single
    operator account configured through AUTH_USERNAME / AUTH_PASSWORD.
    """

    def __init__(self, accounts: Optional[Mapping[str, str]] = None) -> None:
        self._accounts = dict(accounts or {})

    @classmethod
    def from_settings(cls, settings: Settings) -> "StaticCredentialBackend":
        if settings.auth_username and settings.auth_password:
            return cls({settings.auth_username: settings.auth_password})
        return cls()

    def verify(self, username: str, password: str) -> bool:
        expected = self._accounts.get(username)
        # Unknown users still run one comparison
        candidate = expected if expected is not None else "\x00" * len(password)
        matched = hmac.compare_digest(candidate.encode(), password.encode())
        return matched and expected is not None
