from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


def utc_from_unix(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


@dataclass
class IssuedTokenRecord:
    """Ledger row for one issued bearer token, keyed by its content hash."""

    token_hash: str
    kind: TokenKind
    subject: str
    expires_at: datetime
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    revoked: bool = False

    @classmethod
    def new(
        cls,
        token_hash: str,
        kind: TokenKind | str,
        subject: str,
        expires_at_unix: int,
        *,
        created_at_unix: float | None = None,
    ) -> "IssuedTokenRecord":
        created = (
            utc_from_unix(created_at_unix)
            if created_at_unix is not None
            else datetime.now(timezone.utc)
        )
        return cls(
            token_hash=token_hash,
            kind=TokenKind(kind),
            subject=subject,
            expires_at=utc_from_unix(expires_at_unix),
            created_at=created,
        )

    def is_live(self, now: datetime) -> bool:
        return not self.revoked and self.expires_at > now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tokenHash": self.token_hash,
            "tokenType": self.kind.value,
            "userId": self.subject,
            "expiresAt": self.expires_at.isoformat(),
            "createdAt": self.created_at.isoformat(),
            "isRevoked": self.revoked,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IssuedTokenRecord":
        return cls(
            token_hash=data["tokenHash"],
            kind=TokenKind(data["tokenType"]),
            subject=data["userId"],
            expires_at=ensure_utc(datetime.fromisoformat(data["expiresAt"])),
            created_at=ensure_utc(datetime.fromisoformat(data["createdAt"])),
            revoked=bool(data.get("isRevoked", False)),
        )


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt
