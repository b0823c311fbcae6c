from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Callable

from nekolc.service.claims import ClaimsCodec, TokenClaims
from nekolc.service.errors import NotARefreshTokenError
from nekolc.storage.models import TokenKind

DEFAULT_ACCESS_TTL_SECONDS = 60 * 60
DEFAULT_REFRESH_TTL_DAYS = 30


@dataclass(frozen=True)
class IssuedToken:
    token: str
    claims: TokenClaims


@dataclass(frozen=True)
class TokenPair:
    access: IssuedToken
    refresh: IssuedToken


class TokenIssuer:
    """Mints signed access/refresh tokens. Persisting them is the caller's job."""

    def __init__(
        self,
        codec: ClaimsCodec,
        *,
        access_ttl_seconds: int = DEFAULT_ACCESS_TTL_SECONDS,
        refresh_ttl_days: int = DEFAULT_REFRESH_TTL_DAYS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.codec = codec
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_days * 24 * 60 * 60
        self._clock = clock

    def _mint(self, subject: str, kind: TokenKind, issued_at: int) -> IssuedToken:
        ttl = (
            self.access_ttl_seconds
            if kind is TokenKind.ACCESS
            else self.refresh_ttl_seconds
        )
        claims = TokenClaims(
            subject=subject,
            issued_at=issued_at,
            kind=kind,
            expires_at=issued_at + ttl,
            token_id=str(uuid.uuid4()),
        )
        return IssuedToken(token=self.codec.encode(claims), claims=claims)

    def issue_pair(self, subject: str) -> TokenPair:
        if not subject:
            raise ValueError("subject must not be empty")
        now = int(self._clock())
        return TokenPair(
            access=self._mint(subject, TokenKind.ACCESS, now),
            refresh=self._mint(subject, TokenKind.REFRESH, now),
        )

    def renew_access(self, refresh_token: str) -> IssuedToken:
        """Mint a fresh access token for the subject of ``refresh_token``.

        Raises TokenError subclasses from decoding, or NotARefreshTokenError
        when an access token is presented.
        """
        claims = self.codec.decode(refresh_token)
        if claims.kind is not TokenKind.REFRESH:
            raise NotARefreshTokenError("token is not a refresh token")
        return self._mint(claims.subject, TokenKind.ACCESS, int(self._clock()))
