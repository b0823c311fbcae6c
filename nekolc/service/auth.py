from __future__ import annotations

import time
from typing import Callable, Optional, Protocol

from nekolc.logging import get_logger
from nekolc.service.claims import ClaimsCodec, TokenClaims
from nekolc.service.credentials import CredentialBackend
from nekolc.service.errors import (
    AuthDisabledError,
    AuthenticationError,
    InvalidRequestError,
    ServerError,
    TokenError,
)
from nekolc.service.issuer import IssuedToken, TokenIssuer, TokenPair
from nekolc.service.replay import DeviceSignatureAssertion, ReplayGuard
from nekolc.storage.errors import ConstraintViolation, StorageError
from nekolc.storage.models import IssuedTokenRecord, TokenKind, utc_from_unix

logger = get_logger(__name__)


class TokenStore(Protocol):
    def put(self, record: IssuedTokenRecord) -> None: ...

    def get(self, token_hash: str) -> Optional[IssuedTokenRecord]: ...

    def revoke(self, token_hash: str) -> None: ...

    def revoke_all_for_subject(self, subject: str) -> int: ...

    def close(self) -> None: ...


class AuthService:
    """Login, refresh, validation and logout over a revocable token ledger.

    A presented token is live only if it passes signature verification and
    its content hash maps to a non-revoked, unexpired ledger record. Every
    authentication failure surfaces as AuthenticationError; the specific
    reason is logged, never returned.
    """

    def __init__(
        self,
        store: TokenStore,
        codec: ClaimsCodec,
        issuer: TokenIssuer,
        replay_guard: ReplayGuard,
        credentials: CredentialBackend,
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.codec = codec
        self.issuer = issuer
        self.replay_guard = replay_guard
        self.credentials = credentials
        self.enabled = enabled
        self.logger = logger
        self._clock = clock

    def _ensure_enabled(self) -> None:
        if not self.enabled:
            raise AuthDisabledError("Authentication system not implemented")

    def _resolve_subject(
        self,
        username: Optional[str],
        password: Optional[str],
        identifier: Optional[str],
        timestamp: Optional[int],
        signature: Optional[str],
    ) -> str:
        if username and password:
            if self.credentials.verify(username, password):
                return username
            self.logger.warning("login_rejected", mode="credentials", reason="bad_credentials")
            raise AuthenticationError("Invalid credentials")
        if identifier and signature:
            assertion = DeviceSignatureAssertion(
                identifier=identifier,
                timestamp=int(timestamp or 0),
                signature=signature,
            )
            if self.replay_guard.verify(assertion):
                return identifier
            self.logger.warning("login_rejected", mode="signature", reason="bad_assertion")
            raise AuthenticationError("Invalid credentials")
        raise InvalidRequestError("Username/password or identifier/signature required")

    def _record_for(self, issued: IssuedToken) -> IssuedTokenRecord:
        claims = issued.claims
        return IssuedTokenRecord.new(
            self.codec.content_hash(issued.token),
            claims.kind,
            claims.subject,
            claims.expires_at,
            created_at_unix=claims.issued_at,
        )

    def _persist(self, issued: IssuedToken) -> None:
        try:
            self.store.put(self._record_for(issued))
        except (ConstraintViolation, StorageError) as exc:
            self.logger.error(
                "token_persist_failed",
                kind=issued.claims.kind.value,
                subject=issued.claims.subject,
                error=str(exc),
            )
            raise ServerError(f"Failed to store {issued.claims.kind.value} token") from exc

    def login(
        self,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        identifier: Optional[str] = None,
        timestamp: Optional[int] = None,
        signature: Optional[str] = None,
    ) -> TokenPair:
        self._ensure_enabled()
        subject = self._resolve_subject(username, password, identifier, timestamp, signature)
        pair = self.issuer.issue_pair(subject)

        self._persist(pair.access)
        try:
            self._persist(pair.refresh)
        except ServerError:
            # The access record must not stay live without its pair
            try:
                self.store.revoke(self.codec.content_hash(pair.access.token))
            except StorageError as exc:
                self.logger.warning(
                    "orphan_access_revoke_failed", subject=subject, error=str(exc)
                )
            raise

        self.logger.info(
            "login_succeeded", subject=subject, mode="credentials" if username and password else "signature"
        )
        return pair

    def refresh(self, refresh_token: str) -> IssuedToken:
        """Mint a new access token; the refresh token itself stays valid."""
        self._ensure_enabled()
        if not refresh_token:
            raise AuthenticationError("Invalid or expired refresh token")
        record = self._lookup(refresh_token)
        if record is None:
            self.logger.warning("refresh_rejected", reason="unknown_or_revoked")
            raise AuthenticationError("Invalid or expired refresh token")
        if record.kind is not TokenKind.REFRESH:
            self.logger.warning("refresh_rejected", reason="wrong_kind", kind=record.kind.value)
            raise AuthenticationError("Invalid or expired refresh token")
        if record.expires_at <= utc_from_unix(self._clock()):
            self.logger.warning("refresh_rejected", reason="expired")
            raise AuthenticationError("Invalid or expired refresh token")
        try:
            issued = self.issuer.renew_access(refresh_token)
        except TokenError as exc:
            self.logger.warning("refresh_rejected", reason=exc.reason)
            raise AuthenticationError("Invalid or expired refresh token") from exc
        self._persist(issued)
        self.logger.info("access_token_refreshed", subject=issued.claims.subject)
        return issued

    def validate(self, access_token: str) -> TokenClaims:
        self._ensure_enabled()
        try:
            claims = self.codec.decode(access_token)
        except TokenError as exc:
            self.logger.warning("validate_rejected", reason=exc.reason)
            raise AuthenticationError("Invalid or expired access token") from exc
        if claims.kind is not TokenKind.ACCESS:
            self.logger.warning("validate_rejected", reason="wrong_kind", kind=claims.kind.value)
            raise AuthenticationError("Invalid or expired access token")
        if claims.is_expired(self._clock()):
            self.logger.warning("validate_rejected", reason="expired")
            raise AuthenticationError("Invalid or expired access token")
        if self._lookup(access_token) is None:
            self.logger.warning("validate_rejected", reason="revoked_or_unknown")
            raise AuthenticationError("Invalid or expired access token")
        return claims

    def logout(
        self, access_token: Optional[str] = None, refresh_token: Optional[str] = None
    ) -> None:
        """Revoke both presented tokens. Absent or already revoked tokens are fine."""
        self._ensure_enabled()
        failures = []
        for kind, token in (("access", access_token), ("refresh", refresh_token)):
            if not token:
                continue
            try:
                self.store.revoke(self.codec.content_hash(token))
            except StorageError as exc:
                self.logger.error("token_revoke_failed", kind=kind, error=str(exc))
                failures.append(kind)
        if failures:
            raise ServerError(f"Failed to revoke {' and '.join(failures)} token")

    def revoke_all_for_subject(self, subject: str) -> int:
        if not subject:
            raise InvalidRequestError("subject required")
        try:
            return self.store.revoke_all_for_subject(subject)
        except StorageError as exc:
            self.logger.error("subject_revoke_failed", subject=subject, error=str(exc))
            raise ServerError("Failed to revoke subject tokens") from exc

    def _lookup(self, token: str) -> Optional[IssuedTokenRecord]:
        try:
            return self.store.get(self.codec.content_hash(token))
        except StorageError as exc:
            self.logger.error("token_lookup_failed", error=str(exc))
            raise ServerError("Failed to read token ledger") from exc
