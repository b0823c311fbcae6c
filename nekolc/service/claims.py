from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from dataclasses import dataclass
from typing import Any, Dict

from nekolc.logging import get_logger
from nekolc.service.errors import (
    InvalidSignatureError,
    MalformedTokenError,
    UnsupportedAlgorithmError,
)
from nekolc.storage.models import TokenKind

logger = get_logger(__name__)

_DIGESTS = {
    "HS256": hashlib.sha256,
    "HS384": hashlib.sha384,
    "HS512": hashlib.sha512,
}


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    issued_at: int
    kind: TokenKind
    expires_at: int
    token_id: str

    def __post_init__(self) -> None:
        if self.expires_at <= self.issued_at:
            raise ValueError("expires_at must be later than issued_at")

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now


class ClaimsCodec:
    """Compact HMAC-signed token encoding (JWT wire format).

    The signing key and algorithm are fixed at construction. The algorithm
    named in a presented token's header is never used to pick the verifier.
    """

    def __init__(self, secret: str, *, issuer: str, algorithm: str = "HS256") -> None:
        if not secret:
            raise ValueError("signing secret must not be empty")
        if algorithm not in _DIGESTS:
            raise ValueError(f"unsupported signing algorithm: {algorithm}")
        self._secret = secret.encode()
        self._digest = _DIGESTS[algorithm]
        self.algorithm = algorithm
        self.issuer = issuer

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(self._secret, signing_input.encode(), self._digest).digest()
        )

    def encode(self, claims: TokenClaims) -> str:
        header = {"alg": self.algorithm, "typ": "JWT"}
        payload = {
            "user_id": claims.subject,
            "timestamp": claims.issued_at,
            "token_type": claims.kind.value,
            "iat": claims.issued_at,
            "exp": claims.expires_at,
            "iss": self.issuer,
            "jti": claims.token_id,
        }
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":"), sort_keys=True).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":"), sort_keys=True).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def decode(self, token: str) -> TokenClaims:
        """Verify ``token`` and return its claims.

        Raises MalformedTokenError, InvalidSignatureError or
        UnsupportedAlgorithmError. Expiry is not checked here.
        """
        if not isinstance(token, str) or not token:
            raise MalformedTokenError("empty token")
        signing_input, sep, sig_b64 = token.rpartition(".")
        if not sep:
            raise MalformedTokenError("token has no signature segment")

        # Signature first: any edit, separators included, fails here
        expected_sig = self._sign(signing_input)
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            raise InvalidSignatureError("signature mismatch")

        parts = signing_input.split(".")
        if len(parts) != 2 or not all(parts):
            raise MalformedTokenError("token must have three segments")
        header_b64, payload_b64 = parts

        header = self._load_json(header_b64, "header")
        alg = header.get("alg")
        if alg != self.algorithm:
            logger.warning("token_unexpected_algorithm", alg=alg, expected=self.algorithm)
            raise UnsupportedAlgorithmError(f"unexpected signing algorithm: {alg}")

        payload = self._load_json(payload_b64, "payload")
        if payload.get("iss") != self.issuer:
            raise MalformedTokenError("issuer mismatch")
        try:
            return TokenClaims(
                subject=_require_str(payload, "user_id"),
                issued_at=_require_int(payload, "iat"),
                kind=TokenKind(payload.get("token_type")),
                expires_at=_require_int(payload, "exp"),
                token_id=_require_str(payload, "jti"),
            )
        except ValueError as exc:
            raise MalformedTokenError(str(exc)) from exc

    def _load_json(self, segment: str, label: str) -> Dict[str, Any]:
        try:
            data = json.loads(self._decode_segment(segment))
        except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
            raise MalformedTokenError(f"undecodable {label}") from exc
        if not isinstance(data, dict):
            raise MalformedTokenError(f"{label} is not an object")
        return data

    @staticmethod
    def content_hash(token: str) -> str:
        """One-way digest of the raw token text used as the ledger key."""
        return hashlib.sha256(token.encode()).hexdigest()


def _require_str(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"claim {key} missing")
    return value


def _require_int(payload: Dict[str, Any], key: str) -> int:
    value = payload.get(key)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"claim {key} must be an integer")
    return value
