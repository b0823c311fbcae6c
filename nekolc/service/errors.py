from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries an HTTP status_code and a stable error_code:
    - invalid_request (400)
    - unauthorized (401)
    - internal_error (500)
    - not_implemented (501)
    """

    status_code: int = 400
    error_code: str = "invalid_request"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class InvalidRequestError(ServiceError):
    """Request is missing required fields or is malformed (400)."""
    status_code = 400
    error_code = "invalid_request"


class AuthenticationError(ServiceError):
    """Credentials, signature or token were not accepted (401)."""
    status_code = 401
    error_code = "unauthorized"


class ServerError(ServiceError):
    """Persistence or other internal failure (500)."""
    status_code = 500
    error_code = "internal_error"


class AuthDisabledError(ServiceError):
    """Authentication is administratively switched off (501)."""
    status_code = 501
    error_code = "not_implemented"


class TokenError(Exception):
    """Internal reason a bearer token was refused.

    These never cross the API boundary; AuthService logs the reason and
    raises AuthenticationError instead.
    """

    reason: str = "invalid_token"


class MalformedTokenError(TokenError):
    reason = "malformed"


class InvalidSignatureError(TokenError):
    reason = "invalid_signature"


class UnsupportedAlgorithmError(TokenError):
    reason = "unsupported_algorithm"


class NotARefreshTokenError(TokenError):
    reason = "not_a_refresh_token"


__all__ = [
    "ServiceError",
    "InvalidRequestError",
    "AuthenticationError",
    "ServerError",
    "AuthDisabledError",
    "TokenError",
    "MalformedTokenError",
    "InvalidSignatureError",
    "UnsupportedAlgorithmError",
    "NotARefreshTokenError",
]
