from __future__ import annotations

import time
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

API_VERSION = "v0"

# Stable error codes rendered in the error envelope
_VALID_ERROR_CODES = frozenset({
    "invalid_request",
    "unauthorized",
    "internal_error",
    "not_implemented",
})

# Bearer tokens from this service are well under this length
MAX_TOKEN_LENGTH = 4096


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, serialize_by_alias=True)


class Meta(_CamelModel):
    api_version: str = Field(default=API_VERSION, alias="apiVersion")
    timestamp: int = Field(default_factory=lambda: int(time.time()))


class Preferences(BaseModel):
    language: Optional[str] = Field(default=None, max_length=32)


class AuthInfo(BaseModel):
    """Either username/password or identifier/timestamp/signature."""

    username: Optional[str] = Field(default=None, max_length=256)
    password: Optional[str] = Field(default=None, max_length=1024)
    identifier: Optional[str] = Field(default=None, max_length=256)
    timestamp: Optional[int] = None
    signature: Optional[str] = Field(default=None, max_length=256)

    @model_validator(mode="after")
    def _require_one_mode(self):
        if self.username and self.password:
            return self
        if self.identifier and self.signature:
            return self
        raise ValueError("username/password or identifier/signature required")


class LoginRequest(BaseModel):
    auth: AuthInfo
    preferences: Optional[Preferences] = None


class LoginResponse(_CamelModel):
    access_token: str = Field(alias="accessToken")
    refresh_token: str = Field(alias="refreshToken")
    meta: Meta = Field(default_factory=Meta)


class RefreshRequest(_CamelModel):
    refresh_token: str = Field(..., alias="refreshToken", max_length=MAX_TOKEN_LENGTH)


class RefreshResponse(_CamelModel):
    access_token: str = Field(alias="accessToken")
    meta: Meta = Field(default_factory=Meta)


class ValidateRequest(_CamelModel):
    access_token: str = Field(..., alias="accessToken", max_length=MAX_TOKEN_LENGTH)


class LogoutInfo(_CamelModel):
    access_token: Optional[str] = Field(
        default=None, alias="accessToken", max_length=MAX_TOKEN_LENGTH
    )
    refresh_token: Optional[str] = Field(
        default=None, alias="refreshToken", max_length=MAX_TOKEN_LENGTH
    )


class LogoutRequest(BaseModel):
    logout: LogoutInfo
