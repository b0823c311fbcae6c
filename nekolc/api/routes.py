from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from nekolc.api.schemas import (
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    RefreshRequest,
    RefreshResponse,
    ValidateRequest,
)
from nekolc.service.errors import AuthDisabledError
from nekolc.service.runtime import get_runtime


def require_auth_enabled() -> None:
    """Answer not_implemented before the body is parsed when auth is off."""
    if not get_runtime().settings.auth_enabled:
        raise AuthDisabledError("Authentication system not implemented")


router = APIRouter(
    prefix="/v0/api/auth",
    tags=["auth"],
    dependencies=[Depends(require_auth_enabled)],
)


@router.post("/login", response_model=LoginResponse)
def login(body: LoginRequest):
    """Exchange credentials or a signed device assertion for a token pair.

    Raises:
        400: If neither login mode is complete
        401: If credentials or the device signature are rejected
        500: If the token ledger cannot record the pair
    """
    auth = body.auth
    pair = get_runtime().auth.login(
        username=auth.username,
        password=auth.password,
        identifier=auth.identifier,
        timestamp=auth.timestamp,
        signature=auth.signature,
    )
    return LoginResponse(
        access_token=pair.access.token, refresh_token=pair.refresh.token
    )


@router.post("/refresh", response_model=RefreshResponse)
def refresh(body: RefreshRequest):
    issued = get_runtime().auth.refresh(body.refresh_token)
    return RefreshResponse(access_token=issued.token)


@router.post("/validate", status_code=204, response_class=Response)
def validate(body: ValidateRequest):
    get_runtime().auth.validate(body.access_token)
    return Response(status_code=204)


@router.post("/logout", status_code=204, response_class=Response)
def logout(body: LogoutRequest):
    get_runtime().auth.logout(
        access_token=body.logout.access_token,
        refresh_token=body.logout.refresh_token,
    )
    return Response(status_code=204)
