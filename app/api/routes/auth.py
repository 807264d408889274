"""
Access code login and session token management.
"""
from fastapi import APIRouter, Body, Depends, Request

from app.core.errors import InvalidInput
from app.dependencies.access import client_ip, get_access_manager
from app.dependencies.auth import get_current_account, get_token_claims
from app.models import Account
from app.schemas.access import LoginRequest, SessionResponse, user_out
from app.services.access_manager import AccessManager

router = APIRouter()


@router.post("/login", response_model=SessionResponse)
def login(
    http_request: Request,
    request: LoginRequest = Body(...),
    manager: AccessManager = Depends(get_access_manager),
):
    """Exchange email + access code for a session token."""
    if not request.email or not request.code:
        raise InvalidInput("Email and access code are required")
    grant = manager.login(request.email, request.code, origin=client_ip(http_request))
    return SessionResponse(token=grant.token, tokenExpiresAt=grant.expires_at, user=user_out(grant.account))


@router.post("/refresh", response_model=SessionResponse)
def refresh(
    claims: dict = Depends(get_token_claims),
    manager: AccessManager = Depends(get_access_manager),
):
    grant = manager.refresh(claims)
    return SessionResponse(token=grant.token, tokenExpiresAt=grant.expires_at, user=user_out(grant.account))


@router.post("/logout")
def logout(
    http_request: Request,
    claims: dict = Depends(get_token_claims),
    manager: AccessManager = Depends(get_access_manager),
):
    manager.logout(claims, origin=client_ip(http_request))
    return {"success": True}


@router.get("/me")
def me(account: Account = Depends(get_current_account)):
    return {"success": True, "user": user_out(account)}


# Older frontends post to /login at the root
legacy_router = APIRouter()
legacy_router.add_api_route(
    "/login", login, methods=["POST"], response_model=SessionResponse, include_in_schema=False
)
