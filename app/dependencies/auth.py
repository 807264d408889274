import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from app.core import config
from app.core.errors import InvalidSession
from app.dependencies.access import get_access_manager
from app.models import Account
from app.services.access_manager import AccessManager
from app.utils.auth import verify_token


def get_token_claims(authorization: Optional[str] = Header(None)) -> dict:
    """Verify the Bearer session token and return its claims."""
    if not authorization:
        raise InvalidSession("Missing authorization header")
    if not authorization.startswith("Bearer "):
        raise InvalidSession("Invalid header format. Expected 'Bearer <token>'")

    token = authorization.replace("Bearer ", "", 1).strip()
    # Reject common invalid token values sent by browsers with empty storage
    if not token or token.lower() in ("null", "undefined", "none"):
        raise InvalidSession("Missing token")

    payload = verify_token(token)
    if payload is None:
        raise InvalidSession()
    return payload


def get_current_account(
    claims: dict = Depends(get_token_claims),
    manager: AccessManager = Depends(get_access_manager),
) -> Account:
    return manager.current_account(claims)


def require_admin(x_admin_key: Optional[str] = Header(None)) -> None:
    """Static shared-secret check for the admin endpoints."""
    secret = config.ADMIN_SECRET
    if not secret or not x_admin_key or not hmac.compare_digest(x_admin_key.encode(), secret.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin key",
        )
