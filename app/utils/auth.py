import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError

from app.core.config import JWT_ALGORITHM, JWT_SECRET, SESSION_TOKEN_HOURS
from app.models import Account
from app.utils.clock import utcnow

TOKEN_TYPE = "session"


@dataclass
class SessionGrant:
    token: str
    expires_at: datetime
    jti: str
    account: Account


def _timestamp(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp())


def create_access_token(account: Account, now: Optional[datetime] = None, expires_delta: timedelta = None) -> SessionGrant:
    """
    Signed, self-describing session token. Identity comes from the stored
    account, never from the request, and the token never outlives the
    account's access window.
    """
    now = now or utcnow()
    expires_at = now + (expires_delta or timedelta(hours=SESSION_TOKEN_HOURS))
    if account.expires_at and account.expires_at < expires_at:
        expires_at = account.expires_at
    jti = uuid.uuid4().hex
    to_encode = {
        "sub": str(account.id),
        "email": account.email,
        "jti": jti,
        "typ": TOKEN_TYPE,
        "iat": _timestamp(now),
        "exp": _timestamp(expires_at),
    }
    encoded_jwt = jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)
    return SessionGrant(token=encoded_jwt, expires_at=expires_at, jti=jti, account=account)


def verify_token(token: str) -> Optional[dict]:
    """Decode and verify signature + expiry. None for anything invalid."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    if payload.get("typ") != TOKEN_TYPE or not payload.get("sub") or not payload.get("jti"):
        return None
    return payload


def token_expiry(payload: dict) -> datetime:
    return datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc).replace(tzinfo=None)
