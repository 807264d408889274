"""
Admin endpoints, protected by the X-Admin-Key shared secret.
"""
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.core.config import EXPIRY_WARNING_DAYS
from app.core.errors import InvalidInput
from app.dependencies.access import get_access_manager, get_store
from app.dependencies.auth import require_admin
from app.models import AccountStatus
from app.schemas.access import AdminStatsResponse, AdminUsersResponse, admin_user_out, user_out
from app.services.access_manager import AccessManager
from app.services.account_store import AccountStore
from app.utils.clock import utcnow

router = APIRouter(dependencies=[Depends(require_admin)])

STATUSES = (AccountStatus.ACTIVE, AccountStatus.EXPIRED, AccountStatus.DISABLED)


@router.get("/stats", response_model=AdminStatsResponse)
def stats(store: AccountStore = Depends(get_store)):
    return store.stats(utcnow(), timedelta(days=EXPIRY_WARNING_DAYS))


@router.get("/users", response_model=AdminUsersResponse)
def list_users(
    status: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    store: AccountStore = Depends(get_store),
):
    if status and status not in STATUSES:
        raise InvalidInput(f"status must be one of {', '.join(STATUSES)}")
    accounts = store.list_accounts(status=status, limit=limit, offset=offset)
    return AdminUsersResponse(
        total=store.count_accounts(status),
        users=[admin_user_out(account) for account in accounts],
    )


@router.post("/users/{email}/disable")
def disable_user(email: str, manager: AccessManager = Depends(get_access_manager)):
    account = manager.disable_account(email)
    return {"success": True, "user": user_out(account)}
