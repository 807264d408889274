from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.services.access_manager import AccessManager
from app.services.account_store import AccountStore
from app.services.notifications import NotificationDispatcher, build_dispatcher
from app.services.payment_adapter import StripePaymentAdapter, get_payment_adapter


def get_notifier(request: Request) -> NotificationDispatcher:
    """Dispatcher chosen at startup; built lazily if startup did not run."""
    notifier = getattr(request.app.state, "notifier", None)
    if notifier is None:
        notifier = build_dispatcher()
        request.app.state.notifier = notifier
    return notifier


def get_payments() -> StripePaymentAdapter:
    return get_payment_adapter()


def get_store(db: Session = Depends(get_db)) -> AccountStore:
    return AccountStore(db)


def get_access_manager(
    store: AccountStore = Depends(get_store),
    payments: StripePaymentAdapter = Depends(get_payments),
    notifier: NotificationDispatcher = Depends(get_notifier),
) -> AccessManager:
    return AccessManager(store, payments, notifier)


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None
