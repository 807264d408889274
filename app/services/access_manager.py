"""
Access Lifecycle Manager.

Owns the account state machine:

    NONE --payment--> ACTIVE --time--> EXPIRED --payment--> ACTIVE
    any state --admin--> DISABLED

Payment confirmation is idempotent per payment reference and per identity:
replaying a webhook, racing the webhook against /verify-payment, or paying
twice while still active never issues a second code or a second welcome
message. Notifications are sent only after the state change is committed
and their outcome never changes the result.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from app.core.errors import (
    AccessError,
    AccessExpired,
    AccountDisabled,
    AccountNotFound,
    DuplicateIdentity,
    DuplicatePayment,
    InvalidCredential,
    InvalidInput,
    InvalidSession,
    PaymentNotCompleted,
    PaymentProviderError,
    StoreError,
)
from app.models import Account, AccountStatus, ActivityAction
from app.services.account_store import AccountStore, normalize_identity
from app.services.code_generator import generate_unique, normalize_code
from app.services.notifications import NotificationDispatcher
from app.services.payment_adapter import PaymentConfirmation, StripePaymentAdapter
from app.utils.auth import SessionGrant, create_access_token, token_expiry
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ConfirmationResult:
    account: Account
    is_new_credential: bool
    renewed: bool = False


class AccessManager:
    def __init__(
        self,
        store: AccountStore,
        payments: StripePaymentAdapter,
        notifier: NotificationDispatcher,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.payments = payments
        self.notifier = notifier
        self.clock = clock

    # ------------------------------------------------------------ payments

    def start_checkout(self, name: Optional[str], email: str, phone: Optional[str] = None) -> Dict[str, str]:
        identity = normalize_identity(email)
        if not identity:
            raise InvalidInput("Email is required")
        account = self.store.find_by_identity(identity)
        if account is not None:
            if account.status == AccountStatus.DISABLED:
                raise AccountDisabled()
            if self.store.is_active(account, self.clock()):
                raise InvalidInput("An active account already exists for this email")
        return self._call_provider(self.payments.create_checkout_session, name, identity, phone)

    def confirm_payment(self, payment_ref: str, origin: Optional[str] = None) -> ConfirmationResult:
        """
        Payment confirmed -> provision or reuse a credential.
        The provider is asked first; nothing is written unless it says paid.
        """
        confirmation = self._verify_payment(payment_ref)
        email = normalize_identity(confirmation.email)
        if not email:
            raise InvalidInput("The payment has no payer email")

        replay = self._replayed(confirmation.payment_ref, email)
        if replay is not None:
            return replay

        account = self.store.find_by_identity(email)
        if account is None:
            return self._provision(confirmation, email, origin)
        return self._reconfirm(account, confirmation, origin)

    def renew_access(self, email: str, payment_ref: str, origin: Optional[str] = None) -> ConfirmationResult:
        identity = normalize_identity(email)
        if not identity:
            raise InvalidInput("Email is required")
        account = self.store.find_by_identity(identity)
        if account is None:
            raise AccountNotFound()

        confirmation = self._verify_payment(payment_ref)
        if normalize_identity(confirmation.email) != identity:
            logger.warning(
                "[Access] Renewal of %s rejected: payment %s was made by another payer",
                identity,
                confirmation.payment_ref,
            )
            raise InvalidInput("This payment was made with a different email")

        transaction = self.store.find_transaction(confirmation.payment_ref)
        if transaction is not None:
            if transaction.account_id != account.id:
                raise InvalidInput("This payment was already applied to another account")
            logger.info("[Access] Renewal payment %s already applied to %s", confirmation.payment_ref, identity)
            return ConfirmationResult(account=account, is_new_credential=False)

        if account.status == AccountStatus.DISABLED:
            raise AccountDisabled()
        return self._renew(account, confirmation, origin, self.clock())

    # --------------------------------------------------------------- login

    def login(self, email: str, credential: str, origin: Optional[str] = None) -> SessionGrant:
        identity = normalize_identity(email)
        code = normalize_code(credential)
        if not identity or not code:
            raise InvalidInput("Email and access code are required")

        account = self.store.find_by_identity_and_credential(identity, code)
        if account is None:
            if self.store.find_by_identity(identity) is None:
                raise AccountNotFound()
            logger.info("[Access] Wrong access code for %s", identity)
            raise InvalidCredential()

        now = self.clock()
        self._ensure_usable(account, now)
        grant = create_access_token(account, now=now)
        self.store.record_activity(account.id, ActivityAction.LOGIN, None, origin)
        logger.info("[Access] Login for %s", identity)
        return grant

    def issue_grant(self, account: Account) -> SessionGrant:
        now = self.clock()
        self._ensure_usable(account, now)
        return create_access_token(account, now=now)

    def current_account(self, claims: dict) -> Account:
        """Resolve a verified token to its account, re-checking status on every call."""
        if self.store.is_token_revoked(claims.get("jti")):
            raise InvalidSession("Session has been logged out")
        try:
            account_id = int(claims.get("sub"))
        except (TypeError, ValueError):
            raise InvalidSession()
        account = self.store.find_by_id(account_id)
        if account is None or account.email != claims.get("email"):
            raise InvalidSession()
        self._ensure_usable(account, self.clock())
        return account

    def refresh(self, claims: dict) -> SessionGrant:
        account = self.current_account(claims)
        grant = self.issue_grant(account)
        self.store.revoke_token(claims["jti"], account.id, token_expiry(claims), self.clock())
        return grant

    def logout(self, claims: dict, origin: Optional[str] = None) -> None:
        account_id = int(claims["sub"])
        self.store.revoke_token(claims["jti"], account_id, token_expiry(claims), self.clock())
        self.store.record_activity(account_id, ActivityAction.LOGOUT, None, origin)

    # ------------------------------------------------------------- support

    def resend_credential(self, email: str, origin: Optional[str] = None) -> bool:
        account = self.store.find_by_identity(email)
        if account is None:
            raise AccountNotFound()
        self._ensure_usable(account, self.clock())
        sent = self.notifier.send_welcome(account, audit=self.store.record_notification)
        self.store.record_activity(account.id, ActivityAction.RESEND, "sent" if sent else "not delivered", origin)
        return sent

    def disable_account(self, email: str) -> Account:
        account = self.store.find_by_identity(email)
        if account is None:
            raise AccountNotFound()
        account = self.store.disable(account.id, self.clock())
        self.store.record_activity(account.id, ActivityAction.DISABLED, "disabled by admin")
        logger.info("[Access] Disabled account %s", account.email)
        return account

    # ------------------------------------------------------------- helpers

    def _verify_payment(self, payment_ref: Optional[str]) -> PaymentConfirmation:
        payment_ref = (payment_ref or "").strip()
        if not payment_ref:
            raise InvalidInput("session_id is required")
        confirmation = self._call_provider(self.payments.confirm, payment_ref)
        if not confirmation.paid:
            logger.info("[Access] Payment %s is not paid, nothing provisioned", payment_ref)
            raise PaymentNotCompleted()
        return confirmation

    def _call_provider(self, fn, *args):
        try:
            return fn(*args)
        except AccessError:
            raise
        except Exception as e:
            # Timeouts and unexpected client errors count as "not confirmed"
            logger.error("[Access] Payment provider call failed: %s", e)
            raise PaymentProviderError() from e

    def _replayed(self, payment_ref: str, email: str) -> Optional[ConfirmationResult]:
        transaction = self.store.find_transaction(payment_ref)
        if transaction is None:
            return None
        account = self.store.find_by_id(transaction.account_id)
        if account is None:
            raise StoreError(f"Transaction {payment_ref} has no account")
        if account.email != normalize_identity(email):
            raise InvalidInput("This payment was already applied to another account")
        logger.info("[Access] Payment %s already applied to %s, returning existing access", payment_ref, account.email)
        return ConfirmationResult(account=account, is_new_credential=False)

    def _provision(self, confirmation: PaymentConfirmation, email: str, origin: Optional[str]) -> ConfirmationResult:
        now = self.clock()
        code = generate_unique(self.store.credential_in_use)
        try:
            account = self.store.create(
                email,
                confirmation.name,
                confirmation.phone,
                code,
                confirmation.payment_ref,
                amount=confirmation.amount,
                currency=confirmation.currency,
                now=now,
            )
        except DuplicateIdentity:
            # Another request for the same identity committed first: use its row
            account = self.store.find_by_identity(email)
            if account is None:
                raise StoreError(f"Account for {email} vanished after a create conflict")
            return self._reconfirm(account, confirmation, origin)
        except DuplicatePayment:
            return self._replayed(confirmation.payment_ref, confirmation.email)

        self.store.record_activity(account.id, ActivityAction.REGISTRATION, f"payment {confirmation.payment_ref}", origin)
        self.notifier.send_welcome(account, audit=self.store.record_notification)
        return ConfirmationResult(account=account, is_new_credential=True)

    def _reconfirm(self, account: Account, confirmation: PaymentConfirmation, origin: Optional[str]) -> ConfirmationResult:
        if account.status == AccountStatus.DISABLED:
            raise AccountDisabled()
        now = self.clock()
        if self.store.is_active(account, now):
            self.store.record_transaction(
                account.id, confirmation.payment_ref, confirmation.amount, confirmation.currency, now
            )
            logger.info("[Access] %s already active, returning existing access code", account.email)
            return ConfirmationResult(account=account, is_new_credential=False)
        return self._renew(account, confirmation, origin, now)

    def _renew(self, account: Account, confirmation: PaymentConfirmation, origin: Optional[str], now: datetime) -> ConfirmationResult:
        code = generate_unique(self.store.credential_in_use)
        try:
            account = self.store.renew(
                account.id,
                confirmation.payment_ref,
                code,
                amount=confirmation.amount,
                currency=confirmation.currency,
                now=now,
            )
        except DuplicatePayment:
            return self._replayed(confirmation.payment_ref, confirmation.email)

        self.store.record_activity(account.id, ActivityAction.RENEWAL, f"payment {confirmation.payment_ref}", origin)
        self.notifier.send_renewal_confirmation(account, audit=self.store.record_notification)
        return ConfirmationResult(account=account, is_new_credential=True, renewed=True)

    def _ensure_usable(self, account: Account, now: datetime) -> None:
        if account.status == AccountStatus.DISABLED:
            raise AccountDisabled()
        if account.status == AccountStatus.EXPIRED or now >= account.expires_at:
            raise AccessExpired()
