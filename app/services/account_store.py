"""
Account Store: the only component that reads or writes account state.

Every mutating call is one transaction. A renewal writes the account row,
the credential history row and the transaction row together, or nothing.
Database failures are rolled back, written to error_log (best effort) and
re-raised as StoreError.
"""
import hmac
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import ACCESS_VALIDITY_DAYS
from app.core.errors import (
    AccessError,
    AccountDisabled,
    AccountNotFound,
    DuplicateIdentity,
    DuplicatePayment,
    InvalidInput,
    StoreError,
)
from app.models import (
    Account,
    AccountStatus,
    ActivityLog,
    CredentialHistory,
    CredentialKind,
    ErrorLog,
    NotificationLog,
    RevokedToken,
    Transaction,
)
from app.services.code_generator import normalize_code
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


def normalize_identity(email: Optional[str]) -> str:
    return (email or "").strip().lower()


class AccountStore:
    def __init__(self, db: Session, validity_days: int = ACCESS_VALIDITY_DAYS):
        self.db = db
        self.validity = timedelta(days=validity_days)

    # ------------------------------------------------------------------ reads

    def find_by_identity(self, email: str) -> Optional[Account]:
        identity = normalize_identity(email)
        if not identity:
            return None
        return self.db.query(Account).filter(Account.email == identity).first()

    def find_by_identity_and_credential(self, email: str, credential: str) -> Optional[Account]:
        """
        Login lookup. Always scoped to one identity: there is deliberately no
        way to look an account up by code alone.
        """
        account = self.find_by_identity(email)
        code = normalize_code(credential)
        if account is None or not code:
            return None
        if hmac.compare_digest(account.access_code.encode(), code.encode()):
            return account
        return None

    def find_by_id(self, account_id: int) -> Optional[Account]:
        return self.db.query(Account).filter(Account.id == account_id).first()

    def find_transaction(self, payment_ref: str) -> Optional[Transaction]:
        if not payment_ref:
            return None
        return self.db.query(Transaction).filter(Transaction.provider_ref == payment_ref).first()

    def credential_in_use(self, code: str) -> bool:
        return self.db.query(Account.id).filter(Account.access_code == code).first() is not None

    def is_active(self, account: Account, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return account.status == AccountStatus.ACTIVE and now < account.expires_at

    def find_expiring(self, now: datetime, window: timedelta) -> List[Account]:
        """Active accounts expiring within the window that were not yet warned for this expiry."""
        return (
            self.db.query(Account)
            .filter(
                Account.status == AccountStatus.ACTIVE,
                Account.expires_at > now,
                Account.expires_at <= now + window,
                or_(
                    Account.expiry_warning_sent_for.is_(None),
                    Account.expiry_warning_sent_for != Account.expires_at,
                ),
            )
            .order_by(Account.expires_at)
            .all()
        )

    def list_accounts(self, status: Optional[str] = None, limit: int = 100, offset: int = 0) -> List[Account]:
        query = self.db.query(Account)
        if status:
            query = query.filter(Account.status == status)
        return query.order_by(Account.created_at.desc(), Account.id.desc()).offset(offset).limit(limit).all()

    def count_accounts(self, status: Optional[str] = None) -> int:
        query = self.db.query(func.count(Account.id))
        if status:
            query = query.filter(Account.status == status)
        return query.scalar() or 0

    def stats(self, now: datetime, warning_window: timedelta) -> Dict:
        active_valid = (
            self.db.query(func.count(Account.id))
            .filter(Account.status == AccountStatus.ACTIVE, Account.expires_at > now)
            .scalar()
            or 0
        )
        expiring_soon = (
            self.db.query(func.count(Account.id))
            .filter(
                Account.status == AccountStatus.ACTIVE,
                Account.expires_at > now,
                Account.expires_at <= now + warning_window,
            )
            .scalar()
            or 0
        )
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
        new_today = (
            self.db.query(func.count(Account.id)).filter(Account.created_at >= start_of_day).scalar() or 0
        )
        revenue_rows = (
            self.db.query(Transaction.currency, func.count(Transaction.id), func.sum(Transaction.amount))
            .filter(Transaction.status == "succeeded")
            .group_by(Transaction.currency)
            .all()
        )
        revenue = {
            (currency or "unknown"): {
                "transactions": count,
                "amount": str(Decimal(str(total or 0)).quantize(Decimal("0.01"))),
            }
            for currency, count, total in revenue_rows
        }
        return {
            "total_accounts": self.count_accounts(),
            "active_accounts": active_valid,
            "expired_accounts": self.count_accounts(AccountStatus.EXPIRED),
            "disabled_accounts": self.count_accounts(AccountStatus.DISABLED),
            "expiring_soon": expiring_soon,
            "new_today": new_today,
            "revenue": revenue,
        }

    # -------------------------------------------------------------- mutations

    def create(
        self,
        identity: str,
        name: Optional[str],
        phone: Optional[str],
        credential: str,
        payment_ref: Optional[str],
        expires_at: Optional[datetime] = None,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Account:
        """
        Create the account with its initial history entry and transaction.
        Raises DuplicateIdentity when a row for this identity already exists,
        including when a concurrent request inserted it first.
        """
        now = now or utcnow()
        email = normalize_identity(identity)
        if not email:
            raise InvalidInput("Email is required")
        if self.find_by_identity(email) is not None:
            raise DuplicateIdentity(f"An account already exists for {email}")

        expires_at = expires_at or now + self.validity
        account = Account(
            email=email,
            name=(name or "").strip() or None,
            phone=(phone or "").strip() or None,
            access_code=credential,
            payment_ref=payment_ref,
            status=AccountStatus.ACTIVE,
            created_at=now,
            last_payment_at=now,
            expires_at=expires_at,
            updated_at=now,
        )
        try:
            self.db.add(account)
            self.db.flush()
            self.db.add(CredentialHistory(
                account_id=account.id,
                access_code=credential,
                kind=CredentialKind.INITIAL,
                payment_ref=payment_ref,
                issued_at=now,
                expires_at=expires_at,
            ))
            if payment_ref:
                self.db.add(self._transaction(account.id, payment_ref, amount, currency, now))
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if self.find_by_identity(email) is not None:
                logger.info("[Store] Lost create race for %s, account already exists", email)
                raise DuplicateIdentity(f"An account already exists for {email}") from e
            if payment_ref and self.find_transaction(payment_ref) is not None:
                raise DuplicatePayment(f"Payment {payment_ref} already applied") from e
            self._store_failure("create", email, e)
        except SQLAlchemyError as e:
            self.db.rollback()
            self._store_failure("create", email, e)

        self.db.refresh(account)
        logger.info("[Store] Created account %s for %s (expires %s)", account.id, email, expires_at.isoformat())
        return account

    def renew(
        self,
        account_id: int,
        payment_ref: Optional[str],
        credential: str,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Account:
        """
        Extend expiry to max(now, current expiry) + validity, rotate the code,
        append a renewal history row and a transaction row. All or nothing.
        """
        now = now or utcnow()
        email = None
        try:
            account = (
                self.db.query(Account)
                .filter(Account.id == account_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if account is None:
                raise AccountNotFound()
            email = account.email
            if account.status == AccountStatus.DISABLED:
                raise AccountDisabled()
            if payment_ref and self.find_transaction(payment_ref) is not None:
                raise DuplicatePayment(f"Payment {payment_ref} already applied")

            new_expiry = max(now, account.expires_at) + self.validity
            account.access_code = credential
            account.payment_ref = payment_ref
            account.status = AccountStatus.ACTIVE
            account.last_payment_at = now
            account.expires_at = new_expiry
            account.expiry_warning_sent_for = None
            account.updated_at = now

            self.db.add(CredentialHistory(
                account_id=account.id,
                access_code=credential,
                kind=CredentialKind.RENEWAL,
                payment_ref=payment_ref,
                issued_at=now,
                expires_at=new_expiry,
            ))
            if payment_ref:
                self.db.add(self._transaction(account.id, payment_ref, amount, currency, now))
            self.db.commit()
        except AccessError:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            if payment_ref and self.find_transaction(payment_ref) is not None:
                raise DuplicatePayment(f"Payment {payment_ref} already applied") from e
            self._store_failure("renew", email, e)
        except SQLAlchemyError as e:
            self.db.rollback()
            self._store_failure("renew", email, e)

        self.db.refresh(account)
        logger.info("[Store] Renewed account %s until %s", account.id, account.expires_at.isoformat())
        return account

    def record_transaction(
        self,
        account_id: int,
        payment_ref: str,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Record a confirmed payment that issued no credential. False if already recorded."""
        if not payment_ref or self.find_transaction(payment_ref) is not None:
            return False
        try:
            self.db.add(self._transaction(account_id, payment_ref, amount, currency, now or utcnow()))
            self.db.commit()
            return True
        except IntegrityError:
            self.db.rollback()
            return False
        except SQLAlchemyError as e:
            self.db.rollback()
            self._store_failure("record_transaction", None, e)

    def mark_expired_before(self, now: datetime) -> int:
        """
        Bulk ACTIVE -> EXPIRED for rows still past expiry at update time.
        The condition is evaluated by the database, so a row renewed a moment
        earlier no longer matches.
        """
        try:
            count = (
                self.db.query(Account)
                .filter(Account.status == AccountStatus.ACTIVE, Account.expires_at <= now)
                .update(
                    {Account.status: AccountStatus.EXPIRED, Account.updated_at: now},
                    synchronize_session=False,
                )
            )
            self.db.commit()
            return count or 0
        except SQLAlchemyError as e:
            self.db.rollback()
            self._store_failure("mark_expired_before", None, e)

    def mark_warned(self, account_id: int, expires_at: datetime) -> bool:
        try:
            count = (
                self.db.query(Account)
                .filter(Account.id == account_id, Account.expires_at == expires_at)
                .update({Account.expiry_warning_sent_for: expires_at}, synchronize_session=False)
            )
            self.db.commit()
            return bool(count)
        except SQLAlchemyError as e:
            self.db.rollback()
            self._store_failure("mark_warned", None, e)

    def disable(self, account_id: int, now: Optional[datetime] = None) -> Account:
        account = self.find_by_id(account_id)
        if account is None:
            raise AccountNotFound()
        try:
            account.status = AccountStatus.DISABLED
            account.updated_at = now or utcnow()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self._store_failure("disable", account.email, e)
        self.db.refresh(account)
        return account

    # ------------------------------------------------------------ token denylist

    def revoke_token(self, jti: str, account_id: Optional[int], expires_at: datetime, now: Optional[datetime] = None) -> None:
        if self.is_token_revoked(jti):
            return
        try:
            self.db.add(RevokedToken(jti=jti, account_id=account_id, expires_at=expires_at, revoked_at=now or utcnow()))
            self.db.commit()
        except IntegrityError:
            # Revoked concurrently
            self.db.rollback()
        except SQLAlchemyError as e:
            self.db.rollback()
            self._store_failure("revoke_token", None, e)

    def is_token_revoked(self, jti: str) -> bool:
        if not jti:
            return False
        return self.db.query(RevokedToken.id).filter(RevokedToken.jti == jti).first() is not None

    def purge_revoked_tokens(self, now: datetime) -> int:
        try:
            count = (
                self.db.query(RevokedToken)
                .filter(RevokedToken.expires_at < now)
                .delete(synchronize_session=False)
            )
            self.db.commit()
            return count or 0
        except SQLAlchemyError as e:
            self.db.rollback()
            self._store_failure("purge_revoked_tokens", None, e)

    # ------------------------------------------------------------------ audit

    def record_activity(
        self,
        account_id: Optional[int],
        action: str,
        detail: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> None:
        """Diagnostic only; a failure here never fails the calling operation."""
        try:
            self.db.add(ActivityLog(
                account_id=account_id,
                action=action,
                detail=detail,
                ip_address=ip_address,
                created_at=utcnow(),
            ))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("[Store] Could not write activity %s for account %s", action, account_id)

    def record_notification(
        self,
        account_id: Optional[int],
        kind: str,
        channel: str,
        success: bool,
        detail: Optional[str] = None,
    ) -> None:
        try:
            self.db.add(NotificationLog(
                account_id=account_id,
                kind=kind,
                channel=channel,
                success=success,
                detail=detail,
                created_at=utcnow(),
            ))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("[Store] Could not record %s notification for account %s", kind, account_id)

    def record_error(self, operation: str, email: Optional[str], detail: str) -> None:
        try:
            self.db.add(ErrorLog(operation=operation, email=email, detail=(detail or "")[:4000], created_at=utcnow()))
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("[Store] Could not write error_log for %s", operation)

    # --------------------------------------------------------------- helpers

    @staticmethod
    def _transaction(account_id, payment_ref, amount, currency, now) -> Transaction:
        return Transaction(
            account_id=account_id,
            provider="stripe",
            provider_ref=payment_ref,
            amount=amount,
            currency=(currency or "").upper() or None,
            status="succeeded",
            created_at=now,
        )

    def _store_failure(self, operation: str, email: Optional[str], exc: Exception) -> None:
        logger.error("[Store] %s failed for %s: %s", operation, email or "-", exc)
        self.record_error(operation, email, str(exc))
        raise StoreError(f"Account store failure during {operation}") from exc
