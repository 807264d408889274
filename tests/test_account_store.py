from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from app.core.errors import AccountDisabled, DuplicateIdentity, DuplicatePayment, StoreError
from app.models import Account, AccountStatus, CredentialHistory, CredentialKind, ErrorLog, Transaction
from tests.conftest import START


class TestAccountStore:
    @pytest.fixture
    def account(self, store):
        return store.create("Ana@Example.com ", "Ana", "+52 55 1234 5678", "ABCD2345", "cs_first",
                            amount=Decimal("500.00"), currency="mxn", now=START)

    def test_create_normalizes_identity(self, store, account):
        assert account.email == "ana@example.com"
        assert account.expires_at == START + timedelta(days=90)
        assert store.find_by_identity("  ANA@example.COM") is not None

    def test_create_writes_history_and_transaction(self, db_session, account):
        history = db_session.query(CredentialHistory).filter_by(account_id=account.id).all()
        assert [(h.kind, h.access_code) for h in history] == [(CredentialKind.INITIAL, "ABCD2345")]
        transaction = db_session.query(Transaction).filter_by(provider_ref="cs_first").one()
        assert transaction.amount == Decimal("500.00")
        assert transaction.currency == "MXN"

    def test_create_rejects_existing_identity(self, store, account):
        with pytest.raises(DuplicateIdentity):
            store.create("ana@example.com", "Other", None, "ZZZZ2345", "cs_other", now=START)

    def test_credential_lookup_is_scoped_to_identity(self, store, account):
        store.create("bea@example.com", "Bea", None, "WXYZ6789", "cs_bea", now=START)
        assert store.find_by_identity_and_credential("ana@example.com", "abcd2345").id == account.id
        assert store.find_by_identity_and_credential("ana@example.com", "WXYZ6789") is None
        assert store.find_by_identity_and_credential("nobody@example.com", "ABCD2345") is None

    def test_renew_extends_from_current_expiry_when_active(self, store, account):
        now = START + timedelta(days=80)
        renewed = store.renew(account.id, "cs_second", "NEWC2345", now=now)
        assert renewed.expires_at == START + timedelta(days=180)
        assert renewed.access_code == "NEWC2345"

    def test_renew_extends_from_now_when_expired(self, store, account):
        now = START + timedelta(days=100)
        renewed = store.renew(account.id, "cs_second", "NEWC2345", now=now)
        assert renewed.expires_at == now + timedelta(days=90)
        assert renewed.status == AccountStatus.ACTIVE

    def test_renew_with_applied_payment_changes_nothing(self, db_session, store, account):
        with pytest.raises(DuplicatePayment):
            store.renew(account.id, "cs_first", "NEWC2345", now=START + timedelta(days=10))
        db_session.expire_all()
        unchanged = store.find_by_id(account.id)
        assert unchanged.access_code == "ABCD2345"
        assert unchanged.expires_at == START + timedelta(days=90)
        assert db_session.query(CredentialHistory).count() == 1

    def test_renew_disabled_account_rejected(self, store, account):
        store.disable(account.id, now=START)
        with pytest.raises(AccountDisabled):
            store.renew(account.id, "cs_second", "NEWC2345", now=START)

    def test_failed_commit_rolls_back_and_logs_error(self, db_session, store, monkeypatch):
        real_commit = db_session.commit
        calls = {"n": 0}

        def flaky_commit():
            calls["n"] += 1
            if calls["n"] == 1:
                raise OperationalError("INSERT", {}, Exception("disk I/O error"))
            return real_commit()

        monkeypatch.setattr(db_session, "commit", flaky_commit)
        with pytest.raises(StoreError):
            store.create("ana@example.com", "Ana", None, "ABCD2345", "cs_first", now=START)

        assert db_session.query(Account).count() == 0
        assert db_session.query(Transaction).count() == 0
        assert db_session.query(ErrorLog).filter_by(operation="create").count() == 1

    def test_failed_renew_commit_leaves_account_unchanged(self, db_session, store, account, monkeypatch):
        real_commit = db_session.commit
        calls = {"n": 0}

        def flaky_commit():
            calls["n"] += 1
            if calls["n"] == 1:
                raise OperationalError("UPDATE", {}, Exception("disk I/O error"))
            return real_commit()

        monkeypatch.setattr(db_session, "commit", flaky_commit)
        with pytest.raises(StoreError):
            store.renew(account.id, "cs_second", "NEWC2345", amount=Decimal("500.00"), currency="mxn",
                        now=START + timedelta(days=80))

        db_session.expire_all()
        unchanged = store.find_by_id(account.id)
        assert unchanged.expires_at == START + timedelta(days=90)
        assert unchanged.access_code == "ABCD2345"
        assert db_session.query(CredentialHistory).count() == 1
        assert db_session.query(Transaction).count() == 1
        assert store.find_transaction("cs_second") is None
        assert db_session.query(ErrorLog).filter_by(operation="renew", email="ana@example.com").count() == 1

    def test_mark_expired_before_only_touches_past_expiry(self, store, account):
        store.create("bea@example.com", "Bea", None, "WXYZ6789", "cs_bea", now=START + timedelta(days=30))
        assert store.mark_expired_before(START + timedelta(days=91)) == 1
        assert store.mark_expired_before(START + timedelta(days=91)) == 0
        assert store.find_by_identity("ana@example.com").status == AccountStatus.EXPIRED
        assert store.find_by_identity("bea@example.com").status == AccountStatus.ACTIVE

    def test_record_transaction_once(self, store, account):
        assert store.record_transaction(account.id, "cs_extra", Decimal("500.00"), "mxn", START) is True
        assert store.record_transaction(account.id, "cs_extra", Decimal("500.00"), "mxn", START) is False

    def test_stats(self, store, account):
        store.create("bea@example.com", "Bea", None, "WXYZ6789", "cs_bea",
                     amount=Decimal("500.00"), currency="mxn", now=START)
        store.disable(store.find_by_identity("bea@example.com").id, now=START)

        stats = store.stats(START + timedelta(days=85), timedelta(days=7))
        assert stats["total_accounts"] == 2
        assert stats["active_accounts"] == 1
        assert stats["disabled_accounts"] == 1
        assert stats["expiring_soon"] == 1
        assert stats["revenue"]["MXN"] == {"transactions": 2, "amount": "1000.00"}

    def test_token_denylist(self, store, account):
        store.revoke_token("jti-1", account.id, START + timedelta(hours=24), START)
        store.revoke_token("jti-1", account.id, START + timedelta(hours=24), START)
        assert store.is_token_revoked("jti-1")
        assert not store.is_token_revoked("jti-2")
        assert store.purge_revoked_tokens(START + timedelta(hours=25)) == 1
        assert not store.is_token_revoked("jti-1")
