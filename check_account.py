"""
Support helper: print an account's state, code history and payments.

    python check_account.py ana@example.com
"""
import sys
import os

# Add the parent directory to the path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from app.db.session import SessionLocal
from app.services.account_store import AccountStore
from app.utils.clock import utcnow

if len(sys.argv) != 2:
    print("Usage: python check_account.py <email>")
    sys.exit(1)

db = SessionLocal()
try:
    store = AccountStore(db)
    account = store.find_by_identity(sys.argv[1])
    if account is None:
        print(f"No account found for {sys.argv[1]}")
        sys.exit(1)

    print(f"Account {account.id}: {account.email} ({account.name or '-'}, {account.phone or '-'})")
    print(f"  Status: {account.status}, usable now: {store.is_active(account, utcnow())}")
    print(f"  Expires: {account.expires_at}, last payment: {account.last_payment_at}")
    print("  Code history:")
    for entry in account.credential_history:
        print(f"    {entry.issued_at} {entry.kind:<8} {entry.access_code} (payment {entry.payment_ref})")
    print("  Payments:")
    for transaction in account.transactions:
        print(f"    {transaction.created_at} {transaction.provider_ref} {transaction.amount} {transaction.currency}")
finally:
    db.close()
