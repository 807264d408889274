from app.models.account import Account, AccountStatus
from app.models.credential_history import CredentialHistory, CredentialKind
from app.models.transaction import Transaction
from app.models.activity_log import ActivityLog, ActivityAction
from app.models.notification_log import NotificationLog, NotificationKind
from app.models.error_log import ErrorLog
from app.models.revoked_token import RevokedToken

__all__ = [
    "Account",
    "AccountStatus",
    "CredentialHistory",
    "CredentialKind",
    "Transaction",
    "ActivityLog",
    "ActivityAction",
    "NotificationLog",
    "NotificationKind",
    "ErrorLog",
    "RevokedToken",
]
