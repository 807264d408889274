from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text
from app.db.base import Base
from app.utils.clock import utcnow


class ActivityAction:
    LOGIN = "login"
    REGISTRATION = "registration"
    RENEWAL = "renewal"
    LOGOUT = "logout"
    RESEND = "resend"
    DISABLED = "disabled"


class ActivityLog(Base):
    """Diagnostic trail of what happened to an account. Write-only."""

    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(String, nullable=False, index=True)
    detail = Column(Text, nullable=True)
    ip_address = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
