from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Text
from app.db.base import Base
from app.utils.clock import utcnow


class NotificationKind:
    WELCOME = "welcome"
    EXPIRATION_WARNING = "expiration_warning"
    RENEWAL = "renewal"


class NotificationLog(Base):
    """One row per delivery attempt per channel, successful or not."""

    __tablename__ = "notification_log"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=True, index=True)
    kind = Column(String, nullable=False)
    channel = Column(String, nullable=False)  # "email" | "whatsapp" | "noop"
    success = Column(Boolean, nullable=False, default=False)
    detail = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
