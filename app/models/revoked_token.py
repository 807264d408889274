from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from app.db.base import Base
from app.utils.clock import utcnow


class RevokedToken(Base):
    """Session tokens logged out before their natural expiry (short denylist)."""

    __tablename__ = "revoked_tokens"

    id = Column(Integer, primary_key=True, index=True)
    jti = Column(String, unique=True, index=True, nullable=False)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=True)
    expires_at = Column(DateTime, nullable=False, index=True)  # purge after this
    revoked_at = Column(DateTime, default=utcnow, nullable=False)
