from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from app.db.base import Base
from app.utils.clock import utcnow


class CredentialKind:
    INITIAL = "initial"
    RENEWAL = "renewal"


class CredentialHistory(Base):
    """Append-only audit of every access code issued. Never used for login."""

    __tablename__ = "credential_history"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    access_code = Column(String, nullable=False)
    kind = Column(String, nullable=False)
    payment_ref = Column(String, nullable=True)
    issued_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    account = relationship("Account", back_populates="credential_history")
