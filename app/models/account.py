from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from app.db.base import Base
from app.utils.clock import utcnow


class AccountStatus:
    ACTIVE = "active"
    EXPIRED = "expired"
    DISABLED = "disabled"


class Account(Base):
    """
    One row per paying identity. The email is stored trimmed and lower-cased
    and is the identity key; access_code is the current credential only
    (previous codes live in credential_history).
    """

    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    access_code = Column(String, unique=True, index=True, nullable=False)
    payment_ref = Column(String, nullable=True)  # Payment that issued the current code
    status = Column(String, nullable=False, default=AccountStatus.ACTIVE, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_payment_at = Column(DateTime, nullable=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    # expires_at value the last pre-expiry warning was sent for
    expiry_warning_sent_for = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    credential_history = relationship(
        "CredentialHistory",
        back_populates="account",
        order_by="CredentialHistory.id",
    )
    transactions = relationship("Transaction", back_populates="account", order_by="Transaction.id")
