from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Numeric
from sqlalchemy.orm import relationship
from app.db.base import Base
from app.utils.clock import utcnow


class Transaction(Base):
    """
    One row per confirmed payment (first purchase and every renewal).

    provider_ref is the checkout session id and is unique, which is what makes
    a replayed webhook or a duplicate /verify-payment call detectable.
    """

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String, nullable=False, default="stripe")
    provider_ref = Column(String, nullable=False, unique=True, index=True)

    # Amount in major units (e.g. 500.00 MXN)
    amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String, nullable=True)

    status = Column(String, nullable=False, default="succeeded")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    account = relationship("Account", back_populates="transactions")
