from sqlalchemy import Column, Integer, String, DateTime, Text
from app.db.base import Base
from app.utils.clock import utcnow


class ErrorLog(Base):
    """
    Operational failures (rolled-back store writes, provider outages).
    Kept apart from activity_log so failures stay visible even when the
    request itself degrades gracefully.
    """

    __tablename__ = "error_log"

    id = Column(Integer, primary_key=True, index=True)
    operation = Column(String, nullable=False, index=True)
    email = Column(String, nullable=True)
    detail = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
