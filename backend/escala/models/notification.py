from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean
from sqlalchemy.sql import func
from ..core.database import Base

class Notification(Base):
    """站內通知"""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_email = Column(String, index=True, nullable=False)
    title = Column(String, nullable=False)
    body = Column(Text)
    kind = Column(String(50), default="general")  # exchange_request, exchange_response, security, general
    related_request_id = Column(Integer, nullable=True)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=func.now())
