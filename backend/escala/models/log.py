from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, JSON
from sqlalchemy.sql import func
from ..core.database import Base

class SecurityLog(Base):
    __tablename__ = "security_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_email = Column(String, index=True)
    event_type = Column(String(50), nullable=False)  # successful_login, failed_login, account_locked, suspicious_activity
    ip_address = Column(String)
    user_agent = Column(Text)
    success = Column(Boolean, default=False, nullable=False)
    details = Column(JSON)
    created_at = Column(DateTime, default=func.now())
