from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, UniqueConstraint
from sqlalchemy.sql import func
from ..core.database import Base

class Schedule(Base):
    """每位用戶每月一筆的可服務時段提交"""
    __tablename__ = "schedules"
    __table_args__ = (
        UniqueConstraint("user_email", "month", name="uq_schedules_user_month"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_email = Column(String, index=True, nullable=False)
    user_name = Column(String, nullable=False)
    month = Column(String(7), index=True, nullable=False)  # YYYY-MM
    # 新格式 {"shifts": [...], "overnights": [...]}；舊格式 [{"date": ..., "shifts": [...]}]
    dates = Column(JSON, nullable=False)
    notes = Column(Text)
    edit_count = Column(Integer, default=0, nullable=False)
    printed_at = Column(DateTime, nullable=True)  # 重新提交時清除
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
