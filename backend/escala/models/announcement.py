from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from ..core.database import Base

class Announcement(Base):
    __tablename__ = "announcements"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    start_date = Column(DateTime, nullable=False)  # 顯示起始時間
    end_date = Column(DateTime, nullable=False)  # 顯示結束時間
    created_by = Column(String, nullable=False)  # 作者 email
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
