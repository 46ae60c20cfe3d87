from sqlalchemy import Column, Integer, String, DateTime, Text, Date, Boolean
from sqlalchemy.sql import func
from ..core.database import Base

class ShiftExchangeRequest(Base):
    __tablename__ = "shift_exchange_requests"

    id = Column(Integer, primary_key=True, index=True)
    requester_email = Column(String, index=True, nullable=False)
    requester_name = Column(String, nullable=False)
    target_email = Column(String, index=True, nullable=False)
    target_name = Column(String, nullable=False)
    requested_date = Column(Date, nullable=False)
    requested_shift = Column(String, nullable=False)  # day, overnight, morning, afternoon, night
    offered_date = Column(Date, nullable=True)  # 廣播請求為空
    offered_shift = Column(String, nullable=True)
    message = Column(Text)
    status = Column(String, default="pending", index=True, nullable=False)  # pending, accepted, rejected, cancelled
    broadcast_id = Column(String, index=True, nullable=True)  # 同一次廣播共用
    email_sent = Column(Boolean, default=False, nullable=False)
    email_sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
    responded_at = Column(DateTime, nullable=True)

    @property
    def is_broadcast(self) -> bool:
        return self.broadcast_id is not None
