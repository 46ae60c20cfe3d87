from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func
from ..core.database import Base

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    mechanographic_number = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(String, default="user", nullable=False)  # admin, user
    active = Column(Boolean, default=True, nullable=False)  # 是否啟用（鎖定時設為 False）
    needs_password_change = Column(Boolean, default=False, nullable=False)
    telegram_chat_id = Column(String, nullable=True)  # Telegram 通知用聊天 ID
    failed_login_attempts = Column(Integer, default=0, nullable=False)
    locked_at = Column(DateTime, nullable=True)  # 連續登入失敗鎖定時間
    last_login_ip = Column(String)
    last_login_time = Column(DateTime)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
