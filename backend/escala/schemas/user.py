from pydantic import BaseModel, EmailStr, validator
from typing import Optional
from datetime import datetime
from ..utils.timezone import utc_to_local

# 基本用戶模式
class UserBase(BaseModel):
    email: EmailStr
    name: str
    mechanographic_number: str
    role: str = "user"  # admin, user
    active: bool = True

    @validator('role')
    def validate_role(cls, v):
        if v not in ("admin", "user"):
            raise ValueError("Perfil inválido")
        return v

    @validator('mechanographic_number', 'name')
    def strip_required(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Campo obrigatório")
        return v

# 用於創建用戶（未提供密碼時使用預設密碼）
class UserCreate(UserBase):
    password: Optional[str] = None

# 用於更新用戶
class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = None
    mechanographic_number: Optional[str] = None
    role: Optional[str] = None
    active: Optional[bool] = None
    needs_password_change: Optional[bool] = None

class User(UserBase):
    id: int
    needs_password_change: bool = False
    telegram_chat_id: Optional[str] = None
    failed_login_attempts: int = 0
    locked_at: Optional[datetime] = None
    last_login_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    allow_late_submission: bool = False

    class Config:
        from_attributes = True

    # 自動轉換UTC時間為本地時間
    @validator('last_login_time', 'created_at', 'updated_at', 'locked_at', pre=False, always=True)
    def convert_utc_to_local(cls, v):
        if v is None:
            return v
        return utc_to_local(v)

# 令牌
class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime
    user: Optional[User] = None

# 會話資訊
class SessionInfo(BaseModel):
    email: str
    name: str
    role: str
    mechanographic_number: str
    needs_password_change: bool
    issued_at: datetime
    expires_at: datetime
    minutes_remaining: int

# 密碼變更模式
class PasswordChange(BaseModel):
    current_password: str
    new_password: str

    @validator('new_password')
    def validate_password_length(cls, v):
        if len(v) < 6:
            raise ValueError("A palavra-passe deve ter pelo menos 6 caracteres")
        return v

class TelegramLink(BaseModel):
    telegram_chat_id: Optional[str] = None

class PasswordResetRequestCreate(BaseModel):
    email: EmailStr

class PasswordResetRequest(BaseModel):
    id: int
    email: str
    fulfilled: bool
    requested_at: Optional[datetime] = None

    class Config:
        from_attributes = True
