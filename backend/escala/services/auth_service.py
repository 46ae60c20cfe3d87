"""
認證服務
密碼驗證、連續失敗鎖定、安全日誌與密碼重設
"""
import logging
from datetime import timedelta
from typing import Optional, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.security import is_bcrypt_hash, verify_password, get_password_hash
from ..models.log import SecurityLog
from ..models.password_reset import PasswordResetRequest
from ..models.user import User
from ..utils.timezone import utc_now

logger = logging.getLogger(__name__)


class LoginError(Exception):
    """登入失敗，附帶 HTTP 狀態碼與剩餘嘗試次數"""

    def __init__(self, status_code: int, detail: str, remaining_attempts: Optional[int] = None,
                 locked_now: bool = False):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
        self.remaining_attempts = remaining_attempts
        self.locked_now = locked_now


INVALID_CREDENTIALS = "Credenciais inválidas"
ACCOUNT_LOCKED = "Conta bloqueada após várias tentativas falhadas. Contacte o administrador."
ACCOUNT_DISABLED = "Conta desativada. Contacte o administrador."


class AuthService:
    """認證服務"""

    @classmethod
    def log_event(cls, db: Session, email: Optional[str], event_type: str, success: bool,
                  ip_address: Optional[str] = None, user_agent: Optional[str] = None,
                  details: Optional[dict] = None, commit: bool = True) -> None:
        """寫入安全日誌（失敗時僅記錄錯誤）"""
        try:
            db.add(SecurityLog(
                user_email=email,
                event_type=event_type,
                success=success,
                ip_address=ip_address,
                user_agent=user_agent,
                details=details,
            ))
            if commit:
                db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"寫入安全日誌失敗 ({event_type}, {email}): {str(e)}")

    @classmethod
    def check_password(cls, db: Session, user: User, password: str) -> bool:
        """驗證密碼；舊資料中的明文密碼驗證成功後立即改存為 bcrypt 雜湊"""
        stored = user.hashed_password or ""
        if is_bcrypt_hash(stored):
            return verify_password(password, stored)
        if stored and password == stored:
            user.hashed_password = get_password_hash(password)
            logger.info(f"用戶 {user.email} 的明文密碼已轉為雜湊")
            return True
        return False

    @classmethod
    def authenticate(cls, db: Session, email: str, password: str,
                     ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> User:
        """驗證登入

        連續失敗達 MAX_FAILED_LOGIN_ATTEMPTS 次時停用帳號並記錄鎖定時間，
        之後無論密碼是否正確皆回覆帳號已鎖定。
        """
        email = (email or "").strip().lower()
        user = db.query(User).filter(func.lower(User.email) == email).first()

        if user is None:
            cls.log_event(db, email, "failed_login", False, ip_address, user_agent,
                          {"reason": "unknown_user"})
            raise LoginError(401, INVALID_CREDENTIALS)

        if user.locked_at is not None:
            cls.log_event(db, user.email, "suspicious_activity", False, ip_address, user_agent,
                          {"reason": "login_attempt_on_locked_account"})
            raise LoginError(423, ACCOUNT_LOCKED)

        if not user.active:
            cls.log_event(db, user.email, "failed_login", False, ip_address, user_agent,
                          {"reason": "inactive_account"})
            raise LoginError(403, ACCOUNT_DISABLED)

        if not cls.check_password(db, user, password):
            user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
            remaining = max(settings.MAX_FAILED_LOGIN_ATTEMPTS - user.failed_login_attempts, 0)
            if remaining == 0:
                user.active = False
                user.locked_at = utc_now()
                cls.log_event(db, user.email, "account_locked", False, ip_address, user_agent,
                              {"failed_attempts": user.failed_login_attempts}, commit=False)
                db.commit()
                logger.warning(f"帳號 {user.email} 連續 {user.failed_login_attempts} 次登入失敗，已鎖定")
                raise LoginError(423, ACCOUNT_LOCKED, remaining_attempts=0, locked_now=True)

            cls.log_event(db, user.email, "failed_login", False, ip_address, user_agent,
                          {"failed_attempts": user.failed_login_attempts}, commit=False)
            db.commit()
            raise LoginError(401, INVALID_CREDENTIALS, remaining_attempts=remaining)

        user.failed_login_attempts = 0
        user.last_login_time = utc_now()
        user.last_login_ip = ip_address
        cls.log_event(db, user.email, "successful_login", True, ip_address, user_agent, commit=False)
        db.commit()
        db.refresh(user)
        return user

    @classmethod
    def unlock(cls, db: Session, user: User) -> User:
        """管理員解除鎖定並重新啟用帳號"""
        user.active = True
        user.locked_at = None
        user.failed_login_attempts = 0
        db.commit()
        db.refresh(user)
        logger.info(f"帳號 {user.email} 已解除鎖定")
        return user

    @classmethod
    def change_password(cls, db: Session, user: User, current_password: str, new_password: str) -> None:
        if not cls.check_password(db, user, current_password):
            raise ValueError("A palavra-passe atual está incorreta")
        user.hashed_password = get_password_hash(new_password)
        user.needs_password_change = False
        db.commit()
        logger.info(f"用戶 {user.email} 已變更密碼")

    @classmethod
    def request_password_reset(cls, db: Session, email: str) -> None:
        """記錄密碼重設請求；未知 email 也靜默接受以免洩露帳號是否存在"""
        email = email.strip().lower()
        user = db.query(User).filter(func.lower(User.email) == email).first()
        if user is None:
            logger.info(f"忽略未知帳號的密碼重設請求: {email}")
            return
        existing = db.query(PasswordResetRequest).filter(
            PasswordResetRequest.email == user.email,
            PasswordResetRequest.fulfilled == False
        ).first()
        if existing is None:
            db.add(PasswordResetRequest(email=user.email))
            db.commit()

    @classmethod
    def pending_reset_requests(cls, db: Session) -> List[PasswordResetRequest]:
        return db.query(PasswordResetRequest).filter(
            PasswordResetRequest.fulfilled == False
        ).order_by(PasswordResetRequest.requested_at.desc()).all()

    @classmethod
    def reset_to_default(cls, db: Session, email: str) -> User:
        """管理員將密碼重設為預設值，並標記相關請求已處理"""
        user = db.query(User).filter(User.email == email).first()
        if user is None:
            raise LookupError("Utilizador não encontrado")
        user.hashed_password = get_password_hash(settings.DEFAULT_USER_PASSWORD)
        user.needs_password_change = True
        db.query(PasswordResetRequest).filter(
            PasswordResetRequest.email == email,
            PasswordResetRequest.fulfilled == False
        ).update({PasswordResetRequest.fulfilled: True}, synchronize_session=False)
        db.commit()
        db.refresh(user)
        logger.info(f"用戶 {email} 的密碼已重設為預設值")
        return user

    @classmethod
    def security_stats(cls, db: Session, hours: int = 24) -> dict:
        since = utc_now() - timedelta(hours=hours)
        rows = db.query(SecurityLog.event_type, func.count(SecurityLog.id)).filter(
            SecurityLog.created_at >= since
        ).group_by(SecurityLog.event_type).all()
        counts = {event_type: count for event_type, count in rows}
        locked = db.query(func.count(User.id)).filter(User.locked_at.isnot(None)).scalar()
        return {
            "period_hours": hours,
            "successful_logins": counts.get("successful_login", 0),
            "failed_logins": counts.get("failed_login", 0),
            "accounts_locked": counts.get("account_locked", 0),
            "suspicious_activity": counts.get("suspicious_activity", 0),
            "currently_locked_accounts": locked or 0,
        }
