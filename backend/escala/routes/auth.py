from fastapi import APIRouter, Depends, HTTPException, status, Request
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from typing import List
from datetime import datetime, timedelta
import logging

from ..core.config import settings
from ..core.database import get_db
from ..core.security import (
    create_access_token,
    decode_access_token,
    get_current_active_user,
    get_admin_user,
    oauth2_scheme,
)
from ..models.log import SecurityLog
from ..models.user import User
from ..schemas.user import (
    Token,
    SessionInfo,
    PasswordChange,
    PasswordResetRequestCreate,
    PasswordResetRequest as PasswordResetRequestSchema,
    User as UserSchema,
)
from ..services.auth_service import AuthService, LoginError
from ..services.notification_service import NotificationService
from ..services.settings_service import SystemSettingsService

# 設置logger
logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


def user_schema(db: Session, user: User) -> UserSchema:
    data = UserSchema.model_validate(user)
    data.allow_late_submission = SystemSettingsService.late_submission_allowed(db, user.email)
    return data


def issue_token(user: User) -> dict:
    expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    token = create_access_token(data={"sub": user.email, "role": user.role}, expires_delta=expires_delta)
    return {"access_token": token, "token_type": "bearer", "expires_at": datetime.utcnow() + expires_delta}


@router.post("/login", response_model=Token)
async def login_for_access_token(
    request: Request,
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db),
):
    """登入；連續失敗 5 次後帳號鎖定"""
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    try:
        user = AuthService.authenticate(db, form_data.username, form_data.password, ip_address, user_agent)
    except LoginError as e:
        if e.locked_now:
            try:
                await NotificationService.alert_admins(
                    db,
                    "Conta bloqueada",
                    f"A conta {form_data.username} foi bloqueada após "
                    f"{settings.MAX_FAILED_LOGIN_ATTEMPTS} tentativas falhadas (IP {ip_address}).",
                    exclude=[form_data.username],
                )
            except Exception as alert_error:
                logger.error(f"通知管理員帳號鎖定失敗: {str(alert_error)}")
        headers = {"WWW-Authenticate": "Bearer"} if e.status_code == 401 else None
        raise HTTPException(
            status_code=e.status_code,
            detail={"message": e.detail, "remaining_attempts": e.remaining_attempts},
            headers=headers,
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"登入過程中發生錯誤: {str(e)}")
        raise HTTPException(status_code=500, detail="Falha no login, tente novamente mais tarde")

    return {**issue_token(user), "user": user_schema(db, user)}


@router.get("/session", response_model=SessionInfo)
async def read_session(
    token: str = Depends(oauth2_scheme),
    current_user: User = Depends(get_current_active_user),
):
    """目前會話資訊（角色取自資料庫）"""
    payload = decode_access_token(token) or {}
    issued_at = datetime.utcfromtimestamp(payload.get("iat", 0))
    expires_at = datetime.utcfromtimestamp(payload.get("exp", 0))
    remaining = max(int((expires_at - datetime.utcnow()).total_seconds() // 60), 0)
    return SessionInfo(
        email=current_user.email,
        name=current_user.name,
        role=current_user.role,
        mechanographic_number=current_user.mechanographic_number,
        needs_password_change=current_user.needs_password_change,
        issued_at=issued_at,
        expires_at=expires_at,
        minutes_remaining=remaining,
    )


@router.post("/session/refresh", response_model=Token)
async def refresh_session(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """延長會話"""
    return {**issue_token(current_user), "user": user_schema(db, current_user)}


@router.post("/users/me/password", response_model=dict)
async def change_password(
    password_data: PasswordChange,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user),
):
    """變更自己的密碼"""
    try:
        AuthService.change_password(db, current_user, password_data.current_password, password_data.new_password)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")
    return {"success": True, "message": "Palavra-passe alterada com sucesso"}


@router.post("/password-reset-requests", response_model=dict, status_code=status.HTTP_202_ACCEPTED)
async def request_password_reset(
    reset_in: PasswordResetRequestCreate,
    db: Session = Depends(get_db),
):
    """忘記密碼：建立重設請求，由管理員處理"""
    try:
        AuthService.request_password_reset(db, reset_in.email)
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")
    try:
        await NotificationService.alert_admins(
            db, "Pedido de reposição de palavra-passe", f"{reset_in.email} pediu a reposição da palavra-passe."
        )
    except Exception as e:
        logger.error(f"通知管理員密碼重設請求失敗: {str(e)}")
    return {"success": True, "message": "Pedido registado. O administrador irá repor a sua palavra-passe."}


@router.get("/password-reset-requests", response_model=List[PasswordResetRequestSchema])
async def list_password_reset_requests(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user),
):
    return AuthService.pending_reset_requests(db)


@router.post("/password-reset-requests/{email}/fulfil", response_model=UserSchema)
async def fulfil_password_reset(
    email: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user),
):
    """將用戶密碼重設為預設密碼，下次登入須變更"""
    try:
        user = AuthService.reset_to_default(db, email)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")
    return user_schema(db, user)


@router.get("/security/logs", response_model=List[dict])
async def list_security_logs(
    limit: int = 100,
    email: str = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user),
):
    query = db.query(SecurityLog)
    if email:
        query = query.filter(SecurityLog.user_email == email)
    logs = query.order_by(SecurityLog.created_at.desc(), SecurityLog.id.desc()).limit(limit).all()
    return [
        {
            "id": log.id,
            "user_email": log.user_email,
            "event_type": log.event_type,
            "ip_address": log.ip_address,
            "user_agent": log.user_agent,
            "success": log.success,
            "details": log.details,
            "created_at": log.created_at,
        }
        for log in logs
    ]


@router.get("/security/stats", response_model=dict)
async def security_stats(
    hours: int = 24,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user),
):
    return AuthService.security_stats(db, hours)
