from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from typing import List
import logging

from ..core.config import settings
from ..core.database import get_db
from ..core.security import get_password_hash, get_current_active_user, get_admin_user
from ..models.user import User
from ..schemas.user import UserCreate, UserUpdate, User as UserSchema, TelegramLink
from ..services.auth_service import AuthService
from ..services.settings_service import SystemSettingsService, late_submission_key
from ..websocket.connection_manager import connection_manager
from .auth import user_schema

# 設置logger
logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])


def _get_user_or_404(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="Utilizador não encontrado")
    return user


@router.post("/users", response_model=UserSchema, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_in: UserCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """創建新用戶（未提供密碼時使用預設密碼，首次登入須變更）"""
    email = user_in.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=400, detail="Já existe um utilizador com este email")
    if db.query(User).filter(User.mechanographic_number == user_in.mechanographic_number).first():
        raise HTTPException(status_code=400, detail="Número mecanográfico já atribuído")

    password = user_in.password or settings.DEFAULT_USER_PASSWORD
    user = User(
        email=email,
        name=user_in.name,
        mechanographic_number=user_in.mechanographic_number,
        role=user_in.role,
        active=user_in.active,
        hashed_password=get_password_hash(password),
        needs_password_change=user_in.password is None,
    )
    try:
        db.add(user)
        db.commit()
        db.refresh(user)
    except IntegrityError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=f"Dados duplicados: {str(e.orig)}")
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")

    logger.info(f"管理員 {current_user.email} 建立用戶 {user.email}")
    await connection_manager.broadcast_table_change("users", "INSERT", user.id)
    return user_schema(db, user)


@router.get("/users", response_model=List[UserSchema])
async def read_users(
    include_inactive: bool = True,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """獲取所有用戶，附帶逾期提交豁免狀態"""
    query = db.query(User)
    if not include_inactive:
        query = query.filter(User.active == True)
    users = query.order_by(User.name).all()
    return [user_schema(db, u) for u in users]


@router.get("/users/directory", response_model=List[dict])
async def read_user_directory(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """換班對象清單（其他啟用中的用戶）"""
    users = db.query(User).filter(
        User.active == True,
        User.email != current_user.email
    ).order_by(User.name).all()
    return [
        {"email": u.email, "name": u.name, "mechanographic_number": u.mechanographic_number}
        for u in users
    ]


@router.get("/users/me", response_model=UserSchema)
async def read_user_me(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return user_schema(db, current_user)


@router.put("/users/me/telegram", response_model=UserSchema)
async def update_my_telegram(
    link: TelegramLink,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """設定自己的 Telegram 聊天 ID（空值表示取消）"""
    chat_id = (link.telegram_chat_id or "").strip() or None
    if chat_id is not None and not chat_id.lstrip("-").isdigit():
        raise HTTPException(status_code=400, detail="ID de chat do Telegram inválido")
    current_user.telegram_chat_id = chat_id
    try:
        db.commit()
        db.refresh(current_user)
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")
    return user_schema(db, current_user)


@router.put("/users/{user_id}", response_model=UserSchema)
async def update_user(
    user_id: int,
    user_in: UserUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """更新用戶資料"""
    user = _get_user_or_404(db, user_id)
    update_data = user_in.model_dump(exclude_unset=True)

    if update_data.get("role") not in (None, "admin", "user"):
        raise HTTPException(status_code=400, detail="Perfil inválido")
    if user.id == current_user.id and update_data.get("role") == "user":
        raise HTTPException(status_code=400, detail="Não pode remover o seu próprio perfil de administrador")
    if "email" in update_data and update_data["email"]:
        update_data["email"] = update_data["email"].lower()

    old_email = user.email
    for field, value in update_data.items():
        if value is not None:
            setattr(user, field, value)

    try:
        if user.email != old_email:
            old_key = late_submission_key(old_email)
            allowed = SystemSettingsService.get(db, old_key) == "true"
            SystemSettingsService.delete(db, old_key)
            if allowed:
                SystemSettingsService.set_late_submission(db, user.email, True)
        db.commit()
        db.refresh(user)
    except IntegrityError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=f"Dados duplicados: {str(e.orig)}")
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")

    await connection_manager.broadcast_table_change("users", "UPDATE", user.id)
    return user_schema(db, user)


@router.post("/users/{user_id}/toggle-active", response_model=UserSchema)
async def toggle_user_active(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """啟用／停用用戶；重新啟用時一併清除鎖定狀態"""
    user = _get_user_or_404(db, user_id)
    if user.id == current_user.id:
        raise HTTPException(status_code=400, detail="Não pode desativar a sua própria conta")

    try:
        if user.active:
            user.active = False
            db.commit()
            db.refresh(user)
        else:
            user = AuthService.unlock(db, user)
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")

    logger.info(f"管理員 {current_user.email} 將用戶 {user.email} 設為 {'啟用' if user.active else '停用'}")
    await connection_manager.broadcast_table_change("users", "UPDATE", user.id)
    return user_schema(db, user)


@router.post("/users/{user_id}/unlock", response_model=UserSchema)
async def unlock_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """解除連續登入失敗造成的鎖定"""
    user = _get_user_or_404(db, user_id)
    try:
        user = AuthService.unlock(db, user)
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")
    AuthService.log_event(db, user.email, "account_unlocked", True, details={"by": current_user.email})
    await connection_manager.broadcast_table_change("users", "UPDATE", user.id)
    return user_schema(db, user)


@router.delete("/users/{user_id}", response_model=dict)
async def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """刪除用戶（不可刪除自己）"""
    user = _get_user_or_404(db, user_id)
    if user.id == current_user.id:
        raise HTTPException(status_code=400, detail="Não pode eliminar a sua própria conta")

    email = user.email
    try:
        SystemSettingsService.delete(db, late_submission_key(email))
        db.delete(user)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")

    logger.info(f"管理員 {current_user.email} 刪除用戶 {email}")
    AuthService.log_event(db, email, "user_deleted", True, details={"by": current_user.email})
    await connection_manager.broadcast_table_change("users", "DELETE", user_id)
    return {"success": True, "message": f"Utilizador {email} eliminado"}
