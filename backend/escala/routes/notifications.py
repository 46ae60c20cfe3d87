from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from typing import List
import logging

from ..core.database import get_db
from ..core.security import get_current_active_user
from ..models.notification import Notification
from ..models.user import User
from ..schemas.notification import Notification as NotificationSchema

# 設置logger
logger = logging.getLogger(__name__)

router = APIRouter(tags=["notifications"])


@router.get("/notifications", response_model=List[NotificationSchema])
async def read_notifications(
    unread_only: bool = False,
    limit: int = 50,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    query = db.query(Notification).filter(Notification.user_email == current_user.email)
    if unread_only:
        query = query.filter(Notification.read == False)
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


@router.get("/notifications/unread-count", response_model=dict)
async def read_unread_count(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    count = db.query(Notification).filter(
        Notification.user_email == current_user.email,
        Notification.read == False
    ).count()
    return {"unread": count}


@router.post("/notifications/read-all", response_model=dict)
async def mark_all_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    try:
        updated = db.query(Notification).filter(
            Notification.user_email == current_user.email,
            Notification.read == False
        ).update({Notification.read: True}, synchronize_session=False)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")
    return {"success": True, "updated": updated}


@router.post("/notifications/{notification_id}/read", response_model=NotificationSchema)
async def mark_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_email == current_user.email
    ).first()
    if not notification:
        raise HTTPException(status_code=404, detail="Notificação não encontrada")
    notification.read = True
    try:
        db.commit()
        db.refresh(notification)
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")
    return notification
