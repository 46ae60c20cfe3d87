from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from typing import List
import logging

from ..core.database import get_db
from ..core.security import get_current_active_user, get_admin_user
from ..models.announcement import Announcement
from ..models.user import User
from ..schemas.announcement import AnnouncementCreate, AnnouncementUpdate, Announcement as AnnouncementSchema
from ..services.notification_service import NotificationService
from ..utils.timezone import now, utc_now
from ..websocket.connection_manager import connection_manager

# 設置logger
logger = logging.getLogger(__name__)

router = APIRouter(tags=["announcements"])


@router.get("/announcements", response_model=List[AnnouncementSchema])
async def read_announcements(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """獲取所有公告"""
    return db.query(Announcement).order_by(
        Announcement.created_at.desc(), Announcement.id.desc()
    ).offset(skip).limit(limit).all()


@router.get("/announcements/active", response_model=List[AnnouncementSchema])
async def read_active_announcements(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """目前在顯示期間內的公告，最新在前"""
    current = now().replace(tzinfo=None)
    return db.query(Announcement).filter(
        Announcement.start_date <= current,
        Announcement.end_date >= current
    ).order_by(Announcement.created_at.desc(), Announcement.id.desc()).all()


@router.post("/announcements", response_model=AnnouncementSchema, status_code=status.HTTP_201_CREATED)
async def create_announcement(
    announcement_in: AnnouncementCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """創建公告"""
    announcement = Announcement(
        title=announcement_in.title,
        content=announcement_in.content,
        start_date=announcement_in.start_date.replace(tzinfo=None),
        end_date=announcement_in.end_date.replace(tzinfo=None),
        created_by=current_user.email,
    )
    try:
        db.add(announcement)
        db.commit()
        db.refresh(announcement)
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")

    await connection_manager.broadcast_table_change("announcements", "INSERT", announcement.id)
    try:
        await NotificationService.announcement_created(db, announcement)
    except Exception as e:
        logger.error(f"公告 {announcement.id} 通知失敗: {str(e)}")
    return announcement


@router.put("/announcements/{announcement_id}", response_model=AnnouncementSchema)
async def update_announcement(
    announcement_id: int,
    announcement_in: AnnouncementUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """更新公告"""
    announcement = db.query(Announcement).filter(Announcement.id == announcement_id).first()
    if not announcement:
        raise HTTPException(status_code=404, detail="Aviso não encontrado")

    update_data = announcement_in.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        if value is None:
            continue
        if field in ("start_date", "end_date"):
            value = value.replace(tzinfo=None)
        setattr(announcement, field, value)

    if announcement.end_date < announcement.start_date:
        db.rollback()
        raise HTTPException(status_code=400, detail="A data de fim deve ser posterior à data de início")

    announcement.updated_at = utc_now()
    try:
        db.commit()
        db.refresh(announcement)
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")

    await connection_manager.broadcast_table_change("announcements", "UPDATE", announcement.id)
    return announcement


@router.delete("/announcements/{announcement_id}", response_model=dict)
async def delete_announcement(
    announcement_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """刪除公告"""
    announcement = db.query(Announcement).filter(Announcement.id == announcement_id).first()
    if not announcement:
        raise HTTPException(status_code=404, detail="Aviso não encontrado")
    try:
        db.delete(announcement)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")

    await connection_manager.broadcast_table_change("announcements", "DELETE", announcement_id)
    return {"success": True}
