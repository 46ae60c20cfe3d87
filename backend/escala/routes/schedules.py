from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from typing import List, Optional
import logging

from ..core.config import settings
from ..core.database import get_db
from ..core.security import get_current_active_user, get_admin_user
from ..models.user import User
from ..schemas.schedule import ScheduleSubmit, Schedule as ScheduleSchema, SubmissionStatus
from ..services.schedule_service import ScheduleService
from ..services.notification_service import NotificationService
from ..services.submission_policy import SubmissionPolicy, SubmissionBlockedError, submission_month
from ..utils.timezone import today
from ..websocket.connection_manager import connection_manager

# 設置logger
logger = logging.getLogger(__name__)

router = APIRouter(tags=["schedules"])


@router.post("/schedules", response_model=ScheduleSchema)
async def submit_schedule(
    schedule_in: ScheduleSubmit,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """提交某月份的可服務時段（同一用戶同一月份只保留一筆）"""
    user = current_user
    if schedule_in.user_email and schedule_in.user_email != current_user.email:
        if not current_user.is_admin:
            raise HTTPException(status_code=403, detail="Sem permissões para submeter a escala de outro utilizador")
        user = db.query(User).filter(User.email == schedule_in.user_email).first()
        if not user:
            raise HTTPException(status_code=404, detail="Utilizador não encontrado")

    try:
        schedule, created = ScheduleService.submit(
            db, user, current_user, schedule_in.month, schedule_in.dates, schedule_in.notes
        )
    except SubmissionBlockedError as e:
        db.rollback()
        raise HTTPException(status_code=403, detail=str(e))
    except IntegrityError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=f"Já existe uma escala para este mês: {str(e.orig)}")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"儲存班表失敗: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")

    await connection_manager.broadcast_table_change("schedules", "INSERT" if created else "UPDATE", schedule.id)
    try:
        await NotificationService.schedule_submitted(db, schedule, created, current_user)
    except Exception as e:
        logger.error(f"班表 {schedule.id} 提交通知失敗: {str(e)}")
    return schedule


@router.get("/schedules", response_model=List[ScheduleSchema])
async def read_schedules(
    month: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """管理員取得全部班表（最近更新在前），一般用戶只取得自己的"""
    if current_user.is_admin:
        return ScheduleService.list_all(db, month)
    return ScheduleService.get_for_user(db, current_user.email, month)


@router.get("/schedules/me", response_model=List[ScheduleSchema])
async def read_my_schedules(
    month: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return ScheduleService.get_for_user(db, current_user.email, month)


@router.get("/schedules/submission-status", response_model=SubmissionStatus)
async def read_submission_status(
    month: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """提交期限與剩餘編輯次數"""
    on = today()
    month = month or submission_month(on)
    decision = SubmissionPolicy.check(db, current_user, current_user, on)
    existing = ScheduleService.get_for_user(db, current_user.email, month)
    schedule = existing[0] if existing else None
    remaining = ScheduleService.remaining_edits(db, current_user, current_user, schedule)

    can_submit = decision.allowed and (remaining is None or remaining > 0 or schedule is None)
    message = decision.message
    if decision.allowed and not can_submit:
        message = f"Atingiu o limite de {settings.MAX_SCHEDULE_EDITS} edições para este mês."

    return SubmissionStatus(
        month=month,
        window_open=decision.window_open,
        deadline_day=settings.SUBMISSION_DEADLINE_DAY,
        late_submission_allowed=decision.override,
        can_submit=can_submit,
        edit_count=schedule.edit_count if schedule else 0,
        max_edits=settings.MAX_SCHEDULE_EDITS,
        edits_remaining=remaining,
        message=message,
    )


@router.delete("/schedules/{email}", response_model=dict)
async def delete_user_schedules(
    email: str,
    month: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """刪除用戶的班表（可指定月份）"""
    try:
        deleted = ScheduleService.delete_for_user(db, email, month)
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")
    if deleted == 0:
        raise HTTPException(status_code=404, detail="Escala não encontrada")
    await connection_manager.broadcast_table_change("schedules", "DELETE")
    return {"success": True, "deleted": deleted}


@router.post("/schedules/{email}/reset-edit-count", response_model=dict)
async def reset_edit_count(
    email: str,
    month: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """將用戶的編輯次數歸零"""
    try:
        updated = ScheduleService.reset_edit_count(db, email, month)
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")
    await connection_manager.broadcast_table_change("schedules", "UPDATE")
    return {"success": True, "updated": updated}


@router.post("/schedules/{schedule_id}/printed", response_model=ScheduleSchema, status_code=status.HTTP_200_OK)
async def mark_schedule_printed(
    schedule_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    try:
        schedule = ScheduleService.mark_printed(db, schedule_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")
    await connection_manager.broadcast_table_change("schedules", "UPDATE", schedule.id)
    return schedule
