from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
import io
import logging

from ..core.database import get_db
from ..core.security import get_current_active_user, get_admin_user
from ..models.schedule import Schedule
from ..models.user import User
from ..schemas.schedule import ScheduleExportRequest
from ..services.export_service import ExportService

# 設置logger
logger = logging.getLogger(__name__)

router = APIRouter(tags=["exports"])


@router.post("/exports/schedules.csv")
async def export_schedules_csv(
    export_in: ScheduleExportRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """匯出選定用戶的班表為 CSV"""
    content = ExportService.schedules_csv(db, export_in.user_emails, export_in.month)
    filename = f"escalas_{export_in.month}.csv" if export_in.month else "escalas.csv"
    return StreamingResponse(
        io.BytesIO(content.encode("utf-8-sig")),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/exports/schedules/{schedule_id}.pdf")
async def export_schedule_pdf(
    schedule_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """匯出單一班表為 PDF（本人或管理員）"""
    schedule = db.query(Schedule).filter(Schedule.id == schedule_id).first()
    if not schedule:
        raise HTTPException(status_code=404, detail="Escala não encontrada")
    if not current_user.is_admin and schedule.user_email != current_user.email:
        raise HTTPException(status_code=403, detail="Sem permissões para exportar esta escala")

    content = ExportService.schedule_pdf(schedule)
    filename = f"escala_{schedule.user_name.replace(' ', '_')}_{schedule.month}.pdf"
    return StreamingResponse(
        io.BytesIO(content),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
