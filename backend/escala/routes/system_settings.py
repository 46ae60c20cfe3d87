from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from typing import List
import io
import logging

import httpx

from ..core.config import settings
from ..core.database import get_db
from ..core.security import get_current_active_user, get_admin_user
from ..models.system_setting import SystemSetting
from ..models.user import User
from ..schemas.system_setting import (
    SystemSettingUpsert,
    SystemSetting as SystemSettingSchema,
    PublicationLink,
    LateSubmissionToggle,
)
from ..services.notification_service import NotificationService
from ..services.reconciliation import to_direct_download_url
from ..services.settings_service import (
    SystemSettingsService,
    SCHEDULE_XLSX_LINK,
    CURRENT_SCHEDULE_PDF,
    LATE_SUBMISSION_PREFIX,
)
from ..websocket.connection_manager import connection_manager

# 設置logger
logger = logging.getLogger(__name__)

router = APIRouter(tags=["system-settings"])

PUBLICATION_KEYS = {"pdf": CURRENT_SCHEDULE_PDF, "xlsx": SCHEDULE_XLSX_LINK}


@router.get("/system-settings", response_model=List[SystemSettingSchema])
async def read_system_settings(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    return db.query(SystemSetting).order_by(SystemSetting.key).all()


@router.get("/system-settings/{key}", response_model=SystemSettingSchema)
async def read_system_setting(
    key: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    # 逾期提交豁免只有本人或管理員可查詢
    if key.startswith(LATE_SUBMISSION_PREFIX) and not current_user.is_admin:
        if key != f"{LATE_SUBMISSION_PREFIX}{current_user.email}":
            raise HTTPException(status_code=403, detail="Sem permissões para consultar esta definição")
    setting = db.query(SystemSetting).filter(SystemSetting.key == key).first()
    if setting is None:
        raise HTTPException(status_code=404, detail="Definição não encontrada")
    return setting


@router.put("/system-settings/{key}", response_model=SystemSettingSchema)
async def upsert_system_setting(
    key: str,
    setting_in: SystemSettingUpsert,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """依 key 新增或更新系統設定"""
    try:
        setting = SystemSettingsService.upsert(db, key, setting_in.value, setting_in.description)
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")
    await connection_manager.broadcast_table_change("system_settings", "UPDATE", setting.id)
    return setting


@router.put("/system-settings/late-submission/{email}", response_model=SystemSettingSchema)
async def set_late_submission(
    email: str,
    toggle: LateSubmissionToggle,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """允許或禁止用戶在截止日後提交班表"""
    user = db.query(User).filter(User.email == email).first()
    if not user:
        raise HTTPException(status_code=404, detail="Utilizador não encontrado")
    try:
        setting = SystemSettingsService.set_late_submission(db, user.email, toggle.allowed)
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")
    logger.info(f"管理員 {current_user.email} 將 {email} 的逾期提交設為 {toggle.allowed}")
    await connection_manager.broadcast_table_change("system_settings", "UPDATE", setting.id)
    return setting


@router.get("/schedule-publication", response_model=dict)
async def read_publication_links(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """已發佈的班表連結"""
    return {kind: SystemSettingsService.get(db, key) for kind, key in PUBLICATION_KEYS.items()}


@router.put("/schedule-publication/{kind}", response_model=SystemSettingSchema)
async def update_publication_link(
    kind: str,
    link: PublicationLink,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """設定 PDF 或 XLSX 班表連結"""
    key = PUBLICATION_KEYS.get(kind)
    if key is None:
        raise HTTPException(status_code=404, detail="Tipo de publicação desconhecido")
    description = "Escala atual (PDF)" if kind == "pdf" else "Escala atual (XLSX)"
    try:
        setting = SystemSettingsService.upsert(db, key, link.url, description)
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")
    await connection_manager.broadcast_table_change("system_settings", "UPDATE", setting.id)
    try:
        await NotificationService.schedule_published(db, kind)
    except Exception as e:
        logger.error(f"班表發佈通知失敗: {str(e)}")
    return setting


@router.get("/schedule-publication/pdf")
async def proxy_schedule_pdf(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """代理下載已發佈的 PDF 班表"""
    url = SystemSettingsService.get(db, CURRENT_SCHEDULE_PDF)
    if not url:
        raise HTTPException(status_code=404, detail="Nenhuma escala PDF publicada")

    download_url = to_direct_download_url(url)
    try:
        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, follow_redirects=True) as client:
            response = await client.get(download_url)
            response.raise_for_status()
    except httpx.HTTPError as e:
        logger.error(f"下載 PDF 班表失敗: {str(e)}")
        raise HTTPException(status_code=502, detail=f"Erro ao carregar PDF: {str(e)}")

    return StreamingResponse(
        io.BytesIO(response.content),
        media_type="application/pdf",
        headers={"Content-Disposition": 'inline; filename="escala.pdf"'},
    )
