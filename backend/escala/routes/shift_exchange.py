from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from typing import List, Optional
from datetime import date
import logging

from ..core.config import settings
from ..core.database import get_db
from ..core.security import get_current_active_user, get_admin_user
from ..models.shift_exchange import ShiftExchangeRequest
from ..models.user import User
from ..schemas.shift_exchange import (
    ExchangeRequestCreate,
    BroadcastCreate,
    ExchangeRespond,
    ExchangeRequest as ExchangeRequestSchema,
    BroadcastResult,
    RespondResult,
    GroupedHistory,
    ShiftOptions,
    CleanupResult,
)
from ..services.exchange_service import ShiftExchangeService, ExchangeConflictError
from ..services.notification_service import NotificationService
from ..utils.shift_calendar import day_type, shift_options, shift_label
from ..websocket.connection_manager import connection_manager

# 設置logger
logger = logging.getLogger(__name__)

router = APIRouter(tags=["shift-exchange"])

TABLE = "shift_exchange_requests"


async def _notify_created(db: Session, request: ShiftExchangeRequest):
    try:
        await NotificationService.exchange_created(db, request)
    except Exception as e:
        logger.error(f"換班請求 {request.id} 通知失敗: {str(e)}")


async def _notify_responded(db: Session, request: ShiftExchangeRequest):
    try:
        await NotificationService.exchange_responded(db, request)
    except Exception as e:
        logger.error(f"換班請求 {request.id} 回覆通知失敗: {str(e)}")


@router.get("/shift-exchange/shift-options", response_model=ShiftOptions)
async def read_shift_options(
    on: date,
    current_user: User = Depends(get_current_active_user)
):
    """指定日期可選的班別（平日或週末／國定假日）"""
    options = [{"value": s, "label": shift_label(s)} for s in shift_options(on)]
    return ShiftOptions(date=on, day_type=day_type(on), options=options)


@router.post("/shift-exchange", response_model=ExchangeRequestSchema, status_code=status.HTTP_201_CREATED)
async def create_exchange_request(
    request_in: ExchangeRequestCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """建立定向換班請求"""
    try:
        request = ShiftExchangeService.create(
            db,
            current_user,
            request_in.target_email.lower(),
            request_in.requested_date,
            request_in.requested_shift,
            request_in.offered_date,
            request_in.offered_shift,
            request_in.message,
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"建立換班請求失敗: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")

    await connection_manager.broadcast_table_change(TABLE, "INSERT", request.id)
    await _notify_created(db, request)
    return request


@router.post("/shift-exchange/broadcast", response_model=BroadcastResult, status_code=status.HTTP_201_CREATED)
async def broadcast_exchange_request(
    broadcast_in: BroadcastCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """向所有其他啟用中的用戶廣播換班提議"""
    try:
        outcome = ShiftExchangeService.broadcast(
            db, current_user, broadcast_in.offered_date, broadcast_in.offered_shift, broadcast_in.message
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if outcome.total == 0:
        raise HTTPException(status_code=404, detail="Não existem outros utilizadores ativos")

    if outcome.created:
        await connection_manager.broadcast_table_change(TABLE, "INSERT")
    for request in outcome.created:
        await _notify_created(db, request)

    return BroadcastResult(
        broadcast_id=outcome.broadcast_id,
        sent=outcome.sent,
        total=outcome.total,
        failed=outcome.failed,
        message=outcome.summary,
    )


@router.post("/shift-exchange/{request_id}/respond", response_model=RespondResult)
async def respond_exchange_request(
    request_id: int,
    respond_in: ExchangeRespond,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """接受或拒絕換班請求（僅限被請求人）"""
    try:
        request, cancelled = ShiftExchangeService.respond(
            db,
            request_id,
            current_user,
            respond_in.decision,
            respond_in.offered_date,
            respond_in.offered_shift,
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ExchangeConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"回覆換班請求 {request_id} 失敗: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")

    await connection_manager.broadcast_table_change(TABLE, "UPDATE", request.id)
    await _notify_responded(db, request)
    return RespondResult(request=request, cancelled_siblings=cancelled)


@router.post("/shift-exchange/{request_id}/cancel", response_model=List[ExchangeRequestSchema])
async def cancel_exchange_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """撤回自己的 pending 請求（廣播請求會撤回整個群組）"""
    try:
        cancelled = ShiftExchangeService.cancel(db, request_id, current_user)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ExchangeConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")

    await connection_manager.broadcast_table_change(TABLE, "UPDATE", request_id)
    return cancelled


@router.get("/shift-exchange/pending", response_model=List[ExchangeRequestSchema])
async def read_pending_requests(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """等待我回覆的請求"""
    return ShiftExchangeService.pending_for(db, current_user.email)


@router.get("/shift-exchange/history", response_model=List[ExchangeRequestSchema])
async def read_request_history(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """我發出或收到的所有請求，最新在前"""
    return ShiftExchangeService.history_for(db, current_user.email)


@router.get("/shift-exchange/history/grouped", response_model=GroupedHistory)
async def read_grouped_history(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """歷史記錄，我發出的廣播請求合併為一組"""
    requests = ShiftExchangeService.history_for(db, current_user.email)
    return ShiftExchangeService.group_history(requests, current_user.email)


@router.get("/shift-exchange/accepted", response_model=List[ExchangeRequestSchema])
async def read_accepted_requests(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return ShiftExchangeService.accepted(db)


@router.get("/shift-exchange/all", response_model=List[ExchangeRequestSchema])
async def read_all_requests(
    status_filter: Optional[str] = None,
    skip: int = 0,
    limit: int = 200,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    return ShiftExchangeService.list_all(db, status_filter, skip, limit)


@router.get("/shift-exchange/{request_id}", response_model=ExchangeRequestSchema)
async def read_exchange_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    request = ShiftExchangeService.get(db, request_id)
    if request is None:
        raise HTTPException(status_code=404, detail="Pedido de troca não encontrado")
    if not current_user.is_admin and current_user.email not in (request.requester_email, request.target_email):
        raise HTTPException(status_code=403, detail="Sem permissões para ver este pedido")
    return request


@router.post("/shift-exchange/cleanup", response_model=CleanupResult)
async def cleanup_exchange_requests(
    retention_days: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_admin_user)
):
    """刪除超過保留期限的已拒絕／已取消請求"""
    days = retention_days if retention_days is not None else settings.EXCHANGE_RETENTION_DAYS
    if days < 0:
        raise HTTPException(status_code=400, detail="Período de retenção inválido")
    try:
        deleted = ShiftExchangeService.cleanup(db, days)
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Erro de base de dados: {str(e)}")
    if deleted:
        await connection_manager.broadcast_table_change(TABLE, "DELETE")
    return CleanupResult(deleted=deleted, retention_days=days)
