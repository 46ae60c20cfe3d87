"""
換班請求服務
定向請求、廣播請求、回覆（接受時取消同一廣播的其他請求）、查詢與清理
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.shift_exchange import ShiftExchangeRequest
from ..models.user import User
from ..utils.shift_calendar import is_valid_shift_for_date, shift_label
from ..utils.timezone import utc_now

logger = logging.getLogger(__name__)

BROADCAST_PREFIX = "[PROPOSTA GERAL]"
TERMINAL_STATUSES = ("accepted", "rejected", "cancelled")


class ExchangeConflictError(Exception):
    """請求狀態已改變（已回覆、已取消或同一廣播已有人接受）"""


@dataclass
class BroadcastOutcome:
    broadcast_id: str
    total: int
    created: List[ShiftExchangeRequest] = field(default_factory=list)
    failed: int = 0

    @property
    def sent(self) -> int:
        return len(self.created)

    @property
    def summary(self) -> str:
        return f"Pedido enviado para {self.sent} de {self.total} utilizadores"


def _check_slot(d: date, shift: str):
    if not is_valid_shift_for_date(d, shift):
        raise ValueError(f"{shift_label(shift)} não está disponível em {d.strftime('%d/%m/%Y')}")


def _compose_broadcast_message(message: Optional[str]) -> str:
    message = (message or "").strip()
    return f"{BROADCAST_PREFIX} {message}" if message else BROADCAST_PREFIX


class ShiftExchangeService:
    """換班請求服務"""

    @classmethod
    def create(cls, db: Session, requester: User, target_email: str,
               requested_date: date, requested_shift: str,
               offered_date: date, offered_shift: str,
               message: Optional[str] = None) -> ShiftExchangeRequest:
        """建立定向換班請求（狀態為 pending）"""
        if target_email == requester.email:
            raise ValueError("Não pode pedir uma troca a si próprio")

        target = db.query(User).filter(User.email == target_email).first()
        if target is None or not target.active:
            raise LookupError("Utilizador de destino não encontrado")

        _check_slot(requested_date, requested_shift)
        _check_slot(offered_date, offered_shift)

        request = ShiftExchangeRequest(
            requester_email=requester.email,
            requester_name=requester.name,
            target_email=target.email,
            target_name=target.name,
            requested_date=requested_date,
            requested_shift=requested_shift,
            offered_date=offered_date,
            offered_shift=offered_shift,
            message=message,
            status="pending",
        )
        db.add(request)
        db.commit()
        db.refresh(request)
        logger.info(f"換班請求 {request.id} 已建立: {requester.email} -> {target.email}")
        return request

    @classmethod
    def broadcast(cls, db: Session, requester: User, offered_date: date, offered_shift: str,
                  message: Optional[str] = None) -> BroadcastOutcome:
        """廣播：對每位其他啟用中的用戶各建立一筆請求

        逐筆建立，部分失敗不影響其他收件人。
        """
        _check_slot(offered_date, offered_shift)

        recipients = db.query(User).filter(
            User.active == True,
            User.email != requester.email
        ).order_by(User.name).all()

        outcome = BroadcastOutcome(broadcast_id=uuid.uuid4().hex, total=len(recipients))
        if not recipients:
            return outcome

        text = _compose_broadcast_message(message)
        for recipient in recipients:
            try:
                request = ShiftExchangeRequest(
                    requester_email=requester.email,
                    requester_name=requester.name,
                    target_email=recipient.email,
                    target_name=recipient.name,
                    requested_date=offered_date,
                    requested_shift=offered_shift,
                    offered_date=None,
                    offered_shift=None,
                    message=text,
                    status="pending",
                    broadcast_id=outcome.broadcast_id,
                )
                db.add(request)
                db.commit()
                db.refresh(request)
                outcome.created.append(request)
            except SQLAlchemyError as e:
                db.rollback()
                outcome.failed += 1
                logger.error(f"廣播請求建立失敗（收件人 {recipient.email}）: {str(e)}")

        logger.info(f"廣播 {outcome.broadcast_id}: {outcome.summary}")
        return outcome

    @classmethod
    def respond(cls, db: Session, request_id: int, actor: User, decision: str,
                offered_date: Optional[date] = None,
                offered_shift: Optional[str] = None) -> Tuple[ShiftExchangeRequest, int]:
        """回覆換班請求

        接受廣播請求時，同一 broadcast_id 下其他 pending 請求在同一交易中改為 cancelled。
        返回 (請求, 被取消的請求數)。
        """
        if decision not in ("accepted", "rejected"):
            raise ValueError("Decisão inválida")

        request = db.query(ShiftExchangeRequest).filter(ShiftExchangeRequest.id == request_id).first()
        if request is None:
            raise LookupError("Pedido de troca não encontrado")
        if request.target_email != actor.email:
            raise PermissionError("Apenas o destinatário pode responder a este pedido")

        siblings: List[ShiftExchangeRequest] = []
        if request.is_broadcast:
            # 依 ID 順序鎖定整個廣播群組，並重新讀取最新狀態
            group = db.query(ShiftExchangeRequest).filter(
                ShiftExchangeRequest.broadcast_id == request.broadcast_id
            ).order_by(ShiftExchangeRequest.id).with_for_update().populate_existing().all()
            siblings = [r for r in group if r.id != request.id]
        else:
            db.query(ShiftExchangeRequest).filter(
                ShiftExchangeRequest.id == request.id
            ).with_for_update().populate_existing().first()

        if request.status != "pending":
            db.rollback()
            raise ExchangeConflictError("Este pedido já não está pendente")

        if offered_date is not None or offered_shift is not None:
            if not request.is_broadcast:
                db.rollback()
                raise ValueError("Só é possível indicar um turno oferecido em propostas gerais")
            if decision != "accepted" or offered_date is None or offered_shift is None:
                db.rollback()
                raise ValueError("Indique a data e o turno oferecidos")
            try:
                _check_slot(offered_date, offered_shift)
            except ValueError:
                db.rollback()
                raise

        if decision == "accepted" and any(s.status == "accepted" for s in siblings):
            db.rollback()
            raise ExchangeConflictError("Esta proposta geral já foi aceite por outro utilizador")

        responded_at = utc_now()
        request.status = decision
        request.responded_at = responded_at
        request.updated_at = responded_at
        if decision == "accepted" and offered_date is not None:
            request.offered_date = offered_date
            request.offered_shift = offered_shift

        cancelled = 0
        if decision == "accepted" and request.is_broadcast:
            cancelled = db.query(ShiftExchangeRequest).filter(
                ShiftExchangeRequest.broadcast_id == request.broadcast_id,
                ShiftExchangeRequest.status == "pending",
                ShiftExchangeRequest.id != request.id
            ).update({
                ShiftExchangeRequest.status: "cancelled",
                ShiftExchangeRequest.responded_at: responded_at,
                ShiftExchangeRequest.updated_at: responded_at,
            }, synchronize_session=False)

        db.commit()
        db.refresh(request)
        logger.info(f"換班請求 {request.id} 已{decision}，取消 {cancelled} 筆同群組請求")
        return request, cancelled

    @classmethod
    def cancel(cls, db: Session, request_id: int, actor: User) -> List[ShiftExchangeRequest]:
        """請求人撤回請求；若為廣播請求則撤回整個群組中仍 pending 的請求"""
        request = db.query(ShiftExchangeRequest).filter(ShiftExchangeRequest.id == request_id).first()
        if request is None:
            raise LookupError("Pedido de troca não encontrado")
        if request.requester_email != actor.email and not actor.is_admin:
            raise PermissionError("Apenas o requerente pode cancelar este pedido")

        query = db.query(ShiftExchangeRequest)
        if request.is_broadcast:
            query = query.filter(ShiftExchangeRequest.broadcast_id == request.broadcast_id)
        else:
            query = query.filter(ShiftExchangeRequest.id == request.id)
        pending = query.filter(ShiftExchangeRequest.status == "pending").with_for_update().all()
        if not pending:
            db.rollback()
            raise ExchangeConflictError("Não existem pedidos pendentes para cancelar")

        now = utc_now()
        for r in pending:
            r.status = "cancelled"
            r.responded_at = now
            r.updated_at = now
        db.commit()
        logger.info(f"用戶 {actor.email} 撤回 {len(pending)} 筆換班請求")
        return pending

    # ---------- 查詢 ----------

    @classmethod
    def get(cls, db: Session, request_id: int) -> Optional[ShiftExchangeRequest]:
        return db.query(ShiftExchangeRequest).filter(ShiftExchangeRequest.id == request_id).first()

    @classmethod
    def pending_for(cls, db: Session, email: str) -> List[ShiftExchangeRequest]:
        """我是被請求人且尚未回覆的請求"""
        return db.query(ShiftExchangeRequest).filter(
            ShiftExchangeRequest.target_email == email,
            ShiftExchangeRequest.status == "pending"
        ).order_by(ShiftExchangeRequest.created_at.desc(), ShiftExchangeRequest.id.desc()).all()

    @classmethod
    def history_for(cls, db: Session, email: str) -> List[ShiftExchangeRequest]:
        """我是請求人或被請求人的所有請求"""
        return db.query(ShiftExchangeRequest).filter(
            or_(
                ShiftExchangeRequest.requester_email == email,
                ShiftExchangeRequest.target_email == email
            )
        ).order_by(ShiftExchangeRequest.created_at.desc(), ShiftExchangeRequest.id.desc()).all()

    @classmethod
    def accepted(cls, db: Session) -> List[ShiftExchangeRequest]:
        """已接受的請求，依回覆時間由舊到新"""
        return db.query(ShiftExchangeRequest).filter(
            ShiftExchangeRequest.status == "accepted"
        ).order_by(ShiftExchangeRequest.responded_at.asc(), ShiftExchangeRequest.id.asc()).all()

    @classmethod
    def list_all(cls, db: Session, status: Optional[str] = None,
                 skip: int = 0, limit: int = 200) -> List[ShiftExchangeRequest]:
        query = db.query(ShiftExchangeRequest)
        if status:
            query = query.filter(ShiftExchangeRequest.status == status)
        return query.order_by(
            ShiftExchangeRequest.created_at.desc(), ShiftExchangeRequest.id.desc()
        ).offset(skip).limit(limit).all()

    @classmethod
    def group_history(cls, requests: List[ShiftExchangeRequest], viewer_email: str) -> Dict[str, list]:
        """將我發出的廣播請求依 (請求人, 日期, 班別) 合併為一張卡片

        返回 {"broadcasts": [...], "requests": [...]}，其餘請求保持原順序。
        """
        groups: Dict[tuple, dict] = {}
        regular: List[ShiftExchangeRequest] = []

        for r in requests:
            if not r.broadcast_id or r.requester_email != viewer_email:
                regular.append(r)
                continue
            key = (r.requester_email, r.requested_date, r.requested_shift)
            group = groups.get(key)
            if group is None:
                group = {
                    "broadcast_id": r.broadcast_id,
                    "requester_email": r.requester_email,
                    "requester_name": r.requester_name,
                    "requested_date": r.requested_date,
                    "requested_shift": r.requested_shift,
                    "message": r.message,
                    "created_at": r.created_at,
                    "total": 0,
                    "pending": 0,
                    "accepted": 0,
                    "rejected": 0,
                    "cancelled": 0,
                    "accepted_by": None,
                    "requests": [],
                }
                groups[key] = group
            group["total"] += 1
            if r.status in ("pending", "accepted", "rejected", "cancelled"):
                group[r.status] += 1
            if r.status == "accepted":
                group["accepted_by"] = r.target_name
            if r.created_at and (group["created_at"] is None or r.created_at > group["created_at"]):
                group["created_at"] = r.created_at
            group["requests"].append(r)

        return {"broadcasts": list(groups.values()), "requests": regular}

    # ---------- 管理 ----------

    @classmethod
    def cleanup(cls, db: Session, retention_days: int) -> int:
        """刪除超過保留期限的已拒絕或已取消請求，返回刪除筆數"""
        cutoff = utc_now() - timedelta(days=retention_days)
        deleted = db.query(ShiftExchangeRequest).filter(
            ShiftExchangeRequest.status.in_(("rejected", "cancelled")),
            ShiftExchangeRequest.updated_at < cutoff
        ).delete(synchronize_session=False)
        db.commit()
        logger.info(f"已清理 {deleted} 筆過期換班請求（保留 {retention_days} 天）")
        return deleted
