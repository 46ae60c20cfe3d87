"""
通知服務
電子郵件（Resend）、Telegram Bot 與站內通知（含 WebSocket 推播）。
所有通道皆為盡力而為：失敗只記錄日誌，不影響主要操作。
"""
import html
import logging
from datetime import date
from typing import Iterable, List, Optional

import httpx
import resend
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.announcement import Announcement
from ..models.notification import Notification
from ..models.schedule import Schedule
from ..models.shift_exchange import ShiftExchangeRequest
from ..models.user import User
from ..utils.shift_calendar import shift_label
from ..utils.timezone import utc_now
from ..websocket.connection_manager import connection_manager
from .settings_service import SystemSettingsService

logger = logging.getLogger(__name__)

WEEKDAYS_PT = ["segunda-feira", "terça-feira", "quarta-feira", "quinta-feira",
               "sexta-feira", "sábado", "domingo"]
MONTHS_PT = ["janeiro", "fevereiro", "março", "abril", "maio", "junho", "julho",
             "agosto", "setembro", "outubro", "novembro", "dezembro"]


def format_date_pt(d: Optional[date]) -> str:
    """例如：segunda-feira, 10 de março de 2025"""
    if d is None:
        return ""
    return f"{WEEKDAYS_PT[d.weekday()]}, {d.day} de {MONTHS_PT[d.month - 1]} de {d.year}"


def month_label_pt(month: str) -> str:
    """例如 2025-04 -> abril de 2025，格式不符時原樣返回"""
    try:
        year, number = (int(part) for part in month.split("-"))
        if not 1 <= number <= 12:
            return month
        return f"{MONTHS_PT[number - 1]} de {year}"
    except ValueError:
        return month


def app_name(db: Session) -> str:
    return SystemSettingsService.get(db, "app_name", settings.APP_NAME)


def exchange_email_html(db: Session, request: ShiftExchangeRequest) -> str:
    name = html.escape(app_name(db))
    requester = html.escape(request.requester_name)
    offered = ""
    if request.offered_date:
        offered = (
            f"<p><strong>O que {requester} oferece:</strong><br>"
            f"{shift_label(request.offered_shift)} em {format_date_pt(request.offered_date)}</p>"
        )
    message = f"<p><strong>Mensagem:</strong><br>{html.escape(request.message)}</p>" if request.message else ""
    return f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        <div style="background: #dc2626; color: white; padding: 20px; text-align: center;">
          <h1>{name}</h1>
          <h2>Novo Pedido de Troca de Turno</h2>
        </div>
        <div style="padding: 20px; background: #f9fafb;">
          <p>Olá <strong>{html.escape(request.target_name)}</strong>,</p>
          <p>Recebeu um novo pedido de troca de turno de <strong>{requester}</strong>.</p>
          <div style="background: white; padding: 15px; border-left: 4px solid #dc2626;">
            <h3 style="margin-top: 0; color: #dc2626;">Detalhes da Troca:</h3>
            <p><strong>O que {requester} pretende:</strong><br>
            {shift_label(request.requested_shift)} em {format_date_pt(request.requested_date)}</p>
            {offered}
            {message}
          </div>
          <p>Para responder a este pedido, aceda à aplicação na secção "Trocas".</p>
          <p style="text-align: center;">
            <a href="{settings.APP_BASE_URL}/dashboard/exchanges">Ver Pedidos de Troca</a>
          </p>
          <p style="font-size: 12px; color: #6b7280;">
            Este email foi enviado automaticamente pelo sistema de escalas da {name}.
          </p>
        </div>
      </div>
    """


class NotificationService:
    """通知服務"""

    # ---------- 基本通道 ----------

    @classmethod
    async def send_email(cls, db: Session, to: List[str], subject: str, html_content: str) -> bool:
        """透過 Resend 發送郵件，未設定或被停用時返回 False

        Resend SDK 為同步呼叫，放到執行緒池執行。
        """
        if not settings.RESEND_API_KEY:
            logger.warning("未設定 RESEND_API_KEY，略過郵件發送")
            return False
        if not SystemSettingsService.is_email_enabled(db):
            logger.info("系統設定已停用郵件通知")
            return False
        sender = SystemSettingsService.get(db, "smtp_from_email", settings.EMAIL_FROM)
        try:
            resend.api_key = settings.RESEND_API_KEY
            response = await run_in_threadpool(resend.Emails.send, {
                "from": sender,
                "to": to,
                "subject": subject,
                "html": html_content,
            })
            logger.info(f"郵件已發送至 {to}: {response}")
            return True
        except Exception as e:
            logger.error(f"發送郵件至 {to} 失敗: {str(e)}")
            return False

    @classmethod
    async def send_telegram(cls, chat_id: Optional[str], text: str) -> bool:
        """透過 Telegram Bot API 發送訊息（HTML 格式）"""
        if not chat_id:
            return False
        if not settings.TELEGRAM_BOT_TOKEN:
            logger.warning("未設定 TELEGRAM_BOT_TOKEN，略過 Telegram 通知")
            return False
        url = f"{settings.TELEGRAM_API_BASE}/bot{settings.TELEGRAM_BOT_TOKEN}/sendMessage"
        try:
            async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
                response = await client.post(url, json={
                    "chat_id": chat_id,
                    "text": text,
                    "parse_mode": "HTML",
                })
            if response.status_code != 200:
                logger.error(f"Telegram API 錯誤 ({response.status_code}): {response.text}")
                return False
            return True
        except httpx.HTTPError as e:
            logger.error(f"發送 Telegram 訊息至 {chat_id} 失敗: {str(e)}")
            return False

    @classmethod
    async def notify_in_app(cls, db: Session, user: User, title: str, body: str,
                            kind: str = "general", related_request_id: Optional[int] = None) -> Optional[Notification]:
        """寫入站內通知並推播給在線用戶"""
        try:
            notification = Notification(
                user_email=user.email,
                title=title,
                body=body,
                kind=kind,
                related_request_id=related_request_id,
            )
            db.add(notification)
            db.commit()
            db.refresh(notification)
        except Exception as e:
            db.rollback()
            logger.error(f"建立站內通知失敗 ({user.email}): {str(e)}")
            return None

        await connection_manager.notify_user(user.email, {
            "type": "notification",
            "data": {
                "id": notification.id,
                "title": title,
                "body": body,
                "kind": kind,
                "related_request_id": related_request_id,
            }
        })
        return notification

    # ---------- 業務事件 ----------

    @classmethod
    async def exchange_created(cls, db: Session, request: ShiftExchangeRequest,
                               target: Optional[User] = None, send_email: bool = True) -> None:
        """通知被請求人有新的換班請求"""
        target = target or db.query(User).filter(User.email == request.target_email).first()
        if target is None:
            logger.warning(f"找不到換班請求 {request.id} 的目標用戶 {request.target_email}")
            return

        title = "Novo pedido de troca de turno"
        body = (
            f"{request.requester_name} pretende {shift_label(request.requested_shift)} "
            f"em {request.requested_date.strftime('%d/%m/%Y')}"
        )
        await cls.notify_in_app(db, target, title, body, "exchange_request", request.id)

        if send_email:
            subject = f"Novo pedido de troca de turno - {app_name(db)}"
            if await cls.send_email(db, [request.target_email], subject, exchange_email_html(db, request)):
                try:
                    request.email_sent = True
                    request.email_sent_at = utc_now()
                    db.commit()
                except Exception as e:
                    db.rollback()
                    logger.error(f"更新換班請求 {request.id} 郵件狀態失敗: {str(e)}")

        telegram_text = (
            f"🔄 <b>{html.escape(title)}</b>\n\n"
            f"<b>{html.escape(request.requester_name)}</b> pretende "
            f"{shift_label(request.requested_shift)} em {request.requested_date.strftime('%d/%m/%Y')}"
        )
        if request.offered_date:
            telegram_text += (
                f"\nOferece: {shift_label(request.offered_shift)} em "
                f"{request.offered_date.strftime('%d/%m/%Y')}"
            )
        if request.message:
            telegram_text += f"\n\n💬 {html.escape(request.message)}"
        await cls.send_telegram(target.telegram_chat_id, telegram_text)

    @classmethod
    async def exchange_responded(cls, db: Session, request: ShiftExchangeRequest) -> None:
        """通知請求人換班請求已被回覆"""
        requester = db.query(User).filter(User.email == request.requester_email).first()
        if requester is None:
            return
        accepted = request.status == "accepted"
        title = "Troca aceite" if accepted else "Troca recusada"
        body = (
            f"{request.target_name} {'aceitou' if accepted else 'recusou'} o pedido para "
            f"{shift_label(request.requested_shift)} em {request.requested_date.strftime('%d/%m/%Y')}"
        )
        await cls.notify_in_app(db, requester, title, body, "exchange_response", request.id)
        icon = "✅" if accepted else "❌"
        await cls.send_telegram(requester.telegram_chat_id, f"{icon} <b>{title}</b>\n\n{html.escape(body)}")

    @classmethod
    async def alert_admins(cls, db: Session, title: str, body: str, exclude: Iterable[str] = ()) -> int:
        """通知所有管理員，返回通知人數"""
        excluded = set(exclude)
        admins = db.query(User).filter(User.role == "admin", User.active == True).all()
        recipients = [a for a in admins if a.email not in excluded]
        for admin in recipients:
            await cls.notify_in_app(db, admin, title, body, "security")
            await cls.send_telegram(admin.telegram_chat_id, f"⚠️ <b>{html.escape(title)}</b>\n\n{html.escape(body)}")
        if recipients:
            await cls.send_email(db, [a.email for a in recipients], f"{title} - {app_name(db)}", f"<p>{html.escape(body)}</p>")
        return len(recipients)

    @classmethod
    async def notify_users(cls, db: Session, users: Iterable[User], title: str, body: str,
                           kind: str = "general", icon: str = "🔔") -> int:
        """對多位用戶發送站內通知，有設定聊天 ID 的用戶另以 Telegram 通知"""
        count = 0
        telegram_text = f"{icon} <b>{html.escape(title)}</b>\n\n{html.escape(body)}"
        for user in users:
            if await cls.notify_in_app(db, user, title, body, kind) is not None:
                count += 1
            await cls.send_telegram(user.telegram_chat_id, telegram_text)
        return count

    @classmethod
    async def schedule_submitted(cls, db: Session, schedule: Schedule, created: bool, actor: User) -> int:
        """通知管理員有新提交或更新的班表（不通知提交者本人）"""
        admins = db.query(User).filter(
            User.role == "admin", User.active == True, User.email != actor.email
        ).all()
        month = month_label_pt(schedule.month)
        if created:
            title = "Nova Escala Submetida"
            body = f"{schedule.user_name} submeteu a escala para {month}"
        else:
            title = "Escala Atualizada"
            body = f"{schedule.user_name} atualizou a escala para {month} (edição {schedule.edit_count})"
        return await cls.notify_users(db, admins, title, body, "schedule_submitted", "📝")

    @classmethod
    async def schedule_published(cls, db: Session, kind: str) -> int:
        """通知所有啟用中的用戶新班表已發佈"""
        users = db.query(User).filter(User.active == True).all()
        body = f"A escala atual foi publicada ({kind.upper()}). Consulte a aplicação."
        return await cls.notify_users(db, users, "Nova Escala Publicada", body, "schedule_published", "📅")

    @classmethod
    async def announcement_created(cls, db: Session, announcement: Announcement) -> int:
        """通知所有啟用中的用戶有新公告（不通知建立者）"""
        users = db.query(User).filter(
            User.active == True, User.email != announcement.created_by
        ).all()
        return await cls.notify_users(db, users, "Novo Anúncio", announcement.title, "announcement", "📢")

    @classmethod
    async def deadline_reminder(cls, db: Session, month: str, deadline: date) -> int:
        """提醒尚未提交指定月份班表的一般用戶"""
        submitted = {email for (email,) in db.query(Schedule.user_email).filter(Schedule.month == month)}
        pending = [
            u for u in db.query(User).filter(User.active == True, User.role != "admin").order_by(User.name).all()
            if u.email not in submitted
        ]
        body = (
            f"Não se esqueça de submeter a sua disponibilidade para {month_label_pt(month)} "
            f"até {deadline.strftime('%d/%m/%Y')}."
        )
        sent = await cls.notify_users(db, pending, "Lembrete de Escala", body, "deadline_reminder", "⏰")
        logger.info(f"已提醒 {sent} 位尚未提交 {month} 班表的用戶")
        return sent
