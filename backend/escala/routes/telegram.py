from fastapi import APIRouter, Depends, HTTPException, Request
from typing import Optional
import html
import logging

import httpx

from ..core.config import settings
from ..core.security import get_admin_user
from ..models.user import User
from ..services.notification_service import NotificationService

# 設置logger
logger = logging.getLogger(__name__)

router = APIRouter(tags=["telegram"])


def command_reply(text: str, chat_id: int, user_name: str) -> Optional[str]:
    """依指令產生回覆內容，非指令訊息返回 None"""
    app = html.escape(settings.APP_NAME)
    name = html.escape(user_name)
    if text.startswith("/start"):
        return (
            f"🤖 <b>Bem-vindo ao Bot {app}!</b>\n\n"
            f"Olá {name}! 👋\n\n"
            f"<b>O seu Chat ID é:</b> <code>{chat_id}</code>\n\n"
            "📋 <b>Como configurar notificações:</b>\n"
            "1. Copie o Chat ID acima\n"
            "2. Vá ao seu perfil na aplicação web\n"
            "3. Cole o Chat ID na aba \"Telegram\"\n"
            "4. Guarde as configurações\n\n"
            "✅ Após configurar, receberá notificações quando alguém lhe solicitar uma troca de turno!"
        )
    if text.startswith("/help"):
        return (
            f"📚 <b>Ajuda - Bot {app}</b>\n\n"
            "<b>Comandos disponíveis:</b>\n"
            "• /start - Obter o seu Chat ID\n"
            "• /help - Mostrar esta ajuda\n"
            "• /id - Mostrar o seu Chat ID\n\n"
            f"<b>O seu Chat ID:</b> <code>{chat_id}</code>"
        )
    if text.startswith("/id"):
        return f"🆔 <b>O seu Chat ID</b>\n\n<code>{chat_id}</code>"
    if text.startswith("/"):
        return "❓ Comando desconhecido. Use /help para ver os comandos disponíveis."
    return None


@router.post("/telegram/webhook")
async def telegram_webhook(request: Request):
    """Telegram Bot webhook：回覆 /start、/help、/id 指令"""
    try:
        update = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Pedido inválido")

    message = update.get("message") if isinstance(update, dict) else None
    if not message:
        logger.debug("Telegram 更新中沒有訊息，略過")
        return {"ok": True}

    chat_id = message.get("chat", {}).get("id")
    sender = message.get("from", {})
    user_name = " ".join(p for p in (sender.get("first_name"), sender.get("last_name")) if p) or "utilizador"
    text = (message.get("text") or "").strip()
    logger.info(f"收到 Telegram 訊息 ({chat_id}): {text}")

    reply = command_reply(text, chat_id, user_name) if chat_id is not None else None
    if reply:
        await NotificationService.send_telegram(str(chat_id), reply)
    return {"ok": True}


@router.post("/telegram/setup-webhook", response_model=dict)
async def setup_telegram_webhook(
    current_user: User = Depends(get_admin_user)
):
    """向 Telegram 註冊本服務的 webhook 網址"""
    if not settings.TELEGRAM_BOT_TOKEN:
        raise HTTPException(status_code=400, detail="TELEGRAM_BOT_TOKEN não configurado")

    webhook_url = f"{settings.APP_BASE_URL.rstrip('/')}/api/telegram/webhook"
    url = f"{settings.TELEGRAM_API_BASE}/bot{settings.TELEGRAM_BOT_TOKEN}/setWebhook"
    try:
        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
            response = await client.post(url, json={"url": webhook_url, "drop_pending_updates": True})
        result = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error(f"設定 Telegram webhook 失敗: {str(e)}")
        raise HTTPException(status_code=502, detail=f"Falha ao configurar webhook: {str(e)}")

    if response.status_code != 200 or not result.get("ok"):
        logger.error(f"設定 Telegram webhook 失敗: {result}")
        raise HTTPException(
            status_code=502,
            detail=f"Falha ao configurar webhook: {result.get('description', 'erro desconhecido')}"
        )

    logger.info(f"Telegram webhook 已設定: {webhook_url}")
    return {"success": True, "message": "Webhook configurado com sucesso", "result": result}
