"""
即時更新 WebSocket

連接方式：/api/ws?token=<JWT>。客戶端定期送出 {"type": "ping"}，
伺服器回應 pong；其餘推播（table_change、notification）由 connection_manager 發出。
"""
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query, status
from sqlalchemy.orm import Session
from typing import Optional, Tuple
import logging

from ..core.database import SessionLocal
from ..core.security import decode_access_token
from ..models.user import User
from ..websocket.connection_manager import connection_manager
from ..utils.timezone import now

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


def get_user_from_token(token: Optional[str], db: Session) -> Optional[User]:
    """令牌有效且用戶仍為啟用狀態時返回用戶"""
    payload = decode_access_token(token) if token else None
    email = payload.get("sub") if payload else None
    if not email:
        return None
    return db.query(User).filter(User.email == email, User.active == True).first()


def authenticate_socket(token: Optional[str]) -> Optional[Tuple[str, str]]:
    """驗證連線令牌，返回 (email, role)

    只在握手時短暫使用資料庫連線，連線期間不佔用連線池。
    """
    db = SessionLocal()
    try:
        user = get_user_from_token(token, db)
        return (user.email, user.role) if user else None
    finally:
        db.close()


@router.websocket("/ws")
async def realtime_updates(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
):
    identity = authenticate_socket(token)
    if identity is None:
        logger.warning("拒絕 WebSocket 連接：令牌無效或用戶已停用")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    email, role = identity
    await connection_manager.connect(websocket, email)
    try:
        await websocket.send_json({
            "type": "connection_established",
            "data": {"email": email, "role": role, "server_time": now().isoformat()},
        })
        while True:
            message = await websocket.receive_json()
            if isinstance(message, dict) and message.get("type") == "ping":
                connection_manager.touch(websocket)
                await websocket.send_json({"type": "pong"})
            else:
                logger.debug(f"忽略來自 {email} 的訊息: {message}")
    except WebSocketDisconnect:
        logger.info(f"{email} 已斷開 WebSocket")
    except ValueError as e:
        # receive_json 收到非 JSON 內容
        logger.warning(f"{email} 送出無法解析的訊息，關閉連接: {str(e)}")
        await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA)
    finally:
        connection_manager.disconnect(websocket, email)


@router.get("/ws/status")
async def websocket_status():
    return {
        "status": "running",
        "online_users": connection_manager.online_users(),
        "connections": connection_manager.connection_count(),
    }
