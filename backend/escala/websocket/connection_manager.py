"""
WebSocket 連接管理器

以用戶 email 為鍵，同一用戶可同時開啟多個分頁。
資料表異動時推播 table_change，前端收到後重新讀取；
站內通知則只推送給收件人。
"""
from typing import Dict, List, Optional
from datetime import datetime
from fastapi import WebSocket
import asyncio
import logging

from ..utils.timezone import utc_now

logger = logging.getLogger(__name__)


class ConnectionManager:
    """WebSocket 連接管理器"""

    def __init__(self, heartbeat_timeout: int = 45, check_interval: int = 15):
        # email -> 該用戶的所有連接
        self.connections: Dict[str, List[WebSocket]] = {}
        # id(連接) -> 最後一次 ping 的時間
        self.last_seen: Dict[int, datetime] = {}
        self.heartbeat_timeout = heartbeat_timeout
        self.check_interval = check_interval
        self._watchdog: Optional[asyncio.Task] = None

    async def connect(self, websocket: WebSocket, email: str):
        await websocket.accept()
        self.connections.setdefault(email, []).append(websocket)
        self.last_seen[id(websocket)] = utc_now()
        logger.info(f"{email} 已連接 WebSocket（{len(self.connections[email])} 個分頁，共 {self.connection_count()} 個連接）")

        if self._watchdog is None or self._watchdog.done():
            self._watchdog = asyncio.create_task(self._expire_stale_connections())

    def disconnect(self, websocket: WebSocket, email: str):
        sockets = [ws for ws in self.connections.get(email, []) if ws is not websocket]
        if sockets:
            self.connections[email] = sockets
        else:
            self.connections.pop(email, None)
        self.last_seen.pop(id(websocket), None)

    def touch(self, websocket: WebSocket):
        """收到 ping 時更新最後活動時間"""
        if id(websocket) in self.last_seen:
            self.last_seen[id(websocket)] = utc_now()

    async def _send(self, websocket: WebSocket, email: str, message: dict) -> bool:
        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            logger.warning(f"推送至 {email} 失敗，移除連接: {str(e)}")
            self.disconnect(websocket, email)
            return False

    async def notify_user(self, email: str, message: dict) -> int:
        """推送訊息給指定用戶的所有分頁，返回成功送達的連接數"""
        delivered = 0
        for websocket in list(self.connections.get(email, [])):
            if await self._send(websocket, email, message):
                delivered += 1
        return delivered

    async def broadcast_table_change(self, table: str, event: str, record_id: Optional[int] = None):
        """通知所有在線用戶某資料表已異動（INSERT、UPDATE、DELETE）"""
        if not self.connections:
            return
        message = {
            "type": "table_change",
            "data": {"table": table, "event": event, "id": record_id},
        }
        for email, sockets in list(self.connections.items()):
            for websocket in list(sockets):
                await self._send(websocket, email, message)
        logger.debug(f"已推播 {table} {event} {record_id}")

    async def _expire_stale_connections(self):
        while True:
            try:
                await asyncio.sleep(self.check_interval)
                current = utc_now()
                for email, sockets in list(self.connections.items()):
                    for websocket in list(sockets):
                        seen = self.last_seen.get(id(websocket), current)
                        if (current - seen).total_seconds() <= self.heartbeat_timeout:
                            continue
                        logger.info(f"{email} 的連接心跳逾時，關閉")
                        self.disconnect(websocket, email)
                        try:
                            await websocket.close()
                        except Exception as e:
                            logger.debug(f"關閉逾時連接失敗: {str(e)}")
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"檢查 WebSocket 心跳時發生錯誤: {str(e)}")

    def connection_count(self) -> int:
        return sum(len(sockets) for sockets in self.connections.values())

    def online_users(self) -> int:
        return len(self.connections)

    async def shutdown(self):
        """應用關閉時停止心跳檢查並關閉所有連接"""
        if self._watchdog:
            self._watchdog.cancel()
            try:
                await self._watchdog
            except asyncio.CancelledError:
                pass

        for email, sockets in list(self.connections.items()):
            for websocket in list(sockets):
                try:
                    await websocket.close()
                except Exception as e:
                    logger.debug(f"關閉 {email} 的連接失敗: {str(e)}")

        self.connections.clear()
        self.last_seen.clear()
        logger.info("所有 WebSocket 連接已關閉")


connection_manager = ConnectionManager()
