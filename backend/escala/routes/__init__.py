# 初始化路由文件夾
from . import (
    auth,
    users,
    schedules,
    shift_exchange,
    announcements,
    system_settings,
    reconciliation,
    exports,
    notifications,
    telegram,
    websocket,
)

# 匯出所有路由
routers = [
    auth.router,
    users.router,
    schedules.router,
    shift_exchange.router,
    announcements.router,
    system_settings.router,
    reconciliation.router,
    exports.router,
    notifications.router,
    telegram.router,
    websocket.router,
]
