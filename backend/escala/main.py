from dotenv import load_dotenv
load_dotenv()
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
import logging
import time
from collections import defaultdict, deque
import uvicorn
from sqlalchemy import text
from contextlib import asynccontextmanager

from .core.config import settings
from .core.database import engine, Base, create_tables
from .routes import routers
from .tasks.exchange_tasks import exchange_task_manager
from .utils.timezone import get_timezone_info
from .websocket.connection_manager import connection_manager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
)
# 降低第三方套件噪音
logging.getLogger("apscheduler").setLevel(logging.INFO)
logging.getLogger("uvicorn.error").setLevel(logging.INFO)
logging.getLogger("uvicorn.access").setLevel(logging.INFO)
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

# 簡易速率限制：key=(ip,path)，(次數, 秒)
RATE_LIMIT_RULES = {
    "/api/login": (20, 60),
    "/api/password-reset-requests": (5, 60),
    "/api/telegram/webhook": (60, 60),
}
_rate_buckets = defaultdict(deque)

def rate_limited(request):
    path = request.url.path
    rule = None
    for target, config in RATE_LIMIT_RULES.items():
        if path.startswith(target):
            rule = config
            break
    if not rule or request.method != "POST":
        return False

    limit, window = rule
    now = time.time()
    key = (request.client.host if request.client else "unknown", path)
    bucket = _rate_buckets[key]

    # 清理過期
    while bucket and now - bucket[0] > window:
        bucket.popleft()
    bucket.append(now)
    return len(bucket) > limit

def security_boot_checks():
    """生產環境啟動檢查，避免使用預設密鑰或明文連線"""
    errors = []
    if settings.IS_PRODUCTION:
        if not settings.HTTPS_ONLY:
            errors.append("IS_PRODUCTION=true 但 HTTPS_ONLY 未啟用")
        if settings.ADMIN_PASSWORD == "changeme":
            errors.append("IS_PRODUCTION=true 但 ADMIN_PASSWORD 仍為預設值")
        if not settings.APP_BASE_URL.startswith("https://"):
            errors.append("IS_PRODUCTION=true 但 APP_BASE_URL 未使用 https")
    if errors:
        for e in errors:
            logger.error(e)
        raise RuntimeError("安全檢查未通過，請修正環境設定後再啟動")

@asynccontextmanager
async def lifespan(app: FastAPI):
    # 啟動時執行
    logger.info(f"🚀 正在啟動 {settings.APP_NAME} 排班系統...")
    security_boot_checks()

    # 記錄時區資訊
    timezone_info = get_timezone_info()
    logger.info(f"時區設定: {timezone_info['timezone']} ({timezone_info['offset']})")
    logger.info(f"當前本地時間: {timezone_info['local_time']}")
    logger.info(f"當前UTC時間: {timezone_info['utc_time']}")
    logger.info(f"時間差: {timezone_info['time_difference_hours']} 小時")

    # 測試資料庫連接並建立資料表
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
            logger.info(f"資料庫連接成功，資料庫名稱：{engine.url.database}")
        create_tables()
        logger.info(f"資料表建立流程完成：{list(Base.metadata.tables.keys())}")
    except Exception as e:
        logger.error(f"資料庫連接失敗: {str(e)}")
        raise RuntimeError("無法連接到資料庫，請檢查資料庫配置和連接狀態") from e

    # 啟動換班請求清理排程
    if settings.ENABLE_SCHEDULER:
        try:
            exchange_task_manager.start_scheduler()
        except Exception as e:
            logger.error(f"啟動定時任務失敗: {str(e)}")
    else:
        logger.info("定時任務已停用（ENABLE_SCHEDULER=false）")

    yield

    # 關閉時執行
    logger.info("🛑 正在關閉系統...")
    try:
        exchange_task_manager.stop_scheduler()
    except Exception as e:
        logger.error(f"停止定時任務時發生錯誤: {str(e)}")
    await connection_manager.shutdown()
    logger.info("✅ 系統已安全關閉")

app = FastAPI(
    title=settings.APP_NAME,
    description="志願者排班與換班管理系統API",
    version="1.0.0",
    redirect_slashes=False,
    lifespan=lifespan
)

# 添加可信主機中間件 (開發環境允許所有主機)
app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["*"] if not settings.IS_PRODUCTION else [
        settings.APP_BASE_URL.split("://", 1)[-1].split("/", 1)[0],
        "localhost",
        "127.0.0.1"
    ]
)

# 配置CORS
cors_origins = ["http://localhost:5173", "http://127.0.0.1:5173"] if not settings.IS_PRODUCTION else settings.BACKEND_CORS_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        "Origin",
        "X-Requested-With",
        "Access-Control-Request-Method",
        "Access-Control-Request-Headers",
    ],
    max_age=86400,
)

# 註冊所有路由
for router in routers:
    app.include_router(router, prefix="/api")

@app.middleware("http")
async def rate_limit_requests(request, call_next):
    if rate_limited(request):
        logger.warning(f"請求過於頻繁: {request.client.host if request.client else 'unknown'} {request.url.path}")
        return JSONResponse(status_code=429, content={"detail": "Demasiados pedidos, tente novamente mais tarde"})
    return await call_next(request)

@app.get("/")
async def root():
    return {"message": f"Bem-vindo à API {settings.APP_NAME}"}

@app.get("/health")
async def health_check():
    return {"status": "healthy", "message": "Sistema operacional"}

if __name__ == "__main__":
    uvicorn.run("escala.main:app", host="0.0.0.0", port=8000, reload=True)
