import logging

from escala.core.config import settings
from escala.core.security import get_password_hash
from escala.core.database import SessionLocal, create_tables
from escala.models.user import User
from escala.services.settings_service import SystemSettingsService, EMAIL_NOTIFICATIONS_ENABLED

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s - %(message)s")
logger = logging.getLogger(__name__)

def init_db():
    """建立資料表並建立初始管理員帳號"""
    db = SessionLocal()
    try:
        create_tables()

        user = db.query(User).filter(User.email == settings.ADMIN_EMAIL).first()
        if user:
            logger.info("數據庫已初始化，無需重複操作")
            return

        admin_user = User(
            email=settings.ADMIN_EMAIL,
            name=settings.ADMIN_NAME,
            mechanographic_number=settings.ADMIN_MECHANOGRAPHIC_NUMBER,
            hashed_password=get_password_hash(settings.ADMIN_PASSWORD),
            role="admin",
            active=True,
            needs_password_change=True,
        )
        db.add(admin_user)
        SystemSettingsService.upsert(
            db, EMAIL_NOTIFICATIONS_ENABLED, "true", "Enviar notificações por email", commit=False
        )
        SystemSettingsService.upsert(db, "app_name", settings.APP_NAME, "Nome da aplicação", commit=False)
        db.commit()
        logger.info(f"初始化數據庫完成，管理員帳號: {settings.ADMIN_EMAIL}")

    except Exception as e:
        logger.error(f"初始化數據庫時發生錯誤: {e}")
        db.rollback()
        raise
    finally:
        db.close()

if __name__ == "__main__":
    logger.info("正在初始化數據庫...")
    init_db()
