"""
為 users 表添加登入鎖定與 Telegram 欄位
"""

import logging
from sqlalchemy import text

from escala.core.database import engine

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

COLUMNS = {
    "failed_login_attempts": "INTEGER NOT NULL DEFAULT 0",
    "locked_at": "TIMESTAMP",
    "telegram_chat_id": "VARCHAR",
    "needs_password_change": "BOOLEAN NOT NULL DEFAULT false",
}

def run_migration():
    """執行添加鎖定欄位的遷移"""
    try:
        with engine.connect() as conn:
            with conn.begin():
                for column, ddl in COLUMNS.items():
                    exists = conn.execute(text(
                        "SELECT column_name FROM information_schema.columns "
                        "WHERE table_name = 'users' AND column_name = :column"
                    ), {"column": column}).fetchone()
                    if exists:
                        logger.info(f"{column} 欄位已存在，無需創建")
                        continue
                    conn.execute(text(f"ALTER TABLE users ADD COLUMN {column} {ddl}"))
                    logger.info(f"成功添加 {column} 欄位到 users 表")
        return True
    except Exception as e:
        logger.error(f"添加鎖定欄位失敗: {str(e)}")
        return False

if __name__ == "__main__":
    run_migration()
