"""
為 shift_exchange_requests 表添加廣播相關欄位
broadcast_id 標記同一次廣播產生的請求，responded_at 記錄回覆時間
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
    "broadcast_id": "VARCHAR",
    "responded_at": "TIMESTAMP",
    "email_sent": "BOOLEAN NOT NULL DEFAULT false",
    "email_sent_at": "TIMESTAMP",
}

def run_migration():
    """執行添加廣播欄位的遷移"""
    try:
        with engine.connect() as conn:
            with conn.begin():
                for column, ddl in COLUMNS.items():
                    exists = conn.execute(text(
                        "SELECT column_name FROM information_schema.columns "
                        "WHERE table_name = 'shift_exchange_requests' AND column_name = :column"
                    ), {"column": column}).fetchone()
                    if exists:
                        logger.info(f"{column} 欄位已存在，無需創建")
                        continue
                    conn.execute(text(f"ALTER TABLE shift_exchange_requests ADD COLUMN {column} {ddl}"))
                    logger.info(f"成功添加 {column} 欄位到 shift_exchange_requests 表")

                conn.execute(text(
                    "CREATE INDEX IF NOT EXISTS ix_shift_exchange_requests_broadcast_id "
                    "ON shift_exchange_requests (broadcast_id)"
                ))
        return True
    except Exception as e:
        logger.error(f"添加廣播欄位失敗: {str(e)}")
        return False

if __name__ == "__main__":
    run_migration()
