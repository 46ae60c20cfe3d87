import logging
from typing import Optional
from sqlalchemy.orm import Session

from ..models.system_setting import SystemSetting

logger = logging.getLogger(__name__)

# 常用設定鍵
SCHEDULE_XLSX_LINK = "schedule_xlsx_link"
CURRENT_SCHEDULE_PDF = "current_schedule_pdf"
EMAIL_NOTIFICATIONS_ENABLED = "email_notifications_enabled"
LATE_SUBMISSION_PREFIX = "allow_submission_after_15th_"


def late_submission_key(email: str) -> str:
    return f"{LATE_SUBMISSION_PREFIX}{email}"


class SystemSettingsService:
    """系統設定服務（key/value 形式，依 key 新增或更新）"""

    @classmethod
    def get(cls, db: Session, key: str, default: Optional[str] = None) -> Optional[str]:
        setting = db.query(SystemSetting).filter(SystemSetting.key == key).first()
        if setting is None or setting.value is None:
            return default
        return setting.value

    @classmethod
    def upsert(cls, db: Session, key: str, value: Optional[str],
               description: Optional[str] = None, commit: bool = True) -> SystemSetting:
        setting = db.query(SystemSetting).filter(SystemSetting.key == key).first()
        if setting is None:
            setting = SystemSetting(key=key, value=value, description=description)
            db.add(setting)
        else:
            setting.value = value
            if description is not None:
                setting.description = description
        if commit:
            db.commit()
            db.refresh(setting)
        logger.info(f"系統設定已更新: {key}")
        return setting

    @classmethod
    def delete(cls, db: Session, key: str) -> bool:
        deleted = db.query(SystemSetting).filter(SystemSetting.key == key).delete()
        db.commit()
        return deleted > 0

    @classmethod
    def is_email_enabled(cls, db: Session) -> bool:
        # 未設定時預設啟用
        return cls.get(db, EMAIL_NOTIFICATIONS_ENABLED, "true") != "false"

    @classmethod
    def late_submission_allowed(cls, db: Session, email: str) -> bool:
        return cls.get(db, late_submission_key(email)) == "true"

    @classmethod
    def set_late_submission(cls, db: Session, email: str, allowed: bool) -> SystemSetting:
        return cls.upsert(
            db,
            late_submission_key(email),
            "true" if allowed else "false",
            description=f"Permitir submissão após dia 15 para {email}",
        )
