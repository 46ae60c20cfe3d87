import logging
from datetime import date, timedelta
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ..core.config import settings
from ..core.database import SessionLocal
from ..services.exchange_service import ShiftExchangeService
from ..services.notification_service import NotificationService
from ..services.submission_policy import submission_month
from ..utils.timezone import now, today

logger = logging.getLogger(__name__)


def reminder_due(on: date, deadline_day: int, days_before: int) -> bool:
    """是否處於期限前的提醒期間（含期限當天）"""
    return deadline_day - days_before <= on.day <= deadline_day


class ExchangeTaskManager:
    """定時任務管理器：清理過期換班請求、提交期限提醒"""

    def __init__(self):
        self.scheduler = None

    def start_scheduler(self):
        """啟動排程器"""
        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler(timezone=settings.TIMEZONE)

            # 每天清理一次過期的已拒絕／已取消請求
            self.scheduler.add_job(
                func=self.cleanup_old_requests,
                trigger=IntervalTrigger(hours=24),
                id='cleanup_old_exchange_requests',
                name='清理過期換班請求',
                replace_existing=True,
                max_instances=1
            )

            # 系統啟動後執行一次
            self.scheduler.add_job(
                func=self.cleanup_old_requests,
                trigger='date',
                run_date=now() + timedelta(seconds=60),
                id='initial_cleanup_old_exchange_requests',
                name='初始清理過期換班請求',
                replace_existing=True
            )

            # 每天早上檢查是否需要提醒提交班表
            self.scheduler.add_job(
                func=self.send_deadline_reminders,
                trigger=CronTrigger(hour=9, minute=0, timezone=settings.TIMEZONE),
                id='submission_deadline_reminder',
                name='班表提交期限提醒',
                replace_existing=True,
                max_instances=1
            )

            self.scheduler.start()
            logger.info(
                f"定時任務已啟動 - 每24小時清理超過 {settings.EXCHANGE_RETENTION_DAYS} 天的請求，"
                f"每月 {settings.SUBMISSION_DEADLINE_DAY} 日前 {settings.DEADLINE_REMINDER_DAYS} 天開始提醒"
            )

    def stop_scheduler(self):
        """停止排程器"""
        if self.scheduler:
            self.scheduler.shutdown()
            self.scheduler = None
            logger.info("定時任務已停止")

    async def cleanup_old_requests(self):
        """清理過期換班請求"""
        db = SessionLocal()
        try:
            ShiftExchangeService.cleanup(db, settings.EXCHANGE_RETENTION_DAYS)
        except Exception as e:
            db.rollback()
            logger.error(f"清理過期換班請求時發生錯誤: {str(e)}")
        finally:
            db.close()

    async def send_deadline_reminders(self, on: Optional[date] = None) -> int:
        """期限前提醒尚未提交下個月班表的用戶，返回提醒人數"""
        on = on or today()
        deadline_day = settings.SUBMISSION_DEADLINE_DAY
        if not reminder_due(on, deadline_day, settings.DEADLINE_REMINDER_DAYS):
            return 0

        db = SessionLocal()
        try:
            return await NotificationService.deadline_reminder(
                db, submission_month(on), on.replace(day=deadline_day)
            )
        except Exception as e:
            db.rollback()
            logger.error(f"發送提交期限提醒時發生錯誤: {str(e)}")
            return 0
        finally:
            db.close()

exchange_task_manager = ExchangeTaskManager()
