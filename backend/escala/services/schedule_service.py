import logging
from datetime import date
from typing import List, Optional, Tuple, Union
from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.schedule import Schedule
from ..models.user import User
from ..schemas.schedule import ScheduleSelection, LegacyScheduleDate
from ..utils.timezone import utc_now
from .submission_policy import SubmissionPolicy, SubmissionBlockedError, EDIT_LIMIT_MESSAGE

logger = logging.getLogger(__name__)


def serialize_dates(dates: Union[ScheduleSelection, List[LegacyScheduleDate]]) -> Union[dict, list]:
    """將提交內容轉為存入 JSON 欄位的格式"""
    if isinstance(dates, ScheduleSelection):
        payload = {"shifts": dates.shifts, "overnights": dates.overnights}
        if dates.shift_notes:
            payload["shiftNotes"] = dates.shift_notes
        if dates.overnight_notes:
            payload["overnightNotes"] = dates.overnight_notes
        return payload
    return [{"date": entry.date.isoformat(), "shifts": entry.shifts} for entry in dates]


def describe_dates(dates: Union[dict, list, None]) -> List[str]:
    """將新舊兩種格式的內容轉為可讀字串列表（匯出用）"""
    if not dates:
        return []
    if isinstance(dates, dict):
        items = list(dates.get("shifts", []))
        items += [f"Pernoite {o}" for o in dates.get("overnights", [])]
        return [item.replace("_", " ") for item in items]
    lines = []
    for entry in dates:
        if isinstance(entry, dict):
            lines.append(f"{entry.get('date')}: {', '.join(entry.get('shifts', []))}")
    return lines


class ScheduleService:
    """每月可服務時段提交服務"""

    @classmethod
    def get_for_user(cls, db: Session, email: str, month: Optional[str] = None) -> List[Schedule]:
        query = db.query(Schedule).filter(Schedule.user_email == email)
        if month:
            query = query.filter(Schedule.month == month)
        return query.order_by(Schedule.month.desc()).all()

    @classmethod
    def list_all(cls, db: Session, month: Optional[str] = None) -> List[Schedule]:
        query = db.query(Schedule)
        if month:
            query = query.filter(Schedule.month == month)
        return query.order_by(Schedule.updated_at.desc(), Schedule.id.desc()).all()

    @classmethod
    def remaining_edits(cls, db: Session, user: User, actor: User, schedule: Optional[Schedule]) -> Optional[int]:
        if not SubmissionPolicy.edit_limit_applies(db, user, actor):
            return None
        used = schedule.edit_count if schedule else 0
        return max(settings.MAX_SCHEDULE_EDITS - used, 0)

    @classmethod
    def submit(cls, db: Session, user: User, actor: User, month: str,
               dates: Union[ScheduleSelection, List[LegacyScheduleDate]],
               notes: Optional[str] = None, on: Optional[date] = None) -> Tuple[Schedule, bool]:
        """提交或更新用戶某月份的班表

        每次成功儲存 edit_count 加 1，並清除 printed_at。
        返回 (班表, 是否為新建立)。
        """
        SubmissionPolicy.enforce(db, user, actor, on)

        schedule = db.query(Schedule).filter(
            Schedule.user_email == user.email,
            Schedule.month == month
        ).with_for_update().first()

        if schedule is not None and SubmissionPolicy.edit_limit_applies(db, user, actor):
            if schedule.edit_count >= settings.MAX_SCHEDULE_EDITS:
                raise SubmissionBlockedError(EDIT_LIMIT_MESSAGE.format(limit=settings.MAX_SCHEDULE_EDITS))

        payload = serialize_dates(dates)
        created = schedule is None
        if created:
            schedule = Schedule(
                user_email=user.email,
                user_name=user.name,
                month=month,
                dates=payload,
                notes=notes,
                edit_count=1,
                printed_at=None,
            )
            db.add(schedule)
        else:
            schedule.user_name = user.name
            schedule.dates = payload
            schedule.notes = notes
            schedule.edit_count = (schedule.edit_count or 0) + 1
            schedule.printed_at = None
            schedule.updated_at = utc_now()

        db.commit()
        db.refresh(schedule)
        logger.info(f"用戶 {user.email} 提交 {month} 班表，第 {schedule.edit_count} 次")
        return schedule, created

    @classmethod
    def reset_edit_count(cls, db: Session, email: str, month: Optional[str] = None) -> int:
        """管理員重設編輯次數為 0，返回受影響筆數"""
        query = db.query(Schedule).filter(Schedule.user_email == email)
        if month:
            query = query.filter(Schedule.month == month)
        count = query.update({Schedule.edit_count: 0}, synchronize_session=False)
        db.commit()
        logger.info(f"已重設 {email} 的編輯次數（{count} 筆）")
        return count

    @classmethod
    def delete_for_user(cls, db: Session, email: str, month: Optional[str] = None) -> int:
        query = db.query(Schedule).filter(Schedule.user_email == email)
        if month:
            query = query.filter(Schedule.month == month)
        count = query.delete(synchronize_session=False)
        db.commit()
        return count

    @classmethod
    def mark_printed(cls, db: Session, schedule_id: int) -> Schedule:
        schedule = db.query(Schedule).filter(Schedule.id == schedule_id).first()
        if schedule is None:
            raise LookupError("Escala não encontrada")
        schedule.printed_at = utc_now()
        db.commit()
        db.refresh(schedule)
        return schedule
