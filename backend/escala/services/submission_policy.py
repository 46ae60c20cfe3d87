"""
提交期限規則
每月 15 日（含）之前可自由提交；之後只有管理員或被個別放行的用戶可以提交。
"""
from dataclasses import dataclass
from datetime import date
from typing import Optional
from sqlalchemy.orm import Session

from ..core.config import settings
from ..models.user import User
from ..utils.timezone import today as local_today
from .settings_service import SystemSettingsService


class SubmissionBlockedError(Exception):
    """超過提交期限或編輯次數上限"""


LATE_SUBMISSION_MESSAGE = (
    "O prazo de submissão terminou no dia {day}. "
    "Contacte o administrador para autorizar a submissão."
)
EDIT_LIMIT_MESSAGE = (
    "Atingiu o limite de {limit} edições para este mês. "
    "Contacte o administrador."
)


@dataclass
class SubmissionDecision:
    allowed: bool
    window_open: bool
    override: bool
    message: Optional[str] = None


def window_open(on: date, deadline_day: Optional[int] = None) -> bool:
    deadline = deadline_day if deadline_day is not None else settings.SUBMISSION_DEADLINE_DAY
    return on.day <= deadline


def evaluate(on: date, is_admin: bool, override: bool,
             deadline_day: Optional[int] = None) -> SubmissionDecision:
    """判斷指定日期是否允許提交"""
    deadline = deadline_day if deadline_day is not None else settings.SUBMISSION_DEADLINE_DAY
    is_open = window_open(on, deadline)
    if is_open or is_admin or override:
        return SubmissionDecision(True, is_open, override)
    return SubmissionDecision(False, is_open, override, LATE_SUBMISSION_MESSAGE.format(day=deadline))


class SubmissionPolicy:
    """提交時檢查，不會追溯既有資料"""

    @classmethod
    def check(cls, db: Session, user: User, actor: User, on: Optional[date] = None) -> SubmissionDecision:
        on = on or local_today()
        override = SystemSettingsService.late_submission_allowed(db, user.email)
        return evaluate(on, actor.is_admin, override)

    @classmethod
    def enforce(cls, db: Session, user: User, actor: User, on: Optional[date] = None) -> SubmissionDecision:
        decision = cls.check(db, user, actor, on)
        if not decision.allowed:
            raise SubmissionBlockedError(decision.message)
        return decision

    @classmethod
    def edit_limit_applies(cls, db: Session, user: User, actor: User) -> bool:
        """管理員或被放行的用戶不受編輯次數限制"""
        if actor.is_admin:
            return False
        return not SystemSettingsService.late_submission_allowed(db, user.email)


def submission_month(on: date) -> str:
    """提交對象為下個月的班表，返回 YYYY-MM"""
    if on.month == 12:
        return f"{on.year + 1}-01"
    return f"{on.year}-{on.month + 1:02d}"
