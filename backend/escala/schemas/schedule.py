from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Union
from datetime import datetime, date
import re

from ..utils.shift_calendar import SUBMISSION_SHIFTS, SUBMISSION_OVERNIGHTS

MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

# 新格式：依星期勾選的班別與過夜班
class ScheduleSelection(BaseModel):
    shifts: List[str] = Field(default_factory=list)
    overnights: List[str] = Field(default_factory=list)
    shift_notes: Optional[str] = None
    overnight_notes: Optional[str] = None

    @field_validator("shifts")
    def validate_shifts(cls, v):
        unknown = [s for s in v if s not in SUBMISSION_SHIFTS]
        if unknown:
            raise ValueError(f"Turnos inválidos: {', '.join(unknown)}")
        return list(dict.fromkeys(v))

    @field_validator("overnights")
    def validate_overnights(cls, v):
        unknown = [s for s in v if s not in SUBMISSION_OVERNIGHTS]
        if unknown:
            raise ValueError(f"Pernoites inválidos: {', '.join(unknown)}")
        return list(dict.fromkeys(v))

# 舊格式：逐日期列出班別代碼
class LegacyScheduleDate(BaseModel):
    date: date
    shifts: List[str]

class ScheduleSubmit(BaseModel):
    month: str
    dates: Union[ScheduleSelection, List[LegacyScheduleDate]]
    notes: Optional[str] = None
    user_email: Optional[str] = None  # 僅管理員可代為提交

    @field_validator("month")
    def validate_month(cls, v):
        if not MONTH_PATTERN.match(v):
            raise ValueError("Mês inválido, use o formato AAAA-MM")
        return v

    @model_validator(mode="after")
    def require_selection(self):
        if isinstance(self.dates, ScheduleSelection):
            if not self.dates.shifts and not self.dates.overnights:
                raise ValueError("Selecione pelo menos um turno ou pernoite")
        elif not self.dates or not any(entry.shifts for entry in self.dates):
            raise ValueError("Selecione pelo menos um turno")
        return self

class Schedule(BaseModel):
    id: int
    user_email: str
    user_name: str
    month: str
    dates: Union[dict, list]
    notes: Optional[str] = None
    edit_count: int
    printed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class SubmissionStatus(BaseModel):
    month: str
    window_open: bool
    deadline_day: int
    late_submission_allowed: bool
    can_submit: bool
    edit_count: int
    max_edits: int
    edits_remaining: Optional[int] = None  # None 表示不受限
    message: Optional[str] = None

class ScheduleExportRequest(BaseModel):
    user_emails: List[str] = Field(default_factory=list)
    month: Optional[str] = None
