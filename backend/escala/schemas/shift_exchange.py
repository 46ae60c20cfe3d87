from pydantic import BaseModel, EmailStr, field_validator, model_validator
from typing import Optional, List, Literal
from datetime import datetime, date

from ..utils.shift_calendar import SHIFT_LABELS

def _check_shift(v: Optional[str]) -> Optional[str]:
    if v is not None and v not in SHIFT_LABELS:
        raise ValueError(f"Tipo de turno inválido: {v}")
    return v

# 定向換班請求
class ExchangeRequestCreate(BaseModel):
    target_email: EmailStr
    requested_date: date
    requested_shift: str
    offered_date: date
    offered_shift: str
    message: Optional[str] = None

    validate_shifts = field_validator("requested_shift", "offered_shift")(_check_shift)

# 廣播請求：提供自己的班，換任意一班
class BroadcastCreate(BaseModel):
    offered_date: date
    offered_shift: str
    message: Optional[str] = None

    validate_shift = field_validator("offered_shift")(_check_shift)

class ExchangeRespond(BaseModel):
    decision: Literal["accepted", "rejected"]
    # 接受廣播請求時可提供自己交換出去的班
    offered_date: Optional[date] = None
    offered_shift: Optional[str] = None

    validate_shift = field_validator("offered_shift")(_check_shift)

    @model_validator(mode="after")
    def offered_slot_complete(self):
        if (self.offered_date is None) != (self.offered_shift is None):
            raise ValueError("Indique a data e o turno oferecidos")
        return self

class ExchangeRequest(BaseModel):
    id: int
    requester_email: str
    requester_name: str
    target_email: str
    target_name: str
    requested_date: date
    requested_shift: str
    offered_date: Optional[date] = None
    offered_shift: Optional[str] = None
    message: Optional[str] = None
    status: str
    broadcast_id: Optional[str] = None
    email_sent: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class BroadcastResult(BaseModel):
    broadcast_id: str
    sent: int
    total: int
    failed: int
    message: str

class RespondResult(BaseModel):
    request: ExchangeRequest
    cancelled_siblings: int = 0

class BroadcastGroup(BaseModel):
    broadcast_id: Optional[str] = None
    requester_email: str
    requester_name: str
    requested_date: date
    requested_shift: str
    message: Optional[str] = None
    created_at: Optional[datetime] = None
    total: int
    pending: int
    accepted: int
    rejected: int
    cancelled: int
    accepted_by: Optional[str] = None
    requests: List[ExchangeRequest]

class GroupedHistory(BaseModel):
    broadcasts: List[BroadcastGroup]
    requests: List[ExchangeRequest]

class ShiftOptions(BaseModel):
    date: date
    day_type: str
    options: List[dict]

class CleanupResult(BaseModel):
    deleted: int
    retention_days: int
