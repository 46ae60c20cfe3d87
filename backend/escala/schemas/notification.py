from pydantic import BaseModel
from typing import Optional
from datetime import datetime

class Notification(BaseModel):
    id: int
    title: str
    body: Optional[str] = None
    kind: str
    related_request_id: Optional[int] = None
    read: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
