from pydantic import BaseModel, model_validator
from typing import Optional
from datetime import datetime

class AnnouncementBase(BaseModel):
    title: str
    content: str
    start_date: datetime
    end_date: datetime

# 用於創建公告
class AnnouncementCreate(AnnouncementBase):

    @model_validator(mode="after")
    def check_window(self):
        if self.end_date < self.start_date:
            raise ValueError("A data de fim deve ser posterior à data de início")
        return self

# 用於更新公告
class AnnouncementUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

# 公告響應
class Announcement(AnnouncementBase):
    id: int
    created_by: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
