from pydantic import BaseModel, field_validator
from typing import Optional
from datetime import datetime

class SystemSettingUpsert(BaseModel):
    value: Optional[str] = None
    description: Optional[str] = None

class SystemSetting(BaseModel):
    key: str
    value: Optional[str] = None
    description: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

# 班表發佈連結（PDF 或 XLSX）
class PublicationLink(BaseModel):
    url: str

    @field_validator("url")
    def validate_url(cls, v):
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL inválido")
        return v

class LateSubmissionToggle(BaseModel):
    allowed: bool
