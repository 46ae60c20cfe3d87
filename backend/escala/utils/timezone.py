"""
時區工具模組
提供里斯本時區（Europe/Lisbon）的時間處理功能
"""

import pytz
from datetime import datetime, date
from typing import Optional

from ..core.config import settings

LOCAL_TZ = pytz.timezone(settings.TIMEZONE)

def now(tz: Optional[pytz.BaseTzInfo] = None) -> datetime:
    """
    返回當前時間，預設使用本地時區

    Args:
        tz: 時區，如果為 None 則使用本地時區

    Returns:
        datetime: 當前時間（不帶時區資訊）
    """
    if tz is None:
        return datetime.now(LOCAL_TZ).replace(tzinfo=None)
    else:
        return datetime.now(tz)

def today() -> date:
    """返回本地時區的今天日期"""
    return now().date()

def utc_now() -> datetime:
    """
    返回 UTC 時間

    Returns:
        datetime: UTC 時間（不帶時區資訊）
    """
    return datetime.now(pytz.UTC).replace(tzinfo=None)

def get_timezone_info() -> dict:
    """
    獲取時區資訊

    Returns:
        dict: 包含時區資訊的字典
    """
    local_time = now()
    utc_time = utc_now()
    time_diff = local_time - utc_time

    return {
        "local_time": local_time,
        "utc_time": utc_time,
        "timezone": settings.TIMEZONE,
        "offset": datetime.now(LOCAL_TZ).strftime("%z"),
        "time_difference_hours": round(time_diff.total_seconds() / 3600, 2)
    }

def utc_to_local(utc_datetime: Optional[datetime]) -> Optional[datetime]:
    """
    將UTC時間轉換為本地時間

    Args:
        utc_datetime: UTC時間

    Returns:
        datetime: 本地時間，如果輸入為None則返回None
    """
    if utc_datetime is None:
        return None

    # 如果已經有時區資訊，先轉為UTC
    if utc_datetime.tzinfo is not None:
        utc_datetime = utc_datetime.astimezone(pytz.UTC).replace(tzinfo=None)

    local_tz_datetime = pytz.UTC.localize(utc_datetime).astimezone(LOCAL_TZ)
    return local_tz_datetime.replace(tzinfo=None)

def format_local_time(utc_datetime: Optional[datetime], format_str: str = '%d/%m/%Y %H:%M') -> Optional[str]:
    """將UTC時間格式化為本地時間字串"""
    if utc_datetime is None:
        return None

    local_time = utc_to_local(utc_datetime)
    return local_time.strftime(format_str) if local_time else None
