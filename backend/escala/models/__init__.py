from .user import User
from .schedule import Schedule
from .shift_exchange import ShiftExchangeRequest
from .announcement import Announcement
from .system_setting import SystemSetting
from .log import SecurityLog
from .notification import Notification
from .password_reset import PasswordResetRequest
