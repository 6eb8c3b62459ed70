"""Notification preference schemas"""

from typing import Annotated, Optional, List, Dict
from pydantic import AfterValidator, BaseModel, ConfigDict
import re

from notifier.models.preference import WEEKDAYS

TIME_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")

def _check_time(value: str) -> str:
    if not TIME_PATTERN.match(value):
        raise ValueError("Invalid time format (expected HH:MM)")
    return value

def _check_days(value: List[str]) -> List[str]:
    if any(day not in WEEKDAYS for day in value):
        raise ValueError(f"Days must be within {', '.join(WEEKDAYS)}")
    return value

ClockTime = Annotated[str, AfterValidator(_check_time)]
Weekdays = Annotated[List[str], AfterValidator(_check_days)]

# {category: {type: {"email": bool, "sms": bool, "push": bool, "in_app": bool}}}
TypePreferences = Dict[str, Dict[str, Dict[str, bool]]]

class PreferenceRead(BaseModel):
    user_id: str
    is_enabled: bool = True
    email_enabled: bool = True
    sms_enabled: bool = True
    push_enabled: bool = True
    in_app_enabled: bool = True
    type_preferences: TypePreferences = {}
    quiet_hours_enabled: bool = False
    quiet_hours_start: str = "22:00"
    quiet_hours_end: str = "07:00"
    quiet_hours_days: List[str] = list(WEEKDAYS)

    class Config:
        from_attributes = True

class PreferenceUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_enabled: Optional[bool] = None
    email_enabled: Optional[bool] = None
    sms_enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None
    in_app_enabled: Optional[bool] = None
    type_preferences: Optional[TypePreferences] = None
    quiet_hours_enabled: Optional[bool] = None
    quiet_hours_start: Optional[ClockTime] = None
    quiet_hours_end: Optional[ClockTime] = None
    quiet_hours_days: Optional[Weekdays] = None

class QuietHoursUpdate(BaseModel):
    enabled: bool
    start_time: Optional[ClockTime] = None
    end_time: Optional[ClockTime] = None
    days: Optional[Weekdays] = None

class ChannelToggle(BaseModel):
    enabled: bool
