"""Per-user notification preferences"""

from sqlalchemy import Column, String, Boolean, JSON

from .base import Base, TimestampedModel, UUIDModel, ReprMixin

WEEKDAYS = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")

class NotificationPreference(Base, UUIDModel, TimestampedModel, ReprMixin):
    """Channel opt-outs and quiet hours for one user"""

    __tablename__ = "notification_preferences"

    user_id = Column(String(64), unique=True, nullable=False, index=True)

    is_enabled = Column(Boolean, nullable=False, default=True)
    email_enabled = Column(Boolean, nullable=False, default=True)
    sms_enabled = Column(Boolean, nullable=False, default=True)
    push_enabled = Column(Boolean, nullable=False, default=True)
    in_app_enabled = Column(Boolean, nullable=False, default=True)

    # {category: {type: {"email": bool, "sms": bool, "push": bool, "in_app": bool}}}
    type_preferences = Column(JSON, nullable=False, default=dict)

    quiet_hours_enabled = Column(Boolean, nullable=False, default=False)
    quiet_hours_start = Column(String(5), nullable=False, default="22:00")  # HH:MM, UTC
    quiet_hours_end = Column(String(5), nullable=False, default="07:00")
    quiet_hours_days = Column(JSON, nullable=False, default=lambda: list(WEEKDAYS))
