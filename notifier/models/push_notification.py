"""Push notification models"""

from sqlalchemy import Column, String, Boolean, JSON, DateTime, Index

from .base import Base, TimestampedModel, UUIDModel, ReprMixin

class DeviceToken(Base, UUIDModel, TimestampedModel, ReprMixin):
    """Store FCM / OneSignal device tokens for users"""

    __tablename__ = "device_tokens"

    user_id = Column(String(64), nullable=False, index=True)
    token = Column(String(500), unique=True, nullable=False, index=True)
    platform = Column(String(20), nullable=False)  # IOS, ANDROID, WEB
    device_info = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_used_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_device_tokens_user_active", "user_id", "is_active"),
    )
