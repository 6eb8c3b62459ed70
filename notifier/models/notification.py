"""
Notification models
A notification is created once by a collaborator and fanned out to its
recipients; UserNotification is the per-recipient inbox entry used for
in-app retrieval and unread counts
"""

from sqlalchemy import (
    Column, String, Text, Boolean, ForeignKey, Index, DateTime, Integer, JSON, Enum,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, validates
import enum

from .base import Base, TimestampedModel, UUIDModel, ReprMixin

class NotificationStatus(str, enum.Enum):
    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    SENDING = "SENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

class NotificationPriority(str, enum.Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"
    CRITICAL = "CRITICAL"

class DeliveryChannel(str, enum.Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    PUSH = "PUSH"
    WEBHOOK = "WEBHOOK"
    IN_APP = "IN_APP"

# Job queue ranking bonus per priority, in milliseconds
PRIORITY_WEIGHTS = {
    NotificationPriority.LOW: 0,
    NotificationPriority.NORMAL: 1000,
    NotificationPriority.HIGH: 5000,
    NotificationPriority.URGENT: 30000,
    NotificationPriority.CRITICAL: 60000,
}

# Fields that may not change after the notification has been sent
CONTENT_FIELDS = (
    "title", "message", "type", "category", "priority", "channels", "content",
    "notification_metadata", "tenant_id",
)

class Notification(Base, UUIDModel, TimestampedModel, ReprMixin):
    """Notification submitted for delivery"""

    __tablename__ = "notifications"

    tenant_id = Column(String(64), nullable=True, index=True)
    created_by = Column(String(64), nullable=True)

    # Content
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(50), nullable=False, default="GENERAL")  # GRADE_UPDATE, FEE_REMINDER, ...
    category = Column(String(50), nullable=False, default="GENERAL")
    priority = Column(Enum(NotificationPriority), nullable=False, default=NotificationPriority.NORMAL)

    # Target channels and per-channel rendered content
    channels = Column(JSON, nullable=False, default=list)
    content = Column(JSON, nullable=False, default=dict)
    recipients = Column(JSON, nullable=False, default=list)
    notification_metadata = Column(JSON, nullable=False, default=dict)

    # Status
    status = Column(Enum(NotificationStatus), nullable=False, default=NotificationStatus.PENDING, index=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    read_count = Column(Integer, nullable=False, default=0)
    job_id = Column(String(100), nullable=True)

    # Relationships
    user_notifications = relationship(
        "UserNotification", back_populates="notification", cascade="all, delete-orphan"
    )
    delivery_logs = relationship(
        "DeliveryLog", back_populates="notification", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("idx_notifications_tenant_status", "tenant_id", "status"),
    )

    @validates(*CONTENT_FIELDS)
    def _guard_sent_content(self, key, value):
        if self.sent_at is not None:
            raise ValueError(f"Notification {self.id} was already sent; '{key}' is immutable")
        return value

class UserNotification(Base, UUIDModel, TimestampedModel, ReprMixin):
    """Inbox entry for one recipient"""

    __tablename__ = "user_notifications"

    user_id = Column(String(64), nullable=False, index=True)
    notification_id = Column(
        String(36), ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False
    )
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)

    notification = relationship("Notification", back_populates="user_notifications")

    __table_args__ = (
        UniqueConstraint("user_id", "notification_id", name="uq_user_notification"),
        Index("idx_user_notifications_unread", "user_id", "is_read"),
    )
