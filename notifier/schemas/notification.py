"""Notification schemas for API endpoints and channel adapters"""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, EmailStr, Field, field_validator
from datetime import datetime

from notifier.models.notification import DeliveryChannel, NotificationPriority, NotificationStatus
from notifier.models.delivery_log import DeliveryStatus

class ContactProfile(BaseModel):
    """Role profile (student, teacher, staff) that may carry its own phone"""
    phone: Optional[str] = None

class RecipientUser(BaseModel):
    """Recipient contact data supplied by the surrounding application"""
    id: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None
    tenant_id: Optional[str] = None
    student: Optional[ContactProfile] = None
    teacher: Optional[ContactProfile] = None
    staff: Optional[ContactProfile] = None

    @property
    def name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

class NotificationContent(BaseModel):
    """Rendered content, with optional per-channel overrides"""
    title: str
    message: str
    email_subject: Optional[str] = None
    email_content: Optional[str] = None
    email_html: Optional[str] = None
    sms_content: Optional[str] = None
    push_title: Optional[str] = None
    push_body: Optional[str] = None
    image_url: Optional[str] = None
    action_url: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

class NotificationCreate(BaseModel):
    tenant_id: Optional[str] = None
    created_by: Optional[str] = None
    title: str = Field(..., max_length=255)
    message: str
    type: str = "GENERAL"
    category: str = "GENERAL"
    priority: NotificationPriority = NotificationPriority.NORMAL
    channels: List[DeliveryChannel] = Field(..., min_length=1)
    content: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    recipients: List[RecipientUser] = Field(..., min_length=1)
    scheduled_at: Optional[datetime] = None
    defer: bool = False

    @field_validator("channels")
    @classmethod
    def unique_channels(cls, v):
        return list(dict.fromkeys(v))

class NotificationRead(BaseModel):
    id: str
    tenant_id: Optional[str] = None
    title: str
    message: str
    type: str
    category: str
    priority: NotificationPriority
    channels: List[DeliveryChannel]
    status: NotificationStatus
    scheduled_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    read_count: int = 0
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class InboxItem(BaseModel):
    id: str
    notification_id: str
    is_read: bool
    read_at: Optional[datetime] = None
    title: str
    message: str
    type: str
    category: str
    priority: NotificationPriority
    created_at: Optional[datetime] = None

class DeliveryLogRead(BaseModel):
    id: str
    notification_id: str
    channel: DeliveryChannel
    recipient: str
    provider: Optional[str] = None
    message_id: Optional[str] = None
    status: DeliveryStatus
    error: Optional[str] = None
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class DispatchResponse(BaseModel):
    notification_id: str
    status: NotificationStatus
    job_id: Optional[str] = None
    results: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
