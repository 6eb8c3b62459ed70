"""Device token and webhook subscription schemas"""

from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field
from datetime import datetime

class DeviceTokenRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=500)
    platform: str  # ios, android, web
    device_info: Optional[Dict[str, Any]] = None

class DeviceTokenRead(BaseModel):
    id: str
    user_id: str
    token: str
    platform: str
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class WebhookSubscriptionCreate(BaseModel):
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    url: str
    method: str = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    events: List[str] = Field(default_factory=lambda: ["notification.sent"])
    secret: Optional[str] = None
    description: Optional[str] = None

class WebhookSubscriptionRead(BaseModel):
    id: str
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    url: str
    method: str
    events: List[str]
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
