"""Outbound webhook subscriptions"""

from sqlalchemy import Column, String, Boolean, JSON, Index

from .base import Base, TimestampedModel, UUIDModel, ReprMixin

class WebhookSubscription(Base, UUIDModel, TimestampedModel, ReprMixin):
    """
    Subscriber endpoint for notification events.
    Owned by a user, or by a whole tenant when user_id is null.
    """

    __tablename__ = "webhook_subscriptions"

    user_id = Column(String(64), nullable=True, index=True)
    tenant_id = Column(String(64), nullable=True, index=True)
    url = Column(String(1000), nullable=False)
    method = Column(String(10), nullable=False, default="POST")
    headers = Column(JSON, nullable=False, default=dict)
    events = Column(JSON, nullable=False, default=list)  # ["notification.sent"] or ["*"]
    secret = Column(String(255), nullable=True)
    description = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("idx_webhook_subscriptions_tenant_active", "tenant_id", "is_active"),
    )
