"""
In-app (realtime) channel

The connection registry is process local: user id -> set of live WebSocket
connections. Sending to an offline user is not an error; the inbox entry
stays unread and is replayed when the user reconnects.
"""

from typing import Any, Dict, List, Set
from datetime import datetime, timezone
import logging

from notifier.models.delivery_log import DeliveryStatus
from notifier.models.notification import DeliveryChannel, Notification, NotificationPriority
from notifier.schemas.notification import NotificationContent, RecipientUser
from notifier.services.inbox import InboxService
from notifier.services.providers import ProviderResult

logger = logging.getLogger(__name__)

PROVIDER_NAME = "websocket"

class ConnectionRegistry:
    """Live connections per user"""

    def __init__(self):
        # {user_id: {websocket1, websocket2}}
        self.active_connections: Dict[str, Set[Any]] = {}

    def add(self, user_id: str, connection: Any) -> None:
        self.active_connections.setdefault(user_id, set()).add(connection)

    def remove(self, user_id: str, connection: Any) -> None:
        connections = self.active_connections.get(user_id)
        if connections is None:
            return
        connections.discard(connection)
        if not connections:
            del self.active_connections[user_id]

    def connections(self, user_id: str) -> List[Any]:
        return list(self.active_connections.get(user_id, ()))

    def is_online(self, user_id: str) -> bool:
        return bool(self.active_connections.get(user_id))

    @property
    def online_users(self) -> int:
        return len(self.active_connections)

def build_actions(notification: Notification) -> List[Dict[str, str]]:
    """Action buttons derived from the notification type"""
    metadata = notification.notification_metadata or {}
    routes = {
        "GRADE_UPDATE": ("View Grade", f"/grades/{metadata.get('grade_id', '')}"),
        "ASSIGNMENT": ("View Assignment", f"/assignments/{metadata.get('assignment_id', '')}"),
        "FEE_REMINDER": ("Pay Now", "/payments"),
        "ATTENDANCE": ("View Attendance", "/attendance"),
        "ANNOUNCEMENT": ("Read More", f"/announcements/{metadata.get('announcement_id', '')}"),
    }

    actions = []
    if notification.type in routes:
        label, url = routes[notification.type]
        actions.append({"label": label, "action": "navigate", "url": url.rstrip("/")})
    actions.append({"label": "Mark as Read", "action": "mark_read"})
    return actions

class InAppChannel:
    """Pushes notifications and unread counts to live connections"""

    channel = DeliveryChannel.IN_APP

    def __init__(self, registry: ConnectionRegistry, inbox: InboxService, replay_limit: int = 10):
        self.registry = registry
        self.inbox = inbox
        self.replay_limit = replay_limit

    def recipient_for(self, user: RecipientUser) -> str:
        return user.id

    async def _push(self, user_id: str, message: Dict[str, Any]) -> int:
        """Send to every live connection, pruning the ones that fail"""
        delivered = 0
        for connection in self.registry.connections(user_id):
            try:
                await connection.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning(f"Dropping stale connection for user {user_id}: {e}")
                self.registry.remove(user_id, connection)
        return delivered

    async def push_unread_count(self, user_id: str) -> int:
        count = await self.inbox.unread_count(user_id)
        if self.registry.is_online(user_id):
            await self._push(user_id, {"type": "unread_count", "count": count})
        return count

    @staticmethod
    def build_payload(content: NotificationContent, notification: Notification) -> Dict[str, Any]:
        return {
            "type": "notification",
            "data": {
                "id": notification.id,
                "title": content.title,
                "message": content.message,
                "type": notification.type,
                "category": notification.category,
                "priority": NotificationPriority(notification.priority).value,
                "metadata": notification.notification_metadata or {},
                "action_url": content.action_url,
                "actions": build_actions(notification),
                "created_at": notification.created_at.isoformat() if notification.created_at else None,
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    async def send(
        self,
        user: RecipientUser,
        content: NotificationContent,
        notification: Notification,
    ) -> ProviderResult:
        if not self.registry.is_online(user.id):
            logger.info(f"User {user.id} offline, notification {notification.id} stored for replay")
            return ProviderResult(provider=PROVIDER_NAME, status=DeliveryStatus.PENDING, raw={"status": "stored"})

        delivered = await self._push(user.id, self.build_payload(content, notification))
        await self.push_unread_count(user.id)

        if not delivered:
            return ProviderResult(provider=PROVIDER_NAME, status=DeliveryStatus.PENDING, raw={"status": "stored"})

        return ProviderResult(
            provider=PROVIDER_NAME,
            message_id=notification.id,
            status=DeliveryStatus.SENT,
            raw={"status": "sent", "connections": delivered},
        )

    # Connection lifecycle

    async def connect(self, user_id: str, connection: Any) -> None:
        """Register an accepted connection and replay unread notifications"""
        self.registry.add(user_id, connection)
        logger.info(f"User {user_id} connected ({len(self.registry.connections(user_id))} connection(s))")

        await self._push(user_id, {
            "type": "connection",
            "status": "connected",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

        pending = await self.inbox.list_for_user(user_id, unread_only=True, limit=self.replay_limit)
        if pending:
            await self._push(user_id, {
                "type": "pending_notifications",
                "data": [item.model_dump(mode="json") for item in pending],
            })
        await self.push_unread_count(user_id)

    def disconnect(self, user_id: str, connection: Any) -> None:
        self.registry.remove(user_id, connection)
        logger.info(f"User {user_id} disconnected")

    async def mark_read(self, user_id: str, notification_id: str) -> bool:
        changed = await self.inbox.mark_read(user_id, notification_id)
        await self.push_unread_count(user_id)
        return changed

    async def mark_all_read(self, user_id: str) -> int:
        count = await self.inbox.mark_all_read(user_id)
        await self.push_unread_count(user_id)
        return count
