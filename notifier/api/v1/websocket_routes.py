"""WebSocket route for in-app notifications"""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query, status
from typing import Optional
import logging

from notifier.core.exceptions import UnauthorizedException
from notifier.core.security import SecurityUtils

router = APIRouter()
logger = logging.getLogger(__name__)

async def get_current_user_ws(websocket: WebSocket, token: Optional[str] = None) -> Optional[str]:
    """Authenticate WebSocket connection"""
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None

    try:
        payload = SecurityUtils.decode_token(token)
    except UnauthorizedException:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None

    user_id = payload.get("sub")
    if not user_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return None
    return str(user_id)

@router.websocket("/ws/notifications")
async def notifications_websocket(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
):
    """Live in-app notifications with unread replay on connect"""
    user_id = await get_current_user_ws(websocket, token)
    if not user_id:
        return

    in_app = websocket.app.state.services.in_app
    await websocket.accept()
    await in_app.connect(user_id, websocket)

    try:
        while True:
            data = await websocket.receive_json()
            message_type = data.get("type")

            if message_type == "ping":
                await websocket.send_json({"type": "pong"})
            elif message_type == "mark_read" and data.get("notification_id"):
                await in_app.mark_read(user_id, data["notification_id"])
            elif message_type == "mark_all_read":
                await in_app.mark_all_read(user_id)
            else:
                await websocket.send_json({"type": "error", "message": f"Unknown message type '{message_type}'"})

    except WebSocketDisconnect:
        pass
    finally:
        in_app.disconnect(user_id, websocket)
