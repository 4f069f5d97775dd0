from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query
from typing import Any, Dict, List, Optional, Set
from datetime import datetime, timezone
import logging

from ..core.permissions import resolve_staff_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["WebSocket"])

STAFF_ROOMS = {"kitchen", "dashboard", "admin-alerts"}
PUBLIC_ROOM_PREFIXES = ("table:", "order:")

KITCHEN_EVENTS = {
    "order:new",
    "order:status-updated",
    "order:item-updated",
    "order:cancelled",
    "order:items-added",
}

class ConnectionManager:
    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, rooms: List[str]):
        await websocket.accept()
        for room in rooms:
            self.rooms.setdefault(room, set()).add(websocket)

    def disconnect(self, websocket: WebSocket):
        for room in list(self.rooms):
            members = self.rooms[room]
            members.discard(websocket)
            if not members:
                del self.rooms[room]

    async def send_to_room(self, message: dict, room: str):
        dead_connections = set()
        for connection in list(self.rooms.get(room, ())):
            try:
                await connection.send_json(message)
            except Exception:
                dead_connections.add(connection)

        for conn in dead_connections:
            self.disconnect(conn)

    async def emit_order_event(self, event: str, order_id: Optional[str] = None,
                               table_id: Optional[str] = None, order: Optional[Dict[str, Any]] = None):
        """Fire-and-forget fanout of an order event"""
        message = {
            "event": event,
            "orderId": order_id,
            "tableId": table_id,
            "order": order,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        rooms = ["dashboard", "admin-alerts"]
        if event in KITCHEN_EVENTS:
            rooms.append("kitchen")
        if table_id:
            rooms.append(f"table:{table_id}")
        if order_id:
            rooms.append(f"order:{order_id}")

        try:
            for room in rooms:
                await self.send_to_room(message, room)
        except Exception:
            logger.exception("Failed to emit %s for order %s", event, order_id)

manager = ConnectionManager()

def is_valid_room(room: str) -> bool:
    if room in STAFF_ROOMS:
        return True
    return room.startswith(PUBLIC_ROOM_PREFIXES) and len(room) < 100

@router.websocket("/orders")
async def websocket_endpoint(
    websocket: WebSocket,
    rooms: List[str] = Query(...),
    token: Optional[str] = Query(None),
):
    """Live order events; kitchen/dashboard rooms need a staff token, table/order rooms are public"""
    if not all(is_valid_room(room) for room in rooms):
        await websocket.close(code=1008, reason="Unknown room")
        return

    if any(room in STAFF_ROOMS for room in rooms):
        if not token:
            await websocket.close(code=1008, reason="Token required")
            return
        staff = await resolve_staff_token(websocket.app, token)
        if staff is None:
            await websocket.close(code=1008, reason="Authentication failed")
            return

    await manager.connect(websocket, rooms)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        manager.disconnect(websocket)
