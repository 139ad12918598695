"""Socket.IO broadcast utilities.

HTTP routes and services call `broadcast_room_event(room, payload, event)`.
When realtime is disabled the call is a no-op returning False, and clients
fall back to polling the HTTP endpoints.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from flask import current_app

from app.extensions import socketio

STAFF_ROOM = "support:staff"


def user_room(user_id: int) -> str:
    return f"user:{int(user_id)}"


def ticket_room(ticket_id: int) -> str:
    return f"support:{int(ticket_id)}"


def ticket_staff_room(ticket_id: int) -> str:
    return f"support:{int(ticket_id)}:staff"


def realtime_enabled() -> bool:
    return getattr(socketio, "server", None) is not None


def broadcast_room_event(
    room: str,
    payload: Dict[str, Any],
    event: str = "event",
    skip_sid: Optional[str] = None,
) -> bool:
    """Broadcast an event to a room.

    Returns True if emitted via SocketIO, False if SocketIO is disabled or the
    emit failed. Delivery failures never reach the caller as errors.
    """
    if not realtime_enabled():
        return False

    try:
        socketio.emit(event, payload, to=room, skip_sid=skip_sid)
        return True
    except (OSError, RuntimeError, ValueError) as e:
        current_app.logger.warning("socket emit %s to %s failed: %s", event, room, e)
        return False
