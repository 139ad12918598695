from __future__ import annotations

from datetime import datetime
import json
from typing import Any, Dict, Iterable, Optional

from app.extensions import db
from app.models.notification import Notification
from app.realtime.socket import broadcast_room_event, user_room


def queue_in_app(user_id: int, title: str, message: str, meta: Optional[Dict[str, Any]] = None) -> Notification:
    n = Notification(
        user_id=user_id,
        channel="in_app",
        title=title[:160] if title else "",
        message=message or "",
        status="queued",
        provider="local",
        meta=json.dumps(meta or {}, default=str),
    )
    db.session.add(n)
    return n


def mark_sent(n: Notification, provider_ref: str = "") -> None:
    n.status = "sent"
    n.provider_ref = provider_ref[:120] if provider_ref else None
    n.sent_at = datetime.utcnow()
    db.session.add(n)


def notify_user(user_id: int, title: str, message: str, meta: Optional[Dict[str, Any]] = None) -> Notification:
    """Stage an in-app notification. The stored row is the delivery, so it is sent on creation."""
    n = queue_in_app(user_id, title, message, meta=meta)
    mark_sent(n, "in_app")
    return n


def push_notifications(rows: Iterable[Notification]) -> int:
    """Best-effort realtime push of committed notifications; returns how many were emitted."""
    pushed = 0
    for n in rows:
        if broadcast_room_event(user_room(n.user_id), n.to_dict(), event="notification"):
            pushed += 1
    return pushed
