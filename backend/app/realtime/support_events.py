"""Socket.IO handlers for the support chat.

Every connection is authenticated at connect time with the same bearer token
the HTTP API uses. Handlers acknowledge with ``{"success": ...}``; failures
are returned in the ack, never raised to the transport.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Dict, Optional

from flask import current_app, request, session
from flask_socketio import emit, join_room, leave_room
from sqlalchemy.exc import SQLAlchemyError

from app.errors import ApiError, AuthenticationError, ForbiddenError, ValidationError
from app.extensions import db, socketio
from app.models import User
from app.realtime import support_broadcast
from app.realtime.socket import STAFF_ROOM, ticket_room, ticket_staff_room, user_room
from app.services import support
from app.utils.jwt_utils import get_bearer_token, user_id_from_token


def _handshake_token(auth: Optional[Dict[str, Any]]) -> Optional[str]:
    if isinstance(auth, dict) and auth.get("token"):
        return str(auth["token"]).strip() or None
    header = get_bearer_token(request.headers.get("Authorization", ""))
    if header:
        return header
    return (request.args.get("token") or "").strip() or None


def _actor() -> User:
    user_id = session.get("user_id")
    user = db.session.get(User, user_id) if user_id else None
    if user is None:
        raise AuthenticationError("Not authenticated")
    return user


def _ticket_id(data: Dict[str, Any]) -> int:
    try:
        return int(data.get("ticketId"))
    except (TypeError, ValueError):
        raise ValidationError("ticketId is required")


def acked(fn):
    """Turn a handler's result or error into an acknowledgement payload.

    Handlers only ever see a dict payload.
    """

    @wraps(fn)
    def wrapper(data=None):
        try:
            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise ValidationError("Event payload must be an object")
            out = fn(data)
        except ApiError as e:
            db.session.rollback()
            return {"success": False, "error": e.message}
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("socket event %s failed", fn.__name__)
            return {"success": False, "error": "Internal error"}
        return {"success": True, **(out or {})}

    return wrapper


@socketio.on("connect")
def on_connect(auth=None):
    token = _handshake_token(auth)
    user_id = user_id_from_token(token) if token else None
    user = db.session.get(User, user_id) if user_id else None
    if user is None:
        current_app.logger.info("socket connection refused: invalid or missing token")
        raise ConnectionRefusedError("unauthorized")

    session["user_id"] = user.id
    session["is_staff"] = user.is_staff
    session["tickets"] = []
    join_room(user_room(user.id))
    current_app.logger.info("socket connected: user %s (sid %s)", user.id, request.sid)


@socketio.on("disconnect")
def on_disconnect(*args):
    user_id = session.get("user_id")
    for ticket_id in session.get("tickets") or []:
        emit("support:typing", _typing_payload(ticket_id, user_id, None, False), to=ticket_room(ticket_id), include_self=False)
    current_app.logger.info("socket disconnected: user %s (sid %s)", user_id, request.sid)


@socketio.on("support:join-ticket")
@acked
def on_join_ticket(data):
    actor = _actor()
    ticket = support.get_ticket(actor, _ticket_id(data))

    join_room(ticket_room(ticket.id))
    if actor.is_staff:
        join_room(ticket_staff_room(ticket.id))
    joined = list(session.get("tickets") or [])
    if ticket.id not in joined:
        joined.append(ticket.id)
    session["tickets"] = joined
    return {"ticketId": ticket.id}


@socketio.on("support:leave-ticket")
@acked
def on_leave_ticket(data):
    ticket_id = _ticket_id(data)
    leave_room(ticket_room(ticket_id))
    leave_room(ticket_staff_room(ticket_id))
    session["tickets"] = [t for t in (session.get("tickets") or []) if t != ticket_id]
    return {"ticketId": ticket_id}


@socketio.on("support:join-staff-room")
@acked
def on_join_staff_room(data):
    if not _actor().is_staff:
        raise ForbiddenError("Staff only")
    join_room(STAFF_ROOM)
    return {"room": STAFF_ROOM}


@socketio.on("support:send-message")
@acked
def on_send_message(data):
    actor = _actor()
    posted = support.post_message(
        actor,
        _ticket_id(data),
        content=data.get("content"),
        is_internal=data.get("isInternal", False),
        client_message_id=data.get("clientMessageId") or data.get("tempId"),
    )
    support_broadcast.message_posted(posted)
    return {
        "message": posted.message.to_dict(actor.id),
        "clientMessageId": posted.client_message_id,
        "ticketStatus": posted.ticket.status,
    }


@socketio.on("support:update-ticket")
@acked
def on_update_ticket(data):
    actor = _actor()
    update = support.update_ticket(actor, _ticket_id(data), data)
    support_broadcast.ticket_updated(update, actor.id)
    return {"changes": update.changes, "ticket": update.ticket.summary_dict()}


def _typing_payload(ticket_id: int, user_id: Optional[int], name: Optional[str], typing: bool) -> Dict[str, Any]:
    return {
        "ticketId": ticket_id,
        "userId": user_id,
        "fullName": name,
        "isTyping": typing,
        "expiresInMs": current_app.config.get("TYPING_INDICATOR_TTL_MS", 5000) if typing else 0,
    }


def _typing(data, typing: bool):
    actor = _actor()
    ticket_id = _ticket_id(data)
    if ticket_id not in (session.get("tickets") or []):
        raise ForbiddenError("Join the ticket first")
    internal = actor.is_staff and bool(data.get("isInternal"))
    room = ticket_staff_room(ticket_id) if internal else ticket_room(ticket_id)
    emit("support:typing", _typing_payload(ticket_id, actor.id, actor.full_name, typing), to=room, include_self=False)
    return {"ticketId": ticket_id}


@socketio.on("support:typing-start")
@acked
def on_typing_start(data):
    return _typing(data, True)


@socketio.on("support:typing-stop")
@acked
def on_typing_stop(data):
    return _typing(data, False)
