"""Room fan-out for support ticket changes.

Customer-visible messages go to ``support:<id>``. Internal notes go only to
``support:<id>:staff``; the staff dashboard gets a summary with the internal
content masked.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from app.realtime.socket import STAFF_ROOM, broadcast_room_event, ticket_room, ticket_staff_room
from app.services.support import PostedMessage, TicketUpdate
from app.utils.notify import push_notifications

INTERNAL_PLACEHOLDER = "[Internal note]"


def _status_payload(ticket, previous: Optional[str], actor_id: Optional[int]) -> Dict[str, Any]:
    return {
        "ticketId": ticket.id,
        "ticketNumber": ticket.ticket_number,
        "status": ticket.status,
        "previousStatus": previous,
        "updatedBy": actor_id,
        "updatedAt": ticket.updated_at.isoformat() if ticket.updated_at else None,
    }


def message_posted(posted: PostedMessage) -> bool:
    """Returns True when the message itself reached its room."""
    ticket, msg = posted.ticket, posted.message
    payload = {
        "ticketId": ticket.id,
        "message": msg.to_dict(),
        "clientMessageId": posted.client_message_id,
    }
    room = ticket_staff_room(ticket.id) if msg.is_internal else ticket_room(ticket.id)
    delivered = broadcast_room_event(room, payload, event="support:message-new")

    broadcast_room_event(STAFF_ROOM, {
        "ticketId": ticket.id,
        "ticketNumber": ticket.ticket_number,
        "status": ticket.status,
        "lastMessage": {
            "id": msg.id,
            "senderId": msg.sender_id,
            "isInternal": bool(msg.is_internal),
            "content": INTERNAL_PLACEHOLDER if msg.is_internal else msg.content[:200],
            "createdAt": msg.created_at.isoformat() if msg.created_at else None,
        },
    }, event="support:ticket-updated")

    if posted.status_changed:
        status = _status_payload(ticket, posted.previous_status, msg.sender_id)
        broadcast_room_event(ticket_room(ticket.id), status, event="support:ticket-status-changed")
        broadcast_room_event(STAFF_ROOM, status, event="support:ticket-status-changed")

    push_notifications(posted.notifications)
    return delivered


def ticket_updated(update: TicketUpdate, actor_id: int) -> None:
    if not update.changes:
        return
    ticket = update.ticket
    payload = {
        "ticketId": ticket.id,
        "ticketNumber": ticket.ticket_number,
        "changes": update.changes,
        "ticket": ticket.summary_dict(),
        "updatedBy": actor_id,
    }
    broadcast_room_event(ticket_room(ticket.id), payload, event="support:ticket-updated")
    broadcast_room_event(STAFF_ROOM, payload, event="support:ticket-updated")

    if "status" in update.changes:
        status = _status_payload(ticket, update.previous_status, actor_id)
        broadcast_room_event(ticket_room(ticket.id), status, event="support:ticket-status-changed")
        broadcast_room_event(STAFF_ROOM, status, event="support:ticket-status-changed")

    push_notifications(update.notifications)


def ticket_created(ticket) -> None:
    broadcast_room_event(STAFF_ROOM, {"ticket": ticket.summary_dict()}, event="support:ticket-created")
