"""Support ticket lifecycle.

Services take the acting user explicitly and return plain results; callers
decide how to fan them out (HTTP response, socket ack, room broadcast).
Internal notes are filtered here, before anything leaves the server.
"""

from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from flask import current_app

from app.errors import ForbiddenError, NotFoundError, TerminalStateError, ValidationError
from app.extensions import db
from app.models import AuditLog, Notification, SupportMessage, SupportTicket, User
from app.models.support import TICKET_CATEGORIES, TICKET_PRIORITIES, TICKET_STATUSES
from app.utils.notify import notify_user

MAX_SUBJECT = 200
MAX_CONTENT = 5000
MAX_LIST_LIMIT = 100

_B36 = string.digits + string.ascii_uppercase


def _base36(n: int) -> str:
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = _B36[r] + out
    return out or "0"


def generate_ticket_number() -> str:
    suffix = "".join(secrets.choice(_B36) for _ in range(4))
    return f"TB-{_base36(int(time.time() * 1000))}{suffix}"


@dataclass
class PostedMessage:
    ticket: SupportTicket
    message: SupportMessage
    previous_status: Optional[str] = None
    client_message_id: Optional[str] = None
    notifications: List[Notification] = field(default_factory=list)

    @property
    def status_changed(self) -> bool:
        return self.previous_status is not None and self.previous_status != self.ticket.status


@dataclass
class TicketUpdate:
    ticket: SupportTicket
    changes: Dict[str, Any]
    previous_status: Optional[str] = None
    notifications: List[Notification] = field(default_factory=list)


def _choice(value: Any, allowed, name: str, default: Optional[str] = None) -> str:
    value = (str(value).strip().lower() if value is not None else "") or default
    if value not in allowed:
        raise ValidationError(f"Invalid {name}. Use one of: " + ", ".join(allowed))
    return value


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _load_ticket(actor: User, ticket_id: Any) -> SupportTicket:
    try:
        ticket = db.session.get(SupportTicket, int(ticket_id))
    except (TypeError, ValueError):
        ticket = None
    if ticket is None:
        raise NotFoundError("Ticket not found")
    if not actor.is_staff and ticket.user_id != actor.id:
        raise ForbiddenError("You do not have access to this ticket")
    return ticket


def visible_messages(ticket: SupportTicket, viewer: User) -> List[SupportMessage]:
    if viewer.is_staff:
        return list(ticket.messages)
    return [m for m in ticket.messages if not m.is_internal]


def ticket_detail(ticket: SupportTicket, viewer: User) -> Dict[str, Any]:
    d = ticket.summary_dict()
    d["messages"] = [m.to_dict(viewer.id) for m in visible_messages(ticket, viewer)]
    return d


def create_ticket(actor: User, *, subject: Any, category: Any = None, priority: Any = None, message: Any = None) -> SupportTicket:
    subject = (subject or "").strip() if isinstance(subject, str) else ""
    content = (message or "").strip() if isinstance(message, str) else ""
    if not subject:
        raise ValidationError("Subject is required")
    if len(subject) > MAX_SUBJECT:
        raise ValidationError(f"Subject must be at most {MAX_SUBJECT} characters")
    if not content:
        raise ValidationError("Message is required")
    category = _choice(category, TICKET_CATEGORIES, "category", default="general")
    priority = _choice(priority, TICKET_PRIORITIES, "priority", default="normal")

    now = datetime.utcnow()
    ticket = SupportTicket(
        ticket_number=generate_ticket_number(),
        user_id=actor.id,
        subject=subject,
        category=category,
        priority=priority,
        status="open",
        created_at=now,
        updated_at=now,
    )
    db.session.add(ticket)
    db.session.flush()
    db.session.add(SupportMessage(
        ticket_id=ticket.id,
        sender_id=actor.id,
        content=content[:MAX_CONTENT],
        is_internal=False,
        created_at=now,
    ))
    db.session.commit()

    current_app.logger.info("support ticket %s opened by user %s", ticket.ticket_number, actor.id)
    return ticket


def list_tickets(
    actor: User,
    *,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    assigned: Optional[str] = None,
    limit: Any = 20,
    offset: Any = 0,
) -> Dict[str, Any]:
    try:
        limit = min(max(int(limit), 1), MAX_LIST_LIMIT)
    except (TypeError, ValueError):
        limit = 20
    try:
        offset = max(int(offset), 0)
    except (TypeError, ValueError):
        offset = 0

    q = SupportTicket.query
    if not actor.is_staff:
        q = q.filter(SupportTicket.user_id == actor.id)
    elif assigned:
        if assigned == "me":
            q = q.filter(SupportTicket.assigned_to == actor.id)
        elif assigned == "unassigned":
            q = q.filter(SupportTicket.assigned_to.is_(None))
        else:
            try:
                q = q.filter(SupportTicket.assigned_to == int(assigned))
            except ValueError:
                raise ValidationError("assigned must be me, unassigned or a user id")
    if status:
        q = q.filter(SupportTicket.status == _choice(status, TICKET_STATUSES, "status"))
    if priority:
        q = q.filter(SupportTicket.priority == _choice(priority, TICKET_PRIORITIES, "priority"))

    total = q.count()
    rows = q.order_by(SupportTicket.updated_at.desc(), SupportTicket.id.desc()).offset(offset).limit(limit).all()

    items = []
    for t in rows:
        mq = SupportMessage.query.filter(SupportMessage.ticket_id == t.id)
        if not actor.is_staff:
            mq = mq.filter(SupportMessage.is_internal.is_(False))
        last = mq.order_by(SupportMessage.id.desc()).first()
        d = t.summary_dict()
        d["lastMessage"] = last.to_dict(actor.id) if last else None
        items.append(d)

    return {
        "items": items,
        "pagination": {"total": total, "limit": limit, "offset": offset, "hasMore": offset + len(rows) < total},
    }


def get_ticket(actor: User, ticket_id: Any) -> SupportTicket:
    return _load_ticket(actor, ticket_id)


def post_message(
    actor: User,
    ticket_id: Any,
    *,
    content: Any,
    is_internal: Any = False,
    client_message_id: Optional[str] = None,
) -> PostedMessage:
    ticket = _load_ticket(actor, ticket_id)
    content = content.strip() if isinstance(content, str) else ""
    if not content:
        raise ValidationError("Message content is required")
    if ticket.status == "closed" and not actor.is_staff:
        raise TerminalStateError("This ticket is closed. Please open a new ticket.")

    internal = actor.is_staff and _truthy(is_internal)
    now = datetime.utcnow()
    msg = SupportMessage(
        ticket_id=ticket.id,
        sender_id=actor.id,
        content=content[:MAX_CONTENT],
        is_internal=internal,
        created_at=now,
    )
    db.session.add(msg)

    previous = ticket.status
    if not internal:
        if actor.is_staff and ticket.status in ("open", "in_progress"):
            ticket.status = "waiting_on_user"
        elif not actor.is_staff and ticket.status in ("open", "waiting_on_user"):
            ticket.status = "in_progress"
    ticket.updated_at = now

    notes: List[Notification] = []
    if actor.is_staff and not internal and ticket.user_id != actor.id:
        notes.append(notify_user(
            ticket.user_id,
            "Support replied",
            f"New reply on ticket {ticket.ticket_number}: {ticket.subject}",
            meta={"ticketId": ticket.id, "ticketNumber": ticket.ticket_number},
        ))
    db.session.commit()

    if ticket.status != previous:
        current_app.logger.info("ticket %s moved %s -> %s on reply", ticket.ticket_number, previous, ticket.status)
    return PostedMessage(
        ticket=ticket,
        message=msg,
        previous_status=previous,
        client_message_id=client_message_id,
        notifications=notes,
    )


def update_ticket(actor: User, ticket_id: Any, fields: Dict[str, Any]) -> TicketUpdate:
    """Partial staff update of status, priority and assignment."""
    if not actor.is_staff:
        raise ForbiddenError("Only support staff can update tickets")
    ticket = _load_ticket(actor, ticket_id)

    wanted: Dict[str, Any] = {}
    if fields.get("status") is not None:
        wanted["status"] = _choice(fields["status"], TICKET_STATUSES, "status")
    if fields.get("priority") is not None:
        wanted["priority"] = _choice(fields["priority"], TICKET_PRIORITIES, "priority")
    if "assignedTo" in fields:
        assignee_id = fields["assignedTo"]
        if assignee_id in (None, ""):
            wanted["assigned_to"] = None
        else:
            try:
                assignee = db.session.get(User, int(assignee_id))
            except (TypeError, ValueError):
                assignee = None
            if assignee is None or not assignee.is_staff:
                raise ValidationError("assignedTo must be a staff member")
            wanted["assigned_to"] = assignee.id

    previous_status = ticket.status
    changes: Dict[str, Any] = {}
    for attr, value in wanted.items():
        if getattr(ticket, attr) == value:
            continue
        setattr(ticket, attr, value)
        changes["assignedTo" if attr == "assigned_to" else attr] = value

    if not changes:
        return TicketUpdate(ticket=ticket, changes={})

    now = datetime.utcnow()
    if "status" in changes:
        if ticket.status == "resolved":
            ticket.resolved_at = now
        elif ticket.status == "closed":
            ticket.closed_at = now
    ticket.updated_at = now

    notes: List[Notification] = []
    if "status" in changes and ticket.user_id != actor.id:
        notes.append(notify_user(
            ticket.user_id,
            "Ticket updated",
            f"Ticket {ticket.ticket_number} is now {ticket.status.replace('_', ' ')}.",
            meta={"ticketId": ticket.id, "ticketNumber": ticket.ticket_number, "status": ticket.status},
        ))
    AuditLog.record(
        "support_ticket_update", actor_id=actor.id, target_type="support_ticket", target_id=ticket.id,
        changes=changes, previousStatus=previous_status,
    )
    db.session.commit()

    current_app.logger.info("ticket %s updated by %s: %s", ticket.ticket_number, actor.id, changes)
    return TicketUpdate(ticket=ticket, changes=changes, previous_status=previous_status, notifications=notes)
