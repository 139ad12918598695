from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from app.realtime import support_broadcast
from app.services import support

support_bp = Blueprint("support_bp", __name__, url_prefix="/api/support")


def _actor():
    return current_user._get_current_object()


@support_bp.get("/tickets")
@login_required
def list_tickets():
    out = support.list_tickets(
        _actor(),
        status=request.args.get("status") or None,
        priority=request.args.get("priority") or None,
        assigned=request.args.get("assigned") or None,
        limit=request.args.get("limit", 20),
        offset=request.args.get("offset", 0),
    )
    return jsonify({"success": True, "data": out["items"], "pagination": out["pagination"]}), 200


@support_bp.post("/tickets")
@login_required
def create_ticket():
    data = request.get_json(silent=True) or {}
    actor = _actor()
    ticket = support.create_ticket(
        actor,
        subject=data.get("subject"),
        category=data.get("category"),
        priority=data.get("priority"),
        message=data.get("message"),
    )
    support_broadcast.ticket_created(ticket)
    return jsonify({"success": True, "data": support.ticket_detail(ticket, actor)}), 201


@support_bp.get("/tickets/<int:ticket_id>")
@login_required
def get_ticket(ticket_id: int):
    actor = _actor()
    ticket = support.get_ticket(actor, ticket_id)
    return jsonify({"success": True, "data": support.ticket_detail(ticket, actor)}), 200


@support_bp.patch("/tickets/<int:ticket_id>")
@login_required
def update_ticket(ticket_id: int):
    actor = _actor()
    update = support.update_ticket(actor, ticket_id, request.get_json(silent=True) or {})
    support_broadcast.ticket_updated(update, actor.id)
    return jsonify({
        "success": True,
        "data": update.ticket.summary_dict(),
        "changes": update.changes,
    }), 200


@support_bp.post("/tickets/<int:ticket_id>")
@support_bp.post("/tickets/<int:ticket_id>/messages")
@login_required
def send_message(ticket_id: int):
    """HTTP path for sending when the socket is unavailable; same end state."""
    data = request.get_json(silent=True) or {}
    actor = _actor()
    posted = support.post_message(
        actor,
        ticket_id,
        content=data.get("content"),
        is_internal=data.get("isInternal", False),
        client_message_id=data.get("clientMessageId"),
    )
    support_broadcast.message_posted(posted)
    return jsonify({
        "success": True,
        "data": posted.message.to_dict(actor.id),
        "clientMessageId": posted.client_message_id,
        "ticketStatus": posted.ticket.status,
    }), 201
