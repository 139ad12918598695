from datetime import datetime

from app.extensions import db

TICKET_CATEGORIES = ("general", "account", "payment", "ads", "verification", "technical", "report", "other")
TICKET_PRIORITIES = ("low", "normal", "high", "urgent")
TICKET_STATUSES = ("open", "in_progress", "waiting_on_user", "resolved", "closed")


def _iso(v):
    return v.isoformat() if v else None


class SupportTicket(db.Model):
    __tablename__ = "support_tickets"

    id = db.Column(db.Integer, primary_key=True)
    ticket_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    assigned_to = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    subject = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(32), nullable=False, default="general")
    priority = db.Column(db.String(16), nullable=False, default="normal")
    status = db.Column(db.String(32), nullable=False, default="open", index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    resolved_at = db.Column(db.DateTime, nullable=True)
    closed_at = db.Column(db.DateTime, nullable=True)

    user = db.relationship("User", foreign_keys=[user_id])
    assignee = db.relationship("User", foreign_keys=[assigned_to])
    messages = db.relationship(
        "SupportMessage",
        back_populates="ticket",
        order_by="SupportMessage.id",
        lazy="select",
    )

    def summary_dict(self):
        return {
            "id": self.id,
            "ticketNumber": self.ticket_number,
            "subject": self.subject,
            "category": self.category,
            "priority": self.priority,
            "status": self.status,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "resolvedAt": _iso(self.resolved_at),
            "closedAt": _iso(self.closed_at),
            "user": self.user.to_public() if self.user else None,
            "assignedTo": self.assignee.to_public() if self.assignee else None,
        }


class SupportMessage(db.Model):
    __tablename__ = "support_messages"

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("support_tickets.id"), nullable=False, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    content = db.Column(db.Text, nullable=False, default="")
    type = db.Column(db.String(16), nullable=False, default="text")
    attachment_url = db.Column(db.String(512), nullable=True)
    is_internal = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    ticket = db.relationship("SupportTicket", back_populates="messages")
    sender = db.relationship("User")

    def to_dict(self, viewer_id: int | None = None):
        return {
            "id": self.id,
            "ticketId": self.ticket_id,
            "senderId": self.sender_id,
            "content": self.content,
            "type": self.type,
            "attachmentUrl": self.attachment_url,
            "isInternal": bool(self.is_internal),
            "createdAt": _iso(self.created_at),
            "sender": self.sender.to_public() if self.sender else None,
            "isOwnMessage": viewer_id is not None and self.sender_id == viewer_id,
        }
