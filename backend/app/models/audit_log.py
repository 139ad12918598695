import json
from datetime import datetime

from app.extensions import db


class AuditLog(db.Model):
    """Append-only trail of payment and ticket state changes."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)

    actor_user_id = db.Column(db.Integer, nullable=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    target_type = db.Column(db.String(64), nullable=True)
    target_id = db.Column(db.Integer, nullable=True)
    meta = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @classmethod
    def record(cls, action: str, *, actor_id=None, target_type=None, target_id=None, **meta) -> "AuditLog":
        """Stage an audit row on the current session; the caller commits."""
        row = cls(
            actor_user_id=int(actor_id) if actor_id is not None else None,
            action=action,
            target_type=target_type,
            target_id=int(target_id) if target_id is not None else None,
            meta=json.dumps(meta, default=str) if meta else None,
        )
        db.session.add(row)
        return row

    def to_dict(self):
        return {
            "id": self.id,
            "actorUserId": self.actor_user_id,
            "action": self.action,
            "targetType": self.target_type,
            "targetId": self.target_id,
            "meta": json.loads(self.meta) if self.meta else {},
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
