from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from app.errors import NotFoundError
from app.extensions import db
from app.models import Notification

notifications_bp = Blueprint("notifications_bp", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
@login_required
def list_notifications():
    q = Notification.query.filter_by(user_id=current_user.id)
    if request.args.get("unread") in ("1", "true"):
        q = q.filter(Notification.is_read.is_(False))

    limit = min(max(request.args.get("limit", 50, type=int) or 50, 1), 100)
    rows = q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()
    unread = Notification.query.filter_by(user_id=current_user.id, is_read=False).count()
    return jsonify({"success": True, "data": [n.to_dict() for n in rows], "unreadCount": unread}), 200


@notifications_bp.post("/<int:notification_id>/read")
@login_required
def mark_read(notification_id: int):
    n = db.session.get(Notification, notification_id)
    if n is None or n.user_id != current_user.id:
        raise NotFoundError("Notification not found")
    if not n.is_read:
        n.is_read = True
        db.session.commit()
    return jsonify({"success": True, "data": n.to_dict()}), 200
