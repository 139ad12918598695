from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from app.errors import AuthenticationError, ValidationError
from app.extensions import db, login_manager
from app.models import User
from app.utils.jwt_utils import create_access_token, get_bearer_token, user_id_from_token

api_auth = Blueprint("api_auth", __name__, url_prefix="/api/auth")


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.request_loader
def load_user_from_request(req):
    """Resolve ``current_user`` from an ``Authorization: Bearer`` access token."""
    user_id = user_id_from_token(get_bearer_token(req.headers.get("Authorization", "")))
    if user_id is None:
        return None
    return db.session.get(User, user_id)


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"success": False, "message": "Authentication required"}), 401


@api_auth.post("/login")
def api_login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        raise ValidationError("email and password required")

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        raise AuthenticationError("Invalid credentials")

    token = create_access_token(user.id, role=user.role or "user")
    return jsonify({"success": True, "data": {"token": token, "user": user.to_dict()}}), 200


@api_auth.get("/me")
@login_required
def api_me():
    return jsonify({"success": True, "data": current_user.to_dict()}), 200
