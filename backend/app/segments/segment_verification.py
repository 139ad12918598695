from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from app.errors import ValidationError
from app.extensions import db
from app.models import BusinessVerificationRequest, IndividualVerificationRequest
from app.models.verification import DEFAULT_VERIFICATION_DURATION, VERIFICATION_DURATIONS

verification_bp = Blueprint("verification_bp", __name__, url_prefix="/api/verification")

ID_DOCUMENT_TYPES = ("citizenship", "passport", "driving_license", "national_id")


def _duration(data) -> int:
    raw = data.get("durationDays")
    if raw in (None, ""):
        return DEFAULT_VERIFICATION_DURATION
    try:
        days = int(raw)
    except (TypeError, ValueError):
        days = 0
    if days not in VERIFICATION_DURATIONS:
        raise ValidationError("durationDays must be one of " + ", ".join(str(d) for d in VERIFICATION_DURATIONS))
    return days


def _open_request(model, user_id: int):
    """The user's request that is still awaiting payment or review, if any."""
    return (
        model.query
        .filter(model.user_id == user_id, model.status.in_(("pending_payment", "pending")))
        .order_by(model.id.desc())
        .first()
    )


def _reuse_or_reject(existing):
    if existing is None:
        return None
    if existing.status == "pending":
        raise ValidationError("A verification request is already under review")
    return existing


@verification_bp.post("/individual")
@login_required
def create_individual():
    user = current_user
    if user.individual_verified:
        raise ValidationError("Your account is already verified")

    data = request.get_json(silent=True) or {}
    full_name = (data.get("fullName") or "").strip()
    doc_type = (data.get("idDocumentType") or "").strip().lower()
    doc_number = (data.get("idDocumentNumber") or "").strip()
    if not full_name or not doc_number:
        raise ValidationError("fullName and idDocumentNumber are required")
    if doc_type not in ID_DOCUMENT_TYPES:
        raise ValidationError("idDocumentType must be one of " + ", ".join(ID_DOCUMENT_TYPES))
    days = _duration(data)

    req = _reuse_or_reject(_open_request(IndividualVerificationRequest, user.id))
    if req is None:
        req = IndividualVerificationRequest(user_id=user.id)
        db.session.add(req)
    req.full_name = full_name[:140]
    req.id_document_type = doc_type
    req.id_document_number = doc_number[:64]
    req.duration_days = days
    req.updated_at = datetime.utcnow()
    db.session.commit()

    current_app.logger.info("individual verification request %s awaiting payment (user %s)", req.id, user.id)
    return jsonify({"success": True, "data": req.to_dict()}), 201


@verification_bp.post("/business")
@login_required
def create_business():
    user = current_user
    if user.business_verification_status == "approved":
        raise ValidationError("Your business is already verified")

    data = request.get_json(silent=True) or {}
    business_name = (data.get("businessName") or "").strip()
    if not business_name:
        raise ValidationError("businessName is required")
    days = _duration(data)

    req = _reuse_or_reject(_open_request(BusinessVerificationRequest, user.id))
    if req is None:
        req = BusinessVerificationRequest(user_id=user.id)
        db.session.add(req)
    req.business_name = business_name[:200]
    req.business_category = (data.get("businessCategory") or "").strip()[:64] or None
    req.registration_number = (data.get("registrationNumber") or "").strip()[:64] or None
    req.duration_days = days
    req.updated_at = datetime.utcnow()
    db.session.commit()

    current_app.logger.info("business verification request %s awaiting payment (user %s)", req.id, user.id)
    return jsonify({"success": True, "data": req.to_dict()}), 201


@verification_bp.get("/status")
@login_required
def verification_status():
    user = current_user

    def _latest(model):
        row = model.query.filter_by(user_id=user.id).order_by(model.id.desc()).first()
        return row.to_dict() if row else None

    return jsonify({
        "success": True,
        "data": {
            "individualVerified": bool(user.individual_verified),
            "businessVerificationStatus": user.business_verification_status,
            "individual": _latest(IndividualVerificationRequest),
            "business": _latest(BusinessVerificationRequest),
        },
    }), 200
