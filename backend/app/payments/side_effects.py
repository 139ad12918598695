"""Post-payment actions, run once per verified transaction.

Every handler stages its changes on the current session and returns the
notifications it queued; the reconciliation code owns the commit.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, List

from flask import current_app

from app.extensions import db
from app.models import (
    Ad,
    BusinessVerificationRequest,
    IndividualVerificationRequest,
    Notification,
    PaymentTransaction,
    User,
)
from app.services.promotions import activate_promotion
from app.utils.notify import notify_user


def _promote_ad(tx: PaymentTransaction) -> List[Notification]:
    meta = tx.meta_dict()
    promotion_type = meta.get("promotionType")
    duration_days = meta.get("durationDays")

    ad = db.session.get(Ad, tx.related_id) if tx.related_id else None
    user = db.session.get(User, tx.user_id)
    if ad is None or user is None:
        current_app.logger.error("ad promotion payment %s has no ad/user (ad=%s)", tx.order_id, tx.related_id)
        return []
    if not promotion_type or not duration_days:
        current_app.logger.error("ad promotion payment %s missing promotion metadata", tx.order_id)
        return []

    promo = activate_promotion(
        ad,
        user=user,
        promotion_type=str(promotion_type),
        duration_days=int(duration_days),
        price_paid=float(tx.amount or 0.0),
        payment_reference=str(tx.id),
    )
    return [
        notify_user(
            tx.user_id,
            "Ad promoted",
            f'Your ad "{ad.title}" is now {promotion_type.replace("_", " ")} for {int(duration_days)} days.',
            meta={"adId": ad.id, "orderId": tx.order_id, "expiresAt": promo.expires_at},
        )
    ]


def _activate_verification(model, label: str) -> Callable[[PaymentTransaction], List[Notification]]:
    def handler(tx: PaymentTransaction) -> List[Notification]:
        req = db.session.get(model, tx.related_id) if tx.related_id else None
        if req is None:
            current_app.logger.error("%s payment %s has no request %s", label, tx.order_id, tx.related_id)
            return []
        if req.status != "pending_payment":
            current_app.logger.warning(
                "%s request %s is %s, not awaiting payment; left unchanged", label, req.id, req.status
            )
            return []

        req.status = "pending"
        req.payment_status = "paid"
        req.payment_reference = tx.order_id
        req.updated_at = datetime.utcnow()
        db.session.add(req)

        days = req.duration_days or tx.meta_dict().get("durationDays")
        current_app.logger.info("%s request %s activated after payment %s", label, req.id, tx.order_id)
        return [
            notify_user(
                tx.user_id,
                "Verification submitted",
                f"Payment received. Your {label} request for {days} days is now waiting for review."
                if days else f"Payment received. Your {label} request is now waiting for review.",
                meta={"requestId": req.id, "orderId": tx.order_id, "durationDays": days},
            )
        ]

    return handler


_HANDLERS: Dict[str, Callable[[PaymentTransaction], List[Notification]]] = {
    "ad_promotion": _promote_ad,
    "individual_verification": _activate_verification(IndividualVerificationRequest, "individual verification"),
    "business_verification": _activate_verification(BusinessVerificationRequest, "business verification"),
}


def apply_side_effects(tx: PaymentTransaction) -> List[Notification]:
    handler = _HANDLERS.get(tx.payment_type)
    if handler is None:
        current_app.logger.error("no post-payment handler for %s (%s)", tx.payment_type, tx.order_id)
        return []
    return handler(tx)
