"""Ad promotion lifecycle: activation after payment and expiry cleanup."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from flask import current_app
from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models import Ad, AdPromotion, User
from app.models.ad import PROMOTION_TYPES

# promotion_type -> (flag column, until column) pairs; bump_up rides on the sticky slot
_FLAG_FIELDS = {
    "featured": (("is_featured", "featured_until"),),
    "urgent": (("is_urgent", "urgent_until"),),
    "sticky": (("is_sticky", "sticky_until"), ("is_bumped", "bump_expires_at")),
    "bump_up": (("is_sticky", "sticky_until"), ("is_bumped", "bump_expires_at")),
}


def activate_promotion(
    ad: Ad,
    *,
    user: User,
    promotion_type: str,
    duration_days: int,
    price_paid: float,
    payment_reference: str,
    payment_method: str = "online",
    now: Optional[datetime] = None,
) -> AdPromotion:
    """Replace any active promotion on ``ad`` with a new one.

    Stages changes on the session without committing so the caller can keep
    them in the same transaction as the payment status change.
    """
    if promotion_type not in PROMOTION_TYPES:
        raise ValueError(f"unknown promotion type {promotion_type!r}")

    now = now or datetime.utcnow()
    expires_at = now + timedelta(days=int(duration_days))

    for previous in AdPromotion.query.filter_by(ad_id=ad.id, is_active=True).all():
        previous.is_active = False
        _clear_flags(ad, previous.promotion_type)

    promo = AdPromotion(
        ad_id=ad.id,
        user_id=user.id,
        promotion_type=promotion_type,
        duration_days=int(duration_days),
        price_paid=float(price_paid or 0.0),
        account_type=user.promotion_account_type(),
        payment_reference=payment_reference,
        payment_method=payment_method,
        starts_at=now,
        expires_at=expires_at,
        is_active=True,
    )
    db.session.add(promo)

    for flag, until in _FLAG_FIELDS[promotion_type]:
        setattr(ad, flag, True)
        setattr(ad, until, expires_at)
    ad.promoted_at = now
    db.session.add(ad)

    current_app.logger.info("ad %s promoted as %s until %s", ad.id, promotion_type, expires_at.isoformat())
    return promo


def _clear_flags(ad: Ad, promotion_type: str) -> None:
    for flag, until in _FLAG_FIELDS.get(promotion_type, ()):
        setattr(ad, flag, False)
        setattr(ad, until, None)


def cleanup_expired_promotions(*, now: Optional[datetime] = None, limit: int = 500) -> dict:
    """Deactivate expired promotions and clear their flags on the ads.

    Each promotion commits on its own so one bad row does not block the rest.
    """
    now = now or datetime.utcnow()
    expired = (
        AdPromotion.query
        .filter(AdPromotion.is_active.is_(True), AdPromotion.expires_at < now)
        .order_by(AdPromotion.id.asc())
        .limit(int(limit))
        .all()
    )

    deactivated = 0
    failed = 0
    for promo in expired:
        promo_id = promo.id
        try:
            promo.is_active = False
            ad = db.session.get(Ad, promo.ad_id)
            if ad is not None:
                _clear_flags(ad, promo.promotion_type)
            db.session.commit()
            deactivated += 1
        except SQLAlchemyError:
            db.session.rollback()
            failed += 1
            current_app.logger.exception("failed to deactivate promotion %s", promo_id)

    if deactivated:
        current_app.logger.info("deactivated %d expired promotions", deactivated)
    cleared = clear_stale_flags(now=now, limit=limit)
    return {"checked": len(expired), "deactivated": deactivated, "failed": failed, "flagsCleared": cleared}


def clear_stale_flags(*, now: Optional[datetime] = None, limit: int = 500) -> int:
    """Clear ad promotion flags whose until-date has passed.

    Catches flags with no active promotion row behind them.
    """
    now = now or datetime.utcnow()
    ads = (
        Ad.query
        .filter(or_(
            and_(Ad.is_featured.is_(True), Ad.featured_until < now),
            and_(Ad.is_urgent.is_(True), Ad.urgent_until < now),
            and_(Ad.is_sticky.is_(True), Ad.sticky_until < now),
        ))
        .order_by(Ad.id.asc())
        .limit(int(limit))
        .all()
    )
    for ad in ads:
        if ad.is_featured and ad.featured_until and ad.featured_until < now:
            _clear_flags(ad, "featured")
        if ad.is_urgent and ad.urgent_until and ad.urgent_until < now:
            _clear_flags(ad, "urgent")
        if ad.is_sticky and ad.sticky_until and ad.sticky_until < now:
            _clear_flags(ad, "sticky")
    if ads:
        db.session.commit()
        current_app.logger.info("cleared stale promotion flags on %d ads", len(ads))
    return len(ads)
