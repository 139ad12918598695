from datetime import datetime

from app.extensions import db

PROMOTION_TYPES = ("featured", "urgent", "sticky", "bump_up")


class Ad(db.Model):
    __tablename__ = "ads"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    title = db.Column(db.String(200), nullable=False)
    price = db.Column(db.Float, nullable=False, default=0.0)
    status = db.Column(db.String(32), nullable=False, default="approved")

    is_featured = db.Column(db.Boolean, nullable=False, default=False)
    featured_until = db.Column(db.DateTime, nullable=True)
    is_urgent = db.Column(db.Boolean, nullable=False, default=False)
    urgent_until = db.Column(db.DateTime, nullable=True)
    is_sticky = db.Column(db.Boolean, nullable=False, default=False)
    sticky_until = db.Column(db.DateTime, nullable=True)
    is_bumped = db.Column(db.Boolean, nullable=False, default=False)
    bump_expires_at = db.Column(db.DateTime, nullable=True)
    promoted_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        def _iso(v):
            return v.isoformat() if v else None

        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "price": float(self.price or 0.0),
            "status": self.status,
            "isFeatured": bool(self.is_featured),
            "featuredUntil": _iso(self.featured_until),
            "isUrgent": bool(self.is_urgent),
            "urgentUntil": _iso(self.urgent_until),
            "isSticky": bool(self.is_sticky),
            "stickyUntil": _iso(self.sticky_until),
            "isBumped": bool(self.is_bumped),
            "bumpExpiresAt": _iso(self.bump_expires_at),
            "promotedAt": _iso(self.promoted_at),
        }


class AdPromotion(db.Model):
    __tablename__ = "ad_promotions"

    id = db.Column(db.Integer, primary_key=True)
    ad_id = db.Column(db.Integer, db.ForeignKey("ads.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    promotion_type = db.Column(db.String(32), nullable=False)  # featured|urgent|sticky|bump_up
    duration_days = db.Column(db.Integer, nullable=False)
    price_paid = db.Column(db.Float, nullable=False, default=0.0)
    account_type = db.Column(db.String(32), nullable=False, default="individual")

    payment_reference = db.Column(db.String(128), nullable=True)
    payment_method = db.Column(db.String(32), nullable=False, default="online")

    starts_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "adId": self.ad_id,
            "userId": self.user_id,
            "promotionType": self.promotion_type,
            "durationDays": self.duration_days,
            "pricePaid": float(self.price_paid or 0.0),
            "accountType": self.account_type,
            "paymentReference": self.payment_reference,
            "startsAt": self.starts_at.isoformat() if self.starts_at else None,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "isActive": bool(self.is_active),
        }
