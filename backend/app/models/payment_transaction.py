import json
from datetime import datetime

from app.extensions import db

GATEWAYS = ("khalti", "esewa")
PAYMENT_TYPES = ("ad_promotion", "individual_verification", "business_verification")
TERMINAL_STATUSES = ("verified", "failed", "canceled")


class PaymentTransaction(db.Model):
    __tablename__ = "payment_transactions"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    order_id = db.Column(db.String(128), nullable=False, unique=True, index=True)
    gateway = db.Column(db.String(16), nullable=False)  # khalti|esewa

    # NPR; paisa only exists inside the Khalti client
    amount = db.Column(db.Float, nullable=False, default=0.0)

    payment_type = db.Column(db.String(32), nullable=False)
    related_id = db.Column(db.Integer, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="pending")  # pending|verified|failed|canceled

    meta = db.Column("metadata", db.Text, nullable=True)  # JSON string
    payment_url = db.Column(db.Text, nullable=True)
    reference_id = db.Column(db.String(128), nullable=True)
    failure_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=True)
    verified_at = db.Column(db.DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def meta_dict(self) -> dict:
        raw = (self.meta or "").strip()
        if not raw:
            return {}
        try:
            d = json.loads(raw)
        except ValueError:
            return {}
        return d if isinstance(d, dict) else {}

    def merge_meta(self, **values) -> None:
        d = self.meta_dict()
        d.update(values)
        self.meta = json.dumps(d, default=str)

    def to_dict(self):
        return {
            "id": self.id,
            "transactionId": self.order_id,
            "gateway": self.gateway,
            "amount": float(self.amount or 0.0),
            "paymentType": self.payment_type,
            "relatedId": self.related_id,
            "status": self.status,
            "referenceId": self.reference_id,
            "failureReason": self.failure_reason,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "verifiedAt": self.verified_at.isoformat() if self.verified_at else None,
        }
