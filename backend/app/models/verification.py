from datetime import datetime

from app.extensions import db

# pending_payment -> pending (paid, waiting for editor review) -> approved|rejected
VERIFICATION_STATUSES = ("pending_payment", "pending", "approved", "rejected")
# Length of the verified badge an editor grants on approval
VERIFICATION_DURATIONS = (30, 90, 180, 365)
DEFAULT_VERIFICATION_DURATION = 365


class _VerificationRequestMixin:
    id = db.Column(db.Integer, primary_key=True)

    status = db.Column(db.String(32), nullable=False, default="pending_payment")
    payment_status = db.Column(db.String(16), nullable=False, default="unpaid")  # unpaid|paid|free
    payment_reference = db.Column(db.String(128), nullable=True)

    duration_days = db.Column(db.Integer, nullable=True)
    note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def _base_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "status": self.status,
            "paymentStatus": self.payment_status,
            "paymentReference": self.payment_reference,
            "durationDays": self.duration_days,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class IndividualVerificationRequest(_VerificationRequestMixin, db.Model):
    __tablename__ = "individual_verification_requests"

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    full_name = db.Column(db.String(140), nullable=False)
    id_document_type = db.Column(db.String(32), nullable=False)  # citizenship|passport|driving_license
    id_document_number = db.Column(db.String(64), nullable=False)

    def to_dict(self):
        d = self._base_dict()
        d.update({
            "kind": "individual",
            "fullName": self.full_name,
            "idDocumentType": self.id_document_type,
        })
        return d


class BusinessVerificationRequest(_VerificationRequestMixin, db.Model):
    __tablename__ = "business_verification_requests"

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    business_name = db.Column(db.String(200), nullable=False)
    business_category = db.Column(db.String(64), nullable=True)
    registration_number = db.Column(db.String(64), nullable=True)

    def to_dict(self):
        d = self._base_dict()
        d.update({
            "kind": "business",
            "businessName": self.business_name,
            "businessCategory": self.business_category,
        })
        return d
