from datetime import datetime
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from app.extensions import db

STAFF_ROLES = ("editor", "super_admin", "root")


class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    full_name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    avatar = db.Column(db.String(512), nullable=True)

    password_hash = db.Column(db.String(255), nullable=False, default="")

    role = db.Column(db.String(32), nullable=False, default="user")  # user|editor|super_admin|root

    # Drives the account_type recorded on promotions
    account_type = db.Column(db.String(32), nullable=False, default="individual")
    individual_verified = db.Column(db.Boolean, nullable=False, default=False)
    business_verification_status = db.Column(db.String(32), nullable=True)  # pending|approved|rejected

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    @property
    def is_staff(self) -> bool:
        return (self.role or "user").strip().lower() in STAFF_ROLES

    def set_password(self, raw_password: str) -> None:
        self.password_hash = generate_password_hash(raw_password)

    def check_password(self, raw_password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, raw_password)

    def promotion_account_type(self) -> str:
        if self.business_verification_status == "approved":
            return "business"
        if self.individual_verified:
            return "individual_verified"
        return "individual"

    def to_public(self) -> dict:
        return {
            "id": self.id,
            "fullName": self.full_name,
            "avatar": self.avatar,
            "isStaff": self.is_staff,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "fullName": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role or "user",
            "isStaff": self.is_staff,
            "individualVerified": bool(self.individual_verified),
            "businessVerificationStatus": self.business_verification_status,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
