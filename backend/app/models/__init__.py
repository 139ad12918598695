from .user import User  # noqa: F401
from .ad import Ad, AdPromotion  # noqa: F401
from .payment_transaction import PaymentTransaction  # noqa: F401
from .verification import IndividualVerificationRequest, BusinessVerificationRequest  # noqa: F401
from .support import SupportTicket, SupportMessage  # noqa: F401
from .notification import Notification  # noqa: F401
from .audit_log import AuditLog  # noqa: F401
