"""Payment initiation and reconciliation.

A transaction is created ``pending`` and moves at most once, to ``verified``,
``failed`` or ``canceled``. Every move is a conditional UPDATE guarded on the
row still being ``pending``; only the writer that wins it runs the
post-payment side effects, so duplicate callbacks and polling collapse into
a single application.
"""

from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from flask import current_app

from app.errors import ForbiddenError, GatewayError, NotFoundError, ValidationError
from app.extensions import db
from app.models import (
    Ad,
    AuditLog,
    BusinessVerificationRequest,
    IndividualVerificationRequest,
    Notification,
    PaymentTransaction,
    User,
)
from app.models.ad import PROMOTION_TYPES
from app.models.payment_transaction import GATEWAYS, PAYMENT_TYPES
from app.payments.gateways.esewa import EsewaGateway
from app.payments.gateways.registry import get_gateway
from app.payments.gateways.types import (
    CANCELED,
    COMPLETED,
    PENDING,
    EsewaVerifyResult,
    KhaltiVerifyResult,
    VerifyResult,
    paisa_to_npr,
)
from app.payments.side_effects import apply_side_effects
from app.utils.notify import push_notifications

AMOUNT_TOLERANCE = 0.01

_ALPHABET = string.ascii_lowercase + string.digits

_ORDER_PREFIXES = {
    "ad_promotion": "AD",
    "individual_verification": "IND",
    "business_verification": "BUS",
}


@dataclass
class Reconciliation:
    transaction: PaymentTransaction
    gateway_status: str
    error: Optional[str] = None
    applied: bool = False
    notifications: List[Notification] = field(default_factory=list)

    @property
    def verified(self) -> bool:
        return self.transaction.status == "verified"

    @property
    def error_code(self) -> Optional[str]:
        if self.transaction.status == "canceled":
            return "canceled"
        if self.transaction.status == "failed" and self.error:
            return "gateway_error"
        return None


def generate_order_id(payment_type: str) -> str:
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(6))
    return f"TB_{_ORDER_PREFIXES[payment_type]}_{millis}_{suffix}"


def _parse_amount(amount: Any, minimum: float) -> float:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        value = 0.0
    if value != value or value < minimum:  # NaN fails the comparison too
        raise ValidationError(f"Minimum amount is NPR {minimum:g}")
    return round(value, 2)


def _parse_related_id(related_id: Any) -> Optional[int]:
    if related_id in (None, ""):
        return None
    try:
        return int(related_id)
    except (TypeError, ValueError):
        raise ValidationError("relatedId must be an integer")


def _check_target(actor: User, payment_type: str, related_id: Optional[int], metadata: Dict[str, Any]) -> None:
    if payment_type == "ad_promotion":
        if related_id is None:
            raise ValidationError("relatedId (ad id) is required for ad promotion")
        ad = db.session.get(Ad, related_id)
        if ad is None:
            raise NotFoundError("Ad not found")
        if ad.user_id != actor.id:
            raise ForbiddenError("You can only promote your own ads")
        if metadata.get("promotionType") not in PROMOTION_TYPES:
            raise ValidationError("metadata.promotionType must be one of " + ", ".join(PROMOTION_TYPES))
        try:
            days = int(metadata.get("durationDays"))
        except (TypeError, ValueError):
            days = 0
        if days <= 0:
            raise ValidationError("metadata.durationDays must be a positive integer")
        metadata["durationDays"] = days
        return

    model = IndividualVerificationRequest if payment_type == "individual_verification" else BusinessVerificationRequest
    if related_id is None:
        raise ValidationError("relatedId (verification request id) is required")
    req = db.session.get(model, related_id)
    if req is None or req.user_id != actor.id:
        raise NotFoundError("Verification request not found")
    if req.status != "pending_payment":
        raise ValidationError("Verification request is not awaiting payment")
    if req.duration_days:
        metadata["durationDays"] = req.duration_days


def _return_url(config, gateway: str, order_id: str, payment_type: str, related_id: Optional[int]) -> str:
    params = {"gateway": gateway, "orderId": order_id, "paymentType": payment_type}
    if related_id is not None:
        params["relatedId"] = related_id
    return f"{config['APP_URL'].rstrip('/')}/api/payments/callback?{urlencode(params)}"


def initiate(
    actor: User,
    *,
    gateway: str,
    amount: Any,
    payment_type: str,
    related_id: Any = None,
    metadata: Optional[Dict[str, Any]] = None,
    order_name: Optional[str] = None,
    config,
) -> Dict[str, Any]:
    """Open a gateway session for a new pending transaction.

    All validation happens before any row is written.
    """
    gateway = (gateway or "").strip().lower()
    if gateway not in GATEWAYS:
        raise ValidationError('Invalid payment gateway. Use "khalti" or "esewa"')
    amount = _parse_amount(amount, float(config.get("PAYMENT_MIN_AMOUNT", 10)))
    if payment_type not in PAYMENT_TYPES:
        raise ValidationError("Invalid payment type")
    related_id = _parse_related_id(related_id)
    metadata = dict(metadata or {})
    _check_target(actor, payment_type, related_id, metadata)

    client = get_gateway(gateway, config)
    order_id = generate_order_id(payment_type)
    order_name = (order_name or "").strip() or f"Thulobazaar {payment_type.replace('_', ' ')}"
    now = datetime.utcnow()

    tx = PaymentTransaction(
        user_id=actor.id,
        order_id=order_id,
        gateway=gateway,
        amount=amount,
        payment_type=payment_type,
        related_id=related_id,
        status="pending",
        created_at=now,
        updated_at=now,
    )
    tx.merge_meta(**metadata, orderName=order_name, initiatedAt=now.isoformat())
    db.session.add(tx)
    db.session.flush()
    AuditLog.record(
        "payment_init", actor_id=actor.id, target_type="payment_transaction", target_id=tx.id,
        orderId=order_id, gateway=gateway, amount=amount, paymentType=payment_type,
    )
    db.session.commit()

    try:
        result = client.initiate(
            order_id=order_id,
            order_name=order_name,
            amount=amount,
            return_url=_return_url(config, gateway, order_id, payment_type, related_id),
            customer={"name": actor.full_name, "email": actor.email, "phone": actor.phone or ""},
        )
    except GatewayError as e:
        tx.status = "failed"
        tx.failure_reason = e.message
        tx.updated_at = datetime.utcnow()
        AuditLog.record("payment_failed", actor_id=actor.id, target_type="payment_transaction", target_id=tx.id, reason=e.message)
        db.session.commit()
        current_app.logger.warning("payment %s initiation via %s failed: %s", order_id, gateway, e.message)
        raise

    tx.payment_url = result.payment_url
    tx.merge_meta(pidx=result.pidx, expiresAt=result.expires_at)
    tx.updated_at = datetime.utcnow()
    db.session.commit()

    current_app.logger.info("payment initiated: %s via %s, amount NPR %s", order_id, gateway, amount)
    return {
        "transactionId": order_id,
        "paymentUrl": result.payment_url,
        "gateway": gateway,
        "amount": amount,
        "pidx": result.pidx,
        "expiresAt": result.expires_at,
    }


def get_transaction(order_id: str) -> PaymentTransaction:
    tx = PaymentTransaction.query.filter_by(order_id=(order_id or "").strip()).first()
    if tx is None:
        raise NotFoundError("Transaction not found")
    return tx


def _gateway_result(tx: PaymentTransaction, params: Dict[str, Any], config) -> VerifyResult:
    client = get_gateway(tx.gateway, config)

    if isinstance(client, EsewaGateway):
        data = client.decode_callback(params.get("data"))
        if (
            data
            and str(data.get("status")) == "COMPLETE"
            and data.get("transaction_uuid") == tx.order_id
            and client.verify_callback_signature(data)
        ):
            return client.result_from_callback(data)
        if data:
            current_app.logger.info("esewa callback for %s not trusted as-is; checking status API", tx.order_id)
        return client.verify(order_id=tx.order_id, amount=float(tx.amount or 0.0))

    # Only the session opened for this order may settle it; a lookup response
    # does not name the order it belongs to.
    pidx = tx.meta_dict().get("pidx")
    sent = params.get("pidx")
    if sent and sent != pidx:
        current_app.logger.warning("khalti callback for %s carried a foreign pidx; using the stored one", tx.order_id)
    elif sent and params.get("status") == "User canceled":
        return KhaltiVerifyResult(status=CANCELED, pidx=pidx, error="User canceled payment")
    return client.verify(pidx=pidx)


def _reference_of(result: VerifyResult) -> Optional[str]:
    if result.gateway == "khalti":
        return result.transaction_id or result.pidx
    if result.gateway == "esewa":
        return result.ref_id or result.transaction_code
    return None


def _transition(tx: PaymentTransaction, status: str, **values) -> bool:
    """Move ``tx`` out of pending. False means another writer got there first."""
    now = datetime.utcnow()
    values.update(status=status, updated_at=now)
    if status == "verified":
        values["verified_at"] = now
    updated = (
        PaymentTransaction.query
        .filter(PaymentTransaction.id == tx.id, PaymentTransaction.status == "pending")
        .update(values, synchronize_session=False)
    )
    db.session.refresh(tx)
    return updated == 1


def _callback_meta(tx: PaymentTransaction, params: Dict[str, Any]) -> Dict[str, Any]:
    meta: Dict[str, Any] = {}
    if tx.gateway == "khalti":
        if params.get("transaction_id"):
            meta["khaltiTxnId"] = params.get("transaction_id")
        if params.get("amount"):
            try:
                meta["callbackAmount"] = paisa_to_npr(params["amount"])
            except ArithmeticError:
                pass
    return meta


def reconcile(tx: PaymentTransaction, params: Dict[str, Any], *, config, source: str = "callback") -> Reconciliation:
    """Settle ``tx`` against what the gateway reports."""
    if tx.status == "verified":
        return Reconciliation(tx, gateway_status=COMPLETED)
    if tx.is_terminal:
        return Reconciliation(tx, gateway_status=tx.status, error=tx.failure_reason)

    result = _gateway_result(tx, params, config)
    status, error = result.status, result.error

    if status == COMPLETED and abs(float(result.amount or 0.0) - float(tx.amount or 0.0)) > AMOUNT_TOLERANCE:
        current_app.logger.warning(
            "payment %s amount mismatch: gateway %s, expected %s", tx.order_id, result.amount, tx.amount
        )
        status, error = "failed", "Amount mismatch"

    if status == PENDING:
        tx.updated_at = datetime.utcnow()
        db.session.commit()
        return Reconciliation(tx, gateway_status=PENDING, error=error)

    if status == COMPLETED:
        if not _transition(tx, "verified", reference_id=_reference_of(result)):
            db.session.rollback()
            db.session.refresh(tx)
            return Reconciliation(tx, gateway_status=COMPLETED)

        tx.merge_meta(
            verifiedAt=tx.verified_at.isoformat(),
            verifiedVia=source,
            gatewayResponse=result.raw,
            **_callback_meta(tx, params),
        )
        notes = apply_side_effects(tx)
        AuditLog.record(
            "payment_verified", actor_id=tx.user_id, target_type="payment_transaction", target_id=tx.id,
            orderId=tx.order_id, gateway=tx.gateway, referenceId=tx.reference_id, source=source,
        )
        db.session.commit()
        push_notifications(notes)
        current_app.logger.info("payment verified: %s via %s (%s)", tx.order_id, tx.gateway, source)
        return Reconciliation(tx, gateway_status=COMPLETED, applied=True, notifications=notes)

    final = "canceled" if status == CANCELED else "failed"
    reason = error or f"Payment {status}"
    if _transition(tx, final, failure_reason=reason):
        AuditLog.record(
            "payment_failed", actor_id=tx.user_id, target_type="payment_transaction", target_id=tx.id,
            orderId=tx.order_id, status=final, reason=reason,
        )
        db.session.commit()
        current_app.logger.info("payment %s marked %s: %s", tx.order_id, final, reason)
    else:
        db.session.rollback()
        db.session.refresh(tx)
    return Reconciliation(tx, gateway_status=status, error=error)


def callback(gateway: str, order_id: str, params: Dict[str, Any], *, config) -> Reconciliation:
    tx = get_transaction(order_id)
    if (gateway or "").strip().lower() != tx.gateway:
        raise ValidationError("Gateway does not match transaction")
    return reconcile(tx, params, config=config, source="callback")


def verify(actor: User, order_id: str, params: Dict[str, Any], *, config) -> Reconciliation:
    if not order_id:
        raise ValidationError("transactionId is required")
    tx = get_transaction(order_id)
    if tx.user_id != actor.id:
        raise NotFoundError("Transaction not found")
    return reconcile(tx, params, config=config, source="verify")


def status(actor: User, order_id: str) -> PaymentTransaction:
    tx = get_transaction(order_id)
    if tx.user_id != actor.id and not actor.is_staff:
        raise NotFoundError("Transaction not found")
    return tx


def history(actor: User, *, page: int = 1, limit: int = 10, status: Optional[str] = None, payment_type: Optional[str] = None) -> Dict[str, Any]:
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 10), 1), 50)

    q = PaymentTransaction.query.filter_by(user_id=actor.id)
    if status:
        q = q.filter(PaymentTransaction.status == status)
    if payment_type:
        q = q.filter(PaymentTransaction.payment_type == payment_type)

    total = q.count()
    rows = q.order_by(PaymentTransaction.created_at.desc(), PaymentTransaction.id.desc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "items": [r.to_dict() for r in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": (total + limit - 1) // limit,
        },
    }
