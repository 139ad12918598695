from __future__ import annotations

from urllib.parse import urlencode

from flask import Blueprint, current_app, jsonify, redirect, render_template_string, request
from flask_login import current_user, login_required

from app.errors import ApiError, NotFoundError, ValidationError
from app.extensions import db
from app.payments import service
from app.payments.gateways.esewa import EsewaGateway
from app.payments.gateways.registry import available_gateways, get_gateway

payments_bp = Blueprint("payments_bp", __name__, url_prefix="/api/payments")

_ESEWA_FORM = """<!doctype html>
<html>
  <head><meta charset="utf-8"><title>Redirecting to eSewa</title></head>
  <body onload="document.forms[0].submit()">
    <p>Redirecting to eSewa&hellip;</p>
    <form method="POST" action="{{ action }}">
      {% for name, value in fields %}<input type="hidden" name="{{ name }}" value="{{ value }}">
      {% endfor %}<noscript><button type="submit">Continue to eSewa</button></noscript>
    </form>
  </body>
</html>
"""


def _actor():
    return current_user._get_current_object()


def _frontend(path: str, **params) -> str:
    base = current_app.config["FRONTEND_URL"].rstrip("/")
    query = urlencode({k: v for k, v in params.items() if v not in (None, "")})
    return f"{base}/en/payment/{path}" + (f"?{query}" if query else "")


def _failure(error: str, **params):
    return redirect(_frontend("failure", error=error, **params))


def _callback_params() -> dict:
    params = request.args.to_dict()
    # eSewa appends "?data=..." to a success_url that already carries a query string
    for key, value in list(params.items()):
        if "?data=" in value:
            params[key], _, blob = value.partition("?data=")
            params.setdefault("data", blob)
    return params


@payments_bp.get("/gateways")
def list_gateways():
    return jsonify({"success": True, "data": available_gateways(current_app.config)}), 200


@payments_bp.post("/initiate")
@login_required
def initiate_payment():
    data = request.get_json(silent=True) or {}
    metadata = data.get("metadata") or {}
    if not isinstance(metadata, dict):
        raise ValidationError("metadata must be an object")

    result = service.initiate(
        _actor(),
        gateway=data.get("gateway"),
        amount=data.get("amount"),
        payment_type=data.get("paymentType"),
        related_id=data.get("relatedId"),
        metadata=metadata,
        order_name=data.get("orderName") or data.get("productName"),
        config=current_app.config,
    )
    return jsonify({"success": True, "data": result}), 200


@payments_bp.get("/callback")
def payment_callback():
    """Browser return from the gateway. Always answers with a redirect."""
    params = _callback_params()
    gateway = (params.get("gateway") or "").strip().lower()
    order_id = (params.get("orderId") or params.get("purchase_order_id") or "").strip()

    if gateway == "esewa" and not order_id:
        data = EsewaGateway.decode_callback(params.get("data"))
        order_id = str((data or {}).get("transaction_uuid") or "")
    if not order_id:
        return _failure("missing_order")

    try:
        outcome = service.callback(gateway, order_id, params, config=current_app.config)
    except NotFoundError:
        return _failure("transaction_not_found", orderId=order_id)
    except ValidationError:
        return _failure("invalid_gateway", orderId=order_id)
    except ApiError as e:
        db.session.rollback()
        current_app.logger.warning("payment callback for %s failed: %s", order_id, e.message)
        return _failure("gateway_error", orderId=order_id)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("payment callback for %s crashed", order_id)
        return _failure("internal_error", orderId=order_id)

    tx = outcome.transaction
    if outcome.verified:
        return redirect(_frontend(
            "success",
            orderId=tx.order_id,
            gateway=tx.gateway,
            paymentType=tx.payment_type,
            relatedId=tx.related_id,
        ))
    if tx.status == "pending":
        return _failure("gateway_error", orderId=tx.order_id, status="pending")
    return _failure(outcome.error_code or "gateway_error", orderId=tx.order_id, status=tx.status)


@payments_bp.post("/verify")
@login_required
def verify_payment():
    data = request.get_json(silent=True) or {}
    order_id = (data.get("transactionId") or data.get("orderId") or "").strip()
    params = {k: v for k, v in data.items() if k in ("pidx", "data", "status", "transaction_id", "amount")}

    outcome = service.verify(_actor(), order_id, params, config=current_app.config)
    tx = outcome.transaction
    return jsonify({
        "success": outcome.verified,
        "message": "Payment verified" if outcome.verified else (outcome.error or f"Payment {tx.status}"),
        "data": {
            **tx.to_dict(),
            "gatewayStatus": outcome.gateway_status,
        },
    }), 200


@payments_bp.get("/status/<order_id>")
@login_required
def payment_status(order_id: str):
    tx = service.status(_actor(), order_id)
    return jsonify({"success": True, "data": tx.to_dict()}), 200


@payments_bp.get("/history")
@login_required
def payment_history():
    out = service.history(
        _actor(),
        page=request.args.get("page", 1, type=int),
        limit=request.args.get("limit", 10, type=int),
        status=request.args.get("status") or None,
        payment_type=request.args.get("type") or None,
    )
    return jsonify({"success": True, "data": out["items"], "pagination": out["pagination"]}), 200


@payments_bp.get("/esewa/redirect")
def esewa_redirect():
    gateway = get_gateway("esewa", current_app.config)
    fields = request.args.to_dict()
    action = fields.pop("formUrl", "")
    if action != gateway.form_url:
        raise ValidationError("Invalid eSewa form URL")
    if not fields.get("transaction_uuid") or not fields.get("signature"):
        raise ValidationError("Missing eSewa form fields")
    return render_template_string(_ESEWA_FORM, action=action, fields=sorted(fields.items()))
