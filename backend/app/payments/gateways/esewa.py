"""eSewa ePay v2 client.

https://developer.esewa.com.np/pages/Epay

eSewa takes a signed form POST instead of an API call, so initiation only
builds the form; the browser is sent to our redirect page which submits it.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests

from app.errors import GatewayError
from app.payments.gateways.types import (
    CANCELED,
    COMPLETED,
    EXPIRED,
    FAILED,
    PENDING,
    REFUNDED,
    EsewaVerifyResult,
    InitiateResult,
    format_amount,
)

ESEWA_SANDBOX_URL = "https://rc-epay.esewa.com.np"
ESEWA_PRODUCTION_URL = "https://epay.esewa.com.np"
ESEWA_SANDBOX_STATUS_URL = "https://rc.esewa.com.np"
ESEWA_PRODUCTION_STATUS_URL = "https://esewa.com.np"

SIGNED_FIELDS = "total_amount,transaction_uuid,product_code"

_STATUS_MAP = {
    "COMPLETE": COMPLETED,
    "PENDING": PENDING,
    "AMBIGUOUS": PENDING,
    "FULL_REFUND": REFUNDED,
    "PARTIAL_REFUND": REFUNDED,
    "NOT_FOUND": EXPIRED,
    "CANCELED": CANCELED,
}


def parse_amount(value: Any) -> float:
    try:
        return float(str(value).replace(",", ""))
    except (TypeError, ValueError):
        return 0.0


class EsewaGateway:
    name = "esewa"

    def __init__(
        self,
        merchant_code: str,
        secret_key: str,
        *,
        form_url: str,
        status_url: str,
        redirect_url: str,
        timeout: float = 20,
    ):
        self.merchant_code = merchant_code
        self.secret_key = secret_key or ""
        self.form_url = form_url
        self.status_url = status_url.rstrip("/")
        self.redirect_url = redirect_url
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> "EsewaGateway":
        production = (config.get("ESEWA_ENV") or "").strip().lower() == "production"
        base = ESEWA_PRODUCTION_URL if production else ESEWA_SANDBOX_URL
        return cls(
            config.get("ESEWA_MERCHANT_CODE", "EPAYTEST"),
            config.get("ESEWA_SECRET_KEY", ""),
            form_url=f"{base}/api/epay/main/v2/form",
            status_url=ESEWA_PRODUCTION_STATUS_URL if production else ESEWA_SANDBOX_STATUS_URL,
            redirect_url=f"{config.get('APP_URL', '').rstrip('/')}/api/payments/esewa/redirect",
            timeout=float(config.get("GATEWAY_TIMEOUT", 20)),
        )

    def _sign_message(self, message: str) -> str:
        digest = hmac.new(self.secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
        return base64.b64encode(digest).decode("ascii")

    def sign(self, total_amount: str, transaction_uuid: str) -> str:
        return self._sign_message(
            f"total_amount={total_amount},transaction_uuid={transaction_uuid},product_code={self.merchant_code}"
        )

    def build_form(self, *, order_id: str, amount: float, return_url: str) -> Dict[str, str]:
        total = format_amount(amount)
        return {
            "amount": total,
            "tax_amount": "0",
            "total_amount": total,
            "transaction_uuid": order_id,
            "product_code": self.merchant_code,
            "product_service_charge": "0",
            "product_delivery_charge": "0",
            "success_url": return_url,
            "failure_url": return_url,
            "signed_field_names": SIGNED_FIELDS,
            "signature": self.sign(total, order_id),
        }

    def initiate(self, *, order_id: str, order_name: str, amount: float, return_url: str, customer=None) -> InitiateResult:
        if not self.secret_key:
            raise GatewayError("eSewa secret key not configured")

        form = self.build_form(order_id=order_id, amount=amount, return_url=return_url)
        query = urlencode({**form, "formUrl": self.form_url})
        return InitiateResult(
            gateway=self.name,
            order_id=order_id,
            payment_url=f"{self.redirect_url}?{query}",
            form=form,
        )

    @staticmethod
    def decode_callback(encoded: Optional[str]) -> Optional[Dict[str, Any]]:
        """Decode the base64 JSON blob eSewa appends to the success URL."""
        if not encoded:
            return None
        try:
            # urlencoded blobs sometimes lose their padding
            padded = encoded + "=" * (-len(encoded) % 4)
            decoded = base64.b64decode(padded).decode("utf-8")
            data = json.loads(decoded)
        except (binascii.Error, UnicodeDecodeError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    def verify_callback_signature(self, data: Dict[str, Any]) -> bool:
        fields = [f.strip() for f in str(data.get("signed_field_names") or "").split(",") if f.strip()]
        signature = data.get("signature")
        if not fields or not signature or not self.secret_key:
            return False
        message = ",".join(f"{f}={data.get(f, '')}" for f in fields)
        return hmac.compare_digest(self._sign_message(message), str(signature))

    def result_from_callback(self, data: Dict[str, Any]) -> EsewaVerifyResult:
        return EsewaVerifyResult(
            status=_STATUS_MAP.get(str(data.get("status") or ""), FAILED),
            amount=parse_amount(data.get("total_amount")),
            transaction_code=data.get("transaction_code"),
            raw=data,
        )

    def verify(self, *, order_id: str, amount: float) -> EsewaVerifyResult:
        """Ask the status API about a transaction. Never raises."""
        params = {
            "product_code": self.merchant_code,
            "total_amount": format_amount(amount),
            "transaction_uuid": order_id,
        }
        try:
            r = requests.get(f"{self.status_url}/api/epay/transaction/status/", params=params, timeout=self.timeout)
        except requests.RequestException as e:
            return EsewaVerifyResult(status=FAILED, error=f"eSewa unreachable: {e}")

        try:
            j = r.json() if r.content else {}
        except ValueError:
            j = {}
        if not isinstance(j, dict):
            j = {}
        if not (200 <= r.status_code < 300):
            return EsewaVerifyResult(status=FAILED, error=j.get("message") or j.get("error_message") or "Verification failed", raw=j)

        return EsewaVerifyResult(
            status=_STATUS_MAP.get(str(j.get("status") or ""), FAILED),
            amount=parse_amount(j.get("total_amount")),
            ref_id=j.get("ref_id"),
            raw=j,
        )
