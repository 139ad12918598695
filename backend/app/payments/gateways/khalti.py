"""Khalti ePayment client.

https://docs.khalti.com/khalti-epayment/
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import requests

from app.errors import GatewayError
from app.payments.gateways.types import (
    CANCELED,
    COMPLETED,
    EXPIRED,
    FAILED,
    PENDING,
    REFUNDED,
    InitiateResult,
    KhaltiVerifyResult,
    npr_to_paisa,
    paisa_to_npr,
)

KHALTI_SANDBOX_URL = "https://dev.khalti.com/api/v2"
KHALTI_PRODUCTION_URL = "https://khalti.com/api/v2"

_STATUS_MAP = {
    "Completed": COMPLETED,
    "Pending": PENDING,
    "Initiated": PENDING,
    "Refunded": REFUNDED,
    "Partially Refunded": REFUNDED,
    "Expired": EXPIRED,
    "User canceled": CANCELED,
}


def _json(r: requests.Response) -> Dict[str, Any]:
    if not r.content:
        return {}
    try:
        j = r.json()
    except ValueError:
        return {}
    return j if isinstance(j, dict) else {}


class KhaltiGateway:
    name = "khalti"

    def __init__(self, secret_key: str, *, api_url: str, website_url: str, timeout: float = 20):
        self.secret_key = (secret_key or "").strip()
        self.api_url = api_url.rstrip("/")
        self.website_url = website_url
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> "KhaltiGateway":
        production = (config.get("KHALTI_ENV") or "").strip().lower() == "production"
        return cls(
            config.get("KHALTI_SECRET_KEY", ""),
            api_url=KHALTI_PRODUCTION_URL if production else KHALTI_SANDBOX_URL,
            website_url=config.get("FRONTEND_URL", ""),
            timeout=float(config.get("GATEWAY_TIMEOUT", 20)),
        )

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Key {self.secret_key}", "Content-Type": "application/json"}

    def initiate(
        self,
        *,
        order_id: str,
        order_name: str,
        amount: float,
        return_url: str,
        customer: Optional[Dict[str, str]] = None,
    ) -> InitiateResult:
        if not self.secret_key:
            raise GatewayError("Khalti secret key not configured")

        customer = customer or {}
        payload = {
            "return_url": return_url,
            "website_url": self.website_url,
            "amount": npr_to_paisa(amount),
            "purchase_order_id": order_id,
            "purchase_order_name": order_name,
            "customer_info": {
                "name": customer.get("name") or "Customer",
                "email": customer.get("email") or "",
                "phone": customer.get("phone") or "",
            },
        }
        try:
            r = requests.post(f"{self.api_url}/epayment/initiate/", headers=self._headers(), json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise GatewayError(f"Khalti unreachable: {e}")

        j = _json(r)
        if not (200 <= r.status_code < 300) or not j.get("payment_url"):
            raise GatewayError(j.get("detail") or j.get("error_key") or f"Khalti HTTP {r.status_code}")

        return InitiateResult(
            gateway=self.name,
            order_id=order_id,
            payment_url=j["payment_url"],
            pidx=j.get("pidx"),
            expires_at=j.get("expires_at"),
        )

    def verify(self, *, pidx: Optional[str]) -> KhaltiVerifyResult:
        """Look a payment up by pidx. Never raises; errors come back as FAILED."""
        if not self.secret_key:
            return KhaltiVerifyResult(status=FAILED, pidx=pidx, error="Khalti secret key not configured")
        if not pidx:
            return KhaltiVerifyResult(status=FAILED, error="pidx is required for verification")

        try:
            r = requests.post(f"{self.api_url}/epayment/lookup/", headers=self._headers(), json={"pidx": pidx}, timeout=self.timeout)
        except requests.RequestException as e:
            return KhaltiVerifyResult(status=FAILED, pidx=pidx, error=f"Khalti unreachable: {e}")

        j = _json(r)
        if not (200 <= r.status_code < 300):
            return KhaltiVerifyResult(status=FAILED, pidx=pidx, error=j.get("detail") or "Verification failed", raw=j)

        try:
            amount = paisa_to_npr(j.get("total_amount") or 0)
        except ArithmeticError:
            amount = 0.0

        return KhaltiVerifyResult(
            status=_STATUS_MAP.get(j.get("status") or "", FAILED),
            amount=amount,
            pidx=j.get("pidx") or pidx,
            transaction_id=j.get("transaction_id"),
            raw=j,
        )
