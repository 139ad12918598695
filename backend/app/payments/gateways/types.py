"""Result types returned by the payment gateway clients.

Verification results form a tagged union discriminated by ``gateway``;
callers branch on that field before reading gateway-specific attributes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Literal, Optional, Union

# Normalised gateway outcomes
COMPLETED = "completed"
PENDING = "pending"
REFUNDED = "refunded"
EXPIRED = "expired"
CANCELED = "canceled"
FAILED = "failed"


def npr_to_paisa(amount_npr: float) -> int:
    return int((Decimal(str(amount_npr)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def paisa_to_npr(amount_paisa) -> float:
    return float(Decimal(str(amount_paisa)) / 100)


def format_amount(amount_npr: float) -> str:
    """Render an NPR amount the way it is signed and posted: no trailing zeros."""
    d = Decimal(str(amount_npr)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP).normalize()
    return format(d, "f")


@dataclass
class InitiateResult:
    gateway: str
    order_id: str
    payment_url: str
    pidx: Optional[str] = None
    expires_at: Optional[str] = None
    form: Dict[str, str] = field(default_factory=dict)


@dataclass
class KhaltiVerifyResult:
    status: str
    amount: float = 0.0
    pidx: Optional[str] = None
    transaction_id: Optional[str] = None
    error: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)
    gateway: Literal["khalti"] = "khalti"


@dataclass
class EsewaVerifyResult:
    status: str
    amount: float = 0.0
    ref_id: Optional[str] = None
    transaction_code: Optional[str] = None
    error: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)
    gateway: Literal["esewa"] = "esewa"


VerifyResult = Union[KhaltiVerifyResult, EsewaVerifyResult]
