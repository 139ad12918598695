from __future__ import annotations

from typing import Union

from app.errors import ValidationError
from app.payments.gateways.esewa import EsewaGateway
from app.payments.gateways.khalti import KhaltiGateway

Gateway = Union[KhaltiGateway, EsewaGateway]

_GATEWAYS = {
    "khalti": KhaltiGateway,
    "esewa": EsewaGateway,
}


def available_gateways(config) -> list[dict]:
    return [
        {"id": "khalti", "name": "Khalti", "enabled": bool((config.get("KHALTI_SECRET_KEY") or "").strip())},
        {"id": "esewa", "name": "eSewa", "enabled": bool((config.get("ESEWA_SECRET_KEY") or "").strip())},
    ]


def get_gateway(name: str, config) -> Gateway:
    cls = _GATEWAYS.get((name or "").strip().lower())
    if cls is None:
        raise ValidationError('Invalid payment gateway. Use "khalti" or "esewa"')
    return cls.from_config(config)
