from __future__ import annotations

from datetime import datetime

from app.extensions import db
from app.models import AuditLog
from app.services.promotions import cleanup_expired_promotions


def run_promotion_expiry(*, limit: int = 500, now: datetime | None = None) -> dict:
    """Expire finished promotions and leave a summary in the audit trail."""
    result = cleanup_expired_promotions(now=now, limit=limit)
    if result["deactivated"] or result["failed"] or result["flagsCleared"]:
        AuditLog.record("promotions_expired", target_type="ad_promotion", **result)
        db.session.commit()
    return result
