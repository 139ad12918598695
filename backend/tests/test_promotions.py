from datetime import datetime, timedelta

from app.extensions import db
from app.jobs.promotion_expiry import run_promotion_expiry
from app.models import AdPromotion, AuditLog
from app.services.promotions import activate_promotion, cleanup_expired_promotions


def _promote(ad, user, promotion_type, *, days=7, started=None):
    promo = activate_promotion(
        ad,
        user=user,
        promotion_type=promotion_type,
        duration_days=days,
        price_paid=500,
        payment_reference="1",
        now=started,
    )
    db.session.commit()
    return promo


def test_activation_sets_flags_and_replaces_active(app, customer, ad):
    first = _promote(ad, customer, "featured")
    assert ad.is_featured is True
    assert ad.featured_until == first.expires_at

    second = _promote(ad, customer, "bump_up", days=3)

    assert db.session.get(AdPromotion, first.id).is_active is False
    assert second.is_active is True
    assert ad.is_sticky is True and ad.is_bumped is True
    assert ad.bump_expires_at == second.expires_at
    assert AdPromotion.query.filter_by(ad_id=ad.id, is_active=True).count() == 1


def test_cleanup_clears_expired_only(app, customer, ad):
    old = _promote(ad, customer, "urgent", days=1, started=datetime.utcnow() - timedelta(days=3))
    assert ad.is_urgent is True

    result = cleanup_expired_promotions()

    assert result == {"checked": 1, "deactivated": 1, "failed": 0, "flagsCleared": 0}
    assert db.session.get(AdPromotion, old.id).is_active is False
    assert ad.is_urgent is False
    assert ad.urgent_until is None

    fresh = _promote(ad, customer, "featured", days=7)
    assert cleanup_expired_promotions()["checked"] == 0
    assert db.session.get(AdPromotion, fresh.id).is_active is True


def test_expiry_job_audits_only_when_something_changed(app, customer, ad):
    assert run_promotion_expiry()["checked"] == 0
    assert AuditLog.query.filter_by(action="promotions_expired").count() == 0

    _promote(ad, customer, "sticky", days=1, started=datetime.utcnow() - timedelta(days=2))
    run_promotion_expiry()

    assert AuditLog.query.filter_by(action="promotions_expired").count() == 1
    assert ad.is_sticky is False


def test_cleanup_cli_command(app, customer, ad):
    _promote(ad, customer, "featured", days=1, started=datetime.utcnow() - timedelta(days=5))

    result = app.test_cli_runner().invoke(args=["promotions-cleanup", "--limit", "10"])

    assert result.exit_code == 0
    assert "deactivated=1" in result.output
    db.session.expire_all()
    assert AdPromotion.query.filter_by(is_active=True).count() == 0


def test_replacement_clears_the_previous_flags(app, customer, ad):
    _promote(ad, customer, "featured", days=7)
    _promote(ad, customer, "urgent", days=7)

    assert ad.is_urgent is True
    assert ad.is_featured is False
    assert ad.featured_until is None


def test_cleanup_clears_flags_left_without_a_promotion(app, customer, ad):
    ad.is_featured = True
    ad.featured_until = datetime.utcnow() - timedelta(days=1)
    ad.is_sticky = True
    ad.sticky_until = datetime.utcnow() + timedelta(days=2)
    db.session.commit()

    result = run_promotion_expiry()

    assert result["checked"] == 0
    assert result["flagsCleared"] == 1
    assert ad.is_featured is False
    assert ad.featured_until is None
    assert ad.is_sticky is True
    assert AuditLog.query.filter_by(action="promotions_expired").count() == 1
