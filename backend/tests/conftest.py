import pytest
from flask import g
from flask.testing import FlaskClient

from app import create_app
from app.extensions import db
from app.models import Ad, IndividualVerificationRequest, User


class ApiClient(FlaskClient):
    """Requests reuse the fixture's app context, so Flask-Login's cached
    user is dropped before each one and every request authenticates afresh."""

    def open(self, *args, **kwargs):
        g.pop("_login_user", None)
        return super().open(*args, **kwargs)


def pytest_configure(config):
    config.addinivalue_line("markers", "payment: mark test as payment-related")
    config.addinivalue_line("markers", "realtime: mark test as Socket.IO-related")


@pytest.fixture
def app():
    """Fresh application and in-memory database per test."""
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret-key-0123456789",
        "JWT_SECRET": "test-jwt-secret-0123456789",
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "AUTO_CREATE_TABLES": False,
        "APP_URL": "http://api.test",
        "FRONTEND_URL": "http://web.test",
        "KHALTI_SECRET_KEY": "test_khalti_key",
        "ESEWA_MERCHANT_CODE": "EPAYTEST",
        "ESEWA_SECRET_KEY": "8gBm/:&EnhH.1/q",
        "REALTIME_ENABLED": True,
        "SOCKETIO_ASYNC_MODE": "threading",
        "LOG_LEVEL": "WARNING",
    })
    app.test_client_class = ApiClient

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def _make_user(email, *, role="user", full_name="Test User"):
    user = User(email=email, full_name=full_name, role=role, phone="9800000000")
    user.set_password("password123")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def customer(app):
    return _make_user("ram@example.com", full_name="Ram Sharma")


@pytest.fixture
def other_customer(app):
    return _make_user("sita@example.com", full_name="Sita Karki")


@pytest.fixture
def staff(app):
    return _make_user("editor@thulobazaar.test", role="editor", full_name="Support Editor")


@pytest.fixture
def ad(app, customer):
    """Ad 42 owned by ``customer``."""
    row = Ad(id=42, user_id=customer.id, title="iPhone 13 for sale", price=95000)
    db.session.add(row)
    db.session.commit()
    return row


@pytest.fixture
def verification_request(app, customer):
    row = IndividualVerificationRequest(
        user_id=customer.id,
        full_name="Ram Sharma",
        id_document_type="citizenship",
        id_document_number="12-34-56",
    )
    db.session.add(row)
    db.session.commit()
    return row

