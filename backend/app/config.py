import os


def _normalize_database_url(url: str) -> str:
    # Render/Heroku sometimes provide postgres:// which SQLAlchemy expects as postgresql://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def _flag(name: str, default: str = "1") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Base directory of the backend (one level above this `app` package)
    BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    INSTANCE_DIR = os.path.join(BACKEND_DIR, "instance")

    ENV_NAME = (os.getenv("THULOBAZAAR_ENV", "dev") or "dev").strip().lower()

    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    # Shared secret for bearer tokens; the web app signs with the same value.
    JWT_SECRET = os.getenv("JWT_SECRET") or SECRET_KEY

    _default_sqlite_path = os.path.join(INSTANCE_DIR, "thulobazaar.db").replace("\\", "/")
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(
        os.getenv("DATABASE_URL", f"sqlite:///{_default_sqlite_path}")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    AUTO_CREATE_TABLES = _flag("AUTO_CREATE_TABLES", "1")

    # CORS: comma-separated origins for web builds
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    APP_URL = os.getenv("APP_URL", "http://localhost:5000").rstrip("/")
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3333").rstrip("/")

    # Payments
    PAYMENT_MIN_AMOUNT = float(os.getenv("PAYMENT_MIN_AMOUNT", "10"))
    GATEWAY_TIMEOUT = float(os.getenv("GATEWAY_TIMEOUT", "20"))

    KHALTI_SECRET_KEY = os.getenv("KHALTI_SECRET_KEY", "")
    KHALTI_ENV = os.getenv("KHALTI_ENV", "sandbox")

    # eSewa publishes these sandbox credentials in its developer docs.
    ESEWA_MERCHANT_CODE = os.getenv("ESEWA_MERCHANT_CODE", "EPAYTEST")
    ESEWA_SECRET_KEY = os.getenv("ESEWA_SECRET_KEY", "8gBm/:&EnhH.1/q")
    ESEWA_ENV = os.getenv("ESEWA_ENV", "sandbox")

    # Realtime
    REALTIME_ENABLED = _flag("REALTIME_ENABLED", "1")
    TYPING_INDICATOR_TTL_MS = int(os.getenv("TYPING_INDICATOR_TTL_MS", "5000"))
    # None lets Flask-SocketIO pick (eventlet/gevent when installed, else threading)
    SOCKETIO_ASYNC_MODE = os.getenv("SOCKETIO_ASYNC_MODE") or None
