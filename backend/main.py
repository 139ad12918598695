import os

from app import create_app
from app.extensions import socketio

app = create_app()

if __name__ == "__main__":
    host = os.getenv("THULOBAZAAR_HOST", "0.0.0.0")
    port = int(os.getenv("THULOBAZAAR_PORT", "5000"))
    debug = os.getenv("THULOBAZAAR_ENV", "dev") == "dev"

    if app.config.get("REALTIME_ENABLED"):
        socketio.run(app, host=host, port=port, debug=debug, allow_unsafe_werkzeug=debug)
    else:
        app.run(host=host, port=port, debug=debug)
