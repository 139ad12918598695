from flask_cors import CORS
from flask_login import LoginManager
from flask_migrate import Migrate
from flask_socketio import SocketIO
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
migrate = Migrate()
cors = CORS()
login_manager = LoginManager()

# Only bound to the app when REALTIME_ENABLED is on; see app.realtime.socket.
socketio = SocketIO()
