# Overview: Flask extension instances for client storage and migrations, plus portal service lookup.

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()


# Keys under app.extensions for the process-wide portal services
STORAGE = "stationery.storage"
REALTIME = "stationery.realtime"
ORDER_WINDOW = "stationery.order_window"
SESSIONS = "stationery.sessions"


def portal_service(name: str):
    return current_app.extensions[name]
