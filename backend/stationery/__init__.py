# backend/stationery/__init__.py
import atexit

from flask import Flask, g, request

from .config import Config
from .extensions import db, migrate, ORDER_WINDOW, REALTIME, SESSIONS, STORAGE



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.concurrency import daemon_timer
    from .services.order_window_service import OrderWindow
    from .services.realtime_service import RealtimeManager
    from .services.session_registry import SessionRegistry
    from .services.storage_service import ClientStorage

    timer_factory = app.config.get("TIMER_FACTORY") or daemon_timer

    # One realtime connection per process, shared by every viewer session
    realtime = None
    if app.config["REALTIME_ENABLED"]:
        connect_headers = {}
        if app.config.get("REALTIME_AUTH_TOKEN"):
            connect_headers["Authorization"] = f"Bearer {app.config['REALTIME_AUTH_TOKEN']}"
        realtime = RealtimeManager(
            app.config["REALTIME_URL"],
            connect_headers=connect_headers,
            reconnect_delay=app.config["REALTIME_RECONNECT_DELAY"],
            transport_factory=app.config.get("REALTIME_TRANSPORT_FACTORY"),
            timer_factory=timer_factory,
            logger=app.logger,
        )

    order_window = OrderWindow(realtime, max_age=app.config["ORDER_POLL_INTERVAL"], logger=app.logger)
    sessions = SessionRegistry(
        realtime,
        poll_interval=app.config["ORDER_POLL_INTERVAL"],
        notification_poll_interval=app.config["NOTIFICATION_POLL_INTERVAL"],
        idle_ttl=app.config["SESSION_IDLE_TTL"],
        timer_factory=timer_factory,
        logger=app.logger,
    )

    app.extensions[STORAGE] = ClientStorage(logger=app.logger)
    app.extensions[REALTIME] = realtime
    app.extensions[ORDER_WINDOW] = order_window
    app.extensions[SESSIONS] = sessions

    order_window.start()

    def shutdown():
        sessions.close_all()
        order_window.stop()
        if realtime is not None:
            realtime.close()

    app.extensions["stationery.shutdown"] = shutdown
    atexit.register(shutdown)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.cart import cart_bp
    from .routes.orders import orders_bp
    from .routes.notifications import notifications_bp
    from .routes.order_window import order_window_bp
    from .routes.preferences import preferences_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(order_window_bp)
    app.register_blueprint(preferences_bp)

    @app.teardown_request
    def close_backend_client(exc):
        backend = g.pop("backend", None)
        if backend is not None:
            backend.close()

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, X-Client-Id"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
