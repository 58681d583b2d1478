from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Mapping

from flask import Flask
from flask_cors import CORS

from .appointments import BookingManager
from .config import Config
from .extensions import db
from .notifications import NotificationDispatcher
from .recurring import RecurringExpander
from .routes import bp
from .slots import SlotGenerator
from .store import ScheduleStore


def create_app(config_object: Mapping[str, Any] | object | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)

    if isinstance(config_object, Mapping):
        app.config.from_mapping(config_object)
    elif config_object is not None:
        app.config.from_object(config_object)
    else:
        app.config.from_envvar("APP_SETTINGS", silent=True)

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        # Request threads share pooled connections and wait on the write lock.
        engine_options = app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {})
        connect_args = engine_options.setdefault("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", app.config["BOOKING_LOCK_TIMEOUT_MS"] / 1000)

    db.init_app(app)

    CORS(app,
         origins=app.config["CORS_ORIGINS"],
         allow_headers=["Content-Type"],
         methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    )

    with app.app_context():
        store = ScheduleStore(db.engine, lock_timeout_ms=app.config["BOOKING_LOCK_TIMEOUT_MS"])

        executor = None
        if app.config["NOTIFICATIONS_ASYNC"]:
            executor = ThreadPoolExecutor(
                max_workers=app.config["NOTIFICATION_WORKERS"],
                thread_name_prefix="booking-notify",
            )
        notifier = NotificationDispatcher(store, executor=executor)
        recurring = RecurringExpander(store)

        app.extensions["schedule_store"] = store
        app.extensions["notification_dispatcher"] = notifier
        app.extensions["slot_generator"] = SlotGenerator(store)
        app.extensions["booking_manager"] = BookingManager(
            store,
            notifier=notifier,
            recurring=recurring,
            max_retries=app.config["BOOKING_MAX_RETRIES"],
            retry_base_delay=app.config["BOOKING_RETRY_BASE_DELAY"],
            retry_max_delay=app.config["BOOKING_RETRY_MAX_DELAY"],
            enforce_availability=app.config["ENFORCE_AVAILABILITY_ON_COMMIT"],
        )

        if app.config["AUTO_CREATE_TABLES"]:
            db.create_all()

    app.register_blueprint(bp)

    return app
