"""Configuration objects for the booking engine.

``create_app`` always loads ``Config`` first, then applies the object or mapping
it was given. Every default can be overridden through the environment.
"""
from __future__ import annotations

import os


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///booking.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    AUTO_CREATE_TABLES = _get_bool(os.getenv("AUTO_CREATE_TABLES"), default=False)

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Booking transaction retry policy
    BOOKING_MAX_RETRIES = int(os.getenv("BOOKING_MAX_RETRIES", "5"))
    BOOKING_RETRY_BASE_DELAY = float(os.getenv("BOOKING_RETRY_BASE_DELAY", "0.05"))
    BOOKING_RETRY_MAX_DELAY = float(os.getenv("BOOKING_RETRY_MAX_DELAY", "1.0"))
    BOOKING_LOCK_TIMEOUT_MS = int(os.getenv("BOOKING_LOCK_TIMEOUT_MS", "5000"))

    # Off by default: turning it on changes observable conflict rates.
    ENFORCE_AVAILABILITY_ON_COMMIT = _get_bool(
        os.getenv("ENFORCE_AVAILABILITY_ON_COMMIT"), default=False
    )

    NOTIFICATIONS_ASYNC = _get_bool(os.getenv("NOTIFICATIONS_ASYNC"), default=True)
    NOTIFICATION_WORKERS = int(os.getenv("NOTIFICATION_WORKERS", "2"))


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///booking-test.db")
    AUTO_CREATE_TABLES = True
    BOOKING_RETRY_BASE_DELAY = 0.01
    BOOKING_RETRY_MAX_DELAY = 0.05
    NOTIFICATIONS_ASYNC = False
