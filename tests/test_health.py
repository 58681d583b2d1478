"""Smoke tests for the health endpoints."""
from __future__ import annotations

from booking import create_app


def test_health_endpoint() -> None:
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "NOTIFICATIONS_ASYNC": False,
    })
    client = app.test_client()

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json == {"status": "ok"}


def test_database_health_endpoint_ok() -> None:
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "NOTIFICATIONS_ASYNC": False,
    })
    client = app.test_client()

    response = client.get("/db-health")

    assert response.status_code == 200
    assert response.json == {"database": "ok"}


def test_components_are_wired_from_config(make_app) -> None:
    app = make_app(BOOKING_MAX_RETRIES=2, BOOKING_LOCK_TIMEOUT_MS=1500)

    manager = app.extensions["booking_manager"]
    store = app.extensions["schedule_store"]

    assert manager.max_retries == 2
    assert manager.enforce_availability is False
    assert manager.store is store
    assert manager.notifier.executor is None
    assert store.lock_timeout_ms == 1500
    assert store.dialect == "sqlite"
