"""pytest configuration: path management and shared booking fixtures."""
from __future__ import annotations

import sys
from dataclasses import dataclass
from datetime import date, time
from pathlib import Path
from typing import Callable

import pytest

# Ensure the project root is available on sys.path so tests can import the booking package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from booking import create_app  # noqa: E402
from booking.config import TestingConfig  # noqa: E402
from booking.extensions import db  # noqa: E402
from booking.models import Notification, Schedule, Service, Staff, User  # noqa: E402

# 2030-01-07 is a Monday.
MONDAY = date(2030, 1, 7)


@dataclass
class Seeded:
    staff_id: int
    unscheduled_staff_id: int
    customer_id: int
    consultation_id: int  # 30 min
    haircut_id: int  # 60 min
    color_id: int  # 45 min


def _settings(tmp_path: Path, **overrides: object) -> dict[str, object]:
    settings = {key: getattr(TestingConfig, key) for key in dir(TestingConfig) if key.isupper()}
    settings["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{tmp_path / 'booking.db'}"
    settings.update(overrides)
    return settings


@pytest.fixture
def make_app(tmp_path):
    created = []

    def factory(**overrides: object):
        flask_app = create_app(_settings(tmp_path, **overrides))
        created.append(flask_app)
        return flask_app

    yield factory

    for flask_app in created:
        with flask_app.app_context():
            db.engine.dispose()


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return app.extensions["schedule_store"]


@pytest.fixture
def manager(app):
    return app.extensions["booking_manager"]


@pytest.fixture
def slot_generator(app):
    return app.extensions["slot_generator"]


@pytest.fixture
def seed_data() -> Callable[..., Seeded]:
    return _seed


@pytest.fixture
def seeded(store) -> Seeded:
    return _seed(store)


def _seed(store) -> Seeded:
    """One scheduled staff member (Mondays 09:00-18:00), one unscheduled, three services."""
    with store.transaction() as session:
        owner = User(name="Sam Stylist", email="sam@example.com", role="staff")
        customer = User(name="Charlie Client", email="charlie@example.com", role="client")
        session.add_all([owner, customer])
        session.flush()

        staff = Staff(user_id=owner.user_id, title="Senior Stylist", has_schedule=True)
        unscheduled = Staff(user_id=None, title="New Hire", has_schedule=False)
        session.add_all([staff, unscheduled])
        session.flush()

        session.add(
            Schedule(
                staff_id=staff.staff_id,
                day_of_week=1,
                start_time=time(9, 0),
                end_time=time(18, 0),
            )
        )

        consultation = Service(name="Consultation", price_cents=0, duration_minutes=30)
        haircut = Service(name="Haircut", price_cents=3500, duration_minutes=60)
        color = Service(name="Color", price_cents=8500, duration_minutes=45)
        session.add_all([consultation, haircut, color])
        session.flush()

        return Seeded(
            staff_id=staff.staff_id,
            unscheduled_staff_id=unscheduled.staff_id,
            customer_id=customer.user_id,
            consultation_id=consultation.service_id,
            haircut_id=haircut.service_id,
            color_id=color.service_id,
        )


@pytest.fixture
def count_notifications(store) -> Callable[..., int]:
    def count(appointment_id: int, notification_type: str | None = None) -> int:
        with store.session() as session:
            query = session.query(Notification).filter(Notification.appointment_id == appointment_id)
            if notification_type is not None:
                query = query.filter(Notification.notification_type == notification_type)
            return query.count()

    return count
