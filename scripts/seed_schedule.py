#!/usr/bin/env python3
"""Seed the database with a sample staff member, services and a weekly schedule."""
import sys
from datetime import time
from pathlib import Path

# Add the parent directory to the path so we can import the booking package
sys.path.insert(0, str(Path(__file__).parent.parent))

from booking import create_app
from booking.extensions import db
from booking.models import Schedule, Service, Staff, User

SAMPLE_SERVICES = [
    {
        "name": "Haircut",
        "description": "Classic cut and style",
        "price_cents": 3500,  # $35.00
        "duration_minutes": 30,
    },
    {
        "name": "Color Treatment",
        "description": "Single-process color",
        "price_cents": 8500,  # $85.00
        "duration_minutes": 90,
    },
    {
        "name": "Beard Trim",
        "description": "Shape and line-up",
        "price_cents": 1500,  # $15.00
        "duration_minutes": 15,
    },
]

# Monday to Friday, 09:00-17:00 (0=Sunday)
WORKING_DAYS = [1, 2, 3, 4, 5]


def seed_schedule():
    """Add a staff member with a weekday schedule, a client and sample services."""
    app = create_app()

    with app.app_context():
        db.create_all()

        if Staff.query.count() > 0:
            print("⏭️  Staff members already exist. Skipping...")
            return

        owner = User(name="Sam Stylist", email="sam@example.com", role="staff")
        customer = User(name="Charlie Client", email="charlie@example.com", role="client")
        db.session.add_all([owner, customer])
        db.session.flush()

        staff = Staff(user_id=owner.user_id, title="Senior Stylist", has_schedule=True)
        db.session.add(staff)
        db.session.flush()

        for day in WORKING_DAYS:
            db.session.add(
                Schedule(
                    staff_id=staff.staff_id,
                    day_of_week=day,
                    start_time=time(9, 0),
                    end_time=time(17, 0),
                )
            )

        for service_data in SAMPLE_SERVICES:
            db.session.add(Service(**service_data))
            print(f"  ✅ Added {service_data['name']} ({service_data['duration_minutes']} min)")

        db.session.commit()
        print(f"\n🎉 Seeded staff member {staff.staff_id} and client {customer.user_id}")


if __name__ == "__main__":
    seed_schedule()
