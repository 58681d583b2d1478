"""Advisory slot generation.

The slots returned here are a hint for the caller, not a reservation: the
booking manager re-checks every request inside its own transaction.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable, Sequence

from .errors import InvalidInputError, NotFoundError
from .intervals import (SLOT_STEP_MINUTES, at_offset, day_bounds, day_of_week,
                        minutes_since_midnight)
from .store import ScheduleStore

NOT_AVAILABLE_MESSAGE = "Staff member is not available on this day"


@dataclass(frozen=True)
class Slot:
    starts_at: datetime
    ends_at: datetime

    def to_dict(self) -> dict[str, str]:
        return {"time": self.starts_at.isoformat(), "endTime": self.ends_at.isoformat()}


@dataclass
class SlotResult:
    slots: list[Slot] = field(default_factory=list)
    message: str | None = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"slots": [slot.to_dict() for slot in self.slots]}
        if self.message:
            payload["message"] = self.message
        return payload


def generate_slots(
    day: date,
    window_start: int,
    window_end: int,
    duration_minutes: int,
    blocks: Iterable[tuple[datetime, datetime]],
    appointments: Iterable[tuple[datetime, int]],
) -> list[Slot]:
    """Compute bookable start times on ``day``.

    ``window_start``/``window_end`` are minute offsets from midnight. ``blocks``
    are (start, end) pairs; ``appointments`` are (start, duration_minutes)
    pairs. Candidates start on the fixed 30-minute grid and are tested at
    30-minute sub-steps, so bookings that are not aligned to the grid can slip
    between sub-steps.
    """
    blocked = list(blocks)
    booked = [(start, start + timedelta(minutes=minutes)) for start, minutes in appointments]

    def collides(instant: datetime) -> bool:
        return any(start <= instant < end for start, end in blocked) or any(
            start <= instant < end for start, end in booked
        )

    slots = []
    for offset in range(window_start, window_end, SLOT_STEP_MINUTES):
        if offset + duration_minutes > window_end:
            continue
        sub_steps = range(offset, offset + duration_minutes, SLOT_STEP_MINUTES)
        if any(collides(at_offset(day, step)) for step in sub_steps):
            continue
        slots.append(Slot(at_offset(day, offset), at_offset(day, offset + duration_minutes)))
    return slots


class SlotGenerator:
    """Reads the store and feeds ``generate_slots``. Never writes."""

    def __init__(self, store: ScheduleStore) -> None:
        self.store = store

    def duration_for_services(self, service_ids: Sequence[int]) -> int:
        with self.store.session() as session:
            services = self.store.get_services(session, service_ids)
            return sum(service.duration_minutes for service in services)

    def generate(self, staff_id: int | None, day: date | None, duration_minutes: int | None) -> SlotResult:
        if not staff_id or day is None:
            raise InvalidInputError("staff_id and date are required")
        if not duration_minutes or duration_minutes <= 0:
            raise InvalidInputError("duration must be a positive number of minutes")

        with self.store.session() as session:
            staff = self.store.get_staff(session, staff_id)
            if not staff.has_schedule:
                raise NotFoundError("Staff not found")

            window = self.store.active_window(session, staff_id, day_of_week(day))
            if window is None:
                return SlotResult(message=NOT_AVAILABLE_MESSAGE)

            start_of_day, end_of_day = day_bounds(day)
            blocks = self.store.blocks_overlapping(session, staff_id, start_of_day, end_of_day)
            appointments = self.store.appointments_overlapping(
                session, staff_id, start_of_day, end_of_day
            )

            slots = generate_slots(
                day,
                minutes_since_midnight(window.start_time),
                minutes_since_midnight(window.end_time),
                duration_minutes,
                [(block.starts_at, block.ends_at) for block in blocks],
                [
                    (appointment.starts_at, appointment.service.duration_minutes)
                    for appointment in appointments
                ],
            )

        return SlotResult(slots=slots)
