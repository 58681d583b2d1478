"""Best-effort expansion of a booked appointment into a recurring series."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError

from .errors import ConflictError, InvalidInputError, TransientStoreFailure
from .models import STATUS_PENDING, Appointment
from .store import ScheduleStore

logger = logging.getLogger(__name__)

RECURRENCE_INTERVAL_DAYS = {
    "WEEKLY": 7,
    "BIWEEKLY": 14,
    "MONTHLY": 30,
}


@dataclass(frozen=True)
class RecurringResult:
    created: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"created": self.created, "skipped": self.skipped}


def parse_pattern(value: object) -> str:
    pattern = str(value or "").strip().upper()
    if pattern not in RECURRENCE_INTERVAL_DAYS:
        raise InvalidInputError(
            f"recurring_pattern must be one of: {', '.join(RECURRENCE_INTERVAL_DAYS)}"
        )
    return pattern


def occurrence_starts(seed_start: datetime, pattern: str, until: date) -> Iterator[datetime]:
    """Start times after the seed, stepping by the pattern's interval, up to ``until``."""
    step = timedelta(days=RECURRENCE_INTERVAL_DAYS[pattern])
    current = seed_start + step
    while current.date() <= until:
        yield current
        current += step


class RecurringExpander:
    def __init__(self, store: ScheduleStore) -> None:
        self.store = store

    def expand(self, seed: Appointment, pattern: str, until: date) -> RecurringResult:
        """Book every free occurrence of ``seed``; occupied ones are skipped.

        Each occurrence gets its own short transaction and a single attempt.
        """
        pattern = parse_pattern(pattern)
        duration = seed.ends_at - seed.starts_at
        created = skipped = 0

        for starts_at in occurrence_starts(seed.starts_at, pattern, until):
            ends_at = starts_at + duration
            try:
                with self.store.transaction(serializable=True) as session:
                    if self.store.appointments_overlapping(session, seed.staff_id, starts_at, ends_at):
                        raise ConflictError("This time slot is not available")
                    if self.store.blocks_overlapping(session, seed.staff_id, starts_at, ends_at):
                        raise ConflictError("This time slot is blocked and not available")
                    session.add(
                        Appointment(
                            staff_id=seed.staff_id,
                            service_id=seed.service_id,
                            customer_id=seed.customer_id,
                            starts_at=starts_at,
                            ends_at=ends_at,
                            status=STATUS_PENDING,
                            notes=seed.notes,
                            recurrence_parent_id=seed.appointment_id,
                        )
                    )
            except ConflictError as exc:
                skipped += 1
                logger.info("Skipped recurring occurrence %s: %s", starts_at.isoformat(), exc.message)
            except (TransientStoreFailure, SQLAlchemyError):
                skipped += 1
                logger.exception("Failed to create recurring occurrence %s", starts_at.isoformat())
            else:
                created += 1

        logger.info(
            "Recurring %s series for appointment %s: %d created, %d skipped",
            pattern,
            seed.appointment_id,
            created,
            skipped,
        )
        return RecurringResult(created=created, skipped=skipped)
