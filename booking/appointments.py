"""Authoritative booking transactions.

Every write that can put two appointments on the same part of a staff
member's timeline goes through ``BookingManager``. The overlap check and the
insert run in one isolated transaction; serialization failures are retried a
bounded number of times and then reported as a conflict.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Sequence, TypeVar

from sqlalchemy import update
from sqlalchemy.orm import Session

from .errors import (ConflictError, InvalidInputError, InvalidTransitionError,
                     NotFoundError, TransientStoreFailure)
from .intervals import at_offset, day_of_week, minutes_since_midnight
from .models import (APPOINTMENT_STATUSES, STATUS_CANCELLED, STATUS_COMPLETED,
                     STATUS_NO_SHOW, STATUS_PENDING, Appointment, Service, User,
                     local_now)
from .notifications import NotificationDispatcher
from .recurring import RecurringExpander, RecurringResult, parse_pattern
from .store import ScheduleStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

SLOT_TAKEN_MESSAGE = "This time slot is not available"
SLOT_BLOCKED_MESSAGE = "This time slot is blocked and not available"
OUTSIDE_HOURS_MESSAGE = "This time slot is outside the staff member's working hours"

# No further transitions are allowed out of these.
TERMINAL_STATUSES = (STATUS_CANCELLED, STATUS_COMPLETED, STATUS_NO_SHOW)


@dataclass
class BookingOutcome:
    appointments: list[Appointment]
    recurring: RecurringResult | None = None

    @property
    def appointment(self) -> Appointment:
        return self.appointments[0]


class BookingManager:
    def __init__(
        self,
        store: ScheduleStore,
        notifier: NotificationDispatcher | None = None,
        recurring: RecurringExpander | None = None,
        max_retries: int = 5,
        retry_base_delay: float = 0.05,
        retry_max_delay: float = 1.0,
        enforce_availability: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.recurring = recurring or RecurringExpander(store)
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.enforce_availability = enforce_availability
        self._sleep = sleep

    # -- creation ----------------------------------------------------------

    def create_appointment(
        self,
        staff_id: int,
        customer_id: int,
        service_id: int,
        starts_at: datetime,
        notes: str | None = None,
    ) -> Appointment:
        return self.create_appointments(staff_id, customer_id, [service_id], starts_at, notes)[0]

    def create_appointments(
        self,
        staff_id: int,
        customer_id: int,
        service_ids: Sequence[int],
        starts_at: datetime,
        notes: str | None = None,
    ) -> list[Appointment]:
        """Book one appointment per service, back to back, all or nothing."""
        self._validate_request(staff_id, customer_id, service_ids, starts_at)

        with self.store.session() as session:
            self.store.get_staff(session, staff_id)
            self.store.get_services(session, service_ids)
            if session.get(User, customer_id) is None:
                raise NotFoundError("Customer not found")

        def insert(session: Session) -> list[Appointment]:
            services = self.store.get_services(session, service_ids)
            plan = self._lay_out(services, starts_at)
            for _, start, end in plan:
                self._ensure_free(session, staff_id, start, end)
            if self.enforce_availability:
                self._ensure_within_hours(session, staff_id, plan[0][1], plan[-1][2])

            appointments = [
                Appointment(
                    staff_id=staff_id,
                    customer_id=customer_id,
                    service=service,
                    starts_at=start,
                    ends_at=end,
                    status=STATUS_PENDING,
                    notes=notes,
                )
                for service, start, end in plan
            ]
            session.add_all(appointments)
            session.flush()
            return appointments

        appointments = self._run_isolated(insert, f"booking for staff {staff_id} at {starts_at.isoformat()}")
        logger.info(
            "Booked %d appointment(s) for staff %s starting %s",
            len(appointments),
            staff_id,
            starts_at.isoformat(),
        )
        if self.notifier is not None:
            for appointment in appointments:
                self.notifier.appointment_created(appointment)
        return appointments

    def book(
        self,
        staff_id: int,
        customer_id: int,
        service_ids: Sequence[int],
        starts_at: datetime,
        notes: str | None = None,
        recurring_pattern: str | None = None,
        recurring_until: date | None = None,
    ) -> BookingOutcome:
        """Create the booking, then expand it into a series when asked to."""
        pattern = None
        if recurring_pattern or recurring_until:
            pattern = parse_pattern(recurring_pattern)
            if recurring_until is None:
                raise InvalidInputError("recurring_end_date is required with recurring_pattern")
            if recurring_until < starts_at.date():
                raise InvalidInputError("recurring_end_date must not be before starts_at")

        appointments = self.create_appointments(staff_id, customer_id, service_ids, starts_at, notes)
        outcome = BookingOutcome(appointments=appointments)

        if pattern is not None:
            created = skipped = 0
            for seed in appointments:
                result = self.recurring.expand(seed, pattern, recurring_until)
                created += result.created
                skipped += result.skipped
            outcome.recurring = RecurringResult(created=created, skipped=skipped)
        return outcome

    # -- changes to existing appointments ----------------------------------

    def reschedule(self, appointment_id: int, starts_at: datetime) -> Appointment:
        if not isinstance(starts_at, datetime):
            raise InvalidInputError("starts_at must be a valid ISO format datetime")

        def move(session: Session) -> Appointment:
            appointment = self.store.get_appointment(session, appointment_id)
            if appointment.status in TERMINAL_STATUSES:
                raise InvalidTransitionError(
                    f"Cannot reschedule an appointment with status '{appointment.status}'"
                )
            ends_at = starts_at + timedelta(minutes=appointment.service.duration_minutes)
            self._ensure_free(session, appointment.staff_id, starts_at, ends_at, exclude_id=appointment_id)
            if self.enforce_availability:
                self._ensure_within_hours(session, appointment.staff_id, starts_at, ends_at)

            appointment.starts_at = starts_at
            appointment.ends_at = ends_at
            appointment.status = STATUS_PENDING
            session.flush()
            return appointment

        return self._run_isolated(move, f"reschedule of appointment {appointment_id}")

    def cancel(self, appointment_id: int, reason: str | None = None) -> Appointment:
        """Cancel an appointment. Cancelling twice is a successful no-op.

        The conditional UPDATE decides which caller performed the transition;
        only that caller sends the cancellation notification.
        """

        def release(session: Session) -> tuple[Appointment, bool]:
            appointment = self.store.get_appointment(session, appointment_id)
            if appointment.status in (STATUS_COMPLETED, STATUS_NO_SHOW):
                raise InvalidTransitionError(
                    f"Cannot cancel an appointment with status '{appointment.status}'"
                )
            result = session.execute(
                update(Appointment)
                .where(
                    Appointment.appointment_id == appointment_id,
                    Appointment.status.notin_(TERMINAL_STATUSES),
                )
                .values(
                    status=STATUS_CANCELLED,
                    cancellation_reason=reason or "Cancelled by customer",
                    updated_at=local_now(),
                )
                .execution_options(synchronize_session=False)
            )
            session.refresh(appointment)
            return appointment, result.rowcount == 1

        appointment, transitioned = self._run_isolated(release, f"cancellation of appointment {appointment_id}")
        if transitioned:
            logger.info("Cancelled appointment %s", appointment_id)
            if self.notifier is not None:
                self.notifier.status_changed(appointment)
        return appointment

    def update_status(self, appointment_id: int, status: str, cancellation_reason: str | None = None) -> Appointment:
        if status not in APPOINTMENT_STATUSES:
            raise InvalidInputError(f"Status must be one of: {', '.join(APPOINTMENT_STATUSES)}")
        if status == STATUS_CANCELLED:
            return self.cancel(appointment_id, cancellation_reason)

        def transition(session: Session) -> tuple[Appointment, bool]:
            appointment = self.store.get_appointment(session, appointment_id)
            if appointment.status == status:
                return appointment, False
            if appointment.status in TERMINAL_STATUSES:
                raise InvalidTransitionError(
                    f"Cannot change status of a {appointment.status} appointment"
                )
            appointment.status = status
            session.flush()
            return appointment, True

        appointment, changed = self._run_isolated(transition, f"status change of appointment {appointment_id}")
        if changed and self.notifier is not None:
            self.notifier.status_changed(appointment)
        return appointment

    # -- internals ---------------------------------------------------------

    def _run_isolated(self, work: Callable[[Session], T], description: str) -> T:
        for attempt in range(self.max_retries + 1):
            try:
                with self.store.transaction(serializable=True) as session:
                    return work(session)
            except TransientStoreFailure as exc:
                if attempt >= self.max_retries:
                    logger.warning("Giving up on %s after %d attempts: %s", description, attempt + 1, exc.message)
                    break
                delay = min(self.retry_max_delay, self.retry_base_delay * (2 ** attempt))
                logger.warning("Retrying %s in %.3fs after transient failure: %s", description, delay, exc.message)
                self._sleep(delay)
        raise ConflictError(SLOT_TAKEN_MESSAGE)

    def _ensure_free(
        self,
        session: Session,
        staff_id: int,
        starts_at: datetime,
        ends_at: datetime,
        exclude_id: int | None = None,
    ) -> None:
        if self.store.appointments_overlapping(session, staff_id, starts_at, ends_at, exclude_id=exclude_id):
            raise ConflictError(SLOT_TAKEN_MESSAGE)
        if self.store.blocks_overlapping(session, staff_id, starts_at, ends_at):
            raise ConflictError(SLOT_BLOCKED_MESSAGE)

    def _ensure_within_hours(self, session: Session, staff_id: int, starts_at: datetime, ends_at: datetime) -> None:
        day = starts_at.date()
        window = self.store.active_window(session, staff_id, day_of_week(day))
        if window is None:
            raise ConflictError(OUTSIDE_HOURS_MESSAGE)
        opens = at_offset(day, minutes_since_midnight(window.start_time))
        closes = at_offset(day, minutes_since_midnight(window.end_time))
        if starts_at < opens or ends_at > closes:
            raise ConflictError(OUTSIDE_HOURS_MESSAGE)

    @staticmethod
    def _lay_out(services: Sequence[Service], starts_at: datetime) -> list[tuple[Service, datetime, datetime]]:
        plan = []
        current = starts_at
        for service in services:
            ends_at = current + timedelta(minutes=service.duration_minutes)
            plan.append((service, current, ends_at))
            current = ends_at
        return plan

    @staticmethod
    def _validate_request(
        staff_id: int, customer_id: int, service_ids: Sequence[int], starts_at: datetime
    ) -> None:
        if not staff_id or not customer_id:
            raise InvalidInputError("staff_id and customer_id are required")
        if not service_ids:
            raise InvalidInputError("at least one service is required")
        if not isinstance(starts_at, datetime):
            raise InvalidInputError("starts_at must be a valid ISO format datetime")
