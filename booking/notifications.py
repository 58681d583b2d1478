"""Customer notifications recorded after a booking event has committed.

Dispatch is fire-and-forget: a failure here is logged and never reaches the
booking that triggered it.
"""
from __future__ import annotations

import logging
from concurrent.futures import Executor

from sqlalchemy.exc import SQLAlchemyError

from .errors import TransientStoreFailure
from .models import (STATUS_CANCELLED, STATUS_COMPLETED, STATUS_CONFIRMED,
                     STATUS_NO_SHOW, Appointment, Notification)
from .store import ScheduleStore

logger = logging.getLogger(__name__)

_STATUS_MESSAGES = {
    STATUS_CONFIRMED: ("Appointment Confirmed", "Your appointment on {when} has been confirmed."),
    STATUS_CANCELLED: ("Appointment Cancelled", "Your appointment on {when} has been cancelled."),
    STATUS_COMPLETED: ("Appointment Completed", "Your appointment on {when} has been completed."),
    STATUS_NO_SHOW: ("Appointment No-Show", "You missed your appointment on {when}."),
}


def _when(appointment: Appointment) -> str:
    return appointment.starts_at.strftime("%B %d, %Y at %I:%M %p")


class NotificationDispatcher:
    def __init__(self, store: ScheduleStore, executor: Executor | None = None) -> None:
        self.store = store
        self.executor = executor

    def appointment_created(self, appointment: Appointment) -> None:
        self._dispatch(
            appointment.customer_id,
            appointment.appointment_id,
            "Appointment Requested",
            f"Your appointment has been booked for {_when(appointment)}.",
            "appointment_created",
        )

    def status_changed(self, appointment: Appointment) -> None:
        template = _STATUS_MESSAGES.get(appointment.status)
        if template is None:
            return
        title, message = template
        self._dispatch(
            appointment.customer_id,
            appointment.appointment_id,
            title,
            message.format(when=_when(appointment)),
            f"appointment_{appointment.status}",
        )

    def _dispatch(self, user_id: int, appointment_id: int, title: str, message: str, kind: str) -> None:
        if self.executor is None:
            self._record(user_id, appointment_id, title, message, kind)
            return
        try:
            self.executor.submit(self._record, user_id, appointment_id, title, message, kind)
        except RuntimeError:
            # Executor already shut down.
            logger.exception("Could not queue %s notification for appointment %s", kind, appointment_id)

    def _record(self, user_id: int, appointment_id: int, title: str, message: str, kind: str) -> None:
        try:
            with self.store.transaction() as session:
                session.add(
                    Notification(
                        user_id=user_id,
                        appointment_id=appointment_id,
                        title=title,
                        message=message,
                        notification_type=kind,
                    )
                )
        except (SQLAlchemyError, TransientStoreFailure):
            logger.exception("Failed to record %s notification for appointment %s", kind, appointment_id)
