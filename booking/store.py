"""Schedule store: sessions, isolated transactions and the shared range queries.

A single ``ScheduleStore`` is built by ``create_app`` around the Flask-SQLAlchemy
engine and handed to every component that touches the database.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager, nullcontext
from datetime import datetime
from typing import Iterable, Iterator

from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import NotFoundError, TransientStoreFailure
from .models import RELEASED_STATUSES, Appointment, Schedule, Service, Staff, TimeBlock

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available
_TRANSIENT_PG_CODES = {"40001", "40P01", "55P03"}
_TRANSIENT_SQLITE_MESSAGES = ("database is locked", "database table is locked", "database is busy")

_BEGIN_OPTION = "booking_begin"


def is_transient_error(exc: DBAPIError) -> bool:
    """True when ``exc`` means "retry the transaction", not "the store is broken"."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in _TRANSIENT_PG_CODES:
        return True
    message = str(orig if orig is not None else exc).lower()
    return any(fragment in message for fragment in _TRANSIENT_SQLITE_MESSAGES)


def install_sqlite_transaction_hooks(engine: Engine) -> None:
    """Take transaction control away from pysqlite.

    pysqlite defers BEGIN until the first write, which leaves the conflict
    queries of a check-then-insert outside the transaction. With these hooks
    every transaction starts with an explicit BEGIN, and booking transactions
    start with BEGIN IMMEDIATE so the write lock is held before the check.
    """
    if event.contains(engine, "connect", _sqlite_on_connect):
        return
    event.listen(engine, "connect", _sqlite_on_connect)
    event.listen(engine, "begin", _sqlite_on_begin)


def _sqlite_on_connect(dbapi_connection, connection_record) -> None:
    dbapi_connection.isolation_level = None


def _sqlite_on_begin(conn) -> None:
    mode = conn.get_execution_options().get(_BEGIN_OPTION)
    conn.exec_driver_sql(f"BEGIN {mode}" if mode else "BEGIN")


class ScheduleStore:
    """Durable storage for schedules, blocks, services and appointments."""

    def __init__(self, engine: Engine, lock_timeout_ms: int = 5000) -> None:
        self.engine = engine
        self.lock_timeout_ms = lock_timeout_ms
        self.dialect = engine.dialect.name
        self._session_factory = sessionmaker(
            bind=engine,
            autoflush=False,
            expire_on_commit=False,
        )
        if self.dialect == "sqlite":
            install_sqlite_transaction_hooks(engine)

        # In-memory SQLite: one connection for every thread.
        self._shared_connection_lock = None
        if self.dialect == "sqlite" and isinstance(engine.pool, StaticPool):
            logger.info("SQLite engine shares one connection; store access is serialized")
            self._shared_connection_lock = threading.RLock()

    def _exclusive(self):
        return self._shared_connection_lock or nullcontext()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Read-only session; rolled back on exit."""
        with self._exclusive():
            session = self._session_factory()
            try:
                yield session
            finally:
                session.close()

    @contextmanager
    def transaction(self, serializable: bool = False) -> Iterator[Session]:
        """Commit on success, roll back on any error.

        On SQLite every write transaction starts with BEGIN IMMEDIATE. With
        ``serializable`` it runs at SERIALIZABLE isolation on PostgreSQL,
        bounded by ``lock_timeout``. Serialization failures and lock timeouts
        surface as ``TransientStoreFailure``.
        """
        with self._exclusive():
            session = self._session_factory()
            try:
                if serializable:
                    self._begin_isolated(session)
                elif self.dialect == "sqlite":
                    session.connection(execution_options={_BEGIN_OPTION: "IMMEDIATE"})
                yield session
                session.commit()
            except DBAPIError as exc:
                session.rollback()
                if is_transient_error(exc):
                    raise TransientStoreFailure(str(exc.orig or exc)) from exc
                raise
            except BaseException:
                session.rollback()
                raise
            finally:
                session.close()

    def _begin_isolated(self, session: Session) -> None:
        if self.dialect == "postgresql":
            session.connection(execution_options={"isolation_level": "SERIALIZABLE"})
            session.execute(text(f"SET LOCAL lock_timeout = {int(self.lock_timeout_ms)}"))
        elif self.dialect == "sqlite":
            session.connection(execution_options={_BEGIN_OPTION: "IMMEDIATE"})
        else:
            session.connection(execution_options={"isolation_level": "SERIALIZABLE"})

    # -- point lookups -----------------------------------------------------

    def get_staff(self, session: Session, staff_id: int) -> Staff:
        staff = session.get(Staff, staff_id)
        if staff is None:
            raise NotFoundError("Staff not found")
        return staff

    def get_services(self, session: Session, service_ids: Iterable[int]) -> list[Service]:
        """Active services in the order requested; repeated ids are allowed."""
        ids = list(service_ids)
        found = {
            service.service_id: service
            for service in session.query(Service).filter(Service.service_id.in_(set(ids))).all()
        }
        missing = [sid for sid in ids if sid not in found or not found[sid].is_active]
        if missing:
            raise NotFoundError("Service not found")
        return [found[sid] for sid in ids]

    def get_appointment(self, session: Session, appointment_id: int) -> Appointment:
        appointment = session.get(Appointment, appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment not found")
        return appointment

    # -- range queries -----------------------------------------------------

    def active_window(self, session: Session, staff_id: int, day_of_week: int) -> Schedule | None:
        """The active weekly window for a day; most recently updated row wins."""
        rows = (
            session.query(Schedule)
            .filter(
                Schedule.staff_id == staff_id,
                Schedule.day_of_week == day_of_week,
                Schedule.is_active.is_(True),
            )
            .order_by(Schedule.updated_at.desc(), Schedule.schedule_id.desc())
            .all()
        )
        if len(rows) > 1:
            logger.warning(
                "Staff %s has %d active schedules for day %d; using schedule %s",
                staff_id,
                len(rows),
                day_of_week,
                rows[0].schedule_id,
            )
        return rows[0] if rows else None

    def blocks_overlapping(
        self, session: Session, staff_id: int, starts_at: datetime, ends_at: datetime
    ) -> list[TimeBlock]:
        return (
            session.query(TimeBlock)
            .filter(
                TimeBlock.staff_id == staff_id,
                TimeBlock.starts_at < ends_at,
                TimeBlock.ends_at > starts_at,
            )
            .order_by(TimeBlock.starts_at)
            .all()
        )

    def appointments_overlapping(
        self,
        session: Session,
        staff_id: int,
        starts_at: datetime,
        ends_at: datetime,
        exclude_id: int | None = None,
    ) -> list[Appointment]:
        """Appointments that still occupy time and intersect [starts_at, ends_at)."""
        query = session.query(Appointment).filter(
            Appointment.staff_id == staff_id,
            Appointment.status.notin_(RELEASED_STATUSES),
            Appointment.starts_at < ends_at,
            Appointment.ends_at > starts_at,
        )
        if exclude_id is not None:
            query = query.filter(Appointment.appointment_id != exclude_id)
        return query.order_by(Appointment.starts_at).all()
