"""HTTP routes for the booking engine."""
from __future__ import annotations

from flask import Blueprint, Response, current_app, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .appointments import BookingManager
from .errors import BookingError, ConflictError, InvalidInputError, NotFoundError
from .intervals import day_bounds, parse_date, parse_timestamp, parse_wall_clock
from .models import (APPOINTMENT_STATUSES, Appointment, Schedule, Service, Staff, TimeBlock,
                     User, local_now)
from .slots import SlotGenerator
from .store import ScheduleStore

bp = Blueprint("api", __name__)


def _store() -> ScheduleStore:
    return current_app.extensions["schedule_store"]


def _slot_generator() -> SlotGenerator:
    return current_app.extensions["slot_generator"]


def _booking_manager() -> BookingManager:
    return current_app.extensions["booking_manager"]


def _error(exc: BookingError) -> tuple[Response, int]:
    return jsonify(exc.to_dict()), exc.status_code


def _json_body() -> dict[str, object]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise InvalidInputError("Request body must be a JSON object")
    return payload


def _optional_text(payload: dict[str, object], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidInputError(f"{key} must be a string")
    return value.strip() or None


def _parse_id(value: object, name: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"{name} must be an integer") from exc
    if parsed <= 0:
        raise InvalidInputError(f"{name} must be a positive integer")
    return parsed


def _parse_service_ids(raw: object) -> list[int]:
    if isinstance(raw, str):
        raw = [part for part in raw.split(",") if part.strip()]
    if not isinstance(raw, (list, tuple)) or not raw:
        raise InvalidInputError("service_ids must be a non-empty list")
    return [_parse_id(value, "service_ids") for value in raw]


@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health() -> tuple[dict[str, str], int]:
    """Check connectivity to the configured database."""
    try:
        with _store().session() as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        return jsonify({"database": "unavailable"}), 500

    return jsonify({"database": "ok"}), 200


# ============================================================================
# Slots
# ============================================================================


@bp.get("/slots")
def list_slots() -> tuple[dict[str, object], int]:
    """Return bookable start times for a staff member on a date.
    ---
    tags:
      - Slots
    parameters:
      - name: staff_id
        in: query
        type: integer
        required: true
      - name: date
        in: query
        type: string
        format: date
        required: true
      - name: duration
        in: query
        type: integer
        description: Requested duration in minutes
      - name: service_ids
        in: query
        type: string
        description: Comma separated service ids; used instead of duration
    responses:
      200:
        description: Slots (possibly empty) with an optional message
      400:
        description: Invalid parameters
      404:
        description: Staff or service not found
      500:
        description: Database error
    """
    try:
        staff_raw = request.args.get("staff_id")
        date_raw = request.args.get("date")
        if not staff_raw or not date_raw:
            raise InvalidInputError("staff_id and date (YYYY-MM-DD) are required")

        staff_id = _parse_id(staff_raw, "staff_id")
        try:
            day = parse_date(date_raw)
        except ValueError as exc:
            raise InvalidInputError("date must be in YYYY-MM-DD format") from exc

        generator = _slot_generator()
        if request.args.get("service_ids"):
            duration = generator.duration_for_services(_parse_service_ids(request.args["service_ids"]))
        else:
            duration = request.args.get("duration", type=int)
            if duration is None:
                raise InvalidInputError("duration or service_ids is required")

        result = generator.generate(staff_id, day, duration)
        return jsonify(result.to_dict()), 200

    except BookingError as exc:
        current_app.logger.warning("Rejected slot query: %s", exc.message)
        return _error(exc)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to compute slots", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


# ============================================================================
# Appointments
# ============================================================================


@bp.post("/appointments")
def create_appointment() -> tuple[dict[str, object], int]:
    """Book one or more services with a staff member.
    ---
    tags:
      - Appointments
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            staff_id:
              type: integer
            customer_id:
              type: integer
            service_id:
              type: integer
            service_ids:
              type: array
              items:
                type: integer
            starts_at:
              type: string
              format: date-time
            notes:
              type: string
            recurring_pattern:
              type: string
              enum: [WEEKLY, BIWEEKLY, MONTHLY]
            recurring_end_date:
              type: string
              format: date
          required:
            - staff_id
            - customer_id
            - starts_at
    responses:
      201:
        description: Appointment created successfully
      400:
        description: Invalid payload
      404:
        description: Staff, customer or service not found
      409:
        description: Time slot not available
      500:
        description: Server error
    """
    try:
        payload = _json_body()
        staff_raw = payload.get("staff_id")
        customer_raw = payload.get("customer_id")
        starts_raw = payload.get("starts_at")
        if not all([staff_raw, customer_raw, starts_raw]) or not (
            payload.get("service_id") or payload.get("service_ids")
        ):
            raise InvalidInputError(
                "staff_id, customer_id, service_id (or service_ids), and starts_at are required"
            )

        staff_id = _parse_id(staff_raw, "staff_id")
        customer_id = _parse_id(customer_raw, "customer_id")
        if payload.get("service_ids"):
            service_ids = _parse_service_ids(payload["service_ids"])
        else:
            service_ids = [_parse_id(payload["service_id"], "service_id")]

        try:
            starts_at = parse_timestamp(starts_raw)
        except ValueError as exc:
            raise InvalidInputError("starts_at must be a valid ISO format datetime") from exc

        recurring_until = None
        if payload.get("recurring_end_date"):
            try:
                recurring_until = parse_date(payload["recurring_end_date"])
            except ValueError as exc:
                raise InvalidInputError("recurring_end_date must be in YYYY-MM-DD format") from exc

        notes = _optional_text(payload, "notes")

        outcome = _booking_manager().book(
            staff_id,
            customer_id,
            service_ids,
            starts_at,
            notes=notes,
            recurring_pattern=payload.get("recurring_pattern"),
            recurring_until=recurring_until,
        )

    except ConflictError as exc:
        return _error(exc)
    except BookingError as exc:
        current_app.logger.warning("Rejected booking request: %s", exc.message)
        return _error(exc)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to create appointment", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    body: dict[str, object] = {
        "message": "Appointment created successfully",
        "appointment": outcome.appointment.to_dict(),
        "appointments": [appointment.to_dict() for appointment in outcome.appointments],
    }
    if outcome.recurring is not None:
        body["recurring"] = outcome.recurring.to_dict()
    return jsonify(body), 201


@bp.get("/appointments/<int:appointment_id>")
def get_appointment(appointment_id: int) -> tuple[dict[str, object], int]:
    """Fetch a single appointment."""
    try:
        store = _store()
        with store.session() as session:
            appointment = store.get_appointment(session, appointment_id)
            return jsonify({"appointment": appointment.to_dict()}), 200
    except NotFoundError as exc:
        return _error(exc)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch appointment", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.get("/customers/<int:customer_id>/appointments")
def list_customer_appointments(customer_id: int) -> tuple[dict[str, object], int]:
    """List a customer's appointments, oldest first.
    ---
    tags:
      - Appointments
    parameters:
      - name: status
        in: query
        type: string
      - name: upcoming
        in: query
        type: boolean
        description: Only appointments starting now or later
    responses:
      200:
        description: Appointments for the customer
      400:
        description: Unknown status
      404:
        description: Customer not found
    """
    status = (request.args.get("status") or "").strip().lower() or None
    if status is not None and status not in APPOINTMENT_STATUSES:
        return jsonify({
            "error": "invalid_payload",
            "message": f"status must be one of: {', '.join(APPOINTMENT_STATUSES)}",
        }), 400
    upcoming = request.args.get("upcoming", "").lower() in {"1", "true", "yes"}

    try:
        with _store().session() as session:
            if session.get(User, customer_id) is None:
                raise NotFoundError("Customer not found")
            query = session.query(Appointment).filter(Appointment.customer_id == customer_id)
            if status is not None:
                query = query.filter(Appointment.status == status)
            if upcoming:
                query = query.filter(Appointment.starts_at >= local_now())
            appointments = query.order_by(Appointment.starts_at, Appointment.appointment_id).all()
            return jsonify({
                "customer_id": customer_id,
                "appointments": [appointment.to_dict() for appointment in appointments],
            }), 200
    except NotFoundError as exc:
        return _error(exc)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch customer appointments", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.patch("/appointments/<int:appointment_id>/status")
def update_appointment_status(appointment_id: int) -> tuple[dict[str, object], int]:
    """Move an appointment to a new status.
    ---
    tags:
      - Appointments
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            status:
              type: string
              enum: [pending, confirmed, cancelled, completed, no_show]
            cancellation_reason:
              type: string
    responses:
      200:
        description: Appointment status updated
      400:
        description: Invalid status or transition
      404:
        description: Appointment not found
      500:
        description: Database error
    """
    try:
        payload = _json_body()
        status = _optional_text(payload, "status")
        if not status:
            raise InvalidInputError("status is required")
        appointment = _booking_manager().update_status(
            appointment_id,
            status.lower(),
            cancellation_reason=_optional_text(payload, "cancellation_reason"),
        )
    except BookingError as exc:
        return _error(exc)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to update appointment status", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"appointment": appointment.to_dict()}), 200


@bp.patch("/appointments/<int:appointment_id>/cancel")
def cancel_appointment(appointment_id: int) -> tuple[dict[str, object], int]:
    """Cancel an appointment; cancelling again is a no-op that still succeeds."""
    try:
        payload = _json_body()
        appointment = _booking_manager().cancel(
            appointment_id,
            _optional_text(payload, "cancellation_reason"),
        )
    except BookingError as exc:
        return _error(exc)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to cancel appointment", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"message": "Appointment cancelled successfully", "appointment": appointment.to_dict()}), 200


@bp.patch("/appointments/<int:appointment_id>/reschedule")
def reschedule_appointment(appointment_id: int) -> tuple[dict[str, object], int]:
    """Move an appointment to a new start time (same service, same staff)."""
    try:
        payload = _json_body()
        if not payload.get("starts_at"):
            raise InvalidInputError("starts_at is required")
        try:
            starts_at = parse_timestamp(payload["starts_at"])
        except ValueError as exc:
            raise InvalidInputError("starts_at must be a valid ISO format datetime") from exc

        appointment = _booking_manager().reschedule(appointment_id, starts_at)
    except BookingError as exc:
        return _error(exc)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to reschedule appointment", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"message": "Appointment rescheduled successfully", "appointment": appointment.to_dict()}), 200


# ============================================================================
# Staff schedules and blocks
# ============================================================================


@bp.get("/staff")
def list_staff() -> tuple[dict[str, object], int]:
    """List staff members that have a configured schedule."""
    try:
        with _store().session() as session:
            members = (
                session.query(Staff)
                .filter(Staff.has_schedule.is_(True))
                .order_by(Staff.staff_id)
                .all()
            )
            return jsonify({"staff": [member.to_dict() for member in members]}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch staff members", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.get("/staff/<int:staff_id>/appointments")
def list_staff_appointments(staff_id: int) -> tuple[dict[str, object], int]:
    """List a staff member's appointments on a date (all statuses)."""
    date_raw = request.args.get("date")
    if not date_raw:
        return jsonify({"error": "invalid_payload", "message": "date (YYYY-MM-DD) is required"}), 400
    try:
        day = parse_date(date_raw)
    except ValueError:
        return jsonify({"error": "invalid_payload", "message": "date must be in YYYY-MM-DD format"}), 400

    try:
        store = _store()
        with store.session() as session:
            store.get_staff(session, staff_id)
            start_of_day, end_of_day = day_bounds(day)
            appointments = (
                session.query(Appointment)
                .filter(
                    Appointment.staff_id == staff_id,
                    Appointment.starts_at < end_of_day,
                    Appointment.ends_at > start_of_day,
                )
                .order_by(Appointment.starts_at)
                .all()
            )
            return jsonify({
                "date": day.isoformat(),
                "appointments": [appointment.to_dict() for appointment in appointments],
            }), 200
    except NotFoundError as exc:
        return _error(exc)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch staff appointments", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.get("/staff/<int:staff_id>/schedules")
def get_staff_schedules(staff_id: int) -> tuple[dict[str, list[dict[str, object]]], int]:
    """Weekly availability rows for a staff member, ordered by day."""
    try:
        store = _store()
        with store.session() as session:
            store.get_staff(session, staff_id)
            schedules = (
                session.query(Schedule)
                .filter(Schedule.staff_id == staff_id)
                .order_by(Schedule.day_of_week, Schedule.schedule_id)
                .all()
            )
            return jsonify({"schedules": [schedule.to_dict() for schedule in schedules]}), 200
    except NotFoundError as exc:
        return _error(exc)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch schedules", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.put("/staff/<int:staff_id>/schedules")
def upsert_staff_schedule(staff_id: int) -> tuple[dict[str, object], int]:
    """Create or replace the weekly window for one day.
    ---
    tags:
      - Staff
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            day_of_week:
              type: integer
              description: 0=Sunday .. 6=Saturday
            start_time:
              type: string
              example: "09:00"
            end_time:
              type: string
              example: "17:00"
            is_active:
              type: boolean
    responses:
      200:
        description: Schedule saved
      400:
        description: Invalid payload
      404:
        description: Staff not found
    """
    try:
        payload = _json_body()
    except InvalidInputError as exc:
        return _error(exc)

    day_raw = payload.get("day_of_week")
    start_raw = payload.get("start_time")
    end_raw = payload.get("end_time")
    if day_raw is None or not start_raw or not end_raw:
        return jsonify({
            "error": "invalid_payload",
            "message": "day_of_week, start_time, and end_time are required",
        }), 400

    try:
        day_of_week = int(day_raw)
        start_time = parse_wall_clock(start_raw)
        end_time = parse_wall_clock(end_raw)
    except (TypeError, ValueError):
        return jsonify({
            "error": "invalid_format",
            "message": "day_of_week must be 0-6 and times must be HH:MM",
        }), 400

    if not 0 <= day_of_week <= 6 or start_time >= end_time:
        return jsonify({
            "error": "invalid_payload",
            "message": "day_of_week must be 0-6 and start_time must be before end_time",
        }), 400

    is_active = payload.get("is_active", True)
    if not isinstance(is_active, bool):
        return jsonify({"error": "invalid_payload", "message": "is_active must be true or false"}), 400

    try:
        store = _store()
        with store.transaction() as session:
            staff = store.get_staff(session, staff_id)
            schedule = (
                session.query(Schedule)
                .filter(Schedule.staff_id == staff_id, Schedule.day_of_week == day_of_week)
                .order_by(Schedule.updated_at.desc(), Schedule.schedule_id.desc())
                .first()
            )
            if schedule is None:
                schedule = Schedule(staff_id=staff_id, day_of_week=day_of_week)
                session.add(schedule)
            schedule.start_time = start_time
            schedule.end_time = end_time
            schedule.is_active = is_active
            session.flush()
            staff.has_schedule = (
                session.query(Schedule.schedule_id)
                .filter(Schedule.staff_id == staff_id, Schedule.is_active.is_(True))
                .first()
                is not None
            )
            session.flush()
            body = {"message": "Schedule saved successfully", "schedule": schedule.to_dict()}
    except BookingError as exc:
        return _error(exc)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to save schedule", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify(body), 200


@bp.post("/staff/<int:staff_id>/blocks")
def create_time_block(staff_id: int) -> tuple[dict[str, object], int]:
    """Block an interval on a staff member's timeline (time off)."""
    try:
        payload = _json_body()
        reason = _optional_text(payload, "reason")
    except InvalidInputError as exc:
        return _error(exc)

    try:
        starts_at = parse_timestamp(payload.get("starts_at"))
        ends_at = parse_timestamp(payload.get("ends_at"))
    except ValueError:
        return jsonify({
            "error": "invalid_payload",
            "message": "starts_at and ends_at must be valid ISO format datetimes",
        }), 400

    if starts_at >= ends_at:
        return jsonify({"error": "invalid_payload", "message": "starts_at must be before ends_at"}), 400

    try:
        store = _store()
        with store.transaction() as session:
            store.get_staff(session, staff_id)
            block = TimeBlock(staff_id=staff_id, starts_at=starts_at, ends_at=ends_at, reason=reason)
            session.add(block)
            session.flush()
            body = {"message": "Time blocked successfully", "time_block": block.to_dict()}
    except BookingError as exc:
        return _error(exc)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to create time block", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify(body), 201


# ============================================================================
# Services
# ============================================================================


@bp.get("/services")
def list_services() -> tuple[dict[str, list[dict[str, object]]], int]:
    """List active services ordered by name."""
    try:
        with _store().session() as session:
            services = (
                session.query(Service)
                .filter(Service.is_active.is_(True))
                .order_by(Service.name)
                .all()
            )
            return jsonify({"services": [service.to_dict() for service in services]}), 200
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to fetch services", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.put("/services/<int:service_id>")
def update_service(service_id: int) -> tuple[dict[str, object], int]:
    """Update a service.

    The duration of a service that is already referenced by an appointment is
    frozen; changing it would rewrite the length of booked intervals.
    """
    try:
        payload = _json_body()
        store = _store()
        with store.transaction() as session:
            service = session.get(Service, service_id)
            if service is None:
                raise NotFoundError("Service not found")

            if "duration_minutes" in payload:
                try:
                    duration = int(payload["duration_minutes"])
                except (TypeError, ValueError) as exc:
                    raise InvalidInputError("duration_minutes must be a positive integer") from exc
                if duration <= 0:
                    raise InvalidInputError("duration_minutes must be a positive integer")
                if duration != service.duration_minutes:
                    referenced = (
                        session.query(Appointment.appointment_id)
                        .filter(Appointment.service_id == service_id)
                        .first()
                    )
                    if referenced is not None:
                        raise ConflictError("Service duration cannot change once it has been booked")
                    service.duration_minutes = duration

            if "name" in payload:
                name = _optional_text(payload, "name")
                if name is None:
                    raise InvalidInputError("name cannot be blank")
                service.name = name
            if "price_cents" in payload:
                try:
                    price_cents = int(payload["price_cents"])
                except (TypeError, ValueError) as exc:
                    raise InvalidInputError("price_cents must be a non-negative integer") from exc
                if price_cents < 0:
                    raise InvalidInputError("price_cents must be a non-negative integer")
                service.price_cents = price_cents
            if "is_active" in payload:
                if not isinstance(payload["is_active"], bool):
                    raise InvalidInputError("is_active must be true or false")
                service.is_active = payload["is_active"]

            session.flush()
            body = {"message": "Service updated successfully", "service": service.to_dict()}
    except BookingError as exc:
        return _error(exc)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to update service", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify(body), 200
