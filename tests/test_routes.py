"""HTTP tests for the booking blueprint."""
from __future__ import annotations

from datetime import date, datetime, time

from booking.models import Staff

MONDAY = date(2030, 1, 7)


def _iso(hour: int, minute: int = 0, day: date = MONDAY) -> str:
    return datetime.combine(day, time(hour, minute)).isoformat()


def _book(client, seeded, starts_at: str, **extra):
    payload = {
        "staff_id": seeded.staff_id,
        "customer_id": seeded.customer_id,
        "service_id": seeded.haircut_id,
        "starts_at": starts_at,
    }
    payload.update(extra)
    return client.post("/appointments", json=payload)


# ============================================================================
# Slots
# ============================================================================


def test_slots_for_scheduled_staff(client, seeded) -> None:
    response = client.get(f"/slots?staff_id={seeded.staff_id}&date=2030-01-07&duration=60")

    assert response.status_code == 200
    data = response.get_json()
    assert data["slots"][0] == {"time": _iso(9), "endTime": _iso(10)}
    assert data["slots"][-1]["time"] == _iso(17)
    assert "message" not in data


def test_slots_with_service_bundle(client, seeded) -> None:
    response = client.get(
        f"/slots?staff_id={seeded.staff_id}&date=2030-01-07&service_ids={seeded.haircut_id},{seeded.color_id}"
    )

    assert response.status_code == 200
    assert response.get_json()["slots"][0]["endTime"] == _iso(10, 45)


def test_slots_day_off_returns_message(client, seeded) -> None:
    response = client.get(f"/slots?staff_id={seeded.staff_id}&date=2030-01-06&duration=30")

    assert response.status_code == 200
    assert response.get_json() == {"slots": [], "message": "Staff member is not available on this day"}


def test_slots_validation_errors(client, seeded) -> None:
    missing = client.get("/slots?date=2030-01-07&duration=30")
    bad_date = client.get(f"/slots?staff_id={seeded.staff_id}&date=01/07/2030&duration=30")
    no_duration = client.get(f"/slots?staff_id={seeded.staff_id}&date=2030-01-07")
    zero = client.get(f"/slots?staff_id={seeded.staff_id}&date=2030-01-07&duration=0")

    assert missing.status_code == 400
    assert missing.get_json()["error"] == "invalid_payload"
    assert bad_date.status_code == 400
    assert no_duration.status_code == 400
    assert zero.status_code == 400


def test_slots_unconfigured_staff_is_404(client, seeded) -> None:
    response = client.get(f"/slots?staff_id={seeded.unscheduled_staff_id}&date=2030-01-07&duration=30")

    assert response.status_code == 404
    assert response.get_json() == {"error": "not_found", "message": "Staff not found"}


# ============================================================================
# Appointments
# ============================================================================


def test_create_appointment_201_then_conflict_409(client, seeded) -> None:
    created = _book(client, seeded, _iso(14), notes="  Window seat  ")
    duplicate = _book(client, seeded, _iso(14, 30))

    assert created.status_code == 201
    body = created.get_json()
    assert body["appointment"]["starts_at"] == _iso(14)
    assert body["appointment"]["ends_at"] == _iso(15)
    assert body["appointment"]["status"] == "pending"
    assert body["appointment"]["notes"] == "Window seat"
    assert "recurring" not in body

    assert duplicate.status_code == 409
    assert duplicate.get_json() == {"error": "conflict", "message": "This time slot is not available"}


def test_create_appointment_accepts_utc_suffix(client, seeded) -> None:
    response = _book(client, seeded, "2030-01-07T09:00:00Z")

    assert response.status_code == 201
    assert response.get_json()["appointment"]["starts_at"] == _iso(9)


def test_create_bundle_returns_every_appointment(client, seeded) -> None:
    response = client.post("/appointments", json={
        "staff_id": seeded.staff_id,
        "customer_id": seeded.customer_id,
        "service_ids": [seeded.haircut_id, seeded.color_id],
        "starts_at": _iso(9),
    })

    assert response.status_code == 201
    appointments = response.get_json()["appointments"]
    assert [a["starts_at"] for a in appointments] == [_iso(9), _iso(10)]


def test_create_recurring_reports_counts(client, seeded) -> None:
    response = _book(
        client, seeded, _iso(9), recurring_pattern="weekly", recurring_end_date="2030-01-21"
    )

    assert response.status_code == 201
    assert response.get_json()["recurring"] == {"created": 2, "skipped": 0}


def test_create_appointment_validation(client, seeded) -> None:
    missing = client.post("/appointments", json={"staff_id": seeded.staff_id})
    bad_time = _book(client, seeded, "next tuesday")
    bad_id = _book(client, seeded, _iso(9), staff_id="abc")

    assert missing.status_code == 400
    assert missing.get_json()["error"] == "invalid_payload"
    assert bad_time.status_code == 400
    assert bad_id.status_code == 400


def test_create_appointment_unknown_service_404(client, seeded) -> None:
    response = _book(client, seeded, _iso(9), service_id=9999)

    assert response.status_code == 404
    assert response.get_json()["message"] == "Service not found"


def test_get_appointment(client, seeded) -> None:
    appointment_id = _book(client, seeded, _iso(9)).get_json()["appointment"]["id"]

    found = client.get(f"/appointments/{appointment_id}")
    missing = client.get("/appointments/9999")

    assert found.status_code == 200
    assert found.get_json()["appointment"]["service"]["name"] == "Haircut"
    assert missing.status_code == 404


def test_cancel_endpoint_is_idempotent(client, seeded) -> None:
    appointment_id = _book(client, seeded, _iso(9)).get_json()["appointment"]["id"]

    first = client.patch(f"/appointments/{appointment_id}/cancel", json={"cancellation_reason": "Sick"})
    second = client.patch(f"/appointments/{appointment_id}/cancel")

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.get_json()["appointment"]["status"] == "cancelled"
    assert second.get_json()["appointment"]["cancellation_reason"] == "Sick"


def test_status_endpoint(client, seeded) -> None:
    appointment_id = _book(client, seeded, _iso(9)).get_json()["appointment"]["id"]

    confirmed = client.patch(f"/appointments/{appointment_id}/status", json={"status": "Confirmed"})
    unknown = client.patch(f"/appointments/{appointment_id}/status", json={"status": "booked"})
    empty = client.patch(f"/appointments/{appointment_id}/status", json={})
    completed = client.patch(f"/appointments/{appointment_id}/status", json={"status": "completed"})
    reopened = client.patch(f"/appointments/{appointment_id}/status", json={"status": "pending"})

    assert confirmed.status_code == 200
    assert confirmed.get_json()["appointment"]["status"] == "confirmed"
    assert unknown.status_code == 400
    assert empty.status_code == 400
    assert completed.status_code == 200
    assert reopened.status_code == 400
    assert reopened.get_json()["error"] == "invalid_transition"


def test_reschedule_endpoint(client, seeded) -> None:
    first_id = _book(client, seeded, _iso(9)).get_json()["appointment"]["id"]
    _book(client, seeded, _iso(11))

    moved = client.patch(f"/appointments/{first_id}/reschedule", json={"starts_at": _iso(13)})
    clash = client.patch(f"/appointments/{first_id}/reschedule", json={"starts_at": _iso(10, 30)})
    invalid = client.patch(f"/appointments/{first_id}/reschedule", json={})
    missing = client.patch("/appointments/9999/reschedule", json={"starts_at": _iso(13)})

    assert moved.status_code == 200
    assert moved.get_json()["appointment"]["starts_at"] == _iso(13)
    assert clash.status_code == 409
    assert invalid.status_code == 400
    assert missing.status_code == 404


# ============================================================================
# Staff
# ============================================================================


def test_list_staff_hides_unconfigured_members(client, seeded) -> None:
    response = client.get("/staff")

    assert response.status_code == 200
    ids = [member["id"] for member in response.get_json()["staff"]]
    assert ids == [seeded.staff_id]


def test_staff_day_appointments(client, seeded) -> None:
    _book(client, seeded, _iso(9))
    _book(client, seeded, _iso(9, day=date(2030, 1, 14)))

    response = client.get(f"/staff/{seeded.staff_id}/appointments?date=2030-01-07")

    assert response.status_code == 200
    assert [a["starts_at"] for a in response.get_json()["appointments"]] == [_iso(9)]
    assert client.get(f"/staff/{seeded.staff_id}/appointments").status_code == 400
    assert client.get("/staff/9999/appointments?date=2030-01-07").status_code == 404


def test_upsert_schedule_configures_staff(client, store, seeded) -> None:
    response = client.put(
        f"/staff/{seeded.unscheduled_staff_id}/schedules",
        json={"day_of_week": 1, "start_time": "12:00", "end_time": "14:00"},
    )

    assert response.status_code == 200
    assert response.get_json()["schedule"]["start_time"] == "12:00"
    with store.session() as session:
        assert session.get(Staff, seeded.unscheduled_staff_id).has_schedule is True

    slots = client.get(
        f"/slots?staff_id={seeded.unscheduled_staff_id}&date=2030-01-07&duration=60"
    ).get_json()["slots"]
    assert [slot["time"] for slot in slots] == [_iso(12), _iso(12, 30), _iso(13)]


def test_upsert_schedule_replaces_existing_day(client, seeded) -> None:
    client.put(
        f"/staff/{seeded.staff_id}/schedules",
        json={"day_of_week": 1, "start_time": "10:00", "end_time": "12:00"},
    )

    schedules = client.get(f"/staff/{seeded.staff_id}/schedules").get_json()["schedules"]

    assert len(schedules) == 1
    assert (schedules[0]["start_time"], schedules[0]["end_time"]) == ("10:00", "12:00")


def test_upsert_schedule_validation(client, seeded) -> None:
    url = f"/staff/{seeded.staff_id}/schedules"

    assert client.put(url, json={"day_of_week": 1}).status_code == 400
    assert client.put(url, json={"day_of_week": 7, "start_time": "09:00", "end_time": "17:00"}).status_code == 400
    assert client.put(url, json={"day_of_week": 1, "start_time": "17:00", "end_time": "09:00"}).status_code == 400
    assert client.put(url, json={"day_of_week": 1, "start_time": "9am", "end_time": "5pm"}).status_code == 400
    assert client.put(
        "/staff/9999/schedules", json={"day_of_week": 1, "start_time": "09:00", "end_time": "17:00"}
    ).status_code == 404


def test_time_block_hides_slots_and_rejects_booking(client, seeded) -> None:
    response = client.post(
        f"/staff/{seeded.staff_id}/blocks",
        json={"starts_at": _iso(12), "ends_at": _iso(13), "reason": "Lunch"},
    )

    assert response.status_code == 201
    assert response.get_json()["time_block"]["reason"] == "Lunch"

    slots = client.get(f"/slots?staff_id={seeded.staff_id}&date=2030-01-07&duration=30").get_json()["slots"]
    assert _iso(12) not in [slot["time"] for slot in slots]

    blocked = _book(client, seeded, _iso(12))
    assert blocked.status_code == 409
    assert blocked.get_json()["message"] == "This time slot is blocked and not available"


def test_time_block_validation(client, seeded) -> None:
    url = f"/staff/{seeded.staff_id}/blocks"

    assert client.post(url, json={"starts_at": _iso(13)}).status_code == 400
    assert client.post(url, json={"starts_at": _iso(13), "ends_at": _iso(12)}).status_code == 400
    assert client.post("/staff/9999/blocks", json={"starts_at": _iso(12), "ends_at": _iso(13)}).status_code == 404


# ============================================================================
# Services
# ============================================================================


def test_list_services(client, seeded) -> None:
    response = client.get("/services")

    assert response.status_code == 200
    assert [service["name"] for service in response.get_json()["services"]] == ["Color", "Consultation", "Haircut"]


def test_booked_service_duration_is_frozen(client, seeded) -> None:
    before = client.put(f"/services/{seeded.haircut_id}", json={"duration_minutes": 45})
    _book(client, seeded, _iso(9))
    after = client.put(f"/services/{seeded.haircut_id}", json={"duration_minutes": 30})
    rename = client.put(f"/services/{seeded.haircut_id}", json={"name": "Signature Cut", "price_cents": 4000})

    assert before.status_code == 200
    assert before.get_json()["service"]["duration_minutes"] == 45
    assert after.status_code == 409
    assert rename.status_code == 200
    assert rename.get_json()["service"]["name"] == "Signature Cut"
    assert client.put("/services/9999", json={"name": "Ghost"}).status_code == 404
    assert client.put(f"/services/{seeded.haircut_id}", json={"duration_minutes": 0}).status_code == 400


def test_non_object_bodies_and_non_string_fields_are_400(client, seeded) -> None:
    appointment_id = _book(client, seeded, _iso(9)).get_json()["appointment"]["id"]
    responses = [
        client.post("/appointments", json=[1, 2]),
        _book(client, seeded, _iso(11), notes=5),
        client.patch(f"/appointments/{appointment_id}/status", json={"status": 1}),
        client.patch(f"/appointments/{appointment_id}/status", json="confirmed"),
        client.patch(f"/appointments/{appointment_id}/cancel", json={"cancellation_reason": 5}),
        client.patch(f"/appointments/{appointment_id}/reschedule", json=[_iso(13)]),
        client.put(f"/staff/{seeded.staff_id}/schedules", json=[1, "09:00", "17:00"]),
        client.post(
            f"/staff/{seeded.staff_id}/blocks",
            json={"starts_at": _iso(12), "ends_at": _iso(13), "reason": 5},
        ),
        client.put(f"/services/{seeded.haircut_id}", json={"name": 5}),
        client.put(f"/services/{seeded.haircut_id}", json={"is_active": "no"}),
        client.put(f"/services/{seeded.haircut_id}", json=["Haircut"]),
    ]

    assert [response.status_code for response in responses] == [400] * len(responses)
    assert all(response.get_json()["error"] == "invalid_payload" for response in responses)
    assert client.get(f"/appointments/{appointment_id}").get_json()["appointment"]["status"] == "pending"


def test_schedule_is_active_must_be_boolean(client, seeded) -> None:
    response = client.put(
        f"/staff/{seeded.staff_id}/schedules",
        json={"day_of_week": 1, "start_time": "09:00", "end_time": "18:00", "is_active": "false"},
    )

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"
    assert client.get(f"/staff/{seeded.staff_id}/schedules").get_json()["schedules"][0]["is_active"] is True


def test_deactivating_last_window_unlists_staff(client, store, seeded) -> None:
    response = client.put(
        f"/staff/{seeded.staff_id}/schedules",
        json={"day_of_week": 1, "start_time": "09:00", "end_time": "18:00", "is_active": False},
    )

    assert response.status_code == 200
    assert response.get_json()["schedule"]["is_active"] is False
    with store.session() as session:
        assert session.get(Staff, seeded.staff_id).has_schedule is False
    assert client.get("/staff").get_json()["staff"] == []
    assert client.get(f"/slots?staff_id={seeded.staff_id}&date=2030-01-07&duration=30").status_code == 404

    client.put(
        f"/staff/{seeded.staff_id}/schedules",
        json={"day_of_week": 2, "start_time": "09:00", "end_time": "12:00"},
    )
    assert [member["id"] for member in client.get("/staff").get_json()["staff"]] == [seeded.staff_id]


# ============================================================================
# Customers
# ============================================================================


def test_customer_appointments_filters(client, seeded) -> None:
    first_id = _book(client, seeded, _iso(9)).get_json()["appointment"]["id"]
    _book(client, seeded, _iso(9, day=date(2030, 1, 14)))
    client.patch(f"/appointments/{first_id}/cancel")

    everything = client.get(f"/customers/{seeded.customer_id}/appointments")
    cancelled = client.get(f"/customers/{seeded.customer_id}/appointments?status=Cancelled")
    upcoming = client.get(f"/customers/{seeded.customer_id}/appointments?upcoming=true&status=pending")

    assert everything.status_code == 200
    assert [a["starts_at"] for a in everything.get_json()["appointments"]] == [
        _iso(9),
        _iso(9, day=date(2030, 1, 14)),
    ]
    assert [a["id"] for a in cancelled.get_json()["appointments"]] == [first_id]
    assert [a["starts_at"] for a in upcoming.get_json()["appointments"]] == [_iso(9, day=date(2030, 1, 14))]


def test_customer_appointments_errors(client, seeded) -> None:
    assert client.get(f"/customers/{seeded.customer_id}/appointments").get_json()["appointments"] == []
    assert client.get("/customers/9999/appointments").status_code == 404
    bad_status = client.get(f"/customers/{seeded.customer_id}/appointments?status=booked")
    assert bad_status.status_code == 400
    assert bad_status.get_json()["error"] == "invalid_payload"
