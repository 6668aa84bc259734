# tests/test_api.py
from tests._factories import at, auth, create_patient, create_slot, token_for


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_protected_route_requires_token(client, slot_id, doctor_id):
    response = await client.post(
        "/appointments", json={"doctor_id": doctor_id, "schedule_id": slot_id, "reason": "Checkup"}
    )
    assert response.status_code == 401


async def test_invalid_token_is_unauthenticated(client):
    response = await client.get("/schedules", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


async def test_inactive_account_is_rejected(client, session_factory, doctor_id, slot_id):
    dormant = await create_patient(session_factory, "dormant@example.com", is_active=False)
    response = await client.post(
        "/appointments",
        json={"doctor_id": doctor_id, "schedule_id": slot_id, "reason": "Checkup"},
        headers=auth(dormant, "patient"),
    )
    assert response.status_code == 401


async def test_session_cookie_is_accepted(client, patient_id):
    client.cookies.set("session", token_for(patient_id, "patient"))
    response = await client.get(f"/appointments/patient/{patient_id}")
    client.cookies.clear()
    assert response.status_code == 200
    assert response.json() == []


async def test_request_id_is_echoed(client):
    response = await client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


async def test_booking_flow_over_http(client, doctor_id, patient_id, slot_id):
    patient = auth(patient_id, "patient")
    doctor = auth(doctor_id, "doctor")

    created = await client.post(
        "/appointments",
        json={"doctor_id": doctor_id, "schedule_id": slot_id, "reason": "Checkup", "mode": "telehealth"},
        headers=patient,
    )
    assert created.status_code == 201
    appointment = created.json()
    assert appointment["status"] == "pending"
    assert appointment["doctor_profile"]["specialty"] == "Diagnostics"

    available = await client.get(f"/schedules/doctor/{doctor_id}/available")
    assert available.json() == []

    confirmed = await client.put(
        f"/appointments/{appointment['id']}", json={"status": "confirmed"}, headers=doctor
    )
    assert confirmed.status_code == 200
    assert confirmed.json()["status"] == "confirmed"

    fetched = await client.get(f"/appointments/{appointment['id']}", headers=patient)
    assert fetched.json()["status"] == "confirmed"

    listed = await client.get(f"/appointments/doctor/{doctor_id}", headers=doctor)
    assert [a["id"] for a in listed.json()] == [appointment["id"]]


async def test_patient_role_required_to_book(client, doctor_id, slot_id):
    response = await client.post(
        "/appointments",
        json={"doctor_id": doctor_id, "schedule_id": slot_id, "reason": "Checkup"},
        headers=auth(doctor_id, "doctor"),
    )
    assert response.status_code == 403


async def test_error_body_shape(client, doctor_id, patient_id, other_patient_id, slot_id):
    body = {"doctor_id": doctor_id, "schedule_id": slot_id, "reason": "Checkup"}
    await client.post("/appointments", json=body, headers=auth(patient_id, "patient"))

    response = await client.post("/appointments", json=body, headers=auth(other_patient_id, "patient"))
    assert response.status_code == 400
    assert response.json() == {
        "error": "Time slot not available or has expired",
        "code": "CONFLICT",
        "details": {"schedule_id": slot_id},
    }


async def test_missing_fields_are_validation_errors(client, patient_id):
    response = await client.post("/appointments", json={}, headers=auth(patient_id, "patient"))
    assert response.status_code == 400
    payload = response.json()
    assert payload["code"] == "VALIDATION_ERROR"
    assert payload["error"] == "Missing required fields"
    assert payload["details"]["missing"] == ["doctor_id", "schedule_id", "reason"]


async def test_malformed_body_maps_to_400(client, doctor_id):
    response = await client.post(
        "/schedules", json={"starts_at": "tomorrow"}, headers=auth(doctor_id, "doctor")
    )
    assert response.status_code == 400
    assert response.json()["code"] == "VALIDATION_ERROR"


async def test_forbidden_and_not_found_codes(client, doctor_id, patient_id, other_patient_id, slot_id):
    created = await client.post(
        "/appointments",
        json={"doctor_id": doctor_id, "schedule_id": slot_id, "reason": "Checkup"},
        headers=auth(patient_id, "patient"),
    )
    appointment_id = created.json()["id"]

    forbidden = await client.delete(f"/appointments/{appointment_id}", headers=auth(other_patient_id, "patient"))
    assert forbidden.status_code == 403
    assert forbidden.json()["code"] == "AUTHORIZATION_ERROR"

    missing = await client.put("/appointments/999", json={"status": "cancelled"}, headers=auth(patient_id, "patient"))
    assert missing.status_code == 404
    assert missing.json()["code"] == "NOT_FOUND"

    deleted = await client.delete(f"/appointments/{appointment_id}", headers=auth(patient_id, "patient"))
    assert deleted.status_code == 200
    assert deleted.json()["message"] == "Appointment deleted successfully"


async def test_schedule_endpoints(client, doctor_id, patient_id):
    doctor = auth(doctor_id, "doctor")
    created = await client.post(
        "/schedules",
        json={"starts_at": at(2, 9).isoformat(), "ends_at": at(2, 9, 30).isoformat()},
        headers=doctor,
    )
    assert created.status_code == 201
    schedule = created.json()
    assert schedule["is_available"] is True

    clash = await client.post(
        "/schedules",
        json={"starts_at": at(2, 9, 15).isoformat(), "ends_at": at(2, 9, 45).isoformat()},
        headers=doctor,
    )
    assert clash.status_code == 400
    assert clash.json()["error"] == "This time slot conflicts with an existing schedule"

    by_patient = await client.post(
        "/schedules",
        json={"starts_at": at(3, 9).isoformat(), "ends_at": at(3, 9, 30).isoformat()},
        headers=auth(patient_id, "patient"),
    )
    assert by_patient.status_code == 403

    day = at(2, 0).date().isoformat()
    available = await client.get(f"/schedules/doctor/{doctor_id}/available", params={"date": day})
    assert available.status_code == 200
    assert available.json()[0]["date"] == day
    assert [s["id"] for s in available.json()[0]["slots"]] == [schedule["id"]]

    updated = await client.put(
        f"/schedules/{schedule['id']}",
        json={"is_available": False, "unavailable_reason": "Training"},
        headers=doctor,
    )
    assert updated.status_code == 200
    assert updated.json()["unavailable_reason"] == "Training"

    own = await client.get("/schedules", headers=doctor)
    assert [s["id"] for s in own.json()] == [schedule["id"]]

    deleted = await client.delete(f"/schedules/{schedule['id']}", headers=doctor)
    assert deleted.status_code == 200


async def test_booked_schedule_cannot_be_deleted(client, doctor_id, patient_id, slot_id):
    await client.post(
        "/appointments",
        json={"doctor_id": doctor_id, "schedule_id": slot_id, "reason": "Checkup"},
        headers=auth(patient_id, "patient"),
    )
    response = await client.delete(f"/schedules/{slot_id}", headers=auth(doctor_id, "doctor"))
    assert response.status_code == 400
    assert response.json()["error"] == "Cannot delete a time slot that has an active appointment"


async def test_available_for_unknown_doctor(client):
    response = await client.get("/schedules/doctor/999/available")
    assert response.status_code == 404


async def test_prescription_endpoints(client, session_factory, doctor_id, patient_id):
    doctor = auth(doctor_id, "doctor")
    patient = auth(patient_id, "patient")
    slot = await create_slot(session_factory, doctor_id, at(1, 14))
    appointment = (
        await client.post(
            "/appointments",
            json={"doctor_id": doctor_id, "schedule_id": slot, "reason": "Fever"},
            headers=patient,
        )
    ).json()
    for status in ("confirmed", "completed"):
        await client.put(f"/appointments/{appointment['id']}", json={"status": status}, headers=doctor)

    body = {
        "appointment_id": appointment["id"],
        "medications": [
            {"name": "Amoxicillin", "dosage": "500mg", "frequency": "3x daily", "duration": "7 days"}
        ],
        "diagnosis": "Strep throat",
        "expiry_date": at(30, 0).isoformat(),
    }
    created = await client.post("/prescriptions", json=body, headers=doctor)
    assert created.status_code == 201
    prescription = created.json()

    duplicate = await client.post("/prescriptions", json=body, headers=doctor)
    assert duplicate.status_code == 400
    assert duplicate.json()["code"] == "DUPLICATE_PRESCRIPTION"

    by_patient = await client.post("/prescriptions", json=body, headers=patient)
    assert by_patient.status_code == 403

    bad_update = await client.put(
        f"/prescriptions/{prescription['id']}", json={"appointment_id": 1}, headers=doctor
    )
    assert bad_update.status_code == 400
    assert bad_update.json()["error"] == "Invalid updates"

    null_expiry = await client.put(
        f"/prescriptions/{prescription['id']}", json={"expiry_date": None}, headers=doctor
    )
    assert null_expiry.status_code == 400
    assert null_expiry.json()["code"] == "VALIDATION_ERROR"
    assert null_expiry.json()["error"] == "Expiry date cannot be empty"

    updated = await client.put(
        f"/prescriptions/{prescription['id']}", json={"diagnosis": "Tonsillitis"}, headers=doctor
    )
    assert updated.json()["diagnosis"] == "Tonsillitis"

    listed = await client.get(f"/prescriptions/patient/{patient_id}", headers=patient)
    assert [p["id"] for p in listed.json()] == [prescription["id"]]

    deleted = await client.delete(f"/prescriptions/{prescription['id']}", headers=doctor)
    assert deleted.status_code == 200
