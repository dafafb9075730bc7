from datetime import date, datetime, time, timedelta
import threading

import pytest
from sqlalchemy.exc import IntegrityError

from medibook.core.config import settings
from medibook.core.exceptions import ConflictError, NotFoundError
from medibook.models.appointment import Appointment, AppointmentStatus
from medibook.models.doctor import Doctor
from medibook.models.patient import Patient
from medibook.schemas.appointment import AppointmentCreate
from medibook.services import notification_service
from medibook.services.appointment_service import AppointmentService
from medibook.services.availability_service import AvailabilityService
from medibook.services.notification_service import NotificationService
from medibook.services.scheduling import SlotCheck

from tests.conftest import TestingSessionLocal, insert_appointment, next_weekday, next_weekend_day

def booking(doctor_id, day, at="10:00:00", **extra):
    return {
        "doctorId": doctor_id,
        "appointmentDate": day.isoformat() if isinstance(day, date) else day,
        "appointmentTime": at,
        "reason": "Routine check-up",
        **extra,
    }

class TestBooking:

    def test_book_appointment(self, client, patient, doctor, booking_day):
        response = client.post(
            "/api/patients/appointments",
            json=booking(doctor["id"], booking_day, notes="First visit"),
            headers=patient["headers"]
        )
        assert response.status_code == 201

        data = response.json()
        assert data["status"] == "pending"
        assert data["patientId"] == patient["id"]
        assert data["doctorId"] == doctor["id"]
        assert data["appointmentDate"] == booking_day.isoformat()
        assert data["appointmentTime"] == "10:00:00"
        assert data["notes"] == "First visit"
        assert data["doctor"]["lastName"] == "House"
        assert data["doctor"]["specialization"] == "Diagnostics"

    def test_booking_removes_slot_from_availability(self, client, patient, doctor, booking_day):
        client.post(
            "/api/patients/appointments",
            json=booking(doctor["id"], booking_day),
            headers=patient["headers"]
        )

        response = client.get(
            f"/api/patients/doctors/{doctor['id']}/availability",
            params={"date": booking_day.isoformat()},
            headers=patient["headers"]
        )
        slots = response.json()["slots"]
        assert len(slots) == 16
        assert "10:00:00" not in slots

    def test_snake_case_body_is_accepted(self, client, patient, doctor, booking_day):
        response = client.post(
            "/api/patients/appointments",
            json={
                "doctor_id": doctor["id"],
                "appointment_date": booking_day.isoformat(),
                "appointment_time": "11:30:00",
            },
            headers=patient["headers"]
        )
        assert response.status_code == 201

    def test_slot_already_booked(self, client, patient, other_patient, doctor, booking_day):
        client.post(
            "/api/patients/appointments",
            json=booking(doctor["id"], booking_day),
            headers=patient["headers"]
        )

        response = client.post(
            "/api/patients/appointments",
            json=booking(doctor["id"], booking_day),
            headers=other_patient["headers"]
        )
        assert response.status_code == 409
        assert response.json()["detail"] == "Time slot is already booked"

    def test_same_time_with_another_doctor(self, client, patient, doctor, other_doctor, booking_day):
        for doctor_id in (doctor["id"], other_doctor["id"]):
            response = client.post(
                "/api/patients/appointments",
                json=booking(doctor_id, booking_day),
                headers=patient["headers"]
            )
            assert response.status_code == 201

    def test_unknown_doctor(self, client, patient, booking_day):
        response = client.post(
            "/api/patients/appointments",
            json=booking(999, booking_day),
            headers=patient["headers"]
        )
        assert response.status_code == 404
        assert response.json()["detail"] == "Doctor not found"

    def test_weekend(self, client, patient, doctor):
        response = client.post(
            "/api/patients/appointments",
            json=booking(doctor["id"], next_weekend_day()),
            headers=patient["headers"]
        )
        assert response.status_code == 409
        assert response.json()["detail"] == "Appointments are only available on weekdays (Monday to Friday)"

    def test_past_date(self, client, patient, doctor):
        response = client.post(
            "/api/patients/appointments",
            json=booking(doctor["id"], date.today() - timedelta(days=1)),
            headers=patient["headers"]
        )
        assert response.status_code == 409
        assert response.json()["detail"] == "Appointment date must be in the future"

    def test_beyond_booking_horizon(self, client, patient, doctor):
        response = client.post(
            "/api/patients/appointments",
            json=booking(doctor["id"], next_weekday(days_ahead=120)),
            headers=patient["headers"]
        )
        assert response.status_code == 409
        assert response.json()["detail"] == "Appointment date cannot be more than 3 months in the future"

    def test_outside_working_hours(self, client, patient, doctor, booking_day):
        response = client.post(
            "/api/patients/appointments",
            json=booking(doctor["id"], booking_day, at="18:00:00"),
            headers=patient["headers"]
        )
        assert response.status_code == 409
        assert response.json()["detail"] == "Appointments are only available between 9:00 AM and 5:00 PM"

    @pytest.mark.parametrize("at", ["10:15:00", "10:30", "ten"])
    def test_invalid_time_is_validation_error(self, client, patient, doctor, booking_day, at):
        response = client.post(
            "/api/patients/appointments",
            json=booking(doctor["id"], booking_day, at=at),
            headers=patient["headers"]
        )
        assert response.status_code == 400
        body = response.json()
        assert body["detail"] == "Validation failed"
        assert body["errors"][0]["field"] == "appointmentTime"

    def test_invalid_date_is_validation_error(self, client, patient, doctor):
        response = client.post(
            "/api/patients/appointments",
            json=booking(doctor["id"], "10-03-2025"),
            headers=patient["headers"]
        )
        assert response.status_code == 400

    def test_doctor_cannot_book(self, client, doctor, booking_day):
        response = client.post(
            "/api/patients/appointments",
            json=booking(doctor["id"], booking_day),
            headers=doctor["headers"]
        )
        assert response.status_code == 403

    def test_requires_authentication(self, client, doctor, booking_day):
        response = client.post("/api/patients/appointments", json=booking(doctor["id"], booking_day))
        assert response.status_code == 401

class TestPatientAppointments:

    def test_list_and_filter(self, client, db_session, patient, doctor, booking_day):
        insert_appointment(db_session, patient["id"], doctor["id"], booking_day, time(9, 0))
        insert_appointment(db_session, patient["id"], doctor["id"], booking_day, time(14, 0))
        insert_appointment(
            db_session, patient["id"], doctor["id"], booking_day, time(15, 0),
            status=AppointmentStatus.CANCELLED
        )

        response = client.get("/api/patients/appointments", headers=patient["headers"])
        assert response.status_code == 200
        data = response.json()
        assert data["pagination"]["total"] == 3
        # Newest first, later times first within a day
        assert [item["appointmentTime"] for item in data["items"]] == ["15:00:00", "14:00:00", "09:00:00"]

        response = client.get(
            "/api/patients/appointments",
            params={"status": "cancelled"},
            headers=patient["headers"]
        )
        assert response.json()["pagination"]["total"] == 1

        response = client.get(
            "/api/patients/appointments",
            params={"limit": 2, "sortOrder": "asc"},
            headers=patient["headers"]
        )
        data = response.json()
        assert data["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
        assert data["items"][0]["appointmentTime"] == "09:00:00"

    def test_invalid_pagination(self, client, patient):
        response = client.get("/api/patients/appointments", params={"page": 0}, headers=patient["headers"])
        assert response.status_code == 400

    def test_other_patients_appointment_is_hidden(self, client, db_session, patient, other_patient, doctor, booking_day):
        appointment = insert_appointment(db_session, other_patient["id"], doctor["id"], booking_day, time(9, 0))

        response = client.get(f"/api/patients/appointments/{appointment.id}", headers=patient["headers"])
        assert response.status_code == 404

        response = client.get(f"/api/patients/appointments/{appointment.id}", headers=other_patient["headers"])
        assert response.status_code == 200

class TestCancellation:

    def test_cancel_pending(self, client, patient, doctor, booking_day):
        created = client.post(
            "/api/patients/appointments",
            json=booking(doctor["id"], booking_day),
            headers=patient["headers"]
        ).json()

        response = client.put(
            f"/api/patients/appointments/{created['id']}/cancel",
            json={"reason": "Feeling better"},
            headers=patient["headers"]
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "cancelled"
        assert data["cancellationReason"] == "Feeling better"

        # The slot is free again
        response = client.post(
            "/api/patients/appointments",
            json=booking(doctor["id"], booking_day),
            headers=patient["headers"]
        )
        assert response.status_code == 201

    def test_cancel_without_reason(self, client, db_session, patient, doctor, booking_day):
        appointment = insert_appointment(db_session, patient["id"], doctor["id"], booking_day, time(9, 0))

        response = client.put(f"/api/patients/appointments/{appointment.id}/cancel", headers=patient["headers"])
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_cancel_twice(self, client, db_session, patient, doctor, booking_day):
        appointment = insert_appointment(db_session, patient["id"], doctor["id"], booking_day, time(9, 0))
        url = f"/api/patients/appointments/{appointment.id}/cancel"

        assert client.put(url, headers=patient["headers"]).status_code == 200

        response = client.put(url, headers=patient["headers"])
        assert response.status_code == 409
        assert response.json()["detail"] == "Only pending appointments can be cancelled"

    def test_cancel_confirmed(self, client, db_session, patient, doctor, booking_day):
        appointment = insert_appointment(
            db_session, patient["id"], doctor["id"], booking_day, time(9, 0),
            status=AppointmentStatus.CONFIRMED
        )
        response = client.put(f"/api/patients/appointments/{appointment.id}/cancel", headers=patient["headers"])
        assert response.status_code == 409
        assert response.json()["detail"] == "Only pending appointments can be cancelled"

    def test_cancel_past(self, client, db_session, patient, doctor):
        appointment = insert_appointment(
            db_session, patient["id"], doctor["id"], date.today() - timedelta(days=1), time(10, 0)
        )
        response = client.put(f"/api/patients/appointments/{appointment.id}/cancel", headers=patient["headers"])
        assert response.status_code == 409
        assert response.json()["detail"] == "Cannot cancel appointments that have already passed"

    def test_cancel_within_window(self, db_session, patient, doctor):
        now = datetime(2025, 3, 10, 8, 0)
        appointment = insert_appointment(db_session, patient["id"], doctor["id"], date(2025, 3, 10), time(9, 0))
        service = AppointmentService(db_session, notifier=NotificationService(enabled=False), now=now)
        patient_row = db_session.get(Patient, patient["id"])

        with pytest.raises(ConflictError) as exc_info:
            service.cancel_by_patient(patient_row, appointment.id)
        assert exc_info.value.detail == "Cannot cancel appointments within 2 hours of the scheduled time"

        db_session.refresh(appointment)
        assert appointment.status == AppointmentStatus.PENDING

    def test_cancel_other_patients_appointment(self, client, db_session, patient, other_patient, doctor, booking_day):
        appointment = insert_appointment(db_session, other_patient["id"], doctor["id"], booking_day, time(9, 0))

        response = client.put(f"/api/patients/appointments/{appointment.id}/cancel", headers=patient["headers"])
        assert response.status_code == 404

    def test_short_reason_is_rejected(self, client, db_session, patient, doctor, booking_day):
        appointment = insert_appointment(db_session, patient["id"], doctor["id"], booking_day, time(9, 0))

        response = client.put(
            f"/api/patients/appointments/{appointment.id}/cancel",
            json={"reason": "no"},
            headers=patient["headers"]
        )
        assert response.status_code == 400

class TestStatusUpdates:

    def update(self, client, doctor, appointment_id, status, notes=None):
        body = {"status": status}
        if notes:
            body["notes"] = notes
        return client.put(
            f"/api/doctors/appointments/{appointment_id}/status",
            json=body,
            headers=doctor["headers"]
        )

    def test_full_lifecycle(self, client, db_session, patient, doctor, booking_day):
        appointment = insert_appointment(db_session, patient["id"], doctor["id"], booking_day, time(9, 0))

        response = self.update(client, doctor, appointment.id, "confirmed", notes="Bring lab results")
        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"
        assert response.json()["notes"] == "Bring lab results"

        response = self.update(client, doctor, appointment.id, "completed")
        assert response.status_code == 200
        assert response.json()["status"] == "completed"

    @pytest.mark.parametrize("initial,target", [
        (AppointmentStatus.PENDING, "completed"),
        (AppointmentStatus.CONFIRMED, "pending"),
        (AppointmentStatus.COMPLETED, "confirmed"),
        (AppointmentStatus.COMPLETED, "cancelled"),
        (AppointmentStatus.CANCELLED, "confirmed"),
        (AppointmentStatus.CANCELLED, "cancelled"),
    ])
    def test_invalid_transitions(self, client, db_session, patient, doctor, booking_day, initial, target):
        appointment = insert_appointment(
            db_session, patient["id"], doctor["id"], booking_day, time(9, 0), status=initial
        )

        response = self.update(client, doctor, appointment.id, target)
        assert response.status_code == 409
        assert response.json()["detail"] == (
            f"Cannot change appointment status from {initial.value} to {target}"
        )

    def test_doctor_cancellation_records_reason(self, client, db_session, patient, doctor, booking_day):
        appointment = insert_appointment(
            db_session, patient["id"], doctor["id"], booking_day, time(9, 0),
            status=AppointmentStatus.CONFIRMED
        )

        response = self.update(client, doctor, appointment.id, "cancelled", notes="Doctor unavailable")
        assert response.status_code == 200
        assert response.json()["cancellationReason"] == "Doctor unavailable"

    def test_doctor_cancellation_keeps_long_notes(self, client, db_session, patient, doctor, booking_day):
        appointment = insert_appointment(
            db_session, patient["id"], doctor["id"], booking_day, time(9, 0),
            status=AppointmentStatus.CONFIRMED
        )
        notes = "Referred to a specialist. " * 30
        assert 500 < len(notes) <= 1000

        response = self.update(client, doctor, appointment.id, "cancelled", notes=notes)
        assert response.status_code == 200
        assert response.json()["cancellationReason"] == notes

        # Every note the status endpoint accepts fits the column
        assert Appointment.__table__.c.cancellation_reason.type.length is None

    def test_unknown_status(self, client, db_session, patient, doctor, booking_day):
        appointment = insert_appointment(db_session, patient["id"], doctor["id"], booking_day, time(9, 0))

        response = self.update(client, doctor, appointment.id, "rescheduled")
        assert response.status_code == 400

    def test_other_doctors_appointment(self, client, db_session, patient, doctor, other_doctor, booking_day):
        appointment = insert_appointment(db_session, patient["id"], other_doctor["id"], booking_day, time(9, 0))

        response = self.update(client, doctor, appointment.id, "confirmed")
        assert response.status_code == 404

    def test_patient_cannot_update_status(self, client, db_session, patient, doctor, booking_day):
        appointment = insert_appointment(db_session, patient["id"], doctor["id"], booking_day, time(9, 0))

        response = self.update(client, patient, appointment.id, "confirmed")
        assert response.status_code == 403

class TestNotifications:

    def test_failed_notification_does_not_fail_booking(self, client, monkeypatch, patient, doctor, booking_day):
        def broken(value):
            raise RuntimeError("template error")

        monkeypatch.setattr(notification_service, "format_date", broken)

        response = client.post(
            "/api/patients/appointments",
            json=booking(doctor["id"], booking_day),
            headers=patient["headers"]
        )
        assert response.status_code == 201

    def test_failed_notification_does_not_fail_status_change(
        self, client, db_session, monkeypatch, patient, doctor, booking_day
    ):
        appointment = insert_appointment(db_session, patient["id"], doctor["id"], booking_day, time(9, 0))
        monkeypatch.setattr(notification_service, "format_time", lambda value: 1 / 0)

        response = client.put(
            f"/api/doctors/appointments/{appointment.id}/status",
            json={"status": "cancelled"},
            headers=doctor["headers"]
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_disabled_notifications(self, db_session, patient, doctor, booking_day):
        appointment = insert_appointment(db_session, patient["id"], doctor["id"], booking_day, time(9, 0))
        notifier = NotificationService(enabled=False)
        assert notifier.send_appointment_confirmation(appointment, appointment.patient, appointment.doctor) is False

    def test_sends_without_background_tasks(self, db_session, patient, doctor, booking_day):
        appointment = insert_appointment(db_session, patient["id"], doctor["id"], booking_day, time(9, 0))
        notifier = NotificationService(enabled=True)
        assert notifier.send_appointment_cancellation(
            appointment, appointment.patient, appointment.doctor, reason="Schedule change"
        ) is True

    def test_payload_names_the_sender(self, db_session, monkeypatch, patient, doctor, booking_day):
        class RecordingNotifier(NotificationService):
            def __init__(self):
                super().__init__(enabled=True)
                self.sent = []

            def deliver(self, kind, payload):
                self.sent.append((kind, payload))
                return True

        appointment = insert_appointment(db_session, patient["id"], doctor["id"], booking_day, time(9, 0))
        notifier = RecordingNotifier()

        notifier.send_appointment_confirmation(appointment, appointment.patient, appointment.doctor)
        monkeypatch.setattr(settings, "NOTIFICATION_SENDER", "appointments@clinic.example.com")
        notifier.send_appointment_confirmation(appointment, appointment.patient, appointment.doctor)

        assert [payload["sender"] for _, payload in notifier.sent] == [
            settings.APP_NAME, "appointments@clinic.example.com"
        ]
        assert notifier.sent[0][1]["patient_email"] == "patient@example.com"

class TestDoubleBooking:

    def test_storage_rejects_second_active_appointment(self, db_session, patient, other_patient, doctor, booking_day):
        insert_appointment(db_session, patient["id"], doctor["id"], booking_day, time(10, 0))

        with pytest.raises(IntegrityError):
            insert_appointment(db_session, other_patient["id"], doctor["id"], booking_day, time(10, 0))
        db_session.rollback()

    def test_exactly_one_of_many_inserts_succeeds(self, patient, other_patient, doctor, booking_day):
        successes = 0
        for attempt, patient_id in enumerate((patient["id"], other_patient["id"]) * 3):
            status = AppointmentStatus.CONFIRMED if attempt % 2 else AppointmentStatus.PENDING
            db = TestingSessionLocal()
            try:
                insert_appointment(db, patient_id, doctor["id"], booking_day, time(10, 0), status=status)
                successes += 1
            except IntegrityError:
                db.rollback()
            finally:
                db.close()

        assert successes == 1

    def test_concurrent_bookings_for_one_slot(self, patient, other_patient, doctor, booking_day):
        attempts = 6
        barrier = threading.Barrier(attempts)
        booked, conflicts, errors = [], [], []
        data = AppointmentCreate(
            doctor_id=doctor["id"],
            appointment_date=booking_day.isoformat(),
            appointment_time="10:00:00",
        )

        def attempt(patient_id):
            db = TestingSessionLocal()
            try:
                service = AppointmentService(db, notifier=NotificationService(enabled=False))
                booking_patient = db.get(Patient, patient_id)
                barrier.wait()
                booked.append(service.book(booking_patient, data).id)
            except ConflictError as exc:
                conflicts.append((exc.status_code, exc.detail))
            except Exception as exc:
                errors.append(exc)
            finally:
                db.close()

        threads = [
            threading.Thread(target=attempt, args=(patient_id,))
            for patient_id in (patient["id"], other_patient["id"]) * (attempts // 2)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(booked) == 1
        assert conflicts == [(409, "Time slot is already booked")] * (attempts - 1)

        db = TestingSessionLocal()
        try:
            active = db.query(Appointment).filter(
                Appointment.doctor_id == doctor["id"],
                Appointment.appointment_date == booking_day,
            ).all()
            assert [row.id for row in active] == booked
        finally:
            db.close()

    def test_inactive_appointments_do_not_hold_the_slot(self, db_session, patient, other_patient, doctor, booking_day):
        insert_appointment(
            db_session, patient["id"], doctor["id"], booking_day, time(10, 0),
            status=AppointmentStatus.CANCELLED
        )
        insert_appointment(
            db_session, patient["id"], doctor["id"], booking_day, time(10, 0),
            status=AppointmentStatus.COMPLETED
        )
        insert_appointment(db_session, other_patient["id"], doctor["id"], booking_day, time(10, 0))

        count = db_session.query(Appointment).filter(Appointment.doctor_id == doctor["id"]).count()
        assert count == 3

    def test_lost_race_is_a_conflict(self, db_session, patient, other_patient, doctor, booking_day):
        class StaleAvailability(AvailabilityService):
            """Guard that read the slot before a competing booking committed."""

            def check_slot_availability(self, doctor_id, day, slot):
                return SlotCheck(True, "Time slot is available")

        service = AppointmentService(
            db_session,
            availability=StaleAvailability(db_session),
            notifier=NotificationService(enabled=False),
        )
        data = AppointmentCreate(
            doctor_id=doctor["id"],
            appointment_date=booking_day.isoformat(),
            appointment_time="10:00:00",
        )

        service.book(db_session.get(Patient, patient["id"]), data)
        with pytest.raises(ConflictError) as exc_info:
            service.book(db_session.get(Patient, other_patient["id"]), data)
        assert exc_info.value.status_code == 409
        assert exc_info.value.detail == "Time slot is already booked"

        # The session is usable after the rollback
        assert db_session.query(Appointment).count() == 1

class TestExampleScenario:

    def test_book_then_recompute(self, db_session, patient, doctor):
        today = date(2025, 3, 7)
        availability = AvailabilityService(db_session, today=today)
        service = AppointmentService(
            db_session, availability=availability, notifier=NotificationService(enabled=False)
        )

        before = availability.compute_available_slots(doctor["id"], "2025-03-10")
        assert len(before.slots) == 17
        assert before.slots[0] == "09:00:00"
        assert before.slots[-1] == "17:00:00"

        service.book(
            db_session.get(Patient, patient["id"]),
            AppointmentCreate(doctor_id=doctor["id"], appointment_date="2025-03-10", appointment_time="10:00:00")
        )

        after = availability.compute_available_slots(doctor["id"], "2025-03-10")
        assert len(after.slots) == 16
        assert "10:00:00" not in after.slots
        assert not availability.check_slot_availability(doctor["id"], "2025-03-10", "10:00:00")

    def test_unknown_doctor_from_service(self, db_session, patient):
        service = AppointmentService(db_session, notifier=NotificationService(enabled=False))
        with pytest.raises(NotFoundError):
            service.book(
                db_session.get(Patient, patient["id"]),
                AppointmentCreate(
                    doctor_id=999,
                    appointment_date=next_weekday().isoformat(),
                    appointment_time="10:00:00"
                )
            )

    def test_doctor_lookup(self, db_session, doctor):
        assert db_session.get(Doctor, doctor["id"]).full_name == "Gregory House"
