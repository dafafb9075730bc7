from typing import Optional
import logging

from fastapi import BackgroundTasks

from ..core.config import settings
from ..models.appointment import Appointment
from ..models.doctor import Doctor
from ..models.patient import Patient
from .scheduling import format_date, format_time

logger = logging.getLogger(__name__)

class NotificationService:
    """Appointment notifications.

    Delivery is a placeholder: messages are logged, not emailed. Senders are
    best-effort and never raise, so a failed notification cannot undo the
    booking or cancellation that triggered it. When ``background_tasks`` is
    given, the message is built immediately (while the ORM rows are still
    attached to the request session) and delivered after the response.
    """

    def __init__(
        self,
        background_tasks: Optional[BackgroundTasks] = None,
        enabled: Optional[bool] = None
    ):
        self.background_tasks = background_tasks
        self.enabled = settings.NOTIFICATIONS_ENABLED if enabled is None else enabled

    def send_appointment_confirmation(
        self,
        appointment: Appointment,
        patient: Patient,
        doctor: Doctor
    ) -> bool:
        """Notify patient and doctor about a booked or confirmed appointment."""
        return self._send("confirmation", appointment, patient, doctor)

    def send_appointment_cancellation(
        self,
        appointment: Appointment,
        patient: Patient,
        doctor: Doctor,
        reason: Optional[str] = None
    ) -> bool:
        """Notify patient and doctor about a cancelled appointment."""
        return self._send("cancellation", appointment, patient, doctor, reason=reason)

    def deliver(self, kind: str, payload: dict) -> bool:
        try:
            logger.info(f"Appointment {kind} would be sent: {payload}")
            return True
        except Exception:
            logger.exception(f"Failed to deliver appointment {kind}: {payload}")
            return False

    def _send(self, kind: str, appointment, patient, doctor, **extra) -> bool:
        if not self.enabled:
            logger.debug(f"Notifications disabled, skipping {kind} for appointment {appointment.id}")
            return False

        try:
            payload = {
                "appointment_id": appointment.id,
                "patient_email": patient.email,
                "doctor_email": doctor.email,
                "appointment_date": format_date(appointment.appointment_date),
                "appointment_time": format_time(appointment.appointment_time),
                "sender": settings.NOTIFICATION_SENDER or settings.APP_NAME,
                **extra,
            }
        except Exception:
            logger.exception(f"Failed to build appointment {kind} for appointment {getattr(appointment, 'id', None)}")
            return False

        if self.background_tasks is not None:
            self.background_tasks.add_task(self.deliver, kind, payload)
            return True

        return self.deliver(kind, payload)
