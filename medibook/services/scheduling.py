"""Scheduling rules for appointment booking.

Pure functions and value objects shared by the availability calculator,
the slot-conflict guard, and the status-transition surface. Nothing in
this module touches the database.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import FrozenSet, List, Optional, Union
import calendar
import re

from ..models.appointment import AppointmentStatus

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M:%S"

_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])(?::([0-5][0-9]))?$")
_STRICT_TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]:[0-5][0-9]$")

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


@dataclass(frozen=True)
class WorkingHours:
    """Clinic working-hours template.

    ``start`` and ``end`` are both bookable slot times; with the defaults the
    template is 09:00, 09:30, ..., 17:00 (17 slots). ``weekdays`` uses
    ``date.weekday()`` numbering, Monday is 0.
    """
    start: time = time(9, 0)
    end: time = time(17, 0)
    slot_minutes: int = 30
    weekdays: FrozenSet[int] = field(default_factory=lambda: frozenset(range(5)))

    def __post_init__(self):
        if self.slot_minutes <= 0:
            raise ValueError("slot_minutes must be positive")
        if self.end < self.start:
            raise ValueError("Working day must end after it starts")

    def slots(self) -> List[time]:
        """Return every slot start time of a working day, in order."""
        current = datetime.combine(date.min, self.start)
        last = datetime.combine(date.min, self.end)
        step = timedelta(minutes=self.slot_minutes)
        result = []
        while current <= last:
            result.append(current.time())
            current += step
        return result

    def is_working_day(self, day: date) -> bool:
        return day.weekday() in self.weekdays

    def covers(self, value: time) -> bool:
        # Seconds are ignored, so 17:00:59 still counts as 17:00
        minutes = value.hour * 60 + value.minute
        return _minutes(self.start) <= minutes <= _minutes(self.end)

    def on_boundary(self, value: time) -> bool:
        offset = value.hour * 60 + value.minute - _minutes(self.start)
        return value.second == 0 and offset % self.slot_minutes == 0

    def describe_days(self) -> str:
        days = sorted(self.weekdays)
        if not days:
            return "no days"
        if days == list(range(days[0], days[-1] + 1)) and len(days) > 1:
            return f"{WEEKDAY_NAMES[days[0]]} to {WEEKDAY_NAMES[days[-1]]}"
        return ", ".join(WEEKDAY_NAMES[d] for d in days)

    def describe_hours(self) -> str:
        return f"{_clock(self.start)} and {_clock(self.end)}"


DEFAULT_WORKING_HOURS = WorkingHours()


@dataclass
class SlotCheck:
    """Verdict of a slot guard: never raised, always returned."""
    available: bool
    reason: str

    def __bool__(self):
        return self.available


@dataclass
class CancellationCheck:
    can_cancel: bool
    reason: str

    def __bool__(self):
        return self.can_cancel


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _clock(value: time) -> str:
    """Format 09:00 as '9:00 AM' and 17:00 as '5:00 PM'."""
    hour = value.hour % 12 or 12
    suffix = "AM" if value.hour < 12 else "PM"
    return f"{hour}:{value.minute:02d} {suffix}"


def parse_date(value: Union[str, date]) -> date:
    """Parse ``YYYY-MM-DD`` field by field, with no timezone conversion."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    match = _DATE_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Invalid date '{value}', expected YYYY-MM-DD")
    year, month, day = (int(part) for part in match.groups())
    return date(year, month, day)


def parse_time(value: Union[str, time]) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS``."""
    if isinstance(value, time):
        return value
    match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Invalid time '{value}', expected HH:MM:SS")
    hour, minute, second = match.groups()
    return time(int(hour), int(minute), int(second or 0))


def format_date(value: date) -> str:
    return value.strftime(DATE_FORMAT)


def format_time(value: time) -> str:
    return value.strftime(TIME_FORMAT)


def add_months(day: date, months: int) -> date:
    """Shift ``day`` by whole months, clamping to the last day of the month."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def validate_time_slot(value: str, hours: WorkingHours = DEFAULT_WORKING_HOURS) -> SlotCheck:
    """Check the shape of a requested slot time: ``HH:MM:SS`` on a slot boundary.

    Whether the time falls inside working hours is left to the slot guard.
    """
    if not isinstance(value, str) or not _STRICT_TIME_RE.match(value):
        return SlotCheck(False, "Invalid time format. Use HH:MM:SS")

    slot = parse_time(value)
    if not hours.on_boundary(slot):
        return SlotCheck(False, "Appointments are only available on the hour or half hour")

    return SlotCheck(True, "Time slot is valid")


def appointment_datetime(appointment) -> datetime:
    """Combine an appointment's date and time into a naive local datetime."""
    return datetime.combine(
        parse_date(appointment.appointment_date),
        parse_time(appointment.appointment_time),
    )


def can_cancel_appointment(
    appointment,
    now: Optional[datetime] = None,
    window: timedelta = timedelta(hours=2),
) -> CancellationCheck:
    """Decide whether a patient may cancel ``appointment``.

    Only pending appointments qualify, and only while the scheduled time is
    more than ``window`` away. The caller performs the status update.
    """
    if AppointmentStatus(appointment.status) != AppointmentStatus.PENDING:
        return CancellationCheck(False, "Only pending appointments can be cancelled")

    now = now or datetime.now()
    scheduled = appointment_datetime(appointment)

    if scheduled <= now:
        return CancellationCheck(False, "Cannot cancel appointments that have already passed")

    if scheduled <= now + window:
        hours = window.total_seconds() / 3600
        label = f"{hours:g} hour" + ("" if hours == 1 else "s")
        return CancellationCheck(False, f"Cannot cancel appointments within {label} of the scheduled time")

    return CancellationCheck(True, "Appointment can be cancelled")


# Status state machine
ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CONFIRMED: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return AppointmentStatus(target) in ALLOWED_TRANSITIONS[AppointmentStatus(current)]
