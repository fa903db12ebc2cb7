import datetime as dt
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Weekday(str, Enum):
    """Day names as stored on recurring availability rules."""

    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def of(cls, date: dt.date) -> "Weekday":
        return list(cls)[date.weekday()]


class BookingStatus(str, Enum):
    """Lifecycle states of a booking."""

    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class AppointmentType(str, Enum):
    IN_PERSON = "in_person"
    VIRTUAL = "virtual"


class WaitlistStatus(str, Enum):
    WAITING = "waiting"
    ASSIGNED = "assigned"
    CANCELLED = "cancelled"


class SyncAction(str, Enum):
    """What an external calendar should do with a booking."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class NotificationEvent(str, Enum):
    BOOKING_CREATED = "booking_created"
    BOOKING_WAITLISTED = "booking_waitlisted"
    WAITLIST_ASSIGNED = "waitlist_assigned"
    BOOKING_CANCELLED = "booking_cancelled"
    BOOKING_RESCHEDULED = "booking_rescheduled"


class Doctor(BaseModel):
    """A doctor as seen by the scheduling core."""

    model_config = ConfigDict(frozen=True)

    doctor_id: int
    name: str = ""
    specialty_id: int
    active: bool = True
    average_appointment_minutes: int = Field(default=30, gt=0)
    experience_years: float = Field(default=0, ge=0)


class AvailabilityRule(BaseModel):
    """A recurring weekly window or a date-specific override for one doctor.

    Exactly one of ``day_of_week`` (recurring) or ``specific_date`` (override)
    is set. ``start_time``/``end_time`` are wall-clock times in the clinic
    timezone.
    """

    model_config = ConfigDict(frozen=True)

    rule_id: int
    doctor_id: int
    day_of_week: Weekday | None = None
    specific_date: dt.date | None = None
    start_time: dt.time
    end_time: dt.time
    is_available: bool = True
    notes: str | None = None

    @model_validator(mode="after")
    def _check_shape(self) -> "AvailabilityRule":
        if (self.day_of_week is None) == (self.specific_date is None):
            raise ValueError("exactly one of day_of_week or specific_date must be set")
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    @property
    def is_recurring(self) -> bool:
        return self.specific_date is None

    @property
    def duration_minutes(self) -> int:
        start = self.start_time.hour * 60 + self.start_time.minute
        end = self.end_time.hour * 60 + self.end_time.minute
        return end - start


class AvailabilityWindow(BaseModel):
    """An availability rule resolved onto a concrete civil date."""

    model_config = ConfigDict(frozen=True)

    doctor_id: int
    date: dt.date
    start: dt.datetime
    end: dt.datetime
    is_available: bool
    rule_id: int
    notes: str | None = None

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60

    def contains(self, instant: dt.datetime) -> bool:
        return self.start <= instant < self.end

    def overlaps(self, start: dt.datetime, end: dt.datetime) -> bool:
        return self.start < end and start < self.end


class Booking(BaseModel):
    """An appointment held on one doctor's ledger over ``[start, end)``."""

    model_config = ConfigDict(frozen=True)

    booking_id: int | None = None
    doctor_id: int
    patient_id: int
    specialty_id: int
    start: dt.datetime
    end: dt.datetime
    status: BookingStatus = BookingStatus.REQUESTED
    type: AppointmentType = AppointmentType.IN_PERSON
    reason: str | None = None
    urgent: bool = False
    priority: int = Field(default=1, ge=1, le=5)
    auto_assigned: bool = False
    cancellation_reason: str | None = None

    @model_validator(mode="after")
    def _check_interval(self) -> "Booking":
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self

    @property
    def is_active(self) -> bool:
        return self.status != BookingStatus.CANCELLED

    def overlaps(self, start: dt.datetime, end: dt.datetime) -> bool:
        return self.start < end and start < self.end


class WaitlistRequest(BaseModel):
    """A request to join the waitlist for a specialty."""

    model_config = ConfigDict(frozen=True)

    patient_id: int
    specialty_id: int
    preferred_doctor_id: int | None = None
    preferred_start: dt.datetime | None = None
    preferred_end: dt.datetime | None = None
    type: AppointmentType = AppointmentType.IN_PERSON
    reason: str | None = None
    urgent: bool = False
    priority: int = Field(default=1, ge=1, le=5)


class BookingRequest(BaseModel):
    """A patient's request for an appointment in a given window."""

    model_config = ConfigDict(frozen=True)

    patient_id: int
    specialty_id: int
    start: dt.datetime
    end: dt.datetime
    doctor_id: int | None = None
    type: AppointmentType = AppointmentType.IN_PERSON
    reason: str | None = None
    urgent: bool = False
    priority: int = Field(default=1, ge=1, le=5)

    @model_validator(mode="after")
    def _check_interval(self) -> "BookingRequest":
        if self.end <= self.start:
            raise ValueError("end must be after start")
        return self

    def to_waitlist_request(self) -> WaitlistRequest:
        return WaitlistRequest(
            patient_id=self.patient_id,
            specialty_id=self.specialty_id,
            preferred_doctor_id=self.doctor_id,
            preferred_start=self.start,
            preferred_end=self.end,
            type=self.type,
            reason=self.reason,
            urgent=self.urgent,
            priority=self.priority,
        )


class WaitlistEntry(BaseModel):
    """A queued request that could not be assigned when it was made."""

    model_config = ConfigDict(frozen=True)

    entry_id: int | None = None
    patient_id: int
    specialty_id: int
    preferred_doctor_id: int | None = None
    preferred_start: dt.datetime | None = None
    preferred_end: dt.datetime | None = None
    type: AppointmentType = AppointmentType.IN_PERSON
    reason: str | None = None
    urgent: bool = False
    priority: int = Field(default=1, ge=1, le=5)
    position: int | None = None
    status: WaitlistStatus = WaitlistStatus.WAITING
    booking_id: int | None = None
    notes: str | None = None

    @property
    def is_waiting(self) -> bool:
        return self.status == WaitlistStatus.WAITING


class Slot(BaseModel):
    """A bookable ``[start, end)`` interval for one doctor, not yet reserved."""

    model_config = ConfigDict(frozen=True)

    doctor_id: int
    start: dt.datetime
    end: dt.datetime


class ScoredCandidate(BaseModel):
    """A doctor that qualifies for a window, with the parts of its score."""

    model_config = ConfigDict(frozen=True)

    doctor_id: int
    workload_score: float
    seniority_score: float
    availability_score: float
    preference_score: float = 0.0

    @property
    def total(self) -> float:
        return (
            self.workload_score
            + self.seniority_score
            + self.availability_score
            + self.preference_score
        )


class BookingOutcome(BaseModel):
    """Result of a booking attempt: a committed booking or a waitlist placement."""

    model_config = ConfigDict(frozen=True)

    booking: Booking | None = None
    waitlist_entry: WaitlistEntry | None = None

    @property
    def waitlisted(self) -> bool:
        return self.booking is None and self.waitlist_entry is not None


class WaitlistAssignment(BaseModel):
    """One entry placed into a booking during a waitlist sweep."""

    model_config = ConfigDict(frozen=True)

    entry: WaitlistEntry
    booking: Booking
    doctor: Doctor


class DeliveryFailure(BaseModel):
    """A calendar or notification delivery that failed and awaits external retry."""

    model_config = ConfigDict(frozen=True)

    channel: str
    booking_id: int | None = None
    action: str
    error: str
    payload: dict[str, Any] = Field(default_factory=dict)
