import datetime as dt
from abc import ABC, abstractmethod
from typing import Any, Protocol

from medisched.domain.models import (
    AvailabilityRule,
    AvailabilityWindow,
    Booking,
    BookingOutcome,
    BookingRequest,
    Doctor,
    NotificationEvent,
    Slot,
    SyncAction,
    WaitlistAssignment,
    WaitlistEntry,
    WaitlistRequest,
)


class AbstractSchedulingService(ABC):
    """Abstract base class for the appointment scheduling core."""

    @abstractmethod
    async def assign_optimal_doctor(
        self, specialty_id: int, start: dt.datetime, end: dt.datetime
    ) -> int | None:
        """Pick the best doctor for a window without booking anything.

        Args:
            specialty_id: Specialty the doctor must belong to.
            start: Requested start (naive values are clinic local time).
            end: Requested end, exclusive.

        Returns:
            The winning doctor's ID, or None when no doctor qualifies.
        """

    @abstractmethod
    async def get_available_slots(
        self, specialty_id: int, date: dt.date, duration_minutes: int | None = None
    ) -> list[Slot]:
        """List every open slot for a specialty on a civil date.

        Args:
            specialty_id: Specialty whose active doctors are considered.
            date: Clinic-local calendar date.
            duration_minutes: Slot length; defaults to the configured slot size.

        Returns:
            Slots grouped by doctor, ascending time. Empty list if none.
        """

    @abstractmethod
    async def is_doctor_available(self, doctor_id: int, date: dt.date) -> bool:
        """Check whether a doctor still has open time on a date.

        Raises:
            NotFoundError: If the doctor does not exist.
        """

    @abstractmethod
    async def get_doctor_availability(
        self, date: dt.date, specialty_id: int | None = None
    ) -> list[AvailabilityWindow]:
        """Return the effective available windows of active doctors on a date."""

    @abstractmethod
    async def book_appointment(self, request: BookingRequest) -> BookingOutcome:
        """Book a request, or place it on the waitlist when nobody can take it.

        Returns:
            A BookingOutcome holding either the committed booking or the
            waitlist entry. Waitlisting is not an error.

        Raises:
            NotFoundError: If an explicitly requested doctor does not exist.
            StorageError: If persistence fails.
        """

    @abstractmethod
    async def cancel_booking(self, booking_id: int, reason: str | None = None) -> Booking:
        """Cancel a booking, freeing its time immediately.

        Raises:
            NotFoundError: If the booking does not exist.
            BookingStateError: If it is already cancelled or completed.
        """

    @abstractmethod
    async def reschedule_booking(
        self, booking_id: int, start: dt.datetime, end: dt.datetime
    ) -> Booking:
        """Move a booking to a new window with the same doctor.

        Raises:
            NotFoundError: If the booking does not exist.
            BookingStateError: If it is cancelled or completed.
            UnavailableError: If the doctor is not available in the new window.
            ConflictError: If the new window overlaps another active booking.
        """

    @abstractmethod
    async def add_to_waitlist(self, request: WaitlistRequest) -> WaitlistEntry:
        """Queue a request behind earlier ones of the same specialty."""

    @abstractmethod
    async def cancel_waitlist_entry(self, entry_id: int) -> WaitlistEntry:
        """Withdraw a waiting entry.

        Raises:
            NotFoundError: If the entry does not exist.
            WaitlistStateError: If it is no longer waiting.
        """

    @abstractmethod
    async def process_waitlist(self) -> list[WaitlistAssignment]:
        """Run one waitlist sweep.

        Returns:
            The entries placed into bookings during this sweep.

        Raises:
            StorageError: If persistence fails; earlier placements are kept.
        """

    @abstractmethod
    async def close(self) -> None:
        """Wait for pending deliveries and release external collaborators."""


class Clock(Protocol):
    """Source of the current time in the clinic timezone."""

    @property
    def tz(self) -> dt.tzinfo: ...

    def now(self) -> dt.datetime: ...


class DoctorRepository(Protocol):
    async def get(self, doctor_id: int) -> Doctor | None:
        """Return the doctor, or None if unknown."""
        ...

    async def list_by_specialty(self, specialty_id: int) -> list[Doctor]:
        """All doctors of a specialty, active or not."""
        ...

    async def list_all(self) -> list[Doctor]: ...


class AvailabilityRuleRepository(Protocol):
    async def list_for_doctor(self, doctor_id: int) -> list[AvailabilityRule]:
        """Every recurring and date-specific rule of a doctor."""
        ...


class BookingRepository(Protocol):
    async def get(self, booking_id: int) -> Booking | None: ...

    async def add(self, booking: Booking) -> Booking:
        """Store a new booking and return it with its assigned ID."""
        ...

    async def update(self, booking: Booking) -> Booking: ...

    async def list_for_doctor(
        self, doctor_id: int, start: dt.datetime, end: dt.datetime
    ) -> list[Booking]:
        """Bookings of any status whose interval overlaps ``[start, end)``."""
        ...


class WaitlistRepository(Protocol):
    async def get(self, entry_id: int) -> WaitlistEntry | None: ...

    async def add(self, entry: WaitlistEntry) -> WaitlistEntry:
        """Store a new entry and return it with its assigned ID."""
        ...

    async def update(self, entry: WaitlistEntry) -> WaitlistEntry: ...

    async def list_waiting(self) -> list[WaitlistEntry]: ...

    async def max_position(self, specialty_id: int) -> int | None:
        """Highest position ever issued for a specialty, None if none yet."""
        ...


class CalendarSyncPort(Protocol):
    """Mirrors committed bookings into an external calendar."""

    async def sync(self, booking: Booking, action: SyncAction) -> None:
        """Push one change. Raises ExternalSyncError on failure."""
        ...

    async def close(self) -> None: ...


class NotificationPort(Protocol):
    """Tells users about scheduling events."""

    async def notify(
        self, user_id: int, event: NotificationEvent, payload: dict[str, Any]
    ) -> None:
        """Deliver one event. Raises ExternalSyncError on failure."""
        ...

    async def close(self) -> None: ...
