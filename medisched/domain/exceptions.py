import datetime as dt


class SchedulingError(Exception):
    """Base exception for all scheduling-related errors."""


class NotFoundError(SchedulingError):
    """Raised when a referenced doctor, booking or waitlist entry does not exist."""

    def __init__(self, kind: str, identifier: object) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class ConflictError(SchedulingError):
    """Raised when a booking collides with an active booking of the same doctor."""

    def __init__(self, doctor_id: int, start: dt.datetime, end: dt.datetime) -> None:
        self.doctor_id = doctor_id
        self.start = start
        self.end = end
        super().__init__(
            f"Doctor {doctor_id} already has a booking overlapping "
            f"{start.isoformat()} - {end.isoformat()}"
        )


class UnavailableError(SchedulingError):
    """Raised when a window falls outside a doctor's effective availability."""

    def __init__(self, doctor_id: int, start: dt.datetime, end: dt.datetime) -> None:
        self.doctor_id = doctor_id
        self.start = start
        self.end = end
        super().__init__(
            f"Doctor {doctor_id} is not available for "
            f"{start.isoformat()} - {end.isoformat()}"
        )


class BookingStateError(SchedulingError):
    """Raised when a booking's status does not allow the requested change."""

    def __init__(self, reason: str, booking_id: int | None = None) -> None:
        self.reason = reason
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id}: {reason}")


class WaitlistStateError(SchedulingError):
    """Raised when a waitlist entry is no longer waiting."""

    def __init__(self, reason: str, entry_id: int | None = None) -> None:
        self.reason = reason
        self.entry_id = entry_id
        super().__init__(f"Waitlist entry {entry_id}: {reason}")


class StorageError(SchedulingError):
    """Raised when the underlying persistence operation fails."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Storage operation failed: {reason}")


class ExternalSyncError(SchedulingError):
    """Raised by calendar and notification adapters when delivery fails."""

    def __init__(self, reason: str, booking_id: int | None = None) -> None:
        self.reason = reason
        self.booking_id = booking_id
        super().__init__(f"External sync failed: {reason}")
