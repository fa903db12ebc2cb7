import asyncio
import datetime as dt

from loguru import logger

from medisched.domain.exceptions import (
    BookingStateError,
    ConflictError,
    NotFoundError,
    SchedulingError,
    StorageError,
)
from medisched.domain.models import Booking, BookingStatus
from medisched.scheduling.datetime_helpers import to_clinic_time, week_bounds
from medisched.scheduling.ports import BookingRepository, Clock

_FINAL_STATUSES = {BookingStatus.CANCELLED, BookingStatus.COMPLETED}


class BookingLedger:
    """Holds every doctor's bookings and guarantees they never overlap.

    Writes for one doctor (commit, cancel, reschedule) run under that doctor's
    lock, so the conflict check and the write form one atomic step within the
    process. Cancelled bookings never take part in conflict checks.
    """

    def __init__(self, bookings: BookingRepository, clock: Clock) -> None:
        self._bookings = bookings
        self._clock = clock
        self._locks: dict[int, asyncio.Lock] = {}

    def _lock_for(self, doctor_id: int) -> asyncio.Lock:
        return self._locks.setdefault(doctor_id, asyncio.Lock())

    async def get(self, booking_id: int) -> Booking:
        try:
            booking = await self._bookings.get(booking_id)
        except SchedulingError:
            raise
        except Exception as exc:
            raise StorageError(f"Booking lookup failed: {exc}") from exc
        if booking is None:
            raise NotFoundError("Booking", booking_id)
        return booking

    async def active_bookings(
        self, doctor_id: int, start: dt.datetime, end: dt.datetime
    ) -> list[Booking]:
        """Non-cancelled bookings of a doctor overlapping ``[start, end)``."""
        start = to_clinic_time(start, self._clock.tz)
        end = to_clinic_time(end, self._clock.tz)
        try:
            bookings = await self._bookings.list_for_doctor(doctor_id, start, end)
        except SchedulingError:
            raise
        except Exception as exc:
            raise StorageError(f"Booking query failed: {exc}") from exc
        return [b for b in bookings if b.is_active and b.overlaps(start, end)]

    async def has_conflict(
        self,
        doctor_id: int,
        start: dt.datetime,
        end: dt.datetime,
        *,
        exclude_booking_id: int | None = None,
    ) -> bool:
        bookings = await self.active_bookings(doctor_id, start, end)
        return any(b.booking_id != exclude_booking_id for b in bookings)

    async def count_in_week(self, doctor_id: int, instant: dt.datetime) -> int:
        """Active bookings starting in the ISO week that contains ``instant``."""
        week_start, week_end = week_bounds(instant, self._clock.tz)
        bookings = await self.active_bookings(doctor_id, week_start, week_end)
        return sum(1 for b in bookings if week_start <= b.start < week_end)

    async def commit(self, booking: Booking) -> Booking:
        """Check for overlaps and store the booking as one atomic step.

        Raises:
            ConflictError: If an active booking of the same doctor overlaps.
            StorageError: If the repository write fails; nothing is stored.
        """
        booking = booking.model_copy(
            update={
                "start": to_clinic_time(booking.start, self._clock.tz),
                "end": to_clinic_time(booking.end, self._clock.tz),
            }
        )
        async with self._lock_for(booking.doctor_id):
            if await self.has_conflict(booking.doctor_id, booking.start, booking.end):
                logger.warning(
                    "Booking conflict for doctor {} at {} - {}",
                    booking.doctor_id,
                    booking.start,
                    booking.end,
                )
                raise ConflictError(booking.doctor_id, booking.start, booking.end)
            stored = await self._write(booking, new=True)

        logger.info(
            "Booking committed: id={}, doctor={}, start={}",
            stored.booking_id,
            stored.doctor_id,
            stored.start,
        )
        return stored

    async def cancel(self, booking_id: int, reason: str | None = None) -> Booking:
        """Mark a booking cancelled; its time is free for the next commit."""
        current = await self.get(booking_id)
        async with self._lock_for(current.doctor_id):
            current = await self.get(booking_id)
            self.ensure_mutable(current, "cancel")
            cancelled = current.model_copy(
                update={"status": BookingStatus.CANCELLED, "cancellation_reason": reason}
            )
            stored = await self._write(cancelled, new=False)

        logger.info("Booking cancelled: id={}", booking_id)
        return stored

    async def reschedule(self, booking_id: int, start: dt.datetime, end: dt.datetime) -> Booking:
        """Move a booking to ``[start, end)`` on the same doctor's ledger.

        Raises:
            NotFoundError: If the booking does not exist.
            BookingStateError: If it is cancelled or completed.
            ConflictError: If another active booking overlaps the new window.
        """
        current = await self.get(booking_id)
        async with self._lock_for(current.doctor_id):
            current = await self.get(booking_id)
            self.ensure_mutable(current, "reschedule")
            moved = Booking.model_validate(
                {
                    **current.model_dump(),
                    "start": to_clinic_time(start, self._clock.tz),
                    "end": to_clinic_time(end, self._clock.tz),
                }
            )
            if await self.has_conflict(
                moved.doctor_id, moved.start, moved.end, exclude_booking_id=booking_id
            ):
                logger.warning("Reschedule conflict for booking {}", booking_id)
                raise ConflictError(moved.doctor_id, moved.start, moved.end)
            stored = await self._write(moved, new=False)

        logger.info("Booking rescheduled: id={}, start={}", booking_id, stored.start)
        return stored

    @staticmethod
    def ensure_mutable(booking: Booking, verb: str) -> None:
        if booking.status in _FINAL_STATUSES:
            raise BookingStateError(
                reason=f"cannot {verb} a {booking.status.value} booking",
                booking_id=booking.booking_id,
            )

    async def _write(self, booking: Booking, *, new: bool) -> Booking:
        try:
            if new:
                stored = await self._bookings.add(booking)
            else:
                stored = await self._bookings.update(booking)
        except SchedulingError:
            raise
        except Exception as exc:
            raise StorageError(f"Booking write failed: {exc}") from exc
        if stored.booking_id is None:
            raise StorageError("Booking repository returned a booking without an ID")
        return stored
