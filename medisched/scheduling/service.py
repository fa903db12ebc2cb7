import asyncio
import datetime as dt
from typing import Any

from loguru import logger

from medisched.config import SchedulingConfig
from medisched.domain.exceptions import (
    ConflictError,
    SchedulingError,
    StorageError,
    UnavailableError,
    WaitlistStateError,
)
from medisched.domain.models import (
    AvailabilityWindow,
    Booking,
    BookingOutcome,
    BookingRequest,
    BookingStatus,
    NotificationEvent,
    Slot,
    SyncAction,
    WaitlistAssignment,
    WaitlistEntry,
    WaitlistRequest,
)
from medisched.scheduling.availability import AvailabilityStore
from medisched.scheduling.datetime_helpers import to_clinic_time
from medisched.scheduling.ledger import BookingLedger
from medisched.scheduling.ports import (
    AbstractSchedulingService,
    AvailabilityRuleRepository,
    BookingRepository,
    CalendarSyncPort,
    Clock,
    DoctorRepository,
    NotificationPort,
    WaitlistRepository,
)
from medisched.scheduling.scorer import AssignmentScorer
from medisched.scheduling.slots import SlotGenerator
from medisched.scheduling.sync import BestEffortDispatcher
from medisched.scheduling.waitlist import WaitlistQueue


class SchedulingService(AbstractSchedulingService):
    """Scheduling core wired over repositories, a clock and external collaborators."""

    def __init__(
        self,
        *,
        doctors: DoctorRepository,
        rules: AvailabilityRuleRepository,
        bookings: BookingRepository,
        waitlist: WaitlistRepository,
        clock: Clock,
        calendar: CalendarSyncPort,
        notifier: NotificationPort,
        settings: SchedulingConfig | None = None,
    ) -> None:
        self._clock = clock
        self._settings = settings or SchedulingConfig()
        self.availability = AvailabilityStore(doctors, rules, clock)
        self.ledger = BookingLedger(bookings, clock)
        self.slots = SlotGenerator(self.availability, self.ledger)
        self.scorer = AssignmentScorer(self.availability, self.ledger, clock)
        self.waitlist = WaitlistQueue(waitlist)
        self.dispatcher = BestEffortDispatcher(calendar, notifier)
        self._sweep_lock = asyncio.Lock()

    async def assign_optimal_doctor(
        self, specialty_id: int, start: dt.datetime, end: dt.datetime
    ) -> int | None:
        return await self.scorer.assign_optimal(specialty_id, start, end)

    async def get_available_slots(
        self, specialty_id: int, date: dt.date, duration_minutes: int | None = None
    ) -> list[Slot]:
        duration = duration_minutes or self._settings.default_slot_minutes
        return await self.slots.generate_slots(specialty_id, date, duration)

    async def is_doctor_available(self, doctor_id: int, date: dt.date) -> bool:
        doctor = await self.availability.get_doctor(doctor_id)
        if not doctor.active:
            return False
        slots = await self.slots.slots_for_doctor(
            doctor_id, date, self._settings.default_slot_minutes
        )
        return bool(slots)

    async def get_doctor_availability(
        self, date: dt.date, specialty_id: int | None = None
    ) -> list[AvailabilityWindow]:
        windows: list[AvailabilityWindow] = []
        for doctor in await self.availability.active_doctors(specialty_id):
            windows.extend(await self.availability.available_windows(doctor.doctor_id, date))
        return windows

    async def book_appointment(self, request: BookingRequest) -> BookingOutcome:
        logger.info(
            "Booking request: specialty={}, start={}, end={}, doctor={}",
            request.specialty_id,
            request.start,
            request.end,
            request.doctor_id,
        )
        if request.doctor_id is not None:
            return await self._book_with_doctor(request, request.doctor_id)

        for candidate in await self.scorer.rank(request.specialty_id, request.start, request.end):
            try:
                booking = await self._commit(request, candidate.doctor_id, auto_assigned=True)
            except ConflictError:
                logger.info(
                    "Doctor {} was taken meanwhile; trying next candidate", candidate.doctor_id
                )
                continue
            return BookingOutcome(booking=booking)

        return await self._waitlist(request)

    async def cancel_booking(self, booking_id: int, reason: str | None = None) -> Booking:
        booking = await self.ledger.cancel(booking_id, reason)
        self._after_commit(booking, SyncAction.DELETE, NotificationEvent.BOOKING_CANCELLED)
        return booking

    async def reschedule_booking(
        self, booking_id: int, start: dt.datetime, end: dt.datetime
    ) -> Booking:
        if end <= start:
            raise ValueError("end must be after start")

        current = await self.ledger.get(booking_id)
        self.ledger.ensure_mutable(current, "reschedule")
        window = await self.availability.governing_window(current.doctor_id, start, end)
        if window is None:
            raise UnavailableError(
                current.doctor_id,
                to_clinic_time(start, self._clock.tz),
                to_clinic_time(end, self._clock.tz),
            )

        booking = await self.ledger.reschedule(booking_id, start, end)
        self._after_commit(booking, SyncAction.UPDATE, NotificationEvent.BOOKING_RESCHEDULED)
        return booking

    async def add_to_waitlist(self, request: WaitlistRequest) -> WaitlistEntry:
        updates: dict[str, dt.datetime] = {}
        if request.preferred_start is not None:
            updates["preferred_start"] = to_clinic_time(request.preferred_start, self._clock.tz)
        if request.preferred_end is not None:
            updates["preferred_end"] = to_clinic_time(request.preferred_end, self._clock.tz)
        request = request.model_copy(update=updates)

        entry = await self.waitlist.enqueue(request)
        self.dispatcher.notify(
            entry.patient_id,
            NotificationEvent.BOOKING_WAITLISTED,
            {
                "entry_id": entry.entry_id,
                "specialty_id": entry.specialty_id,
                "position": entry.position,
            },
        )
        return entry

    async def cancel_waitlist_entry(self, entry_id: int) -> WaitlistEntry:
        return await self.waitlist.cancel(entry_id)

    async def process_waitlist(self) -> list[WaitlistAssignment]:
        async with self._sweep_lock:
            batch = await self.waitlist.dequeue_ordered_batch()
            logger.info("Processing waitlist: {} waiting entr(ies)", len(batch))

            processed: list[WaitlistAssignment] = []
            for entry in batch:
                assignment = await self._place(entry)
                if assignment is not None:
                    processed.append(assignment)

        logger.info("Waitlist sweep assigned {} of {} entr(ies)", len(processed), len(batch))
        return processed

    async def close(self) -> None:
        await self.dispatcher.close()

    async def _book_with_doctor(self, request: BookingRequest, doctor_id: int) -> BookingOutcome:
        doctor = await self.availability.get_doctor(doctor_id)
        qualifies = (
            doctor.active
            and doctor.specialty_id == request.specialty_id
            and await self.availability.governing_window(doctor_id, request.start, request.end)
            is not None
        )
        if qualifies:
            try:
                booking = await self._commit(request, doctor_id, auto_assigned=False)
                return BookingOutcome(booking=booking)
            except ConflictError:
                logger.info("Requested doctor {} is already booked", doctor_id)
        else:
            logger.info("Requested doctor {} cannot take this window", doctor_id)
        return await self._waitlist(request)

    async def _commit(
        self, request: BookingRequest, doctor_id: int, *, auto_assigned: bool
    ) -> Booking:
        booking = await self.ledger.commit(
            Booking(
                doctor_id=doctor_id,
                patient_id=request.patient_id,
                specialty_id=request.specialty_id,
                start=request.start,
                end=request.end,
                type=request.type,
                reason=request.reason,
                urgent=request.urgent,
                priority=request.priority,
                auto_assigned=auto_assigned,
            )
        )
        self._after_commit(booking, SyncAction.CREATE, NotificationEvent.BOOKING_CREATED)
        return booking

    async def _waitlist(self, request: BookingRequest) -> BookingOutcome:
        entry = await self.add_to_waitlist(request.to_waitlist_request())
        return BookingOutcome(waitlist_entry=entry)

    async def _place(self, entry: WaitlistEntry) -> WaitlistAssignment | None:
        """Try to turn one waiting entry into a booking; None leaves it waiting."""
        if entry.entry_id is None:
            raise StorageError("Waitlist repository returned an entry without an ID")

        start, end = self._sweep_window(entry)
        doctor_id = await self.scorer.assign_optimal(entry.specialty_id, start, end)
        if doctor_id is None:
            return None

        try:
            booking = await self.ledger.commit(
                Booking(
                    doctor_id=doctor_id,
                    patient_id=entry.patient_id,
                    specialty_id=entry.specialty_id,
                    start=start,
                    end=end,
                    status=BookingStatus.REQUESTED,
                    type=entry.type,
                    reason=entry.reason,
                    urgent=entry.urgent,
                    priority=entry.priority,
                    auto_assigned=True,
                )
            )
        except ConflictError:
            logger.warning(
                "Waitlist entry {} lost its slot to a concurrent booking", entry.entry_id
            )
            return None

        booking_id = booking.booking_id
        if booking_id is None:
            raise StorageError("Booking repository returned a booking without an ID")
        try:
            resolved = await self.waitlist.resolve(entry.entry_id, booking_id)
        except WaitlistStateError:
            logger.warning("Waitlist entry {} changed during the sweep", entry.entry_id)
            await self._compensate(booking)
            return None
        except StorageError:
            await self._compensate(booking)
            raise

        doctor = await self.availability.get_doctor(doctor_id)
        self._after_commit(booking, SyncAction.CREATE, NotificationEvent.WAITLIST_ASSIGNED)
        return WaitlistAssignment(entry=resolved, booking=booking, doctor=doctor)

    async def _compensate(self, booking: Booking) -> None:
        if booking.booking_id is None:
            logger.error("Cannot release a booking that has no ID")
            return
        try:
            await self.ledger.cancel(booking.booking_id, "waitlist entry could not be resolved")
        except SchedulingError as exc:
            logger.error("Could not release booking {}: {}", booking.booking_id, exc)

    def _sweep_window(self, entry: WaitlistEntry) -> tuple[dt.datetime, dt.datetime]:
        """The window a sweep tries to book for ``entry``.

        An entry made from a booking request keeps the length the patient asked
        for: its ``preferred_end`` is honoured when it lies after the start.
        Otherwise the window lasts ``waitlist_default_duration_minutes`` (one
        hour by default), starting at the preferred start or, without one,
        ``waitlist_lead_days`` from now.
        """
        duration = dt.timedelta(minutes=self._settings.waitlist_default_duration_minutes)
        if entry.preferred_start is None:
            start = self._clock.now() + dt.timedelta(days=self._settings.waitlist_lead_days)
            return start, start + duration

        start = to_clinic_time(entry.preferred_start, self._clock.tz)
        if entry.preferred_end is not None and entry.preferred_end > entry.preferred_start:
            return start, to_clinic_time(entry.preferred_end, self._clock.tz)
        return start, start + duration

    def _after_commit(
        self, booking: Booking, action: SyncAction, event: NotificationEvent
    ) -> None:
        self.dispatcher.sync_calendar(booking, action)
        self.dispatcher.notify(booking.patient_id, event, _booking_payload(booking))


def _booking_payload(booking: Booking) -> dict[str, Any]:
    return {
        "booking_id": booking.booking_id,
        "doctor_id": booking.doctor_id,
        "specialty_id": booking.specialty_id,
        "start": booking.start.isoformat(),
        "end": booking.end.isoformat(),
        "status": booking.status.value,
    }
