import datetime as dt
from collections.abc import Callable
from unittest.mock import AsyncMock

import pytest

from medisched.domain.exceptions import (
    BookingStateError,
    ConflictError,
    ExternalSyncError,
    NotFoundError,
    StorageError,
    UnavailableError,
)
from medisched.domain.models import (
    AvailabilityRule,
    BookingRequest,
    BookingStatus,
    Doctor,
    NotificationEvent,
    ScoredCandidate,
    SyncAction,
    WaitlistEntry,
    WaitlistRequest,
    WaitlistStatus,
    Weekday,
)
from medisched.scheduling.adapters.fake import FakeCalendarSync, FakeNotifier
from medisched.scheduling.adapters.memory import (
    InMemoryBookingRepository,
    InMemoryWaitlistRepository,
)
from medisched.scheduling.service import SchedulingService

UTC = dt.timezone.utc
MONDAY = dt.date(2026, 3, 16)
SATURDAY = dt.date(2026, 3, 14)


def at(day: dt.date, hhmm: str) -> dt.datetime:
    return dt.datetime.combine(day, dt.time.fromisoformat(hhmm), tzinfo=UTC)


def request(
    start: str = "10:00",
    end: str = "10:30",
    *,
    patient_id: int = 100,
    specialty_id: int = 1,
    doctor_id: int | None = None,
) -> BookingRequest:
    return BookingRequest(
        patient_id=patient_id,
        specialty_id=specialty_id,
        start=at(MONDAY, start),
        end=at(MONDAY, end),
        doctor_id=doctor_id,
    )


def waitlisted(
    patient_id: int, *, priority: int = 1, specialty_id: int = 1, window: bool = True
) -> WaitlistRequest:
    return WaitlistRequest(
        patient_id=patient_id,
        specialty_id=specialty_id,
        priority=priority,
        preferred_start=at(MONDAY, "10:00") if window else None,
        preferred_end=at(MONDAY, "11:00") if window else None,
    )


class TestBookAppointment:
    @pytest.mark.asyncio
    async def test_books_best_doctor_and_delivers_side_effects(
        self,
        service: SchedulingService,
        fake_calendar: FakeCalendarSync,
        fake_notifier: FakeNotifier,
        add_doctor: Callable[..., Doctor],
        add_rule: Callable[..., AvailabilityRule],
    ) -> None:
        add_doctor(1)
        add_doctor(2, experience_years=4)
        add_rule(1, "08:00", "17:00")
        add_rule(2, "08:00", "17:00")

        outcome = await service.book_appointment(request())
        await service.dispatcher.drain()

        assert outcome.booking is not None
        assert outcome.booking.doctor_id == 2
        assert outcome.booking.auto_assigned is True
        assert outcome.booking.status == BookingStatus.REQUESTED
        assert fake_calendar.synced == [(outcome.booking, SyncAction.CREATE)]
        assert fake_notifier.sent[0][0] == 100
        assert fake_notifier.events() == [NotificationEvent.BOOKING_CREATED]
        assert fake_notifier.sent[0][2]["booking_id"] == outcome.booking.booking_id

    @pytest.mark.asyncio
    async def test_nobody_free_puts_patient_on_waitlist(
        self,
        service: SchedulingService,
        fake_notifier: FakeNotifier,
        add_doctor: Callable[..., Doctor],
    ) -> None:
        add_doctor(1)

        outcome = await service.book_appointment(request(doctor_id=None))
        await service.dispatcher.drain()

        assert outcome.waitlisted is True
        assert outcome.waitlist_entry is not None
        assert outcome.waitlist_entry.position == 1
        assert outcome.waitlist_entry.preferred_start == at(MONDAY, "10:00")
        assert fake_notifier.events() == [NotificationEvent.BOOKING_WAITLISTED]

    @pytest.mark.asyncio
    async def test_explicit_doctor_is_booked_directly(
        self,
        service: SchedulingService,
        add_doctor: Callable[..., Doctor],
        add_rule: Callable[..., AvailabilityRule],
    ) -> None:
        add_doctor(1, experience_years=20)
        add_doctor(2)
        add_rule(1, "08:00", "17:00")
        add_rule(2, "08:00", "17:00")

        outcome = await service.book_appointment(request(doctor_id=2))

        assert outcome.booking is not None
        assert outcome.booking.doctor_id == 2
        assert outcome.booking.auto_assigned is False

    @pytest.mark.asyncio
    async def test_explicit_doctor_already_booked_is_waitlisted(
        self,
        service: SchedulingService,
        add_doctor: Callable[..., Doctor],
        add_rule: Callable[..., AvailabilityRule],
    ) -> None:
        add_doctor(1)
        add_rule(1, "08:00", "17:00")
        await service.book_appointment(request(doctor_id=1))

        outcome = await service.book_appointment(request(patient_id=101, doctor_id=1))

        assert outcome.waitlisted is True
        assert outcome.waitlist_entry is not None
        assert outcome.waitlist_entry.preferred_doctor_id == 1

    @pytest.mark.asyncio
    async def test_explicit_doctor_outside_availability_is_waitlisted(
        self,
        service: SchedulingService,
        add_doctor: Callable[..., Doctor],
        add_rule: Callable[..., AvailabilityRule],
    ) -> None:
        add_doctor(1)
        add_rule(1, "13:00", "17:00")

        outcome = await service.book_appointment(request(doctor_id=1))

        assert outcome.waitlisted is True

    @pytest.mark.asyncio
    async def test_unknown_explicit_doctor_raises(self, service: SchedulingService) -> None:
        with pytest.raises(NotFoundError):
            await service.book_appointment(request(doctor_id=42))

    @pytest.mark.asyncio
    async def test_falls_through_to_next_candidate_on_conflict(
        self,
        service: SchedulingService,
        add_doctor: Callable[..., Doctor],
        add_rule: Callable[..., AvailabilityRule],
    ) -> None:
        add_doctor(1)
        add_doctor(2)
        add_rule(1, "08:00", "17:00")
        add_rule(2, "08:00", "17:00")
        await service.book_appointment(request(doctor_id=1))
        # Simulate a ranking taken before doctor 1's booking landed.
        service.scorer.rank = AsyncMock(
            return_value=[
                ScoredCandidate(
                    doctor_id=1, workload_score=10, seniority_score=0, availability_score=5
                ),
                ScoredCandidate(
                    doctor_id=2, workload_score=10, seniority_score=0, availability_score=5
                ),
            ]
        )

        outcome = await service.book_appointment(request(patient_id=101))

        assert outcome.booking is not None
        assert outcome.booking.doctor_id == 2

    @pytest.mark.asyncio
    async def test_calendar_failure_keeps_the_booking(
        self,
        service: SchedulingService,
        bookings: InMemoryBookingRepository,
        fake_calendar: FakeCalendarSync,
        add_doctor: Callable[..., Doctor],
        add_rule: Callable[..., AvailabilityRule],
    ) -> None:
        add_doctor(1)
        add_rule(1, "08:00", "17:00")
        fake_calendar.sync_error = ExternalSyncError("calendar down")

        outcome = await service.book_appointment(request())
        await service.dispatcher.drain()

        assert outcome.booking is not None
        assert bookings.all() == [outcome.booking]
        assert len(service.dispatcher.failures) == 1
        failure = service.dispatcher.failures[0]
        assert failure.channel == "calendar"
        assert failure.booking_id == outcome.booking.booking_id
        assert failure.action == "create"


class TestCancelAndReschedule:
    @pytest.fixture
    def open_monday(
        self, add_doctor: Callable[..., Doctor], add_rule: Callable[..., AvailabilityRule]
    ) -> None:
        add_doctor(1)
        add_rule(1, "08:00", "12:00")

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("open_monday")
    async def test_cancel_frees_the_slot_and_syncs(
        self, service: SchedulingService, fake_calendar: FakeCalendarSync
    ) -> None:
        outcome = await service.book_appointment(request())
        assert outcome.booking is not None

        cancelled = await service.cancel_booking(outcome.booking.booking_id, "patient request")
        await service.dispatcher.drain()

        assert cancelled.status == BookingStatus.CANCELLED
        assert [action for _, action in fake_calendar.synced] == [
            SyncAction.CREATE,
            SyncAction.DELETE,
        ]
        slots = await service.get_available_slots(1, MONDAY)
        assert at(MONDAY, "10:00") in [s.start for s in slots]

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("open_monday")
    async def test_reschedule_moves_within_availability(
        self, service: SchedulingService, fake_notifier: FakeNotifier
    ) -> None:
        outcome = await service.book_appointment(request())
        assert outcome.booking is not None

        moved = await service.reschedule_booking(
            outcome.booking.booking_id, at(MONDAY, "11:00"), at(MONDAY, "11:30")
        )
        await service.dispatcher.drain()

        assert moved.start == at(MONDAY, "11:00")
        assert fake_notifier.events()[-1] == NotificationEvent.BOOKING_RESCHEDULED

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("open_monday")
    async def test_reschedule_outside_availability_raises(
        self, service: SchedulingService
    ) -> None:
        outcome = await service.book_appointment(request())
        assert outcome.booking is not None

        with pytest.raises(UnavailableError):
            await service.reschedule_booking(
                outcome.booking.booking_id, at(MONDAY, "11:45"), at(MONDAY, "12:15")
            )

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("open_monday")
    async def test_reschedule_onto_another_booking_raises(
        self, service: SchedulingService
    ) -> None:
        first = await service.book_appointment(request())
        await service.book_appointment(request("11:00", "11:30", patient_id=101))
        assert first.booking is not None

        with pytest.raises(ConflictError):
            await service.reschedule_booking(
                first.booking.booking_id, at(MONDAY, "11:00"), at(MONDAY, "11:30")
            )

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("open_monday")
    async def test_cancelled_booking_cannot_be_rescheduled(
        self, service: SchedulingService
    ) -> None:
        outcome = await service.book_appointment(request())
        assert outcome.booking is not None
        await service.cancel_booking(outcome.booking.booking_id)

        with pytest.raises(BookingStateError):
            await service.reschedule_booking(
                outcome.booking.booking_id, at(MONDAY, "11:00"), at(MONDAY, "11:30")
            )

    @pytest.mark.asyncio
    async def test_reschedule_rejects_inverted_window(self, service: SchedulingService) -> None:
        with pytest.raises(ValueError, match="end must be after start"):
            await service.reschedule_booking(1, at(MONDAY, "11:00"), at(MONDAY, "11:00"))


class TestQueries:
    @pytest.mark.asyncio
    async def test_slots_use_configured_default_duration(
        self,
        service: SchedulingService,
        add_doctor: Callable[..., Doctor],
        add_rule: Callable[..., AvailabilityRule],
    ) -> None:
        add_doctor(1)
        add_rule(1, "09:00", "10:00")

        assert len(await service.get_available_slots(1, MONDAY)) == 2
        assert len(await service.get_available_slots(1, MONDAY, 60)) == 1

    @pytest.mark.asyncio
    async def test_doctor_with_one_booking_can_still_be_available(
        self,
        service: SchedulingService,
        add_doctor: Callable[..., Doctor],
        add_rule: Callable[..., AvailabilityRule],
    ) -> None:
        add_doctor(1)
        add_rule(1, "09:00", "10:00")
        await service.book_appointment(request("09:00", "09:30", doctor_id=1))

        assert await service.is_doctor_available(1, MONDAY) is True

        await service.book_appointment(request("09:30", "10:00", patient_id=101, doctor_id=1))

        assert await service.is_doctor_available(1, MONDAY) is False

    @pytest.mark.asyncio
    async def test_inactive_doctor_is_never_available(
        self,
        service: SchedulingService,
        add_doctor: Callable[..., Doctor],
        add_rule: Callable[..., AvailabilityRule],
    ) -> None:
        add_doctor(1, active=False)
        add_rule(1, "09:00", "10:00")

        assert await service.is_doctor_available(1, MONDAY) is False

    @pytest.mark.asyncio
    async def test_doctor_availability_lists_open_windows(
        self,
        service: SchedulingService,
        add_doctor: Callable[..., Doctor],
        add_rule: Callable[..., AvailabilityRule],
    ) -> None:
        add_doctor(1)
        add_doctor(2, specialty_id=2)
        add_rule(1, "09:00", "12:00")
        add_rule(1, "10:00", "10:30", available=False)
        add_rule(2, "13:00", "17:00")

        everyone = await service.get_doctor_availability(MONDAY)
        cardiology = await service.get_doctor_availability(MONDAY, specialty_id=2)

        assert [(w.doctor_id, w.start) for w in everyone] == [
            (1, at(MONDAY, "09:00")),
            (2, at(MONDAY, "13:00")),
        ]
        assert [w.doctor_id for w in cardiology] == [2]


class TestProcessWaitlist:
    @pytest.fixture
    def single_monday_slot(
        self, add_doctor: Callable[..., Doctor], add_rule: Callable[..., AvailabilityRule]
    ) -> None:
        add_doctor(1)
        add_rule(1, "10:00", "11:00")

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("single_monday_slot")
    async def test_first_come_first_served(
        self,
        service: SchedulingService,
        waitlist_repo: InMemoryWaitlistRepository,
        fake_notifier: FakeNotifier,
    ) -> None:
        first = await service.add_to_waitlist(waitlisted(1))
        second = await service.add_to_waitlist(waitlisted(2))

        processed = await service.process_waitlist()
        await service.dispatcher.drain()

        assert len(processed) == 1
        assignment = processed[0]
        assert assignment.entry.entry_id == first.entry_id
        assert assignment.entry.status == WaitlistStatus.ASSIGNED
        assert assignment.entry.booking_id == assignment.booking.booking_id
        assert assignment.doctor.doctor_id == 1
        assert assignment.booking.start == at(MONDAY, "10:00")
        assert assignment.booking.end == at(MONDAY, "11:00")
        assert assignment.booking.auto_assigned is True
        assert (await waitlist_repo.get(second.entry_id)).status == WaitlistStatus.WAITING
        assert NotificationEvent.WAITLIST_ASSIGNED in fake_notifier.events()

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("single_monday_slot")
    async def test_higher_priority_goes_first(self, service: SchedulingService) -> None:
        await service.add_to_waitlist(waitlisted(1, priority=1))
        urgent = await service.add_to_waitlist(waitlisted(2, priority=4))

        processed = await service.process_waitlist()

        assert [a.entry.entry_id for a in processed] == [urgent.entry_id]

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("single_monday_slot")
    async def test_second_sweep_assigns_nothing_new(
        self, service: SchedulingService, bookings: InMemoryBookingRepository
    ) -> None:
        await service.add_to_waitlist(waitlisted(1))
        await service.add_to_waitlist(waitlisted(2))
        await service.process_waitlist()

        again = await service.process_waitlist()

        assert again == []
        assert len(bookings.all()) == 1

    @pytest.mark.asyncio
    async def test_entry_without_window_uses_lead_time(
        self,
        service: SchedulingService,
        add_doctor: Callable[..., Doctor],
        add_rule: Callable[..., AvailabilityRule],
    ) -> None:
        add_doctor(1)
        add_rule(1, "08:00", "12:00", day=Weekday.SATURDAY)
        await service.add_to_waitlist(waitlisted(1, window=False))

        processed = await service.process_waitlist()

        assert len(processed) == 1
        assert processed[0].booking.start == at(SATURDAY, "09:00")
        assert processed[0].booking.end == at(SATURDAY, "10:00")

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("single_monday_slot")
    async def test_unplaceable_entry_does_not_block_the_rest(
        self, service: SchedulingService, waitlist_repo: InMemoryWaitlistRepository
    ) -> None:
        stuck = await service.add_to_waitlist(waitlisted(1, priority=5, specialty_id=9))
        placeable = await service.add_to_waitlist(waitlisted(2))

        processed = await service.process_waitlist()

        assert [a.entry.entry_id for a in processed] == [placeable.entry_id]
        assert (await waitlist_repo.get(stuck.entry_id)).status == WaitlistStatus.WAITING

    @pytest.mark.asyncio
    async def test_cancelled_entry_is_not_processed(
        self, service: SchedulingService, single_monday_slot: None
    ) -> None:
        entry = await service.add_to_waitlist(waitlisted(1))
        await service.cancel_waitlist_entry(entry.entry_id)

        assert await service.process_waitlist() == []

    @pytest.mark.asyncio
    async def test_preferred_start_alone_books_the_default_length(
        self,
        service: SchedulingService,
        add_doctor: Callable[..., Doctor],
        add_rule: Callable[..., AvailabilityRule],
    ) -> None:
        add_doctor(1)
        add_rule(1, "08:00", "12:00")
        await service.add_to_waitlist(
            WaitlistRequest(patient_id=1, specialty_id=1, preferred_start=at(MONDAY, "09:30"))
        )

        processed = await service.process_waitlist()

        assert processed[0].booking.start == at(MONDAY, "09:30")
        assert processed[0].booking.end == at(MONDAY, "10:30")


class IdlessWaitlistRepository(InMemoryWaitlistRepository):
    """Lists waiting entries with their IDs stripped."""

    async def list_waiting(self) -> list[WaitlistEntry]:
        return [e.model_copy(update={"entry_id": None}) for e in await super().list_waiting()]


class TestProcessWaitlistStorageContract:
    @pytest.fixture
    def waitlist_repo(self) -> InMemoryWaitlistRepository:
        return IdlessWaitlistRepository()

    @pytest.mark.asyncio
    async def test_entry_without_id_fails_before_booking(
        self,
        service: SchedulingService,
        bookings: InMemoryBookingRepository,
        add_doctor: Callable[..., Doctor],
        add_rule: Callable[..., AvailabilityRule],
    ) -> None:
        add_doctor(1)
        add_rule(1, "10:00", "11:00")
        await service.add_to_waitlist(waitlisted(1))

        with pytest.raises(StorageError, match="without an ID"):
            await service.process_waitlist()

        assert bookings.all() == []


class TestClose:
    @pytest.mark.asyncio
    async def test_close_drains_and_closes_ports(
        self,
        service: SchedulingService,
        fake_calendar: FakeCalendarSync,
        fake_notifier: FakeNotifier,
        add_doctor: Callable[..., Doctor],
        add_rule: Callable[..., AvailabilityRule],
    ) -> None:
        add_doctor(1)
        add_rule(1, "08:00", "17:00")
        await service.book_appointment(request())

        await service.close()

        assert service.dispatcher.pending == 0
        assert len(fake_calendar.synced) == 1
        assert fake_calendar.closed is True
        assert fake_notifier.closed is True
