import datetime as dt
import itertools
from collections.abc import AsyncIterator, Callable

import pytest
import pytest_asyncio

from medisched.config import SchedulingConfig
from medisched.domain.models import AvailabilityRule, Doctor, Weekday
from medisched.scheduling.adapters.fake import FakeCalendarSync, FakeNotifier, FixedClock
from medisched.scheduling.adapters.memory import (
    InMemoryAvailabilityRuleRepository,
    InMemoryBookingRepository,
    InMemoryDoctorRepository,
    InMemoryWaitlistRepository,
)
from medisched.scheduling.service import SchedulingService

UTC = dt.timezone.utc

# Friday; the following Monday is 2026-03-16.
NOW = dt.datetime(2026, 3, 13, 9, 0, tzinfo=UTC)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def doctors() -> InMemoryDoctorRepository:
    return InMemoryDoctorRepository()


@pytest.fixture
def rules() -> InMemoryAvailabilityRuleRepository:
    return InMemoryAvailabilityRuleRepository()


@pytest.fixture
def bookings() -> InMemoryBookingRepository:
    return InMemoryBookingRepository()


@pytest.fixture
def waitlist_repo() -> InMemoryWaitlistRepository:
    return InMemoryWaitlistRepository()


@pytest.fixture
def fake_calendar() -> FakeCalendarSync:
    return FakeCalendarSync()


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def settings() -> SchedulingConfig:
    return SchedulingConfig(
        default_slot_minutes=30,
        waitlist_lead_days=1,
        waitlist_default_duration_minutes=60,
    )


@pytest_asyncio.fixture
async def service(
    doctors: InMemoryDoctorRepository,
    rules: InMemoryAvailabilityRuleRepository,
    bookings: InMemoryBookingRepository,
    waitlist_repo: InMemoryWaitlistRepository,
    clock: FixedClock,
    fake_calendar: FakeCalendarSync,
    fake_notifier: FakeNotifier,
    settings: SchedulingConfig,
) -> AsyncIterator[SchedulingService]:
    svc = SchedulingService(
        doctors=doctors,
        rules=rules,
        bookings=bookings,
        waitlist=waitlist_repo,
        clock=clock,
        calendar=fake_calendar,
        notifier=fake_notifier,
        settings=settings,
    )
    yield svc
    await svc.close()


@pytest.fixture
def add_doctor(doctors: InMemoryDoctorRepository) -> Callable[..., Doctor]:
    def _add(
        doctor_id: int,
        specialty_id: int = 1,
        *,
        experience_years: float = 0,
        active: bool = True,
    ) -> Doctor:
        doctor = Doctor(
            doctor_id=doctor_id,
            name=f"Doctor {doctor_id}",
            specialty_id=specialty_id,
            active=active,
            experience_years=experience_years,
        )
        doctors.put(doctor)
        return doctor

    return _add


@pytest.fixture
def add_rule(rules: InMemoryAvailabilityRuleRepository) -> Callable[..., AvailabilityRule]:
    """Add a rule: recurring on ``day`` by default, a date override when ``on`` is given."""
    ids = itertools.count(1)

    def _add(
        doctor_id: int,
        start: str,
        end: str,
        *,
        day: Weekday = Weekday.MONDAY,
        on: dt.date | None = None,
        available: bool = True,
        notes: str | None = None,
    ) -> AvailabilityRule:
        rule = AvailabilityRule(
            rule_id=next(ids),
            doctor_id=doctor_id,
            day_of_week=None if on else day,
            specific_date=on,
            start_time=dt.time.fromisoformat(start),
            end_time=dt.time.fromisoformat(end),
            is_available=available,
            notes=notes,
        )
        rules.put(rule)
        return rule

    return _add
