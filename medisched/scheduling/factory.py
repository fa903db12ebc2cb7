from typing import Callable, NamedTuple

from loguru import logger

from medisched.config import AppConfig, CalendarAdapter
from medisched.scheduling.adapters.calendar_http import HttpCalendarSync
from medisched.scheduling.adapters.memory import (
    InMemoryAvailabilityRuleRepository,
    InMemoryBookingRepository,
    InMemoryDoctorRepository,
    InMemoryWaitlistRepository,
)
from medisched.scheduling.adapters.null import LoggingNotifier, NullCalendarSync
from medisched.scheduling.adapters.webhook import WebhookNotifier
from medisched.scheduling.datetime_helpers import SystemClock, resolve_timezone
from medisched.scheduling.ports import (
    AvailabilityRuleRepository,
    BookingRepository,
    CalendarSyncPort,
    Clock,
    DoctorRepository,
    NotificationPort,
    WaitlistRepository,
)
from medisched.scheduling.service import SchedulingService


class Repositories(NamedTuple):
    doctors: DoctorRepository
    rules: AvailabilityRuleRepository
    bookings: BookingRepository
    waitlist: WaitlistRepository


def in_memory_repositories() -> Repositories:
    return Repositories(
        doctors=InMemoryDoctorRepository(),
        rules=InMemoryAvailabilityRuleRepository(),
        bookings=InMemoryBookingRepository(),
        waitlist=InMemoryWaitlistRepository(),
    )


def _build_null_calendar(config: AppConfig) -> CalendarSyncPort:
    return NullCalendarSync()


def _build_http_calendar(config: AppConfig) -> CalendarSyncPort:
    return HttpCalendarSync(
        api_url=config.calendar.api_url,
        calendar_id=config.calendar.calendar_id,
        token=config.calendar.token,
        timeout=config.calendar.timeout_seconds,
    )


_CALENDAR_BUILDERS: dict[CalendarAdapter, Callable[[AppConfig], CalendarSyncPort]] = {
    CalendarAdapter.NONE: _build_null_calendar,
    CalendarAdapter.HTTP: _build_http_calendar,
}


def build_calendar_sync(config: AppConfig) -> CalendarSyncPort:
    adapter = config.calendar.adapter
    logger.info("Building calendar sync with adapter: {}", adapter.value)
    return _CALENDAR_BUILDERS[adapter](config)


def build_notifier(config: AppConfig) -> NotificationPort:
    if config.notifications.webhook_url:
        logger.info("Building webhook notifier")
        return WebhookNotifier(
            config.notifications.webhook_url,
            timeout=config.notifications.timeout_seconds,
        )
    return LoggingNotifier()


def build_scheduling_service(
    config: AppConfig,
    repositories: Repositories | None = None,
    clock: Clock | None = None,
) -> SchedulingService:
    """Build the scheduling service from config; repositories default to in-memory."""
    repos = repositories or in_memory_repositories()
    return SchedulingService(
        doctors=repos.doctors,
        rules=repos.rules,
        bookings=repos.bookings,
        waitlist=repos.waitlist,
        clock=clock or SystemClock(resolve_timezone(config.clinic_timezone)),
        calendar=build_calendar_sync(config),
        notifier=build_notifier(config),
        settings=config.scheduling,
    )
