"""Integration tests for the HTTP calendar adapter.

These tests run against a real Google Calendar v3 compatible API and require:
  - CALENDAR_TOKEN set in .env (or env vars) with write access to the calendar
  - CALENDAR_ID pointing at a calendar that is safe to write test events into

Run explicitly with::

    pytest -m integration
"""

import datetime as dt
import os
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from dotenv import load_dotenv

from medisched.domain.models import Booking, SyncAction
from medisched.scheduling.adapters.calendar_http import HttpCalendarSync

load_dotenv(override=True)

_TOKEN = os.environ.get("CALENDAR_TOKEN", "")
_CALENDAR_ID = os.environ.get("CALENDAR_ID", "primary")
_API_URL = os.environ.get("CALENDAR_API_URL", "https://www.googleapis.com/calendar/v3")

pytestmark = [
    pytest.mark.integration,
    pytest.mark.asyncio,
    pytest.mark.skipif(not _TOKEN, reason="CALENDAR_TOKEN must be set"),
]


@pytest_asyncio.fixture
async def calendar() -> AsyncGenerator[HttpCalendarSync]:
    """A calendar client with real credentials, closed after each test."""
    c = HttpCalendarSync(_API_URL, calendar_id=_CALENDAR_ID, token=_TOKEN)
    yield c
    await c.close()


def _future_booking() -> Booking:
    start = dt.datetime.now(dt.timezone.utc).replace(microsecond=0) + dt.timedelta(days=30)
    return Booking(
        booking_id=990001,
        doctor_id=1,
        patient_id=1,
        specialty_id=1,
        start=start,
        end=start + dt.timedelta(minutes=30),
        reason="Integration test",
    )


class TestHealthCheck:
    async def test_returns_true_when_healthy(self, calendar: HttpCalendarSync) -> None:
        assert await calendar.health_check() is True


class TestEventLifecycle:
    async def test_create_update_delete(self, calendar: HttpCalendarSync) -> None:
        booking = _future_booking()

        await calendar.sync(booking, SyncAction.CREATE)
        assert calendar.event_id_for(990001) is not None

        moved = booking.model_copy(
            update={
                "start": booking.start + dt.timedelta(hours=1),
                "end": booking.end + dt.timedelta(hours=1),
            }
        )
        await calendar.sync(moved, SyncAction.UPDATE)

        await calendar.sync(moved, SyncAction.DELETE)
        assert calendar.event_id_for(990001) is None
