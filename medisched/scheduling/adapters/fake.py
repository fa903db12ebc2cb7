import datetime as dt
from typing import Any

from medisched.domain.models import Booking, NotificationEvent, SyncAction


class FixedClock:
    """Clock that returns a preset instant; move it by assigning ``current``."""

    def __init__(self, current: dt.datetime, tz: dt.tzinfo | None = None) -> None:
        self._tz = tz or current.tzinfo or dt.timezone.utc
        self.current = current if current.tzinfo else current.replace(tzinfo=self._tz)

    @property
    def tz(self) -> dt.tzinfo:
        return self._tz

    def now(self) -> dt.datetime:
        return self.current


class FakeCalendarSync:
    """In-memory test double for the CalendarSyncPort protocol.

    Set ``sync_error`` to make every following ``sync`` call raise it. After
    calls, inspect ``synced`` for the ``(booking, action)`` pairs delivered.
    """

    def __init__(self) -> None:
        self.synced: list[tuple[Booking, SyncAction]] = []
        self.sync_error: Exception | None = None
        self.closed: bool = False

    async def sync(self, booking: Booking, action: SyncAction) -> None:
        if self.sync_error:
            raise self.sync_error
        self.synced.append((booking, action))

    async def close(self) -> None:
        self.closed = True


class FakeNotifier:
    """In-memory test double for the NotificationPort protocol."""

    def __init__(self) -> None:
        self.sent: list[tuple[int, NotificationEvent, dict[str, Any]]] = []
        self.notify_error: Exception | None = None
        self.closed: bool = False

    async def notify(
        self, user_id: int, event: NotificationEvent, payload: dict[str, Any]
    ) -> None:
        if self.notify_error:
            raise self.notify_error
        self.sent.append((user_id, event, payload))

    def events(self) -> list[NotificationEvent]:
        return [event for _, event, _ in self.sent]

    async def close(self) -> None:
        self.closed = True
