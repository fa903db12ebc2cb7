import asyncio
import functools
from collections.abc import Coroutine
from typing import Any

from loguru import logger

from medisched.domain.exceptions import ExternalSyncError
from medisched.domain.models import Booking, DeliveryFailure, NotificationEvent, SyncAction
from medisched.scheduling.ports import CalendarSyncPort, NotificationPort


class BestEffortDispatcher:
    """Delivers calendar changes and notifications after a booking has committed.

    Every delivery runs as its own task and is attempted at most once. Calendar
    changes for the same booking run in the order they were scheduled, so a
    delete never overtakes the create it undoes. Failures are logged and kept
    in ``failures`` until an external retry job collects them with
    ``take_failures``; they never reach the caller that scheduled them.
    """

    def __init__(self, calendar: CalendarSyncPort, notifier: NotificationPort) -> None:
        self._calendar = calendar
        self._notifier = notifier
        self._tasks: set[asyncio.Task[None]] = set()
        self._calendar_tails: dict[int | None, asyncio.Task[None]] = {}
        self.failures: list[DeliveryFailure] = []

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def sync_calendar(self, booking: Booking, action: SyncAction) -> None:
        previous = self._calendar_tails.get(booking.booking_id)
        task = self._spawn(self._deliver_calendar(booking, action, previous))
        self._calendar_tails[booking.booking_id] = task
        task.add_done_callback(functools.partial(self._forget_tail, booking.booking_id))

    def take_failures(self) -> list[DeliveryFailure]:
        """Hand over the recorded failures and forget them."""
        failures, self.failures = self.failures, []
        return failures

    def notify(
        self, user_id: int, event: NotificationEvent, payload: dict[str, Any] | None = None
    ) -> None:
        self._spawn(self._deliver_notification(user_id, event, payload or {}))

    async def drain(self) -> None:
        """Wait until every scheduled delivery has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def close(self) -> None:
        await self.drain()
        await self._calendar.close()
        await self._notifier.close()

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _forget_tail(self, booking_id: int | None, task: asyncio.Task[None]) -> None:
        if self._calendar_tails.get(booking_id) is task:
            del self._calendar_tails[booking_id]

    async def _deliver_calendar(
        self,
        booking: Booking,
        action: SyncAction,
        previous: asyncio.Task[None] | None = None,
    ) -> None:
        if previous is not None:
            await asyncio.wait({previous})
        try:
            await self._calendar.sync(booking, action)
            logger.debug("Calendar {} delivered for booking {}", action.value, booking.booking_id)
        except ExternalSyncError as exc:
            logger.warning(
                "Calendar {} failed for booking {}: {}", action.value, booking.booking_id, exc
            )
            self._record("calendar", booking.booking_id, action.value, exc)
        except Exception as exc:
            logger.exception("Unexpected error syncing booking {}", booking.booking_id)
            self._record("calendar", booking.booking_id, action.value, exc)

    async def _deliver_notification(
        self, user_id: int, event: NotificationEvent, payload: dict[str, Any]
    ) -> None:
        try:
            await self._notifier.notify(user_id, event, payload)
        except ExternalSyncError as exc:
            logger.warning("Notification {} failed for user {}: {}", event.value, user_id, exc)
            self._record("notification", payload.get("booking_id"), event.value, exc, payload)
        except Exception as exc:
            logger.exception("Unexpected error notifying user {}", user_id)
            self._record("notification", payload.get("booking_id"), event.value, exc, payload)

    def _record(
        self,
        channel: str,
        booking_id: int | None,
        action: str,
        exc: Exception,
        payload: dict[str, Any] | None = None,
    ) -> None:
        self.failures.append(
            DeliveryFailure(
                channel=channel,
                booking_id=booking_id,
                action=action,
                error=str(exc),
                payload=payload or {},
            )
        )
