from typing import Any

from loguru import logger

from medisched.domain.models import Booking, NotificationEvent, SyncAction


class NullCalendarSync:
    """Calendar collaborator used when no external calendar is configured."""

    async def sync(self, booking: Booking, action: SyncAction) -> None:
        logger.debug(
            "No calendar configured; skipping {} for booking {}", action.value, booking.booking_id
        )

    async def close(self) -> None:
        return None


class LoggingNotifier:
    """Notification collaborator that only writes to the log."""

    async def notify(
        self, user_id: int, event: NotificationEvent, payload: dict[str, Any]
    ) -> None:
        logger.info("Notify user {}: {} {}", user_id, event.value, payload)

    async def close(self) -> None:
        return None
