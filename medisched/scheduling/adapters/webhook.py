from typing import Any

import httpx
from loguru import logger

from medisched.domain.exceptions import ExternalSyncError
from medisched.domain.models import NotificationEvent


class WebhookNotifier:
    """Posts scheduling events as JSON to a single webhook URL."""

    def __init__(
        self,
        webhook_url: str,
        *,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def notify(
        self, user_id: int, event: NotificationEvent, payload: dict[str, Any]
    ) -> None:
        try:
            resp = await self._client.post(
                self._webhook_url,
                json={"user_id": user_id, "event": event.value, "payload": payload},
            )
            resp.raise_for_status()
        except Exception as exc:
            raise ExternalSyncError(
                f"Webhook delivery failed: {exc}", payload.get("booking_id")
            ) from exc

        logger.debug("Webhook delivered {} for user {}", event.value, user_id)

    async def close(self) -> None:
        await self._client.aclose()
