from typing import Any

import httpx
from loguru import logger

from medisched.domain.exceptions import ExternalSyncError
from medisched.domain.models import AppointmentType, Booking, SyncAction

# Deleting an event the calendar no longer has is treated as done.
_GONE_STATUSES = {404, 410}


class HttpCalendarSync:
    """Mirrors bookings into a Google Calendar v3 style REST API.

    Remembers the external event ID of every booking it created so later
    updates and deletes can address the event. Updating or deleting a booking
    that was never mirrored is a no-op.
    """

    def __init__(
        self,
        api_url: str,
        *,
        calendar_id: str = "primary",
        token: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._calendar_id = calendar_id
        self._token = token
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._event_ids: dict[int, str] = {}

    def event_id_for(self, booking_id: int) -> str | None:
        return self._event_ids.get(booking_id)

    async def sync(self, booking: Booking, action: SyncAction) -> None:
        if booking.booking_id is None:
            raise ExternalSyncError("Booking has not been committed")

        if action is SyncAction.CREATE:
            await self._create(booking)
        elif action is SyncAction.UPDATE:
            await self._update(booking)
        else:
            await self._delete(booking)

    async def health_check(self) -> bool:
        try:
            await self._request("GET", f"{self._api_url}/calendars/{self._calendar_id}")
            return True
        except ExternalSyncError as exc:
            logger.warning("Calendar health check failed: {}", exc)
            return False

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Calendar HTTP client closed")

    async def _create(self, booking: Booking) -> None:
        data = await self._request(
            "POST", self._events_url(), json=self._event_body(booking), booking=booking
        )
        event_id = data.get("id")
        if not event_id:
            raise ExternalSyncError("Calendar returned no event id", booking.booking_id)

        self._event_ids[booking.booking_id] = str(event_id)  # type: ignore[index]
        logger.info("Booking {} mirrored as calendar event {}", booking.booking_id, event_id)

    async def _update(self, booking: Booking) -> None:
        event_id = self._event_ids.get(booking.booking_id)  # type: ignore[arg-type]
        if event_id is None:
            logger.debug("Booking {} has no calendar event; skipping update", booking.booking_id)
            return

        await self._request(
            "PATCH",
            f"{self._events_url()}/{event_id}",
            json=self._event_body(booking),
            booking=booking,
        )
        logger.info("Calendar event {} updated", event_id)

    async def _delete(self, booking: Booking) -> None:
        event_id = self._event_ids.get(booking.booking_id)  # type: ignore[arg-type]
        if event_id is None:
            logger.debug("Booking {} has no calendar event; skipping delete", booking.booking_id)
            return

        await self._request(
            "DELETE", f"{self._events_url()}/{event_id}", booking=booking, allow_gone=True
        )
        self._event_ids.pop(booking.booking_id, None)  # type: ignore[arg-type]
        logger.info("Calendar event {} deleted", event_id)

    def _events_url(self) -> str:
        return f"{self._api_url}/calendars/{self._calendar_id}/events"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def _event_body(self, booking: Booking) -> dict[str, Any]:
        lines = [
            "Medical appointment",
            f"Patient: {booking.patient_id}",
            f"Doctor: {booking.doctor_id}",
            f"Specialty: {booking.specialty_id}",
            f"Reason: {booking.reason or '-'}",
            f"Type: {booking.type.value}",
        ]
        if booking.urgent:
            lines.append("URGENT")
        body: dict[str, Any] = {
            "summary": f"Medical appointment - patient {booking.patient_id}",
            "description": "\n".join(lines),
            "start": {"dateTime": booking.start.isoformat()},
            "end": {"dateTime": booking.end.isoformat()},
            "extendedProperties": {"private": {"booking_id": str(booking.booking_id)}},
        }
        if booking.type is AppointmentType.VIRTUAL:
            body["conferenceData"] = {
                "createRequest": {"requestId": f"booking-{booking.booking_id}"}
            }
        return body

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json: dict[str, Any] | None = None,
        booking: Booking | None = None,
        allow_gone: bool = False,
    ) -> dict[str, Any]:
        booking_id = booking.booking_id if booking else None
        try:
            resp = await self._client.request(method, url, headers=self._headers(), json=json)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            if allow_gone and exc.response.status_code in _GONE_STATUSES:
                logger.info("Calendar event already gone ({})", exc.response.status_code)
                return {}
            raise ExternalSyncError(f"Calendar request failed: {exc}", booking_id) from exc
        except Exception as exc:
            raise ExternalSyncError(f"Calendar request failed: {exc}", booking_id) from exc

        if not resp.content:
            return {}
        try:
            data: dict[str, Any] = resp.json()
        except ValueError as exc:
            raise ExternalSyncError(f"Calendar returned invalid JSON: {exc}", booking_id) from exc
        return data
