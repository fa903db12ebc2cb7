import asyncio

from loguru import logger

from medisched.domain.exceptions import (
    NotFoundError,
    SchedulingError,
    StorageError,
    WaitlistStateError,
)
from medisched.domain.models import WaitlistEntry, WaitlistRequest, WaitlistStatus
from medisched.scheduling.ports import WaitlistRepository


class WaitlistQueue:
    """Backlog of requests nobody could take, served by priority then arrival.

    Positions are issued per specialty from a counter that only grows, so a
    position is never handed out twice even after its entry leaves the queue.
    """

    def __init__(self, entries: WaitlistRepository) -> None:
        self._entries = entries
        self._enqueue_lock = asyncio.Lock()

    async def get(self, entry_id: int) -> WaitlistEntry:
        try:
            entry = await self._entries.get(entry_id)
        except SchedulingError:
            raise
        except Exception as exc:
            raise StorageError(f"Waitlist lookup failed: {exc}") from exc
        if entry is None:
            raise NotFoundError("Waitlist entry", entry_id)
        return entry

    async def enqueue(self, request: WaitlistRequest) -> WaitlistEntry:
        async with self._enqueue_lock:
            try:
                last = await self._entries.max_position(request.specialty_id)
                entry = await self._entries.add(
                    WaitlistEntry(
                        **request.model_dump(),
                        position=(last or 0) + 1,
                        status=WaitlistStatus.WAITING,
                    )
                )
            except SchedulingError:
                raise
            except Exception as exc:
                raise StorageError(f"Waitlist write failed: {exc}") from exc

        logger.info(
            "Waitlisted: entry={}, specialty={}, position={}, priority={}",
            entry.entry_id,
            entry.specialty_id,
            entry.position,
            entry.priority,
        )
        return entry

    async def dequeue_ordered_batch(self) -> list[WaitlistEntry]:
        """Waiting entries, highest priority first, FIFO within a priority."""
        try:
            waiting = await self._entries.list_waiting()
        except SchedulingError:
            raise
        except Exception as exc:
            raise StorageError(f"Waitlist query failed: {exc}") from exc
        waiting = [e for e in waiting if e.is_waiting]
        return sorted(waiting, key=lambda e: (-e.priority, e.position or 0))

    async def resolve(self, entry_id: int, booking_id: int) -> WaitlistEntry:
        """Mark an entry assigned to ``booking_id`` and take it out of the queue."""
        entry = await self._require_waiting(entry_id)
        resolved = await self._save(
            entry.model_copy(
                update={
                    "status": WaitlistStatus.ASSIGNED,
                    "position": None,
                    "booking_id": booking_id,
                }
            )
        )
        logger.info("Waitlist entry {} assigned to booking {}", entry_id, booking_id)
        return resolved

    async def cancel(self, entry_id: int) -> WaitlistEntry:
        entry = await self._require_waiting(entry_id)
        cancelled = await self._save(
            entry.model_copy(update={"status": WaitlistStatus.CANCELLED, "position": None})
        )
        logger.info("Waitlist entry {} cancelled", entry_id)
        return cancelled

    async def _require_waiting(self, entry_id: int) -> WaitlistEntry:
        entry = await self.get(entry_id)
        if not entry.is_waiting:
            raise WaitlistStateError(reason=f"entry is {entry.status.value}", entry_id=entry_id)
        return entry

    async def _save(self, entry: WaitlistEntry) -> WaitlistEntry:
        try:
            return await self._entries.update(entry)
        except SchedulingError:
            raise
        except Exception as exc:
            raise StorageError(f"Waitlist write failed: {exc}") from exc
