import datetime as dt

from loguru import logger

from medisched.domain.models import Slot
from medisched.scheduling.availability import AvailabilityStore
from medisched.scheduling.datetime_helpers import to_clinic_time
from medisched.scheduling.ledger import BookingLedger


class SlotGenerator:
    """Cuts doctors' effective availability into fixed-length open slots."""

    def __init__(self, availability: AvailabilityStore, ledger: BookingLedger) -> None:
        self._availability = availability
        self._ledger = ledger

    async def generate_slots(
        self, specialty_id: int, date: dt.date, slot_duration_minutes: int
    ) -> list[Slot]:
        """Every open slot of every active doctor in the specialty on ``date``.

        Slots come grouped by doctor (ascending doctor ID), each doctor's in
        ascending time. The same wall-clock slot may appear once per doctor.
        """
        if slot_duration_minutes <= 0:
            raise ValueError("slot_duration_minutes must be positive")

        slots: list[Slot] = []
        for doctor in await self._availability.active_doctors(specialty_id):
            slots.extend(
                await self.slots_for_doctor(doctor.doctor_id, date, slot_duration_minutes)
            )

        logger.info(
            "Generated {} slot(s) for specialty {} on {} ({} min)",
            len(slots),
            specialty_id,
            date,
            slot_duration_minutes,
        )
        return slots

    async def slots_for_doctor(
        self, doctor_id: int, date: dt.date, slot_duration_minutes: int
    ) -> list[Slot]:
        windows = await self._availability.availability_for(doctor_id, date)
        open_windows = [w for w in windows if w.is_available]
        if not open_windows:
            return []
        blocking = [w for w in windows if not w.is_available]

        day_start = min(w.start for w in open_windows)
        day_end = max(w.end for w in open_windows)
        booked = await self._ledger.active_bookings(doctor_id, day_start, day_end)

        step = dt.timedelta(minutes=slot_duration_minutes)
        seen: set[dt.datetime] = set()
        slots: list[Slot] = []
        for window in open_windows:
            start = window.start
            while start + step <= window.end:
                # Re-read the offset each step; a DST change may fall mid-window.
                end = to_clinic_time(start + step, self._availability.tz)
                if (
                    start not in seen
                    and not any(w.overlaps(start, end) for w in blocking)
                    and not any(b.overlaps(start, end) for b in booked)
                ):
                    seen.add(start)
                    slots.append(Slot(doctor_id=doctor_id, start=start, end=end))
                start = end

        slots.sort(key=lambda s: s.start)
        return slots
