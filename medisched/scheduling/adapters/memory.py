import datetime as dt
import itertools
from collections.abc import Iterable

from medisched.domain.exceptions import NotFoundError
from medisched.domain.models import (
    AvailabilityRule,
    Booking,
    Doctor,
    WaitlistEntry,
    WaitlistStatus,
)


class InMemoryDoctorRepository:
    """Doctor reference data held in a dict, keyed by ID."""

    def __init__(self, doctors: Iterable[Doctor] = ()) -> None:
        self._doctors: dict[int, Doctor] = {}
        for doctor in doctors:
            self.put(doctor)

    def put(self, doctor: Doctor) -> None:
        self._doctors[doctor.doctor_id] = doctor

    async def get(self, doctor_id: int) -> Doctor | None:
        return self._doctors.get(doctor_id)

    async def list_by_specialty(self, specialty_id: int) -> list[Doctor]:
        return [d for d in self._doctors.values() if d.specialty_id == specialty_id]

    async def list_all(self) -> list[Doctor]:
        return list(self._doctors.values())


class InMemoryAvailabilityRuleRepository:
    def __init__(self, rules: Iterable[AvailabilityRule] = ()) -> None:
        self._rules: dict[int, AvailabilityRule] = {}
        for rule in rules:
            self.put(rule)

    def put(self, rule: AvailabilityRule) -> None:
        self._rules[rule.rule_id] = rule

    def remove(self, rule_id: int) -> None:
        self._rules.pop(rule_id, None)

    async def list_for_doctor(self, doctor_id: int) -> list[AvailabilityRule]:
        return [r for r in self._rules.values() if r.doctor_id == doctor_id]


class InMemoryBookingRepository:
    """Bookings in a dict; IDs come from a process-local counter starting at 1."""

    def __init__(self) -> None:
        self._bookings: dict[int, Booking] = {}
        self._ids = itertools.count(1)

    async def get(self, booking_id: int) -> Booking | None:
        return self._bookings.get(booking_id)

    async def add(self, booking: Booking) -> Booking:
        stored = booking.model_copy(update={"booking_id": next(self._ids)})
        self._bookings[stored.booking_id] = stored  # type: ignore[index]
        return stored

    async def update(self, booking: Booking) -> Booking:
        if booking.booking_id not in self._bookings:
            raise NotFoundError("Booking", booking.booking_id)
        self._bookings[booking.booking_id] = booking
        return booking

    async def list_for_doctor(
        self, doctor_id: int, start: dt.datetime, end: dt.datetime
    ) -> list[Booking]:
        return sorted(
            (
                b
                for b in self._bookings.values()
                if b.doctor_id == doctor_id and b.overlaps(start, end)
            ),
            key=lambda b: b.start,
        )

    def all(self) -> list[Booking]:
        return list(self._bookings.values())


class InMemoryWaitlistRepository:
    """Waitlist entries plus the per-specialty high-water mark of issued positions."""

    def __init__(self) -> None:
        self._entries: dict[int, WaitlistEntry] = {}
        self._ids = itertools.count(1)
        self._high_water: dict[int, int] = {}

    async def get(self, entry_id: int) -> WaitlistEntry | None:
        return self._entries.get(entry_id)

    async def add(self, entry: WaitlistEntry) -> WaitlistEntry:
        stored = entry.model_copy(update={"entry_id": next(self._ids)})
        self._entries[stored.entry_id] = stored  # type: ignore[index]
        if stored.position is not None:
            current = self._high_water.get(stored.specialty_id, 0)
            self._high_water[stored.specialty_id] = max(current, stored.position)
        return stored

    async def update(self, entry: WaitlistEntry) -> WaitlistEntry:
        if entry.entry_id not in self._entries:
            raise NotFoundError("Waitlist entry", entry.entry_id)
        self._entries[entry.entry_id] = entry
        return entry

    async def list_waiting(self) -> list[WaitlistEntry]:
        return [e for e in self._entries.values() if e.status == WaitlistStatus.WAITING]

    async def max_position(self, specialty_id: int) -> int | None:
        waiting = [
            e.position
            for e in self._entries.values()
            if e.specialty_id == specialty_id
            and e.status == WaitlistStatus.WAITING
            and e.position is not None
        ]
        issued = self._high_water.get(specialty_id)
        candidates = waiting + ([issued] if issued is not None else [])
        return max(candidates) if candidates else None

    def all(self) -> list[WaitlistEntry]:
        return list(self._entries.values())
