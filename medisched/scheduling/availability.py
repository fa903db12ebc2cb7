import datetime as dt

from loguru import logger

from medisched.domain.exceptions import NotFoundError, SchedulingError, StorageError
from medisched.domain.models import AvailabilityRule, AvailabilityWindow, Doctor, Weekday
from medisched.scheduling.datetime_helpers import at_wall_time, to_clinic_time
from medisched.scheduling.ports import AvailabilityRuleRepository, Clock, DoctorRepository


class AvailabilityStore:
    """Resolves doctors' recurring schedules and date overrides into concrete windows.

    For a doctor and civil date, any date-specific rules for that date replace
    the recurring rules of that weekday entirely. An instant is available when
    an effective window with ``is_available`` contains it and no effective
    window without ``is_available`` does.
    """

    def __init__(
        self,
        doctors: DoctorRepository,
        rules: AvailabilityRuleRepository,
        clock: Clock,
    ) -> None:
        self._doctors = doctors
        self._rules = rules
        self._clock = clock

    @property
    def tz(self) -> dt.tzinfo:
        return self._clock.tz

    async def get_doctor(self, doctor_id: int) -> Doctor:
        try:
            doctor = await self._doctors.get(doctor_id)
        except SchedulingError:
            raise
        except Exception as exc:
            raise StorageError(f"Doctor lookup failed: {exc}") from exc
        if doctor is None:
            raise NotFoundError("Doctor", doctor_id)
        return doctor

    async def active_doctors(self, specialty_id: int | None = None) -> list[Doctor]:
        """Active doctors, of one specialty if given, in ascending ID order."""
        try:
            if specialty_id is None:
                doctors = await self._doctors.list_all()
            else:
                doctors = await self._doctors.list_by_specialty(specialty_id)
        except SchedulingError:
            raise
        except Exception as exc:
            raise StorageError(f"Doctor query failed: {exc}") from exc
        return sorted((d for d in doctors if d.active), key=lambda d: d.doctor_id)

    async def availability_for(
        self, doctor_id: int, when: dt.date | dt.datetime
    ) -> list[AvailabilityWindow]:
        """All effective windows (available or blocking) for the date of ``when``."""
        await self.get_doctor(doctor_id)
        return await self._effective_windows(doctor_id, self._civil_date(when))

    async def available_windows(self, doctor_id: int, date: dt.date) -> list[AvailabilityWindow]:
        windows = await self.availability_for(doctor_id, date)
        return [w for w in windows if w.is_available]

    async def is_available(self, doctor_id: int, instant: dt.datetime) -> bool:
        instant = to_clinic_time(instant, self._clock.tz)
        windows = await self.availability_for(doctor_id, instant)
        if any(not w.is_available and w.contains(instant) for w in windows):
            return False
        return any(w.is_available and w.contains(instant) for w in windows)

    async def governing_window(
        self, doctor_id: int, start: dt.datetime, end: dt.datetime
    ) -> AvailabilityWindow | None:
        """The available window that covers all of ``[start, end)``, if any.

        Returns None when no window covers the request or a blocking window
        overlaps it. When several windows qualify the longest one governs.
        """
        start = to_clinic_time(start, self._clock.tz)
        end = to_clinic_time(end, self._clock.tz)
        windows = await self.availability_for(doctor_id, start)

        if any(not w.is_available and w.overlaps(start, end) for w in windows):
            return None

        covering = [w for w in windows if w.is_available and w.contains(start) and end <= w.end]
        if not covering:
            return None
        return min(covering, key=lambda w: (-w.duration_minutes, w.start))

    async def _effective_windows(self, doctor_id: int, date: dt.date) -> list[AvailabilityWindow]:
        try:
            rules = await self._rules.list_for_doctor(doctor_id)
        except SchedulingError:
            raise
        except Exception as exc:
            raise StorageError(f"Availability lookup failed: {exc}") from exc

        effective = self._select_rules(rules, date)
        windows = [self._to_window(rule, date) for rule in effective]
        windows.sort(key=lambda w: (w.start, w.end))
        logger.debug(
            "Doctor {} has {} effective window(s) on {}", doctor_id, len(windows), date
        )
        return windows

    @staticmethod
    def _select_rules(rules: list[AvailabilityRule], date: dt.date) -> list[AvailabilityRule]:
        specific = [r for r in rules if r.specific_date == date]
        if specific:
            return specific
        weekday = Weekday.of(date)
        return [r for r in rules if r.is_recurring and r.day_of_week == weekday]

    def _to_window(self, rule: AvailabilityRule, date: dt.date) -> AvailabilityWindow:
        return AvailabilityWindow(
            doctor_id=rule.doctor_id,
            date=date,
            start=at_wall_time(date, rule.start_time, self._clock.tz),
            end=at_wall_time(date, rule.end_time, self._clock.tz),
            is_available=rule.is_available,
            rule_id=rule.rule_id,
            notes=rule.notes,
        )

    def _civil_date(self, when: dt.date | dt.datetime) -> dt.date:
        if isinstance(when, dt.datetime):
            return to_clinic_time(when, self._clock.tz).date()
        return when
