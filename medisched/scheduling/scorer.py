import datetime as dt

from loguru import logger

from medisched.domain.models import AvailabilityWindow, Doctor, ScoredCandidate
from medisched.scheduling.availability import AvailabilityStore
from medisched.scheduling.datetime_helpers import to_clinic_time
from medisched.scheduling.ledger import BookingLedger
from medisched.scheduling.ports import Clock

# A doctor with this many bookings in the week gets no workload credit.
WORKLOAD_CEILING = 10
SENIORITY_WEIGHT = 0.5
AVAILABILITY_SCORE_CAP = 5.0


def workload_score(appointments_this_week: int) -> float:
    return float(max(0, WORKLOAD_CEILING - appointments_this_week))


def seniority_score(experience_years: float) -> float:
    return experience_years * SENIORITY_WEIGHT


def availability_score(window: AvailabilityWindow) -> float:
    return min(AVAILABILITY_SCORE_CAP, window.duration_minutes / 60)


def preference_score(doctor: Doctor) -> float:
    """Reserved for patient preferences; contributes nothing yet."""
    return 0.0


class AssignmentScorer:
    """Ranks the doctors that can take a window and picks the best one.

    A doctor qualifies when active, in the specialty, covered by an
    availability window for the whole request and free on the ledger. The
    score is ``workload + seniority + availability``; ties go to the lowest
    doctor ID. Workload counts bookings in the ISO week of the *requested*
    start, not the current week.
    """

    def __init__(
        self, availability: AvailabilityStore, ledger: BookingLedger, clock: Clock
    ) -> None:
        self._availability = availability
        self._ledger = ledger
        self._clock = clock

    async def rank(
        self, specialty_id: int, start: dt.datetime, end: dt.datetime
    ) -> list[ScoredCandidate]:
        """All qualifying doctors, best first."""
        start = to_clinic_time(start, self._clock.tz)
        end = to_clinic_time(end, self._clock.tz)

        candidates: list[ScoredCandidate] = []
        for doctor in await self._availability.active_doctors(specialty_id):
            scored = await self._score(doctor, start, end)
            if scored is not None:
                candidates.append(scored)

        candidates.sort(key=lambda c: (-c.total, c.doctor_id))
        return candidates

    async def assign_optimal(
        self, specialty_id: int, start: dt.datetime, end: dt.datetime
    ) -> int | None:
        candidates = await self.rank(specialty_id, start, end)
        if not candidates:
            logger.info("No doctor available for specialty {} at {}", specialty_id, start)
            return None

        best = candidates[0]
        logger.info(
            "Assigned doctor {} for specialty {} at {} (score={})",
            best.doctor_id,
            specialty_id,
            start,
            best.total,
        )
        return best.doctor_id

    async def _score(
        self, doctor: Doctor, start: dt.datetime, end: dt.datetime
    ) -> ScoredCandidate | None:
        window = await self._availability.governing_window(doctor.doctor_id, start, end)
        if window is None:
            return None
        if await self._ledger.has_conflict(doctor.doctor_id, start, end):
            return None

        weekly = await self._ledger.count_in_week(doctor.doctor_id, start)
        candidate = ScoredCandidate(
            doctor_id=doctor.doctor_id,
            workload_score=workload_score(weekly),
            seniority_score=seniority_score(doctor.experience_years),
            availability_score=availability_score(window),
            preference_score=preference_score(doctor),
        )
        logger.debug(
            "Doctor {} scored {} (workload={}, seniority={}, availability={})",
            doctor.doctor_id,
            candidate.total,
            candidate.workload_score,
            candidate.seniority_score,
            candidate.availability_score,
        )
        return candidate
