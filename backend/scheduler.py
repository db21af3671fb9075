"""Automatic substitute assignment for an absent teacher's periods.

For each period the absent teacher teaches on the absence weekday:
find free teachers, score them, commit the best one and queue the
notification/email effects for the caller to run afterwards.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional

import models
from config import SCORING_WEIGHTS, ScoringWeights, get_scoring_weights

logger = logging.getLogger(__name__)

# One assignment run per weekday at a time within this process
_weekday_locks = {day: threading.Lock() for day in models.WEEKDAYS}


def weekday_lock(weekday: str) -> threading.Lock:
    """Lock serialising every coverage write for one weekday."""
    return _weekday_locks[weekday]


class CoverageAssignmentError(RuntimeError):
    """The absent teacher's periods could not be loaded at all."""


@dataclass(frozen=True)
class Candidate:
    teacher_id: int
    name: str
    subject: Optional[str]


@dataclass(frozen=True)
class CandidateScore:
    teacher_id: int
    score: int


@dataclass(frozen=True)
class CoverageEffect:
    """Notification and email owed to a substitute after a commit."""
    teacher_id: int
    teacher_name: str
    email: Optional[str]
    class_name: str
    time_range: str
    absence_date: date
    title: str = "Coverage Assignment"
    severity: str = "warning"

    @property
    def message(self) -> str:
        return f"You have been assigned to cover {self.class_name} ({self.time_range})"


@dataclass
class PeriodOutcome:
    period_id: int
    class_name: str
    time_range: str
    subject: Optional[str]
    substitute_id: Optional[int] = None
    substitute_name: Optional[str] = None
    score: Optional[int] = None
    error: Optional[str] = None

    @property
    def covered(self) -> bool:
        return self.substitute_id is not None


@dataclass
class CoverageRun:
    absent_teacher_id: int
    absence_date: date
    weekday: str
    outcomes: List[PeriodOutcome] = field(default_factory=list)
    effects: List[CoverageEffect] = field(default_factory=list)

    @property
    def covered_count(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.covered)


@dataclass(frozen=True)
class PeriodSlot:
    """Detached copy of a scheduled period, taken before any commit."""
    id: int
    day: str
    period_start: str
    period_end: str
    class_name: str
    subject: Optional[str] = None

    @classmethod
    def from_period(cls, period) -> "PeriodSlot":
        return cls(
            id=period.id,
            day=period.day,
            period_start=period.period_start,
            period_end=period.period_end,
            class_name=period.class_name,
            subject=period.subject,
        )


def time_range(period) -> str:
    return f"{period.period_start}-{period.period_end}"


def find_free_candidates(store, exclude_teacher_id: int, weekday: str,
                         period_start: str, period_end: str, absence_date: date,
                         ignore_period_id: Optional[int] = None) -> List[Candidate]:
    """Teachers who could take the slot, in store order (by id).

    `ignore_period_id` is the period being filled; whoever covers it already
    is not blocked by that coverage.
    """
    if period_start >= period_end:
        raise ValueError(f"Empty period {period_start}-{period_end}")
    if weekday not in models.WEEKDAYS:
        raise ValueError(f"Unknown weekday {weekday!r}")
    teachers = store.get_free_teachers(
        exclude_teacher_id, weekday, period_start, period_end, absence_date, ignore_period_id=ignore_period_id
    )
    return [Candidate(teacher_id=t.id, name=t.name, subject=t.subject) for t in teachers]


class CoverageScorer:
    """Ranks a candidate for one period; higher is better, never below zero."""

    def __init__(self, store, weights: Optional[ScoringWeights] = None, today: Optional[date] = None):
        self.store = store
        self.weights = weights or ScoringWeights()
        self.today = today

    def score(self, candidate_id: int, period, absence_date: date) -> int:
        w = self.weights
        parts = [
            ("workload", w.workload_penalty, self._workload),
            ("subject match", w.subject_match_bonus, self._subject_match),
            ("recent absences", w.recent_absence_bonus, self._recent_absences),
            ("back-to-back", w.back_to_back_penalty, self._back_to_back),
        ]
        score = w.base
        attempted = failed = 0
        for label, weight, compute in parts:
            if not weight:
                continue
            attempted += 1
            try:
                score += compute(candidate_id, period)
            except Exception:
                failed += 1
                logger.warning(
                    "Skipping %s score for teacher %s on period %s",
                    label, candidate_id, getattr(period, "id", None), exc_info=True,
                )
                self.store.rollback()
        if attempted and failed == attempted:
            logger.warning("All score lookups failed for teacher %s, using neutral score", candidate_id)
            return max(0, w.neutral_score)
        return max(0, score)

    def _workload(self, candidate_id, period) -> int:
        return -self.weights.workload_penalty * self.store.get_teacher_workload_count(candidate_id)

    def _subject_match(self, candidate_id, period) -> int:
        subject = self.store.get_teacher_subject(candidate_id)
        # Two missing subjects are not a match
        if subject is not None and subject == period.subject:
            return self.weights.subject_match_bonus
        return 0

    def _recent_absences(self, candidate_id, period) -> int:
        today = self.today or date.today()
        since = today - timedelta(days=self.weights.recent_absence_window_days)
        count = self.store.get_recent_absence_count(candidate_id, since, today)
        return self.weights.recent_absence_bonus * count

    def _back_to_back(self, candidate_id, period) -> int:
        adjacent = self.store.get_adjacent_period_count(
            candidate_id, period.day, period.period_start, period.period_end
        )
        return -self.weights.back_to_back_penalty if adjacent > 0 else 0


def pick_best(scores: List[CandidateScore]) -> Optional[CandidateScore]:
    """Highest score wins; ties go to the lowest teacher id."""
    if not scores:
        return None
    return min(scores, key=lambda s: (-s.score, s.teacher_id))


class CoverageEngine:
    def __init__(self, store, weights: Optional[ScoringWeights] = None, today: Optional[date] = None):
        self.store = store
        self.scorer = CoverageScorer(store, weights or SCORING_WEIGHTS, today=today)

    def assign_coverage(self, absent_teacher_id: int, absence_date: date,
                        absence_id: Optional[int] = None) -> CoverageRun:
        """Covers what it can of the teacher's periods on the absence weekday.

        Raises CoverageAssignmentError only if the period list cannot be read;
        any failure inside a single period leaves that period uncovered.
        """
        weekday = models.weekday_name(absence_date)
        run = CoverageRun(absent_teacher_id=absent_teacher_id, absence_date=absence_date, weekday=weekday)

        with weekday_lock(weekday):
            try:
                work_list = [
                    PeriodSlot.from_period(p)
                    for p in self.store.get_periods_for_teacher_on_day(absent_teacher_id, weekday)
                ]
            except Exception as e:
                self.store.rollback()
                raise CoverageAssignmentError(
                    f"Could not load {weekday} periods for teacher {absent_teacher_id}"
                ) from e

            for period in work_list:
                outcome = PeriodOutcome(
                    period_id=period.id,
                    class_name=period.class_name,
                    time_range=time_range(period),
                    subject=period.subject,
                )
                run.outcomes.append(outcome)
                try:
                    effect = self._cover_period(period, outcome, absent_teacher_id, absence_date, absence_id)
                except Exception as e:
                    logger.exception("Coverage for period %s failed, leaving it uncovered", period.id)
                    self.store.rollback()
                    outcome.substitute_id = outcome.substitute_name = outcome.score = None
                    outcome.error = str(e)
                    continue
                if effect is not None:
                    run.effects.append(effect)

        logger.info(
            "Covered %s of %s %s periods for teacher %s",
            run.covered_count, len(run.outcomes), weekday, absent_teacher_id,
        )
        return run

    def _cover_period(self, period, outcome, absent_teacher_id, absence_date, absence_id):
        candidates = find_free_candidates(
            self.store, absent_teacher_id, period.day, period.period_start, period.period_end, absence_date
        )
        if not candidates:
            logger.info("No free teacher for period %s (%s %s)", period.id, period.day, outcome.time_range)
            return None

        scores = [
            CandidateScore(teacher_id=c.teacher_id, score=self.scorer.score(c.teacher_id, period, absence_date))
            for c in candidates
        ]
        best = pick_best(scores)
        winner = next(c for c in candidates if c.teacher_id == best.teacher_id)

        self.store.update_period_coverage(period.id, winner.teacher_id, absence_id)
        outcome.substitute_id = winner.teacher_id
        outcome.substitute_name = winner.name
        outcome.score = best.score
        logger.info(
            "Period %s (%s) covered by teacher %s with score %s",
            period.id, period.class_name, winner.teacher_id, best.score,
        )

        # Contact details are only needed for the email; missing them is not fatal
        email = None
        try:
            teacher = self.store.get_teacher(winner.teacher_id)
            email = teacher.email if teacher is not None else None
        except Exception:
            logger.warning("Could not load contact details for teacher %s", winner.teacher_id, exc_info=True)
            self.store.rollback()

        return CoverageEffect(
            teacher_id=winner.teacher_id,
            teacher_name=winner.name,
            email=email,
            class_name=period.class_name,
            time_range=outcome.time_range,
            absence_date=absence_date,
        )


def assign_coverage(store, absent_teacher_id: int, absence_date: date,
                    absence_id: Optional[int] = None, strategy: Optional[str] = None) -> CoverageRun:
    """Runs the engine with the configured (or given) strategy."""
    weights = SCORING_WEIGHTS if strategy is None else get_scoring_weights(strategy)
    engine = CoverageEngine(store, weights)
    return engine.assign_coverage(absent_teacher_id, absence_date, absence_id=absence_id)
