"""SQLAlchemy-backed access to timetables, absences and coverage.

The coverage engine only talks to the database through :class:`ScheduleStore`,
so tests can hand it a fake with the same methods.
"""
import logging
from datetime import date
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

import models

logger = logging.getLogger(__name__)


def _overlaps(start: str, end: str):
    # Open-interval test: touching periods (end == start) do not overlap
    return (models.ScheduledPeriod.period_start < end) & (models.ScheduledPeriod.period_end > start)


class ScheduleStore:
    def __init__(self, db: Session):
        self.db = db

    # --- reads ---

    def get_teacher(self, teacher_id: int) -> Optional[models.Teacher]:
        return self.db.get(models.Teacher, teacher_id)

    def get_periods_for_teacher_on_day(self, teacher_id: int, weekday: str) -> List[models.ScheduledPeriod]:
        return (
            self.db.query(models.ScheduledPeriod)
            .filter(
                models.ScheduledPeriod.teacher_id == teacher_id,
                models.ScheduledPeriod.day == weekday,
            )
            .order_by(models.ScheduledPeriod.period_start, models.ScheduledPeriod.id)
            .all()
        )

    def get_free_teachers(
        self, exclude_id: int, weekday: str, start: str, end: str, absence_date: date,
        ignore_period_id: Optional[int] = None,
    ) -> List[models.Teacher]:
        """Active non-admin teachers who are neither teaching, covering nor absent in the slot."""
        teaching = select(models.ScheduledPeriod.teacher_id).where(
            models.ScheduledPeriod.day == weekday, _overlaps(start, end)
        )
        absent = select(models.AbsenceRecord.teacher_id).where(
            models.AbsenceRecord.absent_date == absence_date
        )
        # Only coverage handed out for this same date blocks a teacher
        covering = (
            select(models.ScheduledPeriod.covered_by)
            .join(models.AbsenceRecord, models.ScheduledPeriod.assigned_by_absence_id == models.AbsenceRecord.id)
            .where(
                models.ScheduledPeriod.day == weekday,
                models.ScheduledPeriod.covered_by.is_not(None),
                models.AbsenceRecord.absent_date == absence_date,
                _overlaps(start, end),
            )
        )
        if ignore_period_id is not None:
            covering = covering.where(models.ScheduledPeriod.id != ignore_period_id)
        return (
            self.db.query(models.Teacher)
            .filter(
                models.Teacher.id != exclude_id,
                models.Teacher.status == "active",
                models.Teacher.role == "teacher",
                models.Teacher.id.not_in(teaching),
                models.Teacher.id.not_in(absent),
                models.Teacher.id.not_in(covering),
            )
            .order_by(models.Teacher.id)
            .all()
        )

    def get_teacher_workload_count(self, teacher_id: int) -> int:
        return (
            self.db.query(func.count(models.ScheduledPeriod.id))
            .filter(models.ScheduledPeriod.covered_by == teacher_id)
            .scalar()
        ) or 0

    def get_teacher_subject(self, teacher_id: int) -> Optional[str]:
        return (
            self.db.query(models.Teacher.subject)
            .filter(models.Teacher.id == teacher_id)
            .scalar()
        )

    def get_recent_absence_count(self, teacher_id: int, since_date: date, until_date: Optional[date] = None) -> int:
        query = self.db.query(func.count(models.AbsenceRecord.id)).filter(
            models.AbsenceRecord.teacher_id == teacher_id,
            models.AbsenceRecord.absent_date >= since_date,
        )
        if until_date is not None:
            query = query.filter(models.AbsenceRecord.absent_date <= until_date)
        return query.scalar() or 0

    def get_adjacent_period_count(self, teacher_id: int, weekday: str, start: str, end: str) -> int:
        """Periods of the teacher that end exactly at `start` or begin exactly at `end`."""
        return (
            self.db.query(func.count(models.ScheduledPeriod.id))
            .filter(
                models.ScheduledPeriod.teacher_id == teacher_id,
                models.ScheduledPeriod.day == weekday,
                or_(
                    models.ScheduledPeriod.period_end == start,
                    models.ScheduledPeriod.period_start == end,
                ),
            )
            .scalar()
        ) or 0

    def get_absence(self, teacher_id: int, absence_date: date) -> Optional[models.AbsenceRecord]:
        return (
            self.db.query(models.AbsenceRecord)
            .filter(
                models.AbsenceRecord.teacher_id == teacher_id,
                models.AbsenceRecord.absent_date == absence_date,
            )
            .first()
        )

    # --- writes ---

    def update_period_coverage(
        self, period_id: int, covering_teacher_id: int, absence_id: Optional[int] = None
    ) -> None:
        """Marks one period covered and commits it on its own."""
        updated = (
            self.db.query(models.ScheduledPeriod)
            .filter(models.ScheduledPeriod.id == period_id)
            .update(
                {
                    models.ScheduledPeriod.covered_by: covering_teacher_id,
                    models.ScheduledPeriod.is_covered: True,
                    models.ScheduledPeriod.assigned_by_absence_id: absence_id,
                },
                synchronize_session="fetch",
            )
        )
        if not updated:
            self.db.rollback()
            raise LookupError(f"Scheduled period {period_id} no longer exists")
        self.db.commit()

    def clear_coverage_for_absence(self, absence: models.AbsenceRecord) -> int:
        """Reverts the periods an absence caused to be covered.

        Periods of the same teacher and weekday that were covered without any
        recorded absence are cleared too; coverage belonging to an absence on a
        different date is left alone. Does not commit.
        """
        weekday = models.weekday_name(absence.absent_date)
        return (
            self.db.query(models.ScheduledPeriod)
            .filter(
                models.ScheduledPeriod.teacher_id == absence.teacher_id,
                models.ScheduledPeriod.day == weekday,
                models.ScheduledPeriod.is_covered.is_(True),
                or_(
                    models.ScheduledPeriod.assigned_by_absence_id == absence.id,
                    models.ScheduledPeriod.assigned_by_absence_id.is_(None),
                ),
            )
            .update(
                {
                    models.ScheduledPeriod.covered_by: None,
                    models.ScheduledPeriod.is_covered: False,
                    models.ScheduledPeriod.assigned_by_absence_id: None,
                },
                synchronize_session="fetch",
            )
        )

    def rollback(self) -> None:
        try:
            self.db.rollback()
        except Exception:
            logger.warning("Rollback after failed statement also failed", exc_info=True)
