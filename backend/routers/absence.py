import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from database import get_db
import models
import schemas
from notifications import create_notification, deliver_coverage_email, dispatch_coverage_effects
from schedule_store import ScheduleStore
from scheduler import CoverageAssignmentError, assign_coverage, find_free_candidates, weekday_lock
from utils import send_absence_notification_email

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/absence",
    tags=["Daily Operations"],
)


def _absence_conflict(teacher_name: str, absence_date: date) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"{teacher_name} is already marked absent for {absence_date.isoformat()}.",
    )


# --- Absence Reporting Endpoint ---

@router.post("/report-day", response_model=schemas.AbsenceResult)
def report_full_day_absence(
    data: schemas.AbsenceCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    """
    Marks a teacher absent for a whole day and auto-assigns substitutes
    for every period they teach on that weekday.
    """
    absence_date = data.absence_date or date.today()
    reason = data.reason or "No reason provided"
    store = ScheduleStore(db)

    # 1. Find the Absent Teacher
    teacher = db.query(models.Teacher).filter(
        models.Teacher.id == data.teacher_id,
        models.Teacher.status == "active",
    ).first()
    if not teacher:
        raise HTTPException(status_code=404, detail="Teacher not found or inactive.")
    teacher_id, teacher_name, teacher_email = teacher.id, teacher.name, teacher.email

    # 2. Record the absence (one per teacher per date)
    if store.get_absence(teacher_id, absence_date):
        raise _absence_conflict(teacher_name, absence_date)

    absence = models.AbsenceRecord(teacher_id=teacher_id, absent_date=absence_date, reason=reason)
    db.add(absence)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent request for the same teacher and date
        db.rollback()
        raise _absence_conflict(teacher_name, absence_date)
    absence_id = absence.id
    logger.info("Teacher %s marked absent for %s", teacher_id, absence_date)

    # 3. Find and Assign Substitutes
    run = None
    coverage_error = None
    try:
        run = assign_coverage(store, teacher_id, absence_date, absence_id=absence_id)
    except (CoverageAssignmentError, ValueError) as e:
        # The absence is already recorded; report the coverage failure alongside it
        logger.error("Coverage assignment failed for absence %s: %s", absence_id, e, exc_info=True)
        coverage_error = str(e)

    # 4. Notify substitutes and the absent teacher
    if run is not None:
        dispatch_coverage_effects(db, run.effects, background_tasks)
    create_notification(
        db, teacher_id, "Marked Absent", f"You have been marked absent for {absence_date.isoformat()}", "warning"
    )
    background_tasks.add_task(
        send_absence_notification_email, teacher_email, teacher_name, absence_date.isoformat(), reason
    )

    assignments = []
    if run is not None:
        assignments = [
            schemas.CoverageAssignment(
                period_id=outcome.period_id,
                class_name=outcome.class_name,
                period=outcome.time_range,
                subject=outcome.subject,
                substitute_id=outcome.substitute_id,
                substitute_name=outcome.substitute_name or "Not Found",
                score=outcome.score,
            )
            for outcome in run.outcomes
        ]

    return schemas.AbsenceResult(
        message="Teacher marked absent successfully",
        absence_id=absence_id,
        teacher_name=teacher_name,
        absence_date=absence_date,
        coverage_assigned=run.covered_count if run is not None else 0,
        periods_total=len(run.outcomes) if run is not None else 0,
        assignments=assignments,
        coverage_error=coverage_error,
    )


@router.delete("/{absence_id}")
def remove_absence(absence_id: int, db: Session = Depends(get_db)):
    """Retracts an absence and reverts the coverage it produced."""
    absence = db.get(models.AbsenceRecord, absence_id)
    if not absence:
        raise HTTPException(status_code=404, detail="Absence record not found.")
    teacher_id = absence.teacher_id

    cleared = ScheduleStore(db).clear_coverage_for_absence(absence)
    db.delete(absence)
    db.commit()
    logger.info("Absence %s removed, %s periods uncovered", absence_id, cleared)

    create_notification(db, teacher_id, "Absence Removed", "Your absence marking has been removed", "info")
    return {"message": "Absence removed successfully", "coverage_cleared": cleared}


@router.get("/", response_model=List[schemas.AbsenceRecord])
def get_absent_teachers(absence_date: Optional[date] = Query(None, alias="date"), db: Session = Depends(get_db)):
    """Teachers marked absent on a date (today by default)."""
    target_date = absence_date or date.today()
    rows = (
        db.query(models.AbsenceRecord, models.Teacher.name)
        .join(models.Teacher, models.AbsenceRecord.teacher_id == models.Teacher.id)
        .filter(models.AbsenceRecord.absent_date == target_date)
        .order_by(models.AbsenceRecord.created_at.desc(), models.AbsenceRecord.id.desc())
        .all()
    )
    return [_absence_out(record, name) for record, name in rows]


@router.get("/history", response_model=List[schemas.AbsenceRecord])
def get_absence_history(
    teacher_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
):
    query = db.query(models.AbsenceRecord, models.Teacher.name).join(
        models.Teacher, models.AbsenceRecord.teacher_id == models.Teacher.id
    )
    if teacher_id is not None:
        query = query.filter(models.AbsenceRecord.teacher_id == teacher_id)
    if start_date is not None:
        query = query.filter(models.AbsenceRecord.absent_date >= start_date)
    if end_date is not None:
        query = query.filter(models.AbsenceRecord.absent_date <= end_date)
    rows = query.order_by(models.AbsenceRecord.absent_date.desc(), models.AbsenceRecord.id.desc()).all()
    return [_absence_out(record, name) for record, name in rows]


def _absence_out(record: models.AbsenceRecord, teacher_name: str) -> schemas.AbsenceRecord:
    out = schemas.AbsenceRecord.model_validate(record)
    out.teacher_name = teacher_name
    return out


# --- Coverage Endpoints ---

@router.get("/coverage", response_model=List[schemas.CoverageRow])
def get_coverage_assignments(absence_date: Optional[date] = Query(None, alias="date"), db: Session = Depends(get_db)):
    """Covered periods on the weekday of the given date (today by default)."""
    target_date = absence_date or date.today()
    original = aliased(models.Teacher)
    covering = aliased(models.Teacher)
    rows = (
        db.query(models.ScheduledPeriod, original.name, covering.name, models.AbsenceRecord.reason)
        .join(original, models.ScheduledPeriod.teacher_id == original.id)
        .outerjoin(covering, models.ScheduledPeriod.covered_by == covering.id)
        .outerjoin(
            models.AbsenceRecord,
            (models.AbsenceRecord.teacher_id == models.ScheduledPeriod.teacher_id)
            & (models.AbsenceRecord.absent_date == target_date),
        )
        .filter(
            models.ScheduledPeriod.day == models.weekday_name(target_date),
            models.ScheduledPeriod.is_covered.is_(True),
        )
        .order_by(models.ScheduledPeriod.period_start, models.ScheduledPeriod.id)
        .all()
    )
    return [
        schemas.CoverageRow(
            period_id=period.id,
            day=period.day,
            period_start=period.period_start,
            period_end=period.period_end,
            class_name=period.class_name,
            subject=period.subject,
            room=period.room,
            original_teacher=original_name,
            covering_teacher=covering_name,
            absence_reason=reason,
        )
        for period, original_name, covering_name, reason in rows
    ]


@router.post("/coverage/reassign")
def reassign_coverage(
    data: schemas.CoverageReassign,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
):
    """Hands a period to a teacher chosen by an admin, if they are free."""
    store = ScheduleStore(db)
    period = db.get(models.ScheduledPeriod, data.period_id)
    if not period:
        raise HTTPException(status_code=404, detail="Schedule not found.")
    new_teacher = store.get_teacher(data.teacher_id)
    if not new_teacher:
        raise HTTPException(status_code=404, detail="Teacher not found.")

    target_date = data.absence_date or date.today()
    if models.weekday_name(target_date) != period.day:
        raise HTTPException(
            status_code=400,
            detail=f"{target_date.isoformat()} is a {models.weekday_name(target_date)}, the period is on {period.day}.",
        )

    period_id, class_name = period.id, period.class_name
    time_range = f"{period.period_start}-{period.period_end}"
    teacher_id, teacher_name, teacher_email = new_teacher.id, new_teacher.name, new_teacher.email

    # Same lock as the automatic engine, so the check and the write see one state
    with weekday_lock(period.day):
        candidates = find_free_candidates(
            store, period.teacher_id, period.day, period.period_start, period.period_end, target_date,
            ignore_period_id=period_id,
        )
        if teacher_id not in {c.teacher_id for c in candidates}:
            raise HTTPException(status_code=400, detail="Teacher is not available at this time.")

        absence = store.get_absence(period.teacher_id, target_date)
        store.update_period_coverage(period_id, teacher_id, absence.id if absence else None)
    logger.info("Period %s reassigned to teacher %s", period_id, teacher_id)

    create_notification(
        db, teacher_id, "Coverage Assignment", f"You have been assigned to cover {class_name} ({time_range})", "warning"
    )
    background_tasks.add_task(
        deliver_coverage_email, teacher_email, teacher_name, class_name, time_range, target_date.isoformat()
    )
    return {"message": "Coverage reassigned successfully", "period_id": period_id, "covered_by": teacher_id}


@router.get("/workload", response_model=List[schemas.TeacherWorkload])
def get_teacher_workload(db: Session = Depends(get_db)):
    """Active teachers sorted by how many periods they currently cover."""
    coverage_count = func.count(models.ScheduledPeriod.id)
    rows = (
        db.query(models.Teacher.id, models.Teacher.name, models.Teacher.subject, coverage_count)
        .outerjoin(models.ScheduledPeriod, models.ScheduledPeriod.covered_by == models.Teacher.id)
        .filter(models.Teacher.status == "active", models.Teacher.role == "teacher")
        .group_by(models.Teacher.id, models.Teacher.name, models.Teacher.subject)
        .order_by(coverage_count, models.Teacher.id)
        .all()
    )
    return [
        schemas.TeacherWorkload(id=t_id, name=name, subject=subject, coverage_count=count)
        for t_id, name, subject, count in rows
    ]
