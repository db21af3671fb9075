from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import case
from sqlalchemy.orm import Session
from typing import List, Optional

from database import get_db
import models
import schemas
from notifications import count_unread, create_notification, get_notifications, mark_all_read, mark_notification_read

router = APIRouter(
    prefix="/teachers",
    tags=["Teacher Management"],
)

DAY_ORDER = case(
    {day: index for index, day in enumerate(models.WEEKDAYS)},
    value=models.ScheduledPeriod.day,
)


def _get_teacher_or_404(db: Session, teacher_id: int) -> models.Teacher:
    teacher = db.get(models.Teacher, teacher_id)
    if not teacher:
        raise HTTPException(status_code=404, detail="Teacher not found.")
    return teacher


@router.post("/", response_model=schemas.Teacher, status_code=status.HTTP_201_CREATED)
def create_teacher(teacher: schemas.TeacherCreate, db: Session = Depends(get_db)):
    """Creates a new teacher account."""

    # Check if email is already registered
    db_teacher = db.query(models.Teacher).filter(models.Teacher.email == teacher.email).first()
    if db_teacher:
        raise HTTPException(status_code=409, detail="Email already registered.")

    # Create the new teacher instance
    db_teacher = models.Teacher(**teacher.model_dump(), status="active")
    db.add(db_teacher)
    db.commit()
    db.refresh(db_teacher)
    return db_teacher


@router.get("/", response_model=List[schemas.Teacher])
def list_teachers(db: Session = Depends(get_db)):
    return db.query(models.Teacher).order_by(models.Teacher.id).all()


@router.get("/{teacher_id}", response_model=schemas.Teacher)
def get_teacher(teacher_id: int, db: Session = Depends(get_db)):
    return _get_teacher_or_404(db, teacher_id)


@router.patch("/{teacher_id}/status", response_model=schemas.Teacher)
def update_teacher_status(teacher_id: int, data: schemas.TeacherStatusUpdate, db: Session = Depends(get_db)):
    """Activates or deactivates a teacher; inactive teachers are never picked as substitutes."""
    teacher = _get_teacher_or_404(db, teacher_id)
    teacher.status = data.status
    db.commit()
    db.refresh(teacher)
    return teacher


@router.post("/{teacher_id}/schedule", response_model=schemas.ScheduledPeriod, status_code=status.HTTP_201_CREATED)
def add_schedule_period(teacher_id: int, period: schemas.ScheduledPeriodCreate, db: Session = Depends(get_db)):
    """Adds a weekly period, refusing any overlap with the teacher's other periods that day."""
    _get_teacher_or_404(db, teacher_id)

    conflicts = db.query(models.ScheduledPeriod).filter(
        models.ScheduledPeriod.teacher_id == teacher_id,
        models.ScheduledPeriod.day == period.day,
        models.ScheduledPeriod.period_start < period.period_end,
        models.ScheduledPeriod.period_end > period.period_start,
    ).all()
    if conflicts:
        raise HTTPException(
            status_code=409,
            detail={
                "message": "Schedule conflict detected.",
                "conflicts": [schemas.ScheduledPeriod.model_validate(c).model_dump() for c in conflicts],
            },
        )

    db_period = models.ScheduledPeriod(teacher_id=teacher_id, **period.model_dump())
    db.add(db_period)
    db.commit()
    db.refresh(db_period)

    create_notification(
        db, teacher_id, "New Schedule", f"You have been assigned to {period.class_name} on {period.day}", "info"
    )
    return db_period


@router.get("/{teacher_id}/schedule", response_model=List[schemas.ScheduledPeriod])
def get_teacher_schedule(teacher_id: int, day: Optional[str] = None, db: Session = Depends(get_db)):
    """Retrieves the weekly timetable for a teacher, or a single day of it."""
    _get_teacher_or_404(db, teacher_id)

    query = db.query(models.ScheduledPeriod).filter(models.ScheduledPeriod.teacher_id == teacher_id)
    if day:
        query = query.filter(models.ScheduledPeriod.day == day.strip().capitalize())
    return query.order_by(DAY_ORDER, models.ScheduledPeriod.period_start).all()


@router.delete("/{teacher_id}/schedule/{period_id}")
def delete_schedule_period(teacher_id: int, period_id: int, db: Session = Depends(get_db)):
    """Removes a weekly period, along with any coverage recorded on it."""
    _get_teacher_or_404(db, teacher_id)
    period = db.query(models.ScheduledPeriod).filter(
        models.ScheduledPeriod.id == period_id,
        models.ScheduledPeriod.teacher_id == teacher_id,
    ).first()
    if not period:
        raise HTTPException(status_code=404, detail="Schedule not found.")

    db.delete(period)
    db.commit()
    return {"message": "Schedule deleted successfully"}


@router.get("/{teacher_id}/notifications", response_model=List[schemas.Notification])
def get_teacher_notifications(teacher_id: int, db: Session = Depends(get_db)):
    _get_teacher_or_404(db, teacher_id)
    return get_notifications(db, teacher_id)


@router.get("/{teacher_id}/notifications/unread-count")
def get_unread_count(teacher_id: int, db: Session = Depends(get_db)):
    _get_teacher_or_404(db, teacher_id)
    return {"count": count_unread(db, teacher_id)}


@router.patch("/{teacher_id}/notifications/read-all")
def mark_all_notifications_read(teacher_id: int, db: Session = Depends(get_db)):
    _get_teacher_or_404(db, teacher_id)
    return {"message": "All notifications marked as read", "updated": mark_all_read(db, teacher_id)}


@router.patch("/{teacher_id}/notifications/{notification_id}/read", response_model=schemas.Notification)
def mark_notification_as_read(teacher_id: int, notification_id: int, db: Session = Depends(get_db)):
    _get_teacher_or_404(db, teacher_id)
    notification = mark_notification_read(db, teacher_id, notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found.")
    return notification
