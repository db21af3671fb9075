from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from database import Base
from datetime import datetime

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")

TEACHER_STATUSES = ("active", "inactive")
TEACHER_ROLES = ("teacher", "admin")
NOTIFICATION_SEVERITIES = ("info", "success", "warning", "error")


def weekday_name(value) -> str:
    """Canonical weekday label for a date, independent of the process locale."""
    return WEEKDAYS[value.weekday()]


# --- 1. Teacher Model ---
class Teacher(Base):
    """Staff member who may teach periods and cover for absent colleagues."""
    __tablename__ = "teachers"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    subject = Column(String, nullable=True)
    department = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    status = Column(String, default="active", nullable=False)  # 'active' or 'inactive'
    role = Column(String, default="teacher", nullable=False)   # 'teacher' or 'admin'

    # Relationships
    periods = relationship(
        "ScheduledPeriod", back_populates="teacher", foreign_keys="[ScheduledPeriod.teacher_id]"
    )
    absences = relationship("AbsenceRecord", back_populates="teacher")
    notifications = relationship("Notification", back_populates="teacher")


# --- 2. Weekly Timetable Model ---
class ScheduledPeriod(Base):
    """One teaching period in the weekly timetable, plus who is covering it."""
    __tablename__ = "teacher_schedule"

    id = Column(Integer, primary_key=True, index=True)
    teacher_id = Column(Integer, ForeignKey("teachers.id"), nullable=False, index=True)
    day = Column(String, nullable=False, index=True)   # e.g., "Monday"
    period_start = Column(String, nullable=False)      # e.g., "08:30"
    period_end = Column(String, nullable=False)        # e.g., "09:10"
    class_name = Column(String, nullable=False)        # e.g., "2A"
    subject = Column(String, nullable=True)
    room = Column(String, nullable=True)

    covered_by = Column(Integer, ForeignKey("teachers.id"), nullable=True, index=True)
    is_covered = Column(Boolean, default=False, nullable=False)
    # Absence whose coverage run (or manual reassignment) filled this period
    assigned_by_absence_id = Column(
        Integer, ForeignKey("absent_teachers.id", ondelete="SET NULL"), nullable=True
    )

    # Relationships
    teacher = relationship("Teacher", back_populates="periods", foreign_keys=[teacher_id])
    covering_teacher = relationship("Teacher", foreign_keys=[covered_by])


# --- 3. Absence Model ---
class AbsenceRecord(Base):
    """A teacher marked absent for one calendar date."""
    __tablename__ = "absent_teachers"
    __table_args__ = (UniqueConstraint("teacher_id", "absent_date", name="uq_absence_teacher_date"),)

    id = Column(Integer, primary_key=True, index=True)
    teacher_id = Column(Integer, ForeignKey("teachers.id"), nullable=False, index=True)
    absent_date = Column(Date, nullable=False, index=True)
    reason = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationship
    teacher = relationship("Teacher", back_populates="absences")


# --- 4. Notification Model ---
class Notification(Base):
    """In-app message for a teacher (coverage assigned, absence marked, ...)."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    teacher_id = Column(Integer, ForeignKey("teachers.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    message = Column(String, nullable=False)
    severity = Column(String, default="info", nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationship
    teacher = relationship("Teacher", back_populates="notifications")
