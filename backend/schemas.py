import re
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from models import WEEKDAYS

TIME_PATTERN = re.compile(r"^(\d{1,2})[:.](\d{2})(?::\d{2})?$")


def normalize_time(value: str) -> str:
    """Accepts '9:00', '09.00' or '09:00:00' and returns zero-padded 'HH:MM'."""
    match = TIME_PATTERN.match(str(value).strip())
    if not match:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    return f"{hours:02d}:{minutes:02d}"


# --- 1. Teacher Schemas ---

class TeacherBase(BaseModel):
    """Base schema for teacher data (used for creation/update)."""
    name: str = Field(..., min_length=2)
    email: EmailStr
    subject: Optional[str] = None
    department: Optional[str] = None
    phone: Optional[str] = None
    role: Literal["teacher", "admin"] = "teacher"

    @field_validator("subject", "department", "phone", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        # Empty strings from the admin form mean "not set"
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

class TeacherCreate(TeacherBase):
    """Schema for creating a new teacher."""
    pass

class TeacherStatusUpdate(BaseModel):
    status: Literal["active", "inactive"]

class Teacher(TeacherBase):
    """Schema for reading teacher data (includes DB-generated fields)."""
    id: int
    status: str

    # Configuration for SQLAlchemy ORM compatibility
    model_config = {
        "from_attributes": True
    }

class TeacherWorkload(BaseModel):
    id: int
    name: str
    subject: Optional[str] = None
    coverage_count: int

# --- 2. Timetable Schemas ---

class ScheduledPeriodCreate(BaseModel):
    """A single weekly timetable slot for one teacher."""
    day: str
    period_start: str
    period_end: str
    class_name: str = Field(..., min_length=1)
    subject: Optional[str] = None
    room: Optional[str] = None

    @field_validator("day")
    @classmethod
    def canonical_day(cls, value: str) -> str:
        day = value.strip().capitalize()
        if day not in WEEKDAYS:
            raise ValueError(f"day must be one of {', '.join(WEEKDAYS)}")
        return day

    @field_validator("period_start", "period_end")
    @classmethod
    def valid_time(cls, value: str) -> str:
        return normalize_time(value)

    @model_validator(mode="after")
    def start_before_end(self):
        if self.period_start >= self.period_end:
            raise ValueError("period_start must be earlier than period_end")
        return self

class ScheduledPeriod(BaseModel):
    """Schema for reading a timetable slot from the database."""
    id: int
    teacher_id: int
    day: str
    period_start: str
    period_end: str
    class_name: str
    subject: Optional[str] = None
    room: Optional[str] = None
    covered_by: Optional[int] = None
    is_covered: bool

    model_config = {
        "from_attributes": True
    }

# --- 3. Absence Schemas (Core Logic Input) ---

class AbsenceCreate(BaseModel):
    """Marks a teacher absent for a date; the date defaults to today."""
    teacher_id: int = Field(..., gt=0)
    absence_date: Optional[date] = None
    reason: Optional[str] = None

class AbsenceRecord(BaseModel):
    """Schema for reading an absence record from the database."""
    id: int
    teacher_id: int
    absent_date: date
    reason: Optional[str] = None
    created_at: Optional[datetime] = None
    teacher_name: Optional[str] = None

    model_config = {
        "from_attributes": True
    }

class CoverageAssignment(BaseModel):
    period_id: int
    class_name: str
    period: str
    subject: Optional[str] = None
    substitute_id: Optional[int] = None
    substitute_name: str = "Not Found"
    score: Optional[int] = None

class AbsenceResult(BaseModel):
    message: str
    absence_id: int
    teacher_name: str
    absence_date: date
    coverage_assigned: int
    periods_total: int
    assignments: List[CoverageAssignment] = []
    coverage_error: Optional[str] = None

class CoverageReassign(BaseModel):
    period_id: int = Field(..., gt=0)
    teacher_id: int = Field(..., gt=0)
    absence_date: Optional[date] = None

class CoverageRow(BaseModel):
    """A covered period with the names of both teachers involved."""
    period_id: int
    day: str
    period_start: str
    period_end: str
    class_name: str
    subject: Optional[str] = None
    room: Optional[str] = None
    original_teacher: str
    covering_teacher: Optional[str] = None
    absence_reason: Optional[str] = None

# --- 4. Notification Schemas ---

class Notification(BaseModel):
    id: int
    teacher_id: int
    title: str
    message: str
    severity: str
    is_read: bool
    created_at: datetime

    model_config = {
        "from_attributes": True
    }
