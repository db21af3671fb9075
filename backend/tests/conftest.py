import os

# Must be set before the app modules read their configuration
os.environ["DATABASE_URL"] = "sqlite+pysqlite://"
os.environ["EMAIL_HOST"] = ""

from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models
from database import Base, get_db
from main import app

# 2024-09-02 is a Monday
MONDAY = date(2024, 9, 2)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def make_teacher(db):
    def _make(name, subject=None, role="teacher", status="active", email=None):
        teacher = models.Teacher(
            name=name,
            email=email or f"{name.lower().replace(' ', '')}@school.edu",
            subject=subject,
            role=role,
            status=status,
        )
        db.add(teacher)
        db.commit()
        db.refresh(teacher)
        return teacher
    return _make


@pytest.fixture()
def make_period(db):
    def _make(teacher, start, end, day="Monday", class_name="7A", subject=None, covered_by=None):
        period = models.ScheduledPeriod(
            teacher_id=teacher.id,
            day=day,
            period_start=start,
            period_end=end,
            class_name=class_name,
            subject=subject,
            covered_by=covered_by.id if covered_by is not None else None,
            is_covered=covered_by is not None,
        )
        db.add(period)
        db.commit()
        db.refresh(period)
        return period
    return _make


@pytest.fixture()
def make_absence(db):
    def _make(teacher, absent_date, reason="Sick"):
        absence = models.AbsenceRecord(teacher_id=teacher.id, absent_date=absent_date, reason=reason)
        db.add(absence)
        db.commit()
        db.refresh(absence)
        return absence
    return _make
