import logging
from typing import Iterable, List

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

import models
from utils import send_coverage_assignment_email

logger = logging.getLogger(__name__)


def create_notification(db: Session, teacher_id: int, title: str, message: str, severity: str = "info") -> bool:
    """Stores an in-app notification. Never raises; returns False on failure."""
    if severity not in models.NOTIFICATION_SEVERITIES:
        severity = "info"
    try:
        db.add(models.Notification(teacher_id=teacher_id, title=title, message=message, severity=severity))
        db.commit()
        return True
    except Exception:
        logger.warning("Failed to create notification %r for teacher %s", title, teacher_id, exc_info=True)
        db.rollback()
        return False


def get_notifications(db: Session, teacher_id: int, limit: int = 50) -> List[models.Notification]:
    return (
        db.query(models.Notification)
        .filter(models.Notification.teacher_id == teacher_id)
        .order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
        .limit(limit)
        .all()
    )


def mark_notification_read(db: Session, teacher_id: int, notification_id: int) -> models.Notification | None:
    notification = (
        db.query(models.Notification)
        .filter(models.Notification.id == notification_id, models.Notification.teacher_id == teacher_id)
        .first()
    )
    if notification is None:
        return None
    notification.is_read = True
    db.commit()
    db.refresh(notification)
    return notification


def mark_all_read(db: Session, teacher_id: int) -> int:
    updated = (
        db.query(models.Notification)
        .filter(models.Notification.teacher_id == teacher_id, models.Notification.is_read.is_(False))
        .update({models.Notification.is_read: True}, synchronize_session="fetch")
    )
    db.commit()
    return updated


def count_unread(db: Session, teacher_id: int) -> int:
    return (
        db.query(models.Notification)
        .filter(models.Notification.teacher_id == teacher_id, models.Notification.is_read.is_(False))
        .count()
    )


def deliver_coverage_email(email: str, name: str, class_name: str, time_range: str, date: str) -> bool:
    """Sends one coverage email; a failure is logged and never propagates."""
    try:
        return send_coverage_assignment_email(email, name, class_name, time_range, date)
    except Exception:
        logger.warning("Coverage email to %s failed", email, exc_info=True)
        return False


def dispatch_coverage_effects(db: Session, effects: Iterable, background_tasks: BackgroundTasks | None = None) -> int:
    """Notifies each substitute in-app and queues their email.

    Emails go through `background_tasks` when given, otherwise they are sent
    inline. Returns how many notifications were stored.
    """
    stored = 0
    for effect in effects:
        if create_notification(db, effect.teacher_id, effect.title, effect.message, effect.severity):
            stored += 1
        if not effect.email:
            logger.info("No email on file for teacher %s, skipping coverage email", effect.teacher_id)
            continue
        args = (
            effect.email,
            effect.teacher_name,
            effect.class_name,
            effect.time_range,
            effect.absence_date.isoformat(),
        )
        if background_tasks is not None:
            background_tasks.add_task(deliver_coverage_email, *args)
        else:
            deliver_coverage_email(*args)
    return stored
