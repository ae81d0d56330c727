from __future__ import annotations

import logging
import os
from datetime import date, datetime, time, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from models.inventory_models import (
    License,
    LicenseStatus,
    Notification,
    NotificationCategory,
    NotificationType,
)


LOGGER = logging.getLogger("inventory_system.notifications")

URGENT_EXPIRY_DAYS = 7


def expiry_warning_days() -> int:
    raw = (os.environ.get("LICENSE_EXPIRY_WARNING_DAYS") or "").strip()
    try:
        value = int(raw)
    except ValueError:
        return 30
    return value if value > 0 else 30


def queue_notification(
    db: Session,
    title: str,
    message: str,
    *,
    notification_type: str = NotificationType.INFO.value,
    category: str = NotificationCategory.SYSTEM.value,
    entity_id: str | None = None,
    entity_type: str | None = None,
    company_id: str | None = None,
) -> Notification:
    notification = Notification(
        Title=title,
        Message=message,
        Type=notification_type,
        Category=category,
        EntityID=entity_id,
        EntityType=entity_type,
        CompanyID=company_id,
        IsRead=False,
        CreatedAt=datetime.now(),
    )
    db.add(notification)
    return notification


def emit_assignment_event(
    db: Session,
    title: str,
    message: str,
    *,
    entity_id: str | None = None,
    entity_type: str | None = None,
    company_id: str | None = None,
) -> bool:
    """Record an assignment notification after the assignment itself committed.

    Never raises: a failed notification is logged and rolled back on its own.
    """
    try:
        queue_notification(
            db,
            title,
            message,
            notification_type=NotificationType.SUCCESS.value,
            category=NotificationCategory.ASSIGNMENT.value,
            entity_id=entity_id,
            entity_type=entity_type,
            company_id=company_id,
        )
        db.commit()
        return True
    except Exception:
        db.rollback()
        LOGGER.warning(
            "Notification failed event=notification_failed title=%s entity_type=%s entity_id=%s",
            title,
            entity_type,
            entity_id,
            exc_info=True,
            extra={"event": "notification_failed", "entity_type": entity_type, "entity_id": entity_id},
        )
        return False


def _already_notified(db: Session, entity_id: str, day: date) -> bool:
    start = datetime.combine(day, time.min)
    end = start + timedelta(days=1)
    existing = db.execute(
        select(Notification.NotificationID).where(
            Notification.EntityID == entity_id,
            Notification.EntityType == "license",
            Notification.Category == NotificationCategory.EXPIRY.value,
            Notification.CreatedAt >= start,
            Notification.CreatedAt < end,
        )
    ).first()
    return existing is not None


def run_license_expiry_sweep(db: Session, today: date | None = None, warning_days: int | None = None) -> dict:
    today = today or date.today()
    window = warning_days if warning_days is not None else expiry_warning_days()
    cutoff = today + timedelta(days=window)

    licenses = db.execute(
        select(License).where(
            License.live(),
            License.Status == LicenseStatus.ACTIVE.value,
            License.ExpiryDate.is_not(None),
            License.ExpiryDate <= cutoff,
        )
    ).scalars().all()

    created = 0
    expired = 0
    for license in licenses:
        days_left = (license.ExpiryDate - today).days
        if days_left < 0:
            license.Status = LicenseStatus.EXPIRED.value
            license.UpdatedAt = datetime.now()
            expired += 1

        if _already_notified(db, license.LicenseID, today):
            continue

        if days_left < 0:
            title = "License Expired"
            message = f'License "{license.Name}" has expired'
            level = NotificationType.ERROR.value
        elif days_left <= URGENT_EXPIRY_DAYS:
            title = "License Expiring Soon"
            message = f'License "{license.Name}" expires in {days_left} day(s)'
            level = NotificationType.WARNING.value
        else:
            title = "License Expiring"
            message = f'License "{license.Name}" expires in {days_left} days'
            level = NotificationType.INFO.value

        queue_notification(
            db,
            title,
            message,
            notification_type=level,
            category=NotificationCategory.EXPIRY.value,
            entity_id=license.LicenseID,
            entity_type="license",
            company_id=license.CompanyID,
        )
        created += 1

    db.commit()
    LOGGER.info("License expiry sweep event=license_expiry_sweep created=%s expired=%s window_days=%s", created, expired, window)
    return {"created": created, "expired": expired}


def list_pending_notifications(db: Session, company_id: str | None = None) -> list[Notification]:
    stmt = select(Notification).where(Notification.IsRead.is_(False))
    if company_id:
        stmt = stmt.where(Notification.CompanyID == company_id)
    return db.execute(stmt.order_by(Notification.CreatedAt.desc())).scalars().all()


def mark_notification_read(db: Session, notification_id: str) -> Notification | None:
    notification = db.get(Notification, notification_id)
    if not notification:
        return None
    if not notification.IsRead:
        notification.IsRead = True
        notification.ReadAt = datetime.now()
        db.commit()
    return notification


def serialize_notification(notification: Notification) -> dict:
    return {
        "id": notification.NotificationID,
        "title": notification.Title,
        "message": notification.Message,
        "type": notification.Type,
        "category": notification.Category,
        "entityId": notification.EntityID,
        "entityType": notification.EntityType,
        "companyId": notification.CompanyID,
        "isRead": bool(notification.IsRead),
        "createdAt": notification.CreatedAt,
        "readAt": notification.ReadAt,
    }
