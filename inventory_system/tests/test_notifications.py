import os
import sys
import unittest
from datetime import date, timedelta
from pathlib import Path

from sqlalchemy import select


os.environ.setdefault("INVENTORY_DB_URL", "sqlite+pysqlite:///:memory:")

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from support import InventoryTestCase

from models.inventory_models import License, Notification
from services.notification_service import (
    emit_assignment_event,
    expiry_warning_days,
    list_pending_notifications,
    mark_notification_read,
    queue_notification,
    run_license_expiry_sweep,
    serialize_notification,
)


class LicenseExpirySweepTests(InventoryTestCase):
    def setUp(self):
        super().setUp()
        self.today = date.today()

    def _notifications_for(self, license):
        return self.db.execute(
            select(Notification).where(Notification.EntityID == license.LicenseID)
        ).scalars().all()

    def test_levels_follow_days_left(self):
        expired = self.add_license("Expired", ExpiryDate=self.today - timedelta(days=1))
        urgent = self.add_license("Urgent", ExpiryDate=self.today + timedelta(days=3))
        upcoming = self.add_license("Upcoming", ExpiryDate=self.today + timedelta(days=20))
        distant = self.add_license("Distant", ExpiryDate=self.today + timedelta(days=90))

        result = run_license_expiry_sweep(self.db, today=self.today, warning_days=30)

        self.assertEqual(result, {"created": 3, "expired": 1})
        self.assertEqual(self.fresh(License, expired.LicenseID).Status, "expired")
        self.assertEqual([n.Type for n in self._notifications_for(expired)], ["error"])
        self.assertEqual([n.Type for n in self._notifications_for(urgent)], ["warning"])
        self.assertEqual([n.Type for n in self._notifications_for(upcoming)], ["info"])
        self.assertEqual(self._notifications_for(distant), [])
        self.assertEqual(self._notifications_for(upcoming)[0].Category, "expiry")

    def test_one_notification_per_license_per_day(self):
        self.add_license("Urgent", ExpiryDate=self.today + timedelta(days=3))

        first = run_license_expiry_sweep(self.db, today=self.today, warning_days=30)
        second = run_license_expiry_sweep(self.db, today=self.today, warning_days=30)

        self.assertEqual(first["created"], 1)
        self.assertEqual(second["created"], 0)

    def test_assignment_events_do_not_suppress_expiry_alerts(self):
        license = self.add_license("Urgent", ExpiryDate=self.today + timedelta(days=3))
        emit_assignment_event(
            self.db, "License assigned", "seat taken", entity_id=license.LicenseID, entity_type="license"
        )

        result = run_license_expiry_sweep(self.db, today=self.today, warning_days=30)

        self.assertEqual(result["created"], 1)

    def test_deleted_and_inactive_licenses_are_skipped(self):
        deleted = self.add_license("Deleted", ExpiryDate=self.today + timedelta(days=2))
        deleted.mark_deleted()
        self.db.commit()
        self.add_license("Cancelled", ExpiryDate=self.today + timedelta(days=2), Status="cancelled")
        self.add_license("No expiry")

        self.assertEqual(run_license_expiry_sweep(self.db, today=self.today), {"created": 0, "expired": 0})

    def test_window_comes_from_environment(self):
        original = os.environ.get("LICENSE_EXPIRY_WARNING_DAYS")
        os.environ["LICENSE_EXPIRY_WARNING_DAYS"] = "10"
        try:
            self.assertEqual(expiry_warning_days(), 10)
            self.add_license("Upcoming", ExpiryDate=self.today + timedelta(days=20))
            self.assertEqual(run_license_expiry_sweep(self.db, today=self.today)["created"], 0)
            os.environ["LICENSE_EXPIRY_WARNING_DAYS"] = "not-a-number"
            self.assertEqual(expiry_warning_days(), 30)
        finally:
            if original is None:
                os.environ.pop("LICENSE_EXPIRY_WARNING_DAYS", None)
            else:
                os.environ["LICENSE_EXPIRY_WARNING_DAYS"] = original


class NotificationInboxTests(InventoryTestCase):
    def test_pending_and_mark_read(self):
        other = self.add_company("OTHER")
        mine = queue_notification(self.db, "Hello", "first", company_id=self.company.CompanyID)
        queue_notification(self.db, "Elsewhere", "second", company_id=other.CompanyID)
        self.db.commit()

        pending = list_pending_notifications(self.db, self.company.CompanyID)
        self.assertEqual([n.NotificationID for n in pending], [mine.NotificationID])

        read = mark_notification_read(self.db, mine.NotificationID)
        payload = serialize_notification(read)
        self.assertTrue(payload["isRead"])
        self.assertIsNotNone(payload["readAt"])
        self.assertEqual(list_pending_notifications(self.db, self.company.CompanyID), [])
        self.assertEqual(len(list_pending_notifications(self.db)), 1)

    def test_mark_read_unknown_returns_none(self):
        self.assertIsNone(mark_notification_read(self.db, "missing"))


if __name__ == "__main__":
    unittest.main()
