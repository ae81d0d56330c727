import os
import sys
import unittest
from datetime import datetime, timedelta
from pathlib import Path


os.environ.setdefault("INVENTORY_DB_URL", "sqlite+pysqlite:///:memory:")

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from support import InventoryTestCase

from services.activity_service import (
    RECENT_ACTIVITY_LIMIT,
    RECENT_PER_SOURCE,
    get_recent_activity,
    list_device_assignments,
    list_license_assignments,
    list_phone_assignments,
    serialize_device_assignment,
)


class RecentActivityTests(InventoryTestCase):
    def setUp(self):
        super().setUp()
        self.employee = self.add_employee()
        self.base = datetime(2026, 3, 1, 9, 0, 0)

    def _at(self, minutes):
        return self.base + timedelta(minutes=minutes)

    def test_empty_store_returns_empty_feed(self):
        self.assertEqual(get_recent_activity(self.db), {"activities": [], "total": 0})

    def test_company_feed_is_capped_and_counts_merged_size(self):
        device = self.add_device()
        license = self.add_license(max_users=50)
        contract = self.add_phone_contract()
        minute = 0
        for _ in range(10):
            minute += 1
            self.add_device_assignment(device, self.employee, status="returned", created_at=self._at(minute))
        for _ in range(10):
            minute += 1
            self.add_license_assignment(license, self.employee, status="revoked", created_at=self._at(minute))
        for _ in range(5):
            minute += 1
            self.add_phone_assignment(contract, self.employee, status="returned", created_at=self._at(minute))

        other_company = self.add_company("OTHER")
        other_device = self.add_device("Other laptop", company=other_company)
        for offset in range(5):
            self.add_device_assignment(
                other_device, self.employee, status="returned", created_at=self._at(100 + offset)
            )

        feed = get_recent_activity(self.db, self.company.CompanyID)

        self.assertEqual(len(feed["activities"]), RECENT_ACTIVITY_LIMIT)
        self.assertEqual(feed["total"], 25)
        timestamps = [entry["timestamp"] for entry in feed["activities"]]
        self.assertEqual(timestamps, sorted(timestamps, reverse=True))
        self.assertEqual(len(set(timestamps)), len(timestamps))
        self.assertNotIn(other_device.DeviceID, [entry["item"]["id"] for entry in feed["activities"]])

    def test_each_source_contributes_at_most_fifteen(self):
        device = self.add_device()
        for minute in range(20):
            self.add_device_assignment(device, self.employee, status="returned", created_at=self._at(minute))

        feed = get_recent_activity(self.db)

        self.assertEqual(feed["total"], RECENT_PER_SOURCE)
        self.assertEqual(feed["activities"][0]["timestamp"], self._at(19))

    def test_actions_follow_assignment_status(self):
        laptop = self.add_device()
        lost_laptop = self.add_device("Lost laptop")
        license = self.add_license(max_users=5)
        contract = self.add_phone_contract()
        self.add_device_assignment(laptop, self.employee, created_at=self._at(1))
        self.add_device_assignment(
            lost_laptop, self.employee, status="lost", created_at=self._at(2), ReturnDate=self._at(3)
        )
        self.add_license_assignment(license, self.employee, status="revoked", created_at=self._at(4), RevokedDate=self._at(5))
        self.add_phone_assignment(contract, self.employee, status="returned", created_at=self._at(6), ReturnDate=self._at(7))

        entries = {entry["item"]["id"]: entry for entry in get_recent_activity(self.db)["activities"]}

        self.assertEqual(entries[laptop.DeviceID]["action"], "assigned")
        self.assertNotIn("returnedDate", entries[laptop.DeviceID])
        self.assertEqual(entries[lost_laptop.DeviceID]["action"], "revoked")
        self.assertEqual(entries[license.LicenseID]["action"], "revoked")
        self.assertEqual(entries[license.LicenseID]["returnedDate"], self._at(5))
        self.assertEqual(entries[license.LicenseID]["item"]["type"], "Software License")
        phone_entry = entries[contract.PhoneContractID]
        self.assertEqual(phone_entry["action"], "returned")
        self.assertEqual(phone_entry["type"], "phone")
        self.assertEqual(phone_entry["item"]["name"], "Telekom - +49 151 0000001")
        self.assertEqual(phone_entry["employee"]["id"], self.employee.EmployeeID)


class AssignmentListingTests(InventoryTestCase):
    def setUp(self):
        super().setUp()
        self.employee = self.add_employee()

    def test_device_listing_is_newest_first_and_company_scoped(self):
        first = self.add_device("First")
        second = self.add_device("Second")
        other_company = self.add_company("OTHER")
        foreign = self.add_device("Foreign", company=other_company)
        older = self.add_device_assignment(first, self.employee, status="returned", created_at=datetime(2026, 1, 1))
        newer = self.add_device_assignment(second, self.employee, created_at=datetime(2026, 2, 1))
        self.add_device_assignment(foreign, self.employee, created_at=datetime(2026, 3, 1))

        rows = list_device_assignments(self.db, self.company.CompanyID)

        self.assertEqual([row.AssignmentID for row in rows], [newer.AssignmentID, older.AssignmentID])
        payload = serialize_device_assignment(rows[0], include_relations=True)
        self.assertEqual(payload["device"]["name"], "Second")
        self.assertEqual(payload["employee"]["email"], "ada.lovelace@example.com")

    def test_license_and_phone_listings(self):
        license = self.add_license()
        contract = self.add_phone_contract()
        self.add_license_assignment(license, self.employee)
        self.add_phone_assignment(contract, self.employee)

        self.assertEqual(len(list_license_assignments(self.db, self.company.CompanyID)), 1)
        self.assertEqual(len(list_phone_assignments(self.db)), 1)
        self.assertEqual(list_phone_assignments(self.db, "another-company"), [])


if __name__ == "__main__":
    unittest.main()
