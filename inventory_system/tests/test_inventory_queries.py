import os
import sys
import unittest
from datetime import date, datetime, timedelta
from pathlib import Path


os.environ.setdefault("INVENTORY_DB_URL", "sqlite+pysqlite:///:memory:")

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from support import InventoryTestCase

from services import dashboard_service, inventory_service


def _names(rows):
    return [row.Name for row in rows]


class DeviceListFilterTests(InventoryTestCase):
    def setUp(self):
        super().setUp()
        self.employee = self.add_employee()
        self.laptop = self.add_device(Brand="Lenovo", Model="T14", SerialNumber="SN-100", Condition="excellent")
        self.phone = self.add_device("iPhone 15", "phone", Brand="Apple", Status="maintenance", Condition="fair")
        self.monitor = self.add_device("U2720Q", "monitor", Brand="Dell", Condition="good")
        self.add_device("Foreign laptop", company=self.add_company("OTHER"))

    def _list(self, **filters):
        return _names(inventory_service.list_devices(self.db, self.company.CompanyID, **filters))

    def test_search_covers_name_brand_model_and_serial(self):
        self.assertEqual(self._list(search="lenovo"), ["ThinkPad T14"])
        self.assertEqual(self._list(search="sn-1"), ["ThinkPad T14"])
        self.assertEqual(self._list(search="IPHONE"), ["iPhone 15"])
        self.assertEqual(self._list(search="dell"), ["U2720Q"])

    def test_multi_value_filters(self):
        self.assertEqual(self._list(types=["laptop", "phone"]), ["ThinkPad T14", "iPhone 15"])
        self.assertEqual(self._list(statuses=["maintenance"]), ["iPhone 15"])
        self.assertEqual(self._list(conditions=["good", "fair"]), ["U2720Q", "iPhone 15"])
        self.assertEqual(self._list(types=["laptop"], conditions=["fair"]), [])

    def test_assigned_to_only_counts_active_assignments(self):
        self.add_device_assignment(self.laptop, self.employee)
        self.add_device_assignment(self.monitor, self.employee, status="returned")

        self.assertEqual(self._list(assigned_to=self.employee.EmployeeID), ["ThinkPad T14"])

    def test_company_scope_and_soft_delete(self):
        self.monitor.mark_deleted()
        self.db.commit()

        self.assertEqual(self._list(), ["ThinkPad T14", "iPhone 15"])
        self.assertEqual(len(inventory_service.list_devices(self.db)), 3)


class DeviceHistoryTests(InventoryTestCase):
    def test_unknown_device_has_no_history(self):
        self.assertIsNone(inventory_service.get_device_history(self.db, "missing"))

    def test_history_lists_every_assignment_newest_first(self):
        device = self.add_device()
        ada = self.add_employee()
        grace = self.add_employee("Grace", "Hopper")
        start = datetime.now() - timedelta(days=10)
        first = self.add_device_assignment(device, ada, status="returned", created_at=start)
        second = self.add_device_assignment(device, grace, created_at=start + timedelta(days=5))
        self.add_device_assignment(self.add_device("Other"), ada)

        history = inventory_service.get_device_history(self.db, device.DeviceID)

        self.assertEqual([item.AssignmentID for item in history], [second.AssignmentID, first.AssignmentID])
        self.assertEqual([item.Employee.FirstName for item in history], ["Grace", "Ada"])

    def test_fresh_device_has_empty_history(self):
        self.assertEqual(inventory_service.get_device_history(self.db, self.add_device().DeviceID), [])


class AvailableListingTests(InventoryTestCase):
    def test_available_devices_newest_first(self):
        base = datetime.now() - timedelta(days=3)
        self.add_device("Old laptop", CreatedAt=base)
        self.add_device("New laptop", CreatedAt=base + timedelta(days=2))
        self.add_device("Spare phone", "phone", CreatedAt=base + timedelta(days=1))
        self.add_device("Busy laptop", Status="assigned")
        retired = self.add_device("Gone laptop")
        retired.mark_deleted()
        self.db.commit()

        listed = inventory_service.list_available_devices(self.db, self.company.CompanyID)
        self.assertEqual(_names(listed), ["New laptop", "Spare phone", "Old laptop"])
        self.assertEqual(
            _names(inventory_service.list_available_devices(self.db, self.company.CompanyID, "laptop")),
            ["New laptop", "Old laptop"],
        )
        self.assertEqual(_names(inventory_service.list_available_devices(self.db, limit=1)), ["New laptop"])

    def test_available_licenses_use_counted_seats(self):
        employee = self.add_employee()
        open_license = self.add_license("Figma", max_users=3, CurrentUsers=3)
        self.add_license_assignment(open_license, employee)
        full = self.add_license("Slack", max_users=1)
        self.add_license_assignment(full, employee)
        self.add_license("Paused", max_users=5, Status="suspended")

        listed = inventory_service.list_available_licenses(self.db, self.company.CompanyID)

        self.assertEqual([item["name"] for item in listed], ["Figma"])
        self.assertEqual(listed[0]["availableSeats"], 2)
        self.assertEqual(listed[0]["totalSeats"], 3)
        self.assertEqual(listed[0]["currentUsers"], 1)

    def test_available_phone_contracts_exclude_held_ones(self):
        employee = self.add_employee()
        free = self.add_phone_contract("+49 151 0000001")
        self.add_phone_contract("+49 151 0000002", Status="assigned")
        drifted = self.add_phone_contract("+49 151 0000003")
        self.add_phone_assignment(drifted, employee)
        self.add_phone_contract("+49 151 0000004", Status="suspended")

        listed = inventory_service.list_available_phone_contracts(self.db, self.company.CompanyID)

        self.assertEqual([contract.PhoneContractID for contract in listed], [free.PhoneContractID])


class ResourceFilterTests(InventoryTestCase):
    def test_employee_filters(self):
        self.add_employee(Department="IT", EmployeeNumber="E-7")
        self.add_employee("Grace", "Hopper", Department="Research", Status="inactive")

        def names(**filters):
            rows = inventory_service.list_employees(self.db, self.company.CompanyID, **filters)
            return [row.FirstName for row in rows]

        self.assertEqual(names(search="e-7"), ["Ada"])
        self.assertEqual(names(search="hopper"), ["Grace"])
        self.assertEqual(names(departments=["Research"]), ["Grace"])
        self.assertEqual(names(statuses=["active"]), ["Ada"])

    def test_license_filters(self):
        today = date.today()
        self.add_license("Office 365", Vendor="Microsoft", ExpiryDate=today + timedelta(days=10))
        self.add_license("Photoshop", Vendor="Adobe", Type="subscription", LicenseKey="ADOBE-KEY")
        self.add_license("Visio", Vendor="Microsoft", Status="expired", ExpiryDate=today - timedelta(days=1))

        def names(**filters):
            return [row["name"] for row in inventory_service.list_licenses(self.db, self.company.CompanyID, **filters)]

        self.assertEqual(names(search="adobe-k"), ["Photoshop"])
        self.assertEqual(names(vendor="Microsoft"), ["Office 365", "Visio"])
        self.assertEqual(names(types=["subscription"]), ["Photoshop"])
        self.assertEqual(names(statuses=["active"]), ["Office 365", "Photoshop"])
        self.assertEqual(names(expiring_before=today + timedelta(days=5)), ["Visio"])

    def test_phone_contract_filters(self):
        self.add_phone_contract("+49 151 0000001", Plan="Business L")
        self.add_phone_contract("+49 160 0000002", carrier="Vodafone", Status="suspended")

        def numbers(**filters):
            rows = inventory_service.list_phone_contracts(self.db, self.company.CompanyID, **filters)
            return [row.PhoneNumber for row in rows]

        self.assertEqual(numbers(search="business"), ["+49 151 0000001"])
        self.assertEqual(numbers(carrier="Vodafone"), ["+49 160 0000002"])
        self.assertEqual(numbers(statuses=["active"]), ["+49 151 0000001"])


class DashboardStatsTests(InventoryTestCase):
    def test_stats_count_live_rows_and_counted_seats(self):
        today = date.today()
        ada = self.add_employee()
        self.add_employee("Grace", "Hopper", Status="inactive")
        self.add_device(Status="assigned")
        self.add_device("U2720Q", "monitor")
        self.add_device("iPhone 15", "phone", Status="maintenance")
        gone = self.add_device("Gone")
        gone.mark_deleted()
        self.db.commit()
        office = self.add_license("Office 365", max_users=4, ExpiryDate=today + timedelta(days=10))
        self.add_license_assignment(office, ada)
        self.add_license("Photoshop", max_users=2, Status="suspended")
        self.add_phone_contract("+49 151 0000001")
        self.add_phone_contract("+49 151 0000002", Status="assigned")

        stats = dashboard_service.get_dashboard_stats(self.db, self.company.CompanyID, today)

        self.assertEqual(
            stats["devices"],
            {"total": 3, "available": 1, "assigned": 1, "maintenance": 1, "utilization": 33},
        )
        self.assertEqual(
            stats["licenses"],
            {
                "total": 2,
                "active": 1,
                "totalSeats": 6,
                "usedSeats": 1,
                "availableSeats": 5,
                "utilization": 17,
                "expiringSoon": 1,
            },
        )
        self.assertEqual(stats["employees"], {"total": 2, "active": 1})
        self.assertEqual(stats["phoneContracts"], {"total": 2, "active": 1})

    def test_empty_company_has_zero_utilization(self):
        stats = dashboard_service.get_dashboard_stats(self.db, self.company.CompanyID)
        self.assertEqual(stats["devices"]["utilization"], 0)
        self.assertEqual(stats["licenses"]["utilization"], 0)

    def test_resource_utilization_groups_by_type_and_vendor(self):
        ada = self.add_employee()
        self.add_device(Status="assigned")
        self.add_device("ThinkPad X1")
        self.add_device("iPhone 15", "phone")
        office = self.add_license("Office 365", max_users=4, Vendor="Microsoft")
        self.add_license_assignment(office, ada)
        self.add_license("Photoshop", max_users=2, Vendor="Adobe")

        usage = dashboard_service.get_resource_utilization(self.db, self.company.CompanyID)

        self.assertEqual(
            usage["devicesByType"],
            [
                {"type": "laptop", "total": 2, "assigned": 1, "utilization": 50},
                {"type": "phone", "total": 1, "assigned": 0, "utilization": 0},
            ],
        )
        self.assertEqual(
            usage["licensesByVendor"],
            [
                {"vendor": "Adobe", "totalSeats": 2, "usedSeats": 0, "utilization": 0},
                {"vendor": "Microsoft", "totalSeats": 4, "usedSeats": 1, "utilization": 25},
            ],
        )


class DashboardAlertTests(InventoryTestCase):
    def setUp(self):
        super().setUp()
        self.today = date(2026, 3, 10)

    def _messages(self):
        alerts = dashboard_service.get_dashboard_alerts(self.db, self.company.CompanyID, self.today)
        return [(alert["type"], alert["message"]) for alert in alerts]

    def test_expiry_alerts_follow_days_left(self):
        self.add_license("Lapsed", Status="expired", ExpiryDate=self.today - timedelta(days=2))
        self.add_license("Today", ExpiryDate=self.today)
        self.add_license("Tomorrow", ExpiryDate=self.today + timedelta(days=1))
        self.add_license("Later", ExpiryDate=self.today + timedelta(days=20))
        self.add_license("Cancelled", Status="cancelled", ExpiryDate=self.today + timedelta(days=2))
        self.add_license("Far", ExpiryDate=self.today + timedelta(days=45))

        self.assertEqual(
            self._messages(),
            [
                ("critical", 'License "Lapsed" expired 2 days ago'),
                ("critical", 'License "Today" expires today'),
                ("critical", 'License "Tomorrow" expires in 1 day'),
                ("warning", 'License "Later" expires in 20 days'),
            ],
        )

    def test_expiry_alerts_are_capped(self):
        for offset in range(7):
            self.add_license(f"License {offset}", ExpiryDate=self.today + timedelta(days=offset + 1))

        alerts = dashboard_service.get_dashboard_alerts(self.db, self.company.CompanyID, self.today)

        self.assertEqual(len(alerts), dashboard_service.EXPIRY_ALERT_LIMIT)
        self.assertEqual(alerts[0]["entityName"], "License 0")

    def test_capacity_alerts(self):
        ada = self.add_employee()
        self.add_device(Status="assigned")
        full = self.add_license(max_users=1)
        self.add_license_assignment(full, ada)

        self.assertEqual(
            self._messages(),
            [
                ("critical", "Device utilization at 100% - consider purchasing more devices"),
                ("warning", "License utilization at 100% - additional seats may be needed"),
            ],
        )

    def test_maintenance_alert(self):
        for index in range(6):
            self.add_device(f"Broken {index}", Status="maintenance")

        self.assertEqual(self._messages(), [("info", "6 devices currently in maintenance")])


if __name__ == "__main__":
    unittest.main()
