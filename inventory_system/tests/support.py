import os
import sys
import unittest
from datetime import datetime
from pathlib import Path

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


os.environ.setdefault("INVENTORY_DB_URL", "sqlite+pysqlite:///:memory:")

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from db.session import init_schema
from models.inventory_models import (
    AssignmentStatus,
    Company,
    Device,
    DeviceAssignment,
    Employee,
    License,
    LicenseAssignment,
    PhoneAssignment,
    PhoneContract,
)


def build_engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_schema(bind=engine)
    return engine


class InventoryTestCase(unittest.TestCase):
    """Fresh in-memory database per test, with one company already seeded."""

    def setUp(self):
        self.engine = build_engine()
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            future=True,
        )
        self.db = self.SessionLocal()
        self.company = self.add_company("ACME")

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def _save(self, row):
        self.db.add(row)
        self.db.commit()
        return row

    def add_company(self, code, name=None):
        return self._save(Company(Name=name or f"{code} Corp", Code=code))

    def add_employee(self, first_name="Ada", last_name="Lovelace", company=None, **fields):
        company = company or self.company
        return self._save(
            Employee(
                CompanyID=company.CompanyID,
                FirstName=first_name,
                LastName=last_name,
                Email=f"{first_name.lower()}.{last_name.lower()}@example.com",
                **fields,
            )
        )

    def add_device(self, name="ThinkPad T14", device_type="laptop", company=None, **fields):
        company = company or self.company
        return self._save(Device(CompanyID=company.CompanyID, Name=name, Type=device_type, **fields))

    def add_license(self, name="Office 365", max_users=2, company=None, **fields):
        company = company or self.company
        return self._save(License(CompanyID=company.CompanyID, Name=name, MaxUsers=max_users, **fields))

    def add_phone_contract(self, number="+49 151 0000001", carrier="Telekom", company=None, **fields):
        company = company or self.company
        return self._save(
            PhoneContract(CompanyID=company.CompanyID, PhoneNumber=number, Carrier=carrier, **fields)
        )

    def add_device_assignment(self, device, employee, status="active", created_at=None, **fields):
        created_at = created_at or datetime.now()
        return self._save(
            DeviceAssignment(
                DeviceID=device.DeviceID,
                EmployeeID=employee.EmployeeID,
                AssignedBy="seed",
                AssignedDate=created_at,
                CreatedAt=created_at,
                Status=status,
                **fields,
            )
        )

    def add_license_assignment(self, license, employee, status="active", created_at=None, **fields):
        created_at = created_at or datetime.now()
        return self._save(
            LicenseAssignment(
                LicenseID=license.LicenseID,
                EmployeeID=employee.EmployeeID,
                AssignedBy="seed",
                AssignedDate=created_at,
                CreatedAt=created_at,
                Status=status,
                **fields,
            )
        )

    def add_phone_assignment(self, contract, employee, status="active", created_at=None, **fields):
        created_at = created_at or datetime.now()
        return self._save(
            PhoneAssignment(
                PhoneContractID=contract.PhoneContractID,
                EmployeeID=employee.EmployeeID,
                AssignedBy="seed",
                AssignedDate=created_at,
                CreatedAt=created_at,
                Status=status,
                **fields,
            )
        )

    def fresh(self, model, key):
        """Read a row through a separate session, bypassing this test's identity map."""
        with self.SessionLocal() as other:
            return other.get(model, key)

    def count_active(self, model, column, key):
        with self.SessionLocal() as other:
            return other.execute(
                select(func.count()).select_from(model).where(
                    column == key, model.Status == AssignmentStatus.ACTIVE.value
                )
            ).scalar_one()
