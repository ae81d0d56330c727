#!/usr/bin/env python3
"""Integrity checks for the inventory assignment tables."""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from services.assignment_service import AssignmentError, recompute_current_users


EXPECTED_TABLES = [
    "Companies",
    "Employees",
    "Devices",
    "Licenses",
    "PhoneContracts",
    "DeviceAssignments",
    "LicenseAssignments",
    "PhoneAssignments",
    "Notifications",
]


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _get_engine(db_url: str) -> Engine:
    return create_engine(db_url, pool_pre_ping=True, future=True)


def _scalar(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).scalar()


def _rows(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).all()


def _count_check(engine: Engine, name: str, sql: str) -> CheckResult:
    count = int(_scalar(engine, sql) or 0)
    return CheckResult(name, count == 0, f"count={count}")


def run_existence_checks(engine: Engine) -> list[CheckResult]:
    present = set(inspect(engine).get_table_names())
    return [
        CheckResult(f"table:{table}", table in present, "present" if table in present else "missing")
        for table in EXPECTED_TABLES
    ]


DRIFTED_LICENSES_SQL = """
    SELECT l.LicenseID, l.CurrentUsers, COUNT(la.AssignmentID) AS ActiveCount
    FROM Licenses l
    LEFT JOIN LicenseAssignments la
      ON la.LicenseID = l.LicenseID AND la.Status = 'active'
    WHERE l.RecordState = 'Active'
    GROUP BY l.LicenseID, l.CurrentUsers
    HAVING l.CurrentUsers <> COUNT(la.AssignmentID)
"""


def run_integrity_checks(engine: Engine) -> list[CheckResult]:
    present = set(inspect(engine).get_table_names())
    checks: list[CheckResult] = []

    if {"Devices", "DeviceAssignments"} <= present:
        checks.append(
            _count_check(
                engine,
                "devices:multiple_active_assignments",
                """
                SELECT COUNT(*) FROM (
                    SELECT DeviceID FROM DeviceAssignments
                    WHERE Status = 'active'
                    GROUP BY DeviceID
                    HAVING COUNT(*) > 1
                ) d
                """,
            )
        )
        checks.append(
            _count_check(
                engine,
                "devices:assigned_without_active_assignment",
                """
                SELECT COUNT(*) FROM Devices d
                WHERE d.Status = 'assigned'
                  AND NOT EXISTS (
                    SELECT 1 FROM DeviceAssignments a
                    WHERE a.DeviceID = d.DeviceID AND a.Status = 'active'
                  )
                """,
            )
        )
        checks.append(
            _count_check(
                engine,
                "deviceassignments:orphan_deviceid",
                """
                SELECT COUNT(*) FROM DeviceAssignments a
                LEFT JOIN Devices d ON d.DeviceID = a.DeviceID
                WHERE d.DeviceID IS NULL
                """,
            )
        )

    if {"PhoneContracts", "PhoneAssignments"} <= present:
        checks.append(
            _count_check(
                engine,
                "phonecontracts:multiple_active_assignments",
                """
                SELECT COUNT(*) FROM (
                    SELECT PhoneContractID FROM PhoneAssignments
                    WHERE Status = 'active'
                    GROUP BY PhoneContractID
                    HAVING COUNT(*) > 1
                ) p
                """,
            )
        )

    if {"Licenses", "LicenseAssignments"} <= present:
        checks.append(
            _count_check(engine, "licenses:seat_counter_drift", f"SELECT COUNT(*) FROM ({DRIFTED_LICENSES_SQL}) s")
        )
        checks.append(
            _count_check(
                engine,
                "licenses:over_allocated",
                """
                SELECT COUNT(*) FROM (
                    SELECT l.LicenseID FROM Licenses l
                    JOIN LicenseAssignments la ON la.LicenseID = l.LicenseID AND la.Status = 'active'
                    GROUP BY l.LicenseID, l.MaxUsers
                    HAVING COUNT(la.AssignmentID) > l.MaxUsers
                ) o
                """,
            )
        )

    return checks


def fix_seat_counters(engine: Engine) -> list[str]:
    """Recompute CurrentUsers for every drifted license; returns the ids that were fixed."""
    drifted = [row[0] for row in _rows(engine, DRIFTED_LICENSES_SQL)]
    session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
    fixed: list[str] = []
    with session_factory() as db:
        for license_id in drifted:
            try:
                recompute_current_users(db, license_id)
            except AssignmentError as exc:
                print(f"  - {license_id}: {exc}")
                continue
            fixed.append(license_id)
    return fixed


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_row_counts(engine: Engine) -> None:
    _print_section("Row Counts")
    present = set(inspect(engine).get_table_names())
    for table in EXPECTED_TABLES:
        if table not in present:
            print(f"{table}: missing")
            continue
        count = _scalar(engine, f"SELECT COUNT(*) FROM {table}")
        print(f"{table}: {int(count or 0)}")


def main() -> int:
    parser = argparse.ArgumentParser(description="Inventory DB integrity report")
    parser.add_argument("--db-url", default=os.environ.get("INVENTORY_DB_URL", ""))
    parser.add_argument("--fix-seats", action="store_true", help="Recompute drifted license seat counters.")
    args = parser.parse_args()

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("INVENTORY_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    try:
        engine = _get_engine(db_url)
        _scalar(engine, "SELECT 1")
    except Exception as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    _print_results("Table Existence", run_existence_checks(engine))
    results = run_integrity_checks(engine)
    _print_results("Integrity Checks", results)
    _print_row_counts(engine)

    if args.fix_seats:
        _print_section("Seat Counter Repair")
        fixed = fix_seat_counters(engine)
        print(f"fixed={len(fixed)}")
        results = run_integrity_checks(engine)

    return 0 if all(result.ok for result in results) else 1


if __name__ == "__main__":
    sys.exit(main())
