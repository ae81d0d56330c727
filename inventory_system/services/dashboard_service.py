from __future__ import annotations

from datetime import date, datetime, timedelta

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from models.inventory_models import (
    ContractStatus,
    Device,
    DeviceStatus,
    Employee,
    EmployeeStatus,
    License,
    LicenseStatus,
    PhoneContract,
)
from services.inventory_service import active_counts_by_license, live_query
from services.notification_service import URGENT_EXPIRY_DAYS, expiry_warning_days


EXPIRY_ALERT_LIMIT = 5
DEVICE_UTILIZATION_CRITICAL = 90
LICENSE_UTILIZATION_WARNING = 85
MAINTENANCE_INFO_THRESHOLD = 5


def _percent(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return int(part * 100 / whole + 0.5)


def _count(db: Session, model, company_id: str | None, *conditions) -> int:
    stmt = live_query(model, company_id).where(*conditions)
    return db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()


def _plural(count: int) -> str:
    return "" if count == 1 else "s"


def get_dashboard_stats(db: Session, company_id: str | None = None, today: date | None = None) -> dict:
    today = today or date.today()

    total_devices = _count(db, Device, company_id)
    available_devices = _count(db, Device, company_id, Device.Status == DeviceStatus.AVAILABLE.value)
    assigned_devices = _count(db, Device, company_id, Device.Status == DeviceStatus.ASSIGNED.value)
    maintenance_devices = _count(db, Device, company_id, Device.Status == DeviceStatus.MAINTENANCE.value)

    licenses = db.execute(live_query(License, company_id)).scalars().all()
    counts = active_counts_by_license(db, [license.LicenseID for license in licenses])
    total_seats = sum(license.MaxUsers or 0 for license in licenses)
    used_seats = sum(counts.get(license.LicenseID, 0) for license in licenses)
    expiry_cutoff = today + timedelta(days=expiry_warning_days())
    expiring_soon = sum(
        1
        for license in licenses
        if license.Status == LicenseStatus.ACTIVE.value
        and license.ExpiryDate is not None
        and license.ExpiryDate < expiry_cutoff
    )

    return {
        "devices": {
            "total": total_devices,
            "available": available_devices,
            "assigned": assigned_devices,
            "maintenance": maintenance_devices,
            "utilization": _percent(assigned_devices, total_devices),
        },
        "licenses": {
            "total": len(licenses),
            "active": sum(1 for license in licenses if license.Status == LicenseStatus.ACTIVE.value),
            "totalSeats": total_seats,
            "usedSeats": used_seats,
            "availableSeats": max(0, total_seats - used_seats),
            "utilization": _percent(used_seats, total_seats),
            "expiringSoon": expiring_soon,
        },
        "employees": {
            "total": _count(db, Employee, company_id),
            "active": _count(db, Employee, company_id, Employee.Status == EmployeeStatus.ACTIVE.value),
        },
        "phoneContracts": {
            "total": _count(db, PhoneContract, company_id),
            "active": _count(db, PhoneContract, company_id, PhoneContract.Status == ContractStatus.ACTIVE.value),
        },
    }


def get_resource_utilization(db: Session, company_id: str | None = None) -> dict:
    stmt = select(
        Device.Type,
        func.count(Device.DeviceID),
        func.sum(case((Device.Status == DeviceStatus.ASSIGNED.value, 1), else_=0)),
    ).where(Device.live())
    if company_id:
        stmt = stmt.where(Device.CompanyID == company_id)
    device_rows = db.execute(stmt.group_by(Device.Type).order_by(Device.Type)).all()

    licenses = db.execute(live_query(License, company_id)).scalars().all()
    counts = active_counts_by_license(db, [license.LicenseID for license in licenses])
    by_vendor: dict[str | None, list[int]] = {}
    for license in licenses:
        seats = by_vendor.setdefault(license.Vendor, [0, 0])
        seats[0] += license.MaxUsers or 0
        seats[1] += counts.get(license.LicenseID, 0)

    return {
        "devicesByType": [
            {
                "type": device_type,
                "total": int(total),
                "assigned": int(assigned or 0),
                "utilization": _percent(int(assigned or 0), int(total)),
            }
            for device_type, total, assigned in device_rows
        ],
        "licensesByVendor": [
            {
                "vendor": vendor,
                "totalSeats": total_seats,
                "usedSeats": used_seats,
                "utilization": _percent(used_seats, total_seats),
            }
            for vendor, (total_seats, used_seats) in sorted(by_vendor.items(), key=lambda item: item[0] or "")
        ],
    }


def _expiry_alert(license: License, today: date, now: datetime) -> dict:
    days_left = (license.ExpiryDate - today).days
    if days_left > 0:
        level = "critical" if days_left <= URGENT_EXPIRY_DAYS else "warning"
        message = f'License "{license.Name}" expires in {days_left} day{_plural(days_left)}'
    elif days_left == 0:
        level = "critical"
        message = f'License "{license.Name}" expires today'
    else:
        level = "critical"
        message = f'License "{license.Name}" expired {-days_left} day{_plural(-days_left)} ago'
    return {
        "type": level,
        "category": "license",
        "message": message,
        "timestamp": now,
        "entityId": license.LicenseID,
        "entityName": license.Name,
    }


def get_dashboard_alerts(db: Session, company_id: str | None = None, today: date | None = None) -> list[dict]:
    """Expiry alerts for the soonest-expiring licenses, then capacity alerts."""
    today = today or date.today()
    now = datetime.now()
    cutoff = today + timedelta(days=expiry_warning_days())

    expiring = db.execute(
        live_query(License, company_id)
        .where(
            License.Status.in_([LicenseStatus.ACTIVE.value, LicenseStatus.EXPIRED.value]),
            License.ExpiryDate.is_not(None),
            License.ExpiryDate < cutoff,
        )
        .order_by(License.ExpiryDate)
        .limit(EXPIRY_ALERT_LIMIT)
    ).scalars().all()
    alerts = [_expiry_alert(license, today, now) for license in expiring]

    stats = get_dashboard_stats(db, company_id, today)
    devices = stats["devices"]
    licenses = stats["licenses"]
    if devices["utilization"] > DEVICE_UTILIZATION_CRITICAL:
        alerts.append(
            {
                "type": "critical",
                "category": "device",
                "message": f"Device utilization at {devices['utilization']}% - consider purchasing more devices",
                "timestamp": now,
            }
        )
    if licenses["utilization"] > LICENSE_UTILIZATION_WARNING:
        alerts.append(
            {
                "type": "warning",
                "category": "license",
                "message": f"License utilization at {licenses['utilization']}% - additional seats may be needed",
                "timestamp": now,
            }
        )
    if devices["maintenance"] > MAINTENANCE_INFO_THRESHOLD:
        alerts.append(
            {
                "type": "info",
                "category": "device",
                "message": f"{devices['maintenance']} devices currently in maintenance",
                "timestamp": now,
            }
        )
    return alerts
