from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from models.inventory_models import (
    AssignmentStatus,
    Device,
    DeviceAssignment,
    Employee,
    License,
    LicenseAssignment,
    PhoneAssignment,
    PhoneContract,
)


RECENT_PER_SOURCE = 15
RECENT_ACTIVITY_LIMIT = 20


def serialize_employee_ref(employee: Employee | None) -> dict | None:
    if not employee:
        return None
    return {
        "id": employee.EmployeeID,
        "firstName": employee.FirstName,
        "lastName": employee.LastName,
        "email": employee.Email,
        "department": employee.Department,
    }


def serialize_device_assignment(assignment: DeviceAssignment, include_relations: bool = False) -> dict:
    payload = {
        "id": assignment.AssignmentID,
        "deviceId": assignment.DeviceID,
        "employeeId": assignment.EmployeeID,
        "assignedDate": assignment.AssignedDate,
        "returnDate": assignment.ReturnDate,
        "status": assignment.Status,
        "notes": assignment.Notes,
        "assignedBy": assignment.AssignedBy,
        "returnedBy": assignment.ReturnedBy,
        "createdAt": assignment.CreatedAt,
        "updatedAt": assignment.UpdatedAt,
    }
    if include_relations:
        device = assignment.Device
        payload["device"] = {
            "id": device.DeviceID,
            "name": device.Name,
            "type": device.Type,
            "brand": device.Brand,
            "model": device.Model,
            "serialNumber": device.SerialNumber,
            "status": device.Status,
            "companyId": device.CompanyID,
        } if device else None
        payload["employee"] = serialize_employee_ref(assignment.Employee)
    return payload


def serialize_license_assignment(assignment: LicenseAssignment, include_relations: bool = False) -> dict:
    payload = {
        "id": assignment.AssignmentID,
        "licenseId": assignment.LicenseID,
        "employeeId": assignment.EmployeeID,
        "assignedDate": assignment.AssignedDate,
        "revokedDate": assignment.RevokedDate,
        "status": assignment.Status,
        "notes": assignment.Notes,
        "assignedBy": assignment.AssignedBy,
        "revokedBy": assignment.RevokedBy,
        "createdAt": assignment.CreatedAt,
        "updatedAt": assignment.UpdatedAt,
    }
    if include_relations:
        license = assignment.License
        payload["license"] = {
            "id": license.LicenseID,
            "name": license.Name,
            "vendor": license.Vendor,
            "version": license.Version,
            "status": license.Status,
            "companyId": license.CompanyID,
        } if license else None
        payload["employee"] = serialize_employee_ref(assignment.Employee)
    return payload


def serialize_phone_assignment(assignment: PhoneAssignment, include_relations: bool = False) -> dict:
    payload = {
        "id": assignment.AssignmentID,
        "phoneContractId": assignment.PhoneContractID,
        "employeeId": assignment.EmployeeID,
        "assignedDate": assignment.AssignedDate,
        "returnDate": assignment.ReturnDate,
        "status": assignment.Status,
        "notes": assignment.Notes,
        "assignedBy": assignment.AssignedBy,
        "returnedBy": assignment.ReturnedBy,
        "createdAt": assignment.CreatedAt,
        "updatedAt": assignment.UpdatedAt,
    }
    if include_relations:
        contract = assignment.PhoneContract
        payload["phoneContract"] = {
            "id": contract.PhoneContractID,
            "phoneNumber": contract.PhoneNumber,
            "carrier": contract.Carrier,
            "plan": contract.Plan,
            "status": contract.Status,
            "companyId": contract.CompanyID,
        } if contract else None
        payload["employee"] = serialize_employee_ref(assignment.Employee)
    return payload


def list_device_assignments(db: Session, company_id: str | None = None) -> list[DeviceAssignment]:
    stmt = (
        select(DeviceAssignment)
        .join(Device, DeviceAssignment.DeviceID == Device.DeviceID)
        .options(selectinload(DeviceAssignment.Device), selectinload(DeviceAssignment.Employee))
        .order_by(DeviceAssignment.AssignedDate.desc())
    )
    if company_id:
        stmt = stmt.where(Device.CompanyID == company_id)
    return db.execute(stmt).scalars().all()


def list_license_assignments(db: Session, company_id: str | None = None) -> list[LicenseAssignment]:
    stmt = (
        select(LicenseAssignment)
        .join(License, LicenseAssignment.LicenseID == License.LicenseID)
        .options(selectinload(LicenseAssignment.License), selectinload(LicenseAssignment.Employee))
        .order_by(LicenseAssignment.AssignedDate.desc())
    )
    if company_id:
        stmt = stmt.where(License.CompanyID == company_id)
    return db.execute(stmt).scalars().all()


def list_phone_assignments(db: Session, company_id: str | None = None) -> list[PhoneAssignment]:
    stmt = (
        select(PhoneAssignment)
        .join(PhoneContract, PhoneAssignment.PhoneContractID == PhoneContract.PhoneContractID)
        .options(selectinload(PhoneAssignment.PhoneContract), selectinload(PhoneAssignment.Employee))
        .order_by(PhoneAssignment.AssignedDate.desc())
    )
    if company_id:
        stmt = stmt.where(PhoneContract.CompanyID == company_id)
    return db.execute(stmt).scalars().all()


def _recent(db: Session, model, resource_model, join_on, relations, company_id: str | None) -> list:
    stmt = (
        select(model)
        .outerjoin(resource_model, join_on)
        .options(*(selectinload(rel) for rel in relations))
        .order_by(model.CreatedAt.desc())
        .limit(RECENT_PER_SOURCE)
    )
    if company_id:
        stmt = stmt.where(resource_model.CompanyID == company_id)
    return db.execute(stmt).scalars().all()


def _device_action(status: str) -> str:
    if status == AssignmentStatus.ACTIVE.value:
        return "assigned"
    if status == AssignmentStatus.RETURNED.value:
        return "returned"
    return "revoked"


def _license_action(status: str) -> str:
    if status == AssignmentStatus.ACTIVE.value:
        return "assigned"
    if status == AssignmentStatus.REVOKED.value:
        return "revoked"
    return "returned"


def _activity_entry(
    assignment,
    activity_type: str,
    action: str,
    closed_at: datetime | None,
    item: dict | None,
) -> dict:
    entry = {
        "id": assignment.AssignmentID,
        "type": activity_type,
        "action": action,
        "status": (assignment.Status or "").lower(),
        "timestamp": assignment.CreatedAt,
        "assignedDate": assignment.AssignedDate,
        "employee": serialize_employee_ref(assignment.Employee),
        "item": item,
        "actionBy": assignment.AssignedBy,
        "notes": assignment.Notes,
    }
    if closed_at:
        entry["returnedDate"] = closed_at
    return entry


def get_recent_activity(db: Session, company_id: str | None = None) -> dict:
    """Merge the latest device, license and phone assignments into one feed.

    Each source contributes at most ``RECENT_PER_SOURCE`` rows; the merged list is
    ordered by creation time, newest first, and cut to ``RECENT_ACTIVITY_LIMIT``.
    ``total`` is the merged size before the cut.
    """
    activities: list[dict] = []

    for assignment in _recent(
        db,
        DeviceAssignment,
        Device,
        DeviceAssignment.DeviceID == Device.DeviceID,
        (DeviceAssignment.Device, DeviceAssignment.Employee),
        company_id,
    ):
        device = assignment.Device
        item = {
            "id": device.DeviceID,
            "name": device.Name,
            "type": device.Type,
            "manufacturer": device.Brand,
            "model": device.Model,
        } if device else None
        activities.append(
            _activity_entry(assignment, "device", _device_action(assignment.Status), assignment.ReturnDate, item)
        )

    for assignment in _recent(
        db,
        LicenseAssignment,
        License,
        LicenseAssignment.LicenseID == License.LicenseID,
        (LicenseAssignment.License, LicenseAssignment.Employee),
        company_id,
    ):
        license = assignment.License
        item = {
            "id": license.LicenseID,
            "name": license.Name,
            "type": "Software License",
            "manufacturer": license.Vendor,
            "model": license.Version,
        } if license else None
        activities.append(
            _activity_entry(assignment, "license", _license_action(assignment.Status), assignment.RevokedDate, item)
        )

    for assignment in _recent(
        db,
        PhoneAssignment,
        PhoneContract,
        PhoneAssignment.PhoneContractID == PhoneContract.PhoneContractID,
        (PhoneAssignment.PhoneContract, PhoneAssignment.Employee),
        company_id,
    ):
        contract = assignment.PhoneContract
        item = {
            "id": contract.PhoneContractID,
            "name": f"{contract.Carrier} - {contract.PhoneNumber}",
            "type": "Phone Contract",
            "manufacturer": contract.Carrier,
            "model": contract.Plan,
        } if contract else None
        activities.append(
            _activity_entry(assignment, "phone", _device_action(assignment.Status), assignment.ReturnDate, item)
        )

    activities.sort(key=lambda entry: entry["timestamp"] or datetime.min, reverse=True)
    return {
        "activities": activities[:RECENT_ACTIVITY_LIMIT],
        "total": len(activities),
    }
