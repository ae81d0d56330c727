from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from models.inventory_models import (
    AssignmentStatus,
    Company,
    ContractStatus,
    Device,
    DeviceAssignment,
    DeviceStatus,
    Employee,
    License,
    LicenseAssignment,
    LicenseStatus,
    PhoneAssignment,
    PhoneContract,
)
from services.activity_service import serialize_employee_ref
from services.assignment_service import ConflictError, count_active_license_assignments


ACTIVE = AssignmentStatus.ACTIVE.value

COMPANY_FIELDS = {
    "name": "Name",
    "code": "Code",
    "description": "Description",
    "address": "Address",
    "contactEmail": "ContactEmail",
    "contactPhone": "ContactPhone",
    "status": "Status",
}
EMPLOYEE_FIELDS = {
    "companyId": "CompanyID",
    "firstName": "FirstName",
    "lastName": "LastName",
    "email": "Email",
    "department": "Department",
    "position": "Position",
    "employeeNumber": "EmployeeNumber",
    "startDate": "StartDate",
    "status": "Status",
}
DEVICE_FIELDS = {
    "companyId": "CompanyID",
    "name": "Name",
    "type": "Type",
    "brand": "Brand",
    "model": "Model",
    "serialNumber": "SerialNumber",
    "purchaseDate": "PurchaseDate",
    "warrantyExpiry": "WarrantyExpiry",
    "cost": "Cost",
    "status": "Status",
    "condition": "Condition",
    "location": "Location",
    "notes": "Notes",
}
LICENSE_FIELDS = {
    "companyId": "CompanyID",
    "name": "Name",
    "type": "Type",
    "vendor": "Vendor",
    "version": "Version",
    "licenseKey": "LicenseKey",
    "purchaseDate": "PurchaseDate",
    "expiryDate": "ExpiryDate",
    "cost": "Cost",
    "maxUsers": "MaxUsers",
    "status": "Status",
    "notes": "Notes",
}
PHONE_CONTRACT_FIELDS = {
    "companyId": "CompanyID",
    "phoneNumber": "PhoneNumber",
    "carrier": "Carrier",
    "plan": "Plan",
    "monthlyFee": "MonthlyFee",
    "contractStartDate": "ContractStartDate",
    "contractEndDate": "ContractEndDate",
    "status": "Status",
    "dataLimit": "DataLimit",
    "notes": "Notes",
}


def _apply_fields(row, values: dict, mapping: dict) -> None:
    columns = row.__table__.columns
    updates = {}
    for field, value in values.items():
        column = mapping.get(field)
        if not column:
            continue
        if value is None and not columns[column].nullable:
            raise ValueError(f"{field} cannot be null")
        updates[column] = value
    for column, value in updates.items():
        setattr(row, column, value)


def _require_fields(values: dict, required: tuple[str, ...]) -> None:
    missing = [field for field in required if values.get(field) in (None, "")]
    if missing:
        raise ValueError(f"Missing required field(s): {', '.join(missing)}")


def _require_company(db: Session, company_id: str | None) -> None:
    if not company_id:
        raise ValueError("companyId is required")
    company = db.execute(
        select(Company.CompanyID).where(Company.CompanyID == company_id, Company.live())
    ).first()
    if not company:
        raise ValueError("companyId is not found")


def _get_live(db: Session, model, key_column, key: str):
    return db.execute(select(model).where(key_column == key, model.live())).scalars().first()


def live_query(model, company_id: str | None = None):
    stmt = select(model).where(model.live())
    if company_id:
        stmt = stmt.where(model.CompanyID == company_id)
    return stmt


def _matches(search: str, *columns):
    pattern = f"%{search.strip()}%"
    return or_(*(column.ilike(pattern) for column in columns))


def _create(db: Session, model, values: dict, mapping: dict, required: tuple[str, ...]):
    _require_fields(values, required)
    # Omitted and null optional fields both fall back to the column default.
    values = {key: value for key, value in values.items() if value is not None}
    if "companyId" in mapping:
        _require_company(db, values.get("companyId"))
    row = model()
    _apply_fields(row, values, mapping)
    row.CreatedAt = datetime.now()
    row.UpdatedAt = datetime.now()
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def _update(db: Session, row, values: dict, mapping: dict):
    if "companyId" in values and "companyId" in mapping:
        _require_company(db, values.get("companyId"))
    _apply_fields(row, values, mapping)
    row.UpdatedAt = datetime.now()
    db.commit()
    db.refresh(row)
    return row


def _has_active(db: Session, assignment_model, column, key: str) -> bool:
    found = db.execute(
        select(assignment_model.AssignmentID).where(column == key, assignment_model.Status == ACTIVE)
    ).first()
    return found is not None


def _soft_delete(db: Session, row) -> None:
    row.mark_deleted()
    row.UpdatedAt = datetime.now()
    db.commit()


# Companies

def create_company(db: Session, values: dict) -> Company:
    _require_fields(values, ("name", "code"))
    duplicate = db.execute(select(Company.CompanyID).where(Company.Code == values["code"])).first()
    if duplicate:
        raise ConflictError("Company code already exists")
    return _create(db, Company, values, COMPANY_FIELDS, ("name", "code"))


def list_companies(db: Session) -> list[Company]:
    return db.execute(select(Company).where(Company.live()).order_by(Company.Name)).scalars().all()


def get_company(db: Session, company_id: str) -> Company | None:
    return _get_live(db, Company, Company.CompanyID, company_id)


def update_company(db: Session, company_id: str, values: dict) -> Company | None:
    company = get_company(db, company_id)
    if not company:
        return None
    return _update(db, company, values, COMPANY_FIELDS)


def delete_company(db: Session, company_id: str) -> bool:
    company = get_company(db, company_id)
    if not company:
        return False
    _soft_delete(db, company)
    return True


def serialize_company(company: Company) -> dict:
    return {
        "id": company.CompanyID,
        "name": company.Name,
        "code": company.Code,
        "description": company.Description,
        "address": company.Address,
        "contactEmail": company.ContactEmail,
        "contactPhone": company.ContactPhone,
        "status": company.Status,
        "createdAt": company.CreatedAt,
        "updatedAt": company.UpdatedAt,
    }


# Employees

def create_employee(db: Session, values: dict) -> Employee:
    return _create(db, Employee, values, EMPLOYEE_FIELDS, ("companyId", "firstName", "lastName", "email"))


def list_employees(
    db: Session,
    company_id: str | None = None,
    *,
    search: str | None = None,
    departments: list[str] | None = None,
    statuses: list[str] | None = None,
) -> list[Employee]:
    stmt = live_query(Employee, company_id)
    if search:
        stmt = stmt.where(
            _matches(search, Employee.FirstName, Employee.LastName, Employee.Email, Employee.EmployeeNumber)
        )
    if departments:
        stmt = stmt.where(Employee.Department.in_(departments))
    if statuses:
        stmt = stmt.where(Employee.Status.in_(statuses))
    return db.execute(stmt.order_by(Employee.LastName, Employee.FirstName)).scalars().all()


def get_employee(db: Session, employee_id: str) -> Employee | None:
    return _get_live(db, Employee, Employee.EmployeeID, employee_id)


def update_employee(db: Session, employee_id: str, values: dict) -> Employee | None:
    employee = get_employee(db, employee_id)
    if not employee:
        return None
    return _update(db, employee, values, EMPLOYEE_FIELDS)


def delete_employee(db: Session, employee_id: str) -> bool:
    employee = get_employee(db, employee_id)
    if not employee:
        return False
    if (
        _has_active(db, DeviceAssignment, DeviceAssignment.EmployeeID, employee_id)
        or _has_active(db, LicenseAssignment, LicenseAssignment.EmployeeID, employee_id)
        or _has_active(db, PhoneAssignment, PhoneAssignment.EmployeeID, employee_id)
    ):
        raise ConflictError("Cannot delete employee with active assignments. Please return all items first.")
    _soft_delete(db, employee)
    return True


def serialize_employee(employee: Employee) -> dict:
    payload = serialize_employee_ref(employee)
    payload.update(
        {
            "companyId": employee.CompanyID,
            "position": employee.Position,
            "employeeNumber": employee.EmployeeNumber,
            "startDate": employee.StartDate,
            "status": employee.Status,
            "createdAt": employee.CreatedAt,
            "updatedAt": employee.UpdatedAt,
        }
    )
    return payload


# Devices

def create_device(db: Session, values: dict) -> Device:
    return _create(db, Device, values, DEVICE_FIELDS, ("companyId", "name", "type"))


def list_devices(
    db: Session,
    company_id: str | None = None,
    *,
    search: str | None = None,
    types: list[str] | None = None,
    statuses: list[str] | None = None,
    conditions: list[str] | None = None,
    assigned_to: str | None = None,
) -> list[Device]:
    stmt = live_query(Device, company_id)
    if search:
        stmt = stmt.where(_matches(search, Device.Name, Device.Brand, Device.Model, Device.SerialNumber))
    if types:
        stmt = stmt.where(Device.Type.in_(types))
    if statuses:
        stmt = stmt.where(Device.Status.in_(statuses))
    if conditions:
        stmt = stmt.where(Device.Condition.in_(conditions))
    if assigned_to:
        stmt = stmt.where(
            Device.DeviceID.in_(
                select(DeviceAssignment.DeviceID).where(
                    DeviceAssignment.EmployeeID == assigned_to,
                    DeviceAssignment.Status == ACTIVE,
                )
            )
        )
    return db.execute(stmt.order_by(Device.Name)).scalars().all()


def list_available_devices(
    db: Session,
    company_id: str | None = None,
    device_type: str | None = None,
    limit: int | None = None,
) -> list[Device]:
    stmt = live_query(Device, company_id).where(Device.Status == DeviceStatus.AVAILABLE.value)
    if device_type:
        stmt = stmt.where(Device.Type == device_type)
    stmt = stmt.order_by(Device.CreatedAt.desc())
    if limit:
        stmt = stmt.limit(limit)
    return db.execute(stmt).scalars().all()


def get_device(db: Session, device_id: str) -> Device | None:
    return _get_live(db, Device, Device.DeviceID, device_id)


def get_device_history(db: Session, device_id: str) -> list[DeviceAssignment] | None:
    """Every assignment the device ever had, newest first; None when the device is unknown."""
    if not get_device(db, device_id):
        return None
    return db.execute(
        select(DeviceAssignment)
        .options(selectinload(DeviceAssignment.Device), selectinload(DeviceAssignment.Employee))
        .where(DeviceAssignment.DeviceID == device_id)
        .order_by(DeviceAssignment.CreatedAt.desc())
    ).scalars().all()


def update_device(db: Session, device_id: str, values: dict) -> Device | None:
    device = get_device(db, device_id)
    if not device:
        return None
    return _update(db, device, values, DEVICE_FIELDS)


def delete_device(db: Session, device_id: str) -> bool:
    device = get_device(db, device_id)
    if not device:
        return False
    if _has_active(db, DeviceAssignment, DeviceAssignment.DeviceID, device_id):
        raise ConflictError("Cannot delete device with an active assignment. Please return it first.")
    _soft_delete(db, device)
    return True


def serialize_device(device: Device) -> dict:
    return {
        "id": device.DeviceID,
        "companyId": device.CompanyID,
        "name": device.Name,
        "type": device.Type,
        "brand": device.Brand,
        "model": device.Model,
        "serialNumber": device.SerialNumber,
        "purchaseDate": device.PurchaseDate,
        "warrantyExpiry": device.WarrantyExpiry,
        "cost": float(device.Cost) if device.Cost is not None else None,
        "status": device.Status,
        "condition": device.Condition,
        "location": device.Location,
        "notes": device.Notes,
        "createdAt": device.CreatedAt,
        "updatedAt": device.UpdatedAt,
    }


# Licenses

def create_license(db: Session, values: dict) -> License:
    if values.get("maxUsers") is not None and int(values["maxUsers"]) < 0:
        raise ValueError("maxUsers must be zero or greater")
    values = {key: value for key, value in values.items() if key != "currentUsers"}
    license = _create(db, License, values, LICENSE_FIELDS, ("companyId", "name", "maxUsers"))
    license.CurrentUsers = license.CurrentUsers or 0
    return license


def active_counts_by_license(db: Session, license_ids: list[str]) -> dict[str, int]:
    if not license_ids:
        return {}
    rows = db.execute(
        select(LicenseAssignment.LicenseID, func.count(LicenseAssignment.AssignmentID))
        .where(LicenseAssignment.LicenseID.in_(license_ids), LicenseAssignment.Status == ACTIVE)
        .group_by(LicenseAssignment.LicenseID)
    ).all()
    return {license_id: int(count) for license_id, count in rows}


def list_licenses(
    db: Session,
    company_id: str | None = None,
    *,
    search: str | None = None,
    vendor: str | None = None,
    types: list[str] | None = None,
    statuses: list[str] | None = None,
    expiring_before: date | None = None,
) -> list[dict]:
    stmt = live_query(License, company_id)
    if search:
        stmt = stmt.where(_matches(search, License.Name, License.Vendor, License.LicenseKey))
    if vendor:
        stmt = stmt.where(License.Vendor == vendor)
    if types:
        stmt = stmt.where(License.Type.in_(types))
    if statuses:
        stmt = stmt.where(License.Status.in_(statuses))
    if expiring_before:
        stmt = stmt.where(License.ExpiryDate.is_not(None), License.ExpiryDate <= expiring_before)
    licenses = db.execute(stmt.order_by(License.Name)).scalars().all()
    counts = active_counts_by_license(db, [license.LicenseID for license in licenses])
    return [serialize_license(license, counts.get(license.LicenseID, 0)) for license in licenses]


def list_available_licenses(db: Session, company_id: str | None = None, limit: int | None = None) -> list[dict]:
    """Active licenses with at least one free seat, newest first."""
    licenses = db.execute(
        live_query(License, company_id)
        .where(License.Status == LicenseStatus.ACTIVE.value)
        .order_by(License.CreatedAt.desc())
    ).scalars().all()
    counts = active_counts_by_license(db, [license.LicenseID for license in licenses])

    available = []
    for license in licenses:
        in_use = counts.get(license.LicenseID, 0)
        if in_use >= license.MaxUsers:
            continue
        available.append(
            {
                "id": license.LicenseID,
                "name": license.Name,
                "vendor": license.Vendor,
                "version": license.Version,
                "expiryDate": license.ExpiryDate,
                "currentUsers": in_use,
                "availableSeats": license.MaxUsers - in_use,
                "totalSeats": license.MaxUsers,
            }
        )
    return available[:limit] if limit else available


def get_license(db: Session, license_id: str) -> License | None:
    return _get_live(db, License, License.LicenseID, license_id)


def update_license(db: Session, license_id: str, values: dict) -> License | None:
    license = get_license(db, license_id)
    if not license:
        return None
    values = {key: value for key, value in values.items() if key != "currentUsers"}
    if values.get("maxUsers") is not None:
        in_use = max(count_active_license_assignments(db, license_id), license.CurrentUsers or 0)
        if int(values["maxUsers"]) < in_use:
            raise ValueError(f"maxUsers cannot be lower than the {in_use} seat(s) in use")
    return _update(db, license, values, LICENSE_FIELDS)


def delete_license(db: Session, license_id: str) -> bool:
    license = get_license(db, license_id)
    if not license:
        return False
    if _has_active(db, LicenseAssignment, LicenseAssignment.LicenseID, license_id):
        raise ConflictError("Cannot delete license with active assignments. Please unassign all users first.")
    _soft_delete(db, license)
    return True


def serialize_license(license: License, active_count: int | None = None) -> dict:
    # The counted value is what callers see; the stored counter only gates new seats.
    current_users = license.CurrentUsers if active_count is None else active_count
    return {
        "id": license.LicenseID,
        "companyId": license.CompanyID,
        "name": license.Name,
        "type": license.Type,
        "vendor": license.Vendor,
        "version": license.Version,
        "purchaseDate": license.PurchaseDate,
        "expiryDate": license.ExpiryDate,
        "cost": float(license.Cost) if license.Cost is not None else None,
        "maxUsers": license.MaxUsers,
        "currentUsers": current_users,
        "status": license.Status,
        "notes": license.Notes,
        "createdAt": license.CreatedAt,
        "updatedAt": license.UpdatedAt,
    }


def license_assignment_overview(db: Session, license_id: str) -> dict | None:
    license = get_license(db, license_id)
    if not license:
        return None
    active = db.execute(
        select(LicenseAssignment)
        .options(selectinload(LicenseAssignment.Employee))
        .where(LicenseAssignment.LicenseID == license_id, LicenseAssignment.Status == ACTIVE)
        .order_by(LicenseAssignment.AssignedDate.desc())
    ).scalars().all()
    current_users = len(active)
    return {
        "license": {
            "id": license.LicenseID,
            "name": license.Name,
            "vendor": license.Vendor,
            "maxUsers": license.MaxUsers,
            "currentUsers": current_users,
        },
        "assignments": [
            {
                "id": assignment.AssignmentID,
                "employee": serialize_employee_ref(assignment.Employee),
                "assignedDate": assignment.AssignedDate,
                "assignedBy": assignment.AssignedBy,
            }
            for assignment in active
        ],
        "availableSlots": max(0, license.MaxUsers - current_users),
    }


# Phone contracts

def create_phone_contract(db: Session, values: dict) -> PhoneContract:
    return _create(db, PhoneContract, values, PHONE_CONTRACT_FIELDS, ("companyId", "phoneNumber", "carrier"))


def list_phone_contracts(
    db: Session,
    company_id: str | None = None,
    *,
    search: str | None = None,
    carrier: str | None = None,
    statuses: list[str] | None = None,
    expiring_before: date | None = None,
) -> list[PhoneContract]:
    stmt = live_query(PhoneContract, company_id)
    if search:
        stmt = stmt.where(_matches(search, PhoneContract.PhoneNumber, PhoneContract.Carrier, PhoneContract.Plan))
    if carrier:
        stmt = stmt.where(PhoneContract.Carrier == carrier)
    if statuses:
        stmt = stmt.where(PhoneContract.Status.in_(statuses))
    if expiring_before:
        stmt = stmt.where(
            PhoneContract.ContractEndDate.is_not(None),
            PhoneContract.ContractEndDate <= expiring_before,
        )
    return db.execute(stmt.order_by(PhoneContract.PhoneNumber)).scalars().all()


def list_available_phone_contracts(db: Session, company_id: str | None = None) -> list[PhoneContract]:
    held = select(PhoneAssignment.PhoneContractID).where(PhoneAssignment.Status == ACTIVE)
    return db.execute(
        live_query(PhoneContract, company_id)
        .where(
            PhoneContract.Status == ContractStatus.ACTIVE.value,
            PhoneContract.PhoneContractID.not_in(held),
        )
        .order_by(PhoneContract.PhoneNumber)
    ).scalars().all()


def get_phone_contract(db: Session, contract_id: str) -> PhoneContract | None:
    return _get_live(db, PhoneContract, PhoneContract.PhoneContractID, contract_id)


def update_phone_contract(db: Session, contract_id: str, values: dict) -> PhoneContract | None:
    contract = get_phone_contract(db, contract_id)
    if not contract:
        return None
    return _update(db, contract, values, PHONE_CONTRACT_FIELDS)


def delete_phone_contract(db: Session, contract_id: str) -> bool:
    contract = get_phone_contract(db, contract_id)
    if not contract:
        return False
    if _has_active(db, PhoneAssignment, PhoneAssignment.PhoneContractID, contract_id):
        raise ConflictError("Cannot delete phone contract with an active assignment. Please return it first.")
    _soft_delete(db, contract)
    return True


def serialize_phone_contract(contract: PhoneContract) -> dict:
    return {
        "id": contract.PhoneContractID,
        "companyId": contract.CompanyID,
        "phoneNumber": contract.PhoneNumber,
        "carrier": contract.Carrier,
        "plan": contract.Plan,
        "monthlyFee": float(contract.MonthlyFee) if contract.MonthlyFee is not None else None,
        "contractStartDate": contract.ContractStartDate,
        "contractEndDate": contract.ContractEndDate,
        "status": contract.Status,
        "dataLimit": contract.DataLimit,
        "notes": contract.Notes,
        "createdAt": contract.CreatedAt,
        "updatedAt": contract.UpdatedAt,
    }
