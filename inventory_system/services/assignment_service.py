"""Assignment lifecycle for devices, licenses and phone contracts.

Every public operation runs as one unit of work on the given session: the rows
it reads are locked for update, all preconditions are checked before the first
write, and the session is either committed once or rolled back completely.
Typed errors from :class:`AssignmentError` are re-raised to the caller.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models.inventory_models import (
    AssignmentStatus,
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
from services.notification_service import emit_assignment_event


LOGGER = logging.getLogger("inventory_system.assignments")

ACTIVE = AssignmentStatus.ACTIVE.value


class AssignmentError(RuntimeError):
    pass


class NotFoundError(AssignmentError):
    pass


class ConflictError(AssignmentError):
    pass


class InvalidStateError(AssignmentError):
    pass


class StorageFailureError(AssignmentError):
    pass


@contextmanager
def _unit_of_work(db: Session, operation: str) -> Iterator[None]:
    try:
        yield
        db.flush()
        db.commit()
    except AssignmentError:
        db.rollback()
        raise
    except IntegrityError as exc:
        db.rollback()
        LOGGER.warning("Constraint rejected write event=constraint_conflict operation=%s", operation)
        raise ConflictError("Conflicting assignment state. No changes were saved.") from exc
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.exception("Unit of work failed event=storage_failure operation=%s", operation)
        raise StorageFailureError(f"Could not complete {operation}. No changes were saved.") from exc


def _locked(db: Session, stmt):
    # populate_existing replaces any stale copy already held by this session.
    return db.execute(
        stmt.with_for_update().execution_options(populate_existing=True)
    ).scalars().first()


def _require_employee(db: Session, employee_id: str) -> Employee:
    employee = db.execute(
        select(Employee).where(Employee.EmployeeID == employee_id, Employee.live())
    ).scalars().first()
    if not employee:
        raise NotFoundError("Employee not found")
    return employee


def _require_active(assignment) -> None:
    if assignment.Status != ACTIVE:
        raise InvalidStateError("Assignment is not active")


def count_active_license_assignments(db: Session, license_id: str) -> int:
    return db.execute(
        select(func.count(LicenseAssignment.AssignmentID)).where(
            LicenseAssignment.LicenseID == license_id,
            LicenseAssignment.Status == ACTIVE,
        )
    ).scalar_one()


def _sync_current_users(db: Session, license: License) -> int:
    # Pending assignment changes must be visible to the count.
    db.flush()
    active_count = count_active_license_assignments(db, license.LicenseID)
    license.CurrentUsers = max(0, active_count)
    license.UpdatedAt = datetime.now()
    return license.CurrentUsers


def _release_phone_contract(db: Session, employee_id: str, returned_by: str | None, now: datetime) -> list[PhoneAssignment]:
    """Close the employee's oldest active phone assignment after a phone device returns."""
    phone_assignment = _locked(
        db,
        select(PhoneAssignment)
        .where(PhoneAssignment.EmployeeID == employee_id, PhoneAssignment.Status == ACTIVE)
        .order_by(PhoneAssignment.AssignedDate)
        .limit(1),
    )
    if not phone_assignment:
        return []

    phone_assignment.Status = AssignmentStatus.RETURNED.value
    phone_assignment.ReturnDate = now
    phone_assignment.ReturnedBy = returned_by
    phone_assignment.UpdatedAt = now

    contract = _locked(
        db, select(PhoneContract).where(PhoneContract.PhoneContractID == phone_assignment.PhoneContractID)
    )
    if contract:
        contract.Status = ContractStatus.ACTIVE.value
        contract.UpdatedAt = now
    else:
        _warn_cascade_missing("phone_contract", phone_assignment.PhoneContractID, phone_assignment.AssignmentID)
    return [phone_assignment]


def _warn_cascade_missing(target: str, target_id: str, assignment_id: str) -> None:
    LOGGER.warning(
        "Cascade target missing event=cascade_target_missing target=%s target_id=%s assignment_id=%s",
        target,
        target_id,
        assignment_id,
        extra={
            "event": "cascade_target_missing",
            "target": target,
            "target_id": target_id,
            "assignment_id": assignment_id,
        },
    )


def _close_device_assignment(
    db: Session,
    assignment: DeviceAssignment,
    returned_by: str | None,
    notes: str | None = None,
) -> tuple[Device | None, list[PhoneAssignment]]:
    now = datetime.now()
    assignment.Status = AssignmentStatus.RETURNED.value
    assignment.ReturnDate = now
    assignment.ReturnedBy = returned_by
    assignment.UpdatedAt = now
    if notes:
        assignment.Notes = notes

    device = _locked(db, select(Device).where(Device.DeviceID == assignment.DeviceID))
    if not device:
        _warn_cascade_missing("device", assignment.DeviceID, assignment.AssignmentID)
        return None, []

    device.Status = DeviceStatus.AVAILABLE.value
    device.UpdatedAt = now
    if not device.is_phone:
        return device, []
    return device, _release_phone_contract(db, assignment.EmployeeID, returned_by, now)


def assign_device(
    db: Session,
    device_id: str,
    employee_id: str,
    assigned_by: str,
    notes: str | None = None,
) -> DeviceAssignment:
    with _unit_of_work(db, "assign_device"):
        device = _locked(db, select(Device).where(Device.DeviceID == device_id, Device.live()))
        if not device:
            raise NotFoundError("Device not found")
        if device.Status != DeviceStatus.AVAILABLE.value:
            raise ConflictError("Device is not available for assignment")
        _require_employee(db, employee_id)

        now = datetime.now()
        assignment = DeviceAssignment(
            DeviceID=device.DeviceID,
            EmployeeID=employee_id,
            AssignedBy=assigned_by,
            Notes=notes,
            AssignedDate=now,
            Status=ACTIVE,
            CreatedAt=now,
            UpdatedAt=now,
        )
        db.add(assignment)
        device.Status = DeviceStatus.ASSIGNED.value
        device.UpdatedAt = now

    LOGGER.info(
        "Device assigned event=device_assigned assignment_id=%s device_id=%s employee_id=%s actor=%s",
        assignment.AssignmentID,
        device_id,
        employee_id,
        assigned_by,
    )
    emit_assignment_event(
        db,
        "Device assigned",
        f"Device {device.Name} assigned to employee {employee_id} by {assigned_by}",
        entity_id=device.DeviceID,
        entity_type="device",
        company_id=device.CompanyID,
    )
    return assignment


def assign_license(
    db: Session,
    license_id: str,
    employee_id: str,
    assigned_by: str,
    notes: str | None = None,
) -> LicenseAssignment:
    with _unit_of_work(db, "assign_license"):
        license = _locked(db, select(License).where(License.LicenseID == license_id, License.live()))
        if not license:
            raise NotFoundError("License not found")
        if license.CurrentUsers >= license.MaxUsers:
            raise ConflictError("No available license seats")
        if license.Status != LicenseStatus.ACTIVE.value:
            raise ConflictError("License is not active")
        _require_employee(db, employee_id)

        existing = db.execute(
            select(LicenseAssignment).where(
                LicenseAssignment.LicenseID == license_id,
                LicenseAssignment.EmployeeID == employee_id,
                LicenseAssignment.Status == ACTIVE,
            )
        ).scalars().first()
        if existing:
            raise ConflictError("Employee already has this license assigned")

        now = datetime.now()
        assignment = LicenseAssignment(
            LicenseID=license_id,
            EmployeeID=employee_id,
            AssignedBy=assigned_by,
            Notes=notes,
            AssignedDate=now,
            Status=ACTIVE,
            CreatedAt=now,
            UpdatedAt=now,
        )
        db.add(assignment)
        _sync_current_users(db, license)
        if license.CurrentUsers > license.MaxUsers:
            raise ConflictError("No available license seats")

    LOGGER.info(
        "License assigned event=license_assigned assignment_id=%s license_id=%s employee_id=%s seats=%s/%s actor=%s",
        assignment.AssignmentID,
        license_id,
        employee_id,
        license.CurrentUsers,
        license.MaxUsers,
        assigned_by,
    )
    emit_assignment_event(
        db,
        "License assigned",
        f"License {license.Name} assigned to employee {employee_id} by {assigned_by}",
        entity_id=license.LicenseID,
        entity_type="license",
        company_id=license.CompanyID,
    )
    return assignment


def assign_phone_contract(
    db: Session,
    phone_contract_id: str,
    employee_id: str,
    assigned_by: str,
    notes: str | None = None,
) -> PhoneAssignment:
    with _unit_of_work(db, "assign_phone_contract"):
        contract = _locked(
            db,
            select(PhoneContract).where(PhoneContract.PhoneContractID == phone_contract_id, PhoneContract.live()),
        )
        if not contract:
            raise NotFoundError("Phone contract not found")
        if contract.Status != ContractStatus.ACTIVE.value:
            raise ConflictError("Phone contract is not available for assignment")
        _require_employee(db, employee_id)

        now = datetime.now()
        assignment = PhoneAssignment(
            PhoneContractID=phone_contract_id,
            EmployeeID=employee_id,
            AssignedBy=assigned_by,
            Notes=notes,
            AssignedDate=now,
            Status=ACTIVE,
            CreatedAt=now,
            UpdatedAt=now,
        )
        db.add(assignment)
        contract.Status = ContractStatus.ASSIGNED.value
        contract.UpdatedAt = now

    LOGGER.info(
        "Phone contract assigned event=phone_assigned assignment_id=%s phone_contract_id=%s employee_id=%s actor=%s",
        assignment.AssignmentID,
        phone_contract_id,
        employee_id,
        assigned_by,
    )
    emit_assignment_event(
        db,
        "Phone contract assigned",
        f"Phone contract {contract.PhoneNumber} assigned to employee {employee_id} by {assigned_by}",
        entity_id=contract.PhoneContractID,
        entity_type="phone_contract",
        company_id=contract.CompanyID,
    )
    return assignment


def return_device(db: Session, assignment_id: str, returned_by: str | None = None) -> DeviceAssignment:
    with _unit_of_work(db, "return_device"):
        assignment = _locked(db, select(DeviceAssignment).where(DeviceAssignment.AssignmentID == assignment_id))
        if not assignment:
            raise NotFoundError("Assignment not found")
        _require_active(assignment)
        device, released = _close_device_assignment(db, assignment, returned_by)

    _log_device_return(db, assignment, device, released, returned_by)
    return assignment


def unassign_device_by_device_id(
    db: Session,
    device_id: str,
    returned_by: str,
    notes: str | None = None,
) -> DeviceAssignment:
    with _unit_of_work(db, "unassign_device"):
        assignment = _locked(
            db,
            select(DeviceAssignment).where(
                DeviceAssignment.DeviceID == device_id,
                DeviceAssignment.Status == ACTIVE,
            ),
        )
        if not assignment:
            raise NotFoundError("No active assignment found for this device")
        device, released = _close_device_assignment(db, assignment, returned_by, notes)

    _log_device_return(db, assignment, device, released, returned_by)
    return assignment


def _log_device_return(
    db: Session,
    assignment: DeviceAssignment,
    device: Device | None,
    released: list[PhoneAssignment],
    actor: str | None,
) -> None:
    LOGGER.info(
        "Device returned event=device_returned assignment_id=%s device_id=%s released_phone_assignments=%s actor=%s",
        assignment.AssignmentID,
        assignment.DeviceID,
        [item.AssignmentID for item in released],
        actor,
    )
    emit_assignment_event(
        db,
        "Device returned",
        f"Device assignment {assignment.AssignmentID} returned by {actor or 'system'}",
        entity_id=assignment.DeviceID,
        entity_type="device",
        company_id=device.CompanyID if device else None,
    )


def revoke_license(db: Session, assignment_id: str, revoked_by: str | None = None) -> LicenseAssignment:
    with _unit_of_work(db, "revoke_license"):
        license_id = db.execute(
            select(LicenseAssignment.LicenseID).where(LicenseAssignment.AssignmentID == assignment_id)
        ).scalar_one_or_none()
        if license_id is None:
            raise NotFoundError("Assignment not found")

        # Same lock order as the seat writers: license row, then assignment row.
        license = _locked(db, select(License).where(License.LicenseID == license_id))
        assignment = _locked(db, select(LicenseAssignment).where(LicenseAssignment.AssignmentID == assignment_id))
        if not assignment:
            raise NotFoundError("Assignment not found")
        _require_active(assignment)

        now = datetime.now()
        assignment.Status = AssignmentStatus.REVOKED.value
        assignment.RevokedDate = now
        assignment.RevokedBy = revoked_by
        assignment.UpdatedAt = now
        if license:
            _sync_current_users(db, license)
        else:
            _warn_cascade_missing("license", assignment.LicenseID, assignment.AssignmentID)

    LOGGER.info(
        "License revoked event=license_revoked assignment_id=%s license_id=%s actor=%s",
        assignment.AssignmentID,
        assignment.LicenseID,
        revoked_by,
    )
    emit_assignment_event(
        db,
        "License revoked",
        f"License assignment {assignment.AssignmentID} revoked by {revoked_by or 'system'}",
        entity_id=assignment.LicenseID,
        entity_type="license",
        company_id=license.CompanyID if license else None,
    )
    return assignment


def unassign_license_by_license_id(db: Session, license_id: str, returned_by: str) -> list[LicenseAssignment]:
    with _unit_of_work(db, "unassign_license"):
        # License row first so seat writers on this license queue behind us.
        license = _locked(db, select(License).where(License.LicenseID == license_id))
        assignments = db.execute(
            select(LicenseAssignment)
            .where(LicenseAssignment.LicenseID == license_id, LicenseAssignment.Status == ACTIVE)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        if not assignments:
            raise NotFoundError("No active assignments found for this license")

        now = datetime.now()
        for assignment in assignments:
            assignment.Status = AssignmentStatus.REVOKED.value
            assignment.RevokedDate = now
            assignment.RevokedBy = returned_by
            assignment.UpdatedAt = now
        if license:
            _sync_current_users(db, license)
        else:
            _warn_cascade_missing("license", license_id, assignments[0].AssignmentID)

    LOGGER.info(
        "License unassigned event=license_unassigned license_id=%s revoked=%s actor=%s",
        license_id,
        len(assignments),
        returned_by,
    )
    emit_assignment_event(
        db,
        "License unassigned",
        f"{len(assignments)} license assignment(s) revoked by {returned_by}",
        entity_id=license_id,
        entity_type="license",
        company_id=license.CompanyID if license else None,
    )
    return assignments


def return_phone_contract(db: Session, assignment_id: str, returned_by: str | None = None) -> PhoneAssignment:
    with _unit_of_work(db, "return_phone_contract"):
        assignment = _locked(db, select(PhoneAssignment).where(PhoneAssignment.AssignmentID == assignment_id))
        if not assignment:
            raise NotFoundError("Assignment not found")
        _require_active(assignment)

        now = datetime.now()
        assignment.Status = AssignmentStatus.RETURNED.value
        assignment.ReturnDate = now
        assignment.ReturnedBy = returned_by
        assignment.UpdatedAt = now

        contract = _locked(
            db, select(PhoneContract).where(PhoneContract.PhoneContractID == assignment.PhoneContractID)
        )
        if contract:
            contract.Status = ContractStatus.ACTIVE.value
            contract.UpdatedAt = now
        else:
            _warn_cascade_missing("phone_contract", assignment.PhoneContractID, assignment.AssignmentID)

    LOGGER.info(
        "Phone contract returned event=phone_returned assignment_id=%s phone_contract_id=%s actor=%s",
        assignment.AssignmentID,
        assignment.PhoneContractID,
        returned_by,
    )
    emit_assignment_event(
        db,
        "Phone contract returned",
        f"Phone assignment {assignment.AssignmentID} returned by {returned_by or 'system'}",
        entity_id=assignment.PhoneContractID,
        entity_type="phone_contract",
        company_id=contract.CompanyID if contract else None,
    )
    return assignment


def recompute_current_users(db: Session, license_id: str) -> License:
    with _unit_of_work(db, "recompute_current_users"):
        license = _locked(db, select(License).where(License.LicenseID == license_id, License.live()))
        if not license:
            raise NotFoundError("License not found")
        previous = license.CurrentUsers
        _sync_current_users(db, license)
        if license.CurrentUsers > license.MaxUsers:
            raise ConflictError("Active assignments exceed the license seat limit")

    if previous != license.CurrentUsers:
        LOGGER.warning(
            "Seat counter drift corrected event=seat_counter_drift license_id=%s stored=%s counted=%s",
            license_id,
            previous,
            license.CurrentUsers,
        )
    return license
