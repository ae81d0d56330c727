import logging
import os
from contextlib import asynccontextmanager
from datetime import date

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.orm import Session

try:
    from dotenv import load_dotenv

    load_dotenv()
except Exception:
    pass

from db.deps import get_inventory_db
from db.session import init_schema
from schemas.assignments import (
    AssignDeviceRequest,
    AssignLicenseRequest,
    AssignPhoneRequest,
    UnassignDeviceRequest,
    UnassignLicenseRequest,
)
from schemas.inventory import CompanyUpsert, DeviceUpsert, EmployeeUpsert, LicenseUpsert, PhoneContractUpsert
from services import inventory_service
from services import dashboard_service
from services.activity_service import (
    get_recent_activity,
    list_device_assignments,
    list_license_assignments,
    list_phone_assignments,
    serialize_device_assignment,
    serialize_license_assignment,
    serialize_phone_assignment,
)
from services.assignment_service import (
    AssignmentError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    StorageFailureError,
    assign_device,
    assign_license,
    assign_phone_contract,
    recompute_current_users,
    return_device,
    return_phone_contract,
    revoke_license,
    unassign_device_by_device_id,
    unassign_license_by_license_id,
)
from services.notification_service import (
    list_pending_notifications,
    mark_notification_read,
    run_license_expiry_sweep,
    serialize_notification,
)

logging.basicConfig(
    level=(os.environ.get("LOG_LEVEL") or "INFO").strip().upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
LOGGER = logging.getLogger("inventory_system.app")

DEFAULT_ACTOR = "system"


def _env_flag(name: str, default: str = "false") -> bool:
    return str(os.environ.get(name, default)).strip().lower() in {"1", "true", "yes", "on"}


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if _env_flag("INVENTORY_DB_CREATE_SCHEMA"):
        init_schema()
        LOGGER.info("Schema ready event=schema_created")
    yield


app = FastAPI(lifespan=lifespan)


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:3000,http://localhost:3000",
)
_CORS_ALLOW_CREDENTIALS = _env_flag("CORS_ALLOW_CREDENTIALS", "true")
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials; force safe behavior.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"]
)


def _engine_error(exc: AssignmentError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, InvalidStateError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, StorageFailureError):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _actor(x_actor: str | None) -> str:
    return (x_actor or "").strip() or DEFAULT_ACTOR


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_inventory_db)):
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ok"}
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc


# Assignments

@app.post("/api/assignments/assign-device", status_code=201)
@app.post("/api/assignments/device", status_code=201)
def create_device_assignment(payload: AssignDeviceRequest, db: Session = Depends(get_inventory_db)):
    try:
        assignment = assign_device(db, payload.deviceId, payload.employeeId, payload.assignedBy, payload.notes)
    except AssignmentError as exc:
        raise _engine_error(exc) from exc
    return serialize_device_assignment(assignment)


@app.post("/api/assignments/assign-license", status_code=201)
@app.post("/api/assignments/license", status_code=201)
def create_license_assignment(payload: AssignLicenseRequest, db: Session = Depends(get_inventory_db)):
    try:
        assignment = assign_license(db, payload.licenseId, payload.employeeId, payload.assignedBy, payload.notes)
    except AssignmentError as exc:
        raise _engine_error(exc) from exc
    return serialize_license_assignment(assignment)


@app.post("/api/assignments/assign-phone", status_code=201)
@app.post("/api/assignments/phone", status_code=201)
def create_phone_assignment(payload: AssignPhoneRequest, db: Session = Depends(get_inventory_db)):
    try:
        assignment = assign_phone_contract(
            db, payload.phoneContractId, payload.employeeId, payload.assignedBy, payload.notes
        )
    except AssignmentError as exc:
        raise _engine_error(exc) from exc
    return serialize_phone_assignment(assignment)


@app.put("/api/assignments/device/{assignment_id}/return")
def return_device_assignment(
    assignment_id: str,
    db: Session = Depends(get_inventory_db),
    x_actor: str | None = Header(None, alias="X-Actor"),
):
    try:
        assignment = return_device(db, assignment_id, _actor(x_actor))
    except AssignmentError as exc:
        raise _engine_error(exc) from exc
    return serialize_device_assignment(assignment)


@app.post("/api/assignments/device/unassign")
def unassign_device(payload: UnassignDeviceRequest, db: Session = Depends(get_inventory_db)):
    try:
        assignment = unassign_device_by_device_id(db, payload.deviceId, payload.returnedBy, payload.notes)
    except AssignmentError as exc:
        raise _engine_error(exc) from exc
    return serialize_device_assignment(assignment)


@app.put("/api/assignments/license/{assignment_id}/revoke")
def revoke_license_assignment(
    assignment_id: str,
    db: Session = Depends(get_inventory_db),
    x_actor: str | None = Header(None, alias="X-Actor"),
):
    try:
        assignment = revoke_license(db, assignment_id, _actor(x_actor))
    except AssignmentError as exc:
        raise _engine_error(exc) from exc
    return serialize_license_assignment(assignment)


@app.post("/api/assignments/license/unassign")
def unassign_license(payload: UnassignLicenseRequest, db: Session = Depends(get_inventory_db)):
    try:
        assignments = unassign_license_by_license_id(db, payload.licenseId, payload.returnedBy)
    except AssignmentError as exc:
        raise _engine_error(exc) from exc
    return [serialize_license_assignment(assignment) for assignment in assignments]


@app.put("/api/assignments/phone/{assignment_id}/return")
def return_phone_assignment(
    assignment_id: str,
    db: Session = Depends(get_inventory_db),
    x_actor: str | None = Header(None, alias="X-Actor"),
):
    try:
        assignment = return_phone_contract(db, assignment_id, _actor(x_actor))
    except AssignmentError as exc:
        raise _engine_error(exc) from exc
    return serialize_phone_assignment(assignment)


@app.get("/api/assignments/activity")
def get_activity(company_id: str | None = Query(None, alias="companyId"), db: Session = Depends(get_inventory_db)):
    return get_recent_activity(db, company_id)


@app.get("/api/assignments/devices")
def get_device_assignments(company_id: str | None = Query(None, alias="companyId"), db: Session = Depends(get_inventory_db)):
    return [serialize_device_assignment(item, include_relations=True) for item in list_device_assignments(db, company_id)]


@app.get("/api/assignments/licenses")
def get_license_assignments(company_id: str | None = Query(None, alias="companyId"), db: Session = Depends(get_inventory_db)):
    return [serialize_license_assignment(item, include_relations=True) for item in list_license_assignments(db, company_id)]


@app.get("/api/assignments/phones")
def get_phone_assignments(company_id: str | None = Query(None, alias="companyId"), db: Session = Depends(get_inventory_db)):
    return [serialize_phone_assignment(item, include_relations=True) for item in list_phone_assignments(db, company_id)]


# Companies

@app.post("/api/companies", status_code=201)
def create_company(payload: CompanyUpsert, db: Session = Depends(get_inventory_db)):
    try:
        company = inventory_service.create_company(db, payload.model_dump(exclude_unset=True))
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return inventory_service.serialize_company(company)


@app.get("/api/companies")
def get_companies(db: Session = Depends(get_inventory_db)):
    return [inventory_service.serialize_company(company) for company in inventory_service.list_companies(db)]


@app.get("/api/companies/{company_id}")
def get_company(company_id: str, db: Session = Depends(get_inventory_db)):
    company = inventory_service.get_company(db, company_id)
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    return inventory_service.serialize_company(company)


@app.put("/api/companies/{company_id}")
def update_company(company_id: str, payload: CompanyUpsert, db: Session = Depends(get_inventory_db)):
    try:
        company = inventory_service.update_company(db, company_id, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    return inventory_service.serialize_company(company)


@app.delete("/api/companies/{company_id}")
def delete_company(company_id: str, db: Session = Depends(get_inventory_db)):
    if not inventory_service.delete_company(db, company_id):
        raise HTTPException(status_code=404, detail="Company not found")
    return {"message": "Deleted"}


# Employees

@app.post("/api/employees", status_code=201)
def create_employee(payload: EmployeeUpsert, db: Session = Depends(get_inventory_db)):
    try:
        employee = inventory_service.create_employee(db, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return inventory_service.serialize_employee(employee)


@app.get("/api/employees")
def get_employees(
    company_id: str | None = Query(None, alias="companyId"),
    search: str | None = Query(None),
    department: list[str] | None = Query(None),
    status: list[str] | None = Query(None),
    db: Session = Depends(get_inventory_db),
):
    employees = inventory_service.list_employees(
        db, company_id, search=search, departments=department, statuses=status
    )
    return [inventory_service.serialize_employee(item) for item in employees]


@app.get("/api/employees/{employee_id}")
def get_employee(employee_id: str, db: Session = Depends(get_inventory_db)):
    employee = inventory_service.get_employee(db, employee_id)
    if not employee:
        raise HTTPException(status_code=404, detail="Employee not found")
    return inventory_service.serialize_employee(employee)


@app.put("/api/employees/{employee_id}")
def update_employee(employee_id: str, payload: EmployeeUpsert, db: Session = Depends(get_inventory_db)):
    try:
        employee = inventory_service.update_employee(db, employee_id, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not employee:
        raise HTTPException(status_code=404, detail="Employee not found")
    return inventory_service.serialize_employee(employee)


@app.delete("/api/employees/{employee_id}")
def delete_employee(employee_id: str, db: Session = Depends(get_inventory_db)):
    try:
        deleted = inventory_service.delete_employee(db, employee_id)
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Employee not found")
    return {"message": "Deleted"}


# Devices

@app.post("/api/devices", status_code=201)
def create_device(payload: DeviceUpsert, db: Session = Depends(get_inventory_db)):
    try:
        device = inventory_service.create_device(db, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return inventory_service.serialize_device(device)


@app.get("/api/devices")
def get_devices(
    company_id: str | None = Query(None, alias="companyId"),
    search: str | None = Query(None),
    device_type: list[str] | None = Query(None, alias="type"),
    status: list[str] | None = Query(None),
    condition: list[str] | None = Query(None),
    assigned_to: str | None = Query(None, alias="assignedTo"),
    db: Session = Depends(get_inventory_db),
):
    devices = inventory_service.list_devices(
        db,
        company_id,
        search=search,
        types=device_type,
        statuses=status,
        conditions=condition,
        assigned_to=assigned_to,
    )
    return [inventory_service.serialize_device(item) for item in devices]


@app.get("/api/devices/available")
def get_available_devices(
    company_id: str | None = Query(None, alias="companyId"),
    device_type: str | None = Query(None, alias="type"),
    limit: int | None = Query(None, ge=1, le=500),
    db: Session = Depends(get_inventory_db),
):
    devices = inventory_service.list_available_devices(db, company_id, device_type, limit)
    return [inventory_service.serialize_device(item) for item in devices]


@app.get("/api/devices/{device_id}")
def get_device(device_id: str, db: Session = Depends(get_inventory_db)):
    device = inventory_service.get_device(db, device_id)
    if not device:
        raise HTTPException(status_code=404, detail="Device not found")
    return inventory_service.serialize_device(device)


@app.get("/api/devices/{device_id}/history")
def get_device_history(device_id: str, db: Session = Depends(get_inventory_db)):
    history = inventory_service.get_device_history(db, device_id)
    if history is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return [serialize_device_assignment(item, include_relations=True) for item in history]


@app.put("/api/devices/{device_id}")
def update_device(device_id: str, payload: DeviceUpsert, db: Session = Depends(get_inventory_db)):
    try:
        device = inventory_service.update_device(db, device_id, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not device:
        raise HTTPException(status_code=404, detail="Device not found")
    return inventory_service.serialize_device(device)


@app.delete("/api/devices/{device_id}")
def delete_device(device_id: str, db: Session = Depends(get_inventory_db)):
    try:
        deleted = inventory_service.delete_device(db, device_id)
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Device not found")
    return {"message": "Deleted"}


# Licenses

@app.post("/api/licenses", status_code=201)
def create_license(payload: LicenseUpsert, db: Session = Depends(get_inventory_db)):
    try:
        license = inventory_service.create_license(db, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return inventory_service.serialize_license(license, 0)


@app.get("/api/licenses")
def get_licenses(
    company_id: str | None = Query(None, alias="companyId"),
    search: str | None = Query(None),
    vendor: str | None = Query(None),
    license_type: list[str] | None = Query(None, alias="type"),
    status: list[str] | None = Query(None),
    expiring_before: date | None = Query(None, alias="expiringBefore"),
    db: Session = Depends(get_inventory_db),
):
    return inventory_service.list_licenses(
        db,
        company_id,
        search=search,
        vendor=vendor,
        types=license_type,
        statuses=status,
        expiring_before=expiring_before,
    )


@app.get("/api/licenses/available")
def get_available_licenses(
    company_id: str | None = Query(None, alias="companyId"),
    limit: int | None = Query(None, ge=1, le=500),
    db: Session = Depends(get_inventory_db),
):
    return inventory_service.list_available_licenses(db, company_id, limit)


@app.get("/api/licenses/{license_id}")
def get_license(license_id: str, db: Session = Depends(get_inventory_db)):
    license = inventory_service.get_license(db, license_id)
    if not license:
        raise HTTPException(status_code=404, detail="License not found")
    active_count = inventory_service.count_active_license_assignments(db, license_id)
    return inventory_service.serialize_license(license, active_count)


@app.get("/api/licenses/{license_id}/assignments")
def get_license_overview(license_id: str, db: Session = Depends(get_inventory_db)):
    overview = inventory_service.license_assignment_overview(db, license_id)
    if overview is None:
        raise HTTPException(status_code=404, detail="License not found")
    return overview


@app.post("/api/licenses/{license_id}/recompute-users")
def recompute_license_users(license_id: str, db: Session = Depends(get_inventory_db)):
    try:
        license = recompute_current_users(db, license_id)
    except AssignmentError as exc:
        raise _engine_error(exc) from exc
    return inventory_service.serialize_license(license)


@app.put("/api/licenses/{license_id}")
def update_license(license_id: str, payload: LicenseUpsert, db: Session = Depends(get_inventory_db)):
    try:
        license = inventory_service.update_license(db, license_id, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not license:
        raise HTTPException(status_code=404, detail="License not found")
    active_count = inventory_service.count_active_license_assignments(db, license_id)
    return inventory_service.serialize_license(license, active_count)


@app.delete("/api/licenses/{license_id}")
def delete_license(license_id: str, db: Session = Depends(get_inventory_db)):
    try:
        deleted = inventory_service.delete_license(db, license_id)
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="License not found")
    return {"message": "Deleted"}


# Phone contracts

@app.post("/api/phone-contracts", status_code=201)
def create_phone_contract(payload: PhoneContractUpsert, db: Session = Depends(get_inventory_db)):
    try:
        contract = inventory_service.create_phone_contract(db, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return inventory_service.serialize_phone_contract(contract)


@app.get("/api/phone-contracts")
def get_phone_contracts(
    company_id: str | None = Query(None, alias="companyId"),
    search: str | None = Query(None),
    carrier: str | None = Query(None),
    status: list[str] | None = Query(None),
    expiring_before: date | None = Query(None, alias="expiringBefore"),
    db: Session = Depends(get_inventory_db),
):
    contracts = inventory_service.list_phone_contracts(
        db, company_id, search=search, carrier=carrier, statuses=status, expiring_before=expiring_before
    )
    return [inventory_service.serialize_phone_contract(item) for item in contracts]


@app.get("/api/phone-contracts/available")
def get_available_phone_contracts(
    company_id: str | None = Query(None, alias="companyId"), db: Session = Depends(get_inventory_db)
):
    return [
        inventory_service.serialize_phone_contract(item)
        for item in inventory_service.list_available_phone_contracts(db, company_id)
    ]


@app.get("/api/phone-contracts/{contract_id}")
def get_phone_contract(contract_id: str, db: Session = Depends(get_inventory_db)):
    contract = inventory_service.get_phone_contract(db, contract_id)
    if not contract:
        raise HTTPException(status_code=404, detail="Phone contract not found")
    return inventory_service.serialize_phone_contract(contract)


@app.put("/api/phone-contracts/{contract_id}")
def update_phone_contract(contract_id: str, payload: PhoneContractUpsert, db: Session = Depends(get_inventory_db)):
    try:
        contract = inventory_service.update_phone_contract(db, contract_id, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not contract:
        raise HTTPException(status_code=404, detail="Phone contract not found")
    return inventory_service.serialize_phone_contract(contract)


@app.delete("/api/phone-contracts/{contract_id}")
def delete_phone_contract(contract_id: str, db: Session = Depends(get_inventory_db)):
    try:
        deleted = inventory_service.delete_phone_contract(db, contract_id)
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Phone contract not found")
    return {"message": "Deleted"}


# Dashboard

@app.get("/api/dashboard/stats")
def get_dashboard_stats(company_id: str | None = Query(None, alias="companyId"), db: Session = Depends(get_inventory_db)):
    return dashboard_service.get_dashboard_stats(db, company_id)


@app.get("/api/dashboard/resource-utilization")
def get_resource_utilization(
    company_id: str | None = Query(None, alias="companyId"), db: Session = Depends(get_inventory_db)
):
    return dashboard_service.get_resource_utilization(db, company_id)


@app.get("/api/dashboard/alerts")
def get_dashboard_alerts(company_id: str | None = Query(None, alias="companyId"), db: Session = Depends(get_inventory_db)):
    return dashboard_service.get_dashboard_alerts(db, company_id)


@app.get("/api/dashboard/available-devices")
def get_dashboard_available_devices(
    company_id: str | None = Query(None, alias="companyId"),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_inventory_db),
):
    return [
        {
            "id": device.DeviceID,
            "name": device.Name,
            "type": device.Type,
            "brand": device.Brand,
            "model": device.Model,
            "serialNumber": device.SerialNumber,
            "condition": device.Condition,
        }
        for device in inventory_service.list_available_devices(db, company_id, limit=limit)
    ]


@app.get("/api/dashboard/available-licenses")
def get_dashboard_available_licenses(
    company_id: str | None = Query(None, alias="companyId"),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_inventory_db),
):
    return inventory_service.list_available_licenses(db, company_id, limit)


# Notifications

@app.post("/api/notifications/run")
def run_notifications(db: Session = Depends(get_inventory_db)):
    return run_license_expiry_sweep(db)


@app.get("/api/notifications/pending")
def get_pending_notifications(company_id: str | None = Query(None, alias="companyId"), db: Session = Depends(get_inventory_db)):
    return [serialize_notification(n) for n in list_pending_notifications(db, company_id)]


@app.post("/api/notifications/{notification_id}/read")
def read_notification(notification_id: str, db: Session = Depends(get_inventory_db)):
    notification = mark_notification_read(db, notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return serialize_notification(notification)
