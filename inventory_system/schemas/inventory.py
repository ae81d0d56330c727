from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


DeviceStatusValue = Literal["available", "assigned", "maintenance", "retired", "lost", "damaged"]
LicenseStatusValue = Literal["active", "expired", "suspended", "cancelled"]
ContractStatusValue = Literal["active", "suspended", "cancelled", "expired", "assigned"]


class CompanyUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None
    address: Optional[str] = None
    contactEmail: Optional[str] = None
    contactPhone: Optional[str] = None
    status: Optional[Literal["active", "inactive"]] = None


class EmployeeUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    companyId: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    email: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    employeeNumber: Optional[str] = None
    startDate: Optional[date] = None
    status: Optional[Literal["active", "inactive", "terminated"]] = None


class DeviceUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    companyId: Optional[str] = None
    name: Optional[str] = None
    type: Optional[
        Literal["laptop", "desktop", "monitor", "phone", "tablet", "printer", "keyboard", "mouse", "headset", "dock", "other"]
    ] = None
    brand: Optional[str] = None
    model: Optional[str] = None
    serialNumber: Optional[str] = None
    purchaseDate: Optional[date] = None
    warrantyExpiry: Optional[date] = None
    cost: Optional[float] = None
    status: Optional[DeviceStatusValue] = None
    condition: Optional[Literal["excellent", "good", "fair", "poor"]] = None
    location: Optional[str] = None
    notes: Optional[str] = None


class LicenseUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    companyId: Optional[str] = None
    name: Optional[str] = None
    type: Optional[Literal["software", "subscription", "perpetual", "volume", "oem"]] = None
    vendor: Optional[str] = None
    version: Optional[str] = None
    licenseKey: Optional[str] = None
    purchaseDate: Optional[date] = None
    expiryDate: Optional[date] = None
    cost: Optional[float] = None
    maxUsers: Optional[int] = Field(default=None, ge=0)
    status: Optional[LicenseStatusValue] = None
    notes: Optional[str] = None


class PhoneContractUpsert(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    companyId: Optional[str] = None
    phoneNumber: Optional[str] = None
    carrier: Optional[str] = None
    plan: Optional[str] = None
    monthlyFee: Optional[float] = None
    contractStartDate: Optional[date] = None
    contractEndDate: Optional[date] = None
    status: Optional[ContractStatusValue] = None
    dataLimit: Optional[str] = None
    notes: Optional[str] = None
