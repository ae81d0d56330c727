from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AssignDeviceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    deviceId: str = Field(min_length=1, max_length=36)
    employeeId: str = Field(min_length=1, max_length=36)
    assignedBy: str = Field(min_length=1, max_length=255)
    notes: Optional[str] = None


class AssignLicenseRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    licenseId: str = Field(min_length=1, max_length=36)
    employeeId: str = Field(min_length=1, max_length=36)
    assignedBy: str = Field(min_length=1, max_length=255)
    notes: Optional[str] = None


class AssignPhoneRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    phoneContractId: str = Field(min_length=1, max_length=36)
    employeeId: str = Field(min_length=1, max_length=36)
    assignedBy: str = Field(min_length=1, max_length=255)
    notes: Optional[str] = None


class UnassignDeviceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    deviceId: str = Field(min_length=1, max_length=36)
    returnedBy: str = Field(min_length=1, max_length=255)
    notes: Optional[str] = None


class UnassignLicenseRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    licenseId: str = Field(min_length=1, max_length=36)
    returnedBy: str = Field(min_length=1, max_length=255)
