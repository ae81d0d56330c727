from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    and_,
)
from sqlalchemy.orm import relationship

from db.base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class LifecycleState(str, enum.Enum):
    ACTIVE = "Active"
    DELETED = "Deleted"


class DeviceType(str, enum.Enum):
    LAPTOP = "laptop"
    DESKTOP = "desktop"
    MONITOR = "monitor"
    PHONE = "phone"
    TABLET = "tablet"
    PRINTER = "printer"
    KEYBOARD = "keyboard"
    MOUSE = "mouse"
    HEADSET = "headset"
    DOCK = "dock"
    OTHER = "other"


class DeviceStatus(str, enum.Enum):
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    MAINTENANCE = "maintenance"
    RETIRED = "retired"
    LOST = "lost"
    DAMAGED = "damaged"


class DeviceCondition(str, enum.Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class LicenseType(str, enum.Enum):
    SOFTWARE = "software"
    SUBSCRIPTION = "subscription"
    PERPETUAL = "perpetual"
    VOLUME = "volume"
    OEM = "oem"


class LicenseStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class ContractStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    ASSIGNED = "assigned"


class EmployeeStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TERMINATED = "terminated"


class AssignmentStatus(str, enum.Enum):
    ACTIVE = "active"
    RETURNED = "returned"
    REVOKED = "revoked"
    LOST = "lost"


TERMINAL_ASSIGNMENT_STATES = {
    AssignmentStatus.RETURNED.value,
    AssignmentStatus.REVOKED.value,
    AssignmentStatus.LOST.value,
}


class NotificationType(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


class NotificationCategory(str, enum.Enum):
    DEVICE = "device"
    LICENSE = "license"
    EMPLOYEE = "employee"
    SYSTEM = "system"
    EXPIRY = "expiry"
    ASSIGNMENT = "assignment"
    MAINTENANCE = "maintenance"


class SoftDeleteMixin:
    """Lifecycle state for soft-deletable rows.

    A row is either ``Active`` or ``Deleted``; ``DeletedAt`` is only set in the
    ``Deleted`` state. Queries must filter with :meth:`live` explicitly.
    """

    RecordState = Column(String(10), nullable=False, default=LifecycleState.ACTIVE.value)
    DeletedAt = Column(DateTime)

    @property
    def is_deleted(self) -> bool:
        return self.RecordState == LifecycleState.DELETED.value

    def mark_deleted(self, at: datetime | None = None) -> None:
        self.RecordState = LifecycleState.DELETED.value
        self.DeletedAt = at or datetime.now()

    @classmethod
    def live(cls):
        return cls.RecordState == LifecycleState.ACTIVE.value


class Company(SoftDeleteMixin, Base):
    __tablename__ = "Companies"

    CompanyID = Column(String(36), primary_key=True, default=_new_id)
    Name = Column(String(255), nullable=False)
    Code = Column(String(50), nullable=False, unique=True)
    Description = Column(Text)
    Address = Column(String(500))
    ContactEmail = Column(String(255))
    ContactPhone = Column(String(50))
    Status = Column(String(20), default="active")
    CreatedAt = Column(DateTime, default=datetime.now)
    UpdatedAt = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    Employees = relationship("Employee", back_populates="Company")
    Devices = relationship("Device", back_populates="Company")
    Licenses = relationship("License", back_populates="Company")
    PhoneContracts = relationship("PhoneContract", back_populates="Company")


class Employee(SoftDeleteMixin, Base):
    __tablename__ = "Employees"

    EmployeeID = Column(String(36), primary_key=True, default=_new_id)
    CompanyID = Column(String(36), ForeignKey("Companies.CompanyID"), nullable=False)
    FirstName = Column(String(100), nullable=False)
    LastName = Column(String(100), nullable=False)
    Email = Column(String(255), nullable=False)
    Department = Column(String(100))
    Position = Column(String(100))
    EmployeeNumber = Column(String(50))
    StartDate = Column(Date)
    Status = Column(String(20), default=EmployeeStatus.ACTIVE.value)
    CreatedAt = Column(DateTime, default=datetime.now)
    UpdatedAt = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    Company = relationship("Company", back_populates="Employees")
    DeviceAssignments = relationship("DeviceAssignment", back_populates="Employee")
    LicenseAssignments = relationship("LicenseAssignment", back_populates="Employee")
    PhoneAssignments = relationship("PhoneAssignment", back_populates="Employee")


class Device(SoftDeleteMixin, Base):
    __tablename__ = "Devices"

    DeviceID = Column(String(36), primary_key=True, default=_new_id)
    CompanyID = Column(String(36), ForeignKey("Companies.CompanyID"), nullable=False)
    Name = Column(String(255), nullable=False)
    Type = Column(String(50), nullable=False)
    Brand = Column(String(100))
    Model = Column(String(100))
    SerialNumber = Column(String(100))
    PurchaseDate = Column(Date)
    WarrantyExpiry = Column(Date)
    Cost = Column(Numeric(10, 2))
    Status = Column(String(20), nullable=False, default=DeviceStatus.AVAILABLE.value)
    Condition = Column(String(20), default=DeviceCondition.GOOD.value)
    Location = Column(String(255))
    Notes = Column(Text)
    CreatedAt = Column(DateTime, default=datetime.now)
    UpdatedAt = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    Company = relationship("Company", back_populates="Devices")
    Assignments = relationship("DeviceAssignment", back_populates="Device")

    @property
    def is_phone(self) -> bool:
        return self.Type == DeviceType.PHONE.value


class License(SoftDeleteMixin, Base):
    __tablename__ = "Licenses"

    LicenseID = Column(String(36), primary_key=True, default=_new_id)
    CompanyID = Column(String(36), ForeignKey("Companies.CompanyID"), nullable=False)
    Name = Column(String(255), nullable=False)
    Type = Column(String(50), nullable=False, default=LicenseType.SOFTWARE.value)
    Vendor = Column(String(100))
    Version = Column(String(50))
    LicenseKey = Column(String(500))
    PurchaseDate = Column(Date)
    ExpiryDate = Column(Date)
    Cost = Column(Numeric(10, 2))
    MaxUsers = Column(Integer, nullable=False, default=0)
    CurrentUsers = Column(Integer, nullable=False, default=0)
    Status = Column(String(20), nullable=False, default=LicenseStatus.ACTIVE.value)
    Notes = Column(Text)
    CreatedAt = Column(DateTime, default=datetime.now)
    UpdatedAt = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    Company = relationship("Company", back_populates="Licenses")
    Assignments = relationship("LicenseAssignment", back_populates="License")


class PhoneContract(SoftDeleteMixin, Base):
    __tablename__ = "PhoneContracts"

    PhoneContractID = Column(String(36), primary_key=True, default=_new_id)
    CompanyID = Column(String(36), ForeignKey("Companies.CompanyID"), nullable=False)
    PhoneNumber = Column(String(50), nullable=False)
    Carrier = Column(String(100), nullable=False)
    Plan = Column(String(100))
    MonthlyFee = Column(Numeric(10, 2))
    ContractStartDate = Column(Date)
    ContractEndDate = Column(Date)
    Status = Column(String(20), nullable=False, default=ContractStatus.ACTIVE.value)
    DataLimit = Column(String(50))
    Notes = Column(Text)
    CreatedAt = Column(DateTime, default=datetime.now)
    UpdatedAt = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    Company = relationship("Company", back_populates="PhoneContracts")
    Assignments = relationship("PhoneAssignment", back_populates="PhoneContract")


class DeviceAssignment(Base):
    __tablename__ = "DeviceAssignments"

    AssignmentID = Column(String(36), primary_key=True, default=_new_id)
    DeviceID = Column(String(36), ForeignKey("Devices.DeviceID"), nullable=False, index=True)
    EmployeeID = Column(String(36), ForeignKey("Employees.EmployeeID"), nullable=False, index=True)
    AssignedDate = Column(DateTime, nullable=False, default=datetime.now)
    ReturnDate = Column(DateTime)
    Status = Column(String(20), nullable=False, default=AssignmentStatus.ACTIVE.value, index=True)
    Notes = Column(Text)
    AssignedBy = Column(String(255), nullable=False)
    ReturnedBy = Column(String(255))
    CreatedAt = Column(DateTime, default=datetime.now)
    UpdatedAt = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    Device = relationship("Device", back_populates="Assignments")
    Employee = relationship("Employee", back_populates="DeviceAssignments")


class LicenseAssignment(Base):
    __tablename__ = "LicenseAssignments"

    AssignmentID = Column(String(36), primary_key=True, default=_new_id)
    LicenseID = Column(String(36), ForeignKey("Licenses.LicenseID"), nullable=False, index=True)
    EmployeeID = Column(String(36), ForeignKey("Employees.EmployeeID"), nullable=False, index=True)
    AssignedDate = Column(DateTime, nullable=False, default=datetime.now)
    RevokedDate = Column(DateTime)
    Status = Column(String(20), nullable=False, default=AssignmentStatus.ACTIVE.value, index=True)
    Notes = Column(Text)
    AssignedBy = Column(String(255), nullable=False)
    RevokedBy = Column(String(255))
    CreatedAt = Column(DateTime, default=datetime.now)
    UpdatedAt = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    License = relationship("License", back_populates="Assignments")
    Employee = relationship("Employee", back_populates="LicenseAssignments")


class PhoneAssignment(Base):
    __tablename__ = "PhoneAssignments"

    AssignmentID = Column(String(36), primary_key=True, default=_new_id)
    PhoneContractID = Column(String(36), ForeignKey("PhoneContracts.PhoneContractID"), nullable=False, index=True)
    EmployeeID = Column(String(36), ForeignKey("Employees.EmployeeID"), nullable=False, index=True)
    AssignedDate = Column(DateTime, nullable=False, default=datetime.now)
    ReturnDate = Column(DateTime)
    Status = Column(String(20), nullable=False, default=AssignmentStatus.ACTIVE.value, index=True)
    Notes = Column(Text)
    AssignedBy = Column(String(255), nullable=False)
    ReturnedBy = Column(String(255))
    CreatedAt = Column(DateTime, default=datetime.now)
    UpdatedAt = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    PhoneContract = relationship("PhoneContract", back_populates="Assignments")
    Employee = relationship("Employee", back_populates="PhoneAssignments")


class Notification(Base):
    __tablename__ = "Notifications"

    NotificationID = Column(String(36), primary_key=True, default=_new_id)
    Title = Column(String(255), nullable=False)
    Message = Column(Text, nullable=False)
    Type = Column(String(20), nullable=False, default=NotificationType.INFO.value)
    Category = Column(String(20), nullable=False, default=NotificationCategory.SYSTEM.value)
    EntityID = Column(String(36), index=True)
    EntityType = Column(String(50))
    CompanyID = Column(String(36))
    IsRead = Column(Boolean, nullable=False, default=False)
    CreatedAt = Column(DateTime, default=datetime.now)
    ReadAt = Column(DateTime)


# Storage backstops for the exclusivity rules; the assignment service checks first.
_ACTIVE = AssignmentStatus.ACTIVE.value

Index(
    "UX_DeviceAssignments_ActiveDevice",
    DeviceAssignment.DeviceID,
    unique=True,
    sqlite_where=DeviceAssignment.Status == _ACTIVE,
    postgresql_where=DeviceAssignment.Status == _ACTIVE,
    mssql_where=DeviceAssignment.Status == _ACTIVE,
)
Index(
    "UX_PhoneAssignments_ActiveContract",
    PhoneAssignment.PhoneContractID,
    unique=True,
    sqlite_where=PhoneAssignment.Status == _ACTIVE,
    postgresql_where=PhoneAssignment.Status == _ACTIVE,
    mssql_where=PhoneAssignment.Status == _ACTIVE,
)
Index(
    "UX_LicenseAssignments_ActiveHolder",
    LicenseAssignment.LicenseID,
    LicenseAssignment.EmployeeID,
    unique=True,
    sqlite_where=LicenseAssignment.Status == _ACTIVE,
    postgresql_where=LicenseAssignment.Status == _ACTIVE,
    mssql_where=LicenseAssignment.Status == _ACTIVE,
)
License.__table__.append_constraint(
    CheckConstraint(
        and_(License.CurrentUsers >= 0, License.CurrentUsers <= License.MaxUsers),
        name="CK_Licenses_CurrentUsers",
    )
)
