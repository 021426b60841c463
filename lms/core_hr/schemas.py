"""Core HR Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update  → request bodies (write)
  - *Response / *Detail → response bodies (read)
  - *Summary            → compact read representations
"""


import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from lms.common.constants import UserRole

PHONE_PATTERN = r"^\+?[0-9]{7,15}$"


# ═════════════════════════════════════════════════════════════════════
# Department
# ═════════════════════════════════════════════════════════════════════


class DepartmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    manager_id: Optional[uuid.UUID] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class DepartmentUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    manager_id: Optional[uuid.UUID] = None


class DepartmentResponse(BaseModel):
    """Full department representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: Optional[str] = None
    manager_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime

    # Computed — filled by service
    employee_count: int = 0


# ═════════════════════════════════════════════════════════════════════
# Employee — write
# ═════════════════════════════════════════════════════════════════════


class EmployeeCreate(BaseModel):
    """Payload for creating an employee.

    ``employee_id`` is generated (``EMP-YYYYMMDD-XXXXXX``) when omitted.
    """

    employee_id: Optional[str] = Field(default=None, min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    department_id: uuid.UUID
    role: UserRole = UserRole.employee
    joining_date: date
    manager_id: Optional[uuid.UUID] = None
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    address: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.strip().lower()


class EmployeeUpdate(BaseModel):
    """Partial update — only fields explicitly sent are applied."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    department_id: Optional[uuid.UUID] = None
    role: Optional[UserRole] = None
    manager_id: Optional[uuid.UUID] = None
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    address: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().lower() if value else value


# ═════════════════════════════════════════════════════════════════════
# Employee — read
# ═════════════════════════════════════════════════════════════════════


class EmployeeSummary(BaseModel):
    """Compact employee representation for lists."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: str
    name: str
    email: str
    department_id: uuid.UUID
    role: UserRole
    manager_id: Optional[uuid.UUID] = None
    is_active: bool


class EmployeeDetail(EmployeeSummary):
    """Full employee record."""

    joining_date: date
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    # Enriched — filled by service
    department_name: Optional[str] = None
