"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Response / *Out    → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lms.common.constants import LeaveStatus


# ═════════════════════════════════════════════════════════════════════
# Leave Type
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    max_days_per_year: int = Field(default=0, ge=0)
    carry_forward_allowed: bool = False
    max_carry_forward_days: int = Field(default=0, ge=0)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class LeaveTypeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    description: Optional[str] = None
    max_days_per_year: Optional[int] = Field(default=None, ge=0)
    carry_forward_allowed: Optional[bool] = None
    max_carry_forward_days: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class LeaveTypeOut(BaseModel):
    """Full leave type representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: Optional[str] = None
    max_days_per_year: int
    carry_forward_allowed: bool
    max_carry_forward_days: int
    is_active: bool = True
    created_at: datetime
    updated_at: datetime


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    """Balance for a single leave type with the derived available field."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    leave_type_id: uuid.UUID
    leave_type_name: Optional[str] = None
    leave_type_description: Optional[str] = None
    year: int
    allocated_days: int
    used_days: int
    carried_forward_days: int
    available_days: int


class EmployeeBalancesOut(BaseModel):
    """Snapshot of every balance row an employee holds for one year."""

    employee_id: uuid.UUID
    employee_name: str
    year: int
    leave_balances: list[LeaveBalanceOut]


class LeaveBalanceUpsert(BaseModel):
    """HR payload: set any of allocated / used / carried-forward for one leave type."""

    leave_type_id: uuid.UUID
    year: Optional[int] = Field(
        default=None, description="Defaults to the current year",
    )
    allocated_days: Optional[int] = Field(default=None, ge=0)
    used_days: Optional[int] = Field(default=None, ge=0)
    carried_forward_days: Optional[int] = Field(default=None, ge=0)


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Create
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for applying a leave request.

    ``employee_id`` defaults to the caller; applying on someone else's
    behalf requires the ``create_any_requests`` capability.
    """

    employee_id: Optional[uuid.UUID] = None
    leave_type_id: uuid.UUID
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    reason: str = Field(..., min_length=1, max_length=1000, description="Reason for leave")

    @field_validator("reason")
    @classmethod
    def _strip_reason(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value


class LeaveRequestCreated(BaseModel):
    """Response body for a successfully admitted request."""

    request_id: uuid.UUID
    total_days: int
    status: LeaveStatus


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Actions
# ═════════════════════════════════════════════════════════════════════


class LeaveApproveRequest(BaseModel):
    """Payload for approving a leave request; approver defaults to the caller."""

    approved_by: Optional[uuid.UUID] = None
    comments: Optional[str] = Field(None, max_length=1000)


class LeaveRejectRequest(BaseModel):
    """Payload for rejecting a leave request."""

    rejection_reason: str = Field(..., max_length=1000)
    comments: Optional[str] = Field(None, max_length=1000)

    @field_validator("rejection_reason")
    @classmethod
    def _strip_rejection_reason(cls, value: str) -> str:
        # Blank reasons reach the service, which raises the domain error.
        return value.strip()


class LeaveCancelRequest(BaseModel):
    """Optional payload for cancelling a leave request."""

    comments: Optional[str] = Field(None, max_length=1000)


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Response
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestOut(BaseModel):
    """Full leave request representation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    leave_type_id: uuid.UUID
    start_date: date
    end_date: date
    total_days: int
    reason: str
    status: LeaveStatus
    applied_at: datetime
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    comments: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    # Enriched fields — filled by service, not from ORM
    employee_name: Optional[str] = None
    leave_type_name: Optional[str] = None
