"""Leave router — apply, list, approve / reject / cancel leave requests.

All endpoints require authentication. Who may act on a request is decided by
the role capability table plus the reporting line.
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from lms.auth.dependencies import (
    ensure_employee_access,
    get_current_user,
    require_permission,
    visible_employee_ids,
)
from lms.common.constants import Action, LeaveStatus, can
from lms.common.exceptions import ForbiddenError
from lms.common.pagination import PaginationParams
from lms.core_hr.models import Employee
from lms.database import get_db
from lms.leave.schemas import (
    LeaveApproveRequest,
    LeaveCancelRequest,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestCreated,
    LeaveRequestOut,
)
from lms.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])


# ── POST / ──────────────────────────────────────────────────────────

@router.post("", response_model=LeaveRequestCreated, status_code=201)
async def apply_leave(
    body: LeaveRequestCreate,
    employee: Employee = Depends(
        require_permission(Action.create_own_requests, Action.create_any_requests)
    ),
    db: AsyncSession = Depends(get_db),
):
    """Apply for leave. Validates dates, joining date, working days, balance and overlap."""
    target_id = body.employee_id or employee.id
    if target_id == employee.id:
        if not can(employee.role, Action.create_own_requests):
            raise ForbiddenError("You may not submit your own leave requests.")
    elif not can(employee.role, Action.create_any_requests):
        raise ForbiddenError("You can only submit leave requests for yourself.")

    created = await LeaveService.apply_leave(db, target_id, body, actor_id=employee.id)
    return LeaveRequestCreated(
        request_id=created.id,
        total_days=created.total_days,
        status=created.status,
    )


# ── GET / ───────────────────────────────────────────────────────────

@router.get("")
async def list_leave_requests(
    status: Optional[LeaveStatus] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    leave_type_id: Optional[uuid.UUID] = Query(None),
    pagination: PaginationParams = Depends(),
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List leave requests visible to the caller, newest first.

    - **employee**: own requests
    - **manager**: own + direct reports
    - **hr / admin**: all
    """
    visible = await visible_employee_ids(db, employee)
    result = await LeaveService.list_leave_requests(
        db,
        pagination,
        visible_employee_ids=visible,
        employee_id=employee_id,
        status=status,
        leave_type_id=leave_type_id,
    )
    return {
        "data": [item.model_dump(mode="json") for item in result.data],
        "meta": result.meta.model_dump(),
    }


# ── GET /{id} ───────────────────────────────────────────────────────

@router.get("/{request_id}", response_model=LeaveRequestOut)
async def get_leave_request(
    request_id: uuid.UUID,
    employee: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Single leave request: owner, the owner's manager, or HR / admin."""
    owner = await LeaveService.get_request_owner(db, request_id)
    await ensure_employee_access(
        db,
        employee,
        owner.id,
        own=Action.view_own_requests,
        team=Action.view_team_requests,
        any_=Action.view_all_requests,
    )
    return await LeaveService.get_leave_request(db, request_id)


# ── PUT /{id}/approve ───────────────────────────────────────────────

@router.put("/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_leave(
    request_id: uuid.UUID,
    body: Optional[LeaveApproveRequest] = None,
    employee: Employee = Depends(
        require_permission(Action.approve_team_requests, Action.approve_any_requests)
    ),
    db: AsyncSession = Depends(get_db),
):
    """Approve a pending leave request. Charges the days to the balance."""
    body = body or LeaveApproveRequest()
    approver_id = body.approved_by or employee.id
    if approver_id != employee.id and not can(employee.role, Action.approve_any_requests):
        raise ForbiddenError("You can only approve as yourself.")
    return await LeaveService.approve_leave(
        db, request_id, approver_id, comments=body.comments,
    )


# ── PUT /{id}/reject ────────────────────────────────────────────────

@router.put("/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_leave(
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    employee: Employee = Depends(
        require_permission(Action.reject_team_requests, Action.reject_any_requests)
    ),
    db: AsyncSession = Depends(get_db),
):
    """Reject a pending leave request. A non-blank reason is required."""
    return await LeaveService.reject_leave(
        db, request_id, employee.id, body.rejection_reason, comments=body.comments,
    )


# ── PUT /{id}/cancel ────────────────────────────────────────────────

@router.put("/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave(
    request_id: uuid.UUID,
    body: Optional[LeaveCancelRequest] = None,
    employee: Employee = Depends(
        require_permission(Action.cancel_own_requests, Action.cancel_any_requests)
    ),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a pending leave request (owner, or HR / admin)."""
    body = body or LeaveCancelRequest()
    return await LeaveService.cancel_leave(
        db, request_id, employee.id, comments=body.comments,
    )
