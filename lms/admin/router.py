"""Admin router — leave type catalogue and audit-log browsing.

Reading active leave types is open to every authenticated user; writes need
``manage_leave_types`` and audit logs need ``view_audit_logs``.
"""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from lms.admin.schemas import AuditLogOut
from lms.admin.service import AdminService
from lms.auth.dependencies import get_current_user, require_permission
from lms.common.constants import (
    AUDIT_LOG_DEFAULT_LIMIT,
    AUDIT_LOG_MAX_LIMIT,
    Action,
    AuditAction,
    can,
)
from lms.core_hr.models import Employee
from lms.database import get_db
from lms.leave.schemas import LeaveTypeCreate, LeaveTypeOut, LeaveTypeUpdate

router = APIRouter(prefix="", tags=["admin"])

_leave_type_admin = require_permission(Action.manage_leave_types)


# ═══════════════════════════════════════════════════════════════════
# LEAVE TYPES
# ═══════════════════════════════════════════════════════════════════

@router.get("/leave-types", response_model=list[LeaveTypeOut])
async def list_leave_types(
    include_inactive: bool = Query(False, description="Also return deactivated types"),
    user: Employee = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List leave types; inactive ones only for leave-type administrators."""
    include_inactive = include_inactive and can(user.role, Action.manage_leave_types)
    return await AdminService.list_leave_types(db, include_inactive=include_inactive)


@router.post("/leave-types", response_model=LeaveTypeOut, status_code=201)
async def create_leave_type(
    body: LeaveTypeCreate,
    user: Employee = Depends(_leave_type_admin),
    db: AsyncSession = Depends(get_db),
):
    """Create a new leave type."""
    return await AdminService.create_leave_type(db, body, actor_id=user.id)


@router.put("/leave-types/{leave_type_id}", response_model=LeaveTypeOut)
async def update_leave_type(
    leave_type_id: uuid.UUID,
    body: LeaveTypeUpdate,
    user: Employee = Depends(_leave_type_admin),
    db: AsyncSession = Depends(get_db),
):
    """Update an existing leave type."""
    return await AdminService.update_leave_type(db, leave_type_id, body, actor_id=user.id)


@router.delete("/leave-types/{leave_type_id}", response_model=LeaveTypeOut)
async def deactivate_leave_type(
    leave_type_id: uuid.UUID,
    user: Employee = Depends(_leave_type_admin),
    db: AsyncSession = Depends(get_db),
):
    """Deactivate a leave type (soft delete)."""
    return await AdminService.deactivate_leave_type(db, leave_type_id, actor_id=user.id)


# ═══════════════════════════════════════════════════════════════════
# AUDIT LOGS
# ═══════════════════════════════════════════════════════════════════

@router.get("/audit-logs", response_model=list[AuditLogOut])
async def list_audit_logs(
    table_name: Optional[str] = Query(None),
    record_id: Optional[uuid.UUID] = Query(None),
    action: Optional[AuditAction] = Query(None),
    changed_by: Optional[uuid.UUID] = Query(None),
    changed_from: Optional[datetime] = Query(None, alias="from"),
    changed_to: Optional[datetime] = Query(None, alias="to"),
    limit: int = Query(AUDIT_LOG_DEFAULT_LIMIT, ge=1, le=AUDIT_LOG_MAX_LIMIT),
    _user: Employee = Depends(require_permission(Action.view_audit_logs)),
    db: AsyncSession = Depends(get_db),
):
    """Browse the audit trail, newest first."""
    return await AdminService.list_audit_logs(
        db,
        table_name=table_name,
        record_id=record_id,
        action=action,
        changed_by=changed_by,
        changed_from=changed_from,
        changed_to=changed_to,
        limit=limit,
    )
