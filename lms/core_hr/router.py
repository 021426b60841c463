"""Core HR router — Employee and Department API endpoints.

Routes:
    /employees                       — List, create employees
    /employees/{id}                  — Get, update, deactivate employee
    /employees/{id}/leave-balances   — Per-year balance snapshot, HR upsert
    /departments                     — List, create departments
    /departments/{id}                — Get, update, delete department
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
from lms.common.constants import (
    MAX_BALANCE_YEAR,
    MIN_BALANCE_YEAR,
    Action,
    UserRole,
)
from lms.common.pagination import PaginationParams
from lms.core_hr.models import Employee
from lms.core_hr.schemas import (
    DepartmentCreate,
    DepartmentUpdate,
    EmployeeCreate,
    EmployeeUpdate,
)
from lms.core_hr.service import DepartmentService, EmployeeService
from lms.database import get_db
from lms.leave.schemas import LeaveBalanceUpsert
from lms.leave.service import LeaveService


# ═════════════════════════════════════════════════════════════════════
# Routers
# ═════════════════════════════════════════════════════════════════════

employees_router = APIRouter(prefix="", tags=["employees"])
departments_router = APIRouter(prefix="", tags=["departments"])


# ═════════════════════════════════════════════════════════════════════
# Employee Endpoints
# ═════════════════════════════════════════════════════════════════════


# ── GET /employees — List employees ─────────────────────────────────

@employees_router.get("")
async def list_employees(
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
    pagination: PaginationParams = Depends(),
    search: Optional[str] = Query(None, description="Search by name"),
    department_id: Optional[uuid.UUID] = Query(None, description="Filter by department"),
    role: Optional[UserRole] = Query(None, description="Filter by role"),
    is_active: Optional[bool] = Query(None, description="Filter by active flag"),
    manager_id: Optional[uuid.UUID] = Query(None, description="Filter by manager"),
):
    """List employees with pagination and filtering.

    - **employee**: self only
    - **manager**: self + direct reports
    - **hr / admin**: everyone
    """
    visible = await visible_employee_ids(
        db,
        current_user,
        own=Action.view_own_requests,
        team=Action.view_team_employees,
        any_=Action.view_all_employees,
    )
    result = await EmployeeService.list_employees(
        db,
        pagination,
        department_id=department_id,
        role=role,
        is_active=is_active,
        manager_id=manager_id,
        employee_ids=visible,
        search=search,
    )
    return {
        "data": [item.model_dump(mode="json") for item in result.data],
        "meta": result.meta.model_dump(),
    }


# ── POST /employees — Create employee ──────────────────────────────

@employees_router.post("", status_code=201)
async def create_employee(
    body: EmployeeCreate,
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(require_permission(Action.manage_employees)),
):
    """Create an employee and initialise their leave balances for the current year."""
    detail = await EmployeeService.create_employee(db, body, actor_id=current_user.id)
    return {
        "data": detail.model_dump(mode="json"),
        "message": "Employee created successfully.",
    }


# ── GET /employees/{id} — Employee detail ──────────────────────────

@employees_router.get("/{employee_id}")
async def get_employee(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
):
    """Retrieve one employee: self, a direct report, or anyone for HR."""
    await ensure_employee_access(
        db,
        current_user,
        employee_id,
        own=None,
        team=Action.view_team_employees,
        any_=Action.view_all_employees,
    )
    detail = await EmployeeService.get_employee(db, employee_id)
    return {
        "data": detail.model_dump(mode="json"),
        "message": "Employee retrieved successfully.",
    }


# ── PUT /employees/{id} — Update employee ──────────────────────────

@employees_router.put("/{employee_id}")
async def update_employee(
    employee_id: uuid.UUID,
    body: EmployeeUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(require_permission(Action.manage_employees)),
):
    """Partial update of an employee record."""
    detail = await EmployeeService.update_employee(
        db, employee_id, body, actor_id=current_user.id,
    )
    return {
        "data": detail.model_dump(mode="json"),
        "message": "Employee updated successfully.",
    }


# ── DELETE /employees/{id} — Deactivate employee ───────────────────

@employees_router.delete("/{employee_id}")
async def deactivate_employee(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(require_permission(Action.manage_employees)),
):
    """Soft-delete: the employee is marked inactive, history is kept."""
    detail = await EmployeeService.deactivate_employee(
        db, employee_id, actor_id=current_user.id,
    )
    return {
        "data": detail.model_dump(mode="json"),
        "message": "Employee deactivated successfully.",
    }


# ── GET /employees/{id}/leave-balances ─────────────────────────────

@employees_router.get("/{employee_id}/leave-balances")
async def get_leave_balances(
    employee_id: uuid.UUID,
    year: Optional[int] = Query(
        None, ge=MIN_BALANCE_YEAR, le=MAX_BALANCE_YEAR,
        description="Balance year; defaults to the current year",
    ),
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
):
    """Per-leave-type balance snapshot with ``available_days``."""
    await ensure_employee_access(
        db,
        current_user,
        employee_id,
        own=Action.view_own_balances,
        team=Action.view_team_employees,
        any_=Action.view_all_balances,
    )
    snapshot = await LeaveService.get_balances(db, employee_id, year)
    return {
        "data": snapshot.model_dump(mode="json"),
        "message": f"Found {len(snapshot.leave_balances)} balance(s).",
    }


# ── PUT /employees/{id}/leave-balances ─────────────────────────────

@employees_router.put("/{employee_id}/leave-balances")
async def update_leave_balance(
    employee_id: uuid.UUID,
    body: LeaveBalanceUpsert,
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(require_permission(Action.manage_balances)),
):
    """Create or overwrite one balance row for the employee."""
    balance = await LeaveService.update_balance(
        db, employee_id, body, actor_id=current_user.id,
    )
    return {
        "data": balance.model_dump(mode="json"),
        "message": "Leave balance updated successfully.",
    }


# ═════════════════════════════════════════════════════════════════════
# Department Endpoints
# ═════════════════════════════════════════════════════════════════════


# ── GET /departments — List departments ─────────────────────────────

@departments_router.get("")
async def list_departments(
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
):
    """List all departments with active employee counts."""
    departments = await DepartmentService.list_departments(db)
    return {
        "data": [dept.model_dump(mode="json") for dept in departments],
        "message": f"Found {len(departments)} department(s).",
    }


# ── POST /departments — Create department ──────────────────────────

@departments_router.post("", status_code=201)
async def create_department(
    body: DepartmentCreate,
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(require_permission(Action.manage_departments)),
):
    dept = await DepartmentService.create_department(db, body, actor_id=current_user.id)
    return {
        "data": dept.model_dump(mode="json"),
        "message": "Department created successfully.",
    }


# ── GET /departments/{id} — Department detail ──────────────────────

@departments_router.get("/{department_id}")
async def get_department(
    department_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(get_current_user),
):
    """Retrieve a single department with its employee count."""
    dept = await DepartmentService.get_department(db, department_id)
    return {
        "data": dept.model_dump(mode="json"),
        "message": "Department retrieved successfully.",
    }


# ── PUT /departments/{id} — Update department ──────────────────────

@departments_router.put("/{department_id}")
async def update_department(
    department_id: uuid.UUID,
    body: DepartmentUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(require_permission(Action.manage_departments)),
):
    dept = await DepartmentService.update_department(
        db, department_id, body, actor_id=current_user.id,
    )
    return {
        "data": dept.model_dump(mode="json"),
        "message": "Department updated successfully.",
    }


# ── DELETE /departments/{id} — Delete department ───────────────────

@departments_router.delete("/{department_id}")
async def delete_department(
    department_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: Employee = Depends(require_permission(Action.manage_departments)),
):
    """Delete a department. Refused (409) while employees still belong to it."""
    await DepartmentService.delete_department(db, department_id, actor_id=current_user.id)
    return {"message": "Department deleted successfully."}
