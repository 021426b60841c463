"""Core HR service layer — async CRUD + business logic.

Uses:
  - ``paginate()`` from lms.common.pagination
  - ``apply_filters`` from lms.common.filters
  - ``create_audit_entry`` from lms.common.audit
  - ``unit_of_work`` from lms.common.transaction
  - ``BalanceLedger`` from lms.leave.ledger (balance rows for new hires)
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Any, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from lms.common.audit import create_audit_entry, snapshot
from lms.common.constants import AuditAction, UserRole
from lms.common.exceptions import (
    ConflictError,
    DuplicateError,
    NotFoundError,
    ValidationError,
)
from lms.common.filters import apply_filters
from lms.common.pagination import PaginatedResponse, PaginationParams, paginate
from lms.common.transaction import unit_of_work
from lms.core_hr.models import Department, Employee
from lms.core_hr.schemas import (
    DepartmentCreate,
    DepartmentResponse,
    DepartmentUpdate,
    EmployeeCreate,
    EmployeeDetail,
    EmployeeSummary,
    EmployeeUpdate,
)
from lms.leave.ledger import BalanceLedger, current_year

logger = logging.getLogger(__name__)

EMPLOYEE_AUDIT_FIELDS = (
    "employee_id",
    "email",
    "name",
    "department_id",
    "role",
    "joining_date",
    "manager_id",
    "is_active",
    "phone",
    "address",
)

DEPARTMENT_AUDIT_FIELDS = ("name", "description", "manager_id")


def generate_employee_code(today: Optional[date] = None) -> str:
    """``EMP-YYYYMMDD-XXXXXX`` with a random hex suffix."""
    today = today or date.today()
    return f"EMP-{today:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def _raise_for_integrity_error(exc: IntegrityError, values: dict[str, Any]) -> None:
    """Translate a unique violation into ``DuplicateError`` when recognisable."""
    err = str(exc.orig)
    for field in ("employee_id", "email", "name"):
        if field in err and field in values:
            raise DuplicateError(field, values[field]) from exc


# ═════════════════════════════════════════════════════════════════════
# EmployeeService
# ═════════════════════════════════════════════════════════════════════


class EmployeeService:
    """Async CRUD operations for employees."""

    # ── Helpers ─────────────────────────────────────────────────────

    @staticmethod
    def to_detail(employee: Employee) -> EmployeeDetail:
        detail = EmployeeDetail.model_validate(employee)
        department = employee.__dict__.get("department")
        if department is not None:
            detail.department_name = department.name
        return detail

    @staticmethod
    async def _ensure_department(db: AsyncSession, department_id: uuid.UUID) -> Department:
        department = await db.get(Department, department_id)
        if department is None:
            raise NotFoundError("Department", department_id)
        return department

    @staticmethod
    async def _ensure_manager(db: AsyncSession, manager_id: uuid.UUID) -> Employee:
        manager = await db.get(Employee, manager_id)
        if manager is None or not manager.is_active:
            raise NotFoundError("Employee", manager_id)
        return manager

    @staticmethod
    async def _ensure_unique(
        db: AsyncSession,
        *,
        email: Optional[str] = None,
        employee_code: Optional[str] = None,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        conditions = []
        if email:
            conditions.append(Employee.email == email)
        if employee_code:
            conditions.append(Employee.employee_id == employee_code)
        if not conditions:
            return

        query = select(Employee.email, Employee.employee_id).where(or_(*conditions))
        if exclude_id is not None:
            query = query.where(Employee.id != exclude_id)
        clash = (await db.execute(query.limit(1))).first()
        if clash is None:
            return
        if email and clash.email == email:
            raise DuplicateError("email", email)
        raise DuplicateError("employee_id", employee_code)

    # ── List (paginated, filterable) ────────────────────────────────

    @staticmethod
    async def list_employees(
        db: AsyncSession,
        pagination: PaginationParams,
        *,
        department_id: Optional[uuid.UUID] = None,
        role: Optional[UserRole] = None,
        is_active: Optional[bool] = None,
        manager_id: Optional[uuid.UUID] = None,
        employee_ids: Optional[list[uuid.UUID]] = None,
        search: Optional[str] = None,
    ) -> PaginatedResponse:
        """Return a paginated, filtered employee list ordered by name."""

        query = select(Employee).order_by(Employee.name)
        query = apply_filters(
            query,
            Employee,
            {
                "department_id": department_id,
                "role": role,
                "is_active": is_active,
                "manager_id": manager_id,
                "id__in": employee_ids,
                "name__ilike": search,
            },
        )
        return await paginate(
            db, query, pagination, model=Employee, item_schema=EmployeeSummary,
        )

    # ── Get single ──────────────────────────────────────────────────

    @staticmethod
    async def get_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
    ) -> EmployeeDetail:
        """Load full employee detail including department name."""

        result = await db.execute(
            select(Employee)
            .where(Employee.id == employee_id)
            .options(selectinload(Employee.department))
        )
        employee = result.scalars().first()
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        return EmployeeService.to_detail(employee)

    @staticmethod
    async def get_team_ids(
        db: AsyncSession,
        manager_id: uuid.UUID,
    ) -> list[uuid.UUID]:
        """IDs of active direct reports of *manager_id*."""

        result = await db.execute(
            select(Employee.id).where(
                Employee.manager_id == manager_id,
                Employee.is_active.is_(True),
            )
        )
        return list(result.scalars().all())

    # ── Create ──────────────────────────────────────────────────────

    @staticmethod
    async def create_employee(
        db: AsyncSession,
        data: EmployeeCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> EmployeeDetail:
        """Create an employee and, in the same transaction, one balance row
        per active leave type for the current year."""

        if data.joining_date > date.today():
            raise ValidationError(
                detail="Joining date cannot be in the future.",
                errors={"joining_date": ["Must be today or earlier."]},
            )

        async with unit_of_work(db):
            department = await EmployeeService._ensure_department(db, data.department_id)
            if data.manager_id is not None:
                await EmployeeService._ensure_manager(db, data.manager_id)

            employee_code = data.employee_id or generate_employee_code()
            await EmployeeService._ensure_unique(
                db, email=data.email, employee_code=employee_code,
            )

            employee = Employee(
                employee_id=employee_code,
                email=data.email,
                name=data.name,
                department_id=data.department_id,
                role=data.role,
                joining_date=data.joining_date,
                manager_id=data.manager_id,
                phone=data.phone,
                address=data.address,
                is_active=True,
            )
            db.add(employee)
            try:
                await db.flush()
            except IntegrityError as exc:
                _raise_for_integrity_error(
                    exc, {"employee_id": employee_code, "email": data.email},
                )
                raise

            balances = await BalanceLedger.allocate_for_employee(
                db, employee.id, current_year(),
            )

            await create_audit_entry(
                db,
                action=AuditAction.insert,
                table_name=Employee.__tablename__,
                record_id=employee.id,
                changed_by=actor_id,
                new_values=snapshot(employee, EMPLOYEE_AUDIT_FIELDS),
            )

        logger.info(
            "Employee %s created in %s with %d balance row(s)",
            employee.employee_id, department.name, len(balances),
        )
        detail = EmployeeService.to_detail(employee)
        detail.department_name = department.name
        return detail

    # ── Update ──────────────────────────────────────────────────────

    @staticmethod
    async def update_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        data: EmployeeUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> EmployeeDetail:
        """Partial-update an existing employee."""

        changes = data.model_dump(exclude_unset=True)

        async with unit_of_work(db):
            result = await db.execute(
                select(Employee)
                .where(Employee.id == employee_id)
                .options(selectinload(Employee.department))
            )
            employee = result.scalars().first()
            if employee is None:
                raise NotFoundError("Employee", employee_id)
            if not changes:
                return EmployeeService.to_detail(employee)

            for required in ("name", "email", "department_id", "role"):
                if required in changes and changes[required] is None:
                    raise ValidationError(
                        detail=f"{required} cannot be null.",
                        errors={required: ["Must not be null."]},
                    )
            if "name" in changes:
                changes["name"] = changes["name"].strip()
                if not changes["name"]:
                    raise ValidationError(
                        detail="name cannot be blank.",
                        errors={"name": ["Must not be blank."]},
                    )

            if "department_id" in changes:
                await EmployeeService._ensure_department(db, changes["department_id"])
            if changes.get("manager_id") is not None:
                if changes["manager_id"] == employee.id:
                    raise ValidationError(
                        detail="An employee cannot manage themselves.",
                        errors={"manager_id": ["Must differ from the employee."]},
                    )
                await EmployeeService._ensure_manager(db, changes["manager_id"])
            if "email" in changes:
                await EmployeeService._ensure_unique(
                    db, email=changes["email"], exclude_id=employee.id,
                )

            old_values = snapshot(employee, changes.keys())
            for field, value in changes.items():
                setattr(employee, field, value)

            try:
                await db.flush()
            except IntegrityError as exc:
                _raise_for_integrity_error(exc, changes)
                raise

            await create_audit_entry(
                db,
                action=AuditAction.update,
                table_name=Employee.__tablename__,
                record_id=employee.id,
                changed_by=actor_id,
                old_values=old_values,
                new_values=snapshot(employee, changes.keys()),
            )

        # department may have changed; reload it for the response
        await db.refresh(employee, attribute_names=["department"])
        return EmployeeService.to_detail(employee)

    # ── Deactivate (soft delete) ────────────────────────────────────

    @staticmethod
    async def deactivate_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> EmployeeDetail:
        """Mark an employee inactive. Leave history and balances are kept."""

        async with unit_of_work(db):
            employee = await db.get(Employee, employee_id)
            if employee is None:
                raise NotFoundError("Employee", employee_id)

            if employee.is_active:
                employee.is_active = False
                await db.flush()
                await create_audit_entry(
                    db,
                    action=AuditAction.update,
                    table_name=Employee.__tablename__,
                    record_id=employee.id,
                    changed_by=actor_id,
                    old_values={"is_active": True},
                    new_values={"is_active": False},
                )

        logger.info("Employee %s deactivated", employee.employee_id)
        return EmployeeService.to_detail(employee)


# ═════════════════════════════════════════════════════════════════════
# DepartmentService
# ═════════════════════════════════════════════════════════════════════


class DepartmentService:
    """Async CRUD operations for departments."""

    @staticmethod
    async def _employee_counts(db: AsyncSession) -> dict[uuid.UUID, int]:
        result = await db.execute(
            select(Employee.department_id, func.count(Employee.id))
            .where(Employee.is_active.is_(True))
            .group_by(Employee.department_id)
        )
        return {row[0]: row[1] for row in result.all()}

    @staticmethod
    async def _get(db: AsyncSession, department_id: uuid.UUID) -> Department:
        department = await db.get(Department, department_id)
        if department is None:
            raise NotFoundError("Department", department_id)
        return department

    @staticmethod
    async def list_departments(db: AsyncSession) -> list[DepartmentResponse]:
        """All departments ordered by name, with active employee counts."""

        result = await db.execute(select(Department).order_by(Department.name))
        counts = await DepartmentService._employee_counts(db)

        output: list[DepartmentResponse] = []
        for dept in result.scalars().all():
            out = DepartmentResponse.model_validate(dept)
            out.employee_count = counts.get(dept.id, 0)
            output.append(out)
        return output

    @staticmethod
    async def get_department(
        db: AsyncSession,
        department_id: uuid.UUID,
    ) -> DepartmentResponse:
        department = await DepartmentService._get(db, department_id)
        counts = await DepartmentService._employee_counts(db)
        out = DepartmentResponse.model_validate(department)
        out.employee_count = counts.get(department.id, 0)
        return out

    @staticmethod
    async def create_department(
        db: AsyncSession,
        data: DepartmentCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> DepartmentResponse:
        async with unit_of_work(db):
            existing = await db.execute(
                select(Department.id).where(Department.name == data.name)
            )
            if existing.first() is not None:
                raise DuplicateError("name", data.name)
            if data.manager_id is not None:
                await EmployeeService._ensure_manager(db, data.manager_id)

            department = Department(**data.model_dump())
            db.add(department)
            try:
                await db.flush()
            except IntegrityError as exc:
                _raise_for_integrity_error(exc, {"name": data.name})
                raise

            await create_audit_entry(
                db,
                action=AuditAction.insert,
                table_name=Department.__tablename__,
                record_id=department.id,
                changed_by=actor_id,
                new_values=snapshot(department, DEPARTMENT_AUDIT_FIELDS),
            )

        logger.info("Department %r created", department.name)
        return DepartmentResponse.model_validate(department)

    @staticmethod
    async def update_department(
        db: AsyncSession,
        department_id: uuid.UUID,
        data: DepartmentUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> DepartmentResponse:
        changes = data.model_dump(exclude_unset=True)

        async with unit_of_work(db):
            department = await DepartmentService._get(db, department_id)
            if changes.get("name") is not None:
                changes["name"] = changes["name"].strip()
                clash = await db.execute(
                    select(Department.id).where(
                        Department.name == changes["name"],
                        Department.id != department_id,
                    )
                )
                if clash.first() is not None:
                    raise DuplicateError("name", changes["name"])
            elif "name" in changes:
                raise ValidationError(
                    detail="name cannot be null.",
                    errors={"name": ["Must not be null."]},
                )
            if changes.get("manager_id") is not None:
                await EmployeeService._ensure_manager(db, changes["manager_id"])

            if changes:
                old_values = snapshot(department, changes.keys())
                for field, value in changes.items():
                    setattr(department, field, value)
                await db.flush()
                await create_audit_entry(
                    db,
                    action=AuditAction.update,
                    table_name=Department.__tablename__,
                    record_id=department.id,
                    changed_by=actor_id,
                    old_values=old_values,
                    new_values=snapshot(department, changes.keys()),
                )

        return await DepartmentService.get_department(db, department_id)

    @staticmethod
    async def delete_department(
        db: AsyncSession,
        department_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Hard-delete a department; refused while any employee references it."""

        async with unit_of_work(db):
            department = await DepartmentService._get(db, department_id)
            in_use = await db.execute(
                select(func.count(Employee.id)).where(
                    Employee.department_id == department_id,
                )
            )
            count = in_use.scalar_one()
            if count:
                raise ConflictError(
                    detail=f"Department '{department.name}' still has {count} employee(s).",
                    errors={"department_id": ["Reassign its employees first."]},
                )

            old_values = snapshot(department, DEPARTMENT_AUDIT_FIELDS)
            await db.delete(department)
            await db.flush()
            await create_audit_entry(
                db,
                action=AuditAction.delete,
                table_name=Department.__tablename__,
                record_id=department_id,
                changed_by=actor_id,
                old_values=old_values,
            )

        logger.info("Department %s deleted", department_id)
