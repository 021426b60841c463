"""Leave service layer — admission checks, approval workflow, balance accounting.

Business logic:
  - Working-day count (Mon–Fri, inclusive range)
  - Overlap detection against pending/approved requests
  - Admission: dates → joining date → duration → balance → overlap → insert
  - Approve / reject / cancel, each a single unit of work
  - Per-year balance snapshot and HR balance upsert
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Sequence

from sqlalchemy import not_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from lms.common.audit import create_audit_entry, snapshot
from lms.common.constants import Action, AuditAction, LeaveStatus, can
from lms.common.exceptions import (
    BeforeJoining,
    ForbiddenError,
    InsufficientBalance,
    InvalidDateRange,
    NoBalanceRecord,
    NotFoundError,
    OverlappingRequest,
    RequestNotFound,
    ValidationError,
    ZeroDurationRequest,
)
from lms.common.filters import apply_filters
from lms.common.pagination import PaginatedResponse, PaginationParams, paginate
from lms.common.transaction import unit_of_work
from lms.core_hr.models import Employee
from lms.leave.ledger import BALANCE_FIELDS, BalanceLedger, current_year
from lms.leave.models import LeaveRequest, LeaveType
from lms.leave.schemas import (
    EmployeeBalancesOut,
    LeaveBalanceOut,
    LeaveBalanceUpsert,
    LeaveRequestCreate,
    LeaveRequestOut,
)
from lms.leave.state import ensure_transition

logger = logging.getLogger(__name__)

REQUEST_AUDIT_FIELDS = (
    "employee_id",
    "leave_type_id",
    "start_date",
    "end_date",
    "total_days",
    "status",
    "approved_by",
    "rejection_reason",
)

_ACTIVE_STATUSES = (LeaveStatus.pending, LeaveStatus.approved)


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave operations: admission, approvals, balances."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def count_working_days(start_date: date, end_date: date) -> int:
        """Number of Mon–Fri days in the inclusive range; 0 if start > end."""
        if start_date > end_date:
            return 0
        total_days = (end_date - start_date).days + 1
        full_weeks, remainder = divmod(total_days, 7)
        count = full_weeks * 5
        day = start_date + timedelta(days=full_weeks * 7)
        for _ in range(remainder):
            if day.weekday() < 5:
                count += 1
            day += timedelta(days=1)
        return count

    @staticmethod
    async def has_overlapping_request(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start_date: date,
        end_date: date,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """True if any pending/approved request of *employee_id* intersects the range."""
        query = select(LeaveRequest.id).where(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status.in_(_ACTIVE_STATUSES),
            not_(
                or_(
                    LeaveRequest.end_date < start_date,
                    LeaveRequest.start_date > end_date,
                )
            ),
        )
        if exclude_id is not None:
            query = query.where(LeaveRequest.id != exclude_id)

        result = await db.execute(query.limit(1))
        return result.first() is not None

    @staticmethod
    def _build_request_response(req: LeaveRequest) -> LeaveRequestOut:
        """Build LeaveRequestOut from ORM, enriching names when loaded."""
        out = LeaveRequestOut.model_validate(req)
        loaded = req.__dict__
        if loaded.get("employee") is not None:
            out.employee_name = req.employee.name
        if loaded.get("leave_type") is not None:
            out.leave_type_name = req.leave_type.name
        return out

    @staticmethod
    async def _load_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        lock: bool = False,
    ) -> LeaveRequest:
        query = (
            select(LeaveRequest)
            .where(LeaveRequest.id == request_id)
            .options(
                selectinload(LeaveRequest.employee),
                selectinload(LeaveRequest.leave_type),
            )
        )
        if lock:
            query = query.with_for_update(of=LeaveRequest).execution_options(
                populate_existing=True,
            )
        result = await db.execute(query)
        leave_req = result.scalars().first()
        if leave_req is None:
            raise RequestNotFound(request_id)
        return leave_req

    @staticmethod
    async def _load_reviewer(
        db: AsyncSession,
        reviewer_id: uuid.UUID,
    ) -> Employee:
        result = await db.execute(
            select(Employee).where(
                Employee.id == reviewer_id, Employee.is_active.is_(True),
            )
        )
        reviewer = result.scalars().first()
        if reviewer is None:
            raise NotFoundError("Employee", reviewer_id)
        return reviewer

    @staticmethod
    def _ensure_can_review(
        reviewer: Employee,
        subject: Employee,
        *,
        team_action: Action,
        any_action: Action,
    ) -> None:
        """Reviewer needs the org-wide capability, or the team one over a direct report."""
        if can(reviewer.role, any_action):
            return
        if can(reviewer.role, team_action) and subject.manager_id == reviewer.id:
            return
        raise ForbiddenError(
            f"Employee '{reviewer.employee_id}' may not review requests of "
            f"'{subject.employee_id}'.",
        )

    # ─────────────────────────────────────────────────────────────────
    # Apply Leave
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def apply_leave(
        db: AsyncSession,
        employee_id: uuid.UUID,
        data: LeaveRequestCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveRequestOut:
        """Admit a leave request, in order:

        1. start_date ≤ end_date                       → InvalidDateRange
        2. start_date ≥ joining_date                   → BeforeJoining
        3. working days > 0                            → ZeroDurationRequest
        4. balance row for the current year exists     → NoBalanceRecord
        5. working days ≤ available days               → InsufficientBalance
        6. no intersecting pending/approved request    → OverlappingRequest

        The overlap check and the insert are not serialized against a
        concurrent admission for the same employee.
        """

        async with unit_of_work(db):
            # ── Load employee ───────────────────────────────────────
            emp_result = await db.execute(
                select(Employee).where(
                    Employee.id == employee_id, Employee.is_active.is_(True),
                )
            )
            employee = emp_result.scalars().first()
            if employee is None:
                raise NotFoundError("Employee", employee_id)

            # ── Load leave type ─────────────────────────────────────
            lt_result = await db.execute(
                select(LeaveType).where(
                    LeaveType.id == data.leave_type_id,
                    LeaveType.is_active.is_(True),
                )
            )
            leave_type = lt_result.scalars().first()
            if leave_type is None:
                raise NotFoundError("LeaveType", data.leave_type_id)

            # ── Dates ───────────────────────────────────────────────
            if data.start_date > data.end_date:
                raise InvalidDateRange(data.start_date, data.end_date)

            if data.start_date < employee.joining_date:
                raise BeforeJoining(data.start_date, employee.joining_date)

            total_days = LeaveService.count_working_days(data.start_date, data.end_date)
            if total_days <= 0:
                raise ZeroDurationRequest()

            # ── Balance ─────────────────────────────────────────────
            year = current_year()
            balance = await BalanceLedger.get(db, employee_id, data.leave_type_id, year)
            if balance is None:
                raise NoBalanceRecord(leave_type.name, year)

            if total_days > balance.available_days:
                raise InsufficientBalance(
                    requested=total_days, available=balance.available_days,
                )

            # ── Overlap ─────────────────────────────────────────────
            if await LeaveService.has_overlapping_request(
                db, employee_id, data.start_date, data.end_date,
            ):
                raise OverlappingRequest(data.start_date, data.end_date)

            # ── Create leave request ────────────────────────────────
            leave_request = LeaveRequest(
                employee_id=employee_id,
                leave_type_id=data.leave_type_id,
                start_date=data.start_date,
                end_date=data.end_date,
                total_days=total_days,
                reason=data.reason,
                status=LeaveStatus.pending,
                applied_at=datetime.now(timezone.utc),
            )
            db.add(leave_request)
            await db.flush()

            await create_audit_entry(
                db,
                action=AuditAction.insert,
                table_name=LeaveRequest.__tablename__,
                record_id=leave_request.id,
                changed_by=actor_id or employee_id,
                new_values=snapshot(leave_request, REQUEST_AUDIT_FIELDS),
            )

        logger.info(
            "Leave request %s admitted: employee=%s type=%s %s..%s (%d day(s))",
            leave_request.id, employee.employee_id, leave_type.name,
            data.start_date, data.end_date, total_days,
        )
        out = LeaveService._build_request_response(leave_request)
        out.employee_name = employee.name
        out.leave_type_name = leave_type.name
        return out

    # ─────────────────────────────────────────────────────────────────
    # Approve Leave
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def approve_leave(
        db: AsyncSession,
        request_id: uuid.UUID,
        approver_id: uuid.UUID,
        *,
        comments: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Approve a pending request and charge its days to the balance.

        The request and balance rows are locked ``FOR UPDATE``; the balance
        is re-checked under the lock before ``used_days`` is incremented.
        Both rows change in one transaction or neither does.
        """

        async with unit_of_work(db):
            leave_req = await LeaveService._load_request(db, request_id, lock=True)
            ensure_transition(leave_req.status, LeaveStatus.approved)

            approver = await LeaveService._load_reviewer(db, approver_id)
            LeaveService._ensure_can_review(
                approver,
                leave_req.employee,
                team_action=Action.approve_team_requests,
                any_action=Action.approve_any_requests,
            )

            year = current_year()
            balance = await BalanceLedger.lock(
                db, leave_req.employee_id, leave_req.leave_type_id, year,
            )
            if balance is None:
                raise NoBalanceRecord(leave_req.leave_type.name, year)

            old_request = snapshot(leave_req, REQUEST_AUDIT_FIELDS)
            old_balance = snapshot(balance, BALANCE_FIELDS)

            BalanceLedger.record_usage(balance, leave_req.total_days)

            leave_req.status = LeaveStatus.approved
            leave_req.approved_by = approver.id
            leave_req.approved_at = datetime.now(timezone.utc)
            if comments:
                leave_req.comments = comments
            await db.flush()

            await create_audit_entry(
                db,
                action=AuditAction.update,
                table_name=LeaveRequest.__tablename__,
                record_id=leave_req.id,
                changed_by=approver.id,
                old_values=old_request,
                new_values=snapshot(leave_req, REQUEST_AUDIT_FIELDS),
            )
            await create_audit_entry(
                db,
                action=AuditAction.update,
                table_name=balance.__tablename__,
                record_id=balance.id,
                changed_by=approver.id,
                old_values=old_balance,
                new_values=snapshot(balance, BALANCE_FIELDS),
            )

        logger.info(
            "Leave request %s approved by %s (%d day(s) charged)",
            leave_req.id, approver.employee_id, leave_req.total_days,
        )
        return LeaveService._build_request_response(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Reject Leave
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def reject_leave(
        db: AsyncSession,
        request_id: uuid.UUID,
        reviewer_id: uuid.UUID,
        rejection_reason: str,
        *,
        comments: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Reject a pending leave request. The balance is not touched."""

        reason = (rejection_reason or "").strip()
        if not reason:
            raise ValidationError(
                detail="A rejection reason is required.",
                errors={"rejection_reason": ["Must not be blank."]},
            )

        async with unit_of_work(db):
            leave_req = await LeaveService._load_request(db, request_id, lock=True)
            ensure_transition(leave_req.status, LeaveStatus.rejected)

            reviewer = await LeaveService._load_reviewer(db, reviewer_id)
            LeaveService._ensure_can_review(
                reviewer,
                leave_req.employee,
                team_action=Action.reject_team_requests,
                any_action=Action.reject_any_requests,
            )

            old_values = snapshot(leave_req, REQUEST_AUDIT_FIELDS)
            leave_req.status = LeaveStatus.rejected
            leave_req.rejection_reason = reason
            if comments:
                leave_req.comments = comments
            await db.flush()

            await create_audit_entry(
                db,
                action=AuditAction.update,
                table_name=LeaveRequest.__tablename__,
                record_id=leave_req.id,
                changed_by=reviewer.id,
                old_values=old_values,
                new_values=snapshot(leave_req, REQUEST_AUDIT_FIELDS),
            )

        logger.info(
            "Leave request %s rejected by %s", leave_req.id, reviewer.employee_id,
        )
        return LeaveService._build_request_response(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Cancel Leave
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def cancel_leave(
        db: AsyncSession,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
        *,
        comments: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Cancel a pending leave request. Approved requests cannot be cancelled.

        Only the owner, or an actor holding ``cancel_any_requests``, may cancel.
        """

        async with unit_of_work(db):
            leave_req = await LeaveService._load_request(db, request_id, lock=True)

            if leave_req.employee_id != actor_id:
                actor = await LeaveService._load_reviewer(db, actor_id)
                if not can(actor.role, Action.cancel_any_requests):
                    raise ForbiddenError("You can only cancel your own leave requests.")

            ensure_transition(leave_req.status, LeaveStatus.cancelled)

            old_values = snapshot(leave_req, REQUEST_AUDIT_FIELDS)
            leave_req.status = LeaveStatus.cancelled
            if comments:
                leave_req.comments = comments
            await db.flush()

            await create_audit_entry(
                db,
                action=AuditAction.update,
                table_name=LeaveRequest.__tablename__,
                record_id=leave_req.id,
                changed_by=actor_id,
                old_values=old_values,
                new_values=snapshot(leave_req, REQUEST_AUDIT_FIELDS),
            )

        logger.info("Leave request %s cancelled by %s", leave_req.id, actor_id)
        return LeaveService._build_request_response(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Read
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_leave_request(
        db: AsyncSession,
        request_id: uuid.UUID,
    ) -> LeaveRequestOut:
        leave_req = await LeaveService._load_request(db, request_id)
        return LeaveService._build_request_response(leave_req)

    @staticmethod
    async def get_request_owner(
        db: AsyncSession,
        request_id: uuid.UUID,
    ) -> Employee:
        """Return the employee who owns *request_id* (for access checks)."""
        leave_req = await LeaveService._load_request(db, request_id)
        return leave_req.employee

    @staticmethod
    async def list_leave_requests(
        db: AsyncSession,
        pagination: PaginationParams,
        *,
        visible_employee_ids: Optional[Sequence[uuid.UUID]] = None,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[LeaveStatus] = None,
        leave_type_id: Optional[uuid.UUID] = None,
    ) -> PaginatedResponse:
        """List leave requests, newest first.

        ``visible_employee_ids`` restricts the result to those employees;
        ``None`` means no restriction.
        """

        query = (
            select(LeaveRequest)
            .options(
                selectinload(LeaveRequest.employee),
                selectinload(LeaveRequest.leave_type),
            )
            .order_by(LeaveRequest.created_at.desc())
        )
        query = apply_filters(
            query,
            LeaveRequest,
            {
                "employee_id__in": visible_employee_ids,
                "employee_id": employee_id,
                "status": status,
                "leave_type_id": leave_type_id,
            },
        )

        page = await paginate(db, query, pagination, model=LeaveRequest)
        return PaginatedResponse(
            data=[LeaveService._build_request_response(r) for r in page.data],
            meta=page.meta,
        )

    # ─────────────────────────────────────────────────────────────────
    # Balances
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _build_balance_response(balance) -> LeaveBalanceOut:
        out = LeaveBalanceOut.model_validate(balance)
        if balance.__dict__.get("leave_type") is not None:
            out.leave_type_name = balance.leave_type.name
            out.leave_type_description = balance.leave_type.description
        return out

    @staticmethod
    async def get_balances(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> EmployeeBalancesOut:
        """Per-leave-type balances of *employee_id* for *year* (default: current)."""

        employee = await db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)

        target_year = year or current_year()
        balances = await BalanceLedger.snapshot(db, employee_id, target_year)
        return EmployeeBalancesOut(
            employee_id=employee.id,
            employee_name=employee.name,
            year=target_year,
            leave_balances=[LeaveService._build_balance_response(b) for b in balances],
        )

    @staticmethod
    async def update_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        data: LeaveBalanceUpsert,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveBalanceOut:
        """HR upsert of one (leave type, year) balance row."""

        async with unit_of_work(db):
            employee = await db.get(Employee, employee_id)
            if employee is None:
                raise NotFoundError("Employee", employee_id)
            leave_type = await db.get(LeaveType, data.leave_type_id)
            if leave_type is None:
                raise NotFoundError("LeaveType", data.leave_type_id)

            balance, previous = await BalanceLedger.upsert(
                db,
                employee_id,
                data.leave_type_id,
                data.year or current_year(),
                allocated_days=data.allocated_days,
                used_days=data.used_days,
                carried_forward_days=data.carried_forward_days,
            )

            await create_audit_entry(
                db,
                action=AuditAction.insert if previous is None else AuditAction.update,
                table_name=balance.__tablename__,
                record_id=balance.id,
                changed_by=actor_id,
                old_values=previous,
                new_values=snapshot(balance, BALANCE_FIELDS),
            )

        logger.info(
            "Balance for employee %s / %s / %d set to allocated=%d used=%d cf=%d",
            employee.employee_id, leave_type.name, balance.year,
            balance.allocated_days, balance.used_days, balance.carried_forward_days,
        )
        out = LeaveService._build_balance_response(balance)
        out.leave_type_name = leave_type.name
        out.leave_type_description = leave_type.description
        return out
