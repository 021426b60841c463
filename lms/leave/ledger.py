"""Balance ledger — per employee / leave type / year day accounting.

All writes happen inside the caller's unit of work; nothing here commits.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Optional

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from lms.common.constants import MAX_BALANCE_YEAR, MIN_BALANCE_YEAR
from lms.common.exceptions import InsufficientBalance, ValidationError
from lms.leave.models import LeaveBalance, LeaveType

logger = logging.getLogger(__name__)


BALANCE_FIELDS = (
    "employee_id",
    "leave_type_id",
    "year",
    "allocated_days",
    "used_days",
    "carried_forward_days",
)


def current_year() -> int:
    """Balance year used by admission and approval."""
    return date.today().year


class BalanceLedger:
    """Async balance operations keyed by (employee, leave type, year)."""

    # ── Reads ───────────────────────────────────────────────────────

    @staticmethod
    def balance_query(
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
    ) -> Select:
        return select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type_id == leave_type_id,
            LeaveBalance.year == year,
        )

    @staticmethod
    def locked_balance_query(
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
    ) -> Select:
        """``SELECT … FOR UPDATE`` on a single balance row."""
        return (
            BalanceLedger.balance_query(employee_id, leave_type_id, year)
            .with_for_update()
            .execution_options(populate_existing=True)
        )

    @staticmethod
    async def get(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
    ) -> Optional[LeaveBalance]:
        result = await db.execute(
            BalanceLedger.balance_query(employee_id, leave_type_id, year)
        )
        return result.scalars().first()

    @staticmethod
    async def lock(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
    ) -> Optional[LeaveBalance]:
        """Fetch the balance row under a row lock (no-op lock on SQLite)."""
        result = await db.execute(
            BalanceLedger.locked_balance_query(employee_id, leave_type_id, year)
        )
        return result.scalars().first()

    @staticmethod
    async def snapshot(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
    ) -> list[LeaveBalance]:
        """All balance rows for *employee_id* in *year*, with leave types loaded."""
        result = await db.execute(
            select(LeaveBalance)
            .join(LeaveType, LeaveBalance.leave_type_id == LeaveType.id)
            .where(
                LeaveBalance.employee_id == employee_id,
                LeaveBalance.year == year,
            )
            .options(selectinload(LeaveBalance.leave_type))
            .order_by(LeaveType.name)
        )
        return list(result.scalars().all())

    # ── Writes ──────────────────────────────────────────────────────

    @staticmethod
    async def allocate_for_employee(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
    ) -> list[LeaveBalance]:
        """Create one row per active leave type for *year*.

        Rows that already exist are left untouched, so calling this twice
        is harmless. Returns only the rows created by this call.
        """
        leave_types = (
            await db.execute(
                select(LeaveType)
                .where(LeaveType.is_active.is_(True))
                .order_by(LeaveType.name)
            )
        ).scalars().all()

        existing = set(
            (
                await db.execute(
                    select(LeaveBalance.leave_type_id).where(
                        LeaveBalance.employee_id == employee_id,
                        LeaveBalance.year == year,
                    )
                )
            ).scalars().all()
        )

        created: list[LeaveBalance] = []
        for lt in leave_types:
            if lt.id in existing:
                continue
            balance = LeaveBalance(
                employee_id=employee_id,
                leave_type_id=lt.id,
                year=year,
                allocated_days=lt.max_days_per_year,
                used_days=0,
                carried_forward_days=0,
            )
            db.add(balance)
            created.append(balance)

        if created:
            await db.flush()
        logger.debug(
            "Allocated %d balance row(s) for employee %s in %d",
            len(created), employee_id, year,
        )
        return created

    @staticmethod
    def record_usage(balance: LeaveBalance, days: int) -> None:
        """Add *days* to ``used_days``; refuse to overdraw."""
        if days > balance.available_days:
            raise InsufficientBalance(requested=days, available=balance.available_days)
        balance.used_days += days

    @staticmethod
    async def upsert(
        db: AsyncSession,
        employee_id: uuid.UUID,
        leave_type_id: uuid.UUID,
        year: int,
        *,
        allocated_days: Optional[int] = None,
        used_days: Optional[int] = None,
        carried_forward_days: Optional[int] = None,
    ) -> tuple[LeaveBalance, Optional[dict]]:
        """Create or overwrite the balance row. Unset fields keep their value.

        Returns ``(balance, previous_values)``; ``previous_values`` is None
        when the row was created.
        """
        if not MIN_BALANCE_YEAR <= year <= MAX_BALANCE_YEAR:
            raise ValidationError(
                detail=f"Year must be between {MIN_BALANCE_YEAR} and {MAX_BALANCE_YEAR}.",
                errors={"year": [f"{year} is out of range."]},
            )

        balance = await BalanceLedger.lock(db, employee_id, leave_type_id, year)
        previous: Optional[dict] = None
        if balance is None:
            balance = LeaveBalance(
                employee_id=employee_id,
                leave_type_id=leave_type_id,
                year=year,
                allocated_days=0,
                used_days=0,
                carried_forward_days=0,
            )
            db.add(balance)
        else:
            previous = {name: getattr(balance, name) for name in BALANCE_FIELDS}

        if allocated_days is not None:
            balance.allocated_days = allocated_days
        if used_days is not None:
            balance.used_days = used_days
        if carried_forward_days is not None:
            balance.carried_forward_days = carried_forward_days

        for name in ("allocated_days", "used_days", "carried_forward_days"):
            if getattr(balance, name) < 0:
                raise ValidationError(
                    detail=f"{name} cannot be negative.",
                    errors={name: ["Must be zero or greater."]},
                )
        if balance.available_days < 0:
            raise ValidationError(
                detail="used_days cannot exceed allocated_days + carried_forward_days.",
                errors={"used_days": ["Exceeds the total entitlement."]},
            )

        await db.flush()
        return balance, previous
