"""Admin service — leave type catalogue and audit-log queries."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lms.common.audit import AuditLog, create_audit_entry, snapshot
from lms.common.constants import AUDIT_LOG_DEFAULT_LIMIT, AuditAction
from lms.common.exceptions import DuplicateError, NotFoundError, ValidationError
from lms.common.filters import apply_filters
from lms.common.transaction import unit_of_work
from lms.leave.models import LeaveType
from lms.leave.schemas import LeaveTypeCreate, LeaveTypeUpdate

logger = logging.getLogger(__name__)

LEAVE_TYPE_AUDIT_FIELDS = (
    "name",
    "description",
    "max_days_per_year",
    "carry_forward_allowed",
    "max_carry_forward_days",
    "is_active",
)


class AdminService:
    """Static service class for admin operations."""

    # ── Leave Types ─────────────────────────────────────────────────

    @staticmethod
    async def _get_leave_type(db: AsyncSession, leave_type_id: uuid.UUID) -> LeaveType:
        lt = await db.get(LeaveType, leave_type_id)
        if lt is None:
            raise NotFoundError("LeaveType", leave_type_id)
        return lt

    @staticmethod
    async def _ensure_unique_name(
        db: AsyncSession,
        name: str,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        query = select(LeaveType.id).where(LeaveType.name == name)
        if exclude_id is not None:
            query = query.where(LeaveType.id != exclude_id)
        if (await db.execute(query)).first() is not None:
            raise DuplicateError("name", name)

    @staticmethod
    async def list_leave_types(
        db: AsyncSession,
        *,
        include_inactive: bool = False,
    ) -> list[LeaveType]:
        query = select(LeaveType).order_by(LeaveType.name)
        if not include_inactive:
            query = query.where(LeaveType.is_active.is_(True))
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def create_leave_type(
        db: AsyncSession,
        data: LeaveTypeCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveType:
        async with unit_of_work(db):
            await AdminService._ensure_unique_name(db, data.name)

            lt = LeaveType(
                name=data.name,
                description=data.description,
                max_days_per_year=data.max_days_per_year,
                carry_forward_allowed=data.carry_forward_allowed,
                # Carry-forward days only mean something when carry-forward is on
                max_carry_forward_days=(
                    data.max_carry_forward_days if data.carry_forward_allowed else 0
                ),
                is_active=True,
            )
            db.add(lt)
            await db.flush()

            await create_audit_entry(
                db,
                action=AuditAction.insert,
                table_name=LeaveType.__tablename__,
                record_id=lt.id,
                changed_by=actor_id,
                new_values=snapshot(lt, LEAVE_TYPE_AUDIT_FIELDS),
            )

        logger.info("Leave type %r created (%d day(s)/year)", lt.name, lt.max_days_per_year)
        return lt

    @staticmethod
    async def update_leave_type(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        data: LeaveTypeUpdate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveType:
        update_data = data.model_dump(exclude_unset=True)
        if not update_data:
            raise ValidationError(detail="No fields to update.")

        async with unit_of_work(db):
            lt = await AdminService._get_leave_type(db, leave_type_id)

            for required in ("name", "max_days_per_year", "carry_forward_allowed",
                             "max_carry_forward_days", "is_active"):
                if required in update_data and update_data[required] is None:
                    raise ValidationError(
                        detail=f"{required} cannot be null.",
                        errors={required: ["Must not be null."]},
                    )
            if "name" in update_data:
                update_data["name"] = update_data["name"].strip()
                if not update_data["name"]:
                    raise ValidationError(
                        detail="name cannot be blank.",
                        errors={"name": ["Must not be blank."]},
                    )
                await AdminService._ensure_unique_name(
                    db, update_data["name"], exclude_id=lt.id,
                )

            old_values = snapshot(lt, LEAVE_TYPE_AUDIT_FIELDS)
            for key, value in update_data.items():
                setattr(lt, key, value)
            if not lt.carry_forward_allowed:
                lt.max_carry_forward_days = 0
            await db.flush()

            await create_audit_entry(
                db,
                action=AuditAction.update,
                table_name=LeaveType.__tablename__,
                record_id=lt.id,
                changed_by=actor_id,
                old_values=old_values,
                new_values=snapshot(lt, LEAVE_TYPE_AUDIT_FIELDS),
            )

        return lt

    @staticmethod
    async def deactivate_leave_type(
        db: AsyncSession,
        leave_type_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> LeaveType:
        """Soft delete. Existing balances and requests stay intact."""
        async with unit_of_work(db):
            lt = await AdminService._get_leave_type(db, leave_type_id)
            if lt.is_active:
                lt.is_active = False
                await db.flush()
                await create_audit_entry(
                    db,
                    action=AuditAction.update,
                    table_name=LeaveType.__tablename__,
                    record_id=lt.id,
                    changed_by=actor_id,
                    old_values={"is_active": True},
                    new_values={"is_active": False},
                )

        logger.info("Leave type %r deactivated", lt.name)
        return lt

    # ── Audit Logs ──────────────────────────────────────────────────

    @staticmethod
    async def list_audit_logs(
        db: AsyncSession,
        *,
        table_name: Optional[str] = None,
        record_id: Optional[uuid.UUID] = None,
        action: Optional[AuditAction] = None,
        changed_by: Optional[uuid.UUID] = None,
        changed_from: Optional[datetime] = None,
        changed_to: Optional[datetime] = None,
        limit: int = AUDIT_LOG_DEFAULT_LIMIT,
    ) -> list[AuditLog]:
        """Most recent audit entries first, narrowed by the given filters."""
        query = apply_filters(
            select(AuditLog),
            AuditLog,
            {
                "table_name": table_name,
                "record_id": record_id,
                "action": action.value if action is not None else None,
                "changed_by": changed_by,
                "changed_at__from": changed_from,
                "changed_at__to": changed_to,
            },
        )
        query = query.order_by(AuditLog.changed_at.desc()).limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())
