"""Timestamp mixin, audit-log model, and async helper for recording entity changes."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from lms.common.constants import AuditAction
from lms.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Mixin for any timestamped model ─────────────────────────────────

class TimestampMixin:
    """
    Add ``created_at`` and ``updated_at`` to any SQLAlchemy model via::

        class Employee(Base, TimestampMixin):
            ...
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("NOW()"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("NOW()"),
        onupdate=utcnow,
    )


# ── Immutable audit-log table ───────────────────────────────────────

class AuditLog(Base):
    """Immutable log of every insert / update / delete on business tables."""

    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    table_name: Mapped[str] = mapped_column(String(50), nullable=False)
    record_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False,
    )
    action: Mapped[str] = mapped_column(String(10), nullable=False)
    old_values = Column(JSONB, nullable=True)
    new_values = Column(JSONB, nullable=True)
    changed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("employees.id"),
        nullable=True,
    )
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("NOW()"),
    )

    __table_args__ = (
        Index("ix_audit_logs_record", "table_name", "record_id"),
        Index("ix_audit_logs_changed_by", "changed_by"),
        Index("ix_audit_logs_changed_at", "changed_at"),
        Index("ix_audit_logs_action", "action"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditLog {self.action} {self.table_name}"
            f"/{self.record_id} by {self.changed_by}>"
        )


# ── Helpers ─────────────────────────────────────────────────────────

def snapshot(obj: Any, fields: Iterable[str]) -> dict[str, Any]:
    """Return a JSON-safe dict of *fields* read from *obj*."""
    return jsonable_encoder({name: getattr(obj, name) for name in fields})


async def create_audit_entry(
    session: AsyncSession,
    *,
    action: AuditAction,
    table_name: str,
    record_id: uuid.UUID,
    changed_by: Optional[uuid.UUID] = None,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """
    Create and flush an audit-log entry inside the caller's transaction.

    Args:
        session: Async SQLAlchemy session.
        action: INSERT | UPDATE | DELETE.
        table_name: e.g. "employees", "leave_requests".
        record_id: UUID of the affected row.
        changed_by: UUID of the employee performing the change.
        old_values: Previous state (for updates/deletes).
        new_values: New state (for inserts/updates).
    """
    entry = AuditLog(
        table_name=table_name,
        record_id=record_id,
        action=action.value,
        old_values=jsonable_encoder(old_values) if old_values is not None else None,
        new_values=jsonable_encoder(new_values) if new_values is not None else None,
        changed_by=changed_by,
    )
    session.add(entry)
    await session.flush()
    return entry
