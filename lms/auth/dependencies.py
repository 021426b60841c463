"""Auth dependencies — JWT validation, capability enforcement, record scoping.

Tokens are issued elsewhere; this service only verifies them. The caller's
role is always read from the employee record, never from the token.
"""

from __future__ import annotations

import uuid
from typing import Callable, Optional

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lms.common.constants import Action, can
from lms.common.exceptions import ForbiddenError, NotFoundError
from lms.config import settings
from lms.core_hr.models import Employee
from lms.core_hr.service import EmployeeService
from lms.database import get_db

def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Employee:
    """Validate JWT and return the authenticated, active Employee."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type.")

    try:
        employee_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token subject.")

    emp_result = await db.execute(
        select(Employee).where(Employee.id == employee_id, Employee.is_active.is_(True)),
    )
    employee = emp_result.scalars().first()
    if employee is None:
        raise HTTPException(status_code=401, detail="User account is inactive or not found.")

    # Attach role to request state for downstream use
    request.state.user_role = employee.role

    return employee


# ── Capability-based dependency ─────────────────────────────────────

def require_permission(*actions: Action) -> Callable:
    """Return a FastAPI dependency that passes if the caller holds any of *actions*."""

    async def _check(
        employee: Employee = Depends(get_current_user),
    ) -> Employee:
        if not any(can(employee.role, action) for action in actions):
            raise ForbiddenError(
                detail=(
                    f"Role '{employee.role.value}' lacks "
                    f"{' or '.join(a.value for a in actions)}."
                ),
            )
        return employee

    return _check


# ── Record scoping ──────────────────────────────────────────────────

async def ensure_employee_access(
    db: AsyncSession,
    user: Employee,
    employee_id: uuid.UUID,
    *,
    own: Optional[Action],
    team: Optional[Action],
    any_: Action,
) -> None:
    """Allow *user* to touch data belonging to *employee_id*.

    Self → ``own`` (always, when ``own`` is None); direct report → ``team``;
    anyone → ``any_``.
    """
    if employee_id == user.id and (own is None or can(user.role, own)):
        return
    if can(user.role, any_):
        return
    if team is not None and can(user.role, team):
        result = await db.execute(
            select(Employee.manager_id).where(Employee.id == employee_id)
        )
        row = result.first()
        if row is None:
            raise NotFoundError("Employee", employee_id)
        if row.manager_id == user.id:
            return
    raise ForbiddenError("You do not have access to this employee's records.")


async def visible_employee_ids(
    db: AsyncSession,
    user: Employee,
    *,
    own: Action = Action.view_own_requests,
    team: Action = Action.view_team_requests,
    any_: Action = Action.view_all_requests,
) -> Optional[list[uuid.UUID]]:
    """Employee ids whose records *user* may list; ``None`` means all."""
    if can(user.role, any_):
        return None

    ids: list[uuid.UUID] = []
    if can(user.role, own):
        ids.append(user.id)
    if can(user.role, team):
        ids.extend(await EmployeeService.get_team_ids(db, user.id))
    return ids
