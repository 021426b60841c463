"""Enums, constants and the role capability table — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum
from types import MappingProxyType
from typing import Mapping


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    hr = "hr"
    admin = "admin"


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


# ── Audit ───────────────────────────────────────────────────────────

class AuditAction(str, enum.Enum):
    insert = "INSERT"
    update = "UPDATE"
    delete = "DELETE"


# ── Capabilities ────────────────────────────────────────────────────

class Action(str, enum.Enum):
    """Operations guarded by the capability table."""

    view_own_requests = "view_own_requests"
    create_own_requests = "create_own_requests"
    cancel_own_requests = "cancel_own_requests"
    view_own_balances = "view_own_balances"

    view_team_requests = "view_team_requests"
    approve_team_requests = "approve_team_requests"
    reject_team_requests = "reject_team_requests"
    view_team_employees = "view_team_employees"

    view_all_requests = "view_all_requests"
    create_any_requests = "create_any_requests"
    approve_any_requests = "approve_any_requests"
    reject_any_requests = "reject_any_requests"
    cancel_any_requests = "cancel_any_requests"

    view_all_employees = "view_all_employees"
    manage_employees = "manage_employees"
    manage_departments = "manage_departments"
    manage_leave_types = "manage_leave_types"
    view_all_balances = "view_all_balances"
    manage_balances = "manage_balances"
    view_audit_logs = "view_audit_logs"
    system_config = "system_config"


_EMPLOYEE_ACTIONS = frozenset({
    Action.view_own_requests,
    Action.create_own_requests,
    Action.cancel_own_requests,
    Action.view_own_balances,
})

_MANAGER_ACTIONS = _EMPLOYEE_ACTIONS | {
    Action.view_team_requests,
    Action.approve_team_requests,
    Action.reject_team_requests,
    Action.view_team_employees,
}

_HR_ACTIONS = frozenset(Action) - {Action.system_config}

_ADMIN_ACTIONS = frozenset(Action)

_GRANTS: dict[UserRole, frozenset[Action]] = {
    UserRole.employee: _EMPLOYEE_ACTIONS,
    UserRole.manager: _MANAGER_ACTIONS,
    UserRole.hr: _HR_ACTIONS,
    UserRole.admin: _ADMIN_ACTIONS,
}

# Every (role, action) pair has an explicit entry; lookups never fall through.
CAPABILITIES: Mapping[tuple[UserRole, Action], bool] = MappingProxyType({
    (role, action): action in _GRANTS[role]
    for role in UserRole
    for action in Action
})


def can(role: UserRole, action: Action) -> bool:
    """Return whether *role* is granted *action*."""
    return CAPABILITIES[(role, action)]


# ── Misc constants ──────────────────────────────────────────────────

MIN_BALANCE_YEAR = 2020
MAX_BALANCE_YEAR = 2050
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
AUDIT_LOG_DEFAULT_LIMIT = 50
AUDIT_LOG_MAX_LIMIT = 200
