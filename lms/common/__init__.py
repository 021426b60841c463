"""Common module — shared utilities for the leave management backend."""

from lms.common.audit import AuditLog, TimestampMixin, create_audit_entry, snapshot
from lms.common.constants import (
    CAPABILITIES,
    DEFAULT_PAGE_SIZE,
    MAX_PAGE_SIZE,
    Action,
    AuditAction,
    LeaveStatus,
    UserRole,
    can,
)
from lms.common.exceptions import (
    AppException,
    BeforeJoining,
    ConflictError,
    DuplicateError,
    ForbiddenError,
    InsufficientBalance,
    InvalidDateRange,
    NoBalanceRecord,
    NotFoundError,
    NotPending,
    OverlappingRequest,
    PersistenceError,
    RequestNotFound,
    ValidationError,
    ZeroDurationRequest,
    register_exception_handlers,
)
from lms.common.filters import apply_filters, apply_sorting
from lms.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)
from lms.common.transaction import unit_of_work

__all__ = [
    # Audit
    "AuditLog",
    "TimestampMixin",
    "create_audit_entry",
    "snapshot",
    # Constants / Enums
    "Action",
    "AuditAction",
    "LeaveStatus",
    "UserRole",
    "CAPABILITIES",
    "can",
    "DEFAULT_PAGE_SIZE",
    "MAX_PAGE_SIZE",
    # Exceptions
    "AppException",
    "BeforeJoining",
    "ConflictError",
    "DuplicateError",
    "ForbiddenError",
    "InsufficientBalance",
    "InvalidDateRange",
    "NoBalanceRecord",
    "NotFoundError",
    "NotPending",
    "OverlappingRequest",
    "PersistenceError",
    "RequestNotFound",
    "ValidationError",
    "ZeroDurationRequest",
    "register_exception_handlers",
    # Filters
    "apply_filters",
    "apply_sorting",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
    # Transactions
    "unit_of_work",
]
