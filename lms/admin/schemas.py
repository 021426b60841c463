"""Admin Pydantic schemas — audit-log entries."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


# ── Audit Log Schemas ───────────────────────────────────────────────

class AuditLogOut(BaseModel):
    id: uuid.UUID
    table_name: str
    record_id: uuid.UUID
    action: str
    old_values: Optional[dict[str, Any]] = None
    new_values: Optional[dict[str, Any]] = None
    changed_by: Optional[uuid.UUID] = None
    changed_at: datetime

    model_config = {"from_attributes": True}
