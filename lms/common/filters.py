"""Generic filtering and sorting utilities."""

from __future__ import annotations

from typing import Any, Callable, Optional

from sqlalchemy import Select, and_
from sqlalchemy.orm import InstrumentedAttribute

from lms.common.exceptions import ValidationError


# ── Sorting ─────────────────────────────────────────────────────────

def apply_sorting(
    query: Select,
    model: Any,
    sort: Optional[str],
) -> Select:
    """
    Parse a sort string like ``"-joining_date"`` and apply ORDER BY.

    * Leading ``-`` → DESC; otherwise ASC.
    * Unknown column names are rejected with a 400.
    """
    if not sort:
        return query

    descending = sort.startswith("-")
    col_name = sort.lstrip("-")

    col = _get_column(model, col_name)
    if col is None:
        raise ValidationError(
            detail=f"Cannot sort by '{col_name}'.",
            errors={"sort": [f"Unknown field '{col_name}'."]},
        )
    return query.order_by(None).order_by(col.desc() if descending else col.asc())


# ── Generic filtering ──────────────────────────────────────────────

_OPERATORS: dict[str, Callable[[Any, Any], Any]] = {
    "eq": lambda col, value: col == value,
    "ilike": lambda col, value: col.ilike(f"%{value}%"),
    "from": lambda col, value: col >= value,
    "to": lambda col, value: col <= value,
    "in": lambda col, value: col.in_(value),
}


def apply_filters(
    query: Select,
    model: Any,
    filters: dict[str, Any],
) -> Select:
    """
    Apply a dict of filter parameters to a SQLAlchemy ``Select``.

    Key suffixes determine the operator:

    ============  ==================
    Suffix        Operator
    ============  ==================
    (none)        ``==``
    ``__ilike``   case-insensitive LIKE (wraps ``%…%``)
    ``__from``    ``>=``
    ``__to``      ``<=``
    ``__in``      ``IN (…)``
    ============  ==================

    ``None`` values and keys that are not mapped columns are skipped.
    """
    conditions: list = []

    for key, value in filters.items():
        if value is None:
            continue

        name, _, suffix = key.rpartition("__")
        if not name or suffix not in _OPERATORS:
            name, suffix = key, "eq"

        col = _get_column(model, name)
        if col is not None:
            conditions.append(_OPERATORS[suffix](col, value))

    if conditions:
        query = query.where(and_(*conditions))

    return query


# ── Internal helper ─────────────────────────────────────────────────

def _get_column(model: Any, name: str) -> Optional[InstrumentedAttribute]:
    """Safely retrieve a mapped column attribute by name."""
    attr = getattr(model, name, None)
    return attr if isinstance(attr, InstrumentedAttribute) else None
