"""The hand-written initial migration must describe the same schema as the ORM."""

from __future__ import annotations

import importlib.util
import re
from pathlib import Path

import pytest

from lms.common.constants import LeaveStatus, UserRole
from lms.database import Base

MIGRATION = Path(__file__).resolve().parents[1] / "alembic" / "versions" / "001_initial_schema.py"


def _load_migration():
    spec = importlib.util.spec_from_file_location("initial_schema", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _create_table_block(source: str, table: str) -> str:
    match = re.search(rf"CREATE TABLE {table} \((.*?)\n        \)\n", source, re.S)
    assert match, f"no CREATE TABLE for {table}"
    return match.group(1)


def test_enum_types_match_python_enums():
    enums = dict(_load_migration().ENUM_TYPES)
    assert enums["user_role"] == [r.value for r in UserRole]
    assert enums["leave_status"] == [s.value for s in LeaveStatus]


@pytest.mark.parametrize("table", sorted(Base.metadata.tables), ids=str)
def test_every_mapped_column_is_created(table):
    block = _create_table_block(MIGRATION.read_text(), table)
    for column in Base.metadata.tables[table].columns:
        assert re.search(rf"^\s+{column.name}\s", block, re.M), f"{table}.{column.name}"


def test_named_constraints_are_created():
    source = MIGRATION.read_text()
    for table in Base.metadata.tables.values():
        for constraint in table.constraints:
            if constraint.name and not constraint.name.startswith("pk_"):
                assert constraint.name in source, constraint.name
        for index in table.indexes:
            assert index.name in source, index.name


def test_downgrade_drops_every_table():
    source = MIGRATION.read_text()
    downgrade = source[source.index("def downgrade"):]
    for table in Base.metadata.tables:
        assert table in downgrade, table
