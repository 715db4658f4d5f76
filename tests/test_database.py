from unittest.mock import MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite

from rbac_engine.core.database.engine import get_migrate_statements
from rbac_engine.core.database.upsert import upsert
from rbac_engine.features.permissions.models import Permission, UserRole


def test_migrate_statements_cover_all_tables() -> None:
    ddl = get_migrate_statements(sqlite.dialect())

    for table in (
        "permissions",
        "permission_groups",
        "permission_group_permissions",
        "roles",
        "role_permission_groups",
        "user_roles",
    ):
        assert f"CREATE TABLE {table} " in ddl
    assert "CONSTRAINT idx_permissions_resource UNIQUE" in ddl
    assert "CONSTRAINT idx_roles_name UNIQUE" in ddl
    assert "CREATE INDEX ix_permission_groups_domain ON permission_groups (domain);" in ddl


def test_migrate_statements_for_postgres() -> None:
    ddl = get_migrate_statements(postgresql.dialect())

    assert "CREATE TABLE roles" in ddl
    assert "SERIAL" in ddl
    assert "CREATE INDEX idx_user_roles_role_id ON user_roles (role_id);" in ddl


@pytest.mark.asyncio
async def test_upsert_updates_selected_columns(session_factory) -> None:
    async with session_factory() as session:
        async with session.begin():
            await upsert(
                session,
                Permission,
                [{"name": "p1", "title": "old", "domain": "", "resource": "/x", "action": "GET"}],
                index_elements=["name"],
                update_columns=["title"],
            )
            await upsert(
                session,
                Permission,
                [{"name": "p1", "title": "new", "domain": "", "resource": "/y", "action": "GET"}],
                index_elements=["name"],
                update_columns=["title"],
            )

    async with session_factory() as session:
        result = await session.execute(select(Permission.title, Permission.resource))
        assert [tuple(r) for r in result.all()] == [("new", "/x")]


@pytest.mark.asyncio
async def test_upsert_do_nothing_and_empty_rows(session_factory) -> None:
    async with session_factory() as session:
        async with session.begin():
            await upsert(session, UserRole, [], index_elements=["user_id", "role_id"])
            await upsert(
                session,
                UserRole,
                [{"user_id": 1, "role_id": 1}, {"user_id": 1, "role_id": 2}],
                index_elements=["user_id", "role_id"],
            )
            await upsert(
                session,
                UserRole,
                [{"user_id": 1, "role_id": 2}, {"user_id": 1, "role_id": 3}],
                index_elements=["user_id", "role_id"],
            )

    async with session_factory() as session:
        result = await session.execute(select(UserRole.role_id).order_by(UserRole.role_id))
        assert result.scalars().all() == [1, 2, 3]


@pytest.mark.asyncio
async def test_upsert_rejects_unsupported_dialect() -> None:
    db = MagicMock()
    db.get_bind.return_value.dialect.name = "oracle"

    with pytest.raises(ValueError, match="not supported for dialect 'oracle'"):
        await upsert(db, UserRole, [{"user_id": 1, "role_id": 1}], index_elements=["user_id", "role_id"])
