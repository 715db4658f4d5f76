"""Shared pytest fixtures: a file-backed SQLite database per test and sample metadata."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from rbac_engine.core.database.base import Base
from rbac_engine.features.permissions.models import (
    Permission,
    PermissionGroup,
    PermissionGroupPermission,
)
from rbac_engine.features.permissions.reconciler import sync_permission_metadata
from rbac_engine.features.permissions.schemas import PermissionMetadata


SAMPLE_METADATA = {
    "permissions": [
        {"name": "p1", "title": "Get x", "domain": "", "resource": "/x", "action": "GET"},
        {"name": "p2", "title": "Post x", "domain": "", "resource": "/x", "action": "POST"},
        {"name": "p3", "title": "Get teams", "domain": "console", "resource": "/teams", "action": "GET"},
    ],
    "permission_groups": [
        {
            "name": "g1",
            "title": "Group 1",
            "permissions": ["p1"],
            "permission_groups": [
                {"name": "g1.a", "title": "Group 1a", "permissions": ["p2"]},
                {"name": "g1.b", "title": "Group 1b"},
            ],
        },
        {"name": "g2", "title": "Group 2", "permissions": ["p3"]},
        {"name": "c1", "domain": "console", "title": "Console", "permissions": ["p3"]},
    ],
    "roles": [
        {"roleable_type": "app", "name": "r1", "title": "Role 1", "permission_groups": ["g1"]},
        {"roleable_type": "app", "name": "r2", "title": "Role 2", "permission_groups": ["g2", "g1.a"]},
        {"roleable_type": "team", "name": "t1", "title": "Team role", "permission_groups": ["c1"]},
    ],
}


@pytest.fixture
def metadata() -> PermissionMetadata:
    return PermissionMetadata.model_validate(SAMPLE_METADATA)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    """Provide a file-backed SQLite engine with all tables created."""

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rbac.sqlite'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def synced(session_factory, metadata) -> PermissionMetadata:
    """Reconcile the sample metadata and return it."""

    async with session_factory() as session:
        async with session.begin():
            await sync_permission_metadata(session, metadata)
    return metadata


async def snapshot(session: AsyncSession) -> tuple[list, list, list]:
    """Every reconciled row, as sorted tuples."""

    permissions = await session.execute(
        select(Permission.name, Permission.title, Permission.domain, Permission.resource, Permission.action)
        .order_by(Permission.name)
    )
    groups = await session.execute(
        select(
            PermissionGroup.name,
            PermissionGroup.domain,
            PermissionGroup.title,
            PermissionGroup.group_index,
            PermissionGroup.parent_name,
        ).order_by(PermissionGroup.name)
    )
    memberships = await session.execute(
        select(PermissionGroupPermission.permission_group_name, PermissionGroupPermission.permission_name)
        .order_by(PermissionGroupPermission.permission_group_name, PermissionGroupPermission.permission_name)
    )
    return (
        [tuple(row) for row in permissions.all()],
        [tuple(row) for row in groups.all()],
        [tuple(row) for row in memberships.all()],
    )
