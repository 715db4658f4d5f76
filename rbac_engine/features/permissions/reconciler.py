"""
Reconciliation of declared permission metadata into storage.

The declared permission group forest and the stored flat group table are
kept as separate representations: the forest is walked first to build a
plan, and the plan is applied once the walk has finished. Nothing here
commits; callers run a whole pass inside one transaction.
"""
from collections.abc import Sequence
from dataclasses import dataclass, field

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from rbac_engine.core.database.upsert import upsert
from rbac_engine.features.permissions.exceptions import ValidationError
from rbac_engine.features.permissions.models import (
    Permission,
    PermissionGroup,
    PermissionGroupPermission,
)
from rbac_engine.features.permissions.schemas import (
    PermissionGroupItem,
    PermissionItem,
    PermissionMetadata,
)
from rbac_engine.utils import get_logger


log = get_logger(__name__)


@dataclass
class SyncResult:
    permissions: int
    permission_groups: int


@dataclass
class _GroupSyncPlan:
    """Writes collected while walking the declared forest."""
    existing_permission_names: set[str]
    existing_memberships: dict[str, list[str]]

    group_names: list[str] = field(default_factory=list)
    groups: list[dict] = field(default_factory=list)
    memberships: list[dict] = field(default_factory=list)
    membership_deletes: list[tuple[str, list[str]]] = field(default_factory=list)


async def sync_permission_metadata(db: AsyncSession, metadata: PermissionMetadata) -> SyncResult:
    """
    Make the permission and permission group tables match `metadata`.

    Run inside a single transaction: if any step raises, rolling back the
    session leaves the previously stored metadata intact.
    """
    permission_count = await sync_permissions(db, metadata.permissions)
    group_count = await sync_permission_groups(db, metadata.permission_groups)
    log.info(f"Synced permission metadata: {permission_count} permissions, {group_count} permission groups")
    return SyncResult(permissions=permission_count, permission_groups=group_count)


def validate_permissions(permissions: Sequence[PermissionItem]) -> None:
    """Reject duplicate names and duplicate (domain, resource, action) triples."""
    resource_action_keys: set[tuple[str, str, str]] = set()
    names: set[str] = set()
    for p in permissions:
        key = (p.domain, p.resource, p.action)
        if key in resource_action_keys:
            raise ValidationError(
                f"permission domain:{p.domain} + resource:{p.resource} + action:{p.action} reduplicated"
            )
        resource_action_keys.add(key)

        if p.name in names:
            raise ValidationError(f"permission name:{p.name} reduplicated")
        names.add(p.name)


async def sync_permissions(db: AsyncSession, permissions: Sequence[PermissionItem]) -> int:
    """
    Upsert declared permissions and delete stored ones that are no longer declared.

    Group memberships of deleted permissions are deleted with them. A stored
    permission whose (domain, resource, action) is now declared under another
    name is removed before the upsert and reinserted with its declared fields;
    its group memberships are kept.

    Returns:
        Number of declared permissions
    """
    validate_permissions(permissions)
    declared_names = {p.name for p in permissions}
    claimed_by = {(p.domain, p.resource, p.action): p.name for p in permissions}

    result = await db.execute(
        select(Permission.name, Permission.domain, Permission.resource, Permission.action)
    )
    obsolete = []
    displaced = []
    for name, domain, resource, action in result.all():
        if name not in declared_names:
            obsolete.append(name)
        elif claimed_by.get((domain, resource, action), name) != name:
            displaced.append(name)

    if obsolete:
        log.info(f"Deleting {len(obsolete)} obsolete permissions: {obsolete}")
        await db.execute(
            delete(PermissionGroupPermission).where(PermissionGroupPermission.permission_name.in_(obsolete))
        )
        await db.execute(delete(Permission).where(Permission.name.in_(obsolete)))

    if displaced:
        log.info(f"Releasing resource/action of {len(displaced)} permissions claimed by other names: {displaced}")
        await db.execute(delete(Permission).where(Permission.name.in_(displaced)))

    await upsert(
        db,
        Permission,
        [p.model_dump(include={"name", "title", "domain", "resource", "action"}) for p in permissions],
        index_elements=["name"],
        update_columns=["title", "domain", "resource", "action"],
    )
    return len(permissions)


async def sync_permission_groups(db: AsyncSession, groups: Sequence[PermissionGroupItem]) -> int:
    """
    Reconcile the permission group forest and each group's permission list.

    Group membership is checked against the permissions currently stored,
    so run `sync_permissions` first within the same transaction.

    Returns:
        Number of declared permission groups
    """
    result = await db.execute(select(Permission.name))
    plan = _GroupSyncPlan(
        existing_permission_names=set(result.scalars().all()),
        existing_memberships={},
    )

    result = await db.execute(
        select(PermissionGroupPermission.permission_group_name, PermissionGroupPermission.permission_name)
    )
    for group_name, permission_name in result.all():
        plan.existing_memberships.setdefault(group_name, []).append(permission_name)

    for index, item in enumerate(groups):
        _plan_permission_group(item, index, "", plan)

    # Apply the plan
    declared_names = set(plan.group_names)
    result = await db.execute(select(PermissionGroup.name))
    obsolete = [name for name in result.scalars().all() if name not in declared_names]

    if obsolete:
        log.info(f"Deleting {len(obsolete)} obsolete permission groups: {obsolete}")
        await db.execute(delete(PermissionGroup).where(PermissionGroup.name.in_(obsolete)))
        await db.execute(
            delete(PermissionGroupPermission).where(PermissionGroupPermission.permission_group_name.in_(obsolete))
        )

    for group_name, permission_names in plan.membership_deletes:
        await db.execute(
            delete(PermissionGroupPermission).where(
                PermissionGroupPermission.permission_group_name == group_name,
                PermissionGroupPermission.permission_name.in_(permission_names),
            )
        )

    await upsert(
        db,
        PermissionGroup,
        plan.groups,
        index_elements=["name"],
        update_columns=["title", "domain", "group_index", "parent_name"],
    )
    await upsert(
        db,
        PermissionGroupPermission,
        plan.memberships,
        index_elements=["permission_group_name", "permission_name"],
    )
    return len(plan.groups)


def _plan_permission_group(item: PermissionGroupItem, group_index: int, parent_name: str, plan: _GroupSyncPlan) -> None:
    if item.name in plan.group_names:
        raise ValidationError(f"permission group name:{item.name} reduplicated")

    plan.group_names.append(item.name)
    plan.groups.append({
        "name": item.name,
        "domain": item.domain,
        "title": item.title,
        "group_index": group_index,
        "parent_name": parent_name,
    })

    declared = list(dict.fromkeys(item.permissions))
    missing = [name for name in declared if name not in plan.existing_permission_names]
    if missing:
        raise ValidationError(
            f"permission group {item.name} references permissions that do not exist: {missing}"
        )

    removed = [
        name for name in plan.existing_memberships.get(item.name, [])
        if name not in declared
    ]
    if removed:
        plan.membership_deletes.append((item.name, removed))

    plan.memberships.extend(
        {"permission_group_name": item.name, "permission_name": name} for name in declared
    )

    for index, child in enumerate(item.permission_groups):
        _plan_permission_group(child, index, item.name, plan)
