"""
Authorization queries.

Checks are single statements built from nested scopes:

    permission
      IN group memberships
        IN the role's permission groups
          IN roles owned by (roleable_type, roleable_id)
            IN roles assigned to the user

Permissions are not inherited from parent groups: a role reaches exactly
the permissions listed on the groups assigned to it.
"""
from collections.abc import Sequence

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rbac_engine.features.permissions.models import (
    Permission,
    PermissionGroup,
    PermissionGroupPermission,
    Role,
    RolePermissionGroup,
    UserRole,
)
from rbac_engine.features.permissions.schemas import (
    HasPermissionGroupParam,
    HasPermissionGroupsParam,
    HasPermissionParam,
    PermissionGroupItem,
)
from rbac_engine.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Scope sub-selects
# ============================================================================

def _user_role_ids(user_id: int) -> Select:
    return select(UserRole.role_id).where(UserRole.user_id == user_id)


def _user_scope_role_ids(user_id: int, roleable_type: str, roleable_id: int) -> Select:
    """Ids of the roles the user holds within one owner scope."""
    return select(Role.id).where(
        Role.roleable_type == roleable_type,
        Role.roleable_id == roleable_id,
        Role.id.in_(_user_role_ids(user_id)),
    )


def _user_scope_group_names(user_id: int, roleable_type: str, roleable_id: int) -> Select:
    return select(RolePermissionGroup.permission_group_name).where(
        RolePermissionGroup.role_id.in_(_user_scope_role_ids(user_id, roleable_type, roleable_id))
    )


# ============================================================================
# Checks
# ============================================================================

async def has_permission(db: AsyncSession, param: HasPermissionParam) -> bool:
    """
    Check whether the user holds (domain, resource, action) within the scope.

    Matching is exact; there are no wildcards.
    """
    group_names = _user_scope_group_names(param.user_id, param.roleable_type, param.roleable_id)
    permission_names = select(PermissionGroupPermission.permission_name).where(
        PermissionGroupPermission.permission_group_name.in_(group_names)
    )
    stmt = select(func.count()).select_from(Permission).where(
        Permission.name.in_(permission_names),
        Permission.domain == param.domain,
        Permission.resource == param.resource,
        Permission.action == param.action,
    )
    result = await db.execute(stmt)
    granted = result.scalar_one() > 0

    log.debug(
        f"User {param.user_id} {'granted' if granted else 'denied'} {param.action} on "
        f"{param.domain}{param.resource} in {param.roleable_type}:{param.roleable_id}"
    )
    return granted


async def has_permission_group(db: AsyncSession, param: HasPermissionGroupParam) -> bool:
    """Check whether one of the user's roles in the scope is assigned the group."""
    stmt = select(func.count()).select_from(RolePermissionGroup).where(
        RolePermissionGroup.role_id.in_(
            _user_scope_role_ids(param.user_id, param.roleable_type, param.roleable_id)
        ),
        RolePermissionGroup.permission_group_name == param.permission_group_name,
    )
    result = await db.execute(stmt)
    return result.scalar_one() > 0


async def has_permission_groups(db: AsyncSession, param: HasPermissionGroupsParam) -> dict[str, bool]:
    """
    Batch form of `has_permission_group`.

    Returns:
        Mapping of every requested group name to whether the user has it,
        in request order. Empty when no names are requested.
    """
    if not param.permission_group_names:
        return {}

    stmt = select(RolePermissionGroup.permission_group_name).distinct().where(
        RolePermissionGroup.role_id.in_(
            _user_scope_role_ids(param.user_id, param.roleable_type, param.roleable_id)
        ),
        RolePermissionGroup.permission_group_name.in_(param.permission_group_names),
    )
    result = await db.execute(stmt)
    held = set(result.scalars().all())
    return {name: name in held for name in param.permission_group_names}


async def has_any_role(db: AsyncSession, user_id: int, roleable_id: int, roleable_type: str) -> bool:
    stmt = select(func.count()).select_from(UserRole).where(
        UserRole.user_id == user_id,
        UserRole.role_id.in_(
            select(Role.id).where(Role.roleable_type == roleable_type, Role.roleable_id == roleable_id)
        ),
    )
    result = await db.execute(stmt)
    return result.scalar_one() > 0


# ============================================================================
# Listings
# ============================================================================

async def get_roles(db: AsyncSession, roleable_id: int, roleable_type: str) -> list[Role]:
    """All roles owned by the scope, ordered by id."""
    stmt = (
        select(Role)
        .where(Role.roleable_type == roleable_type, Role.roleable_id == roleable_id)
        .order_by(Role.id)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_user_roles(db: AsyncSession, user_id: int, roleable_id: int, roleable_type: str) -> list[Role]:
    """The user's roles within the scope, ordered by id."""
    stmt = (
        select(Role)
        .where(
            Role.roleable_type == roleable_type,
            Role.roleable_id == roleable_id,
            Role.id.in_(_user_role_ids(user_id)),
        )
        .order_by(Role.id)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_role_permission_group_names(db: AsyncSession, role_id: int) -> list[str]:
    """Names of the groups assigned to a role, ordered like `get_role_permission_groups`."""
    stmt = (
        select(RolePermissionGroup.permission_group_name)
        .join(PermissionGroup, PermissionGroup.name == RolePermissionGroup.permission_group_name, isouter=True)
        .where(RolePermissionGroup.role_id == role_id)
        .order_by(PermissionGroup.group_index, RolePermissionGroup.permission_group_name)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_role_permission_groups(db: AsyncSession, role_id: int) -> list[PermissionGroup]:
    stmt = (
        select(PermissionGroup)
        .where(
            PermissionGroup.name.in_(
                select(RolePermissionGroup.permission_group_name).where(RolePermissionGroup.role_id == role_id)
            )
        )
        .order_by(PermissionGroup.group_index, PermissionGroup.name)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_user_roleable_ids(db: AsyncSession, user_id: int, roleable_type: str) -> list[int]:
    """Distinct ids of the owners of `roleable_type` where the user holds a role, ascending."""
    stmt = (
        select(Role.roleable_id)
        .distinct()
        .where(Role.roleable_type == roleable_type, Role.id.in_(_user_role_ids(user_id)))
        .order_by(Role.roleable_id)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_user_roleable_ids_map(db: AsyncSession, user_id: int, *roleable_types: str) -> dict[str, list[int]]:
    """
    Owner ids per requested owner type where the user holds any role.

    Ids appear once each, in the order their first role was created.
    Types without any role are absent from the result.
    """
    if not roleable_types:
        return {}

    stmt = (
        select(Role.roleable_type, Role.roleable_id)
        .where(Role.roleable_type.in_(roleable_types), Role.id.in_(_user_role_ids(user_id)))
        .order_by(Role.id)
    )
    result = await db.execute(stmt)

    roleable_ids_map: dict[str, list[int]] = {}
    for roleable_type, roleable_id in result.all():
        ids = roleable_ids_map.setdefault(roleable_type, [])
        if roleable_id not in ids:
            ids.append(roleable_id)
    return roleable_ids_map


# ============================================================================
# Permission group tree
# ============================================================================

def build_permission_group_tree(
    permission_groups: Sequence[PermissionGroup],
    parent_name: str = "",
) -> list[PermissionGroupItem]:
    """
    Rebuild the nested forest from flat group rows.

    Nodes whose parent_name equals `parent_name` become roots; sibling order
    follows the order of `permission_groups`, so pass rows sorted by
    group_index.
    """
    children_by_parent: dict[str, list[PermissionGroup]] = {}
    for group in permission_groups:
        children_by_parent.setdefault(group.parent_name, []).append(group)

    def build(name: str, ancestors: frozenset[str]) -> list[PermissionGroupItem]:
        tree = []
        for group in children_by_parent.get(name, []):
            # Stored parent pointers are not trusted to be acyclic
            if group.name in ancestors:
                continue
            tree.append(PermissionGroupItem(
                name=group.name,
                domain=group.domain,
                title=group.title,
                permission_groups=build(group.name, ancestors | {group.name}),
            ))
        return tree

    return build(parent_name, frozenset({parent_name}))


async def build_full_permission_group_tree(db: AsyncSession, domain: str) -> list[PermissionGroupItem]:
    """The complete permission group forest of one domain."""
    stmt = (
        select(PermissionGroup)
        .where(PermissionGroup.domain == domain)
        .order_by(PermissionGroup.group_index, PermissionGroup.name)
    )
    result = await db.execute(stmt)
    return build_permission_group_tree(list(result.scalars().all()), "")
