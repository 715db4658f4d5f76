"""
Role management and role assignment.

Every function works in the caller's session and does not commit; the
session scope (`get_db`, or `async with session.begin()`) makes each call a
single transaction. Requests are validated before the first write.
"""
from collections.abc import Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from rbac_engine.core.database.upsert import upsert
from rbac_engine.features.permissions.exceptions import NotFoundError, ValidationError
from rbac_engine.features.permissions.models import (
    PermissionGroup,
    Role,
    RolePermissionGroup,
    UserRole,
)
from rbac_engine.features.permissions.schemas import (
    AssignRolesToUserParam,
    CreateRoleParam,
    PermissionMetadata,
    UpdateRoleParam,
)
from rbac_engine.utils import get_logger


log = get_logger(__name__)


async def _first_or_create_role(
    db: AsyncSession,
    roleable_type: str,
    roleable_id: int,
    name: str,
    title: str = "",
    description: str = "",
    creator_user_id: int = 0,
) -> Role:
    """
    Get the role identified by (roleable_type, roleable_id, name), creating it if needed.

    title, description and creator_user_id only apply to a newly created role.
    """
    stmt = select(Role).where(
        Role.roleable_type == roleable_type,
        Role.roleable_id == roleable_id,
        Role.name == name,
    )
    result = await db.execute(stmt)
    role = result.scalars().first()
    if role is not None:
        return role

    role = Role(
        roleable_type=roleable_type,
        roleable_id=roleable_id,
        name=name,
        title=title,
        description=description,
        creator_user_id=creator_user_id,
    )
    db.add(role)
    await db.flush()
    await db.refresh(role)
    log.info(f"Created role {name!r} in {roleable_type}:{roleable_id} (id={role.id})")
    return role


async def sync_preset_roles(
    db: AsyncSession,
    metadata: PermissionMetadata,
    roleable_id: int,
    roleable_type: str,
) -> list[Role]:
    """
    Materialize the preset roles declared for `roleable_type` on one owner.

    Existing roles keep their title and description, and their existing
    permission groups; declared groups are added alongside.

    Returns:
        The preset roles of the owner, in declaration order
    """
    roles = []
    for preset in metadata.roles:
        if preset.roleable_type != roleable_type:
            continue

        role = await _first_or_create_role(
            db,
            roleable_type,
            roleable_id,
            preset.name,
            title=preset.title,
            description=preset.description,
        )
        await upsert(
            db,
            RolePermissionGroup,
            [
                {"role_id": role.id, "permission_group_name": name}
                for name in dict.fromkeys(preset.permission_groups)
            ],
            index_elements=["role_id", "permission_group_name"],
        )
        roles.append(role)

    return roles


async def create_role(db: AsyncSession, param: CreateRoleParam) -> Role:
    """
    Create a role, or reuse the one with the same identity, and set its permission groups.

    Raises:
        ValidationError: permission_groups is empty or names unknown groups
    """
    await _check_permission_groups(db, param.permission_groups)

    role = await _first_or_create_role(
        db,
        param.roleable_type,
        param.roleable_id,
        param.name,
        title=param.title,
        description=param.description,
        creator_user_id=param.creator_user_id,
    )
    await _replace_role_permission_groups(db, role.id, param.permission_groups)
    return role


async def update_role(db: AsyncSession, param: UpdateRoleParam) -> Role:
    """
    Update a role's title, description and permission groups.

    Raises:
        NotFoundError: no role has id `param.id`
        ValidationError: permission_groups is empty or names unknown groups
    """
    role = await get_role(db, param.id)
    await _check_permission_groups(db, param.permission_groups)

    role.title = param.title
    role.description = param.description
    await db.flush()

    await _replace_role_permission_groups(db, role.id, param.permission_groups)
    await db.refresh(role)
    log.info(f"Updated role {role.id} ({role.name!r})")
    return role


async def get_role(db: AsyncSession, role_id: int) -> Role:
    result = await db.execute(select(Role).where(Role.id == role_id))
    role = result.scalars().first()
    if role is None:
        raise NotFoundError(f"role {role_id} not found")
    return role


async def delete_role(db: AsyncSession, role_id: int) -> None:
    """Delete a role together with its permission groups and user assignments."""
    await db.execute(delete(RolePermissionGroup).where(RolePermissionGroup.role_id == role_id))
    await db.execute(delete(UserRole).where(UserRole.role_id == role_id))
    await db.execute(delete(Role).where(Role.id == role_id))
    log.info(f"Deleted role {role_id}")


async def assign_permission_groups_to_role(
    db: AsyncSession,
    role_id: int,
    permission_group_names: Sequence[str],
) -> None:
    """
    Replace the permission groups of a role.

    Raises:
        ValidationError: the list is empty or names unknown groups
    """
    await _check_permission_groups(db, permission_group_names)
    await _replace_role_permission_groups(db, role_id, permission_group_names)


async def _check_permission_groups(db: AsyncSession, permission_group_names: Sequence[str]) -> None:
    if not permission_group_names:
        raise ValidationError("role must have at least one permission group")

    names = list(dict.fromkeys(permission_group_names))
    result = await db.execute(select(PermissionGroup.name).where(PermissionGroup.name.in_(names)))
    existing = set(result.scalars().all())
    missing = [name for name in names if name not in existing]
    if missing:
        raise ValidationError(f"permission groups not found: {missing}")


async def _replace_role_permission_groups(
    db: AsyncSession,
    role_id: int,
    permission_group_names: Sequence[str],
) -> None:
    await db.execute(delete(RolePermissionGroup).where(RolePermissionGroup.role_id == role_id))
    await upsert(
        db,
        RolePermissionGroup,
        [
            {"role_id": role_id, "permission_group_name": name}
            for name in dict.fromkeys(permission_group_names)
        ],
        index_elements=["role_id", "permission_group_name"],
    )


async def assign_roles_to_user(db: AsyncSession, param: AssignRolesToUserParam) -> None:
    """
    Replace a user's roles within one (roleable_type, roleable_id) scope.

    Roles the user holds in other scopes are not touched. An empty role_ids
    list removes the user's roles in the scope.

    Raises:
        ValidationError: a role id does not belong to the scope
    """
    result = await db.execute(
        select(Role.id).where(
            Role.roleable_type == param.roleable_type,
            Role.roleable_id == param.roleable_id,
        )
    )
    scope_role_ids = list(result.scalars().all())
    allowed = set(scope_role_ids)

    for role_id in param.role_ids:
        if role_id not in allowed:
            raise ValidationError(
                f"role id {role_id} not found in {param.roleable_type}:{param.roleable_id}"
            )

    if scope_role_ids:
        await db.execute(
            delete(UserRole).where(
                UserRole.user_id == param.user_id,
                UserRole.role_id.in_(scope_role_ids),
            )
        )

    await upsert(
        db,
        UserRole,
        [{"user_id": param.user_id, "role_id": role_id} for role_id in dict.fromkeys(param.role_ids)],
        index_elements=["user_id", "role_id"],
    )
    log.info(
        f"Assigned roles {param.role_ids} to user {param.user_id} in {param.roleable_type}:{param.roleable_id}"
    )
