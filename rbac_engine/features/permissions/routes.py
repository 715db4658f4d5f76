"""
Permission management API routes.

Provides endpoints for reconciling metadata, managing roles and role
assignments, and answering permission checks.
"""
from typing import Dict, List
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from rbac_engine.core.database.engine import get_db, get_migrate_statements
from rbac_engine.features.permissions import queries, roles
from rbac_engine.features.permissions.dependencies import check_rate_limit, get_metadata, limiter
from rbac_engine.features.permissions.reconciler import sync_permission_metadata
from rbac_engine.features.permissions.schemas import (
    AssignRolesToUserParam,
    CreateRoleParam,
    HasPermissionGroupParam,
    HasPermissionGroupsParam,
    HasPermissionParam,
    PermissionCheckResponse,
    PermissionGroupItem,
    PermissionGroupResponse,
    PermissionMetadata,
    RoleResponse,
    RoleUpdate,
    SyncPresetRolesParam,
    SyncResponse,
    UpdateRoleParam,
    UserRolesUpdate,
)


router = APIRouter()


# ============================================================================
# Metadata Routes
# ============================================================================

@router.post("/sync", response_model=SyncResponse)
async def sync_metadata(
    db: AsyncSession = Depends(get_db),
    metadata: PermissionMetadata = Depends(get_metadata),
):
    """Reconcile the configured metadata file into storage."""
    result = await sync_permission_metadata(db, metadata)
    return SyncResponse(permissions=result.permissions, permission_groups=result.permission_groups)


@router.get("/permission-groups/tree", response_model=List[PermissionGroupItem])
async def get_permission_group_tree(
    domain: str = "",
    db: AsyncSession = Depends(get_db),
):
    """Permission group forest of one domain."""
    return await queries.build_full_permission_group_tree(db, domain)


@router.get("/migrations", response_class=PlainTextResponse)
async def get_migrations():
    """DDL for the permission tables on the configured database."""
    return get_migrate_statements()


# ============================================================================
# Role Routes
# ============================================================================

@router.post("/roles/preset", response_model=List[RoleResponse])
async def sync_preset_roles(
    param: SyncPresetRolesParam,
    db: AsyncSession = Depends(get_db),
    metadata: PermissionMetadata = Depends(get_metadata),
):
    """Materialize the declared preset roles for one owner."""
    return await roles.sync_preset_roles(db, metadata, param.roleable_id, param.roleable_type)


@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    roleable_type: str,
    roleable_id: int,
    db: AsyncSession = Depends(get_db),
):
    """List roles owned by one owner."""
    return await queries.get_roles(db, roleable_id, roleable_type)


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    param: CreateRoleParam,
    db: AsyncSession = Depends(get_db),
):
    """Create a role with its permission groups."""
    return await roles.create_role(db, param)


@router.get("/roles/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a specific role by ID."""
    return await roles.get_role(db, role_id)


@router.put("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: int,
    role_update: RoleUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Update a role's title, description and permission groups."""
    param = UpdateRoleParam(id=role_id, **role_update.model_dump())
    return await roles.update_role(db, param)


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Delete a role and everything assigned to it."""
    await roles.delete_role(db, role_id)
    return None


@router.get("/roles/{role_id}/permission-groups", response_model=List[PermissionGroupResponse])
async def list_role_permission_groups(
    role_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Permission groups assigned to a role, ordered by group_index."""
    await roles.get_role(db, role_id)
    return await queries.get_role_permission_groups(db, role_id)


# ============================================================================
# User Role Routes
# ============================================================================

@router.put("/users/{user_id}/roles", status_code=status.HTTP_204_NO_CONTENT)
async def assign_user_roles(
    user_id: int,
    assignment: UserRolesUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Replace a user's roles within one owner."""
    param = AssignRolesToUserParam(user_id=user_id, **assignment.model_dump())
    await roles.assign_roles_to_user(db, param)
    return None


@router.get("/users/{user_id}/roles", response_model=List[RoleResponse])
async def list_user_roles(
    user_id: int,
    roleable_type: str,
    roleable_id: int,
    db: AsyncSession = Depends(get_db),
):
    """List a user's roles within one owner."""
    return await queries.get_user_roles(db, user_id, roleable_id, roleable_type)


@router.get("/users/{user_id}/roleable-ids", response_model=Dict[str, List[int]])
async def list_user_roleable_ids(
    user_id: int,
    roleable_type: List[str] = Query(default=[]),
    db: AsyncSession = Depends(get_db),
):
    """Owner ids per owner type where the user holds a role."""
    return await queries.get_user_roleable_ids_map(db, user_id, *roleable_type)


# ============================================================================
# Permission Check Routes
# ============================================================================

@router.post("/check", response_model=PermissionCheckResponse)
@limiter.limit(check_rate_limit)
async def check_permission(
    request: Request,
    param: HasPermissionParam,
    db: AsyncSession = Depends(get_db),
):
    """Check if a user has a permission within one owner."""
    return PermissionCheckResponse(has_permission=await queries.has_permission(db, param))


@router.post("/check/group", response_model=PermissionCheckResponse)
@limiter.limit(check_rate_limit)
async def check_permission_group(
    request: Request,
    param: HasPermissionGroupParam,
    db: AsyncSession = Depends(get_db),
):
    """Check if a user has a permission group within one owner."""
    return PermissionCheckResponse(has_permission=await queries.has_permission_group(db, param))


@router.post("/check/groups", response_model=Dict[str, bool])
@limiter.limit(check_rate_limit)
async def check_permission_groups(
    request: Request,
    param: HasPermissionGroupsParam,
    db: AsyncSession = Depends(get_db),
):
    """Check several permission groups at once."""
    return await queries.has_permission_groups(db, param)


@router.get("/check/any-role", response_model=PermissionCheckResponse)
@limiter.limit(check_rate_limit)
async def check_any_role(
    request: Request,
    user_id: int,
    roleable_type: str,
    roleable_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Check if a user holds any role within one owner."""
    return PermissionCheckResponse(
        has_permission=await queries.has_any_role(db, user_id, roleable_id, roleable_type)
    )
