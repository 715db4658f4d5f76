"""
Pydantic schemas for permission management.

Declared metadata (the document reconciled into storage), operation
parameters, and response models.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict


# ============================================================================
# Declared Metadata
# ============================================================================

class PermissionItem(BaseModel):
    """One declared permission."""
    name: str = Field(..., min_length=1, max_length=256, description="Unique permission name")
    title: str = Field("", max_length=256)
    domain: str = Field("", max_length=128, description="System the permission belongs to, e.g. 'console'")
    resource: str = Field(..., max_length=256, description="Guarded resource, e.g. '/api/v1/posts'")
    action: str = Field(..., max_length=64, description="Action, e.g. 'GET', 'POST'")


class PermissionGroupItem(BaseModel):
    """
    One node of the declared permission group forest.

    Also returned by the tree builders, where `permissions` is left empty.
    """
    name: str = Field(..., min_length=1, max_length=256)
    domain: str = Field("", max_length=128)
    title: str = Field("", max_length=256)
    permissions: List[str] = Field(default_factory=list)
    permission_groups: List[PermissionGroupItem] = Field(default_factory=list)


class RolePermissionGroupItem(BaseModel):
    """Preset role materialized for every owner of `roleable_type`."""
    roleable_type: str = Field(..., min_length=1, max_length=128)
    name: str = Field(..., min_length=1, max_length=256)
    title: str = ""
    description: str = ""
    permission_groups: List[str] = Field(default_factory=list)


class PermissionMetadata(BaseModel):
    permissions: List[PermissionItem] = Field(default_factory=list)
    permission_groups: List[PermissionGroupItem] = Field(default_factory=list)
    roles: List[RolePermissionGroupItem] = Field(default_factory=list)


# ============================================================================
# Role Parameters
# ============================================================================

class CreateRoleParam(BaseModel):
    roleable_type: str = Field(..., min_length=1, max_length=128)
    roleable_id: int
    name: str = Field(..., min_length=1, max_length=256)
    title: str = ""
    description: str = ""
    permission_groups: List[str] = Field(default_factory=list)
    creator_user_id: int = 0


class RoleUpdate(BaseModel):
    """Editable role fields; the identity triple cannot be changed."""
    title: str = ""
    description: str = ""
    permission_groups: List[str] = Field(default_factory=list)


class UpdateRoleParam(RoleUpdate):
    id: int


class UserRolesUpdate(BaseModel):
    roleable_type: str
    roleable_id: int
    role_ids: List[int] = Field(default_factory=list)


class AssignRolesToUserParam(UserRolesUpdate):
    user_id: int


class SyncPresetRolesParam(BaseModel):
    roleable_type: str
    roleable_id: int


# ============================================================================
# Check Parameters
# ============================================================================

class HasPermissionParam(BaseModel):
    user_id: int
    roleable_type: str
    roleable_id: int
    domain: str = ""
    resource: str
    action: str


class HasPermissionGroupParam(BaseModel):
    user_id: int
    roleable_type: str
    roleable_id: int
    permission_group_name: str


class HasPermissionGroupsParam(BaseModel):
    user_id: int
    roleable_type: str
    roleable_id: int
    permission_group_names: List[str] = Field(default_factory=list)


class PermissionCheckResponse(BaseModel):
    has_permission: bool


# ============================================================================
# Responses
# ============================================================================

class RoleResponse(BaseModel):
    id: int
    roleable_type: str
    roleable_id: int
    name: str
    title: str
    description: str
    creator_user_id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PermissionGroupResponse(BaseModel):
    name: str
    domain: str
    title: str
    group_index: int
    parent_name: str

    model_config = ConfigDict(from_attributes=True)


class SyncResponse(BaseModel):
    permissions: int
    permission_groups: int
