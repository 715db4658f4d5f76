"""
Permission, PermissionGroup and Role models for scope-owned RBAC.

This module implements the storage side of the permission system:
- Permissions keyed by name, each guarding one (domain, resource, action)
- Permission groups forming a forest through parent_name
- Roles owned by a polymorphic (roleable_type, roleable_id) scope
- Role <-> permission group and user <-> role assignments

Join tables carry no foreign keys; membership rows are removed explicitly by
the reconciler and role manager rather than through storage cascades.
"""
from sqlalchemy import BigInteger, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rbac_engine.core.database.base import Base, CreatedAtMixin, TimestampMixin


# ============================================================================
# Reconciled metadata
# ============================================================================

class Permission(Base, CreatedAtMixin):
    """
    A single guarded operation.

    Examples:
    - domain="", resource="/api/v1/apps/:id", action="GET"
    - domain="console", resource="/api/v1/teams", action="POST"
    """
    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint("domain", "resource", "action", name="idx_permissions_resource"),
    )

    name: Mapped[str] = mapped_column(String(256), primary_key=True, autoincrement=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    domain: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    resource: Mapped[str] = mapped_column(String(256), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<Permission(name={self.name!r}, domain={self.domain!r}, resource={self.resource}, action={self.action})>"


class PermissionGroup(Base, CreatedAtMixin):
    """
    Named bundle of permissions, also used as a menu node.

    An empty parent_name marks a root; group_index orders siblings.
    """
    __tablename__ = "permission_groups"

    name: Mapped[str] = mapped_column(String(256), primary_key=True, autoincrement=False)
    domain: Mapped[str] = mapped_column(String(128), nullable=False, default="", index=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    group_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    parent_name: Mapped[str] = mapped_column(String(256), nullable=False, default="")

    def __repr__(self) -> str:
        return f"<PermissionGroup(name={self.name!r}, parent={self.parent_name!r}, index={self.group_index})>"


class PermissionGroupPermission(Base, CreatedAtMixin):
    __tablename__ = "permission_group_permissions"

    permission_group_name: Mapped[str] = mapped_column(String(256), primary_key=True, autoincrement=False)
    permission_name: Mapped[str] = mapped_column(String(256), primary_key=True, autoincrement=False)

    def __repr__(self) -> str:
        return f"<PermissionGroupPermission(group={self.permission_group_name!r}, permission={self.permission_name!r})>"


# ============================================================================
# Roles and assignments
# ============================================================================

class Role(Base, TimestampMixin):
    """
    Role owned by exactly one roleable scope.

    Examples: ("app", 1, "owner"), ("team", 7, "viewer")
    The identity triple never changes after creation; title and description
    are editable.
    """
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("roleable_type", "roleable_id", "name", name="idx_roles_name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    roleable_type: Mapped[str] = mapped_column(String(128), nullable=False)
    roleable_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    name: Mapped[str] = mapped_column(String(256), nullable=False)

    title: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    creator_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r}, scope={self.roleable_type}:{self.roleable_id})>"


class RolePermissionGroup(Base, CreatedAtMixin):
    __tablename__ = "role_permission_groups"

    role_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    permission_group_name: Mapped[str] = mapped_column(String(256), primary_key=True, autoincrement=False)

    def __repr__(self) -> str:
        return f"<RolePermissionGroup(role_id={self.role_id}, group={self.permission_group_name!r})>"


class UserRole(Base, CreatedAtMixin):
    """
    Assignment of a role to a user.

    Users live in the host application; only their integer id is stored here.
    """
    __tablename__ = "user_roles"
    __table_args__ = (
        Index("idx_user_roles_role_id", "role_id"),
    )

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    role_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)

    def __repr__(self) -> str:
        return f"<UserRole(user_id={self.user_id}, role_id={self.role_id})>"
