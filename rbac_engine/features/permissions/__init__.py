"""
Permission management feature module.

Implements hierarchical Role-Based Access Control (RBAC) with permissions
and permission groups reconciled from declarative metadata, and roles owned
by a (roleable_type, roleable_id) scope.
"""
