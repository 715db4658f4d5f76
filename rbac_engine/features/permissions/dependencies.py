"""
FastAPI dependencies for the permission routes and for guarding other routes.

Authentication is left to the host application, which is expected to set
the X-User-ID header on every request it forwards.
"""
from typing import Annotated
from fastapi import Depends, Header, HTTPException, Request, status
from slowapi import Limiter
from sqlalchemy.ext.asyncio import AsyncSession

from rbac_engine.core import config
from rbac_engine.core.database.engine import get_db
from rbac_engine.features.permissions.metadata import load_metadata
from rbac_engine.features.permissions.queries import has_permission
from rbac_engine.features.permissions.schemas import HasPermissionParam, PermissionMetadata
from rbac_engine.utils import get_logger


log = get_logger(__name__)


def get_user_id_header(request: Request) -> str:
    """
    Extract the caller's user id for rate limiting.
    Used with slowapi Limiter.
    """
    return request.headers.get("X-User-ID", "") or "anonymous"


limiter = Limiter(key_func=get_user_id_header)


def check_rate_limit() -> str:
    return config.CHECK_RATE_LIMIT


def get_metadata() -> PermissionMetadata:
    """Declared metadata from the configured file, re-read on every call."""
    return load_metadata(config.PERMISSION_METADATA_PATH)


async def get_current_user_id(x_user_id: Annotated[int, Header()]) -> int:
    return x_user_id


def require_permission(resource: str, action: str, roleable_type: str, domain: str = ""):
    """
    FastAPI dependency to require a permission within the owner named by the route.

    The owner id is read from the `roleable_id` path parameter, falling back
    to the query string.

    Usage:
        @router.get("/apps/{roleable_id}/events")
        async def list_events(
            roleable_id: int,
            user_id: int = Depends(require_permission("/api/v1/apps/:id/events", "GET", "app"))
        ):
            pass

    Returns:
        Dependency function that returns the current user id if they have permission

    Raises:
        HTTPException: 400 without an owner id, 403 if the user lacks the permission
    """
    async def permission_dependency(
        request: Request,
        db: AsyncSession = Depends(get_db),
        user_id: int = Depends(get_current_user_id),
    ) -> int:
        raw_roleable_id = request.path_params.get("roleable_id") or request.query_params.get("roleable_id")
        try:
            roleable_id = int(raw_roleable_id)
        except (TypeError, ValueError):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="roleable_id is required",
            )

        param = HasPermissionParam(
            user_id=user_id,
            roleable_type=roleable_type,
            roleable_id=roleable_id,
            domain=domain,
            resource=resource,
            action=action,
        )
        if not await has_permission(db, param):
            log.info(f"Denied {action} on {domain}{resource} to user {user_id} in {roleable_type}:{roleable_id}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {action} on {domain}{resource}",
            )

        return user_id

    return permission_dependency
