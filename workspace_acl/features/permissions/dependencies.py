"""
FastAPI dependencies for access control.

Implements:
- Service construction per request session
- Route protection via require_permission
"""
from typing import Annotated, Optional
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from workspace_acl.core.database.engine import get_db
from workspace_acl.features.permissions.assignment import PermissionAssignmentService
from workspace_acl.features.permissions.row_security import RowLevelSecurityService
from workspace_acl.features.permissions.service import PermissionService
from workspace_acl.features.permissions.types import Action, PermissionContext, Resource
from workspace_acl.features.permissions.visibility import ColumnVisibilityService
from workspace_acl.features.users.dependencies import get_current_user
from workspace_acl.features.users.models import User
from workspace_acl.utils import get_logger


log = get_logger(__name__)


def get_permission_service(db: Annotated[AsyncSession, Depends(get_db)]) -> PermissionService:
    return PermissionService(db)


def get_row_security_service(
    permissions: Annotated[PermissionService, Depends(get_permission_service)]
) -> RowLevelSecurityService:
    return RowLevelSecurityService(permissions)


def get_visibility_service(
    permissions: Annotated[PermissionService, Depends(get_permission_service)]
) -> ColumnVisibilityService:
    return ColumnVisibilityService(permissions)


def get_assignment_service(
    permissions: Annotated[PermissionService, Depends(get_permission_service)]
) -> PermissionAssignmentService:
    return PermissionAssignmentService(permissions)


def require_permission(resource: Resource, action: Action, resource_id_param: Optional[str] = None):
    """
    FastAPI dependency to require an action on the resource named in the path.

    Usage:
        @router.delete("/items/{item_id}")
        async def delete_item(
            user: User = Depends(require_permission(Resource.ITEM, Action.DELETE))
        ):
            # User may delete this item
            pass

    Args:
        resource: Resource kind
        action: Action
        resource_id_param: Path or query parameter holding the id (defaults to "<resource>_id")

    Returns:
        Dependency function that returns the current user if the check passes

    Raises:
        HTTPException: 400 without a resource id, 403 on denial
    """
    param = resource_id_param or f"{resource.value}_id"

    async def permission_dependency(
        request: Request,
        current_user: Annotated[User, Depends(get_current_user)],
        permissions: Annotated[PermissionService, Depends(get_permission_service)],
    ) -> User:
        resource_id = request.path_params.get(param) or request.query_params.get(param)
        if not resource_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Resource ID is required for {resource.value}",
            )

        ctx = PermissionContext.for_resource(current_user.id, resource, resource_id)
        if not await permissions.has_permission(ctx, action, resource):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"You do not have permission to {action.value} this {resource.value}",
            )

        return current_user

    return permission_dependency
