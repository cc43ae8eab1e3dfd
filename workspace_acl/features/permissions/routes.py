"""
Access-control API routes.

Permission checks, role and override assignment, row-filtered items and
column visibility. Authorization decisions are made by the services; the
routes only translate between HTTP and service calls.
"""
import json
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status

from workspace_acl.core import config

from workspace_acl.features.permissions.assignment import PermissionAssignmentService
from workspace_acl.features.permissions.dependencies import (
    get_assignment_service,
    get_permission_service,
    get_row_security_service,
    get_visibility_service,
    require_permission,
)
from workspace_acl.features.permissions.row_security import (
    FilterBy,
    FilteredItems,
    ItemQueryOptions,
    RowLevelSecurityService,
)
from workspace_acl.features.permissions.schemas import (
    AssignBoardRole,
    AssignColumnRole,
    AssignmentResponse,
    AssignWorkspaceRole,
    CanViewColumnResponse,
    CellPermissionsInput,
    ColumnVisibilityResponse,
    FilteredItemsResponse,
    ItemResponse,
    MemberResponse,
    PermissionCheckResponse,
    PermissionGrant,
    PermissionSetResponse,
    UpdatePermissionsInput,
)
from workspace_acl.features.permissions.service import PermissionService
from workspace_acl.features.permissions.types import Action, EffectivePermissions, PermissionContext, Resource
from workspace_acl.features.permissions.visibility import ColumnVisibilityService
from workspace_acl.features.users.dependencies import get_current_user
from workspace_acl.features.users.models import User
from workspace_acl.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


def _filtered_response(result: FilteredItems) -> FilteredItemsResponse:
    return FilteredItemsResponse(
        items=[ItemResponse.model_validate(item) for item in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
    )


def _parse_filters(filters: Optional[str]) -> list:
    if not filters:
        return []
    try:
        parsed = json.loads(filters)
    except json.JSONDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="filters must be a JSON array")
    if not isinstance(parsed, list):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="filters must be a JSON array")
    return parsed


# ============================================================================
# Permission Check Routes
# ============================================================================

@router.get("", response_model=PermissionSetResponse)
async def get_permissions(
    resource: Resource,
    resource_id: str,
    permissions: Annotated[PermissionService, Depends(get_permission_service)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Resolved {read, write, delete, manage} for the current user."""
    ctx = PermissionContext.for_resource(current_user.id, resource, resource_id)
    result = await permissions.get_permissions(ctx, resource)
    return PermissionSetResponse(**result.model_dump())


@router.get("/check", response_model=PermissionCheckResponse)
async def check_permission(
    resource: Resource,
    resource_id: str,
    action: Action,
    permissions: Annotated[PermissionService, Depends(get_permission_service)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Check if the current user may perform one action."""
    ctx = PermissionContext.for_resource(current_user.id, resource, resource_id)
    allowed = await permissions.has_permission(ctx, action, resource)
    return PermissionCheckResponse(has_permission=allowed)


@router.get("/effective", response_model=EffectivePermissions)
async def get_effective_permissions(
    resource: Resource,
    resource_id: str,
    assignments: Annotated[PermissionAssignmentService, Depends(get_assignment_service)],
    current_user: Annotated[User, Depends(get_current_user)],
    user_id: Optional[str] = None,
):
    """
    Effective permissions with override provenance.

    Looking at another user's permissions requires manage on the resource.
    """
    target = user_id or current_user.id
    if target != current_user.id:
        ctx = PermissionContext.for_resource(current_user.id, resource, resource_id)
        if not await assignments.permissions.has_permission(ctx, Action.MANAGE, resource):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not authorized to view other users' permissions",
            )
    return await assignments.get_effective_permissions(target, resource, resource_id)


# ============================================================================
# Role Assignment Routes
# ============================================================================

@router.post("/workspace/{workspace_id}/roles", response_model=MemberResponse)
async def assign_workspace_role(
    workspace_id: str,
    assignment: AssignWorkspaceRole,
    assignments: Annotated[PermissionAssignmentService, Depends(get_assignment_service)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Set a user's role in a workspace."""
    member = await assignments.assign_workspace_role(
        workspace_id, assignment.user_id, assignment.role, current_user.id
    )
    return MemberResponse(id=member.id, user_id=member.user_id, role=member.role.value,
                          created_at=member.created_at)


@router.post("/board/{board_id}/roles", response_model=MemberResponse)
async def assign_board_role(
    board_id: str,
    assignment: AssignBoardRole,
    assignments: Annotated[PermissionAssignmentService, Depends(get_assignment_service)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Set a user's role on a board."""
    member = await assignments.assign_board_role(board_id, assignment.user_id, assignment.role, current_user.id)
    return MemberResponse(id=member.id, user_id=member.user_id, role=member.role.value,
                          created_at=member.created_at)


@router.post("/column/{column_id}/roles", response_model=AssignmentResponse)
async def assign_column_role(
    column_id: str,
    assignment: AssignColumnRole,
    assignments: Annotated[PermissionAssignmentService, Depends(get_assignment_service)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Set a user's role on a column."""
    stored = await assignments.assign_column_role(column_id, assignment.user_id, assignment.role, current_user.id)
    return AssignmentResponse(data=stored)


# ============================================================================
# Override Assignment Routes
# ============================================================================

@router.post("/board/{board_id}/users/{user_id}", response_model=AssignmentResponse)
async def assign_board_permissions_to_user(
    board_id: str,
    user_id: str,
    grant: PermissionGrant,
    assignments: Annotated[PermissionAssignmentService, Depends(get_assignment_service)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Merge per-user overrides into a board's permissions."""
    stored = await assignments.assign_board_permissions_to_user(
        board_id, user_id, grant.as_overrides(), current_user.id
    )
    return AssignmentResponse(data=stored)


@router.post("/board/{board_id}/roles/{role}", response_model=AssignmentResponse)
async def assign_board_permissions_to_role(
    board_id: str,
    role: str,
    grant: PermissionGrant,
    assignments: Annotated[PermissionAssignmentService, Depends(get_assignment_service)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Merge per-role overrides into a board's permissions."""
    stored = await assignments.assign_board_permissions_to_role(
        board_id, role, grant.as_overrides(), current_user.id
    )
    return AssignmentResponse(data=stored)


@router.post("/column/{column_id}/users/{user_id}", response_model=AssignmentResponse)
async def assign_column_permissions_to_user(
    column_id: str,
    user_id: str,
    grant: PermissionGrant,
    assignments: Annotated[PermissionAssignmentService, Depends(get_assignment_service)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Merge per-user overrides into a column's permissions."""
    stored = await assignments.assign_column_permissions_to_user(
        column_id, user_id, grant.as_overrides(), current_user.id
    )
    return AssignmentResponse(data=stored)


@router.post("/column/{column_id}/cells", response_model=AssignmentResponse)
async def assign_cell_permissions(
    column_id: str,
    cell_permissions: CellPermissionsInput,
    assignments: Annotated[PermissionAssignmentService, Depends(get_assignment_service)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Set the cell-level access mode of a column."""
    stored = await assignments.assign_cell_permissions(
        column_id, cell_permissions.to_cell_permissions(), current_user.id
    )
    return AssignmentResponse(data=stored)


@router.put("/board/{board_id}", response_model=AssignmentResponse)
async def update_board_permissions(
    board_id: str,
    update: UpdatePermissionsInput,
    assignments: Annotated[PermissionAssignmentService, Depends(get_assignment_service)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Replace a board's override map."""
    stored = await assignments.update_board_permissions(board_id, update.permissions, current_user.id)
    return AssignmentResponse(data=stored)


@router.put("/column/{column_id}", response_model=AssignmentResponse)
async def update_column_permissions(
    column_id: str,
    update: UpdatePermissionsInput,
    assignments: Annotated[PermissionAssignmentService, Depends(get_assignment_service)],
    current_user: Annotated[User, Depends(get_current_user)],
):
    """Replace a column's override map, including column roles."""
    stored = await assignments.update_column_permissions(column_id, update.permissions, current_user.id)
    return AssignmentResponse(data=stored)


# ============================================================================
# Row-Level Security Routes
# ============================================================================

@router.get("/board/{board_id}/items/filtered", response_model=FilteredItemsResponse)
async def get_filtered_items(
    board_id: str,
    rows: Annotated[RowLevelSecurityService, Depends(get_row_security_service)],
    current_user: Annotated[User, Depends(require_permission(Resource.BOARD, Action.READ))],
    filter_by: FilterBy = FilterBy.ALL,
    department_id: Optional[str] = None,
    filters: Optional[str] = Query(None, description="JSON array of {columnId, operator, value}"),
    search: Optional[str] = None,
    item_status: Optional[str] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1),
):
    """Items of a board the current user may see, narrowed by a row filter mode."""
    options = ItemQueryOptions(
        filter_by=filter_by,
        department_id=department_id,
        custom_filters=_parse_filters(filters),
        search=search,
        status=item_status,
        page=page,
        limit=limit,
    )
    result = await rows.get_filtered_items(board_id, current_user.id, options)
    return _filtered_response(result)


@router.get("/board/{board_id}/items/assigned", response_model=FilteredItemsResponse)
async def get_assigned_items(
    board_id: str,
    rows: Annotated[RowLevelSecurityService, Depends(get_row_security_service)],
    current_user: Annotated[User, Depends(require_permission(Resource.BOARD, Action.READ))],
    page: int = Query(1, ge=1),
    limit: int = Query(config.DEFAULT_PAGE_SIZE, ge=1),
):
    """Items whose people columns include the current user."""
    result = await rows.get_assigned_items(board_id, current_user.id, page=page, limit=limit)
    return _filtered_response(result)


# ============================================================================
# Column Visibility Routes
# ============================================================================

@router.get("/board/{board_id}/columns/visible", response_model=List[ColumnVisibilityResponse])
async def get_visible_columns(
    board_id: str,
    visibility: Annotated[ColumnVisibilityService, Depends(get_visibility_service)],
    current_user: Annotated[User, Depends(require_permission(Resource.BOARD, Action.READ))],
    item_id: Optional[str] = None,
):
    """Every column of the board annotated with the current user's visibility."""
    annotated = await visibility.get_columns_with_visibility(board_id, current_user.id, item_id)
    return [
        ColumnVisibilityResponse(
            id=entry.column.id,
            board_id=entry.column.board_id,
            name=entry.column.name,
            type=entry.column.type.value,
            position=entry.column.position,
            settings=entry.column.settings,
            can_view=entry.can_view,
            is_sensitive=entry.is_sensitive,
            is_hidden=entry.is_hidden,
        )
        for entry in annotated
    ]


@router.get("/column/{column_id}/visibility", response_model=CanViewColumnResponse)
async def get_column_visibility(
    column_id: str,
    visibility: Annotated[ColumnVisibilityService, Depends(get_visibility_service)],
    current_user: Annotated[User, Depends(get_current_user)],
    item_id: Optional[str] = None,
):
    """Whether the current user may see a column, optionally for one item."""
    can_view = await visibility.can_view_column(column_id, current_user.id, item_id)
    return CanViewColumnResponse(can_view=can_view)
