"""
Pydantic schemas for the access-control API.

Request and response models for checks, assignments, filtered items and
column visibility.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

from workspace_acl.features.boards.models import BoardRole, ColumnRole
from workspace_acl.features.permissions.types import CellMode, CellPermissions, PermissionSet
from workspace_acl.features.workspaces.models import WorkspaceRole


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckResponse(BaseModel):
    """Schema for permission check response."""
    has_permission: bool


class PermissionSetResponse(PermissionSet):
    """Schema for the {read, write, delete, manage} tuple."""


# ============================================================================
# Assignment Schemas
# ============================================================================

class AssignWorkspaceRole(BaseModel):
    """Schema for assigning a workspace role to a user."""
    user_id: str = Field(..., description="User ID")
    role: WorkspaceRole


class AssignBoardRole(BaseModel):
    """Schema for assigning a board role to a user."""
    user_id: str = Field(..., description="User ID")
    role: BoardRole


class AssignColumnRole(BaseModel):
    """Schema for assigning a column role to a user."""
    user_id: str = Field(..., description="User ID")
    role: ColumnRole


class PermissionGrant(BaseModel):
    """Per-action override values. Omitted actions keep inheriting."""
    read: Optional[bool] = None
    write: Optional[bool] = None
    delete: Optional[bool] = None
    manage: Optional[bool] = None

    @model_validator(mode="after")
    def at_least_one_action(self) -> "PermissionGrant":
        if not self.as_overrides():
            raise ValueError("At least one of read, write, delete, manage is required")
        return self

    def as_overrides(self) -> Dict[str, bool]:
        return self.model_dump(exclude_none=True)


class CellPermissionsInput(BaseModel):
    """Schema for setting the cell-level mode of a column."""
    mode: CellMode
    allowed_users: List[str] = Field(default_factory=list)
    allowed_roles: List[str] = Field(default_factory=list)

    def to_cell_permissions(self) -> CellPermissions:
        return CellPermissions(
            mode=self.mode.value,
            allowed_users=self.allowed_users,
            allowed_roles=self.allowed_roles,
        )


class UpdatePermissionsInput(BaseModel):
    """Complete override map replacing the stored one; null or {} clears it."""
    permissions: Optional[Dict[str, Any]] = None


class AssignmentResponse(BaseModel):
    """Stored JSON after an override or settings assignment."""
    success: bool = True
    data: Optional[Dict[str, Any]] = None


class MemberResponse(BaseModel):
    """Schema for workspace or board membership rows."""
    id: str
    user_id: str
    role: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Row-level security / visibility schemas
# ============================================================================

class ItemResponse(BaseModel):
    id: str
    board_id: str
    name: str
    status: Optional[str]
    created_by: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FilteredItemsResponse(BaseModel):
    """Schema for paginated, access-filtered items."""
    items: List[ItemResponse]
    total: int
    page: int
    limit: int


class ColumnVisibilityResponse(BaseModel):
    """Column plus per-user visibility. is_hidden is the rendered outcome."""
    id: str
    board_id: str
    name: str
    type: str
    position: int
    settings: Optional[Dict[str, Any]]
    can_view: bool
    is_sensitive: bool
    is_hidden: bool


class CanViewColumnResponse(BaseModel):
    can_view: bool
