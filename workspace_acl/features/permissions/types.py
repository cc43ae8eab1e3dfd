"""
Core types for the access engine.

JSON blobs stored on boards and columns (visibility rules, cell permissions)
are validated into these models at the storage boundary; the evaluators
never read raw dictionaries.
"""
from dataclasses import dataclass
from typing import Any, Annotated, Dict, List, Literal, Optional, Union
import enum

from pydantic import BaseModel, ConfigDict, Field


class Action(str, enum.Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    MANAGE = "manage"


class Resource(str, enum.Enum):
    WORKSPACE = "workspace"
    BOARD = "board"
    ITEM = "item"
    COLUMN = "column"
    CELL = "cell"


ALL_ACTIONS: tuple[Action, ...] = (Action.READ, Action.WRITE, Action.DELETE, Action.MANAGE)


class Decision(str, enum.Enum):
    """
    Outcome of one evaluation step.

    DELEGATE means the step has no opinion and the inherited result stands.
    """
    ALLOW = "allow"
    DENY = "deny"
    DELEGATE = "delegate"

    @classmethod
    def of(cls, allowed: bool) -> "Decision":
        return cls.ALLOW if allowed else cls.DENY

    @property
    def allowed(self) -> bool:
        return self is Decision.ALLOW


@dataclass(frozen=True)
class PermissionContext:
    """Who is asking, and about which resource."""
    user_id: str
    workspace_id: Optional[str] = None
    board_id: Optional[str] = None
    item_id: Optional[str] = None
    column_id: Optional[str] = None
    cell_id: Optional[str] = None

    @classmethod
    def for_resource(cls, user_id: str, resource: Resource, resource_id: str) -> "PermissionContext":
        """Build a context whose id field matches the resource kind."""
        return cls(user_id=user_id, **{f"{resource.value}_id": resource_id})


class PermissionSet(BaseModel):
    """The {read, write, delete, manage} tuple."""
    read: bool = False
    write: bool = False
    delete: bool = False
    manage: bool = False

    def allows(self, action: Action) -> bool:
        return getattr(self, action.value)


class EffectivePermissions(PermissionSet):
    """PermissionSet plus provenance: which actions an explicit user override decided."""
    inherited: bool = True
    overrides: Dict[str, bool] = Field(default_factory=dict)


# ============================================================================
# Cell permissions (Column.settings["cellPermissions"])
# ============================================================================

class CellMode(str, enum.Enum):
    OWNER_ONLY = "owner_only"
    ASSIGNEE_ONLY = "assignee_only"
    TEAM_MEMBERS = "team_members"
    ALL = "all"


class CellPermissions(BaseModel):
    """
    Cell-level restriction stored on the column.

    `mode` is kept as a plain string so that unrecognised modes fall through
    to the allow-list check instead of failing validation.
    """
    model_config = ConfigDict(populate_by_name=True)

    mode: str
    allowed_users: List[str] = Field(default_factory=list, alias="allowedUsers")
    allowed_roles: List[str] = Field(default_factory=list, alias="allowedRoles")

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


# ============================================================================
# Value comparisons shared by visibility rules and row filters
# ============================================================================

class FilterOperator(str, enum.Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"


class CellCondition(BaseModel):
    """Comparison of one column's cell value against a constant."""
    model_config = ConfigDict(populate_by_name=True)

    column_id: str = Field(..., alias="columnId")
    operator: FilterOperator = FilterOperator.EQUALS
    value: Any = None


# ============================================================================
# Visibility rules (Column.settings["visibility"])
# ============================================================================

class RoleVisibilityRule(BaseModel):
    type: Literal["role"]
    roles: List[str] = Field(default_factory=list)
    visible: Optional[bool] = None


class UserVisibilityRule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["user"]
    user_ids: List[str] = Field(default_factory=list, alias="userIds")
    visible: Optional[bool] = None


class ConditionalVisibilityRule(BaseModel):
    type: Literal["conditional"]
    condition: Optional[CellCondition] = None
    visible: Optional[bool] = None


VisibilityRule = Annotated[
    Union[RoleVisibilityRule, UserVisibilityRule, ConditionalVisibilityRule],
    Field(discriminator="type"),
]
