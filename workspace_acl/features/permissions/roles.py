"""
Default capability matrices per resource kind.

Pure functions: a role name in, a yes/no (or full PermissionSet) out.
Unknown roles grant nothing.
"""
from typing import Dict, FrozenSet, Mapping, Optional

from workspace_acl.features.boards.models import BoardRole, ColumnRole
from workspace_acl.features.permissions.types import ALL_ACTIONS, Action, PermissionSet, Resource
from workspace_acl.features.workspaces.models import WorkspaceRole


_EVERYTHING = frozenset(ALL_ACTIONS)
_ALL_BUT_DELETE = frozenset({Action.READ, Action.WRITE, Action.MANAGE})
_READ_WRITE = frozenset({Action.READ, Action.WRITE})
_READ_ONLY = frozenset({Action.READ})

WORKSPACE_MATRIX: Dict[str, FrozenSet[Action]] = {
    WorkspaceRole.OWNER.value: _EVERYTHING,
    WorkspaceRole.ADMIN.value: _ALL_BUT_DELETE,
    # Approvers: read and manage, never write
    WorkspaceRole.FINANCE.value: frozenset({Action.READ, Action.MANAGE}),
    WorkspaceRole.MEMBER.value: _READ_WRITE,
    WorkspaceRole.VIEWER.value: _READ_ONLY,
}

BOARD_MATRIX: Dict[str, FrozenSet[Action]] = {
    BoardRole.OWNER.value: _EVERYTHING,
    BoardRole.ADMIN.value: _ALL_BUT_DELETE,
    BoardRole.EDITOR.value: _READ_WRITE,
    BoardRole.VIEWER.value: _READ_ONLY,
}

COLUMN_MATRIX: Dict[str, FrozenSet[Action]] = {
    ColumnRole.OWNER.value: _EVERYTHING,
    ColumnRole.EDITOR.value: _READ_WRITE,
    ColumnRole.VIEWER.value: _READ_ONLY,
}

_MATRICES: Mapping[Resource, Mapping[str, FrozenSet[Action]]] = {
    Resource.WORKSPACE: WORKSPACE_MATRIX,
    Resource.BOARD: BOARD_MATRIX,
    Resource.COLUMN: COLUMN_MATRIX,
}


def _role_name(role) -> Optional[str]:
    if role is None:
        return None
    return role.value if hasattr(role, "value") else str(role)


def role_allows(resource: Resource, role, action: Action) -> bool:
    """Check whether `role` on `resource` grants `action` by default."""
    matrix = _MATRICES.get(resource, {})
    return Action(action) in matrix.get(_role_name(role), frozenset())


def workspace_role_allows(role, action: Action) -> bool:
    return role_allows(Resource.WORKSPACE, role, action)


def board_role_allows(role, action: Action) -> bool:
    return role_allows(Resource.BOARD, role, action)


def column_role_allows(role, action: Action) -> bool:
    return role_allows(Resource.COLUMN, role, action)


def permission_set(resource: Resource, role) -> PermissionSet:
    """Full default tuple for a role."""
    return PermissionSet(**{a.value: role_allows(resource, role, a) for a in ALL_ACTIONS})
