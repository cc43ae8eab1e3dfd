"""
Per-resource permission evaluators.

Each evaluator answers `evaluate(ctx, action) -> Decision` for one resource
kind and is wired to the evaluator of its parent resource:

    workspace <- board <- column <- cell
                 board <- item

A child asks its parent first and never grants more than the parent does,
except for the explicit bypasses: platform admin, resource creator, and
board owner on a private board. Evaluators may raise on data errors; the
facade wraps them with evaluate_safely so callers only ever see a bool.
"""
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

from pydantic import ValidationError

from workspace_acl.features.boards.models import BoardRole
from workspace_acl.features.permissions.overrides import OverrideMap
from workspace_acl.features.permissions.roles import (
    board_role_allows,
    column_role_allows,
    workspace_role_allows,
)
from workspace_acl.features.permissions.store import PermissionStore
from workspace_acl.features.permissions.types import (
    Action,
    CellMode,
    CellPermissions,
    Decision,
    PermissionContext,
    Resource,
)
from workspace_acl.features.workspaces.models import WorkspaceRole
from workspace_acl.utils import get_logger


log = get_logger(__name__)


class PermissionEvaluator(Protocol):
    resource: Resource

    async def evaluate(self, ctx: PermissionContext, action: Action) -> Decision:
        ...


def inherit(decision: Decision) -> Decision:
    """A step with no opinion keeps the parent's grant, which is ALLOW by this point."""
    return Decision.ALLOW if decision is Decision.DELEGATE else decision


def override_decision(resolved: Optional[bool]) -> Decision:
    return Decision.DELEGATE if resolved is None else Decision.of(resolved)


def parse_cell_permissions(settings: Any) -> Optional[CellPermissions]:
    """Read settings["cellPermissions"]; anything malformed means no cell rules."""
    if not isinstance(settings, Mapping):
        return None
    raw = settings.get("cellPermissions")
    if not isinstance(raw, Mapping):
        return None
    try:
        return CellPermissions.model_validate(raw)
    except ValidationError as e:
        log.warning("Ignoring malformed cellPermissions %r: %s", raw, e)
        return None


class WorkspaceEvaluator:
    resource = Resource.WORKSPACE

    def __init__(self, store: PermissionStore):
        self.store = store

    async def evaluate(self, ctx: PermissionContext, action: Action) -> Decision:
        if not ctx.workspace_id or not ctx.user_id:
            return Decision.DENY

        member = await self.store.get_workspace_member(ctx.workspace_id, ctx.user_id)
        if member is None:
            # Platform admins reach every workspace without membership
            return Decision.of(await self.store.is_platform_admin(ctx.user_id))

        return Decision.of(workspace_role_allows(member.role, action))


class BoardEvaluator:
    resource = Resource.BOARD

    def __init__(self, store: PermissionStore, workspace: WorkspaceEvaluator):
        self.store = store
        self.workspace = workspace

    async def evaluate(self, ctx: PermissionContext, action: Action) -> Decision:
        if not ctx.board_id or not ctx.user_id:
            return Decision.DENY

        board = await self.store.get_board(ctx.board_id)
        if board is None:
            return Decision.DENY

        board_member = await self.store.get_board_member(board.id, ctx.user_id)

        # Private boards ignore the workspace role entirely
        if board.is_private:
            is_owner = board_member is not None and board_member.role == BoardRole.OWNER
            return Decision.of(board.created_by == ctx.user_id or is_owner)

        workspace_member = await self.store.get_workspace_member(board.workspace_id, ctx.user_id)
        if workspace_member is None:
            return Decision.of(await self.store.is_platform_admin(ctx.user_id))

        parent = await self.workspace.evaluate(
            replace(ctx, workspace_id=board.workspace_id), action
        )
        if parent is not Decision.ALLOW:
            return Decision.DENY

        if board_member is not None:
            return Decision.of(board_role_allows(board_member.role, action))

        if board.created_by == ctx.user_id:
            return Decision.ALLOW

        overrides = OverrideMap.parse(board.permissions)
        return inherit(override_decision(
            overrides.resolve(action.value, ctx.user_id, workspace_member.role.value)
        ))


class ColumnEvaluator:
    resource = Resource.COLUMN

    def __init__(self, store: PermissionStore, board: BoardEvaluator):
        self.store = store
        self.board = board

    async def evaluate(self, ctx: PermissionContext, action: Action) -> Decision:
        if not ctx.column_id or not ctx.user_id:
            return Decision.DENY

        column = await self.store.get_column(ctx.column_id)
        if column is None:
            return Decision.DENY

        # Absolute: no override, role or bypass reopens a hidden column
        if column.is_hidden:
            return Decision.DENY

        parent = await self.board.evaluate(replace(ctx, board_id=column.board_id), action)
        if parent is not Decision.ALLOW:
            return Decision.DENY

        if column.created_by == ctx.user_id:
            return Decision.ALLOW

        board = await self.store.get_board(column.board_id)
        workspace_member = await self.store.get_workspace_member(board.workspace_id, ctx.user_id)
        if workspace_member is None and await self.store.is_platform_admin(ctx.user_id):
            return Decision.ALLOW

        overrides = OverrideMap.parse(column.permissions)
        column_role = overrides.column_role(ctx.user_id)
        if column_role is not None:
            return Decision.of(column_role_allows(column_role, action))

        workspace_role = workspace_member.role.value if workspace_member else None
        return inherit(override_decision(
            overrides.resolve(action.value, ctx.user_id, workspace_role)
        ))


class CellEvaluator:
    resource = Resource.CELL

    def __init__(self, store: PermissionStore, column: ColumnEvaluator):
        self.store = store
        self.column = column

    async def evaluate(self, ctx: PermissionContext, action: Action) -> Decision:
        if not ctx.cell_id or not ctx.user_id:
            return Decision.DENY

        cell = await self.store.get_cell(ctx.cell_id)
        if cell is None:
            return Decision.DENY

        parent = await self.column.evaluate(replace(ctx, column_id=cell.column_id), action)
        if parent is not Decision.ALLOW:
            return Decision.DENY

        column = await self.store.get_column(cell.column_id)
        rules = parse_cell_permissions(column.settings)
        if rules is None:
            return Decision.ALLOW

        return inherit(await self._mode_decision(rules, cell.item_id, ctx.user_id, action))

    async def _mode_decision(
        self,
        rules: CellPermissions,
        item_id: str,
        user_id: str,
        action: Action,
    ) -> Decision:
        # Anything but read is treated as an edit of the cell
        reading = action is Action.READ

        if rules.mode == CellMode.OWNER_ONLY.value:
            if reading:
                return Decision.ALLOW
            item = await self.store.get_item(item_id)
            return Decision.of(item is not None and item.created_by == user_id)

        if rules.mode == CellMode.ASSIGNEE_ONLY.value:
            if reading:
                return Decision.ALLOW
            return Decision.of(await self.store.is_assigned(item_id, user_id))

        if rules.mode == CellMode.TEAM_MEMBERS.value:
            return Decision.of(await self._workspace_role(item_id, user_id) is not None)

        if rules.mode == CellMode.ALL.value:
            return Decision.ALLOW

        if user_id in rules.allowed_users:
            return Decision.ALLOW
        role = await self._workspace_role(item_id, user_id)
        return Decision.of(role is not None and role in rules.allowed_roles)

    async def _workspace_role(self, item_id: str, user_id: str) -> Optional[str]:
        item = await self.store.get_item(item_id)
        if item is None:
            return None
        board = await self.store.get_board(item.board_id)
        if board is None:
            return None
        member = await self.store.get_workspace_member(board.workspace_id, user_id)
        return member.role.value if member else None


_ITEM_EDITOR_ROLES = frozenset({
    WorkspaceRole.MEMBER, WorkspaceRole.FINANCE, WorkspaceRole.ADMIN, WorkspaceRole.OWNER,
})
_ITEM_DELETER_ROLES = frozenset({WorkspaceRole.ADMIN, WorkspaceRole.OWNER})


class ItemEvaluator:
    resource = Resource.ITEM

    def __init__(self, store: PermissionStore, board: BoardEvaluator):
        self.store = store
        self.board = board

    async def evaluate(self, ctx: PermissionContext, action: Action) -> Decision:
        if not ctx.item_id or not ctx.user_id:
            return Decision.DENY

        item = await self.store.get_item(ctx.item_id)
        if item is None:
            return Decision.DENY

        board_ctx = replace(ctx, board_id=item.board_id)

        # Creators keep full control of their own rows while they can still see the board
        if item.created_by == ctx.user_id:
            return Decision.of((await self.board.evaluate(board_ctx, Action.READ)).allowed)

        parent = await self.board.evaluate(board_ctx, action)
        if parent is not Decision.ALLOW:
            return Decision.DENY

        if action is not Action.DELETE and await self.store.is_assigned(item.id, ctx.user_id):
            return Decision.ALLOW

        board = await self.store.get_board(item.board_id)
        member = await self.store.get_workspace_member(board.workspace_id, ctx.user_id)
        if member is None:
            return Decision.of(await self.store.is_platform_admin(ctx.user_id))

        if action is Action.READ:
            return Decision.ALLOW
        if action is Action.DELETE:
            return Decision.of(member.role in _ITEM_DELETER_ROLES)
        return Decision.of(member.role in _ITEM_EDITOR_ROLES)

    async def readable_item_ids(self, user_id: str, board_id: str, items: Iterable[Any]) -> List[str]:
        """
        Ids of `items` the user may read, in input order.

        Same answer as evaluating READ per item. Once board read holds, a
        workspace member or platform admin can read every item of the board,
        so the board-level lookups run once instead of once per item. Anyone
        else falls back to the per-item rules (creator, assignee).
        """
        items = list(items)
        board_ctx = PermissionContext(user_id=user_id, board_id=board_id)
        if await self.board.evaluate(board_ctx, Action.READ) is not Decision.ALLOW:
            return []

        board = await self.store.get_board(board_id)
        member = await self.store.get_workspace_member(board.workspace_id, user_id)
        reads_all = member is not None or await self.store.is_platform_admin(user_id)

        readable: List[str] = []
        for item in items:
            if reads_all and getattr(item, "board_id", board_id) == board_id:
                readable.append(item.id)
                continue
            ctx = replace(board_ctx, item_id=item.id)
            if await self.evaluate(ctx, Action.READ) is Decision.ALLOW:
                readable.append(item.id)
        return readable


def build_evaluators(store: PermissionStore) -> Dict[Resource, PermissionEvaluator]:
    """Wire the evaluator chain over one store."""
    workspace = WorkspaceEvaluator(store)
    board = BoardEvaluator(store, workspace)
    column = ColumnEvaluator(store, board)
    return {
        Resource.WORKSPACE: workspace,
        Resource.BOARD: board,
        Resource.COLUMN: column,
        Resource.CELL: CellEvaluator(store, column),
        Resource.ITEM: ItemEvaluator(store, board),
    }
