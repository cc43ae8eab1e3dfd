"""
PermissionAssignmentService: writes roles and overrides.

Every mutation requires `manage` on the resource being changed (board
`manage` for column and cell settings), so nobody can raise their own access
without already holding it. Per-identity assignments merge into the stored
override map; update_board_permissions and update_column_permissions
replace it wholesale. Every write carries a version check so that concurrent
assignments cannot silently drop each other's entries.
"""
from typing import Any, Callable, Dict, Mapping, Optional, Union

from sqlalchemy import update

from workspace_acl.core import config
from workspace_acl.features.boards.models import Board, BoardMember, BoardRole, Column, ColumnRole
from workspace_acl.features.permissions.errors import (
    ConflictError,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
)
from workspace_acl.features.permissions.models import AuditLog
from workspace_acl.features.permissions.overrides import (
    OverrideMap,
    merge_column_role,
    merge_identity,
    validate_override_map,
)
from workspace_acl.features.permissions.service import PermissionService
from workspace_acl.features.permissions.types import (
    ALL_ACTIONS,
    Action,
    CellPermissions,
    EffectivePermissions,
    PermissionContext,
    PermissionSet,
    Resource,
)
from workspace_acl.features.workspaces.models import WorkspaceMember, WorkspaceRole
from workspace_acl.utils import get_logger


log = get_logger(__name__)

PermissionInput = Union[PermissionSet, Mapping[str, bool]]


def normalize_permissions(permissions: PermissionInput) -> Dict[str, bool]:
    """{action: bool} with validated action names."""
    if isinstance(permissions, PermissionSet):
        permissions = permissions.model_dump()
    try:
        return {Action(action).value: bool(allowed) for action, allowed in permissions.items()}
    except ValueError as e:
        raise InvalidRequestError(str(e))


class PermissionAssignmentService:

    def __init__(self, permissions: PermissionService):
        self.permissions = permissions
        self.store = permissions.store
        self.db = permissions.store.db

    # ------------------------------------------------------------------
    # Guards and persistence helpers
    # ------------------------------------------------------------------

    async def _require_manage(self, actor_id: str, resource: Resource, resource_id: str, what: str) -> None:
        ctx = PermissionContext.for_resource(actor_id, resource, resource_id)
        if not await self.permissions.has_permission(ctx, Action.MANAGE, resource):
            log.info("User %s refused %s on %s %s", actor_id, what, resource.value, resource_id)
            raise ForbiddenError(f"You do not have permission to assign {what}")

    async def _require_user(self, user_id: str) -> None:
        if await self.store.get_user(user_id) is None:
            raise NotFoundError("User not found")

    async def _load_board(self, board_id: str) -> Board:
        board = await self.store.get_board(board_id)
        if board is None:
            raise NotFoundError("Board not found")
        return board

    async def _load_column(self, column_id: str) -> Column:
        column = await self.store.get_column(column_id)
        if column is None:
            raise NotFoundError("Column not found")
        return column

    async def _versioned_update(
        self,
        model: type,
        resource_id: str,
        attribute: str,
        mutate: Callable[[Any], Dict[str, Any]],
    ) -> Dict[str, Any]:
        """
        Read-merge-write guarded by the row's version counter.

        The UPDATE only applies if the version is unchanged since the read; on a
        lost race the merge is recomputed from fresh data.
        """
        loader = self.store.get_board if model is Board else self.store.get_column
        for attempt in range(1, config.ASSIGNMENT_MAX_ATTEMPTS + 1):
            row = await loader(resource_id, refresh=True)
            if row is None:
                raise NotFoundError(f"{model.__name__} not found")

            merged = mutate(getattr(row, attribute))
            result = await self.db.execute(
                update(model)
                .where(model.id == resource_id, model.version == row.version)
                .values({attribute: merged, "version": row.version + 1})
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                await self.db.refresh(row)
                return merged

            log.warning(
                "Concurrent update of %s %s.%s (attempt %d/%d)",
                model.__name__, resource_id, attribute, attempt, config.ASSIGNMENT_MAX_ATTEMPTS,
            )

        raise ConflictError(f"{model.__name__} permissions were modified concurrently, try again")

    async def _audit(
        self,
        actor_id: str,
        action: str,
        resource: Resource,
        resource_id: str,
        workspace_id: Optional[str],
        details: Dict[str, Any],
    ) -> None:
        self.db.add(AuditLog(
            user_id=actor_id,
            action=action,
            resource_type=resource.value,
            resource_id=resource_id,
            workspace_id=workspace_id,
            details=details,
        ))
        await self.db.flush()
        log.info(
            "Audit: user=%s action=%s resource=%s:%s workspace=%s",
            actor_id, action, resource.value, resource_id, workspace_id,
        )

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def assign_workspace_role(
        self,
        workspace_id: str,
        user_id: str,
        role: WorkspaceRole,
        assigned_by: str,
    ) -> WorkspaceMember:
        role = WorkspaceRole(role)
        if await self.store.get_workspace(workspace_id) is None:
            raise NotFoundError("Workspace not found")
        await self._require_manage(assigned_by, Resource.WORKSPACE, workspace_id, "workspace roles")
        await self._require_user(user_id)

        member = await self.store.get_workspace_member(workspace_id, user_id)
        if member is None:
            member = WorkspaceMember(workspace_id=workspace_id, user_id=user_id, role=role)
            self.db.add(member)
        else:
            member.role = role
        await self.db.flush()
        await self.db.refresh(member)

        await self._audit(assigned_by, "assign_workspace_role", Resource.WORKSPACE, workspace_id,
                          workspace_id, {"user_id": user_id, "role": role.value})
        return member

    async def assign_board_role(
        self,
        board_id: str,
        user_id: str,
        role: BoardRole,
        assigned_by: str,
    ) -> BoardMember:
        role = BoardRole(role)
        board = await self._load_board(board_id)
        await self._require_manage(assigned_by, Resource.BOARD, board_id, "board roles")
        await self._require_user(user_id)

        member = await self.store.get_board_member(board_id, user_id)
        if member is None:
            member = BoardMember(board_id=board_id, user_id=user_id, role=role)
            self.db.add(member)
        else:
            member.role = role
        await self.db.flush()
        await self.db.refresh(member)

        await self._audit(assigned_by, "assign_board_role", Resource.BOARD, board_id,
                          board.workspace_id, {"user_id": user_id, "role": role.value})
        return member

    async def assign_column_role(
        self,
        column_id: str,
        user_id: str,
        role: ColumnRole,
        assigned_by: str,
    ) -> Dict[str, Any]:
        role = ColumnRole(role)
        column = await self._load_column(column_id)
        await self._require_manage(assigned_by, Resource.BOARD, column.board_id, "column roles")
        await self._require_user(user_id)

        merged = await self._versioned_update(
            Column, column_id, "permissions",
            lambda current: merge_column_role(current, user_id, role.value),
        )
        board = await self._load_board(column.board_id)
        await self._audit(assigned_by, "assign_column_role", Resource.COLUMN, column_id,
                          board.workspace_id, {"user_id": user_id, "role": role.value})
        return merged

    # ------------------------------------------------------------------
    # Overrides
    # ------------------------------------------------------------------

    async def assign_board_permissions_to_user(
        self,
        board_id: str,
        user_id: str,
        permissions: PermissionInput,
        assigned_by: str,
    ) -> Dict[str, Any]:
        return await self._assign_board_override(board_id, user_id, permissions, assigned_by, "user")

    async def assign_board_permissions_to_role(
        self,
        board_id: str,
        role: Union[WorkspaceRole, BoardRole],
        permissions: PermissionInput,
        assigned_by: str,
    ) -> Dict[str, Any]:
        role_name = role.value if hasattr(role, "value") else str(role)
        known = {r.value for r in WorkspaceRole} | {r.value for r in BoardRole}
        if role_name not in known:
            raise InvalidRequestError(f"Unknown role '{role_name}'")
        return await self._assign_board_override(board_id, role_name, permissions, assigned_by, "role")

    async def _assign_board_override(
        self,
        board_id: str,
        identity: str,
        permissions: PermissionInput,
        assigned_by: str,
        kind: str,
    ) -> Dict[str, Any]:
        grants = normalize_permissions(permissions)
        board = await self._load_board(board_id)
        await self._require_manage(assigned_by, Resource.BOARD, board_id, "board permissions")
        if kind == "user":
            await self._require_user(identity)

        merged = await self._versioned_update(
            Board, board_id, "permissions",
            lambda current: merge_identity(current, identity, grants),
        )
        await self._audit(assigned_by, f"assign_board_permissions_to_{kind}", Resource.BOARD, board_id,
                          board.workspace_id, {kind: identity, "permissions": grants})
        return merged

    async def assign_column_permissions_to_user(
        self,
        column_id: str,
        user_id: str,
        permissions: PermissionInput,
        assigned_by: str,
    ) -> Dict[str, Any]:
        grants = normalize_permissions(permissions)
        column = await self._load_column(column_id)
        await self._require_manage(assigned_by, Resource.BOARD, column.board_id, "column permissions")
        await self._require_user(user_id)

        merged = await self._versioned_update(
            Column, column_id, "permissions",
            lambda current: merge_identity(current, user_id, grants),
        )
        board = await self._load_board(column.board_id)
        await self._audit(assigned_by, "assign_column_permissions_to_user", Resource.COLUMN, column_id,
                          board.workspace_id, {"user": user_id, "permissions": grants})
        return merged

    async def assign_cell_permissions(
        self,
        column_id: str,
        permissions: Union[CellPermissions, Mapping[str, Any]],
        assigned_by: str,
    ) -> Dict[str, Any]:
        if not isinstance(permissions, CellPermissions):
            permissions = CellPermissions.model_validate(permissions)
        column = await self._load_column(column_id)
        await self._require_manage(assigned_by, Resource.BOARD, column.board_id, "cell permissions")

        cell_permissions = permissions.to_json()

        def set_cell_permissions(current: Any) -> Dict[str, Any]:
            settings = dict(current) if isinstance(current, Mapping) else {}
            settings["cellPermissions"] = cell_permissions
            return settings

        merged = await self._versioned_update(Column, column_id, "settings", set_cell_permissions)
        board = await self._load_board(column.board_id)
        await self._audit(assigned_by, "assign_cell_permissions", Resource.COLUMN, column_id,
                          board.workspace_id, {"cellPermissions": cell_permissions})
        return merged

    # ------------------------------------------------------------------
    # Whole-map replacement
    # ------------------------------------------------------------------

    async def update_board_permissions(
        self,
        board_id: str,
        permissions: Optional[Mapping[str, Any]],
        updated_by: str,
    ) -> Dict[str, Any]:
        """Replace the board's override map. An empty map or None clears it."""
        replacement = validate_override_map(permissions)
        board = await self._load_board(board_id)
        await self._require_manage(updated_by, Resource.BOARD, board_id, "board permissions")

        stored = await self._versioned_update(Board, board_id, "permissions", lambda _current: replacement)
        await self._audit(updated_by, "update_board_permissions", Resource.BOARD, board_id,
                          board.workspace_id, {"permissions": replacement})
        return stored

    async def update_column_permissions(
        self,
        column_id: str,
        permissions: Optional[Mapping[str, Any]],
        updated_by: str,
    ) -> Dict[str, Any]:
        """Replace the column's override map, column roles included."""
        replacement = validate_override_map(permissions, allow_column_roles=True)
        column = await self._load_column(column_id)
        await self._require_manage(updated_by, Resource.BOARD, column.board_id, "column permissions")

        stored = await self._versioned_update(Column, column_id, "permissions", lambda _current: replacement)
        board = await self._load_board(column.board_id)
        await self._audit(updated_by, "update_column_permissions", Resource.COLUMN, column_id,
                          board.workspace_id, {"permissions": replacement})
        return stored

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def get_effective_permissions(
        self,
        user_id: str,
        resource: Union[Resource, str],
        resource_id: str,
    ) -> EffectivePermissions:
        """
        Resolved tuple for the user plus which actions an explicit user override
        on this resource decided. Fails closed like every read.
        """
        resource = Resource(resource)
        ctx = PermissionContext.for_resource(user_id, resource, resource_id)
        base = await self.permissions.get_permissions(ctx, resource)

        try:
            raw = None
            if resource is Resource.BOARD:
                board = await self.store.get_board(resource_id)
                raw = board.permissions if board else None
            elif resource is Resource.COLUMN:
                column = await self.store.get_column(resource_id)
                raw = column.permissions if column else None
            known = {action.value for action in ALL_ACTIONS}
            overrides = {
                action: allowed
                for action, allowed in OverrideMap.parse(raw).user_overrides(user_id).items()
                if action in known
            }
        except Exception:
            log.exception("Could not read overrides for %s %s", resource.value, resource_id)
            return EffectivePermissions()

        return EffectivePermissions(**base.model_dump(), inherited=not overrides, overrides=overrides)
