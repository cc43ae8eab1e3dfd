"""
Column visibility: should a column be rendered to this user?

Combines the column read permission, the hidden flag, ordered visibility
rules from column settings, and the sensitive-data gate.
"""
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Set

from pydantic import TypeAdapter, ValidationError

from workspace_acl.features.boards.models import Column
from workspace_acl.features.permissions.conditions import compare
from workspace_acl.features.permissions.overrides import OverrideMap
from workspace_acl.features.permissions.service import PermissionService
from workspace_acl.features.permissions.store import ItemCellReader
from workspace_acl.features.permissions.types import (
    ConditionalVisibilityRule,
    PermissionContext,
    Resource,
    RoleVisibilityRule,
    UserVisibilityRule,
    VisibilityRule,
)
from workspace_acl.utils import get_logger


log = get_logger(__name__)

_rule_adapter: TypeAdapter = TypeAdapter(VisibilityRule)


def parse_visibility_rules(settings: Any) -> List[VisibilityRule]:
    """Validated rules from settings["visibility"], in stored order."""
    if not isinstance(settings, Mapping):
        return []
    raw_rules = settings.get("visibility")
    if not isinstance(raw_rules, list):
        return []

    rules: List[VisibilityRule] = []
    for raw in raw_rules:
        try:
            rules.append(_rule_adapter.validate_python(raw))
        except ValidationError as e:
            log.warning("Ignoring malformed visibility rule %r: %s", raw, e)
    return rules


def _setting(settings: Any, key: str) -> Any:
    return settings.get(key) if isinstance(settings, Mapping) else None


@dataclass
class ColumnVisibility:
    column: Column
    can_view: bool
    is_sensitive: bool

    @property
    def is_hidden(self) -> bool:
        return not self.can_view or self.is_sensitive


class ColumnVisibilityService:

    def __init__(self, permissions: PermissionService, cell_reader: Optional[ItemCellReader] = None):
        self.permissions = permissions
        self.store = permissions.store
        self.cell_reader = cell_reader if cell_reader is not None else permissions.store

    async def can_view_column(self, column_id: str, user_id: str, item_id: Optional[str] = None) -> bool:
        try:
            return await self._can_view_column(column_id, user_id, item_id)
        except Exception:
            log.exception("Visibility check failed for user=%s column=%s, hiding", user_id, column_id)
            return False

    async def _can_view_column(self, column_id: str, user_id: str, item_id: Optional[str]) -> bool:
        if not await self.permissions.can_view_column(user_id, column_id):
            return False

        column = await self.store.get_column(column_id)
        if column is None or column.is_hidden:
            return False

        rules = parse_visibility_rules(column.settings)
        if not rules:
            return True

        # First matching rule decides
        for rule in rules:
            if await self._rule_matches(rule, column, user_id, item_id):
                return rule.visible is not False

        return _setting(column.settings, "defaultVisibility") is not False

    async def _rule_matches(
        self,
        rule: VisibilityRule,
        column: Column,
        user_id: str,
        item_id: Optional[str],
    ) -> bool:
        if isinstance(rule, RoleVisibilityRule):
            if not rule.roles:
                return False
            roles = await self._user_roles(column, user_id)
            return any(role in roles for role in rule.roles)

        if isinstance(rule, UserVisibilityRule):
            return user_id in rule.user_ids

        if isinstance(rule, ConditionalVisibilityRule):
            condition = rule.condition
            if not item_id or condition is None or "value" not in condition.model_fields_set:
                return False
            found, value = await self.cell_reader.get_cell_value(item_id, condition.column_id)
            if not found:
                return False
            return compare(condition.operator, value, condition.value)

        return False

    async def _user_roles(self, column: Column, user_id: str) -> Set[str]:
        """Workspace role, board role and column role of the user, where present."""
        roles: Set[str] = set()
        board = await self.store.get_board(column.board_id)
        if board is not None:
            workspace_member = await self.store.get_workspace_member(board.workspace_id, user_id)
            if workspace_member is not None:
                roles.add(workspace_member.role.value)
        board_member = await self.store.get_board_member(column.board_id, user_id)
        if board_member is not None:
            roles.add(board_member.role.value)
        column_role = OverrideMap.parse(column.permissions).column_role(user_id)
        if column_role is not None:
            roles.add(column_role)
        return roles

    async def is_sensitive_column(self, column_id: str, user_id: str) -> bool:
        """
        True when the column is flagged isSensitive and must be withheld from
        this user, i.e. the user lacks manage on it.
        """
        try:
            column = await self.store.get_column(column_id)
            if column is None or not _setting(column.settings, "isSensitive"):
                return False
            effective = await self.permissions.get_permissions(
                PermissionContext(user_id=user_id, column_id=column_id), Resource.COLUMN
            )
            return not effective.manage
        except Exception:
            log.exception("Sensitivity check failed for user=%s column=%s, withholding", user_id, column_id)
            return True

    async def get_visible_columns(self, board_id: str, user_id: str, item_id: Optional[str] = None) -> List[str]:
        try:
            columns = await self.store.list_columns(board_id)
        except Exception:
            log.exception("Could not list columns of board %s", board_id)
            return []
        return [
            column.id for column in columns
            if await self.can_view_column(column.id, user_id, item_id)
        ]

    async def get_columns_with_visibility(
        self,
        board_id: str,
        user_id: str,
        item_id: Optional[str] = None,
    ) -> List[ColumnVisibility]:
        try:
            columns = await self.store.list_columns(board_id)
        except Exception:
            log.exception("Could not list columns of board %s", board_id)
            return []

        result: List[ColumnVisibility] = []
        for column in columns:
            can_view = await self.can_view_column(column.id, user_id, item_id)
            is_sensitive = await self.is_sensitive_column(column.id, user_id)
            result.append(ColumnVisibility(column=column, can_view=can_view, is_sensitive=is_sensitive))
        return result
