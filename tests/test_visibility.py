"""Tests for column visibility rules and sensitive columns."""

from __future__ import annotations

from typing import Any, Tuple

import pytest

from workspace_acl.features.boards.models import BoardRole
from workspace_acl.features.permissions.service import PermissionService
from workspace_acl.features.permissions.types import ConditionalVisibilityRule, RoleVisibilityRule
from workspace_acl.features.permissions.visibility import ColumnVisibilityService, parse_visibility_rules


@pytest.fixture
def visibility(permissions: PermissionService) -> ColumnVisibilityService:
    return ColumnVisibilityService(permissions)


def rules(*entries: dict, default: bool | None = None) -> dict:
    settings: dict = {"visibility": list(entries)}
    if default is not None:
        settings["defaultVisibility"] = default
    return settings


class StaticCells:
    """Cell reader backed by a dict of (item_id, column_id) -> value."""

    def __init__(self, values: dict) -> None:
        self.values = values

    async def get_cell_value(self, item_id: str, column_id: str) -> Tuple[bool, Any]:
        key = (item_id, column_id)
        return (True, self.values[key]) if key in self.values else (False, None)


class TestParseRules:

    def test_malformed_rules_are_skipped(self) -> None:
        parsed = parse_visibility_rules(rules(
            {"type": "team", "roles": ["member"]},
            {"type": "role", "roles": ["finance"], "visible": True},
            {"type": "conditional", "condition": {"columnId": "c1", "operator": "equals", "value": "Approved"},
             "visible": False},
            "not a rule",
        ))
        assert len(parsed) == 2
        assert isinstance(parsed[0], RoleVisibilityRule)
        assert isinstance(parsed[1], ConditionalVisibilityRule)
        assert parsed[1].condition.column_id == "c1"

    def test_missing_settings(self) -> None:
        assert parse_visibility_rules(None) == []
        assert parse_visibility_rules({"visibility": "everyone"}) == []


class TestCanViewColumn:

    async def test_without_rules_follows_read_permission(self, factory, visibility: ColumnVisibilityService,
                                                         team: dict) -> None:
        column = await factory.column(team["board"])
        assert await visibility.can_view_column(column.id, team["viewer"].id)
        assert not await visibility.can_view_column(column.id, team["outsider"].id)

    async def test_hidden_column(self, factory, visibility: ColumnVisibilityService, team: dict) -> None:
        column = await factory.column(team["board"], is_hidden=True, settings=rules(
            {"type": "user", "userIds": [team["owner"].id], "visible": True}
        ))
        assert not await visibility.can_view_column(column.id, team["owner"].id)

    async def test_rules_cannot_grant_without_read(self, factory, visibility: ColumnVisibilityService,
                                                   team: dict) -> None:
        column = await factory.column(
            team["board"],
            permissions={"read": {team["member"].id: False}},
            settings=rules({"type": "user", "userIds": [team["member"].id], "visible": True}),
        )
        assert not await visibility.can_view_column(column.id, team["member"].id)

    async def test_workspace_role_rule(self, factory, visibility: ColumnVisibilityService, team: dict) -> None:
        column = await factory.column(team["board"], settings=rules(
            {"type": "role", "roles": ["finance"], "visible": True}, default=False
        ))
        assert await visibility.can_view_column(column.id, team["finance"].id)
        assert not await visibility.can_view_column(column.id, team["member"].id)

    async def test_board_role_rule(self, factory, visibility: ColumnVisibilityService, team: dict) -> None:
        await factory.board_member(team["board"], team["member"], BoardRole.EDITOR)
        column = await factory.column(team["board"], settings=rules(
            {"type": "role", "roles": ["editor"]}, default=False
        ))
        assert await visibility.can_view_column(column.id, team["member"].id)
        assert not await visibility.can_view_column(column.id, team["viewer"].id)

    async def test_column_role_rule(self, factory, visibility: ColumnVisibilityService, team: dict) -> None:
        column = await factory.column(
            team["board"],
            permissions={"roles": {team["admin"].id: "owner"}},
            settings=rules({"type": "role", "roles": ["owner"], "visible": True}, default=False),
        )
        assert await visibility.can_view_column(column.id, team["admin"].id)
        assert not await visibility.can_view_column(column.id, team["member"].id)

    async def test_user_rule_hides(self, factory, visibility: ColumnVisibilityService, team: dict) -> None:
        column = await factory.column(team["board"], settings=rules(
            {"type": "user", "userIds": [team["viewer"].id], "visible": False}
        ))
        assert not await visibility.can_view_column(column.id, team["viewer"].id)
        assert await visibility.can_view_column(column.id, team["member"].id)

    async def test_first_matching_rule_wins(self, factory, visibility: ColumnVisibilityService,
                                            team: dict) -> None:
        column = await factory.column(team["board"], settings=rules(
            {"type": "user", "userIds": [team["member"].id], "visible": False},
            {"type": "role", "roles": ["member"], "visible": True},
        ))
        assert not await visibility.can_view_column(column.id, team["member"].id)

    async def test_empty_role_list_never_matches(self, factory, visibility: ColumnVisibilityService,
                                                 team: dict) -> None:
        column = await factory.column(team["board"], settings=rules(
            {"type": "role", "roles": [], "visible": False}
        ))
        assert await visibility.can_view_column(column.id, team["member"].id)


class TestConditionalVisibility:

    async def test_hidden_only_for_approved_items(self, factory, visibility: ColumnVisibilityService,
                                                  team: dict) -> None:
        board = team["board"]
        status = await factory.column(board, name="Status", position=0)
        amount = await factory.column(board, name="Amount", position=1, settings=rules({
            "type": "conditional",
            "condition": {"columnId": status.id, "operator": "equals", "value": "Approved"},
            "visible": False,
        }))
        approved = await factory.item(board, created_by=team["member"], name="Approved claim")
        pending = await factory.item(board, created_by=team["member"], name="Pending claim")
        blank = await factory.item(board, created_by=team["member"], name="Blank claim")
        await factory.cell(approved, status, "Approved")
        await factory.cell(pending, status, "Pending")

        user_id = team["member"].id
        assert not await visibility.can_view_column(amount.id, user_id, approved.id)
        assert await visibility.can_view_column(amount.id, user_id, pending.id)
        assert await visibility.can_view_column(amount.id, user_id, blank.id)
        assert await visibility.can_view_column(amount.id, user_id)

    async def test_injected_cell_reader(self, factory, permissions: PermissionService, team: dict) -> None:
        column = await factory.column(team["board"], settings=rules({
            "type": "conditional",
            "condition": {"columnId": "tags", "operator": "contains", "value": "Confidential"},
            "visible": False,
        }))
        reader = StaticCells({("item-1", "tags"): ["Confidential", "travel"], ("item-2", "tags"): ["travel"]})
        visibility = ColumnVisibilityService(permissions, cell_reader=reader)

        assert not await visibility.can_view_column(column.id, team["member"].id, "item-1")
        assert await visibility.can_view_column(column.id, team["member"].id, "item-2")
        assert await visibility.can_view_column(column.id, team["member"].id, "item-3")

    async def test_numeric_condition(self, factory, permissions: PermissionService, team: dict) -> None:
        column = await factory.column(team["board"], settings=rules({
            "type": "conditional",
            "condition": {"columnId": "amount", "operator": "greater_than", "value": 1000},
            "visible": True,
        }, default=False))
        reader = StaticCells({("big", "amount"): 5000, ("small", "amount"): 20})
        visibility = ColumnVisibilityService(permissions, cell_reader=reader)

        assert await visibility.can_view_column(column.id, team["member"].id, "big")
        assert not await visibility.can_view_column(column.id, team["member"].id, "small")


class TestSensitiveColumns:

    async def test_requires_manage(self, factory, visibility: ColumnVisibilityService, team: dict) -> None:
        column = await factory.column(team["board"], settings={"isSensitive": True})
        assert await visibility.is_sensitive_column(column.id, team["member"].id)
        assert not await visibility.is_sensitive_column(column.id, team["admin"].id)
        assert not await visibility.is_sensitive_column(column.id, team["owner"].id)

    async def test_plain_column_is_not_sensitive(self, factory, visibility: ColumnVisibilityService,
                                                 team: dict) -> None:
        column = await factory.column(team["board"])
        assert not await visibility.is_sensitive_column(column.id, team["member"].id)

    async def test_columns_with_visibility(self, factory, visibility: ColumnVisibilityService,
                                           team: dict) -> None:
        board = team["board"]
        notes = await factory.column(board, name="Notes", position=0)
        salary = await factory.column(board, name="Salary", position=1, settings={"isSensitive": True})
        secret = await factory.column(board, name="Internal", position=2, is_hidden=True)

        annotated = await visibility.get_columns_with_visibility(board.id, team["member"].id)
        by_id = {entry.column.id: entry for entry in annotated}
        assert [entry.column.id for entry in annotated] == [notes.id, salary.id, secret.id]

        assert by_id[notes.id].can_view and not by_id[notes.id].is_hidden
        assert by_id[salary.id].can_view and by_id[salary.id].is_sensitive and by_id[salary.id].is_hidden
        assert not by_id[secret.id].can_view and by_id[secret.id].is_hidden

        assert await visibility.get_visible_columns(board.id, team["member"].id) == [notes.id, salary.id]

    async def test_lookup_errors_hide(self, monkeypatch, factory, visibility: ColumnVisibilityService,
                                      team: dict) -> None:
        column = await factory.column(team["board"])

        async def broken(*args: Any, **kwargs: Any) -> Any:
            raise RuntimeError("connection reset")

        monkeypatch.setattr(visibility.store, "get_column", broken)
        assert not await visibility.can_view_column(column.id, team["member"].id)
        assert await visibility.is_sensitive_column(column.id, team["member"].id)
