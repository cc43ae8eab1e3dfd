"""Tests for role matrices and override maps."""

from __future__ import annotations

import pytest

from workspace_acl.features.permissions.errors import InvalidRequestError
from workspace_acl.features.permissions.overrides import (
    OverrideMap,
    merge_column_role,
    merge_identity,
    validate_override_map,
)
from workspace_acl.features.permissions.roles import (
    board_role_allows,
    column_role_allows,
    permission_set,
    workspace_role_allows,
)
from workspace_acl.features.permissions.types import Action, PermissionSet, Resource
from workspace_acl.features.workspaces.models import WorkspaceRole


class TestRoleMatrices:
    """Default capabilities per role."""

    def test_workspace_owner_has_everything(self) -> None:
        assert permission_set(Resource.WORKSPACE, WorkspaceRole.OWNER) == PermissionSet(
            read=True, write=True, delete=True, manage=True
        )

    def test_workspace_admin_cannot_delete(self) -> None:
        assert permission_set(Resource.WORKSPACE, "admin") == PermissionSet(
            read=True, write=True, delete=False, manage=True
        )

    def test_finance_reads_and_manages_only(self) -> None:
        assert workspace_role_allows("finance", Action.READ)
        assert workspace_role_allows("finance", Action.MANAGE)
        assert not workspace_role_allows("finance", Action.WRITE)
        assert not workspace_role_allows("finance", Action.DELETE)

    def test_member_and_viewer(self) -> None:
        assert workspace_role_allows("member", Action.WRITE)
        assert not workspace_role_allows("member", Action.MANAGE)
        assert workspace_role_allows("viewer", Action.READ)
        assert not workspace_role_allows("viewer", Action.WRITE)

    def test_unknown_role_grants_nothing(self) -> None:
        assert permission_set(Resource.WORKSPACE, "superuser") == PermissionSet()
        assert not workspace_role_allows(None, Action.READ)

    def test_board_matrix(self) -> None:
        assert board_role_allows("owner", Action.DELETE)
        assert board_role_allows("admin", Action.MANAGE)
        assert not board_role_allows("admin", Action.DELETE)
        assert board_role_allows("editor", Action.WRITE)
        assert not board_role_allows("editor", Action.MANAGE)
        assert not board_role_allows("viewer", Action.WRITE)

    def test_column_matrix(self) -> None:
        assert column_role_allows("owner", Action.MANAGE)
        assert column_role_allows("editor", Action.WRITE)
        assert not column_role_allows("editor", Action.DELETE)
        assert column_role_allows("viewer", Action.READ)
        assert not column_role_allows("viewer", Action.WRITE)


class TestOverrideMap:
    """Parsing and resolving stored override JSON."""

    def test_absent_action_inherits(self) -> None:
        assert OverrideMap.parse({"read": {"u1": False}}).resolve("write", "u1", "member") is None

    def test_blanket_boolean(self) -> None:
        overrides = OverrideMap.parse({"delete": False})
        assert overrides.resolve("delete", "anyone", "owner") is False

    def test_user_entry_beats_role_entry(self) -> None:
        user_first = OverrideMap.parse({"write": {"u1": True, "viewer": False}})
        role_first = OverrideMap.parse({"write": {"viewer": False, "u1": True}})
        assert user_first.resolve("write", "u1", "viewer") is True
        assert role_first.resolve("write", "u1", "viewer") is True

    def test_role_entry_applies_to_other_users(self) -> None:
        overrides = OverrideMap.parse({"write": {"u1": True, "viewer": False}})
        assert overrides.resolve("write", "u2", "viewer") is False
        assert overrides.resolve("write", "u2", "member") is None

    def test_malformed_entries_are_dropped(self) -> None:
        overrides = OverrideMap.parse({"read": "yes", "write": {"u1": "true", "u2": True}, "roles": ["x"]})
        assert "read" not in overrides.entries
        assert overrides.entries["write"] == {"u2": True}
        assert overrides.roles == {}

    def test_non_object_means_no_overrides(self) -> None:
        assert OverrideMap.parse(None) == OverrideMap()
        assert OverrideMap.parse([1, 2]) == OverrideMap()

    def test_column_roles_and_user_overrides(self) -> None:
        overrides = OverrideMap.parse({
            "roles": {"u1": "editor"},
            "read": {"u1": True, "member": False},
            "manage": {"u2": True},
        })
        assert overrides.column_role("u1") == "editor"
        assert overrides.column_role("u2") is None
        assert overrides.user_overrides("u1") == {"read": True}


class TestMerge:
    """Assignment merges never lose unrelated entries."""

    def test_merge_keeps_other_actions_and_identities(self) -> None:
        raw = {"read": {"u2": True}, "delete": {"admin": False}}
        merged = merge_identity(raw, "u1", {"read": False, "write": True})
        assert merged == {
            "read": {"u2": True, "u1": False},
            "write": {"u1": True},
            "delete": {"admin": False},
        }
        assert raw == {"read": {"u2": True}, "delete": {"admin": False}}

    def test_merge_converts_blanket_true(self) -> None:
        assert merge_identity({"read": True}, "u1", {"read": False}) == {"read": {"u1": False}}

    def test_merge_refines_blanket_false(self) -> None:
        merged = merge_identity({"write": False}, "u1", {"write": True})
        assert merged["write"] == {**{role.value: False for role in WorkspaceRole}, "u1": True}

        overrides = OverrideMap.parse(merged)
        assert overrides.resolve("write", "u1", "member") is True
        for role in WorkspaceRole:
            assert overrides.resolve("write", "u2", role.value) is False

    def test_merge_column_role(self) -> None:
        merged = merge_column_role({"read": {"u2": True}, "roles": {"u2": "viewer"}}, "u1", "owner")
        assert merged == {"read": {"u2": True}, "roles": {"u2": "viewer", "u1": "owner"}}

    def test_merge_into_nothing(self) -> None:
        assert merge_column_role(None, "u1", "viewer") == {"roles": {"u1": "viewer"}}
        assert merge_identity(None, "editor", {"manage": True}) == {"manage": {"editor": True}}


class TestValidateOverrideMap:
    """Complete maps supplied for replacement are checked strictly."""

    def test_clean_map_is_kept(self) -> None:
        raw = {"read": True, "write": {"u1": False, "finance": True}}
        assert validate_override_map(raw) == raw

    def test_none_clears(self) -> None:
        assert validate_override_map(None) == {}
        assert validate_override_map({}) == {}

    def test_column_roles_only_on_columns(self) -> None:
        raw = {"roles": {"u1": "editor"}}
        assert validate_override_map(raw, allow_column_roles=True) == raw
        with pytest.raises(InvalidRequestError):
            validate_override_map(raw)

    @pytest.mark.parametrize("raw", [
        {"approve": True},
        {"read": "yes"},
        {"write": {"u1": 1}},
        {"roles": {"u1": "superuser"}},
        ["read"],
    ])
    def test_malformed_maps_are_rejected(self, raw) -> None:
        with pytest.raises(InvalidRequestError):
            validate_override_map(raw, allow_column_roles=True)
