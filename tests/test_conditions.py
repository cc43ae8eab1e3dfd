"""Tests for cell value comparisons."""

from __future__ import annotations

from workspace_acl.features.permissions.conditions import compare, values_equal
from workspace_acl.features.permissions.types import FilterOperator


class TestCompare:

    def test_equals_is_strict_about_booleans(self) -> None:
        assert values_equal("Approved", "Approved")
        assert not values_equal(True, 1)
        assert not compare(FilterOperator.EQUALS, 1, True)
        assert compare(FilterOperator.EQUALS, 3.0, 3)

    def test_contains_string_ignores_case(self) -> None:
        assert compare(FilterOperator.CONTAINS, "Finance Department", "finance")
        assert not compare(FilterOperator.CONTAINS, "Sales", "finance")

    def test_contains_list_membership(self) -> None:
        assert compare(FilterOperator.CONTAINS, ["u1", "u2"], "u2")
        assert compare(FilterOperator.CONTAINS, ["u1", "u2"], ["u1", "u2"])
        assert not compare(FilterOperator.CONTAINS, ["u1"], ["u1", "u3"])

    def test_numeric_comparisons(self) -> None:
        assert compare(FilterOperator.GREATER_THAN, 1500, 1000)
        assert not compare(FilterOperator.GREATER_THAN, 500, 1000)
        assert compare(FilterOperator.LESS_THAN, 10.5, 11)
        assert not compare(FilterOperator.GREATER_THAN, "1500", 1000)
        assert not compare(FilterOperator.LESS_THAN, True, 5)

    def test_in(self) -> None:
        assert compare(FilterOperator.IN, "Open", ["Open", "Pending"])
        assert not compare(FilterOperator.IN, "Closed", ["Open", "Pending"])
        assert compare("in", "Open", "Open")
