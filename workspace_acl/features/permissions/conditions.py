"""
Cell value comparisons used by conditional visibility rules and custom row filters.
"""
from numbers import Real
from typing import Any

from workspace_acl.features.permissions.types import FilterOperator


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def values_equal(left: Any, right: Any) -> bool:
    # JSON true is not the number 1
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def compare(operator: FilterOperator, cell_value: Any, expected: Any) -> bool:
    """
    Evaluate `cell_value <operator> expected`.

    contains: case-insensitive substring for strings, membership for list
    cells (every element when `expected` is itself a list).
    greater_than / less_than: numbers only.
    in: the cell value is one of `expected`.
    """
    operator = FilterOperator(operator)

    if operator is FilterOperator.EQUALS:
        return values_equal(cell_value, expected)

    if operator is FilterOperator.CONTAINS:
        if isinstance(cell_value, str) and isinstance(expected, str):
            return expected.lower() in cell_value.lower()
        if isinstance(cell_value, list):
            wanted = expected if isinstance(expected, list) else [expected]
            return all(any(values_equal(v, w) for v in cell_value) for w in wanted)
        return values_equal(cell_value, expected)

    if operator is FilterOperator.GREATER_THAN:
        return _is_number(cell_value) and _is_number(expected) and cell_value > expected

    if operator is FilterOperator.LESS_THAN:
        return _is_number(cell_value) and _is_number(expected) and cell_value < expected

    if operator is FilterOperator.IN:
        if isinstance(expected, list):
            return any(values_equal(cell_value, option) for option in expected)
        return values_equal(cell_value, expected)

    return False
