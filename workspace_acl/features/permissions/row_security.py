"""
Row-level security: which items of a board a user may enumerate.

filter_items builds an ItemPredicate. The predicate compiles to a SQL
WHERE clause for the coarse part (board, soft delete, creator, presence of
a cell in the right column) and checks cell values in memory, since JSON
value operators differ between SQLite and PostgreSQL.

The predicate is only a pre-filter. get_filtered_items always runs the
per-item read check on whatever the predicate lets through.
"""
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple
import enum

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import ColumnElement, and_, false, select

from workspace_acl.core import config
from workspace_acl.features.boards.models import Cell, Item
from workspace_acl.features.permissions.conditions import compare
from workspace_acl.features.permissions.service import PermissionService
from workspace_acl.features.permissions.store import value_includes_user
from workspace_acl.features.permissions.types import (
    Action,
    CellCondition,
    FilterOperator,
    PermissionContext,
    Resource,
)
from workspace_acl.utils import get_logger


log = get_logger(__name__)


class FilterBy(str, enum.Enum):
    ALL = "all"
    ASSIGNED = "assigned"
    CREATED = "created"
    DEPARTMENT = "department"
    CUSTOM = "custom"


class RowFilterOptions(BaseModel):
    filter_by: FilterBy = FilterBy.ALL
    department_id: Optional[str] = None
    # Raw {columnId, operator, value} objects; invalid entries are skipped
    custom_filters: List[Any] = Field(default_factory=list)


class ItemQueryOptions(RowFilterOptions):
    page: int = Field(1, ge=1)
    limit: int = Field(config.DEFAULT_PAGE_SIZE, ge=1)
    search: Optional[str] = None
    status: Optional[str] = None


@dataclass(frozen=True)
class CellMatch:
    """Item must have a cell in one of `column_ids` whose value passes `test`."""
    column_ids: Tuple[str, ...]
    test: Callable[[Any], bool]
    label: str = ""

    def matches(self, cells: Mapping[str, Any]) -> bool:
        return any(
            column_id in cells and self.test(cells[column_id])
            for column_id in self.column_ids
        )

    def where_clause(self) -> ColumnElement[bool]:
        return (
            select(Cell.id)
            .where(Cell.item_id == Item.id, Cell.column_id.in_(self.column_ids))
            .exists()
        )


@dataclass(frozen=True)
class ItemPredicate:
    board_id: Optional[str] = None
    match_nothing: bool = False
    created_by: Optional[str] = None
    cell_matches: Tuple[CellMatch, ...] = field(default_factory=tuple)

    @classmethod
    def nothing(cls) -> "ItemPredicate":
        return cls(match_nothing=True)

    def where_clause(self) -> ColumnElement[bool]:
        if self.match_nothing:
            return false()
        criteria = [Item.board_id == self.board_id, Item.deleted_at.is_(None)]
        if self.created_by is not None:
            criteria.append(Item.created_by == self.created_by)
        criteria.extend(match.where_clause() for match in self.cell_matches)
        return and_(*criteria)

    def matches(self, item: Item) -> bool:
        """In-memory evaluation; `item.cells` must be loaded."""
        if self.match_nothing:
            return False
        if item.board_id != self.board_id or item.deleted_at is not None:
            return False
        if self.created_by is not None and item.created_by != self.created_by:
            return False
        cells = {cell.column_id: cell.value for cell in item.cells}
        return all(match.matches(cells) for match in self.cell_matches)


@dataclass
class FilteredItems:
    items: List[Item]
    total: int
    page: int
    limit: int


def _assigned_to(user_id: str, value: Any) -> bool:
    return value_includes_user(value, user_id)


def _compares(operator: FilterOperator, expected: Any, value: Any) -> bool:
    return compare(operator, value, expected)


class RowLevelSecurityService:

    def __init__(self, permissions: PermissionService):
        self.permissions = permissions
        self.store = permissions.store

    async def filter_items(
        self,
        board_id: str,
        user_id: str,
        options: Optional[RowFilterOptions] = None,
    ) -> ItemPredicate:
        """Predicate restricting the board's items for this user; fails closed."""
        try:
            return await self._build_predicate(board_id, user_id, options or RowFilterOptions())
        except Exception:
            log.exception("Row filter failed for user=%s board=%s, matching nothing", user_id, board_id)
            return ItemPredicate.nothing()

    async def _build_predicate(
        self,
        board_id: str,
        user_id: str,
        options: RowFilterOptions,
    ) -> ItemPredicate:
        can_read_board = await self.permissions.has_permission(
            PermissionContext(user_id=user_id, board_id=board_id), Action.READ, Resource.BOARD
        )
        if not can_read_board:
            return ItemPredicate.nothing()

        base = ItemPredicate(board_id=board_id)

        if options.filter_by is FilterBy.ALL:
            return base

        if options.filter_by is FilterBy.CREATED:
            return ItemPredicate(board_id=board_id, created_by=user_id)

        if options.filter_by is FilterBy.ASSIGNED:
            people_columns = await self.store.get_people_column_ids(board_id)
            if not people_columns:
                return ItemPredicate.nothing()
            match = CellMatch(tuple(people_columns), partial(_assigned_to, user_id), "assigned")
            return ItemPredicate(board_id=board_id, cell_matches=(match,))

        if options.filter_by is FilterBy.DEPARTMENT:
            return await self._department_predicate(base, user_id, options.department_id)

        if options.filter_by is FilterBy.CUSTOM:
            matches = tuple(self._custom_matches(options.custom_filters))
            if not matches:
                return base
            return ItemPredicate(board_id=board_id, cell_matches=matches)

        return base

    async def _department_predicate(
        self,
        base: ItemPredicate,
        user_id: str,
        department_id: Optional[str],
    ) -> ItemPredicate:
        user = await self.store.get_user(user_id)
        department = (user.department if user else None) or department_id
        if not department:
            return base

        column = await self.store.find_department_column(base.board_id)
        if column is None:
            return base

        match = CellMatch(
            (column.id,), partial(_compares, FilterOperator.CONTAINS, department), "department"
        )
        return ItemPredicate(board_id=base.board_id, cell_matches=(match,))

    def _custom_matches(self, filters: Sequence[Any]) -> List[CellMatch]:
        known_operators = {operator.value for operator in FilterOperator}
        matches: List[CellMatch] = []
        for raw in filters:
            if isinstance(raw, Mapping) and raw.get("operator") not in known_operators:
                # Missing or unrecognised operators compare for equality
                raw = {**raw, "operator": FilterOperator.EQUALS.value}
            try:
                condition = CellCondition.model_validate(raw)
            except ValidationError:
                log.debug("Skipping invalid custom filter %r", raw)
                continue
            # A filter without a value is ignored, mirroring a missing key
            if "value" not in condition.model_fields_set:
                continue
            matches.append(CellMatch(
                (condition.column_id,),
                partial(_compares, condition.operator, condition.value),
                condition.operator.value,
            ))
        return matches

    async def get_filtered_items(
        self,
        board_id: str,
        user_id: str,
        options: Optional[ItemQueryOptions] = None,
    ) -> FilteredItems:
        """
        Paginated items the user may see.

        The predicate narrows the query, then every candidate is checked with the
        item evaluator; `total` counts the items that survive both passes.
        """
        options = options or ItemQueryOptions()
        page = options.page
        limit = min(options.limit, config.MAX_PAGE_SIZE)

        predicate = await self.filter_items(board_id, user_id, options)
        if predicate.match_nothing:
            return FilteredItems(items=[], total=0, page=page, limit=limit)

        try:
            criteria = [predicate.where_clause()]
            if options.search:
                criteria.append(Item.name.ilike(f"%{options.search}%"))
            if options.status:
                criteria.append(Item.status == options.status)

            candidates = [item for item in await self.store.query_items(*criteria) if predicate.matches(item)]
            accessible = set(
                await self.permissions.filter_items_by_access(user_id, board_id, candidates)
            )
        except Exception:
            log.exception("Filtered item query failed for user=%s board=%s", user_id, board_id)
            return FilteredItems(items=[], total=0, page=page, limit=limit)

        visible = [item for item in candidates if item.id in accessible]
        start = (page - 1) * limit
        return FilteredItems(items=visible[start:start + limit], total=len(visible), page=page, limit=limit)

    async def can_view_item(self, item_id: str, user_id: str) -> bool:
        return await self.permissions.has_permission(
            PermissionContext(user_id=user_id, item_id=item_id), Action.READ, Resource.ITEM
        )

    async def get_assigned_items(self, board_id: str, user_id: str, page: int = 1,
                                 limit: int = config.DEFAULT_PAGE_SIZE) -> FilteredItems:
        return await self.get_filtered_items(
            board_id, user_id, ItemQueryOptions(filter_by=FilterBy.ASSIGNED, page=page, limit=limit)
        )

    async def get_created_items(self, board_id: str, user_id: str, page: int = 1,
                                limit: int = config.DEFAULT_PAGE_SIZE) -> FilteredItems:
        return await self.get_filtered_items(
            board_id, user_id, ItemQueryOptions(filter_by=FilterBy.CREATED, page=page, limit=limit)
        )

    async def get_department_items(self, board_id: str, user_id: str, department_id: Optional[str] = None,
                                   page: int = 1, limit: int = config.DEFAULT_PAGE_SIZE) -> FilteredItems:
        return await self.get_filtered_items(
            board_id,
            user_id,
            ItemQueryOptions(filter_by=FilterBy.DEPARTMENT, department_id=department_id, page=page, limit=limit),
        )
