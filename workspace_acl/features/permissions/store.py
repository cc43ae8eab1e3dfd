"""
Read-only data access for the access engine.

Every lookup the evaluators need goes through PermissionStore so that the
decision logic can be exercised against any object with the same methods.
"""
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from sqlalchemy import ColumnElement, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from workspace_acl.features.boards.models import Board, BoardMember, Cell, Column, ColumnType, Item
from workspace_acl.features.users.models import User
from workspace_acl.features.workspaces.models import Workspace, WorkspaceMember


class ItemCellReader(Protocol):
    """Reads one cell value of an item; used by conditional visibility rules."""

    async def get_cell_value(self, item_id: str, column_id: str) -> Tuple[bool, Any]:
        ...


def value_includes_user(value: Any, user_id: str) -> bool:
    """PEOPLE cells hold either a single user id or a list of user ids."""
    if isinstance(value, list):
        return user_id in value
    return value == user_id


class PermissionStore:
    """SQLAlchemy-backed lookups, one session per request."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user(self, user_id: str) -> Optional[User]:
        return await self.db.get(User, user_id)

    async def is_platform_admin(self, user_id: str) -> bool:
        user = await self.get_user(user_id)
        return user is not None and user.is_admin

    async def get_workspace(self, workspace_id: str) -> Optional[Workspace]:
        return await self.db.get(Workspace, workspace_id)

    async def get_workspace_member(self, workspace_id: str, user_id: str) -> Optional[WorkspaceMember]:
        result = await self.db.execute(
            select(WorkspaceMember).where(
                WorkspaceMember.workspace_id == workspace_id,
                WorkspaceMember.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_board(self, board_id: str, refresh: bool = False) -> Optional[Board]:
        return await self.db.get(Board, board_id, populate_existing=refresh)

    async def get_board_member(self, board_id: str, user_id: str) -> Optional[BoardMember]:
        result = await self.db.execute(
            select(BoardMember).where(
                BoardMember.board_id == board_id,
                BoardMember.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_column(self, column_id: str, refresh: bool = False) -> Optional[Column]:
        return await self.db.get(Column, column_id, populate_existing=refresh)

    async def list_columns(self, board_id: str) -> Sequence[Column]:
        result = await self.db.execute(
            select(Column).where(Column.board_id == board_id).order_by(Column.position, Column.id)
        )
        return result.scalars().all()

    async def get_people_column_ids(self, board_id: str) -> List[str]:
        result = await self.db.execute(
            select(Column.id).where(Column.board_id == board_id, Column.type == ColumnType.PEOPLE)
        )
        return list(result.scalars().all())

    async def find_department_column(self, board_id: str) -> Optional[Column]:
        """First column whose name contains "department", case-insensitively."""
        result = await self.db.execute(
            select(Column)
            .where(Column.board_id == board_id, func.lower(Column.name).contains("department"))
            .order_by(Column.position, Column.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_item(self, item_id: str) -> Optional[Item]:
        return await self.db.get(Item, item_id)

    async def query_items(self, *criteria: ColumnElement[bool]) -> Sequence[Item]:
        """Items matching all criteria, newest first, cells eagerly loaded."""
        result = await self.db.execute(
            select(Item).where(*criteria).order_by(Item.created_at.desc(), Item.id.desc())
        )
        return result.scalars().all()

    async def get_cell(self, cell_id: str) -> Optional[Cell]:
        return await self.db.get(Cell, cell_id)

    async def get_cell_value(self, item_id: str, column_id: str) -> Tuple[bool, Any]:
        result = await self.db.execute(
            select(Cell.value).where(Cell.item_id == item_id, Cell.column_id == column_id)
        )
        row = result.first()
        if row is None:
            return False, None
        return True, row[0]

    async def get_people_values(self, item_id: str) -> List[Any]:
        result = await self.db.execute(
            select(Cell.value)
            .join(Column, Column.id == Cell.column_id)
            .where(Cell.item_id == item_id, Column.type == ColumnType.PEOPLE)
        )
        return list(result.scalars().all())

    async def is_assigned(self, item_id: str, user_id: str) -> bool:
        values = await self.get_people_values(item_id)
        return any(value_includes_user(value, user_id) for value in values)
