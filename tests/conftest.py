"""Shared test fixtures for the access engine."""

from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-secret-key-do-not-use")

from typing import Any, AsyncIterator, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from workspace_acl.core.database.base import Base
from workspace_acl.core.database.engine import register_models
from workspace_acl.features.boards.models import (
    Board,
    BoardMember,
    BoardRole,
    Cell,
    Column,
    ColumnType,
    Item,
)
from workspace_acl.features.permissions.service import PermissionService
from workspace_acl.features.users.models import User, UserRole
from workspace_acl.features.workspaces.models import Workspace, WorkspaceMember, WorkspaceRole


class Factory:
    """Creates persisted rows with sensible defaults."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._seq = 0

    async def _save(self, obj: Any) -> Any:
        self.session.add(obj)
        await self.session.flush()
        await self.session.refresh(obj)
        return obj

    async def user(
        self,
        name: Optional[str] = None,
        role: UserRole = UserRole.EMPLOYEE,
        department: Optional[str] = None,
        is_active: bool = True,
    ) -> User:
        self._seq += 1
        name = name or f"user{self._seq}"
        return await self._save(User(
            email=f"{name}.{self._seq}@example.com",
            name=name,
            role=role,
            department=department,
            is_active=is_active,
        ))

    async def workspace(self, created_by: Optional[User] = None, name: str = "Operations") -> Workspace:
        return await self._save(Workspace(name=name, created_by=created_by.id if created_by else None))

    async def member(self, workspace: Workspace, user: User, role: WorkspaceRole) -> WorkspaceMember:
        return await self._save(WorkspaceMember(workspace_id=workspace.id, user_id=user.id, role=role))

    async def board(
        self,
        workspace: Workspace,
        created_by: User,
        is_private: bool = False,
        permissions: Optional[dict] = None,
        name: str = "Expenses",
    ) -> Board:
        return await self._save(Board(
            workspace_id=workspace.id,
            name=name,
            created_by=created_by.id,
            is_private=is_private,
            permissions=permissions,
        ))

    async def board_member(self, board: Board, user: User, role: BoardRole) -> BoardMember:
        return await self._save(BoardMember(board_id=board.id, user_id=user.id, role=role))

    async def column(
        self,
        board: Board,
        name: str = "Notes",
        type: ColumnType = ColumnType.TEXT,
        created_by: Optional[User] = None,
        is_hidden: bool = False,
        permissions: Optional[dict] = None,
        settings: Optional[dict] = None,
        position: int = 0,
    ) -> Column:
        return await self._save(Column(
            board_id=board.id,
            name=name,
            type=type,
            created_by=created_by.id if created_by else None,
            is_hidden=is_hidden,
            permissions=permissions,
            settings=settings,
            position=position,
        ))

    async def item(
        self,
        board: Board,
        created_by: User,
        name: str = "Flight to Berlin",
        status: Optional[str] = None,
    ) -> Item:
        return await self._save(Item(board_id=board.id, name=name, status=status, created_by=created_by.id))

    async def cell(self, item: Item, column: Column, value: Any) -> Cell:
        # Through the relationship so item.cells stays current in this session
        return await self._save(Cell(item=item, column_id=column.id, value=value))


@pytest.fixture
async def session() -> AsyncIterator[AsyncSession]:
    register_models()
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with session_factory() as s:
        yield s
    await engine.dispose()


@pytest.fixture
def factory(session: AsyncSession) -> Factory:
    return Factory(session)


@pytest.fixture
def permissions(session: AsyncSession) -> PermissionService:
    return PermissionService(session)


@pytest.fixture
async def team(factory: Factory) -> dict[str, Any]:
    """
    One workspace with a member per workspace role, a public board created by
    the owner, and a platform admin who is not a member.
    """
    owner = await factory.user("owner")
    admin = await factory.user("admin")
    finance = await factory.user("finance")
    member = await factory.user("member")
    viewer = await factory.user("viewer")
    outsider = await factory.user("outsider")
    platform_admin = await factory.user("root", role=UserRole.ADMIN)

    workspace = await factory.workspace(created_by=owner)
    for user, role in (
        (owner, WorkspaceRole.OWNER),
        (admin, WorkspaceRole.ADMIN),
        (finance, WorkspaceRole.FINANCE),
        (member, WorkspaceRole.MEMBER),
        (viewer, WorkspaceRole.VIEWER),
    ):
        await factory.member(workspace, user, role)

    board = await factory.board(workspace, created_by=owner)
    return {
        "owner": owner,
        "admin": admin,
        "finance": finance,
        "member": member,
        "viewer": viewer,
        "outsider": outsider,
        "platform_admin": platform_admin,
        "workspace": workspace,
        "board": board,
    }
