"""
Board, column, item and cell models.

Only the fields the access engine reads are modelled here. Board and column
rows carry JSON override maps; the `version` counter guards concurrent
writes to those maps.
"""
from datetime import datetime
from typing import Any, Dict
import enum
from sqlalchemy import (
    String, ForeignKey, Boolean, Integer, JSON, DateTime, UniqueConstraint, Enum as SQLEnum
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workspace_acl.core.database.base import Base, TimestampMixin, ULIDPrimaryKeyMixin


class BoardRole(str, enum.Enum):
    """Explicit role of a user on a single board."""
    OWNER = "owner"
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


class ColumnRole(str, enum.Enum):
    """Per-column role, stored inside Column.permissions["roles"]."""
    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"


class ColumnType(str, enum.Enum):
    """Field types. PEOPLE cells hold a user id or a list of user ids."""
    TEXT = "TEXT"
    LONG_TEXT = "LONG_TEXT"
    EMAIL = "EMAIL"
    NUMBER = "NUMBER"
    CURRENCY = "CURRENCY"
    DATE = "DATE"
    CHECKBOX = "CHECKBOX"
    DROPDOWN = "DROPDOWN"
    PEOPLE = "PEOPLE"
    STATUS = "STATUS"
    AUTO_NUMBER = "AUTO_NUMBER"


def _enum_column(enum_cls: type[enum.Enum]) -> SQLEnum:
    return SQLEnum(enum_cls, native_enum=False, values_callable=lambda e: [m.value for m in e])


class Board(Base, ULIDPrimaryKeyMixin, TimestampMixin):
    """
    Table-like container of columns and items inside a workspace.

    A private board is visible only to its creator and board owners.
    """
    __tablename__ = "boards"

    workspace_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False)
    is_private: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # OverrideMap JSON: {action: bool | {userIdOrRole: bool}}
    permissions: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    members: Mapped[list["BoardMember"]] = relationship(
        "BoardMember",
        back_populates="board",
        cascade="all, delete-orphan",
        lazy="selectin"
    )
    columns: Mapped[list["Column"]] = relationship(
        "Column",
        back_populates="board",
        cascade="all, delete-orphan",
        order_by="Column.position",
    )

    def __repr__(self) -> str:
        return f"<Board(id={self.id}, name={self.name!r}, private={self.is_private})>"


class BoardMember(Base, ULIDPrimaryKeyMixin, TimestampMixin):
    """Optional explicit board role; overrides the workspace-derived capability."""
    __tablename__ = "board_members"
    __table_args__ = (
        UniqueConstraint("board_id", "user_id", name="uq_board_members_board_user"),
    )

    board_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[BoardRole] = mapped_column(_enum_column(BoardRole), nullable=False)

    board: Mapped["Board"] = relationship("Board", back_populates="members")

    def __repr__(self) -> str:
        return f"<BoardMember(board_id={self.board_id}, user_id={self.user_id}, role={self.role.value})>"


class Column(Base, ULIDPrimaryKeyMixin, TimestampMixin):
    """
    Typed field definition on a board.

    settings JSON may contain:
        visibility: list of visibility rules
        cellPermissions: {mode, allowedUsers?, allowedRoles?}
        isSensitive: bool
        defaultVisibility: bool
    """
    __tablename__ = "columns"

    board_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[ColumnType] = mapped_column(_enum_column(ColumnType), default=ColumnType.TEXT, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    is_hidden: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # OverrideMap JSON, optionally with "roles": {userId: ColumnRole}
    permissions: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    settings: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    board: Mapped["Board"] = relationship("Board", back_populates="columns")

    def __repr__(self) -> str:
        return f"<Column(id={self.id}, name={self.name!r}, type={self.type.value})>"


class Item(Base, ULIDPrimaryKeyMixin, TimestampMixin):
    """A row within a board."""
    __tablename__ = "items"

    board_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    created_by: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    cells: Mapped[list["Cell"]] = relationship(
        "Cell",
        back_populates="item",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Item(id={self.id}, board_id={self.board_id}, name={self.name!r})>"


class Cell(Base, ULIDPrimaryKeyMixin, TimestampMixin):
    """Value of one column for one item. Permissions come from the column."""
    __tablename__ = "cells"
    __table_args__ = (
        UniqueConstraint("item_id", "column_id", name="uq_cells_item_column"),
    )

    item_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    column_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("columns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    value: Mapped[Any] = mapped_column(JSON, nullable=True)

    item: Mapped["Item"] = relationship("Item", back_populates="cells")

    def __repr__(self) -> str:
        return f"<Cell(id={self.id}, item_id={self.item_id}, column_id={self.column_id})>"
