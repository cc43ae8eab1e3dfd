"""
Workspace models.

A workspace is the tenant root of the permission hierarchy. Membership rows
carry the role every board, column, cell and item check starts from.
"""
import enum
from sqlalchemy import String, ForeignKey, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from workspace_acl.core.database.base import Base, TimestampMixin, ULIDPrimaryKeyMixin


class WorkspaceRole(str, enum.Enum):
    """Role of a user inside one workspace."""
    OWNER = "owner"
    ADMIN = "admin"
    FINANCE = "finance"
    MEMBER = "member"
    VIEWER = "viewer"


class Workspace(Base, ULIDPrimaryKeyMixin, TimestampMixin):
    """Top-level container of boards."""
    __tablename__ = "workspaces"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    members: Mapped[list["WorkspaceMember"]] = relationship(
        "WorkspaceMember",
        back_populates="workspace",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Workspace(id={self.id}, name={self.name!r})>"


class WorkspaceMember(Base, ULIDPrimaryKeyMixin, TimestampMixin):
    """
    One row per (workspace, user).

    Created on invite, deleted on removal.
    """
    __tablename__ = "workspace_members"
    __table_args__ = (
        UniqueConstraint("workspace_id", "user_id", name="uq_workspace_members_workspace_user"),
    )

    workspace_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[WorkspaceRole] = mapped_column(
        SQLEnum(WorkspaceRole, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        default=WorkspaceRole.MEMBER,
        nullable=False,
    )

    workspace: Mapped["Workspace"] = relationship("Workspace", back_populates="members")

    def __repr__(self) -> str:
        return f"<WorkspaceMember(workspace_id={self.workspace_id}, user_id={self.user_id}, role={self.role.value})>"
