"""
Audit trail for permission assignments.

Roles and overrides themselves live on the membership, board and column
rows; this table records who changed them.
"""
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column

from workspace_acl.core.database.base import Base, TimestampMixin, ULIDPrimaryKeyMixin


class AuditLog(Base, ULIDPrimaryKeyMixin, TimestampMixin):
    """
    Audit log for permission-related mutations.

    Tracks who assigned what, on which resource.
    """
    __tablename__ = "audit_logs"

    # Actor
    user_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    # Context
    workspace_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("workspaces.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource_type})>"
