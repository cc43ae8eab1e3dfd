"""
User model with ULID primary keys.
"""
import enum
from sqlalchemy import String, Boolean, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from workspace_acl.core.database.base import Base, TimestampMixin, ULIDPrimaryKeyMixin


class UserRole(str, enum.Enum):
    """Platform-wide role. ADMIN bypasses every workspace check."""
    EMPLOYEE = "employee"
    MANAGER = "manager"
    ADMIN = "admin"


class User(Base, ULIDPrimaryKeyMixin, TimestampMixin):
    """
    User model representing authenticated users.

    The global role is owned by the identity service; the access engine only reads it.
    """
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[UserRole] = mapped_column(
        SQLEnum(UserRole, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        default=UserRole.EMPLOYEE,
        nullable=False,
    )
    # Free-form department name, matched against "department" board columns
    department: Mapped[str | None] = mapped_column(String(100), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, role={self.role.value})>"
