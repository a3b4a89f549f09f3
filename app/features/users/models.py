"""
User model with ULID primary keys and a base role.
"""
import enum
from sqlalchemy import String, Boolean, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class UserRole(str, enum.Enum):
    """Base roles, most senior first."""
    SUPER_ADMIN = "super_admin"
    ORG_ADMIN = "org_admin"
    SENIOR_MANAGER = "senior_manager"
    MANAGER = "manager"
    LEAD = "lead"
    MEMBER = "member"

    @property
    def seniority(self) -> int:
        """Higher is more senior; member is 0."""
        members = list(UserRole)
        return len(members) - 1 - members.index(self)

    @property
    def is_admin(self) -> bool:
        return self in (UserRole.SUPER_ADMIN, UserRole.ORG_ADMIN)


class User(Base, TimestampMixin):
    """
    User model as held by the identity store.
    
    Every user belongs to exactly one organization and carries one base role.
    """
    __tablename__ = "users"
    
    # Primary key using ULID (Universally Unique Lexicographically Sortable Identifier)
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    # User information
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    
    role: Mapped[UserRole] = mapped_column(
        SQLEnum(UserRole, values_callable=lambda roles: [r.value for r in roles]),
        default=UserRole.MEMBER,
        nullable=False,
        index=True
    )
    
    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    
    # Status flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    @property
    def is_admin(self) -> bool:
        return self.role.is_admin
    
    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, role={self.role.value})>"
