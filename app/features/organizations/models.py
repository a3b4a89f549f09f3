"""
Organization and team models.

Organizations are the root of multi-tenancy: every user, team, template and
management edge belongs to one. CRUD for these lives outside this service;
the tables exist here so scoping can be checked.
"""
from sqlalchemy import String, ForeignKey, Boolean, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class Organization(Base, TimestampMixin):
    """Tenant root."""
    __tablename__ = "organizations"
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, slug={self.slug!r})>"


class Team(Base, TimestampMixin):
    """A team inside one organization; scopes assignments and management edges."""
    __tablename__ = "teams"
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    def __repr__(self) -> str:
        return f"<Team(id={self.id}, org_id={self.organization_id}, name={self.name!r})>"
