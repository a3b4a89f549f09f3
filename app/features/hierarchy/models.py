"""
Management hierarchy edges.

An edge says "manager_id manages manages_user_id", either within one team or
organization-wide. Edges are never deleted: removal deactivates them and
stamps ended_at, so past reporting lines stay queryable.
"""
import enum
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, JSON, Integer, Boolean, DateTime, Enum as SQLEnum, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, generate_ulid, utcnow


class EdgeScope(str, enum.Enum):
    """How far a management edge reaches inside the organization."""
    TEAM = "team"
    ORG_WIDE = "org_wide"


class ManagementEdge(Base):
    """
    Directed manager -> managed-user edge.
    
    level 1 is a direct report; higher levels record the distance of a
    manager inserted above an existing chain and only serve ordering.
    """
    __tablename__ = "management_hierarchy"
    __table_args__ = (
        CheckConstraint("manager_id <> manages_user_id", name="ck_hierarchy_no_self_loop"),
        Index("ix_hierarchy_pair_active", "manager_id", "manages_user_id", "is_active"),
    )
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    manager_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    manages_user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    team_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    
    scope: Mapped[EdgeScope] = mapped_column(
        SQLEnum(EdgeScope, values_callable=lambda scopes: [s.value for s in scopes]),
        default=EdgeScope.TEAM,
        nullable=False
    )
    level: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    delegated_permissions: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    
    def __repr__(self) -> str:
        return (
            f"<ManagementEdge(id={self.id}, manager={self.manager_id}, manages={self.manages_user_id}, "
            f"team={self.team_id}, scope={self.scope.value}, level={self.level}, active={self.is_active})>"
        )
