"""
Permission template, assignment and audit models.

This module stores the inputs and outputs of permission resolution:
- Reusable permission templates (global or organization-scoped)
- Per-user assignments for an exact (organization, team) scope, holding the
  template reference, custom overrides and the cached effective document
- An audit trail of every permission and hierarchy mutation
"""
import enum
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, JSON, Text, Integer, Enum as SQLEnum, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class AssignmentSource(str, enum.Enum):
    """Which layer last shaped an assignment."""
    ROLE = "role"
    TEMPLATE = "template"
    CUSTOM = "custom"


class PermissionTemplate(Base, TimestampMixin):
    """
    Named, reusable permission document.

    organization_id = null makes the template visible to every organization.
    `version` increases on every update; cached effective documents built
    from an older version are recomputed.
    """
    __tablename__ = "permission_templates"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Sparse document: {"resources": {"manage": true}}
    permissions: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<PermissionTemplate(id={self.id}, name={self.name!r}, org_id={self.organization_id})>"


class PermissionAssignment(Base, TimestampMixin):
    """
    A user's permission layers for one exact (organization, team) scope.

    `effective_fingerprint` hashes the inputs the cached document was built
    from; `version` is the optimistic-concurrency token checked on every
    UPDATE.
    """
    __tablename__ = "user_permissions"
    __table_args__ = (
        UniqueConstraint("user_id", "organization_id", "team_id", name="uq_user_permissions_scope"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    team_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    source: Mapped[AssignmentSource] = mapped_column(
        SQLEnum(AssignmentSource, values_callable=lambda sources: [s.value for s in sources]),
        default=AssignmentSource.ROLE,
        nullable=False
    )
    template_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("permission_templates.id", ondelete="SET NULL"),
        nullable=True
    )
    custom_permissions: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    effective_permissions: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    effective_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<PermissionAssignment(id={self.id}, user_id={self.user_id}, "
            f"org_id={self.organization_id}, team_id={self.team_id}, source={self.source.value})>"
        )


class AuditLog(Base, TimestampMixin):
    """
    Audit log for permission and hierarchy mutations.

    Tracks who did what, to which record, in which organization.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor (null for system actions)
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

    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource_type})>"
