"""
Effective permission resolution.

The effective document for (user, organization?, team?) is built in layers:

    role default  <-  template (optional)  <-  custom overrides (optional)

Later layers win leaf by leaf. The result is cached on the matching
PermissionAssignment together with a fingerprint of its inputs, and the
cache is only returned while that fingerprint still matches.
"""
import copy
import hashlib
import json
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core import config
from app.core.exceptions import ConcurrentUpdateError, NotFoundError, ValidationError
from app.features.organizations.models import Organization, Team
from app.features.permissions.audit import add_audit_log
from app.features.permissions.defaults import ROLE_DEFAULTS_REVISION, defaults_for
from app.features.permissions.documents import (
    PermissionDocument,
    is_granted,
    merge_documents,
    parse_capability,
    set_leaf,
    sparse_document,
)
from app.features.permissions.models import AssignmentSource, PermissionAssignment, PermissionTemplate
from app.features.users.models import User
from app.features.users.store import IdentityStore
from app.utils import get_logger


log = get_logger(__name__)


def _scope_filter(column, value: Optional[str]):
    """Exact match on an optional scope column; None only matches NULL."""
    return column.is_(None) if value is None else column == value


def compute_effective(
    user: User,
    template: Optional[PermissionTemplate],
    custom: Optional[Mapping[str, Any]],
) -> PermissionDocument:
    """Role default, then template, then custom overrides."""
    document = defaults_for(user.role)
    if template is not None:
        document = merge_documents(document, template.permissions)
    return merge_documents(document, custom)


def fingerprint_inputs(
    user: User,
    template: Optional[PermissionTemplate],
    custom: Optional[Mapping[str, Any]],
) -> str:
    """Hash of everything compute_effective depends on."""
    payload = {
        "role": user.role.value,
        "defaults": ROLE_DEFAULTS_REVISION,
        "template": [template.id, template.version] if template is not None else None,
        "custom": custom or {},
    }
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()


class PermissionService:
    """
    Permission merge engine bound to one database session.

    Usage:
        service = PermissionService(db)
        document = await service.get_effective_permissions(user_id, organization_id=org_id)
        allowed = await service.check_permission(user_id, "tasks.approve", organization_id=org_id)
    """

    def __init__(
        self,
        db: AsyncSession,
        identity: Optional[IdentityStore] = None,
        max_retries: int = config.PERMISSION_UPDATE_RETRIES,
    ):
        self.db = db
        self.identity = identity or IdentityStore(db)
        self.max_retries = max(1, max_retries)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_effective_permissions(
        self,
        user_id: str,
        organization_id: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> PermissionDocument:
        """
        Resolve the effective permission document for a user in a scope.

        Raises:
            NotFoundError: unknown user
        """
        user = await self.identity.require_user(user_id)
        return await self._resolve(user, organization_id, team_id)

    async def check_permission(
        self,
        user_id: str,
        capability: str,
        organization_id: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> bool:
        """
        Check a dotted "category.action" capability.

        Never raises for bad input: malformed or unknown paths, unknown users
        and deactivated users are all denied.
        """
        if parse_capability(capability) is None:
            log.debug(f"Denied unknown capability {capability!r} for user {user_id}")
            return False

        user = await self.identity.get_user(user_id)
        if user is None or not user.is_active:
            log.debug(f"Denied {capability} for missing or inactive user {user_id}")
            return False

        document = await self._resolve(user, organization_id, team_id)
        granted = is_granted(document, capability)
        log.debug(
            f"User {user_id} {'granted' if granted else 'denied'} {capability} "
            f"in org={organization_id} team={team_id}"
        )
        return granted

    async def get_assignment(
        self,
        user_id: str,
        organization_id: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> Optional[PermissionAssignment]:
        """Most recently updated assignment for the exact scope, if any."""
        result = await self.db.execute(
            select(PermissionAssignment)
            .where(
                PermissionAssignment.user_id == user_id,
                _scope_filter(PermissionAssignment.organization_id, organization_id),
                _scope_filter(PermissionAssignment.team_id, team_id),
            )
            .order_by(PermissionAssignment.updated_at.desc(), PermissionAssignment.id.desc())
            .limit(1)
        )
        return result.scalars().first()

    async def _resolve(
        self,
        user: User,
        organization_id: Optional[str],
        team_id: Optional[str],
    ) -> PermissionDocument:
        assignment = await self.get_assignment(user.id, organization_id, team_id)
        if assignment is None:
            return defaults_for(user.role)

        template = await self._load_template(assignment.template_id)
        custom = assignment.custom_permissions
        fingerprint = fingerprint_inputs(user, template, custom)

        if assignment.effective_permissions is not None and assignment.effective_fingerprint == fingerprint:
            log.debug(f"Effective permissions cache hit for assignment {assignment.id}")
            return copy.deepcopy(assignment.effective_permissions)

        log.debug(f"Recomputing effective permissions for assignment {assignment.id}")
        document = compute_effective(user, template, custom)
        await self._store_cache(assignment, document, fingerprint)
        return document

    async def _store_cache(self, assignment: PermissionAssignment, document: PermissionDocument, fingerprint: str):
        assignment_id = assignment.id
        assignment.effective_permissions = copy.deepcopy(document)
        assignment.effective_fingerprint = fingerprint
        try:
            await self.db.commit()
        except StaleDataError:
            # Another writer changed the assignment; its own write carries a fresh cache
            await self.db.rollback()
            log.warning(f"Skipped cache refresh for assignment {assignment_id}: concurrent update")

    async def _load_template(self, template_id: Optional[str]) -> Optional[PermissionTemplate]:
        if template_id is None:
            return None
        template = await self.db.get(PermissionTemplate, template_id)
        if template is None:
            log.warning(f"Assignment references missing template {template_id}, ignoring it")
        return template

    # ------------------------------------------------------------------
    # Custom overrides
    # ------------------------------------------------------------------

    async def grant_permission(
        self,
        user_id: str,
        capability: str,
        organization_id: Optional[str] = None,
        team_id: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> PermissionAssignment:
        """Store an explicit True override for one capability."""
        return await self._set_override(user_id, capability, True, organization_id, team_id, actor_id)

    async def revoke_permission(
        self,
        user_id: str,
        capability: str,
        organization_id: Optional[str] = None,
        team_id: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> PermissionAssignment:
        """
        Store an explicit False override for one capability.

        The override is kept, so it keeps suppressing role default and
        template grants for that leaf.
        """
        return await self._set_override(user_id, capability, False, organization_id, team_id, actor_id)

    async def _set_override(
        self,
        user_id: str,
        capability: str,
        value: bool,
        organization_id: Optional[str],
        team_id: Optional[str],
        actor_id: Optional[str],
    ) -> PermissionAssignment:
        parsed = parse_capability(capability)
        if parsed is None:
            raise ValidationError(f"Unknown capability {capability!r}")
        category, action = parsed

        def mutate(assignment: PermissionAssignment) -> None:
            assignment.custom_permissions = set_leaf(assignment.custom_permissions, category, action, value)
            assignment.source = AssignmentSource.CUSTOM

        assignment = await self._update_assignment(user_id, organization_id, team_id, mutate)
        add_audit_log(
            self.db,
            user_id=actor_id,
            action="grant" if value else "revoke",
            resource_type="permission",
            resource_id=assignment.id,
            organization_id=organization_id,
            details={"user_id": user_id, "capability": capability, "team_id": team_id},
        )
        await self.db.commit()
        await self.db.refresh(assignment)
        log.info(f"{'Granted' if value else 'Revoked'} {capability} for user {user_id} (org={organization_id} team={team_id})")
        return assignment

    async def _update_assignment(
        self,
        user_id: str,
        organization_id: Optional[str],
        team_id: Optional[str],
        mutate: Callable[[PermissionAssignment], None],
    ) -> PermissionAssignment:
        """
        Load or create the assignment for the exact scope, apply `mutate`,
        recompute the effective document and flush.

        The whole sequence is replayed when a concurrent writer bumped the
        assignment version (or inserted the same scope) in the meantime.
        """
        for attempt in range(1, self.max_retries + 1):
            user = await self.identity.require_user(user_id)
            await self._check_scope(user, organization_id, team_id)

            assignment = await self.get_assignment(user_id, organization_id, team_id)
            if assignment is None:
                assignment = PermissionAssignment(
                    user_id=user_id,
                    organization_id=organization_id,
                    team_id=team_id,
                    source=AssignmentSource.ROLE,
                )
                self.db.add(assignment)

            mutate(assignment)

            template = await self._load_template(assignment.template_id)
            document = compute_effective(user, template, assignment.custom_permissions)
            assignment.effective_permissions = document
            assignment.effective_fingerprint = fingerprint_inputs(user, template, assignment.custom_permissions)

            try:
                await self.db.flush()
            except (StaleDataError, IntegrityError) as e:
                await self.db.rollback()
                log.warning(
                    f"Concurrent update on permissions of user {user_id} "
                    f"(attempt {attempt}/{self.max_retries}): {e.__class__.__name__}"
                )
                continue
            return assignment

        raise ConcurrentUpdateError(
            f"Permissions of user {user_id} were modified concurrently; please retry"
        )

    async def _check_scope(self, user: User, organization_id: Optional[str], team_id: Optional[str]):
        """Scopes must exist and lie inside the user's own organization."""
        if organization_id is not None:
            if await self.db.get(Organization, organization_id) is None:
                raise NotFoundError(f"Organization {organization_id} not found")
            if organization_id != user.organization_id:
                raise ValidationError(f"User {user.id} is not a member of organization {organization_id}")
        if team_id is not None:
            team = await self.db.get(Team, team_id)
            if team is None:
                raise NotFoundError(f"Team {team_id} not found")
            if team.organization_id != user.organization_id:
                raise ValidationError(f"Team {team_id} does not belong to the organization of user {user.id}")

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    async def create_template(
        self,
        name: str,
        permissions: Optional[Mapping[str, Any]],
        organization_id: Optional[str] = None,
        description: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> PermissionTemplate:
        """
        Create a reusable permission template.

        Raises:
            ValidationError: blank name or missing permissions document
            NotFoundError: unknown organization
        """
        if not name or not name.strip():
            raise ValidationError("Template name is required")
        if permissions is None:
            raise ValidationError("Template permissions are required")
        if organization_id is not None and await self.db.get(Organization, organization_id) is None:
            raise NotFoundError(f"Organization {organization_id} not found")

        template = PermissionTemplate(
            organization_id=organization_id,
            name=name.strip(),
            description=description,
            permissions=sparse_document(permissions),
        )
        self.db.add(template)
        await self.db.flush()

        add_audit_log(
            self.db,
            user_id=actor_id,
            action="create",
            resource_type="template",
            resource_id=template.id,
            organization_id=organization_id,
            details={"name": template.name, "permissions": template.permissions},
        )
        await self.db.commit()
        await self.db.refresh(template)
        log.info(f"Created permission template {template.id} ({template.name!r}) org={organization_id}")
        return template

    async def get_template(self, template_id: str) -> PermissionTemplate:
        template = await self.db.get(PermissionTemplate, template_id)
        if template is None:
            raise NotFoundError(f"Template {template_id} not found")
        return template

    async def update_template(
        self,
        template_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        permissions: Optional[Mapping[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> PermissionTemplate:
        """
        Update a template in place.

        The template version moves forward, so every cached effective document
        built from the previous content is recomputed on its next read.
        """
        template = await self.get_template(template_id)
        changes: Dict[str, Any] = {}

        if name is not None:
            if not name.strip():
                raise ValidationError("Template name is required")
            template.name = changes["name"] = name.strip()
        if description is not None:
            template.description = changes["description"] = description
        if permissions is not None:
            template.permissions = changes["permissions"] = sparse_document(permissions)

        if not changes:
            return template

        try:
            await self.db.flush()
        except StaleDataError:
            await self.db.rollback()
            raise ConcurrentUpdateError(f"Template {template_id} was modified concurrently; please retry")

        add_audit_log(
            self.db,
            user_id=actor_id,
            action="update",
            resource_type="template",
            resource_id=template_id,
            organization_id=template.organization_id,
            details=changes,
        )
        await self.db.commit()
        await self.db.refresh(template)
        log.info(f"Updated permission template {template_id} to version {template.version}")
        return template

    async def list_templates(self, organization_id: Optional[str] = None) -> Sequence[PermissionTemplate]:
        """Global templates, plus the organization's own when one is given."""
        condition = PermissionTemplate.organization_id.is_(None)
        if organization_id is not None:
            condition = or_(condition, PermissionTemplate.organization_id == organization_id)
        result = await self.db.execute(
            select(PermissionTemplate).where(condition).order_by(PermissionTemplate.name)
        )
        return result.scalars().all()

    async def apply_template(
        self,
        user_id: str,
        template_id: str,
        organization_id: Optional[str] = None,
        team_id: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> PermissionAssignment:
        """
        Point the user's assignment for a scope at a template.

        Existing custom overrides are kept and merged on top of the new
        template.

        Raises:
            NotFoundError: unknown user, or a template that does not exist or
                belongs to another organization
        """
        user = await self.identity.require_user(user_id)
        template = await self.get_template(template_id)
        if template.organization_id is not None and template.organization_id != user.organization_id:
            raise NotFoundError(f"Template {template_id} not found")

        def mutate(assignment: PermissionAssignment) -> None:
            assignment.template_id = template_id
            assignment.source = AssignmentSource.TEMPLATE

        assignment = await self._update_assignment(user_id, organization_id, team_id, mutate)
        add_audit_log(
            self.db,
            user_id=actor_id,
            action="apply_template",
            resource_type="permission",
            resource_id=assignment.id,
            organization_id=organization_id,
            details={"user_id": user_id, "template_id": template_id, "team_id": team_id},
        )
        await self.db.commit()
        await self.db.refresh(assignment)
        log.info(f"Applied template {template_id} to user {user_id} (org={organization_id} team={team_id})")
        return assignment

    async def list_assignments(self, user_id: str) -> List[PermissionAssignment]:
        """Every assignment of a user, most recently updated first."""
        result = await self.db.execute(
            select(PermissionAssignment)
            .where(PermissionAssignment.user_id == user_id)
            .order_by(PermissionAssignment.updated_at.desc())
        )
        return list(result.scalars().all())
