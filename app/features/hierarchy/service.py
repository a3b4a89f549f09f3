"""
Management hierarchy graph and queries.

Edges point from manager to managed user. Direct reports follow level-1
edges, but every active edge (skip-level ones included) counts as
management, so the whole active graph is kept acyclic: an edge is refused
when the proposed manager is already (transitively) managed by the
proposed report.
Mutations lock the organization row so the check and the insert cannot
interleave with another assignment in the same organization.
"""
from typing import Any, List, Mapping, Optional, Sequence, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    CrossOrganizationError,
    CycleError,
    DuplicateEdgeError,
    NotFoundError,
    SelfManagementError,
    ValidationError,
)
from app.core.database.base import utcnow
from app.features.hierarchy.models import EdgeScope, ManagementEdge
from app.features.organizations.models import Organization, Team
from app.features.permissions.audit import add_audit_log
from app.features.permissions.documents import sparse_document
from app.features.users.models import User
from app.features.users.store import IdentityStore
from app.utils import get_logger


log = get_logger(__name__)


class HierarchyService:
    """
    Management graph operations bound to one database session.

    Usage:
        service = HierarchyService(db)
        await service.assign_manager(manager_id, report_id, team_id=team_id)
        reports = await service.get_all_reports(manager_id)
    """

    def __init__(self, db: AsyncSession, identity: Optional[IdentityStore] = None):
        self.db = db
        self.identity = identity or IdentityStore(db)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def assign_manager(
        self,
        manager_id: str,
        managed_user_id: str,
        team_id: Optional[str] = None,
        scope: Optional[EdgeScope] = None,
        delegated_permissions: Optional[Mapping[str, Any]] = None,
        actor_id: Optional[str] = None,
    ) -> ManagementEdge:
        """
        Make manager_id a manager of managed_user_id.

        scope defaults to "team" when a team is given, else "org_wide".

        Raises:
            SelfManagementError: manager and managed user are the same
            NotFoundError: unknown user or team
            CrossOrganizationError: users from different organizations
            ValidationError: scope and team do not fit together
            DuplicateEdgeError: the same active edge already exists
            CycleError: managed_user_id already (transitively) manages manager_id
        """
        if manager_id == managed_user_id:
            raise SelfManagementError("A user cannot manage themselves")

        manager = await self.identity.require_user(manager_id)
        managed = await self.identity.require_user(managed_user_id)
        if manager.organization_id != managed.organization_id:
            raise CrossOrganizationError(
                f"User {managed_user_id} is not in the organization of manager {manager_id}"
            )
        organization_id = manager.organization_id

        if scope is None:
            scope = EdgeScope.TEAM if team_id is not None else EdgeScope.ORG_WIDE
        scope = EdgeScope(scope)
        await self._check_team(organization_id, scope, team_id)

        await self._lock_organization(organization_id)

        existing = await self._active_edges(manager_id, managed_user_id, team_id=team_id, exact_team=True)
        if any(edge.scope == scope for edge in existing):
            raise DuplicateEdgeError(
                f"User {manager_id} already manages {managed_user_id} in this scope"
            )

        if manager_id in await self._reachable_from(managed_user_id):
            raise CycleError(
                f"User {managed_user_id} already manages {manager_id}; the assignment would create a cycle"
            )

        level = await self._level_for(manager_id, managed_user_id)
        edge = ManagementEdge(
            organization_id=organization_id,
            manager_id=manager_id,
            manages_user_id=managed_user_id,
            team_id=team_id,
            scope=scope,
            level=level,
            delegated_permissions=sparse_document(delegated_permissions),
            is_active=True,
        )
        self.db.add(edge)
        await self.db.flush()

        add_audit_log(
            self.db,
            user_id=actor_id,
            action="assign_manager",
            resource_type="hierarchy",
            resource_id=edge.id,
            organization_id=organization_id,
            details={
                "manager_id": manager_id,
                "manages_user_id": managed_user_id,
                "team_id": team_id,
                "scope": scope.value,
                "level": level,
            },
        )
        await self.db.commit()
        await self.db.refresh(edge)
        log.info(f"User {manager_id} now manages {managed_user_id} (team={team_id} scope={edge.scope.value} level={level})")
        return edge

    async def remove_manager(
        self,
        manager_id: str,
        managed_user_id: str,
        team_id: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> int:
        """
        Deactivate the matching active edges and return how many were ended.

        Without team_id every active edge between the pair is ended. Removing
        an edge that does not exist is a no-op.
        """
        edges = await self._active_edges(manager_id, managed_user_id, team_id=team_id)
        if not edges:
            log.debug(f"No active edge {manager_id} -> {managed_user_id} (team={team_id}) to remove")
            return 0

        ended_at = utcnow()
        for edge in edges:
            edge.is_active = False
            edge.ended_at = ended_at

        add_audit_log(
            self.db,
            user_id=actor_id,
            action="remove_manager",
            resource_type="hierarchy",
            resource_id=edges[0].id if len(edges) == 1 else None,
            organization_id=edges[0].organization_id,
            details={
                "manager_id": manager_id,
                "manages_user_id": managed_user_id,
                "team_id": team_id,
                "edge_ids": [edge.id for edge in edges],
            },
        )
        await self.db.commit()
        log.info(f"Ended {len(edges)} edge(s) {manager_id} -> {managed_user_id} (team={team_id})")
        return len(edges)

    async def _check_team(self, organization_id: str, scope: EdgeScope, team_id: Optional[str]):
        if scope == EdgeScope.ORG_WIDE:
            if team_id is not None:
                raise ValidationError("Organization-wide edges cannot be limited to a team")
            return
        if team_id is None:
            raise ValidationError("Team-scoped edges require a team")
        team = await self.db.get(Team, team_id)
        if team is None:
            raise NotFoundError(f"Team {team_id} not found")
        if team.organization_id != organization_id:
            raise CrossOrganizationError(f"Team {team_id} belongs to another organization")

    async def _lock_organization(self, organization_id: str):
        # Row lock on PostgreSQL; SQLite serialises writers on its own
        await self.db.execute(
            select(Organization.id).where(Organization.id == organization_id).with_for_update()
        )

    async def _active_edges(
        self,
        manager_id: str,
        managed_user_id: str,
        team_id: Optional[str] = None,
        exact_team: bool = False,
    ) -> Sequence[ManagementEdge]:
        stmt = select(ManagementEdge).where(
            ManagementEdge.manager_id == manager_id,
            ManagementEdge.manages_user_id == managed_user_id,
            ManagementEdge.is_active.is_(True),
        )
        if team_id is not None:
            stmt = stmt.where(ManagementEdge.team_id == team_id)
        elif exact_team:
            stmt = stmt.where(ManagementEdge.team_id.is_(None))
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def _reachable_from(self, user_id: str) -> Set[str]:
        """Ids reachable downward over all active edges, regardless of user status."""
        visited: Set[str] = set()
        frontier = {user_id}
        while frontier:
            result = await self.db.execute(
                select(ManagementEdge.manages_user_id).where(
                    ManagementEdge.manager_id.in_(frontier),
                    ManagementEdge.is_active.is_(True),
                )
            )
            frontier = set(result.scalars().all()) - visited - {user_id}
            visited |= frontier
        return visited

    async def _level_for(self, manager_id: str, managed_user_id: str) -> int:
        """1, or the 1-based position of the manager in the report's current chain."""
        chain = [user.id for user in await self.get_management_chain(managed_user_id)]
        if manager_id in chain:
            return chain.index(manager_id) + 1
        return 1

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_direct_reports(self, manager_id: str, team_id: Optional[str] = None) -> List[User]:
        """Active users with an active level-1 edge from manager_id."""
        edges = select(ManagementEdge.manages_user_id).where(
            ManagementEdge.manager_id == manager_id,
            ManagementEdge.is_active.is_(True),
            ManagementEdge.level == 1,
        )
        if team_id is not None:
            edges = edges.where(ManagementEdge.team_id == team_id)

        result = await self.db.execute(
            select(User)
            .where(User.id.in_(edges), User.is_active.is_(True))
            .order_by(User.name, User.id)
        )
        return list(result.scalars().all())

    async def get_all_reports(self, manager_id: str) -> List[User]:
        """
        Everyone below manager_id across all teams, nearest first.

        The visited set guarantees termination even if corrupt data ever
        contained a cycle.
        """
        visited: Set[str] = {manager_id}
        reports: List[User] = []
        frontier = [manager_id]
        while frontier:
            next_frontier = []
            for current in frontier:
                for user in await self.get_direct_reports(current):
                    if user.id in visited:
                        continue
                    visited.add(user.id)
                    reports.append(user)
                    next_frontier.append(user.id)
            frontier = next_frontier
        return reports

    async def get_management_chain(self, user_id: str) -> List[User]:
        """
        Managers above user_id, direct manager first, up to the top.

        With several managers at one step the lowest level, then the earliest
        started edge, wins.
        """
        chain: List[User] = []
        visited: Set[str] = {user_id}
        current = user_id
        while True:
            result = await self.db.execute(
                select(ManagementEdge)
                .where(
                    ManagementEdge.manages_user_id == current,
                    ManagementEdge.is_active.is_(True),
                )
                .order_by(ManagementEdge.level, ManagementEdge.started_at, ManagementEdge.id)
                .limit(1)
            )
            edge = result.scalars().first()
            if edge is None:
                break
            if edge.manager_id in visited:
                log.warning(f"Cycle in management chain of user {user_id} at {edge.manager_id}")
                break

            manager = await self.identity.get_user(edge.manager_id)
            if manager is None:
                break
            chain.append(manager)
            visited.add(manager.id)
            current = manager.id
        return chain

    async def can_manage(self, manager_id: str, user_id: str) -> bool:
        """True for a direct active edge or any transitive reporting line."""
        if manager_id == user_id:
            return False
        if await self._active_edges(manager_id, user_id):
            return True
        return any(user.id == user_id for user in await self.get_all_reports(manager_id))

    async def get_org_chart(self, organization_id: str) -> List[ManagementEdge]:
        """All active edges of an organization, by level then start time."""
        result = await self.db.execute(
            select(ManagementEdge)
            .where(
                ManagementEdge.organization_id == organization_id,
                ManagementEdge.is_active.is_(True),
            )
            .order_by(ManagementEdge.level, ManagementEdge.started_at, ManagementEdge.id)
        )
        return list(result.scalars().all())
