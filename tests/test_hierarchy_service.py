import pytest
from sqlalchemy import select

from app.core.exceptions import (
    CrossOrganizationError,
    CycleError,
    DuplicateEdgeError,
    NotFoundError,
    SelfManagementError,
    ValidationError,
)
from app.features.hierarchy.models import EdgeScope, ManagementEdge
from app.features.hierarchy.service import HierarchyService
from app.features.organizations.models import Team
from app.features.permissions.models import AuditLog
from app.features.users.models import UserRole


def _ids(users):
    return [user.id for user in users]


@pytest.mark.asyncio
async def test_self_management_is_rejected(db, make_user) -> None:
    alice = await make_user("Alice", UserRole.MANAGER)

    with pytest.raises(SelfManagementError):
        await HierarchyService(db).assign_manager(alice.id, alice.id)


@pytest.mark.asyncio
async def test_unknown_users_are_not_found(db, make_user) -> None:
    alice = await make_user("Alice", UserRole.MANAGER)

    with pytest.raises(NotFoundError):
        await HierarchyService(db).assign_manager(alice.id, "01UNKNOWNUSER0000000000000")


@pytest.mark.asyncio
async def test_cross_organization_edge_is_rejected(db, make_user, other_org) -> None:
    alice = await make_user("Alice", UserRole.MANAGER)
    gus = await make_user("Gus", organization=other_org)

    with pytest.raises(CrossOrganizationError):
        await HierarchyService(db).assign_manager(alice.id, gus.id)


@pytest.mark.asyncio
async def test_duplicate_edge_is_rejected(db, make_user, org, team) -> None:
    alice = await make_user("Alice", UserRole.MANAGER)
    bob = await make_user("Bob")
    service = HierarchyService(db)
    second_team = Team(organization_id=org.id, name="Data")
    db.add(second_team)
    await db.commit()

    await service.assign_manager(alice.id, bob.id, team_id=team.id)
    with pytest.raises(DuplicateEdgeError):
        await service.assign_manager(alice.id, bob.id, team_id=team.id)

    other = await service.assign_manager(alice.id, bob.id, team_id=second_team.id)
    assert other.team_id == second_team.id


@pytest.mark.asyncio
async def test_cycle_is_rejected(db, make_user) -> None:
    a = await make_user("A", UserRole.SENIOR_MANAGER)
    b = await make_user("B", UserRole.MANAGER)
    c = await make_user("C")
    service = HierarchyService(db)

    await service.assign_manager(a.id, b.id)
    await service.assign_manager(b.id, c.id)

    with pytest.raises(CycleError):
        await service.assign_manager(c.id, a.id)
    with pytest.raises(CycleError):
        await service.assign_manager(b.id, a.id)


@pytest.mark.asyncio
async def test_cycle_through_surviving_skip_level_edge_is_rejected(db, make_user) -> None:
    a = await make_user("A", UserRole.SENIOR_MANAGER)
    b = await make_user("B", UserRole.MANAGER)
    c = await make_user("C")
    service = HierarchyService(db)
    await service.assign_manager(a.id, b.id)
    await service.assign_manager(b.id, c.id)
    skip = await service.assign_manager(a.id, c.id)
    assert skip.level == 2

    await service.remove_manager(a.id, b.id)
    assert await service.can_manage(a.id, c.id) is True

    with pytest.raises(CycleError):
        await service.assign_manager(c.id, a.id)
    assert await service.can_manage(c.id, a.id) is False


@pytest.mark.asyncio
async def test_skip_level_edge_gets_chain_position(db, make_user) -> None:
    a = await make_user("A", UserRole.SENIOR_MANAGER)
    b = await make_user("B", UserRole.MANAGER)
    c = await make_user("C")
    service = HierarchyService(db)
    await service.assign_manager(a.id, b.id)
    await service.assign_manager(b.id, c.id)

    edge = await service.assign_manager(a.id, c.id)

    assert edge.level == 2
    assert _ids(await service.get_direct_reports(a.id)) == [b.id]
    assert _ids(await service.get_all_reports(a.id)) == [b.id, c.id]
    assert _ids(await service.get_management_chain(c.id)) == [b.id, a.id]


@pytest.mark.asyncio
async def test_all_reports_is_independent_of_insertion_order(db, make_user) -> None:
    a = await make_user("A", UserRole.SENIOR_MANAGER)
    b = await make_user("B", UserRole.MANAGER)
    c = await make_user("C", UserRole.LEAD)
    d = await make_user("D")
    service = HierarchyService(db)

    await service.assign_manager(c.id, d.id)
    await service.assign_manager(a.id, b.id)
    await service.assign_manager(b.id, c.id)

    assert set(_ids(await service.get_all_reports(a.id))) == {b.id, c.id, d.id}
    assert _ids(await service.get_all_reports(d.id)) == []


@pytest.mark.asyncio
async def test_all_reports_visits_shared_reports_once(db, make_user) -> None:
    a = await make_user("A", UserRole.SENIOR_MANAGER)
    b = await make_user("B", UserRole.MANAGER)
    c = await make_user("C", UserRole.MANAGER)
    d = await make_user("D")
    service = HierarchyService(db)

    await service.assign_manager(a.id, b.id)
    await service.assign_manager(a.id, c.id)
    await service.assign_manager(b.id, d.id)
    await service.assign_manager(c.id, d.id)

    reports = _ids(await service.get_all_reports(a.id))
    assert sorted(reports) == sorted([b.id, c.id, d.id])
    assert len(reports) == 3


@pytest.mark.asyncio
async def test_remove_manager_soft_deletes(db, make_user) -> None:
    alice = await make_user("Alice", UserRole.MANAGER)
    bob = await make_user("Bob")
    service = HierarchyService(db)
    first = await service.assign_manager(alice.id, bob.id)

    assert await service.remove_manager(alice.id, bob.id) == 1
    assert await service.remove_manager(alice.id, bob.id) == 0
    assert await service.get_direct_reports(alice.id) == []
    assert await service.can_manage(alice.id, bob.id) is False

    second = await service.assign_manager(alice.id, bob.id)
    assert second.id != first.id

    result = await db.execute(select(ManagementEdge).where(ManagementEdge.manager_id == alice.id))
    edges = {edge.id: edge for edge in result.scalars()}
    assert edges[first.id].is_active is False
    assert edges[first.id].ended_at is not None
    assert edges[second.id].is_active is True


@pytest.mark.asyncio
async def test_remove_manager_limited_to_team(db, make_user, team) -> None:
    alice = await make_user("Alice", UserRole.MANAGER)
    bob = await make_user("Bob")
    service = HierarchyService(db)
    await service.assign_manager(alice.id, bob.id, team_id=team.id)
    await service.assign_manager(alice.id, bob.id)

    assert await service.remove_manager(alice.id, bob.id, team_id=team.id) == 1
    assert _ids(await service.get_direct_reports(alice.id)) == [bob.id]
    assert await service.remove_manager(alice.id, bob.id) == 1
    assert await service.get_direct_reports(alice.id) == []


@pytest.mark.asyncio
async def test_direct_reports_skip_inactive_users(db, make_user, team) -> None:
    alice = await make_user("Alice", UserRole.MANAGER)
    bob = await make_user("Bob")
    carol = await make_user("Carol")
    dave = await make_user("Dave", is_active=False)
    service = HierarchyService(db)

    await service.assign_manager(alice.id, carol.id)
    await service.assign_manager(alice.id, bob.id, team_id=team.id)
    await service.assign_manager(alice.id, dave.id)

    assert _ids(await service.get_direct_reports(alice.id)) == [bob.id, carol.id]
    assert _ids(await service.get_direct_reports(alice.id, team_id=team.id)) == [bob.id]


@pytest.mark.asyncio
async def test_chain_prefers_earliest_edge(db, make_user) -> None:
    first = await make_user("First", UserRole.MANAGER)
    second = await make_user("Second", UserRole.MANAGER)
    boss = await make_user("Boss", UserRole.SENIOR_MANAGER)
    member = await make_user("Mo")
    service = HierarchyService(db)

    await service.assign_manager(boss.id, first.id)
    await service.assign_manager(first.id, member.id)
    await service.assign_manager(second.id, member.id)

    assert _ids(await service.get_management_chain(member.id)) == [first.id, boss.id]
    assert await service.get_management_chain(boss.id) == []


@pytest.mark.asyncio
async def test_can_manage(db, make_user) -> None:
    a = await make_user("A", UserRole.SENIOR_MANAGER)
    b = await make_user("B", UserRole.MANAGER)
    c = await make_user("C")
    service = HierarchyService(db)
    await service.assign_manager(a.id, b.id)
    await service.assign_manager(b.id, c.id)

    assert await service.can_manage(a.id, b.id) is True
    assert await service.can_manage(a.id, c.id) is True
    assert await service.can_manage(c.id, a.id) is False
    assert await service.can_manage(a.id, a.id) is False


@pytest.mark.asyncio
async def test_scope_and_team_must_fit(db, make_user, team, other_org) -> None:
    alice = await make_user("Alice", UserRole.MANAGER)
    bob = await make_user("Bob")
    service = HierarchyService(db)
    foreign_team = Team(organization_id=other_org.id, name="Elsewhere")
    db.add(foreign_team)
    await db.commit()

    with pytest.raises(ValidationError):
        await service.assign_manager(alice.id, bob.id, team_id=team.id, scope=EdgeScope.ORG_WIDE)
    with pytest.raises(ValidationError):
        await service.assign_manager(alice.id, bob.id, scope=EdgeScope.TEAM)
    with pytest.raises(NotFoundError):
        await service.assign_manager(alice.id, bob.id, team_id="01UNKNOWNTEAM0000000000000")
    with pytest.raises(CrossOrganizationError):
        await service.assign_manager(alice.id, bob.id, team_id=foreign_team.id)

    edge = await service.assign_manager(alice.id, bob.id, team_id=team.id)
    assert edge.scope == EdgeScope.TEAM
    edge = await service.assign_manager(alice.id, bob.id)
    assert edge.scope == EdgeScope.ORG_WIDE


@pytest.mark.asyncio
async def test_delegated_permissions_are_kept_sparse(db, make_user) -> None:
    alice = await make_user("Alice", UserRole.MANAGER)
    bob = await make_user("Bob")

    edge = await HierarchyService(db).assign_manager(
        alice.id, bob.id, delegated_permissions={"leaves": {"approve_team": True, "launch": True}}
    )

    assert edge.delegated_permissions == {"leaves": {"approve_team": True}}


@pytest.mark.asyncio
async def test_org_chart_lists_active_edges_by_level(db, make_user, other_org) -> None:
    a = await make_user("A", UserRole.SENIOR_MANAGER)
    b = await make_user("B", UserRole.MANAGER)
    c = await make_user("C")
    g1 = await make_user("G1", UserRole.MANAGER, organization=other_org)
    g2 = await make_user("G2", organization=other_org)
    service = HierarchyService(db)

    ab = await service.assign_manager(a.id, b.id)
    bc = await service.assign_manager(b.id, c.id)
    ac = await service.assign_manager(a.id, c.id)
    await service.assign_manager(g1.id, g2.id)
    chart = await service.get_org_chart(a.organization_id)
    assert [edge.id for edge in chart] == [ab.id, bc.id, ac.id]

    await service.remove_manager(b.id, c.id)
    chart = await service.get_org_chart(a.organization_id)
    assert [edge.id for edge in chart] == [ab.id, ac.id]


@pytest.mark.asyncio
async def test_hierarchy_changes_are_audited(db, make_user) -> None:
    admin = await make_user("Ada", UserRole.ORG_ADMIN)
    alice = await make_user("Alice", UserRole.MANAGER)
    bob = await make_user("Bob")
    service = HierarchyService(db)

    edge = await service.assign_manager(alice.id, bob.id, actor_id=admin.id)
    await service.remove_manager(alice.id, bob.id, actor_id=admin.id)

    result = await db.execute(select(AuditLog).where(AuditLog.resource_type == "hierarchy"))
    entries = {entry.action: entry for entry in result.scalars()}
    assert set(entries) == {"assign_manager", "remove_manager"}
    assert entries["assign_manager"].resource_id == edge.id
    assert entries["assign_manager"].user_id == admin.id
    assert entries["remove_manager"].details["edge_ids"] == [edge.id]
