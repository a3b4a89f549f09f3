import pytest

from app.features.hierarchy.service import HierarchyService
from app.features.permissions.service import PermissionService
from app.features.users.models import UserRole


@pytest.mark.asyncio
async def test_health(client) -> None:
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_requests_without_token_are_rejected(client, make_user) -> None:
    member = await make_user("Mo")

    response = await client.get(f"/permissions/users/{member.id}/effective")

    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_invalid_token_is_unauthorized(client, make_user) -> None:
    member = await make_user("Mo")

    response = await client.get(
        f"/permissions/users/{member.id}/effective",
        headers={"Authorization": "Bearer not-a-token"},
    )

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_user_reads_own_effective_permissions(client, make_user, auth_headers, org) -> None:
    member = await make_user("Mo")

    response = await client.get(
        f"/permissions/users/{member.id}/effective",
        params={"organization_id": org.id},
        headers=auth_headers(member),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == member.id
    assert body["permissions"]["tasks"]["view_own"] is True
    assert body["permissions"]["tasks"]["approve"] is False


@pytest.mark.asyncio
async def test_admin_grants_capability(client, make_user, auth_headers, org) -> None:
    admin = await make_user("Ada", UserRole.ORG_ADMIN)
    member = await make_user("Mo")

    response = await client.post(
        f"/permissions/users/{member.id}/grant",
        json={"capability": "tasks.approve", "organization_id": org.id},
        headers=auth_headers(admin),
    )

    assert response.status_code == 200
    assert response.json()["source"] == "custom"
    assert response.json()["custom_permissions"] == {"tasks": {"approve": True}}

    check = await client.post(
        f"/permissions/users/{member.id}/check",
        json={"capability": "tasks.approve", "organization_id": org.id},
        headers=auth_headers(member),
    )
    assert check.json()["has_permission"] is True


@pytest.mark.asyncio
async def test_grant_rejects_unknown_capability(client, make_user, auth_headers, org) -> None:
    admin = await make_user("Ada", UserRole.ORG_ADMIN)
    member = await make_user("Mo")

    response = await client.post(
        f"/permissions/users/{member.id}/grant",
        json={"capability": "payroll.run", "organization_id": org.id},
        headers=auth_headers(admin),
    )

    assert response.status_code == 400
    assert "capability" in response.json()


@pytest.mark.asyncio
async def test_member_cannot_edit_a_peer(client, make_user, auth_headers, org) -> None:
    member = await make_user("Mo")
    peer = await make_user("Pat")

    response = await client.post(
        f"/permissions/users/{peer.id}/grant",
        json={"capability": "tasks.approve", "organization_id": org.id},
        headers=auth_headers(member),
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_member_cannot_edit_themselves(client, make_user, auth_headers, org) -> None:
    member = await make_user("Mo")

    response = await client.post(
        f"/permissions/users/{member.id}/grant",
        json={"capability": "tasks.approve", "organization_id": org.id},
        headers=auth_headers(member),
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_editing_reports_needs_members_edit(client, db, make_user, auth_headers, org) -> None:
    manager = await make_user("Maya", UserRole.MANAGER)
    senior = await make_user("Sam", UserRole.SENIOR_MANAGER)
    member = await make_user("Mo")
    hierarchy = HierarchyService(db)
    await hierarchy.assign_manager(senior.id, manager.id)
    await hierarchy.assign_manager(manager.id, member.id)

    denied = await client.post(
        f"/permissions/users/{member.id}/grant",
        json={"capability": "resources.book", "organization_id": org.id},
        headers=auth_headers(manager),
    )
    assert denied.status_code == 403

    allowed = await client.post(
        f"/permissions/users/{member.id}/grant",
        json={"capability": "resources.book", "organization_id": org.id},
        headers=auth_headers(senior),
    )
    assert allowed.status_code == 200


@pytest.mark.asyncio
async def test_manager_reads_reports_but_not_strangers(client, db, make_user, auth_headers) -> None:
    manager = await make_user("Maya", UserRole.MANAGER)
    member = await make_user("Mo")
    stranger = await make_user("Stan")
    await HierarchyService(db).assign_manager(manager.id, member.id)

    reports = await client.get(f"/hierarchy/users/{manager.id}/direct-reports", headers=auth_headers(manager))
    assert reports.status_code == 200
    assert [user["id"] for user in reports.json()] == [member.id]

    own_report = await client.get(f"/permissions/users/{member.id}/effective", headers=auth_headers(manager))
    assert own_report.status_code == 200

    other = await client.get(f"/permissions/users/{stranger.id}/effective", headers=auth_headers(manager))
    assert other.status_code == 403

    missing = await client.get("/permissions/users/01UNKNOWNUSER0000000000000/effective", headers=auth_headers(manager))
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_hierarchy_errors_map_to_status_codes(client, make_user, auth_headers) -> None:
    admin = await make_user("Ada", UserRole.ORG_ADMIN)
    a = await make_user("A", UserRole.MANAGER)
    b = await make_user("B")

    created = await client.post(
        "/hierarchy/edges",
        json={"manager_id": a.id, "manages_user_id": b.id},
        headers=auth_headers(admin),
    )
    assert created.status_code == 201
    assert created.json()["scope"] == "org_wide"
    assert created.json()["level"] == 1

    duplicate = await client.post(
        "/hierarchy/edges",
        json={"manager_id": a.id, "manages_user_id": b.id},
        headers=auth_headers(admin),
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"] == "DuplicateEdgeError"

    cycle = await client.post(
        "/hierarchy/edges",
        json={"manager_id": b.id, "manages_user_id": a.id},
        headers=auth_headers(admin),
    )
    assert cycle.status_code == 400
    assert cycle.json()["error"] == "CycleError"

    itself = await client.post(
        "/hierarchy/edges",
        json={"manager_id": a.id, "manages_user_id": a.id},
        headers=auth_headers(admin),
    )
    assert itself.status_code == 400
    assert itself.json()["error"] == "SelfManagementError"


@pytest.mark.asyncio
async def test_only_admins_change_edges(client, make_user, auth_headers) -> None:
    manager = await make_user("Maya", UserRole.MANAGER)
    member = await make_user("Mo")

    response = await client.post(
        "/hierarchy/edges",
        json={"manager_id": manager.id, "manages_user_id": member.id},
        headers=auth_headers(manager),
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_remove_edge_is_idempotent(client, db, make_user, auth_headers) -> None:
    admin = await make_user("Ada", UserRole.ORG_ADMIN)
    manager = await make_user("Maya", UserRole.MANAGER)
    member = await make_user("Mo")
    await HierarchyService(db).assign_manager(manager.id, member.id)

    body = {"manager_id": manager.id, "manages_user_id": member.id}
    first = await client.request("DELETE", "/hierarchy/edges", json=body, headers=auth_headers(admin))
    second = await client.request("DELETE", "/hierarchy/edges", json=body, headers=auth_headers(admin))

    assert first.json() == {"removed": 1}
    assert second.json() == {"removed": 0}

    check = await client.get(
        "/hierarchy/can-manage",
        params={"manager_id": manager.id, "user_id": member.id},
        headers=auth_headers(admin),
    )
    assert check.json()["can_manage"] is False


@pytest.mark.asyncio
async def test_check_unknown_capability_is_denied(client, make_user, auth_headers) -> None:
    admin = await make_user("Ada", UserRole.SUPER_ADMIN)

    response = await client.post(
        f"/permissions/users/{admin.id}/check",
        json={"capability": "payroll.run"},
        headers=auth_headers(admin),
    )

    assert response.status_code == 200
    assert response.json()["has_permission"] is False


@pytest.mark.asyncio
async def test_org_admin_manages_templates(client, make_user, auth_headers, org, other_org) -> None:
    admin = await make_user("Ada", UserRole.ORG_ADMIN)
    member = await make_user("Mo")

    foreign = await client.post(
        "/permissions/templates",
        json={"name": "Elsewhere", "organization_id": other_org.id, "permissions": {}},
        headers=auth_headers(admin),
    )
    assert foreign.status_code == 403

    created = await client.post(
        "/permissions/templates",
        json={
            "name": "Approver",
            "organization_id": org.id,
            "permissions": {"tasks": {"approve": True}, "timesheet": {"approve_team": True}},
        },
        headers=auth_headers(admin),
    )
    assert created.status_code == 201
    template = created.json()
    assert template["version"] == 1

    misspelt = await client.post(
        "/permissions/templates",
        json={"name": "Typo", "organization_id": org.id, "permissions": {"tasks": {"aprove": True}}},
        headers=auth_headers(admin),
    )
    assert misspelt.status_code == 400

    applied = await client.post(
        f"/permissions/users/{member.id}/apply-template",
        json={"template_id": template["id"], "organization_id": org.id},
        headers=auth_headers(admin),
    )
    assert applied.status_code == 200
    assert applied.json()["source"] == "template"
    assert applied.json()["effective_permissions"]["timesheet"]["approve_team"] is True

    listed = await client.get("/permissions/templates", headers=auth_headers(member))
    assert [item["name"] for item in listed.json()] == ["Approver"]

    audit = await client.get("/permissions/audit-logs", headers=auth_headers(admin))
    assert audit.status_code == 200
    assert {item["action"] for item in audit.json()["items"]} == {"create", "apply_template"}


@pytest.mark.asyncio
async def test_org_chart_needs_members_view(client, db, make_user, auth_headers, org, other_org) -> None:
    manager = await make_user("Maya", UserRole.MANAGER)
    member = await make_user("Mo")
    edge = await HierarchyService(db).assign_manager(manager.id, member.id)

    chart = await client.get(f"/hierarchy/organizations/{org.id}/chart", headers=auth_headers(member))
    assert chart.status_code == 200
    assert [item["id"] for item in chart.json()] == [edge.id]

    foreign = await client.get(f"/hierarchy/organizations/{other_org.id}/chart", headers=auth_headers(member))
    assert foreign.status_code == 403

    await PermissionService(db).revoke_permission(member.id, "members.view", organization_id=org.id)
    denied = await client.get(f"/hierarchy/organizations/{org.id}/chart", headers=auth_headers(member))
    assert denied.status_code == 403


@pytest.mark.asyncio
async def test_users_by_role(client, make_user, auth_headers, org) -> None:
    member = await make_user("Mo")
    zed = await make_user("Zed", UserRole.MANAGER)
    amy = await make_user("Amy", UserRole.MANAGER)
    await make_user("Lee", UserRole.LEAD)

    response = await client.get(
        f"/hierarchy/organizations/{org.id}/users",
        params={"role": "manager"},
        headers=auth_headers(member),
    )

    assert response.status_code == 200
    assert [user["id"] for user in response.json()] == [amy.id, zed.id]


@pytest.mark.asyncio
async def test_grant_in_foreign_organization_scope_is_rejected(client, make_user, auth_headers, other_org) -> None:
    admin = await make_user("Ada", UserRole.ORG_ADMIN)
    member = await make_user("Mo")

    response = await client.post(
        f"/permissions/users/{member.id}/grant",
        json={"capability": "tasks.approve", "organization_id": other_org.id},
        headers=auth_headers(admin),
    )

    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"
