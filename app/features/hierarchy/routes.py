"""
Management hierarchy API routes.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status

from app.features.hierarchy.schemas import (
    AssignManagerRequest,
    CanManageResponse,
    ManagementEdgeResponse,
    RemoveManagerRequest,
    RemoveManagerResponse,
)
from app.features.hierarchy.service import HierarchyService
from app.features.permissions.dependencies import get_hierarchy_service, require_capability, require_standing
from app.features.users.dependencies import get_current_user, get_current_admin_user
from app.features.users.models import User, UserRole
from app.features.users.schemas import UserSummary


router = APIRouter()


async def _ensure_same_organization(hierarchy: HierarchyService, actor: User, user_id: str):
    """Non super admins only touch users of their own organization."""
    if actor.role == UserRole.SUPER_ADMIN:
        return
    user = await hierarchy.identity.require_user(user_id)
    if user.organization_id != actor.organization_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User belongs to another organization"
        )


@router.post("/edges", response_model=ManagementEdgeResponse, status_code=status.HTTP_201_CREATED)
async def assign_manager(
    request: AssignManagerRequest,
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
    current_user: User = Depends(get_current_admin_user)
):
    """Make one user the manager of another (admin only)."""
    await _ensure_same_organization(hierarchy, current_user, request.manager_id)
    return await hierarchy.assign_manager(
        request.manager_id,
        request.manages_user_id,
        team_id=request.team_id,
        scope=request.scope,
        delegated_permissions=request.delegated_permissions.to_document() if request.delegated_permissions else None,
        actor_id=current_user.id,
    )


@router.delete("/edges", response_model=RemoveManagerResponse)
async def remove_manager(
    request: RemoveManagerRequest,
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
    current_user: User = Depends(get_current_admin_user)
):
    """End a management relationship (admin only). Idempotent."""
    await _ensure_same_organization(hierarchy, current_user, request.manager_id)
    removed = await hierarchy.remove_manager(
        request.manager_id,
        request.manages_user_id,
        team_id=request.team_id,
        actor_id=current_user.id,
    )
    return RemoveManagerResponse(removed=removed)


@router.get("/users/{user_id}/direct-reports", response_model=List[UserSummary])
async def get_direct_reports(
    user_id: str,
    team_id: Optional[str] = None,
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
    current_user: User = Depends(require_standing)
):
    """Active users reporting directly to a manager."""
    return await hierarchy.get_direct_reports(user_id, team_id)


@router.get("/users/{user_id}/all-reports", response_model=List[UserSummary])
async def get_all_reports(
    user_id: str,
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
    current_user: User = Depends(require_standing)
):
    """Everyone below a manager, across all teams."""
    return await hierarchy.get_all_reports(user_id)


@router.get("/users/{user_id}/chain", response_model=List[UserSummary])
async def get_management_chain(
    user_id: str,
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
    current_user: User = Depends(get_current_user)
):
    """Managers above a user, direct manager first."""
    await _ensure_same_organization(hierarchy, current_user, user_id)
    return await hierarchy.get_management_chain(user_id)


@router.get("/can-manage", response_model=CanManageResponse)
async def can_manage(
    manager_id: str,
    user_id: str,
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
    current_user: User = Depends(get_current_user)
):
    """Whether manager_id manages user_id directly or transitively."""
    await _ensure_same_organization(hierarchy, current_user, user_id)
    return CanManageResponse(
        manager_id=manager_id,
        user_id=user_id,
        can_manage=await hierarchy.can_manage(manager_id, user_id),
    )


@router.get("/organizations/{organization_id}/chart", response_model=List[ManagementEdgeResponse])
async def get_org_chart(
    organization_id: str,
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
    current_user: User = Depends(require_capability("members.view"))
):
    """All active management edges of an organization."""
    if current_user.role != UserRole.SUPER_ADMIN and organization_id != current_user.organization_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this organization"
        )
    return await hierarchy.get_org_chart(organization_id)


@router.get("/organizations/{organization_id}/users", response_model=List[UserSummary])
async def get_users_by_role(
    organization_id: str,
    role: UserRole,
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
    current_user: User = Depends(require_capability("members.view"))
):
    """Users of an organization holding one base role, e.g. candidate managers."""
    if current_user.role != UserRole.SUPER_ADMIN and organization_id != current_user.organization_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this organization"
        )
    return await hierarchy.identity.get_users_by_role(organization_id, role)
