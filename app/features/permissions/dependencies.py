"""
Permission checking utilities and dependencies.

Implements:
- Service factories bound to the request session
- The standing check: may the actor act on the target user at all?
- FastAPI dependencies for route protection
"""
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.hierarchy.service import HierarchyService
from app.features.permissions.service import PermissionService
from app.features.users.dependencies import get_current_user
from app.features.users.models import User, UserRole
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Services
# ============================================================================

def get_permission_service(db: AsyncSession = Depends(get_db)) -> PermissionService:
    return PermissionService(db)


def get_hierarchy_service(db: AsyncSession = Depends(get_db)) -> HierarchyService:
    return HierarchyService(db)


# ============================================================================
# Standing
# ============================================================================

async def has_standing(hierarchy: HierarchyService, actor: User, target: User) -> bool:
    """
    Whether actor may act on target at all, before any capability is tested.

    Standing comes from being the target, administering the target's
    organization (super admins administer every organization), or managing
    the target directly or transitively.
    """
    if actor.id == target.id:
        return True
    if actor.role == UserRole.SUPER_ADMIN:
        return True
    if actor.organization_id != target.organization_id:
        return False
    if actor.role == UserRole.ORG_ADMIN:
        return True
    return await hierarchy.can_manage(actor.id, target.id)


async def can_act_on(
    permissions: PermissionService,
    hierarchy: HierarchyService,
    actor: User,
    target_user_id: str,
    capability: str,
    organization_id: Optional[str] = None,
    team_id: Optional[str] = None,
) -> bool:
    """
    Check standing over the target, then the capability on the actor's own
    effective permissions. Unknown targets are denied.
    """
    target = await permissions.identity.get_user(target_user_id)
    if target is None:
        return False
    if not await has_standing(hierarchy, actor, target):
        log.debug(f"User {actor.id} has no standing over {target_user_id}")
        return False
    return await permissions.check_permission(actor.id, capability, organization_id, team_id)


# ============================================================================
# FastAPI Dependencies
# ============================================================================

def require_capability(capability: str):
    """
    FastAPI dependency to require a capability in the caller's organization.

    Usage:
        @router.post("/templates")
        async def create_template(
            user: User = Depends(require_capability("members.edit"))
        ):
            pass

    Raises:
        HTTPException: 403 if the capability is not granted
    """
    async def capability_dependency(
        current_user: User = Depends(get_current_user),
        permissions: PermissionService = Depends(get_permission_service),
    ) -> User:
        if not await permissions.check_permission(current_user.id, capability, current_user.organization_id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {capability}"
            )
        return current_user

    return capability_dependency


async def require_standing(
    request: Request,
    current_user: User = Depends(get_current_user),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
) -> User:
    """
    Require standing over the `user_id` path parameter.

    Raises:
        HTTPException: 404 for unknown users, 403 without standing
    """
    target_id = request.path_params["user_id"]
    target = await hierarchy.identity.get_user(target_id)
    if target is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if not await has_standing(hierarchy, current_user, target):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You cannot act on this user"
        )
    return current_user
