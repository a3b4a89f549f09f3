"""
Permission management API routes.

Provides endpoints for effective permissions, custom overrides, templates
and the audit log.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.hierarchy.service import HierarchyService
from app.features.users.dependencies import get_current_user, get_current_admin_user
from app.features.users.models import User, UserRole
from app.features.permissions.models import AuditLog
from app.features.permissions.schemas import (
    ApplyTemplateRequest,
    AssignmentResponse,
    AuditLogListResponse,
    AuditLogResponse,
    CapabilityRequest,
    EffectivePermissionsResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    TemplateCreate,
    TemplateResponse,
    TemplateUpdate,
)
from app.features.permissions.dependencies import (
    can_act_on,
    get_hierarchy_service,
    get_permission_service,
    require_standing,
)
from app.features.permissions.service import PermissionService
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


async def _ensure_can_edit_member(
    permissions: PermissionService,
    hierarchy: HierarchyService,
    actor: User,
    user_id: str,
    organization_id: Optional[str],
    team_id: Optional[str],
):
    """Editing someone's permissions needs standing plus members.edit; only admins edit their own."""
    if actor.id == user_id and not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You cannot change your own permissions"
        )
    if not await can_act_on(permissions, hierarchy, actor, user_id, "members.edit", organization_id, team_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Permission denied: members.edit"
        )


# ============================================================================
# Effective Permissions
# ============================================================================

@router.get("/users/{user_id}/effective", response_model=EffectivePermissionsResponse)
async def get_effective_permissions(
    user_id: str,
    organization_id: Optional[str] = None,
    team_id: Optional[str] = None,
    permissions: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(require_standing)
):
    """Get the fully resolved permission document of a user in a scope."""
    document = await permissions.get_effective_permissions(user_id, organization_id, team_id)
    return EffectivePermissionsResponse(
        user_id=user_id,
        organization_id=organization_id,
        team_id=team_id,
        permissions=document,
    )


@router.post("/users/{user_id}/check", response_model=PermissionCheckResponse)
async def check_permission(
    user_id: str,
    check: PermissionCheckRequest,
    permissions: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(require_standing)
):
    """Check one capability; unknown capabilities are reported as denied."""
    granted = await permissions.check_permission(user_id, check.capability, check.organization_id, check.team_id)
    return PermissionCheckResponse(user_id=user_id, capability=check.capability, has_permission=granted)


@router.get("/users/{user_id}/assignments", response_model=List[AssignmentResponse])
async def list_assignments(
    user_id: str,
    permissions: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(require_standing)
):
    """List a user's permission assignments across scopes."""
    return await permissions.list_assignments(user_id)


# ============================================================================
# Custom Overrides
# ============================================================================

@router.post("/users/{user_id}/grant", response_model=AssignmentResponse)
async def grant_permission(
    user_id: str,
    request: CapabilityRequest,
    permissions: PermissionService = Depends(get_permission_service),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
    current_user: User = Depends(get_current_user)
):
    """Grant one capability to a user in a scope."""
    await _ensure_can_edit_member(
        permissions, hierarchy, current_user, user_id, request.organization_id, request.team_id
    )
    return await permissions.grant_permission(
        user_id,
        request.capability,
        organization_id=request.organization_id,
        team_id=request.team_id,
        actor_id=current_user.id,
    )


@router.post("/users/{user_id}/revoke", response_model=AssignmentResponse)
async def revoke_permission(
    user_id: str,
    request: CapabilityRequest,
    permissions: PermissionService = Depends(get_permission_service),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
    current_user: User = Depends(get_current_user)
):
    """Revoke one capability from a user in a scope; the denial overrides role and template."""
    await _ensure_can_edit_member(
        permissions, hierarchy, current_user, user_id, request.organization_id, request.team_id
    )
    return await permissions.revoke_permission(
        user_id,
        request.capability,
        organization_id=request.organization_id,
        team_id=request.team_id,
        actor_id=current_user.id,
    )


@router.post("/users/{user_id}/apply-template", response_model=AssignmentResponse)
async def apply_template(
    user_id: str,
    request: ApplyTemplateRequest,
    permissions: PermissionService = Depends(get_permission_service),
    hierarchy: HierarchyService = Depends(get_hierarchy_service),
    current_user: User = Depends(get_current_user)
):
    """Apply a template to a user in a scope, keeping existing custom overrides on top."""
    await _ensure_can_edit_member(
        permissions, hierarchy, current_user, user_id, request.organization_id, request.team_id
    )
    return await permissions.apply_template(
        user_id,
        request.template_id,
        organization_id=request.organization_id,
        team_id=request.team_id,
        actor_id=current_user.id,
    )


# ============================================================================
# Template Routes
# ============================================================================

@router.post("/templates", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    template: TemplateCreate,
    permissions: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(get_current_admin_user)
):
    """Create a permission template (admin only; global templates need a super admin)."""
    if current_user.role != UserRole.SUPER_ADMIN and template.organization_id != current_user.organization_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to create templates outside your organization"
        )
    return await permissions.create_template(
        name=template.name,
        permissions=template.permissions.to_document(),
        organization_id=template.organization_id,
        description=template.description,
        actor_id=current_user.id,
    )


@router.get("/templates", response_model=List[TemplateResponse])
async def list_templates(
    organization_id: Optional[str] = None,
    permissions: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(get_current_user)
):
    """List global templates plus those of an organization (your own unless super admin)."""
    if current_user.role != UserRole.SUPER_ADMIN:
        organization_id = current_user.organization_id
    return await permissions.list_templates(organization_id)


@router.patch("/templates/{template_id}", response_model=TemplateResponse)
async def update_template(
    template_id: str,
    template_update: TemplateUpdate,
    permissions: PermissionService = Depends(get_permission_service),
    current_user: User = Depends(get_current_admin_user)
):
    """Update a template; users built from it are recomputed on their next check."""
    template = await permissions.get_template(template_id)
    if current_user.role != UserRole.SUPER_ADMIN and template.organization_id != current_user.organization_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to update this template"
        )
    return await permissions.update_template(
        template_id,
        name=template_update.name,
        description=template_update.description,
        permissions=template_update.permissions.to_document() if template_update.permissions else None,
        actor_id=current_user.id,
    )


# ============================================================================
# Audit Logs
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    skip: int = 0,
    limit: int = 50,
    organization_id: Optional[str] = None,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_admin_user)  # Admin only
):
    """List audit logs with optional filtering."""
    if current_user.role != UserRole.SUPER_ADMIN:
        organization_id = current_user.organization_id

    stmt = select(AuditLog)

    if organization_id:
        stmt = stmt.where(AuditLog.organization_id == organization_id)
    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)

    # Get total count
    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    # Get paginated results
    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
