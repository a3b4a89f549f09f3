"""
Pydantic schemas for permission management.

Permission documents are typed: each category is a model with one optional
boolean per action and unknown keys are rejected, so a misspelt capability
fails validation instead of silently granting nothing.
"""
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.permissions.documents import parse_capability
from app.features.permissions.models import AssignmentSource


# ============================================================================
# Permission Documents
# ============================================================================

class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class TasksPermissions(_Section):
    view_own: Optional[bool] = None
    view_team: Optional[bool] = None
    create: Optional[bool] = None
    edit_own: Optional[bool] = None
    edit_team: Optional[bool] = None
    delete_own: Optional[bool] = None
    approve: Optional[bool] = None


class TimesheetPermissions(_Section):
    view_own: Optional[bool] = None
    view_team: Optional[bool] = None
    edit_own: Optional[bool] = None
    approve_team: Optional[bool] = None


class LeavesPermissions(_Section):
    view_own: Optional[bool] = None
    view_team: Optional[bool] = None
    request: Optional[bool] = None
    approve_team: Optional[bool] = None


class ResourcesPermissions(_Section):
    view: Optional[bool] = None
    book: Optional[bool] = None
    allocate: Optional[bool] = None
    manage: Optional[bool] = None


class AnalyticsPermissions(_Section):
    view_own: Optional[bool] = None
    view_team: Optional[bool] = None
    view_org: Optional[bool] = None


class MembersPermissions(_Section):
    view: Optional[bool] = None
    add: Optional[bool] = None
    edit: Optional[bool] = None
    remove: Optional[bool] = None


class PermissionSet(_Section):
    """Sparse permission document; omitted leaves are left to lower layers."""
    tasks: Optional[TasksPermissions] = None
    timesheet: Optional[TimesheetPermissions] = None
    leaves: Optional[LeavesPermissions] = None
    resources: Optional[ResourcesPermissions] = None
    analytics: Optional[AnalyticsPermissions] = None
    members: Optional[MembersPermissions] = None

    def to_document(self) -> Dict[str, Dict[str, bool]]:
        return self.model_dump(exclude_none=True)


# ============================================================================
# Scope & Capability Schemas
# ============================================================================

class PermissionScope(BaseModel):
    """Exact (organization, team) scope; both optional."""
    organization_id: Optional[str] = Field(None, description="Organization ID")
    team_id: Optional[str] = Field(None, description="Team ID")


class CapabilityRequest(PermissionScope):
    """Schema for granting or revoking one capability."""
    capability: str = Field(..., description="Dotted capability, e.g. 'tasks.approve'")

    @field_validator("capability")
    @classmethod
    def known_capability(cls, v: str) -> str:
        """Only capabilities from the closed set can be stored."""
        if parse_capability(v) is None:
            raise ValueError(f"Unknown capability {v!r}")
        return v


class PermissionCheckRequest(PermissionScope):
    """Schema for checking a capability; unknown paths are simply denied."""
    capability: str = Field(..., description="Dotted capability, e.g. 'tasks.approve'")


class PermissionCheckResponse(BaseModel):
    user_id: str
    capability: str
    has_permission: bool


class EffectivePermissionsResponse(PermissionScope):
    user_id: str
    permissions: Dict[str, Dict[str, bool]]


# ============================================================================
# Template Schemas
# ============================================================================

class TemplateCreate(BaseModel):
    """Schema for creating a permission template."""
    name: str = Field(..., min_length=1, max_length=100, description="Template name")
    description: Optional[str] = Field(None, max_length=1000)
    organization_id: Optional[str] = Field(None, description="Organization ID (null for a global template)")
    permissions: PermissionSet


class TemplateUpdate(BaseModel):
    """Schema for updating a template; omitted fields are unchanged."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    permissions: Optional[PermissionSet] = None


class TemplateResponse(BaseModel):
    id: str
    organization_id: Optional[str]
    name: str
    description: Optional[str]
    permissions: Dict[str, Dict[str, bool]]
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ApplyTemplateRequest(PermissionScope):
    template_id: str = Field(..., description="Template ID")


# ============================================================================
# Assignment Schemas
# ============================================================================

class AssignmentResponse(BaseModel):
    id: str
    user_id: str
    organization_id: Optional[str]
    team_id: Optional[str]
    source: AssignmentSource
    template_id: Optional[str]
    custom_permissions: Optional[Dict[str, Dict[str, bool]]]
    effective_permissions: Optional[Dict[str, Dict[str, bool]]]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    user_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    organization_id: Optional[str]
    details: Optional[dict]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
