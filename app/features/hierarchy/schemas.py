"""
Pydantic schemas for the management hierarchy.
"""
from datetime import datetime
from typing import Dict, Optional
from pydantic import BaseModel, Field, ConfigDict

from app.features.hierarchy.models import EdgeScope
from app.features.permissions.schemas import PermissionSet


class AssignManagerRequest(BaseModel):
    """Schema for assigning a manager to a user."""
    manager_id: str = Field(..., description="Manager user ID")
    manages_user_id: str = Field(..., description="Managed user ID")
    team_id: Optional[str] = Field(None, description="Team ID (required for team-scoped edges)")
    scope: Optional[EdgeScope] = Field(None, description="'team' or 'org_wide'; inferred from team_id when omitted")
    delegated_permissions: Optional[PermissionSet] = None


class RemoveManagerRequest(BaseModel):
    """Schema for ending a management relationship; without team_id every team is ended."""
    manager_id: str
    manages_user_id: str
    team_id: Optional[str] = None


class RemoveManagerResponse(BaseModel):
    removed: int


class ManagementEdgeResponse(BaseModel):
    id: str
    organization_id: str
    manager_id: str
    manages_user_id: str
    team_id: Optional[str]
    scope: EdgeScope
    level: int
    delegated_permissions: Dict[str, Dict[str, bool]]
    is_active: bool
    started_at: datetime
    ended_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


class CanManageResponse(BaseModel):
    manager_id: str
    user_id: str
    can_manage: bool
