"""
Pydantic schemas for users as returned by hierarchy queries.
"""
from pydantic import BaseModel, ConfigDict

from app.features.users.models import UserRole


class UserSummary(BaseModel):
    id: str
    email: str
    name: str
    role: UserRole
    organization_id: str
    is_active: bool

    model_config = ConfigDict(from_attributes=True)
