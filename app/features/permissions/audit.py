"""
Audit logging helper shared by the permission and hierarchy services.
"""
from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.models import AuditLog
from app.utils import get_logger


log = get_logger(__name__)


def add_audit_log(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Stage an audit log entry in the caller's transaction.
    
    Args:
        db: Database session
        user_id: User performing the action
        action: Action performed (e.g., "grant", "revoke", "assign_manager")
        resource_type: Type of resource (e.g., "permission", "template", "hierarchy")
        resource_id: ID of the resource
        organization_id: Organization context
        details: Additional details
    
    Returns:
        The pending AuditLog object; it is written when the caller commits
    """
    audit_log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        organization_id=organization_id,
        details=details,
    )
    db.add(audit_log)
    
    log.info(
        f"Audit: user={user_id} action={action} resource={resource_type}:{resource_id} org={organization_id}"
    )
    
    return audit_log
