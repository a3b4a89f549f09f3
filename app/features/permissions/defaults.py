"""
Role default table: the permission document each base role starts from.
"""
import copy
import hashlib
import json

from app.features.permissions.documents import PermissionDocument, build_document, empty_document
from app.features.users.models import UserRole


_MEMBER = {
    "tasks": ("view_own", "create", "edit_own"),
    "timesheet": ("view_own", "edit_own"),
    "leaves": ("view_own", "request"),
    "analytics": ("view_own",),
    "members": ("view",),
}

_LEAD = {
    "tasks": _MEMBER["tasks"] + ("view_team",),
    "timesheet": _MEMBER["timesheet"] + ("view_team",),
    "leaves": _MEMBER["leaves"] + ("view_team",),
    "resources": ("view", "book"),
    "analytics": _MEMBER["analytics"] + ("view_team",),
    "members": _MEMBER["members"],
}

_MANAGER = {
    "tasks": _LEAD["tasks"] + ("edit_team", "delete_own", "approve"),
    "timesheet": _LEAD["timesheet"] + ("approve_team",),
    "leaves": _LEAD["leaves"] + ("approve_team",),
    "resources": _LEAD["resources"],
    "analytics": _LEAD["analytics"],
    "members": _LEAD["members"] + ("add",),
}

_SENIOR_MANAGER = {
    **_MANAGER,
    "resources": _MANAGER["resources"] + ("allocate",),
    "analytics": _MANAGER["analytics"] + ("view_org",),
    "members": _MANAGER["members"] + ("edit",),
}


ROLE_DEFAULTS: dict[UserRole, PermissionDocument] = {
    UserRole.SUPER_ADMIN: empty_document(True),
    UserRole.ORG_ADMIN: empty_document(True),
    UserRole.SENIOR_MANAGER: build_document(_SENIOR_MANAGER),
    UserRole.MANAGER: build_document(_MANAGER),
    UserRole.LEAD: build_document(_LEAD),
    UserRole.MEMBER: build_document(_MEMBER),
}

# Changes whenever the table above changes; part of every cache fingerprint
ROLE_DEFAULTS_REVISION: str = hashlib.sha256(
    json.dumps({role.value: doc for role, doc in ROLE_DEFAULTS.items()}, sort_keys=True).encode()
).hexdigest()


def defaults_for(role: UserRole | str | None) -> PermissionDocument:
    """
    Default permission document for a base role.
    
    Unknown roles get the member document instead of an error so merges
    stay total. The returned document is a copy.
    """
    try:
        key = UserRole(role)
    except ValueError:
        key = UserRole.MEMBER
    return copy.deepcopy(ROLE_DEFAULTS[key])
