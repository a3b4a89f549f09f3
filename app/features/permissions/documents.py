"""
Permission documents: the closed capability set and the merge rules.

A document maps category -> action -> bool, e.g.
    {"tasks": {"view_own": True, "approve": False}, "resources": {...}, ...}

Only categories and actions listed in CAPABILITIES are ever read or written,
so a typo in a template or an API payload cannot create a new capability.
"""
import copy
import enum
from typing import Any, Dict, Mapping, Optional, Tuple


PermissionDocument = Dict[str, Dict[str, bool]]


class Category(str, enum.Enum):
    TASKS = "tasks"
    TIMESHEET = "timesheet"
    LEAVES = "leaves"
    RESOURCES = "resources"
    ANALYTICS = "analytics"
    MEMBERS = "members"


CAPABILITIES: Dict[str, Tuple[str, ...]] = {
    Category.TASKS.value: (
        "view_own", "view_team", "create", "edit_own", "edit_team", "delete_own", "approve",
    ),
    Category.TIMESHEET.value: ("view_own", "view_team", "edit_own", "approve_team"),
    Category.LEAVES.value: ("view_own", "view_team", "request", "approve_team"),
    Category.RESOURCES.value: ("view", "book", "allocate", "manage"),
    Category.ANALYTICS.value: ("view_own", "view_team", "view_org"),
    Category.MEMBERS.value: ("view", "add", "edit", "remove"),
}


def parse_capability(path: str) -> Optional[Tuple[str, str]]:
    """
    Split a dotted "category.action" path.
    
    Returns:
        (category, action), or None for malformed paths (empty segments,
        wrong depth) and for capabilities outside the closed set.
    """
    if not isinstance(path, str):
        return None
    parts = path.split(".")
    if len(parts) != 2 or not all(parts):
        return None
    category, action = parts
    if action not in CAPABILITIES.get(category, ()):
        return None
    return category, action


def empty_document(value: bool = False) -> PermissionDocument:
    """A complete document with every leaf set to `value`."""
    return {category: {action: value for action in actions} for category, actions in CAPABILITIES.items()}


def build_document(granted: Mapping[str, Tuple[str, ...]]) -> PermissionDocument:
    """A complete document where only the listed actions are True."""
    document = empty_document(False)
    for category, actions in granted.items():
        for action in actions:
            if action not in document[category]:
                raise KeyError(f"Unknown capability {category}.{action}")
            document[category][action] = True
    return document


def merge_documents(base: PermissionDocument, override: Optional[Mapping[str, Any]]) -> PermissionDocument:
    """
    Overlay `override` onto `base` category by category.
    
    Every boolean leaf present in the override replaces the base value;
    leaves and categories absent from the override keep the base value.
    Unknown categories/actions and non-boolean values are ignored, so the
    result always has exactly the categories of `base`.
    """
    merged = copy.deepcopy(base)
    if not override:
        return merged
    
    for category, actions in override.items():
        if category not in CAPABILITIES or not isinstance(actions, Mapping):
            continue
        target = merged.setdefault(category, {})
        for action, value in actions.items():
            if action in CAPABILITIES[category] and isinstance(value, bool):
                target[action] = value
    return merged


def set_leaf(document: Optional[Mapping[str, Any]], category: str, action: str, value: bool) -> Dict[str, Any]:
    """Return a copy of a (possibly sparse) override document with one leaf set."""
    updated: Dict[str, Any] = copy.deepcopy(dict(document or {}))
    section = updated.get(category)
    if not isinstance(section, dict):
        section = {}
        updated[category] = section
    section[action] = value
    return updated


def is_granted(document: Mapping[str, Any], path: str) -> bool:
    """Only a literal True leaf grants; anything else, including missing, denies."""
    parsed = parse_capability(path)
    if parsed is None:
        return False
    category, action = parsed
    section = document.get(category)
    if not isinstance(section, Mapping):
        return False
    return section.get(action) is True


def sparse_document(document: Optional[Mapping[str, Any]]) -> Dict[str, Dict[str, bool]]:
    """Drop unknown keys and non-boolean leaves, keeping the override sparse."""
    cleaned: Dict[str, Dict[str, bool]] = {}
    for category, actions in (document or {}).items():
        if category not in CAPABILITIES or not isinstance(actions, Mapping):
            continue
        leaves = {
            action: value
            for action, value in actions.items()
            if action in CAPABILITIES[category] and isinstance(value, bool)
        }
        if leaves:
            cleaned[category] = leaves
    return cleaned
