"""Resolve a backend identity payload into a PermissionSet.

Xibo reports privilege in several shapes depending on version: a numeric
``userTypeId``, boolean admin flags, or a role name. Each shape is handled by
one named rule below. Every rule that recognizes the payload proposes a
level; the highest proposal wins and an unrecognized payload is a viewer.
"""

import logging
from typing import Any, Callable

from .permissions import Level, PermissionSet

logger = logging.getLogger(__name__)

LevelRule = Callable[[dict[str, Any]], Level | None]

# Xibo user type ids
_USER_TYPE_LEVELS = {1: Level.SUPER_ADMIN, 2: Level.ADMIN, 3: Level.EDITOR}

_ROLE_NAME_LEVELS = {
    "super_admin": Level.SUPER_ADMIN,
    "superadmin": Level.SUPER_ADMIN,
    "super admin": Level.SUPER_ADMIN,
    "admin": Level.ADMIN,
    "administrator": Level.ADMIN,
    "group admin": Level.ADMIN,
    "group_admin": Level.ADMIN,
    "groupadmin": Level.ADMIN,
    "editor": Level.EDITOR,
    "viewer": Level.VIEWER,
    "user": Level.VIEWER,
}


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def user_type_id(payload: dict[str, Any]) -> Level | None:
    value = payload.get("userTypeId")
    try:
        return _USER_TYPE_LEVELS.get(int(value))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def super_admin_flags(payload: dict[str, Any]) -> Level | None:
    if _truthy(payload.get("isSuperAdmin")) or _truthy(payload.get("isAdmin")):
        return Level.SUPER_ADMIN
    return None


def group_admin_flag(payload: dict[str, Any]) -> Level | None:
    return Level.ADMIN if _truthy(payload.get("isGroupAdmin")) else None


def edit_flag(payload: dict[str, Any]) -> Level | None:
    return Level.EDITOR if _truthy(payload.get("canEdit")) else None


def role_name(payload: dict[str, Any]) -> Level | None:
    for key in ("role", "userType", "userTypeName"):
        value = payload.get(key)
        if isinstance(value, str):
            level = _ROLE_NAME_LEVELS.get(value.strip().lower())
            if level is not None:
                return level
    return None


# Evaluated in order; the highest recognized level wins
LEVEL_RULES: tuple[LevelRule, ...] = (
    user_type_id,
    super_admin_flags,
    group_admin_flag,
    edit_flag,
    role_name,
)


def _collect_ids(items: Any, key: str) -> frozenset[int]:
    """Pull ``key`` (or ``id``) out of a list of objects."""
    ids: set[int] = set()
    if not isinstance(items, list):
        return frozenset()
    for item in items:
        if not isinstance(item, dict):
            continue
        value = item.get(key, item.get("id"))
        try:
            ids.add(int(value))
        except (TypeError, ValueError):
            continue
    return frozenset(ids)


def resolve_level(payload: Any, rules: tuple[LevelRule, ...] = LEVEL_RULES) -> Level:
    """Determine the privilege level of an identity payload."""
    if not isinstance(payload, dict):
        return Level.VIEWER

    proposals = [level for level in (rule(payload) for rule in rules) if level is not None]
    return max(proposals, default=Level.VIEWER)


def resolve(payload: Any, rules: tuple[LevelRule, ...] = LEVEL_RULES) -> PermissionSet:
    """Map an identity payload to a PermissionSet.

    Args:
        payload: Decoded JSON body of an identity endpoint
        rules: Level rules to apply

    Returns:
        Permission set with the flags of the resolved level and the
        identity's group and folder memberships
    """
    level = resolve_level(payload, rules)
    if not isinstance(payload, dict):
        logger.debug("Identity payload is not an object, assuming viewer")
        return PermissionSet.for_level(level)

    permissions = PermissionSet.for_level(
        level,
        group_ids=_collect_ids(payload.get("groups"), "groupId"),
        folder_access=_collect_ids(payload.get("folders"), "folderId"),
    )
    logger.debug(f"Resolved identity to level {level.label}")
    return permissions


def extract_user_id(payload: Any) -> int | None:
    """Backend user id from an identity or login payload, if present."""
    if not isinstance(payload, dict):
        return None
    user = payload.get("user")
    candidates = [payload.get("userId"), payload.get("user_id"), payload.get("id")]
    if isinstance(user, dict):
        candidates.append(user.get("id"))
    for value in candidates:
        try:
            return int(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            continue
    return None
