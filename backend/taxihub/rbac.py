"""
RBAC permission registry for TaxiHub

Defines the canonical role-to-permission mapping. Every profile carries one
role (or none, while pending approval); the permitted actions are looked up
from ``ROLE_PERMISSIONS`` and never stored on the profile itself.

``Action.ALL`` is a sentinel: a role whose set contains it satisfies every
action check.
"""
from __future__ import annotations

import enum
from typing import Any


class Role(str, enum.Enum):
    ADMIN = "Admin"
    SUPERVISOR = "Supervisor"
    MARSHAL = "Marshal"


class Action(str, enum.Enum):
    ALL = "all"
    VIEW = "view"
    APPROVE_USERS = "approve_users"
    ASSIGN_ROLES = "assign_roles"
    MANAGE_USERS = "manage_users"
    VIEW_REPORTS = "view_reports"
    SYSTEM_SETTINGS = "system_settings"
    ADD_RANKS = "add_ranks"
    ADD_TAXIS = "add_taxis"
    RECORD_LOADS = "record_loads"
    RECORD_PAYMENTS = "record_payments"
    MANAGE_MEETINGS = "manage_meetings"


# ---------------------------------------------------------------------------
# Role → Permissions mapping (source of truth)
# ---------------------------------------------------------------------------

ROLE_PERMISSIONS: dict[Role, tuple[Action, ...]] = {
    # ── Admin ────────────────────────────────────────────────────────────
    # Approves and manages users, owns the rank directory.  Global scope.
    Role.ADMIN: (
        Action.VIEW,
        Action.APPROVE_USERS,
        Action.ASSIGN_ROLES,
        Action.MANAGE_USERS,
        Action.VIEW_REPORTS,
        Action.SYSTEM_SETTINGS,
        Action.ADD_RANKS,
        Action.ALL,
    ),

    # ── Supervisor ───────────────────────────────────────────────────────
    # Read-only oversight of one rank.
    Role.SUPERVISOR: (
        Action.VIEW,
        Action.VIEW_REPORTS,
    ),

    # ── Marshal ──────────────────────────────────────────────────────────
    # Works the queue at one rank: taxis, loads, payments, meetings.
    Role.MARSHAL: (
        Action.VIEW,
        Action.ADD_TAXIS,
        Action.RECORD_LOADS,
        Action.RECORD_PAYMENTS,
        Action.MANAGE_MEETINGS,
    ),
}

VALID_ROLES: list[str] = [r.value for r in Role]

# ---------------------------------------------------------------------------
# Data scoping: global roles see every rank, the rest only their own
# ---------------------------------------------------------------------------

GLOBAL_SCOPE_ROLES: set[Role] = {Role.ADMIN}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def coerce_role(role: Role | str | None) -> Role | None:
    """Return the ``Role`` for a stored role value, or ``None`` when the value
    is empty or not a known role."""
    if role is None or isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        return None


def permissions_for(role: Role | str | None) -> frozenset[Action]:
    """Return the permission set for a role; unassigned roles get nothing."""
    resolved = coerce_role(role)
    if resolved is None:
        return frozenset()
    return frozenset(ROLE_PERMISSIONS[resolved])


def has_permission(profile: Any, action: Action | str) -> bool:
    """Action gate: may ``profile`` perform ``action``?

    ``profile`` is anything with a ``role`` attribute (normally a
    ``MarshalProfile``), or ``None`` for an unauthenticated caller.
    """
    if profile is None:
        return False
    granted = permissions_for(profile.role)
    if Action.ALL in granted:
        return True
    try:
        return Action(action) in granted
    except ValueError:
        return False


def is_global_scope(role: Role | str | None) -> bool:
    return coerce_role(role) in GLOBAL_SCOPE_ROLES


def permission_description(action: Action | str) -> str:
    """Return a human-readable description for an action tag."""
    _DESCRIPTIONS: dict[str, str] = {
        "all": "Every action",
        "view": "View the back office",
        "approve_users": "Approve or reject registrations",
        "assign_roles": "Assign roles to users",
        "manage_users": "Edit, suspend and delete users",
        "view_reports": "View reports and exports",
        "system_settings": "Change system settings",
        "add_ranks": "Create, edit and delete taxi ranks",
        "add_taxis": "Register and edit taxis",
        "record_loads": "Record taxi loads",
        "record_payments": "Record membership payments",
        "manage_meetings": "Schedule rank meetings",
    }
    key = action.value if isinstance(action, Action) else action
    return _DESCRIPTIONS.get(key, key)
