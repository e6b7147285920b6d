"""
Role-Based Access Control – role tables, permission grants and the route guard.
"""

import posixpath
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

from src.config import DASHBOARD_PATH, LOGIN_PATH, STRICT_ROUTE_GUARD
from src.models import Role


# ── Permission names ─────────────────────────────────────────────────
ALL_PERMISSIONS = (
    "can_manage_users",
    "can_manage_blood_banks",
    "can_view_audit_logs",
    "can_generate_reports",
    "can_approve_requests",
    "can_manage_inventory",
    "can_manage_donations",
    "can_manage_requests",
    "can_manage_staff",
    "can_view_analytics",
    "can_schedule_donations",
    "can_view_donation_history",
    "can_create_requests",
    "can_view_requests",
    "can_update_profile",
)

# ── Role → default permissions ───────────────────────────────────────
ROLE_PERMISSIONS: Dict[Role, Dict[str, bool]] = {
    Role.ADMIN: {
        "can_manage_users": True,
        "can_manage_blood_banks": True,
        "can_view_audit_logs": True,
        "can_generate_reports": True,
        "can_approve_requests": True,
    },
    Role.BLOOD_BANK: {
        "can_manage_inventory": True,
        "can_manage_donations": True,
        "can_manage_requests": True,
        "can_manage_staff": True,
        "can_view_analytics": True,
        "can_update_profile": True,
    },
    Role.DONOR: {
        "can_schedule_donations": True,
        "can_view_donation_history": True,
        "can_update_profile": True,
    },
    Role.RECIPIENT: {
        "can_create_requests": True,
        "can_view_requests": True,
        "can_update_profile": True,
    },
}

# ── Role → landing route ─────────────────────────────────────────────
ROLE_ROUTES: Dict[Role, str] = {
    Role.ADMIN: "/dashboard/admin",
    Role.BLOOD_BANK: "/dashboard/blood-bank",
    Role.DONOR: "/dashboard/donor",
    Role.RECIPIENT: "/dashboard/recipient",
}


def route_by_role(role) -> str:
    """Landing route for *role*; the login page for anything unrecognised."""
    parsed = Role.parse(role)
    if parsed is None:
        return LOGIN_PATH
    return ROLE_ROUTES[parsed]


def get_default_permissions(role) -> Dict[str, bool]:
    """Permission set seeded onto a new profile with this role."""
    parsed = Role.parse(role)
    if parsed is None:
        return {}
    return dict(ROLE_PERMISSIONS[parsed])


def has_permission(permissions: Optional[Mapping[str, bool]], name: str) -> bool:
    """True only when *name* is explicitly granted."""
    if not permissions:
        return False
    return permissions.get(name) is True


# ── Role + permissions as one value ──────────────────────────────────

@dataclass(frozen=True)
class RoleGrant:
    """
    A role together with the explicit overrides layered on its defaults.

    Build with ``RoleGrant.for_role`` or ``RoleGrant.from_stored``; the
    effective permission set is always derived, never stored separately.
    """
    role: Role
    overrides: Tuple[Tuple[str, bool], ...] = ()
    version: int = 1

    def __post_init__(self):
        if not isinstance(self.role, Role):
            raise ValueError(f"Unknown role: {self.role!r}")
        for name, _value in self.overrides:
            if name not in ALL_PERMISSIONS:
                raise ValueError(f"Unknown permission: {name!r}")

    @classmethod
    def for_role(cls, role, overrides: Optional[Mapping[str, bool]] = None,
                 version: int = 1) -> "RoleGrant":
        parsed = Role.parse(role)
        if parsed is None:
            raise ValueError(f"Unknown role: {role!r}")
        return cls(role=parsed, overrides=_normalise(parsed, overrides or {}), version=version)

    @classmethod
    def from_stored(cls, role, stored: Optional[Mapping[str, bool]],
                    version: int = 1) -> "RoleGrant":
        """Rebuild a grant from a stored permissions record, keeping only real differences."""
        parsed = Role.parse(role)
        if parsed is None:
            raise ValueError(f"Unknown role: {role!r}")
        known = {}
        for name, value in (stored or {}).items():
            if name not in ALL_PERMISSIONS:
                print(f"[WARN] Ignoring unknown stored permission '{name}'")
                continue
            if not isinstance(value, bool):
                print(f"[WARN] Ignoring non-boolean stored permission '{name}': {value!r}")
                continue
            known[name] = value
        return cls(role=parsed, overrides=_normalise(parsed, known), version=version)

    @property
    def permissions(self) -> Dict[str, bool]:
        merged = dict(ROLE_PERMISSIONS[self.role])
        merged.update(dict(self.overrides))
        return merged

    def with_overrides(self, changes: Mapping[str, bool]) -> "RoleGrant":
        """Return the next version of this grant with *changes* applied."""
        merged = dict(self.overrides)
        merged.update(changes)
        return RoleGrant(
            role=self.role,
            overrides=_normalise(self.role, merged),
            version=self.version + 1,
        )

    def diff(self) -> Dict[str, bool]:
        """Overrides relative to the role defaults (empty when none)."""
        return dict(self.overrides)


def _normalise(role: Role, overrides: Mapping[str, bool]) -> Tuple[Tuple[str, bool], ...]:
    defaults = ROLE_PERMISSIONS[role]
    kept = []
    for name, value in overrides.items():
        if name not in ALL_PERMISSIONS:
            raise ValueError(f"Unknown permission: {name!r}")
        if not isinstance(value, bool):
            raise ValueError(f"Permission {name!r} must be true or false, got {value!r}")
        if defaults.get(name, False) != value:
            kept.append((name, value))
    return tuple(sorted(kept))


# ── Route guard ──────────────────────────────────────────────────────
#
# Areas each role owns. Anyone else (except admin) is turned away from
# them; every other path falls through to the general group and then to
# the default, which is allow unless strict mode is on.

RESTRICTED_PREFIXES: Dict[Role, Tuple[str, ...]] = {
    Role.ADMIN: ("/admin", "/dashboard/admin"),
    Role.BLOOD_BANK: ("/blood-bank", "/dashboard/blood-bank"),
    Role.DONOR: ("/donations/schedule", "/donations/history", "/dashboard/donor"),
    Role.RECIPIENT: ("/blood-requests/new", "/blood-requests/history", "/dashboard/recipient"),
}

GENERAL_PREFIXES = (
    "/profile", "/settings", "/notifications", "/community", "/blood-search", DASHBOARD_PATH,
)
GUEST = "guest"


@dataclass(frozen=True)
class AccessRule:
    """Allowlist for one role variant, used in strict mode. Anything not listed is denied."""
    prefixes: Tuple[str, ...] = ()
    allow_all: bool = False


ACCESS_RULES: Dict[str, AccessRule] = {
    Role.ADMIN.value: AccessRule(allow_all=True),
    Role.BLOOD_BANK.value: AccessRule(
        prefixes=GENERAL_PREFIXES + RESTRICTED_PREFIXES[Role.BLOOD_BANK]),
    Role.DONOR.value: AccessRule(
        prefixes=GENERAL_PREFIXES + ("/donations",) + RESTRICTED_PREFIXES[Role.DONOR]),
    Role.RECIPIENT.value: AccessRule(
        prefixes=GENERAL_PREFIXES + ("/blood-requests",) + RESTRICTED_PREFIXES[Role.RECIPIENT]),
    GUEST: AccessRule(),
}


def normalise_path(path: str) -> str:
    """Collapse '..', duplicate and trailing slashes so prefix checks can't be dodged."""
    if not path:
        return "/"
    if not path.startswith("/"):
        path = "/" + path
    return posixpath.normpath(path).replace("//", "/")


def matches_prefix(path: str, prefix: str) -> bool:
    """Segment-aware prefix match: '/donations' covers '/donations/x' but not '/donationsx'."""
    prefix = prefix.rstrip("/") or "/"
    return path == prefix or path.startswith(prefix + "/")


def rule_for(role) -> AccessRule:
    parsed = Role.parse(role)
    return ACCESS_RULES[parsed.value if parsed else GUEST]


def can_access_route(role, path: str, strict: Optional[bool] = None) -> bool:
    """
    Decide whether *role* may view *path*.

    Order: another role's restricted area denies, the general pages allow,
    admin allows, and anything left is allowed. With *strict* (defaults to
    STRICT_ROUTE_GUARD) the last step consults the role's allowlist instead.
    """
    if strict is None:
        strict = STRICT_ROUTE_GUARD
    parsed = Role.parse(role)
    path = normalise_path(path)

    for owner, prefixes in RESTRICTED_PREFIXES.items():
        if parsed in (owner, Role.ADMIN):
            continue
        if any(matches_prefix(path, p) for p in prefixes):
            return False

    if strict:
        rule = rule_for(role)
        return rule.allow_all or any(matches_prefix(path, p) for p in rule.prefixes)

    # General pages, admin and unmatched paths are all allowed from here.
    return True


def role_exclusive_prefixes() -> Dict[Role, Tuple[str, ...]]:
    """Restricted prefixes per role, as used by the guard."""
    return dict(RESTRICTED_PREFIXES)
