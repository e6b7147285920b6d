"""
Session resolution – turning request credentials into a user profile.
"""

import sys
from typing import Any, Dict, Optional

from src.api.auth import verify_token
from src.database import decode_json
from src.models import Role, SessionResult, SessionState, UserProfile
from src.rbac import RoleGrant

PROFILE_NOT_FOUND = "profile_not_found"
NO_ROLE = "no_role"
LOOKUP_FAILED = "lookup_failed"
ROUTING_FAILED = "routing_failed"


class ProfileNotFoundError(LookupError):
    """An authenticated identity has no row in the users table."""


def build_profile(row: Dict[str, Any], blood_bank_id: Optional[str] = None) -> UserProfile:
    """Build a UserProfile from a users row; role/grant are None when the row has no role."""
    role = Role.parse(row.get("role"))
    grant = None
    if role is not None:
        grant = RoleGrant.from_stored(role, decode_json(row.get("permissions")))

    last_donation = row.get("last_donation_date")
    if hasattr(last_donation, "isoformat"):
        last_donation = last_donation.isoformat()

    return UserProfile(
        id=str(row["id"]),
        email=str(row.get("email") or ""),
        full_name=str(row.get("full_name") or ""),
        role=role,
        grant=grant,
        blood_bank_id=blood_bank_id,
        phone=row.get("phone"),
        blood_type=row.get("blood_type"),
        city=row.get("city"),
        is_eligible=row.get("is_eligible"),
        last_donation_date=last_donation,
    )


def load_user_profile(lookup, user_id: str) -> UserProfile:
    """Fetch the profile (and blood bank linkage) through the service-role lookup."""
    row = lookup.fetch_profile_row(user_id)
    if not row:
        raise ProfileNotFoundError(f"No profile row for user {user_id}")

    blood_bank_id = None
    if Role.parse(row.get("role")) == Role.BLOOD_BANK:
        blood_bank_id = lookup.fetch_blood_bank_id(user_id)

    return build_profile(row, blood_bank_id)


def resolve_session(token: Optional[str], lookup) -> SessionResult:
    """
    Resolve a session token into one of three states.

    Never raises: a backend failure during the profile lookup fails closed as
    NO_PROFILE/lookup_failed so the caller sends the user to the login page.
    """
    payload = verify_token(token) if token else None
    if not payload:
        return SessionResult.unauthenticated()

    user_id = str(payload["sub"])
    email = payload.get("email")

    if lookup is None:
        return SessionResult(state=SessionState.NO_PROFILE, user_id=user_id,
                             email=email, error=LOOKUP_FAILED)

    try:
        profile = load_user_profile(lookup, user_id)
    except ProfileNotFoundError:
        return SessionResult(state=SessionState.NO_PROFILE, user_id=user_id,
                             email=email, error=PROFILE_NOT_FOUND)
    except Exception as e:
        print(f"[ERROR] Profile lookup failed for {user_id}: {e}", file=sys.stderr)
        return SessionResult(state=SessionState.NO_PROFILE, user_id=user_id,
                             email=email, error=LOOKUP_FAILED)

    if profile.role is None:
        return SessionResult(state=SessionState.NO_PROFILE, user_id=user_id,
                             email=email, profile=profile, error=NO_ROLE)

    return SessionResult(state=SessionState.AUTHENTICATED, user_id=user_id,
                         email=email, profile=profile)
