"""
Domain dataclasses used across the application.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class Role(str, Enum):
    """The four account roles. ``str`` mixin so values compare equal to raw strings."""
    ADMIN = "admin"
    BLOOD_BANK = "blood_bank"
    DONOR = "donor"
    RECIPIENT = "recipient"

    @classmethod
    def parse(cls, value) -> Optional["Role"]:
        """Return the matching Role, or None for blank/unknown values."""
        if value is None:
            return None
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


@dataclass
class UserProfile:
    """The stored profile row for an authenticated identity."""
    id: str
    email: str
    full_name: str
    role: Optional[Role]           # None when the stored row carries no role
    grant: Any                     # src.rbac.RoleGrant, None when role is None
    blood_bank_id: Optional[str] = None
    phone: Optional[str] = None
    blood_type: Optional[str] = None
    city: Optional[str] = None
    is_eligible: Optional[bool] = None
    last_donation_date: Optional[str] = None

    @property
    def permissions(self) -> Dict[str, bool]:
        return dict(self.grant.permissions) if self.grant is not None else {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role.value if self.role else None,
            "permissions": self.permissions,
            "blood_bank_id": self.blood_bank_id,
            "phone": self.phone,
            "blood_type": self.blood_type,
            "city": self.city,
            "is_eligible": self.is_eligible,
            "last_donation_date": self.last_donation_date,
        }


class SessionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    NO_PROFILE = "no_profile"
    AUTHENTICATED = "authenticated"


@dataclass
class SessionResult:
    """Outcome of resolving the credentials on one request."""
    state: SessionState
    user_id: Optional[str] = None
    email: Optional[str] = None
    profile: Optional[UserProfile] = None
    error: Optional[str] = None    # redirect tag for NO_PROFILE

    @classmethod
    def unauthenticated(cls) -> "SessionResult":
        return cls(state=SessionState.UNAUTHENTICATED)


@dataclass(frozen=True)
class Decision:
    """What the request interceptor wants done with a request."""
    redirect_to: Optional[str] = None
    reason: str = ""

    @property
    def proceed(self) -> bool:
        return self.redirect_to is None
