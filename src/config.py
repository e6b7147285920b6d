"""
Centralised configuration constants and environment helpers.
"""

import os
import sys
from urllib.parse import urlparse

from dotenv import load_dotenv

load_dotenv()

# ── Backend (two credential tiers) ───────────────────────────────────
# DB_URI is the user-scoped tier; SERVICE_DB_URI bypasses row-level
# security and is only handed to src.service_role.ServiceRoleLookup.
DB_URI_ENV = "DB_URI"
SERVICE_DB_URI_ENV = "SERVICE_DB_URI"

# ── Sessions / auth ──────────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
TOKEN_EXPIRY_HOURS = 24
SESSION_COOKIE_NAME = "bl_session"
EXCHANGE_CODE_TTL_MINUTES = 15

# ── Routes ───────────────────────────────────────────────────────────
LOGIN_PATH = "/auth/login"
ROOT_PATH = "/"
DASHBOARD_PATH = "/dashboard"

# Strict mode swaps the guard's allow-by-default for per-role allowlists.
STRICT_ROUTE_GUARD = os.getenv("STRICT_ROUTE_GUARD", "false").strip().lower() in (
    "1", "true", "yes",
)

# ── Domain values ────────────────────────────────────────────────────
BLOOD_TYPES = ("A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-")
DONATION_STATUSES = ("scheduled", "completed", "cancelled", "rejected")
REQUEST_STATUSES = ("pending", "approved", "fulfilled", "cancelled", "rejected")
REQUEST_URGENCIES = ("low", "medium", "high", "critical")
STAFF_ROLES = ("staff", "manager")

MAX_LIST_ROWS = 100
MAX_NOTIFICATIONS = 50

# Minimum days between two whole-blood donations.
DONATION_INTERVAL_DAYS = 56


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value


def is_backend_configured() -> bool:
    """True when both backend URIs are present and parse as URLs."""
    for name in (DB_URI_ENV, SERVICE_DB_URI_ENV):
        value = os.getenv(name, "").strip()
        if not value:
            return False
        parsed = urlparse(value)
        if not parsed.scheme:
            return False
    return True
