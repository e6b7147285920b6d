"""
JWT session tokens, one-time exchange codes and the account actions
(sign in / sign up) for the Flask app.
"""

import json
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from functools import wraps
from typing import Any, Dict, Optional

import jwt
from flask import g, jsonify, request
from sqlalchemy import text
from werkzeug.security import check_password_hash, generate_password_hash

from src.config import (
    BLOOD_TYPES,
    EXCHANGE_CODE_TTL_MINUTES,
    SECRET_KEY,
    SESSION_COOKIE_NAME,
    TOKEN_EXPIRY_HOURS,
)
from src.models import Role
from src.rbac import get_default_permissions, has_permission

SELF_SIGNUP_ROLES = {Role.DONOR, Role.RECIPIENT, Role.BLOOD_BANK}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


# ── Tokens ───────────────────────────────────────────────────────────

def generate_token(user_id: str, email: str) -> str:
    """Generate a session JWT for an authenticated identity."""
    now = _utcnow()
    payload = {
        "sub": str(user_id),
        "email": email,
        "iat": now,
        "exp": now + timedelta(hours=TOKEN_EXPIRY_HOURS),
    }
    return jwt.encode(payload, SECRET_KEY, algorithm="HS256")


def verify_token(token: str) -> Optional[Dict[str, Any]]:
    """Verify a JWT and return the decoded payload (or None)."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None
    if not payload.get("sub"):
        return None
    return payload


def extract_token(req) -> Optional[str]:
    """Session token from the Authorization header, falling back to the cookie."""
    auth_header = req.headers.get("Authorization", "")
    if auth_header:
        parts = auth_header.split(" ")
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1]
    return req.cookies.get(SESSION_COOKIE_NAME)


def set_session_cookie(response, token: str):
    response.set_cookie(
        SESSION_COOKIE_NAME, token,
        max_age=TOKEN_EXPIRY_HOURS * 3600,
        httponly=True,
        samesite="Lax",
        secure=request.is_secure,
    )
    return response


def clear_session_cookie(response):
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response


# ── One-time exchange codes ──────────────────────────────────────────

def issue_exchange_code(engine, user_id: str) -> str:
    """Store a single-use code that can later be swapped for a session."""
    code = secrets.token_urlsafe(32)
    expires_at = _utcnow() + timedelta(minutes=EXCHANGE_CODE_TTL_MINUTES)
    with engine.begin() as conn:
        conn.execute(
            text("""
                INSERT INTO auth_codes (code, user_id, expires_at, used_at)
                VALUES (:code, :uid, :exp, NULL)
            """),
            {"code": code, "uid": user_id, "exp": expires_at},
        )
    return code


def exchange_code_for_session(engine, code: str) -> Optional[str]:
    """Consume *code* and return a session token, or None if it is unusable."""
    if not code:
        return None
    now = _utcnow()
    with engine.begin() as conn:
        row = conn.execute(
            text("""
                SELECT c.user_id, c.expires_at, c.used_at, a.email
                FROM auth_codes c
                JOIN auth_users a ON a.id = c.user_id
                WHERE c.code = :code
                LIMIT 1
            """),
            {"code": code},
        ).mappings().first()

        if not row or row["used_at"] is not None:
            return None
        if _as_utc(row["expires_at"]) <= now:
            return None

        result = conn.execute(
            text("UPDATE auth_codes SET used_at = :now WHERE code = :code AND used_at IS NULL"),
            {"now": now, "code": code},
        )
        # Lost a race with another request consuming the same code.
        if result.rowcount != 1:
            return None

    print(f"[auth] Exchanged one-time code for user {row['user_id']}")
    return generate_token(str(row["user_id"]), row["email"])


# ── Account actions ──────────────────────────────────────────────────

def sign_in(engine, email: str, password: str) -> str:
    """Check credentials and return a session token."""
    email = (email or "").strip().lower()
    if not email or not password:
        raise ValueError("Email and password are required")

    with engine.connect() as conn:
        row = conn.execute(
            text("SELECT id, email, password_hash FROM auth_users WHERE email = :e LIMIT 1"),
            {"e": email},
        ).mappings().first()

    if not row or not check_password_hash(row["password_hash"], password):
        raise ValueError("Invalid login credentials")

    print(f"[auth] Signed in {email}")
    return generate_token(str(row["id"]), row["email"])


def sign_up(engine, email: str, password: str, full_name: str, role: str,
            phone: Optional[str] = None, blood_type: Optional[str] = None) -> str:
    """
    Create the auth identity and its profile row, seeding the profile with the
    role's default permissions. Returns the one-time confirmation code.
    """
    email = (email or "").strip().lower()
    full_name = (full_name or "").strip()
    if not email or not password or not full_name or not role:
        raise ValueError("All required fields must be filled")

    parsed = Role.parse(role)
    if parsed is None:
        raise ValueError(f"Unsupported role '{role}'")
    if parsed not in SELF_SIGNUP_ROLES:
        raise ValueError(f"Role '{parsed.value}' cannot be chosen at sign-up")
    if blood_type and blood_type not in BLOOD_TYPES:
        raise ValueError(f"Unknown blood type '{blood_type}'")

    user_id = str(uuid.uuid4())
    with engine.begin() as conn:
        existing = conn.execute(
            text("SELECT id FROM auth_users WHERE email = :e LIMIT 1"),
            {"e": email},
        ).mappings().first()
        if existing:
            raise ValueError("An account with this email already exists")

        conn.execute(
            text("INSERT INTO auth_users (id, email, password_hash) VALUES (:id, :e, :h)"),
            {"id": user_id, "e": email, "h": generate_password_hash(password)},
        )
        conn.execute(
            text("""
                INSERT INTO users (id, email, full_name, role, phone, blood_type, permissions)
                VALUES (:id, :e, :name, :role, :phone, :bt, :perms)
            """),
            {
                "id": user_id,
                "e": email,
                "name": full_name,
                "role": parsed.value,
                "phone": phone or None,
                "bt": blood_type or None,
                "perms": json.dumps(get_default_permissions(parsed)),
            },
        )

    code = issue_exchange_code(engine, user_id)
    print(f"[auth] Created {parsed.value} account {email}; confirmation link: /?code={code}")
    return code


# ── Decorators ───────────────────────────────────────────────────────

def require_permission(name: str):
    """Decorator that rejects the request unless the current user holds *name* (admins pass)."""
    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            session = getattr(g, "session", None)
            profile = session.profile if session is not None else None
            if profile is None:
                return jsonify({"error": "Authentication required"}), 401
            if profile.role != Role.ADMIN and not has_permission(profile.permissions, name):
                return jsonify({"error": f"Missing permission: {name}"}), 403
            return f(*args, **kwargs)
        return decorated
    return decorator