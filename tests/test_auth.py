"""
Unit tests for session tokens, one-time codes and the account actions.
"""

import json
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from werkzeug.security import generate_password_hash

from src.api.auth import (
    exchange_code_for_session,
    generate_token,
    issue_exchange_code,
    sign_in,
    sign_up,
    verify_token,
)
from src.config import SECRET_KEY
from src.rbac import get_default_permissions

from conftest import FakeEngine


# ── Tests: tokens ────────────────────────────────────────────────────

def test_generated_token_verifies():
    payload = verify_token(generate_token("u-1", "a@example.org"))
    assert payload["sub"] == "u-1"
    assert payload["email"] == "a@example.org"


def test_expired_token_is_rejected():
    past = datetime.now(timezone.utc) - timedelta(hours=1)
    token = jwt.encode({"sub": "u-1", "exp": past}, SECRET_KEY, algorithm="HS256")
    assert verify_token(token) is None


def test_foreign_signature_and_missing_subject_rejected():
    assert verify_token(jwt.encode({"sub": "u-1"}, "other-key", algorithm="HS256")) is None
    assert verify_token(jwt.encode({"email": "x"}, SECRET_KEY, algorithm="HS256")) is None
    assert verify_token("") is None


# ── Tests: exchange codes ────────────────────────────────────────────

def code_row(expires_in_minutes=5, used=False):
    now = datetime.now(timezone.utc)
    return {
        "user_id": "u-1",
        "email": "u-1@example.org",
        "expires_at": now + timedelta(minutes=expires_in_minutes),
        "used_at": now if used else None,
    }


def test_issue_exchange_code_stores_single_use_row():
    engine = FakeEngine()
    code = issue_exchange_code(engine, "u-1")
    (sql, params), = engine.statements("INSERT INTO auth_codes")
    assert params["code"] == code
    assert params["uid"] == "u-1"
    assert params["exp"] > datetime.now(timezone.utc)


def test_exchange_valid_code_returns_session():
    engine = FakeEngine().on("FROM auth_codes c", rows=[code_row()]).on("UPDATE auth_codes", rowcount=1)
    token = exchange_code_for_session(engine, "abc")
    assert verify_token(token)["sub"] == "u-1"
    assert engine.statements("UPDATE auth_codes")


@pytest.mark.parametrize("row", [
    code_row(used=True),
    code_row(expires_in_minutes=-1),
])
def test_exchange_rejects_used_or_expired_codes(row):
    engine = FakeEngine().on("FROM auth_codes c", rows=[row])
    assert exchange_code_for_session(engine, "abc") is None
    assert engine.statements("UPDATE auth_codes") == []


def test_exchange_rejects_code_consumed_concurrently():
    engine = FakeEngine().on("FROM auth_codes c", rows=[code_row()]).on("UPDATE auth_codes", rowcount=0)
    assert exchange_code_for_session(engine, "abc") is None


def test_exchange_accepts_naive_timestamps():
    row = code_row()
    row["expires_at"] = (datetime.now(timezone.utc) + timedelta(minutes=5)).replace(tzinfo=None)
    engine = FakeEngine().on("FROM auth_codes c", rows=[row]).on("UPDATE auth_codes", rowcount=1)
    assert exchange_code_for_session(engine, "abc") is not None


# ── Tests: sign in ───────────────────────────────────────────────────

def auth_engine(password="s3cret"):
    return FakeEngine().on("FROM auth_users WHERE email", rows=[{
        "id": "u-1", "email": "a@example.org", "password_hash": generate_password_hash(password),
    }])


def test_sign_in_ok_normalises_email():
    engine = auth_engine()
    token = sign_in(engine, "  A@Example.org ", "s3cret")
    assert verify_token(token)["sub"] == "u-1"
    assert engine.executed[0][1] == {"e": "a@example.org"}


def test_sign_in_wrong_password():
    with pytest.raises(ValueError, match="Invalid login credentials"):
        sign_in(auth_engine(), "a@example.org", "nope")


def test_sign_in_unknown_email():
    with pytest.raises(ValueError, match="Invalid login credentials"):
        sign_in(FakeEngine(), "who@example.org", "x")


def test_sign_in_requires_both_fields():
    with pytest.raises(ValueError, match="required"):
        sign_in(FakeEngine(), "", "x")


# ── Tests: sign up ───────────────────────────────────────────────────

def test_sign_up_seeds_default_permissions_and_issues_code():
    engine = FakeEngine()
    code = sign_up(engine, "New@Example.org", "pw", "New Donor", "donor", blood_type="A+")
    assert code

    (_, params), = engine.statements("INSERT INTO users")
    assert params["role"] == "donor"
    assert params["e"] == "new@example.org"
    assert json.loads(params["perms"]) == get_default_permissions("donor")

    (_, auth_params), = engine.statements("INSERT INTO auth_users")
    assert auth_params["h"] != "pw"
    assert engine.statements("INSERT INTO auth_codes")


@pytest.mark.parametrize("kwargs,message", [
    ({"email": "", "password": "pw", "full_name": "X", "role": "donor"}, "required fields"),
    ({"email": "a@b.c", "password": "pw", "full_name": "X", "role": "nurse"}, "Unsupported role"),
    ({"email": "a@b.c", "password": "pw", "full_name": "X", "role": "admin"}, "cannot be chosen"),
    ({"email": "a@b.c", "password": "pw", "full_name": "X", "role": "donor",
      "blood_type": "C+"}, "Unknown blood type"),
])
def test_sign_up_validation(kwargs, message):
    engine = FakeEngine()
    with pytest.raises(ValueError, match=message):
        sign_up(engine, **kwargs)
    assert engine.statements("INSERT") == []


def test_sign_up_duplicate_email():
    engine = FakeEngine().on("FROM auth_users WHERE email", rows=[{"id": "u-1"}])
    with pytest.raises(ValueError, match="already exists"):
        sign_up(engine, "a@example.org", "pw", "A", "recipient")
