"""
Unit tests for session resolution and the service-role lookup.
"""

import json

from src.api.auth import generate_token
from src.models import Role, SessionState
from src.service_role import ServiceRoleLookup
from src.session import build_profile, resolve_session

from conftest import FakeEngine, profile_row


class FakeLookup:
    """Stand-in for ServiceRoleLookup with canned answers."""
    def __init__(self, row=None, blood_bank_id=None, fail=None):
        self._row = row
        self._bank = blood_bank_id
        self._fail = fail
        self.calls = []

    def fetch_profile_row(self, user_id, reason="session"):
        self.calls.append(("profile", user_id))
        if self._fail:
            raise self._fail
        return self._row

    def fetch_blood_bank_id(self, user_id):
        self.calls.append(("bank", user_id))
        return self._bank


def token_for(user_id="u-1"):
    return generate_token(user_id, f"{user_id}@example.org")


# ── Tests: build_profile ─────────────────────────────────────────────

def test_build_profile_parses_json_permissions():
    row = profile_row(role="recipient", permissions=json.dumps({"can_view_requests": False}))
    profile = build_profile(row)
    assert profile.role == Role.RECIPIENT
    assert profile.permissions["can_view_requests"] is False
    assert profile.permissions["can_create_requests"] is True
    assert profile.grant.diff() == {"can_view_requests": False}


def test_build_profile_without_role_has_no_grant():
    profile = build_profile(profile_row(role=None))
    assert profile.role is None
    assert profile.grant is None
    assert profile.permissions == {}


# ── Tests: resolve_session ───────────────────────────────────────────

def test_missing_or_bad_token_is_unauthenticated():
    lookup = FakeLookup(row=profile_row())
    assert resolve_session(None, lookup).state == SessionState.UNAUTHENTICATED
    assert resolve_session("garbage", lookup).state == SessionState.UNAUTHENTICATED
    assert lookup.calls == []


def test_authenticated_with_profile():
    result = resolve_session(token_for(), FakeLookup(row=profile_row(role="donor")))
    assert result.state == SessionState.AUTHENTICATED
    assert result.profile.role == Role.DONOR
    assert result.user_id == "u-1"


def test_missing_row_is_profile_not_found():
    result = resolve_session(token_for(), FakeLookup(row=None))
    assert result.state == SessionState.NO_PROFILE
    assert result.error == "profile_not_found"


def test_null_role_is_no_role():
    result = resolve_session(token_for(), FakeLookup(row=profile_row(role=None)))
    assert result.state == SessionState.NO_PROFILE
    assert result.error == "no_role"


def test_backend_failure_fails_closed(capsys):
    result = resolve_session(token_for(), FakeLookup(fail=ConnectionError("down")))
    assert result.state == SessionState.NO_PROFILE
    assert result.error == "lookup_failed"
    assert result.profile is None
    assert "Profile lookup failed" in capsys.readouterr().err


def test_missing_lookup_fails_closed():
    result = resolve_session(token_for(), None)
    assert result.state == SessionState.NO_PROFILE
    assert result.error == "lookup_failed"


def test_blood_bank_linkage_only_for_blood_bank_role():
    lookup = FakeLookup(row=profile_row(role="blood_bank"), blood_bank_id="bb-9")
    result = resolve_session(token_for(), lookup)
    assert result.profile.blood_bank_id == "bb-9"
    assert ("bank", "u-1") in lookup.calls

    lookup = FakeLookup(row=profile_row(role="donor"), blood_bank_id="bb-9")
    result = resolve_session(token_for(), lookup)
    assert result.profile.blood_bank_id is None
    assert ("bank", "u-1") not in lookup.calls


# ── Tests: ServiceRoleLookup ─────────────────────────────────────────

def test_service_lookup_profile_row_and_audit_line(capsys):
    engine = FakeEngine().on("FROM users WHERE id", rows=[profile_row(user_id="u-7")])
    row = ServiceRoleLookup(engine).fetch_profile_row("u-7")
    assert row["id"] == "u-7"
    assert engine.executed[0][1] == {"uid": "u-7"}
    assert "[audit] service-role profile lookup user=u-7" in capsys.readouterr().out


def test_service_lookup_prefers_bank_admin_then_staff():
    engine = FakeEngine().on("FROM blood_banks WHERE admin_id", rows=[{"id": "bb-1"}])
    assert ServiceRoleLookup(engine).fetch_blood_bank_id("u-1") == "bb-1"
    assert engine.statements("FROM blood_bank_staff") == []

    engine = FakeEngine().on("FROM blood_bank_staff", rows=[{"blood_bank_id": "bb-2"}])
    assert ServiceRoleLookup(engine).fetch_blood_bank_id("u-1") == "bb-2"

    assert ServiceRoleLookup(FakeEngine()).fetch_blood_bank_id("u-1") is None
