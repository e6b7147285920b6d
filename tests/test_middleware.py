"""
Tests for the request interceptor – the pure decision table and the Flask hook.
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import urlparse

import pytest

from src.api.app import create_app
from src.api.middleware import decide, login_url
from src.models import SessionResult, SessionState
from src.rbac import RoleGrant
from src.session import build_profile

from conftest import FakeEngine, profile_row


def location(resp) -> str:
    parsed = urlparse(resp.headers["Location"])
    return parsed.path + (f"?{parsed.query}" if parsed.query else "")


def authed(role):
    profile = build_profile(profile_row(role=role))
    return SessionResult(state=SessionState.AUTHENTICATED, user_id="u-1", profile=profile)


def no_profile(error):
    return SessionResult(state=SessionState.NO_PROFILE, user_id="u-1", error=error)


ANON = SessionResult.unauthenticated()


# ── Tests: decide ────────────────────────────────────────────────────

@pytest.mark.parametrize("path", ["/", "/auth/login", "/auth/sign-up", "/health"])
def test_anonymous_public_paths_proceed(path):
    assert decide(path, ANON).proceed


@pytest.mark.parametrize("path", ["/dashboard", "/admin/users", "/community", "/donations"])
def test_anonymous_protected_paths_go_to_login(path):
    assert decide(path, ANON).redirect_to == "/auth/login"


@pytest.mark.parametrize("error", ["profile_not_found", "no_role", "lookup_failed"])
def test_no_profile_goes_to_login_with_tag(error):
    decision = decide("/dashboard", no_profile(error))
    assert decision.redirect_to == f"/auth/login?error={error}"
    assert decide("/", no_profile(error)).redirect_to == login_url(error)


def test_no_profile_on_login_page_does_not_loop():
    assert decide("/auth/login", no_profile("profile_not_found")).proceed
    assert decide("/auth/logout", no_profile("no_role")).proceed


@pytest.mark.parametrize("role,home", [
    ("admin", "/dashboard/admin"),
    ("blood_bank", "/dashboard/blood-bank"),
    ("donor", "/dashboard/donor"),
    ("recipient", "/dashboard/recipient"),
])
def test_signed_in_root_auth_and_dashboard_go_home(role, home):
    session = authed(role)
    assert decide("/", session).redirect_to == home
    assert decide("/auth/login", session).redirect_to == home
    assert decide("/dashboard", session).redirect_to == home
    assert decide("/dashboard/", session).redirect_to == home


def test_signed_in_logout_is_reachable():
    assert decide("/auth/logout", authed("donor")).proceed


def test_donor_denied_admin_page_goes_to_own_dashboard():
    decision = decide("/admin/users", authed("donor"))
    assert decision.redirect_to == "/dashboard/donor"
    assert decision.reason == "access_denied"


def test_allowed_paths_proceed():
    assert decide("/donations/history", authed("donor")).proceed
    assert decide("/community", authed("recipient")).proceed
    assert decide("/admin/audit-logs", authed("admin")).proceed


def test_unrestricted_paths_proceed_for_any_role():
    assert decide("/donations", authed("recipient")).proceed
    assert decide("/blood-requests", authed("donor")).proceed
    assert decide("/dashboard/overview", authed("donor")).proceed
    assert decide("/donations/schedule", authed("recipient")).reason == "access_denied"


def test_decision_is_idempotent():
    session = authed("recipient")
    first = decide("/blood-bank/inventory", session)
    second = decide("/blood-bank/inventory", session)
    assert first == second
    assert session.profile.grant == RoleGrant.from_stored("recipient", None)


def test_configuration_missing_sends_everything_to_root():
    assert decide("/", ANON, configured=False).proceed
    assert decide("/dashboard", ANON, configured=False).redirect_to == "/"


# ── Tests: Flask hook ────────────────────────────────────────────────

def test_donor_request_to_admin_redirects(client, login_as):
    headers = login_as(role="donor")
    resp = client.get("/admin/users", headers=headers)
    assert resp.status_code == 302
    assert location(resp) == "/dashboard/donor"


def test_same_request_twice_same_redirect(client, login_as):
    headers = login_as(role="recipient")
    first = client.get("/donations/schedule", headers=headers)
    second = client.get("/donations/schedule", headers=headers)
    assert location(first) == location(second) == "/dashboard/recipient"


def test_missing_profile_redirects_with_tag(client, service_engine):
    from src.api.auth import generate_token
    service_engine.on("FROM users WHERE id", rows=[])
    headers = {"Authorization": f"Bearer {generate_token('ghost', 'ghost@example.org')}"}
    resp = client.get("/dashboard", headers=headers)
    assert resp.status_code == 302
    assert location(resp) == "/auth/login?error=profile_not_found"

    page = client.get("/auth/login?error=profile_not_found", headers=headers)
    assert page.status_code == 200
    assert page.get_json()["error"] == "profile_not_found"


def test_backend_down_fails_closed(client, service_engine, capsys):
    from src.api.auth import generate_token
    service_engine.fail = ConnectionError("backend unreachable")
    headers = {"Authorization": f"Bearer {generate_token('u-1', 'u-1@example.org')}"}
    resp = client.get("/dashboard/donor", headers=headers)
    assert location(resp) == "/auth/login?error=lookup_failed"


def test_anonymous_dashboard_goes_to_login(client):
    resp = client.get("/dashboard")
    assert resp.status_code == 302
    assert location(resp) == "/auth/login"


def test_exchange_code_sets_session_and_restarts_at_root(client, engine, login_as):
    future = datetime.now(timezone.utc) + timedelta(minutes=5)
    engine.on("FROM auth_codes c", rows=[{
        "user_id": "u-1", "expires_at": future, "used_at": None, "email": "u-1@example.org",
    }])
    engine.on("UPDATE auth_codes", rowcount=1)
    login_as(role="donor")

    resp = client.get("/dashboard/donor?code=abc123")
    assert resp.status_code == 302
    assert location(resp) == "/"
    cookies = " ".join(resp.headers.getlist("Set-Cookie"))
    assert "bl_session=" in cookies

    token = cookies.split("bl_session=")[1].split(";")[0]
    follow = client.get("/", headers={"Authorization": f"Bearer {token}"})
    assert location(follow) == "/dashboard/donor"


def test_rejected_code_falls_through_to_normal_rules(client, engine):
    engine.on("FROM auth_codes c", rows=[])
    resp = client.get("/dashboard?code=used-up")
    assert location(resp) == "/auth/login"


def test_unconfigured_app_shows_landing_state():
    app = create_app(backend=None)
    client = app.test_client()
    landing = client.get("/")
    assert landing.status_code == 200
    assert landing.get_json()["status"] == "configuration_missing"

    resp = client.get("/dashboard")
    assert resp.status_code == 302
    assert location(resp) == "/"


def test_routing_error_redirects_with_routing_failed(client, login_as, monkeypatch):
    import src.api.middleware as middleware

    def boom(*args, **kwargs):
        raise RuntimeError("guard exploded")

    monkeypatch.setattr(middleware, "decide", boom)
    headers = login_as(role="donor")
    resp = client.get("/community", headers=headers)
    assert location(resp) == "/auth/login?error=routing_failed"


def test_health_skips_session_resolution(client, service_engine):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert service_engine.executed == []


def test_fake_engine_default_is_empty():
    assert FakeEngine().connect().execute("SELECT 1").first() is None
