"""
Request interceptor – resolves the session before every page handler and
redirects when the path does not belong to the caller.
"""

import sys
import traceback
from urllib.parse import urlencode

from flask import current_app, g, redirect, request

from src.api.auth import exchange_code_for_session, extract_token, set_session_cookie
from src.config import DASHBOARD_PATH, LOGIN_PATH, ROOT_PATH
from src.models import Decision, SessionResult, SessionState
from src.rbac import can_access_route, matches_prefix, normalise_path, route_by_role
from src.session import PROFILE_NOT_FOUND, ROUTING_FAILED, resolve_session

AUTH_PREFIX = "/auth"
# Reachable while signed in; everything else under /auth bounces to the dashboard.
AUTH_PASSTHROUGH = ("/auth/logout",)
INFRA_PREFIXES = ("/health", "/static")


def is_auth_path(path: str) -> bool:
    return matches_prefix(path, AUTH_PREFIX)


def is_infra_path(path: str) -> bool:
    return any(matches_prefix(path, p) for p in INFRA_PREFIXES)


def is_public_path(path: str) -> bool:
    return path == ROOT_PATH or is_auth_path(path) or is_infra_path(path)


def login_url(error: str = None) -> str:
    if not error:
        return LOGIN_PATH
    return f"{LOGIN_PATH}?{urlencode({'error': error})}"


def decide(path: str, session: SessionResult, configured: bool = True) -> Decision:
    """Pure routing decision for one request. Same inputs, same answer."""
    path = normalise_path(path)

    if not configured:
        if is_public_path(path):
            return Decision()
        return Decision(redirect_to=ROOT_PATH, reason="configuration_missing")

    if session.state == SessionState.UNAUTHENTICATED:
        if is_public_path(path):
            return Decision()
        return Decision(redirect_to=LOGIN_PATH, reason="unauthenticated")

    if session.state == SessionState.NO_PROFILE:
        if is_auth_path(path) or is_infra_path(path):
            return Decision()
        return Decision(redirect_to=login_url(session.error or PROFILE_NOT_FOUND),
                        reason=session.error or PROFILE_NOT_FOUND)

    role = session.profile.role
    home = route_by_role(role)

    if path in AUTH_PASSTHROUGH or is_infra_path(path):
        return Decision()
    if path == ROOT_PATH or is_auth_path(path):
        return Decision(redirect_to=home, reason="role_home")
    if path == DASHBOARD_PATH:
        return Decision(redirect_to=home, reason="role_dashboard")
    if not can_access_route(role, path):
        return Decision(redirect_to=home, reason="access_denied")
    return Decision()


def _consume_exchange_code(backend):
    """Swap a ?code= for a session and restart routing at the root path."""
    code = request.args.get("code")
    if not code or backend is None:
        return None
    try:
        token = exchange_code_for_session(backend.engine, code)
    except Exception as e:
        print(f"[ERROR] Code exchange failed: {e}", file=sys.stderr)
        return None
    if not token:
        print("[WARN] Rejected unusable one-time code")
        return None
    response = redirect(ROOT_PATH)
    set_session_cookie(response, token)
    return response


def register_interceptor(app):
    """Install the interceptor as a before_request hook on *app*."""

    @app.before_request
    def intercept():
        backend = current_app.config.get("BACKEND")
        lookup = current_app.config.get("SERVICE_LOOKUP")
        path = request.path

        exchanged = _consume_exchange_code(backend)
        if exchanged is not None:
            return exchanged

        try:
            if backend is None or is_infra_path(normalise_path(path)):
                g.session = SessionResult.unauthenticated()
            else:
                g.session = resolve_session(extract_token(request), lookup)
            decision = decide(path, g.session, configured=backend is not None)
        except Exception as e:
            print(f"[ERROR] Routing failed for {path}: {e}", file=sys.stderr)
            traceback.print_exc()
            g.session = SessionResult.unauthenticated()
            return redirect(login_url(ROUTING_FAILED))

        if not decision.proceed:
            return redirect(decision.redirect_to)
        return None
