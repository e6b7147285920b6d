"""
Interactive CLI for checking where the access layer sends each role.
Pick a role, then type paths to see the interceptor's decision.
"""

from src.api.middleware import decide
from src.models import Role, SessionResult, SessionState, UserProfile
from src.rbac import RoleGrant, role_exclusive_prefixes, route_by_role


def session_for(role_name: str) -> SessionResult:
    """A synthetic session for *role_name* ('guest' means signed out)."""
    if role_name == "guest":
        return SessionResult.unauthenticated()
    grant = RoleGrant.for_role(role_name)
    profile = UserProfile(id="cli", email="cli@localhost", full_name="CLI user",
                          role=grant.role, grant=grant)
    return SessionResult(state=SessionState.AUTHENTICATED, user_id="cli", profile=profile)


def describe(path: str, session: SessionResult) -> str:
    decision = decide(path, session)
    if decision.proceed:
        return f"ALLOW  {path}"
    return f"REDIRECT {path} -> {decision.redirect_to} ({decision.reason})"


def main():
    print("=== BloodLink route check ===\n")
    choices = [r.value for r in Role] + ["guest"]

    # ── Role ─────────────────────────────────────────────────────────
    try:
        role_name = input(f"Role ({', '.join(choices)}) or 'quit': ").strip().lower()
    except (EOFError, KeyboardInterrupt):
        print("\nExiting.")
        return

    if not role_name or role_name in {"quit", "exit"}:
        print("Goodbye.")
        return
    if role_name not in choices:
        print(f"\n[ERROR] Unknown role '{role_name}'.")
        return

    session = session_for(role_name)
    if role_name != "guest":
        print(f"\n[role] Landing route: {route_by_role(role_name)}")
        print(f"[role] Permissions: {sorted(k for k, v in session.profile.permissions.items() if v)}")
        own = role_exclusive_prefixes().get(Role(role_name), ())
        print(f"[role] Own areas: {', '.join(own)}")

    # ── REPL ─────────────────────────────────────────────────────────
    while True:
        try:
            path = input("\nPath to check (or 'quit'): ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nExiting.")
            break

        if not path:
            continue
        if path.lower() in {"quit", "exit"}:
            print("Goodbye.")
            break

        print(describe(path, session))


if __name__ == "__main__":
    main()
