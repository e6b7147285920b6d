"""
Flask application factory and server entry-point.
"""

import os
import sys
import traceback

from flask import Flask
from flask_cors import CORS

from src.config import TOKEN_EXPIRY_HOURS
from src.database import init_backend
from src.service_role import ServiceRoleLookup
from src.api.middleware import register_interceptor
from src.api.routes import register_routes

_UNSET = object()


def create_app(backend=_UNSET):
    """
    Build and return a fully configured Flask application.

    Pass *backend* to supply engines directly (tests do); pass None to run in
    configuration-missing mode.
    """
    app = Flask(__name__)
    CORS(app, supports_credentials=True)

    # ── Initialise shared resources ──────────────────────────────────
    if backend is _UNSET:
        try:
            print("[init] Initializing backend connections...")
            backend = init_backend()
        except Exception as e:
            print(f"[FATAL] Failed to initialize: {e}", file=sys.stderr)
            traceback.print_exc()
            sys.exit(1)

    app.config["BACKEND"] = backend
    app.config["SERVICE_LOOKUP"] = (
        ServiceRoleLookup(backend.service_engine) if backend is not None else None
    )

    # ── Interceptor + routes ─────────────────────────────────────────
    register_interceptor(app)
    register_routes(app, backend)

    if backend is not None:
        print("[init] ✓ BloodLink server ready")
    return app


def main():
    """Run the development server."""
    print("=" * 60)
    print("BloodLink – role-based blood donation portal")
    print("=" * 60)

    app = create_app()

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    debug = os.getenv("FLASK_ENV") == "development"

    print(f"\n[server] Starting Flask on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print(f"[server] Session expiry: {TOKEN_EXPIRY_HOURS} hours")
    print("\nEntry points:")
    print(f"  - GET  http://{host}:{port}/")
    print(f"  - POST http://{host}:{port}/auth/login")
    print(f"  - POST http://{host}:{port}/auth/sign-up")
    print(f"  - GET  http://{host}:{port}/dashboard")
    print(f"  - GET  http://{host}:{port}/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
