"""
Database engine initialisation for the two backend credential tiers.
"""

import json
import sys
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from src.config import DB_URI_ENV, SERVICE_DB_URI_ENV, get_env, is_backend_configured


@dataclass
class Backend:
    """The user-scoped engine plus the elevated one (service-role tier)."""
    engine: Engine
    service_engine: Engine


def _make_engine(uri: str) -> Engine:
    return create_engine(uri, echo=False, future=True, pool_pre_ping=True)


def check_connection(engine, label: str) -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        print(f"[WARN] could not connect to {label} backend: {e}", file=sys.stderr)
        return False
    print(f"[init] Connected to {label} backend.")
    return True


def init_backend() -> Optional[Backend]:
    """Create both engines, or return None when the backend is not configured."""
    if not is_backend_configured():
        print(f"[WARN] {DB_URI_ENV}/{SERVICE_DB_URI_ENV} not set – running in "
              "configuration-missing mode", file=sys.stderr)
        return None

    backend = Backend(
        engine=_make_engine(get_env(DB_URI_ENV)),
        service_engine=_make_engine(get_env(SERVICE_DB_URI_ENV)),
    )
    # An unreachable backend is not fatal: every lookup fails closed per request.
    check_connection(backend.engine, "user-scoped")
    check_connection(backend.service_engine, "service-role")
    return backend


def decode_json(value: Any) -> Dict[str, Any]:
    """JSON columns come back as dicts on Postgres and as strings elsewhere."""
    if value is None or value == "":
        return {}
    if isinstance(value, dict):
        return value
    return json.loads(value)


def row_to_dict(row) -> Dict[str, Any]:
    out = {}
    for key, value in dict(row).items():
        if hasattr(value, "isoformat"):
            value = value.isoformat()
        out[key] = value
    return out
