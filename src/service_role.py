"""
Elevated (service-role) backend lookups.

The service-role engine bypasses row-level security. It is only reachable
through ServiceRoleLookup, which exposes two read-only queries and logs each
call with an [audit] line.
"""

from typing import Any, Dict, Optional

from sqlalchemy import text

PROFILE_COLUMNS = (
    "id, email, full_name, phone, city, blood_type, last_donation_date, "
    "role, permissions, is_eligible"
)


class ServiceRoleLookup:
    """Narrow read-only gateway over the service-role engine."""

    def __init__(self, service_engine):
        self._engine = service_engine

    def fetch_profile_row(self, user_id: str, reason: str = "session") -> Optional[Dict[str, Any]]:
        """Return the users row for *user_id*, or None when there isn't one."""
        print(f"[audit] service-role profile lookup user={user_id} reason={reason}")
        sql = text(f"""
            SELECT {PROFILE_COLUMNS}
            FROM users
            WHERE id = :uid
            LIMIT 1
        """)
        with self._engine.connect() as conn:
            row = conn.execute(sql, {"uid": user_id}).mappings().first()
        return dict(row) if row else None

    def fetch_blood_bank_id(self, user_id: str) -> Optional[str]:
        """The bank this user administers, else the bank they are staff at."""
        print(f"[audit] service-role blood bank lookup user={user_id}")
        with self._engine.connect() as conn:
            row = conn.execute(
                text("SELECT id FROM blood_banks WHERE admin_id = :uid LIMIT 1"),
                {"uid": user_id},
            ).mappings().first()
            if row:
                return str(row["id"])

            row = conn.execute(
                text("SELECT blood_bank_id FROM blood_bank_staff WHERE user_id = :uid LIMIT 1"),
                {"uid": user_id},
            ).mappings().first()
            if row:
                return str(row["blood_bank_id"])
        return None
