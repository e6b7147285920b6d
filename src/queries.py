"""
Read-only queries behind the page views and dashboards.
"""

from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from src.config import BLOOD_TYPES, DONATION_INTERVAL_DAYS, MAX_LIST_ROWS, MAX_NOTIFICATIONS
from src.database import row_to_dict


def fetch_all(engine, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    with engine.connect() as conn:
        rows = conn.execute(text(sql), params or {}).mappings().all()
    return [row_to_dict(r) for r in rows]


def fetch_count(engine, sql: str, params: Optional[Dict[str, Any]] = None) -> int:
    with engine.connect() as conn:
        value = conn.execute(text(sql), params or {}).scalar()
    return int(value or 0)


# ── Lists ────────────────────────────────────────────────────────────

def list_inventory(engine, blood_bank_id: Optional[str] = None, today: Optional[date] = None):
    """Available, unexpired inventory, optionally for one bank."""
    sql = """
        SELECT i.id, i.blood_bank_id, i.blood_type, i.units_available, i.units_reserved,
               i.expiry_date, i.testing_status, b.name AS blood_bank_name
        FROM blood_inventory i
        LEFT JOIN blood_banks b ON b.id = i.blood_bank_id
        WHERE i.is_available = TRUE AND i.expiry_date >= :today
    """
    params: Dict[str, Any] = {"today": (today or date.today()).isoformat(), "lim": MAX_LIST_ROWS}
    if blood_bank_id:
        sql += " AND i.blood_bank_id = :bb"
        params["bb"] = blood_bank_id
    sql += " ORDER BY i.expiry_date LIMIT :lim"
    return fetch_all(engine, sql, params)


def list_donations(engine, donor_id: Optional[str] = None, blood_bank_id: Optional[str] = None,
                   status: Optional[str] = None):
    sql = """
        SELECT d.id, d.donor_id, d.blood_bank_id, d.scheduled_date, d.scheduled_time,
               d.status, d.units_collected, u.full_name AS donor_name, u.blood_type,
               b.name AS blood_bank_name
        FROM donations d
        LEFT JOIN users u ON u.id = d.donor_id
        LEFT JOIN blood_banks b ON b.id = d.blood_bank_id
        WHERE 1 = 1
    """
    params: Dict[str, Any] = {"lim": MAX_LIST_ROWS}
    if donor_id:
        sql += " AND d.donor_id = :donor"
        params["donor"] = donor_id
    if blood_bank_id:
        sql += " AND d.blood_bank_id = :bb"
        params["bb"] = blood_bank_id
    if status:
        sql += " AND d.status = :status"
        params["status"] = status
    sql += " ORDER BY d.scheduled_date DESC LIMIT :lim"
    return fetch_all(engine, sql, params)


def list_blood_requests(engine, recipient_id: Optional[str] = None,
                        blood_bank_id: Optional[str] = None, status: Optional[str] = None):
    sql = """
        SELECT r.id, r.recipient_id, r.blood_bank_id, r.blood_type, r.units_needed,
               r.urgency_level, r.hospital_name, r.needed_by_date, r.status, r.created_at
        FROM blood_requests r
        WHERE 1 = 1
    """
    params: Dict[str, Any] = {"lim": MAX_LIST_ROWS}
    if recipient_id:
        sql += " AND r.recipient_id = :rid"
        params["rid"] = recipient_id
    if blood_bank_id:
        sql += " AND (r.blood_bank_id = :bb OR r.blood_bank_id IS NULL)"
        params["bb"] = blood_bank_id
    if status:
        sql += " AND r.status = :status"
        params["status"] = status
    sql += " ORDER BY r.created_at DESC LIMIT :lim"
    return fetch_all(engine, sql, params)


def list_users(engine, role: Optional[str] = None):
    sql = "SELECT id, email, full_name, role, permissions, created_at FROM users"
    params: Dict[str, Any] = {"lim": MAX_LIST_ROWS}
    if role:
        sql += " WHERE role = :role"
        params["role"] = role
    sql += " ORDER BY created_at DESC LIMIT :lim"
    return fetch_all(engine, sql, params)


def list_blood_banks(engine, verified_only: bool = False):
    sql = "SELECT id, name, city, phone, email, is_verified, admin_id FROM blood_banks"
    if verified_only:
        sql += " WHERE is_verified = TRUE"
    sql += " ORDER BY name LIMIT :lim"
    return fetch_all(engine, sql, {"lim": MAX_LIST_ROWS})


def list_audit_logs(engine, limit: int = MAX_LIST_ROWS):
    return fetch_all(engine, """
        SELECT id, user_id, action, table_name, record_id, old_values, new_values, created_at
        FROM audit_logs
        ORDER BY created_at DESC
        LIMIT :lim
    """, {"lim": min(int(limit), MAX_LIST_ROWS)})


def list_notifications(engine, user_id: str):
    return fetch_all(engine, """
        SELECT id, title, message, type, is_read, created_at, related_id, related_type
        FROM notifications
        WHERE user_id = :uid
        ORDER BY created_at DESC
        LIMIT :lim
    """, {"uid": user_id, "lim": MAX_NOTIFICATIONS})


def community_feed(engine):
    return {
        "feed": fetch_all(engine, "SELECT user_name, message, posted_at FROM community_feed "
                                  "ORDER BY posted_at DESC LIMIT :lim", {"lim": MAX_LIST_ROWS}),
        "events": fetch_all(engine, "SELECT title, description, event_date FROM events "
                                    "ORDER BY event_date DESC LIMIT :lim", {"lim": MAX_LIST_ROWS}),
        "leaderboard": fetch_all(engine, "SELECT name, donations FROM leaderboard "
                                         "ORDER BY donations DESC LIMIT :lim", {"lim": 10}),
    }


# ── Dashboard stats ──────────────────────────────────────────────────

def admin_stats(engine) -> Dict[str, int]:
    return {
        "total_users": fetch_count(engine, "SELECT COUNT(*) FROM users"),
        "total_blood_banks": fetch_count(engine, "SELECT COUNT(*) FROM blood_banks"),
        "pending_requests": fetch_count(
            engine, "SELECT COUNT(*) FROM blood_requests WHERE status = 'pending'"),
        "total_units": fetch_count(
            engine, "SELECT COALESCE(SUM(units_available), 0) FROM blood_inventory "
                    "WHERE is_available = TRUE"),
    }


def blood_bank_stats(engine, blood_bank_id: str) -> Dict[str, int]:
    params = {"bb": blood_bank_id}
    return {
        "total_units": fetch_count(
            engine, "SELECT COALESCE(SUM(units_available), 0) FROM blood_inventory "
                    "WHERE blood_bank_id = :bb AND is_available = TRUE", params),
        "scheduled_donations": fetch_count(
            engine, "SELECT COUNT(*) FROM donations "
                    "WHERE blood_bank_id = :bb AND status = 'scheduled'", params),
        "open_requests": fetch_count(
            engine, "SELECT COUNT(*) FROM blood_requests "
                    "WHERE (blood_bank_id = :bb OR blood_bank_id IS NULL) AND status = 'pending'",
            params),
        "staff": fetch_count(
            engine, "SELECT COUNT(*) FROM blood_bank_staff WHERE blood_bank_id = :bb", params),
    }


def donor_stats(engine, donor_id: str) -> Dict[str, int]:
    params = {"uid": donor_id}
    return {
        "completed_donations": fetch_count(
            engine, "SELECT COUNT(*) FROM donations WHERE donor_id = :uid AND status = 'completed'",
            params),
        "upcoming_donations": fetch_count(
            engine, "SELECT COUNT(*) FROM donations WHERE donor_id = :uid AND status = 'scheduled'",
            params),
    }


def recipient_stats(engine, recipient_id: str) -> Dict[str, int]:
    params = {"uid": recipient_id}
    return {
        "open_requests": fetch_count(
            engine, "SELECT COUNT(*) FROM blood_requests "
                    "WHERE recipient_id = :uid AND status IN ('pending', 'approved')", params),
        "fulfilled_requests": fetch_count(
            engine, "SELECT COUNT(*) FROM blood_requests "
                    "WHERE recipient_id = :uid AND status = 'fulfilled'", params),
    }


# ── Availability / eligibility ───────────────────────────────────────

def search_blood_availability(engine, blood_type: str, units, city: Optional[str] = None,
                              today: Optional[date] = None) -> List[Dict[str, Any]]:
    """
    Verified banks holding at least *units* usable units of *blood_type*.

    Banks in *city* (case-insensitive) sort first, then by units on hand.
    """
    if blood_type not in BLOOD_TYPES:
        raise ValueError(f"Unknown blood type '{blood_type}'")
    try:
        units = int(units)
    except (TypeError, ValueError):
        raise ValueError("units must be a whole number")
    if units <= 0:
        raise ValueError("units must be greater than zero")

    params: Dict[str, Any] = {
        "bt": blood_type,
        "units": units,
        "today": (today or date.today()).isoformat(),
        "lim": MAX_LIST_ROWS,
    }
    priority = "0"
    if city and city.strip():
        priority = "CASE WHEN LOWER(b.city) = LOWER(:city) THEN 0 ELSE 1 END"
        params["city"] = city.strip()

    rows = fetch_all(engine, f"""
        SELECT b.id AS blood_bank_id, b.name AS blood_bank_name, b.city,
               SUM(i.units_available) AS available_units,
               {priority} AS distance_priority
        FROM blood_inventory i
        JOIN blood_banks b ON b.id = i.blood_bank_id
        WHERE b.is_verified = TRUE
          AND i.blood_type = :bt
          AND i.is_available = TRUE
          AND i.expiry_date >= :today
        GROUP BY b.id, b.name, b.city
        HAVING SUM(i.units_available) >= :units
        ORDER BY distance_priority, available_units DESC
        LIMIT :lim
    """, params)
    for row in rows:
        row["available_units"] = int(row.get("available_units") or 0)
    return rows


def donation_eligibility(last_donation, today: Optional[date] = None) -> Dict[str, Any]:
    """When a donor may give again, counting DONATION_INTERVAL_DAYS from *last_donation*."""
    today = today or date.today()
    if not last_donation:
        return {"eligible": True, "days_until_eligible": 0, "next_eligible_date": None}
    last = date.fromisoformat(str(last_donation)[:10])
    next_date = last + timedelta(days=DONATION_INTERVAL_DAYS)
    remaining = max(0, (next_date - today).days)
    return {
        "eligible": remaining == 0,
        "days_until_eligible": remaining,
        "next_eligible_date": next_date.isoformat(),
    }
