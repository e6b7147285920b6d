"""
Blood-management write actions, run on the user-scoped backend tier.

Every action validates its input and raises ValueError on bad data; the
route handlers turn that into a 400/404 response.
"""

import json
import uuid
from datetime import date
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import text

from src.config import (
    BLOOD_TYPES,
    DONATION_STATUSES,
    REQUEST_STATUSES,
    REQUEST_URGENCIES,
    STAFF_ROLES,
)
from src.database import decode_json, row_to_dict
from src.rbac import RoleGrant

# Columns a blood bank may set alongside a donation status change.
DONATION_UPDATE_FIELDS = {"units_collected", "hemoglobin_level", "post_donation_notes", "donation_date"}


def _parse_date(value, field_name: str) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (TypeError, ValueError):
        raise ValueError(f"{field_name} must be an ISO date (YYYY-MM-DD), got {value!r}")


def _positive_int(value, field_name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field_name} must be a whole number")
    if number <= 0:
        raise ValueError(f"{field_name} must be greater than zero")
    return number


# ── Audit log ────────────────────────────────────────────────────────

def log_action(conn, user_id: str, action: str, table_name: Optional[str] = None,
               record_id: Optional[str] = None, old_values: Any = None,
               new_values: Any = None) -> None:
    """Write an audit row on *conn*, inside the caller's transaction."""
    conn.execute(
        text("""
            INSERT INTO audit_logs (user_id, action, table_name, record_id, old_values, new_values)
            VALUES (:uid, :action, :tbl, :rid, :old, :new)
        """),
        {
            "uid": user_id,
            "action": action,
            "tbl": table_name,
            "rid": record_id,
            "old": json.dumps(old_values) if old_values is not None else None,
            "new": json.dumps(new_values) if new_values is not None else None,
        },
    )


# ── Donations / requests ─────────────────────────────────────────────

def update_donation_status(engine, donation_id: str, status: str,
                           data: Optional[Mapping[str, Any]] = None,
                           blood_bank_id: Optional[str] = None) -> None:
    """Set a donation's status; with *blood_bank_id* only that bank's donations match."""
    if status not in DONATION_STATUSES:
        raise ValueError(f"Unknown donation status '{status}'")

    values: Dict[str, Any] = {"status": status}
    for key, value in (data or {}).items():
        if key not in DONATION_UPDATE_FIELDS:
            raise ValueError(f"Field '{key}' cannot be updated")
        values[key] = value

    assignments = ", ".join(f"{col} = :{col}" for col in sorted(values))
    sql = f"UPDATE donations SET {assignments} WHERE id = :id"
    params = {**values, "id": donation_id}
    if blood_bank_id:
        sql += " AND blood_bank_id = :bb"
        params["bb"] = blood_bank_id

    with engine.begin() as conn:
        result = conn.execute(text(sql), params)
    if result.rowcount == 0:
        raise LookupError(f"Donation {donation_id} not found")


def update_blood_request_status(engine, request_id: str, status: str,
                                blood_bank_id: Optional[str] = None,
                                unclaimed_or_own: bool = True) -> None:
    """
    Set a request's status and assign it to *blood_bank_id*.

    With *unclaimed_or_own* the request must be unassigned or already held
    by that bank; admins pass False to reassign freely.
    """
    if status not in REQUEST_STATUSES:
        raise ValueError(f"Unknown request status '{status}'")

    if blood_bank_id:
        sql = "UPDATE blood_requests SET status = :status, blood_bank_id = :bb WHERE id = :id"
        if unclaimed_or_own:
            sql += " AND (blood_bank_id IS NULL OR blood_bank_id = :bb)"
        params = {"status": status, "bb": blood_bank_id, "id": request_id}
    else:
        sql = "UPDATE blood_requests SET status = :status WHERE id = :id"
        params = {"status": status, "id": request_id}

    with engine.begin() as conn:
        result = conn.execute(text(sql), params)
    if result.rowcount == 0:
        raise LookupError(f"Blood request {request_id} not found")


def schedule_donation(engine, donor_id: str, blood_bank_id: str, scheduled_date,
                      scheduled_time: str, notes: Optional[str] = None,
                      today: Optional[date] = None) -> str:
    if not blood_bank_id or not scheduled_time:
        raise ValueError("blood_bank_id and scheduled_time are required")
    when = _parse_date(scheduled_date, "scheduled_date")
    if when < (today or date.today()):
        raise ValueError("Donations cannot be scheduled in the past")

    donation_id = str(uuid.uuid4())
    with engine.begin() as conn:
        conn.execute(
            text("""
                INSERT INTO donations (id, donor_id, blood_bank_id, scheduled_date,
                                       scheduled_time, status, pre_donation_notes)
                VALUES (:id, :donor, :bb, :d, :t, 'scheduled', :notes)
            """),
            {"id": donation_id, "donor": donor_id, "bb": blood_bank_id,
             "d": when.isoformat(), "t": scheduled_time, "notes": notes},
        )
    return donation_id


def create_blood_request(engine, recipient_id: str, form: Mapping[str, Any],
                         today: Optional[date] = None) -> str:
    blood_type = form.get("blood_type")
    if blood_type not in BLOOD_TYPES:
        raise ValueError(f"Unknown blood type '{blood_type}'")
    urgency = form.get("urgency_level", "medium")
    if urgency not in REQUEST_URGENCIES:
        raise ValueError(f"Unknown urgency level '{urgency}'")
    units = _positive_int(form.get("units_needed"), "units_needed")
    needed_by = _parse_date(form.get("needed_by_date"), "needed_by_date")
    if needed_by < (today or date.today()):
        raise ValueError("needed_by_date cannot be in the past")
    if not form.get("hospital_name"):
        raise ValueError("hospital_name is required")

    request_id = str(uuid.uuid4())
    with engine.begin() as conn:
        conn.execute(
            text("""
                INSERT INTO blood_requests (id, recipient_id, blood_type, units_needed,
                    urgency_level, hospital_name, hospital_address, doctor_name,
                    doctor_contact, medical_reason, needed_by_date, notes, status)
                VALUES (:id, :rid, :bt, :units, :urgency, :hospital, :address, :doctor,
                    :contact, :reason, :needed_by, :notes, 'pending')
            """),
            {
                "id": request_id,
                "rid": recipient_id,
                "bt": blood_type,
                "units": units,
                "urgency": urgency,
                "hospital": form.get("hospital_name"),
                "address": form.get("hospital_address"),
                "doctor": form.get("doctor_name"),
                "contact": form.get("doctor_contact"),
                "reason": form.get("medical_reason"),
                "needed_by": needed_by.isoformat(),
                "notes": form.get("notes"),
            },
        )
    return request_id


# ── Inventory ────────────────────────────────────────────────────────

def add_blood_inventory(engine, blood_bank_id: str, blood_type: str, units_available,
                        expiry_date, collection_date, donor_id: Optional[str] = None,
                        batch_number: Optional[str] = None) -> str:
    if not blood_bank_id:
        raise ValueError("blood_bank_id is required")
    if blood_type not in BLOOD_TYPES:
        raise ValueError(f"Unknown blood type '{blood_type}'")
    units = _positive_int(units_available, "units_available")
    expiry = _parse_date(expiry_date, "expiry_date")
    collected = _parse_date(collection_date, "collection_date")
    if expiry <= collected:
        raise ValueError("expiry_date must be after collection_date")

    inventory_id = str(uuid.uuid4())
    with engine.begin() as conn:
        conn.execute(
            text("""
                INSERT INTO blood_inventory (id, blood_bank_id, blood_type, units_available,
                    units_reserved, expiry_date, collection_date, donor_id, batch_number,
                    testing_status, is_available)
                VALUES (:id, :bb, :bt, :units, 0, :exp, :col, :donor, :batch, 'pending', TRUE)
            """),
            {"id": inventory_id, "bb": blood_bank_id, "bt": blood_type, "units": units,
             "exp": expiry.isoformat(), "col": collected.isoformat(),
             "donor": donor_id, "batch": batch_number},
        )
    return inventory_id


# ── Users / permissions ──────────────────────────────────────────────

def update_user_permissions(engine, actor_id: str, user_id: str,
                            changes: Mapping[str, bool]) -> RoleGrant:
    """Apply permission overrides for *user_id* and record the diff in the audit log."""
    with engine.connect() as conn:
        row = conn.execute(
            text("SELECT id, role, permissions FROM users WHERE id = :uid LIMIT 1"),
            {"uid": user_id},
        ).mappings().first()
    if not row:
        raise LookupError(f"User {user_id} not found")

    current = RoleGrant.from_stored(row["role"], decode_json(row["permissions"]))
    updated = current.with_overrides(changes)

    with engine.begin() as conn:
        conn.execute(
            text("UPDATE users SET permissions = :perms WHERE id = :uid"),
            {"perms": json.dumps(updated.permissions), "uid": user_id},
        )
        log_action(conn, actor_id, "update_permissions", "users", user_id,
                   old_values=current.diff(), new_values=updated.diff())
    print(f"[audit] {actor_id} changed permissions of {user_id}: {updated.diff()}")
    return updated


# ── Staff ────────────────────────────────────────────────────────────

def add_blood_bank_staff(engine, blood_bank_id: str, user_email: str, role: str = "staff") -> str:
    if role not in STAFF_ROLES:
        raise ValueError(f"Unknown staff role '{role}'")
    email = (user_email or "").strip().lower()
    if not email:
        raise ValueError("user_email is required")

    with engine.begin() as conn:
        user = conn.execute(
            text("SELECT id FROM users WHERE email = :e LIMIT 1"),
            {"e": email},
        ).mappings().first()
        if not user:
            raise LookupError(f"No user with email {email}")

        conn.execute(
            text("""
                INSERT INTO blood_bank_staff (blood_bank_id, user_id, role)
                VALUES (:bb, :uid, :role)
            """),
            {"bb": blood_bank_id, "uid": user["id"], "role": role},
        )
    return str(user["id"])


def remove_blood_bank_staff(engine, blood_bank_id: str, user_id: str) -> bool:
    with engine.begin() as conn:
        result = conn.execute(
            text("DELETE FROM blood_bank_staff WHERE blood_bank_id = :bb AND user_id = :uid"),
            {"bb": blood_bank_id, "uid": user_id},
        )
    return result.rowcount > 0


def get_blood_bank_staff(engine, blood_bank_id: str) -> List[Dict[str, Any]]:
    with engine.connect() as conn:
        rows = conn.execute(
            text("""
                SELECT s.id, s.role, s.created_at, u.id AS user_id, u.full_name, u.email, u.phone
                FROM blood_bank_staff s
                JOIN users u ON u.id = s.user_id
                WHERE s.blood_bank_id = :bb
                ORDER BY s.created_at
            """),
            {"bb": blood_bank_id},
        ).mappings().all()
    return [row_to_dict(r) for r in rows]


# ── Notifications ────────────────────────────────────────────────────

def mark_notification_read(engine, user_id: str, notification_id: Optional[str] = None) -> int:
    """Mark one notification (or all unread ones when no id is given) as read."""
    if notification_id:
        sql = text("UPDATE notifications SET is_read = TRUE WHERE id = :nid AND user_id = :uid")
        params = {"nid": notification_id, "uid": user_id}
    else:
        sql = text("UPDATE notifications SET is_read = TRUE WHERE user_id = :uid AND is_read = FALSE")
        params = {"uid": user_id}
    with engine.begin() as conn:
        result = conn.execute(sql, params)
    return result.rowcount
