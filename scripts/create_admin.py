#!/usr/bin/env python3
"""
Create (or reset) an admin account: auth identity plus a users row with the
admin role and its default permissions.

Usage: python scripts/create_admin.py admin@example.org "Full Name" [password]
"""

import json
import secrets
import sys
import uuid

from sqlalchemy import create_engine, text
from werkzeug.security import generate_password_hash

from src.config import DB_URI_ENV, get_env
from src.rbac import get_default_permissions


def create_admin(engine, email: str, full_name: str, password: str) -> str:
    email = email.strip().lower()
    perms = json.dumps(get_default_permissions("admin"))
    with engine.begin() as conn:
        row = conn.execute(
            text("SELECT id FROM auth_users WHERE email = :e"), {"e": email}
        ).mappings().first()

        if row:
            user_id = str(row["id"])
            print(f"ℹ️ {email} already exists. Resetting password and admin role...")
            conn.execute(
                text("UPDATE auth_users SET password_hash = :h WHERE id = :id"),
                {"h": generate_password_hash(password), "id": user_id},
            )
            conn.execute(
                text("UPDATE users SET role = 'admin', permissions = :p WHERE id = :id"),
                {"p": perms, "id": user_id},
            )
        else:
            user_id = str(uuid.uuid4())
            print(f"Creating admin: {email}")
            conn.execute(
                text("INSERT INTO auth_users (id, email, password_hash) VALUES (:id, :e, :h)"),
                {"id": user_id, "e": email, "h": generate_password_hash(password)},
            )
            conn.execute(
                text("""
                    INSERT INTO users (id, email, full_name, role, permissions)
                    VALUES (:id, :e, :n, 'admin', :p)
                """),
                {"id": user_id, "e": email, "n": full_name, "p": perms},
            )
    return user_id


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print(__doc__)
        sys.exit(2)

    admin_email, admin_name = sys.argv[1], sys.argv[2]
    admin_password = sys.argv[3] if len(sys.argv) > 3 else secrets.token_urlsafe(12)

    try:
        uid = create_admin(create_engine(get_env(DB_URI_ENV), future=True),
                           admin_email, admin_name, admin_password)
    except Exception as e:
        print(f"❌ Failed: {e}", file=sys.stderr)
        sys.exit(1)

    print("✅ Admin ready.")
    print(f"Credentials:\nUser: {admin_email} (id {uid})\nPass: {admin_password}")
