"""
Flask route handlers – JSON page views for each role.
"""

import os
import sys
import traceback

from flask import g, jsonify, request
from sqlalchemy import text

from src import actions, queries
from src.api.auth import (
    clear_session_cookie,
    require_permission,
    set_session_cookie,
    sign_in,
    sign_up,
)
from src.config import LOGIN_PATH, ROOT_PATH
from src.models import Role

LOGIN_ERROR_MESSAGES = {
    "profile_not_found": "Your account has no profile. Please register again or contact support.",
    "no_role": "Your profile has no role assigned. Please contact an administrator.",
    "routing_failed": "Something went wrong while loading your dashboard. Please sign in again.",
    "lookup_failed": "We could not load your profile right now. Please try again.",
}


def _form():
    return request.get_json(silent=True) or request.form.to_dict()


def _profile():
    return g.session.profile


def _run_action(label, fn, success_status=200, **payload):
    """Run a write action and map its failures onto JSON error responses."""
    try:
        result = fn()
    except ValueError as e:
        return jsonify({"success": False, "error": str(e)}), 400
    except LookupError as e:
        return jsonify({"success": False, "error": str(e)}), 404
    except Exception as e:
        print(f"[ERROR] {label} failed: {e}", file=sys.stderr)
        traceback.print_exc()
        return jsonify({"success": False, "error": f"Failed to {label}"}), 500
    body = {"success": True, **payload}
    if result is not None:
        body["result"] = result
    return jsonify(body), success_status


def register_routes(app, backend):
    """Register all page routes on the Flask *app*."""
    engine = backend.engine if backend is not None else None

    def _is_admin():
        return _profile().role == Role.ADMIN

    def _bank_id():
        """The caller's blood bank; admins may pick one with ?blood_bank_id=."""
        profile = _profile()
        if _is_admin():
            return request.args.get("blood_bank_id") or _form().get("blood_bank_id")
        return profile.blood_bank_id

    def _bank_not_found():
        return jsonify({
            "error": "blood_bank_not_found",
            "message": "Your account is not linked to a blood bank yet.",
        }), 404

    # ── Landing / health ─────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        if backend is None:
            return jsonify({
                "status": "configuration_missing",
                "message": "Connect the backend (DB_URI, SERVICE_DB_URI) to get started.",
            }), 200
        return jsonify({
            "service": "BloodLink",
            "status": "running",
            "links": {"sign_in": LOGIN_PATH, "sign_up": "/auth/sign-up"},
        })

    @app.route("/health", methods=["GET"])
    def health():
        checks = {"configured": backend is not None, "database": False}
        try:
            if engine is not None:
                with engine.connect() as conn:
                    conn.execute(text("SELECT 1"))
                checks["database"] = True
        except Exception as e:
            print(f"[WARN] health check: {e}", file=sys.stderr)
        healthy = all(checks.values())
        return jsonify({
            "status": "healthy" if healthy else "unhealthy",
            "checks": checks,
        }), 200 if healthy else 503

    # ── Auth ─────────────────────────────────────────────────────────

    @app.route("/auth/login", methods=["GET", "POST"])
    def login():
        if request.method == "GET":
            error = request.args.get("error")
            return jsonify({
                "page": "login",
                "error": error,
                "message": LOGIN_ERROR_MESSAGES.get(error),
            })

        data = _form()
        try:
            token = sign_in(engine, data.get("email", ""), data.get("password", ""))
        except ValueError as e:
            return jsonify({"error": str(e)}), 401
        except Exception as e:
            print(f"[ERROR] Login error: {e}", file=sys.stderr)
            traceback.print_exc()
            return jsonify({"error": "Internal server error during login"}), 500

        response = jsonify({"success": True, "token": token, "redirect": ROOT_PATH})
        return set_session_cookie(response, token)

    @app.route("/auth/sign-up", methods=["GET", "POST"])
    def signup():
        if request.method == "GET":
            return jsonify({"page": "sign-up", "roles": ["donor", "recipient", "blood_bank"]})

        data = _form()
        try:
            code = sign_up(
                engine,
                email=data.get("email", ""),
                password=data.get("password", ""),
                full_name=data.get("full_name", ""),
                role=data.get("role", ""),
                phone=data.get("phone"),
                blood_type=data.get("blood_type"),
            )
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        except Exception as e:
            print(f"[ERROR] Sign-up error: {e}", file=sys.stderr)
            traceback.print_exc()
            return jsonify({"error": "Account created but profile setup failed. "
                                     "Please contact support."}), 500

        body = {"success": "Account created successfully! Please check your email "
                           "to verify your account."}
        if os.getenv("FLASK_ENV") == "development":
            body["confirmation_url"] = f"{ROOT_PATH}?code={code}"
        return jsonify(body), 201

    @app.route("/auth/logout", methods=["POST"])
    def logout():
        response = jsonify({"success": True, "redirect": LOGIN_PATH})
        return clear_session_cookie(response)

    # ── Dashboards ───────────────────────────────────────────────────

    @app.route("/dashboard/admin", methods=["GET"])
    def admin_dashboard():
        return jsonify({
            "user": _profile().to_dict(),
            "stats": queries.admin_stats(engine),
            "recent_activity": queries.list_audit_logs(engine, limit=10),
        })

    @app.route("/dashboard/blood-bank", methods=["GET"])
    def blood_bank_dashboard():
        bank_id = _bank_id()
        if not bank_id:
            return _bank_not_found()
        return jsonify({
            "user": _profile().to_dict(),
            "blood_bank_id": bank_id,
            "stats": queries.blood_bank_stats(engine, bank_id),
            "inventory": queries.list_inventory(engine, bank_id),
        })

    @app.route("/dashboard/donor", methods=["GET"])
    def donor_dashboard():
        profile = _profile()
        return jsonify({
            "user": profile.to_dict(),
            "stats": queries.donor_stats(engine, profile.id),
            "donations": queries.list_donations(engine, donor_id=profile.id),
        })

    @app.route("/dashboard/recipient", methods=["GET"])
    def recipient_dashboard():
        profile = _profile()
        return jsonify({
            "user": profile.to_dict(),
            "stats": queries.recipient_stats(engine, profile.id),
            "requests": queries.list_blood_requests(engine, recipient_id=profile.id),
        })

    # ── Admin ────────────────────────────────────────────────────────

    @app.route("/admin/users", methods=["GET"])
    @require_permission("can_manage_users")
    def admin_users():
        return jsonify({"users": queries.list_users(engine, role=request.args.get("role"))})

    @app.route("/admin/users/<user_id>/permissions", methods=["POST"])
    @require_permission("can_manage_users")
    def admin_update_permissions(user_id):
        changes = _form().get("permissions") or {}
        if not isinstance(changes, dict):
            return jsonify({"success": False, "error": "permissions must be an object"}), 400

        def _apply():
            grant = actions.update_user_permissions(engine, _profile().id, user_id, changes)
            return {"permissions": grant.permissions, "overrides": grant.diff(),
                    "version": grant.version}

        return _run_action("update permissions", _apply)

    @app.route("/admin/blood-banks", methods=["GET"])
    @require_permission("can_manage_blood_banks")
    def admin_blood_banks():
        return jsonify({"blood_banks": queries.list_blood_banks(engine)})

    @app.route("/admin/audit-logs", methods=["GET"])
    @require_permission("can_view_audit_logs")
    def admin_audit_logs():
        return jsonify({"audit_logs": queries.list_audit_logs(engine)})

    # ── Blood bank ───────────────────────────────────────────────────

    @app.route("/blood-bank", methods=["GET"])
    def blood_bank_home():
        bank_id = _bank_id()
        if not bank_id:
            return _bank_not_found()
        return jsonify({"blood_bank_id": bank_id,
                        "stats": queries.blood_bank_stats(engine, bank_id)})

    @app.route("/blood-bank/inventory", methods=["GET", "POST"])
    @require_permission("can_manage_inventory")
    def blood_bank_inventory():
        bank_id = _bank_id()
        if not bank_id:
            return _bank_not_found()
        if request.method == "GET":
            return jsonify({"inventory": queries.list_inventory(engine, bank_id)})

        data = _form()
        return _run_action(
            "add blood inventory",
            lambda: actions.add_blood_inventory(
                engine, bank_id,
                blood_type=data.get("blood_type"),
                units_available=data.get("units_available"),
                expiry_date=data.get("expiry_date"),
                collection_date=data.get("collection_date"),
                donor_id=data.get("donor_id"),
                batch_number=data.get("batch_number"),
            ),
            success_status=201,
        )

    @app.route("/blood-bank/staff", methods=["GET", "POST"])
    @require_permission("can_manage_staff")
    def blood_bank_staff():
        bank_id = _bank_id()
        if not bank_id:
            return _bank_not_found()
        if request.method == "GET":
            return jsonify({"staff": actions.get_blood_bank_staff(engine, bank_id)})

        data = _form()
        return _run_action(
            "add staff member",
            lambda: actions.add_blood_bank_staff(
                engine, bank_id, data.get("email", ""), data.get("role", "staff")),
            success_status=201,
        )

    @app.route("/blood-bank/staff/<user_id>/remove", methods=["POST"])
    @require_permission("can_manage_staff")
    def blood_bank_staff_remove(user_id):
        bank_id = _bank_id()
        if not bank_id:
            return _bank_not_found()
        removed = actions.remove_blood_bank_staff(engine, bank_id, user_id)
        if not removed:
            return jsonify({"success": False, "error": "Staff member not found"}), 404
        return jsonify({"success": True})

    @app.route("/blood-bank/donations", methods=["GET"])
    @require_permission("can_manage_donations")
    def blood_bank_donations():
        bank_id = _bank_id()
        if not bank_id:
            return _bank_not_found()
        return jsonify({"donations": queries.list_donations(
            engine, blood_bank_id=bank_id, status=request.args.get("status"))})

    @app.route("/blood-bank/donations/<donation_id>/status", methods=["POST"])
    @require_permission("can_manage_donations")
    def blood_bank_donation_status(donation_id):
        bank_id = _bank_id()
        if not bank_id and not _is_admin():
            return _bank_not_found()
        data = _form()
        return _run_action(
            "update donation status",
            lambda: actions.update_donation_status(
                engine, donation_id, data.get("status", ""), data.get("data"),
                blood_bank_id=bank_id),
        )

    @app.route("/blood-bank/requests", methods=["GET"])
    @require_permission("can_manage_requests")
    def blood_bank_requests():
        bank_id = _bank_id()
        if not bank_id:
            return _bank_not_found()
        return jsonify({"requests": queries.list_blood_requests(
            engine, blood_bank_id=bank_id, status=request.args.get("status"))})

    @app.route("/blood-bank/requests/<request_id>/status", methods=["POST"])
    @require_permission("can_manage_requests")
    def blood_bank_request_status(request_id):
        bank_id = _bank_id()
        if not bank_id and not _is_admin():
            return _bank_not_found()
        data = _form()
        return _run_action(
            "update blood request status",
            lambda: actions.update_blood_request_status(
                engine, request_id, data.get("status", ""), bank_id,
                unclaimed_or_own=not _is_admin()),
        )

    # ── Donor ────────────────────────────────────────────────────────

    @app.route("/donations", methods=["GET"])
    def donations_home():
        profile = _profile()
        last = profile.last_donation_date
        if not last:
            completed = queries.list_donations(engine, donor_id=profile.id, status="completed")
            last = completed[0]["scheduled_date"] if completed else None
        return jsonify({
            "upcoming": queries.list_donations(engine, donor_id=profile.id, status="scheduled"),
            "is_eligible": profile.is_eligible,
            "last_donation_date": last,
            "eligibility": queries.donation_eligibility(last),
        })


    @app.route("/donations/schedule", methods=["GET", "POST"])
    @require_permission("can_schedule_donations")
    def donations_schedule():
        if request.method == "GET":
            return jsonify({"blood_banks": queries.list_blood_banks(engine, verified_only=True)})

        data = _form()
        return _run_action(
            "schedule donation",
            lambda: actions.schedule_donation(
                engine, _profile().id,
                blood_bank_id=data.get("blood_bank_id"),
                scheduled_date=data.get("scheduled_date"),
                scheduled_time=data.get("scheduled_time"),
                notes=data.get("notes"),
            ),
            success_status=201,
            redirect="/dashboard?success=donation-scheduled",
        )

    @app.route("/donations/history", methods=["GET"])
    @require_permission("can_view_donation_history")
    def donations_history():
        return jsonify({"donations": queries.list_donations(engine, donor_id=_profile().id)})

    # ── Recipient ────────────────────────────────────────────────────

    @app.route("/blood-requests/new", methods=["GET", "POST"])
    @require_permission("can_create_requests")
    def blood_requests_new():
        if request.method == "GET":
            return jsonify({"page": "new-blood-request"})

        data = _form()
        return _run_action(
            "create blood request",
            lambda: actions.create_blood_request(engine, _profile().id, data),
            success_status=201,
            redirect="/dashboard?success=blood-request-created",
        )

    @app.route("/blood-requests/history", methods=["GET"])
    @require_permission("can_view_requests")
    def blood_requests_history():
        return jsonify({"requests": queries.list_blood_requests(
            engine, recipient_id=_profile().id, status=request.args.get("status"))})

    # ── General ──────────────────────────────────────────────────────

    @app.route("/profile", methods=["GET"])
    def profile_page():
        return jsonify({"user": _profile().to_dict()})

    @app.route("/community", methods=["GET"])
    def community():
        return jsonify(queries.community_feed(engine))

    @app.route("/blood-search", methods=["GET"])
    def blood_search():
        args = request.args
        try:
            results = queries.search_blood_availability(
                engine, args.get("blood_type", ""), args.get("units"), args.get("city"))
        except ValueError as e:
            return jsonify({"success": False, "error": str(e)}), 400
        except Exception as e:
            print(f"[ERROR] blood search failed: {e}", file=sys.stderr)
            traceback.print_exc()
            return jsonify({"success": False, "error": "Failed to search blood availability"}), 500
        return jsonify({"results": results, "count": len(results)})

    @app.route("/notifications", methods=["GET"])
    def notifications():
        items = queries.list_notifications(engine, _profile().id)
        return jsonify({
            "notifications": items,
            "unread_count": sum(1 for n in items if not n.get("is_read")),
        })

    @app.route("/notifications/read", methods=["POST"])
    @app.route("/notifications/<notification_id>/read", methods=["POST"])
    def notifications_read(notification_id=None):
        return _run_action(
            "mark notifications read",
            lambda: actions.mark_notification_read(engine, _profile().id, notification_id),
        )

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Page not found", "message": str(e)}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "message": str(e)}), 405

    @app.errorhandler(500)
    def internal_error(e):
        return jsonify({"error": "Internal server error", "message": str(e)}), 500
