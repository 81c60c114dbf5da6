# Overview: Flask API routes for mat cycles; parses input and returns JSON responses.

# backend/matcycle/routes/cycles.py
"""
Mat Cycle API Routes

- POST /api/cycles/scan                 - scan a free code, mat goes on test
- GET  /api/cycles                      - list cycles
- GET  /api/cycles/long-on-test         - on-test cycles past the warning age
- GET  /api/cycles/inventory            - open cycles per seller, by status
- GET  /api/cycles/:id                  - cycle with countdown and long-test level
- GET  /api/cycles/:id/history          - transition audit trail
- POST /api/cycles/:id/extend           - extend the test by one period
- POST /api/cycles/:id/test-start       - correct the test start date
- POST /api/cycles/:id/dirty            - on_test -> dirty
- POST /api/cycles/:id/contract         - record a signed contract
- POST /api/cycles/:id/confirm-pickup   - waiting_driver -> completed
- POST /api/cycles/self-delivery        - dirty/on_test -> completed (batch)

Transitions requested from the wrong state answer 409.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import cycle_service
from ..decorators import require_actor
from ..http_errors import DOMAIN_ERRORS, error_response
from matcycle.time_utils import parse_iso_datetime, utcnow


cycles_bp = Blueprint("cycles", __name__, url_prefix="/api/cycles")


def _cycle_view(cycle, now=None) -> dict:
    now = now or utcnow()
    data = cycle.to_dict()
    data["days_on_test"] = cycle_service.days_on_test(cycle, now)
    data["long_test_level"] = cycle_service.long_test_level(cycle, now)
    data["time_remaining"] = cycle_service.time_remaining(cycle, now).to_dict()
    return data


@cycles_bp.post("/scan")
@require_actor
def scan_code_route():
    """
    Scan a QR code and put a mat on test.

    Request body:
        {
            "code": "RIS-011",
            "salesperson_id": 3,
            "mat_type_code": "MBW2",
            "company_id": "crm-123",      // optional
            "contact_id": "crm-456",      // optional
            "test_start_date": "...Z"     // optional, defaults to now
        }

    Error responses:
        400: missing fields, unknown mat type
        404: code not found
        409: code already has an active cycle
        412: code belongs to another seller
    """
    try:
        data = request.get_json(silent=True) or {}
        salesperson_id = data.get("salesperson_id")
        if not isinstance(salesperson_id, int) or isinstance(salesperson_id, bool):
            return jsonify({"error": "salesperson_id must be an integer"}), 400

        try:
            test_start_date = parse_iso_datetime(data.get("test_start_date"))
        except ValueError:
            return jsonify({"error": "test_start_date must be an ISO-8601 datetime"}), 400

        cycle = cycle_service.scan_code(
            data.get("code"),
            salesperson_id=salesperson_id,
            mat_type_code=data.get("mat_type_code"),
            company_id=data.get("company_id"),
            contact_id=data.get("contact_id"),
            notes=data.get("notes"),
            test_start_date=test_start_date,
            performed_by=g.actor_id,
        )
        return jsonify({"cycle": _cycle_view(cycle)}), 201

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to scan code")
        return jsonify({"error": "Internal server error"}), 500


@cycles_bp.get("/")
@require_actor
def list_cycles_route():
    try:
        now = utcnow()
        cycles = cycle_service.list_cycles(
            salesperson_id=request.args.get("salesperson_id", type=int),
            status=request.args.get("status"),
            include_completed=request.args.get("include_completed", "false").lower() == "true",
            limit=min(request.args.get("limit", 200, type=int), 1000),
        )
        return jsonify({"cycles": [_cycle_view(c, now) for c in cycles]}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list cycles")
        return jsonify({"error": "Internal server error"}), 500


@cycles_bp.get("/long-on-test")
@require_actor
def long_on_test_route():
    """Warning (>= 20 days) and critical (>= 25 days) on-test cycles, oldest first."""
    try:
        now = utcnow()
        flagged = cycle_service.list_long_on_test(
            salesperson_id=request.args.get("salesperson_id", type=int),
            now=now,
        )
        return jsonify({
            "cycles": [_cycle_view(entry["cycle"], now) for entry in flagged],
            "count": len(flagged),
        }), 200

    except Exception:
        current_app.logger.exception("Failed to list long-on-test cycles")
        return jsonify({"error": "Internal server error"}), 500


@cycles_bp.get("/inventory")
@require_actor
def inventory_route():
    """Open cycles per seller (on_test, dirty, waiting_driver) with totals."""
    try:
        return jsonify(cycle_service.inventory_by_seller()), 200

    except Exception:
        current_app.logger.exception("Failed to load inventory")
        return jsonify({"error": "Internal server error"}), 500


@cycles_bp.get("/<int:cycle_id>")
@require_actor
def get_cycle_route(cycle_id: int):
    try:
        return jsonify({"cycle": _cycle_view(cycle_service.get_cycle(cycle_id))}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load cycle")
        return jsonify({"error": "Internal server error"}), 500


@cycles_bp.get("/<int:cycle_id>/history")
@require_actor
def cycle_history_route(cycle_id: int):
    try:
        history = cycle_service.get_cycle_history(cycle_id)
        return jsonify({"history": [h.to_dict() for h in history]}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load cycle history")
        return jsonify({"error": "Internal server error"}), 500


@cycles_bp.post("/<int:cycle_id>/extend")
@require_actor
def extend_test_route(cycle_id: int):
    try:
        cycle = cycle_service.extend_test(cycle_id, performed_by=g.actor_id)
        return jsonify({"cycle": _cycle_view(cycle)}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to extend test")
        return jsonify({"error": "Internal server error"}), 500


@cycles_bp.post("/<int:cycle_id>/test-start")
@require_actor
def set_test_start_route(cycle_id: int):
    """Request body: {"test_start_date": "2026-10-01T08:00:00Z"}"""
    try:
        data = request.get_json(silent=True) or {}
        raw = data.get("test_start_date")
        if not isinstance(raw, str):
            return jsonify({"error": "test_start_date is required"}), 400
        try:
            when = parse_iso_datetime(raw)
        except ValueError:
            return jsonify({"error": "test_start_date must be an ISO-8601 datetime"}), 400
        if when is None:
            return jsonify({"error": "test_start_date is required"}), 400

        cycle = cycle_service.set_test_start_date(cycle_id, when, performed_by=g.actor_id)
        return jsonify({"cycle": _cycle_view(cycle)}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change test start date")
        return jsonify({"error": "Internal server error"}), 500


@cycles_bp.post("/<int:cycle_id>/dirty")
@require_actor
def mark_dirty_route(cycle_id: int):
    try:
        cycle = cycle_service.mark_dirty(cycle_id, performed_by=g.actor_id)
        return jsonify({"cycle": _cycle_view(cycle)}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark cycle dirty")
        return jsonify({"error": "Internal server error"}), 500


@cycles_bp.post("/<int:cycle_id>/contract")
@require_actor
def sign_contract_route(cycle_id: int):
    """Request body: {"frequency": "weekly"} (optional)"""
    try:
        data = request.get_json(silent=True) or {}
        cycle = cycle_service.sign_contract(
            cycle_id,
            frequency=data.get("frequency"),
            performed_by=g.actor_id,
        )
        return jsonify({"cycle": _cycle_view(cycle)}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to sign contract")
        return jsonify({"error": "Internal server error"}), 500


@cycles_bp.post("/<int:cycle_id>/confirm-pickup")
@require_actor
def confirm_pickup_route(cycle_id: int):
    try:
        cycle = cycle_service.confirm_driver_pickup(cycle_id, performed_by=g.actor_id)
        return jsonify({"cycle": _cycle_view(cycle)}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm driver pickup")
        return jsonify({"error": "Internal server error"}), 500


@cycles_bp.post("/self-delivery")
@require_actor
def self_delivery_route():
    """
    Seller returned the mats personally.

    Request body: {"cycle_ids": [1, 2]}. All-or-nothing.
    """
    try:
        data = request.get_json(silent=True) or {}
        cycle_ids = data.get("cycle_ids")
        if not isinstance(cycle_ids, list) or not all(
            isinstance(cid, int) and not isinstance(cid, bool) for cid in cycle_ids
        ):
            return jsonify({"error": "cycle_ids must be a list of integers"}), 400

        cycles = cycle_service.self_deliver(cycle_ids, performed_by=g.actor_id)
        return jsonify({"cycles": [_cycle_view(c) for c in cycles]}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record self delivery")
        return jsonify({"error": "Internal server error"}), 500
