# Overview: Flask API routes for driver pickups; parses input and returns JSON responses.

# backend/matcycle/routes/pickups.py
"""
Driver Pickup API Routes

- POST  /api/pickups                     - queue cycles for the driver
- GET   /api/pickups                     - list pickups (status)
- GET   /api/pickups/:id                 - pickup with items
- POST  /api/pickups/complete            - complete a batch of cycles
- POST  /api/pickups/:id/complete        - complete every cycle on a pickup
- PATCH /api/pickups/:id/status          - move pickup status forward
- PATCH /api/pickups/items/:id           - tick an item on the driver's list

Batch completion is all-or-nothing unless {"atomic": false} is sent; a
partially applied batch answers 207 with per-item results.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import pickup_service
from ..decorators import require_actor
from ..http_errors import DOMAIN_ERRORS, error_response
from matcycle.time_utils import parse_iso_datetime


pickups_bp = Blueprint("pickups", __name__, url_prefix="/api/pickups")


@pickups_bp.post("/")
@require_actor
def create_pickup_route():
    """
    Request body:
        {
            "cycle_ids": [4, 5],
            "notes": "optional",
            "scheduled_date": "...Z",      // optional
            "assigned_driver": "Marko"     // optional
        }

    Error responses:
        400: empty or duplicate cycle_ids
        404: unknown cycle
        409: a cycle is neither dirty nor long on test
    """
    try:
        data = request.get_json(silent=True) or {}
        try:
            scheduled_date = parse_iso_datetime(data.get("scheduled_date"))
        except ValueError:
            return jsonify({"error": "scheduled_date must be an ISO-8601 datetime"}), 400

        pickup = pickup_service.create_pickup(
            data.get("cycle_ids"),
            notes=data.get("notes"),
            created_by=g.actor_id,
            scheduled_date=scheduled_date,
            assigned_driver=data.get("assigned_driver"),
        )
        return jsonify({"pickup": pickup.to_dict()}), 201

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create pickup")
        return jsonify({"error": "Internal server error"}), 500


@pickups_bp.get("/")
@require_actor
def list_pickups_route():
    try:
        pickups = pickup_service.list_pickups(
            status=request.args.get("status"),
            limit=min(request.args.get("limit", 200, type=int), 1000),
        )
        return jsonify({"pickups": [p.to_dict() for p in pickups]}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list pickups")
        return jsonify({"error": "Internal server error"}), 500


@pickups_bp.get("/<int:pickup_id>")
@require_actor
def get_pickup_route(pickup_id: int):
    try:
        return jsonify({"pickup": pickup_service.get_pickup(pickup_id).to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load pickup")
        return jsonify({"error": "Internal server error"}), 500


@pickups_bp.post("/complete")
@require_actor
def complete_pickup_route():
    """
    Request body: {"cycle_ids": [4, 5], "atomic": true}

    Responses:
        200: every cycle completed
        207: atomic=false and some items failed; body lists both sides
        409: atomic=true and a cycle is not waiting for the driver
    """
    try:
        data = request.get_json(silent=True) or {}
        atomic = data.get("atomic", True)
        if not isinstance(atomic, bool):
            return jsonify({"error": "atomic must be a boolean"}), 400

        result = pickup_service.complete_pickup(
            data.get("cycle_ids"),
            performed_by=g.actor_id,
            atomic=atomic,
        )
        return jsonify(result.to_dict()), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete pickup batch")
        return jsonify({"error": "Internal server error"}), 500


@pickups_bp.post("/<int:pickup_id>/complete")
@require_actor
def complete_pickup_by_id_route(pickup_id: int):
    try:
        pickup = pickup_service.complete_pickup_by_id(pickup_id, performed_by=g.actor_id)
        return jsonify({"pickup": pickup.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete pickup")
        return jsonify({"error": "Internal server error"}), 500


@pickups_bp.patch("/<int:pickup_id>/status")
@require_actor
def update_pickup_status_route(pickup_id: int):
    """Request body: {"status": "in_progress"}. Forward moves only."""
    try:
        data = request.get_json(silent=True) or {}
        pickup = pickup_service.update_pickup_status(pickup_id, data.get("status"))
        return jsonify({"pickup": pickup.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update pickup status")
        return jsonify({"error": "Internal server error"}), 500


@pickups_bp.patch("/items/<int:item_id>")
@require_actor
def mark_item_route(item_id: int):
    """Request body: {"picked_up": true, "notes": "left at reception"}"""
    try:
        data = request.get_json(silent=True) or {}
        item = pickup_service.mark_item_picked_up(
            item_id,
            data.get("picked_up", True),
            notes=data.get("notes"),
        )
        return jsonify({"item": item.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update pickup item")
        return jsonify({"error": "Internal server error"}), 500
