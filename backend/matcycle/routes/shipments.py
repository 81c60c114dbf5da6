# Overview: Flask API routes for shipment requests; parses input and returns JSON responses.

# backend/matcycle/routes/shipments.py
"""
Shipment Request API Routes

- POST /api/shipments              - create a pending request
- POST /api/shipments/:id/approve  - approve (pending -> approved), reserves codes
- GET  /api/shipments              - list requests (seller_id, status)
- GET  /api/shipments/:id          - single request

SECURITY:
- created_by / approved_by come from X-Actor-Id, NOT from the request body
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import shipment_service
from ..decorators import require_actor
from ..http_errors import DOMAIN_ERRORS, error_response


shipments_bp = Blueprint("shipments", __name__, url_prefix="/api/shipments")


@shipments_bp.post("/")
@require_actor
def create_request_route():
    """
    Create a pending shipment request.

    Request body:
        {
            "seller_id": 3,
            "quantities": {"MBW2": 3, "MBW1": 2},
            "notes": "optional"
        }

    Error responses:
        400: invalid quantities or unknown mat type
        404: seller not found
    """
    try:
        data = request.get_json(silent=True) or {}
        seller_id = data.get("seller_id")
        if not isinstance(seller_id, int) or isinstance(seller_id, bool):
            return jsonify({"error": "seller_id must be an integer"}), 400

        shipment = shipment_service.create_request(
            seller_id,
            data.get("quantities"),
            created_by=g.actor_id,
            notes=data.get("notes"),
        )
        return jsonify({"shipment_request": shipment.to_dict()}), 201

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create shipment request")
        return jsonify({"error": "Internal server error"}), 500


@shipments_bp.post("/<int:request_id>/approve")
@require_actor
def approve_request_route(request_id: int):
    """
    Approve a pending request and reserve its codes.

    CRITICAL: approval is irreversible; reserved numbers are never reclaimed.

    Error responses:
        400: seller has no prefix
        404: request not found
        409: request not pending, or allocation still colliding (retryable)
    """
    try:
        shipment = shipment_service.approve_request(request_id, approved_by=g.actor_id)
        return jsonify({
            "shipment_request": shipment.to_dict(),
            "message": f"Shipment request {request_id} approved",
        }), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve shipment request")
        return jsonify({"error": "Internal server error"}), 500


@shipments_bp.get("/")
@require_actor
def list_requests_route():
    try:
        requests_ = shipment_service.list_requests(
            seller_id=request.args.get("seller_id", type=int),
            status=request.args.get("status"),
            limit=min(request.args.get("limit", 200, type=int), 1000),
        )
        return jsonify({"shipment_requests": [r.to_dict() for r in requests_]}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list shipment requests")
        return jsonify({"error": "Internal server error"}), 500


@shipments_bp.get("/<int:request_id>")
@require_actor
def get_request_route(request_id: int):
    try:
        shipment = shipment_service.get_request(request_id)
        return jsonify({"shipment_request": shipment.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load shipment request")
        return jsonify({"error": "Internal server error"}), 500
