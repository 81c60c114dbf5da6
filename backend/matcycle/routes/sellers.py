# Overview: Flask API routes for sellers and QR codes; parses input and returns JSON responses.

# backend/matcycle/routes/sellers.py
"""
Seller and QR code API routes

- POST   /api/sellers                      - create a seller (optional prefix)
- GET    /api/sellers                      - list sellers
- GET    /api/sellers/:id                  - seller with code summary
- PUT    /api/sellers/:id/prefix           - register the code prefix
- POST   /api/sellers/:id/sync-range       - recompute range from issued numbers
- POST   /api/sellers/:id/codes            - generate N available codes
- GET    /api/sellers/:id/codes            - list codes (prefix_pattern, status)
- GET    /api/sellers/:id/reserved-codes   - generated codes per shipment request
- GET    /api/codes/lookup/:value          - find a code by its printed value
- PATCH  /api/codes/status                 - bulk status update
- DELETE /api/codes/:id                    - delete a never-used code

All routes require the X-Actor-Id header set by the upstream gateway.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import code_service
from ..decorators import require_actor
from ..http_errors import DOMAIN_ERRORS, error_response
from matcycle.time_utils import parse_iso_datetime


sellers_bp = Blueprint("sellers", __name__, url_prefix="/api")


@sellers_bp.post("/sellers")
@require_actor
def create_seller_route():
    try:
        data = request.get_json(silent=True) or {}
        seller = code_service.create_seller(
            data.get("name"),
            email=data.get("email"),
            prefix=data.get("prefix"),
        )
        return jsonify({"seller": seller.to_dict()}), 201

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create seller")
        return jsonify({"error": "Internal server error"}), 500


@sellers_bp.get("/sellers")
@require_actor
def list_sellers_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    sellers = code_service.list_sellers(include_inactive=include_inactive)
    return jsonify({"sellers": [s.to_dict() for s in sellers]}), 200


@sellers_bp.get("/sellers/<int:seller_id>")
@require_actor
def get_seller_route(seller_id: int):
    try:
        seller = code_service.get_seller(seller_id)
        return jsonify({
            "seller": seller.to_dict(),
            "summary": code_service.seller_code_summary(seller_id),
        }), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load seller")
        return jsonify({"error": "Internal server error"}), 500


@sellers_bp.put("/sellers/<int:seller_id>/prefix")
@require_actor
def register_prefix_route(seller_id: int):
    """
    Register a seller's code prefix.

    Request body: {"prefix": "RIS"}

    Error responses:
        400: prefix missing or not 2-4 letters
        409: prefix owned by another seller
        412: seller already holds codes under a different prefix
    """
    try:
        data = request.get_json(silent=True) or {}
        seller = code_service.register_prefix(seller_id, data.get("prefix"))
        return jsonify({"seller": seller.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register prefix")
        return jsonify({"error": "Internal server error"}), 500


@sellers_bp.post("/sellers/<int:seller_id>/sync-range")
@require_actor
def sync_range_route(seller_id: int):
    try:
        range_start, range_end = code_service.sync_seller_range(seller_id)
        return jsonify({"range_start": range_start, "range_end": range_end}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to sync seller range")
        return jsonify({"error": "Internal server error"}), 500


@sellers_bp.post("/sellers/<int:seller_id>/codes")
@require_actor
def generate_codes_route(seller_id: int):
    """
    Generate N available codes under the seller's prefix.

    Request body: {"count": 10}

    Error responses:
        400: bad count or no prefix
        409: allocation kept colliding with concurrent allocations (retryable)
    """
    try:
        data = request.get_json(silent=True) or {}
        codes = code_service.generate_codes(seller_id, data.get("count"))
        return jsonify({
            "codes": [c.to_dict() for c in codes],
            "count": len(codes),
        }), 201

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to generate codes")
        return jsonify({"error": "Internal server error"}), 500


@sellers_bp.get("/sellers/<int:seller_id>/codes")
@require_actor
def list_codes_route(seller_id: int):
    try:
        codes = code_service.list_codes(
            seller_id,
            request.args.get("prefix_pattern"),
            status=request.args.get("status"),
        )
        return jsonify({"codes": [c.to_dict() for c in codes]}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list codes")
        return jsonify({"error": "Internal server error"}), 500


@sellers_bp.get("/sellers/<int:seller_id>/reserved-codes")
@require_actor
def list_reserved_codes_route(seller_id: int):
    try:
        code_service.get_seller(seller_id)
        return jsonify({"reserved": code_service.list_reserved_codes(seller_id)}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list reserved codes")
        return jsonify({"error": "Internal server error"}), 500


@sellers_bp.get("/codes/lookup/<value>")
@require_actor
def lookup_code_route(value: str):
    try:
        code = code_service.get_code_by_value(value)
        return jsonify({"code": code.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to lookup code")
        return jsonify({"error": "Internal server error"}), 500


@sellers_bp.patch("/codes/status")
@require_actor
def update_code_status_route():
    """
    Request body: {"ids": [1, 2], "status": "available", "last_reset_at": "...Z"}
    """
    try:
        data = request.get_json(silent=True) or {}
        last_reset_at = data.get("last_reset_at")
        try:
            last_reset_at = parse_iso_datetime(last_reset_at) if last_reset_at else None
        except ValueError:
            return jsonify({"error": "last_reset_at must be an ISO-8601 datetime"}), 400

        codes = code_service.update_code_status(
            data.get("ids") or [],
            data.get("status"),
            last_reset_at=last_reset_at,
        )
        return jsonify({"codes": [c.to_dict() for c in codes]}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update code status")
        return jsonify({"error": "Internal server error"}), 500


@sellers_bp.delete("/codes/<int:code_id>")
@require_actor
def delete_code_route(code_id: int):
    try:
        code = code_service.delete_code(code_id)
        return jsonify({"message": f"QR code {code_id} deleted", "code": code.to_dict()}), 200

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete code")
        return jsonify({"error": "Internal server error"}), 500
