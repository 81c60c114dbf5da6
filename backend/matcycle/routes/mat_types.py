# Overview: Flask API routes for the mat type catalog.

from flask import Blueprint, request, jsonify, current_app

from ..services import mat_type_service
from ..decorators import require_actor
from ..http_errors import DOMAIN_ERRORS, error_response


mat_types_bp = Blueprint("mat_types", __name__, url_prefix="/api/mat-types")


@mat_types_bp.get("/")
@require_actor
def list_mat_types_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    mat_types = mat_type_service.list_mat_types(include_inactive=include_inactive)
    return jsonify({"mat_types": [m.to_dict() for m in mat_types]}), 200


@mat_types_bp.post("/")
@require_actor
def create_mat_type_route():
    """Request body: {"code": "MBW2", "name": "Mat 85x150"}"""
    try:
        mat_type = mat_type_service.create_mat_type(request.get_json(silent=True))
        return jsonify({"mat_type": mat_type.to_dict()}), 201

    except DOMAIN_ERRORS as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create mat type")
        return jsonify({"error": "Internal server error"}), 500
