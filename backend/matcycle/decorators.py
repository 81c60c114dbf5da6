# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g


ACTOR_HEADER = "X-Actor-Id"


def require_actor(f):
    """
    Require the acting user reference set by the upstream gateway.

    Authentication happens upstream; this service only records who acted.
    Sets g.actor_id for audit fields (approved_by, performed_by, created_by).

    Returns 401 if the header is missing or blank.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not actor:
            return jsonify({"error": "Authentication required"}), 401
        if len(actor) > 64:
            return jsonify({"error": f"{ACTOR_HEADER} exceeds max length 64"}), 400

        g.actor_id = actor
        return f(*args, **kwargs)

    return decorated_function
