# Overview: Maps service-layer exceptions to JSON error responses.

from flask import jsonify

from .extensions import db
from .validation import ConflictError, NotFoundError, ValidationError
from .services.allocation_service import AllocationConflict
from .services.code_service import PreconditionFailed
from .services.cycle_service import InvalidTransition
from .services.pickup_service import PartialBatchFailure


# Checked in order; subclasses before their bases
STATUS_BY_ERROR = (
    (ValidationError, 400),
    (NotFoundError, 404),
    (AllocationConflict, 409),
    (ConflictError, 409),
    (InvalidTransition, 409),
    (PreconditionFailed, 412),
)

DOMAIN_ERRORS = tuple(cls for cls, _ in STATUS_BY_ERROR) + (PartialBatchFailure,)


def error_response(exc: Exception):
    """
    JSON response for a domain error raised by a service.

    The session is rolled back first; services may have left pending
    changes behind when they raised.
    """
    db.session.rollback()

    if isinstance(exc, PartialBatchFailure):
        body = exc.result.to_dict()
        body["error"] = str(exc)
        return jsonify(body), 207

    for cls, status in STATUS_BY_ERROR:
        if isinstance(exc, cls):
            body = {"error": str(exc)}
            if isinstance(exc, AllocationConflict):
                body["retryable"] = True
            return jsonify(body), status

    raise exc
