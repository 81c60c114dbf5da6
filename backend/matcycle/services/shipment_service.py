# Overview: Service-layer operations for shipment requests; encapsulates business logic and database work.

"""
Shipment Request Workflow

================================================================================
PURPOSE: two-phase reservation of QR code numbers for a seller
================================================================================

STATE MACHINE:
    pending -> approved

    pending:  quantities declared per mat type; reserves NOTHING
    approved: generated_qr_codes holds sum(quantities) reserved codes;
              terminal and irreversible

RULES:
1. quantities is validated before any store access
2. approval allocates through the Number Allocator under the seller's
   single-writer section and re-reads U on every attempt
3. approval creates reserved QRCode rows (status=pending); each becomes a
   materialized code on its first scan
4. unused reserved numbers are never reclaimed
================================================================================
"""

from __future__ import annotations

from ..extensions import db
from ..models import MatType, ShipmentRequest
from ..models.shipments import REQUEST_STATUS_APPROVED, REQUEST_STATUS_PENDING
from ..validation import NotFoundError, ValidationError, normalize_prefix, validate_quantities
from matcycle.time_utils import utcnow
from . import allocation_service
from .code_service import extend_seller_range, get_seller
from .concurrency import lock_for_update
from .cycle_service import InvalidTransition


VALID_REQUEST_STATUSES = {REQUEST_STATUS_PENDING, REQUEST_STATUS_APPROVED}


def _check_mat_types(codes) -> None:
    known = {
        code for (code,) in db.session.query(MatType.code).filter(
            MatType.code.in_(list(codes)),
            MatType.is_active.is_(True),
        )
    }
    unknown = sorted(set(codes) - known)
    if unknown:
        raise ValidationError(f"Unknown mat type codes: {', '.join(unknown)}")


def create_request(
    seller_id: int,
    quantities,
    *,
    created_by: str | None = None,
    notes: str | None = None,
) -> ShipmentRequest:
    """
    Create a pending shipment request.

    Raises:
        ValidationError: empty quantities, non-positive counts, unknown mat types
        NotFoundError: seller does not exist
    """
    cleaned = validate_quantities(quantities)
    seller = get_seller(seller_id)
    _check_mat_types(cleaned.keys())

    request = ShipmentRequest(
        seller_id=seller.id,
        status=REQUEST_STATUS_PENDING,
        quantities=cleaned,
        notes=notes,
        created_by=created_by,
    )
    db.session.add(request)
    db.session.commit()
    return request


def get_request(request_id: int) -> ShipmentRequest:
    request = db.session.get(ShipmentRequest, request_id)
    if request is None:
        raise NotFoundError(f"Shipment request {request_id} not found")
    return request


def approve_request(request_id: int, *, approved_by: str | None) -> ShipmentRequest:
    """
    Approve a pending request (pending -> approved).

    Allocates sum(quantities) numbers, creates reserved codes, records
    generated_qr_codes and extends the seller range, all in one commit.

    Raises:
        NotFoundError: request not found
        InvalidTransition: request is not pending
        ValidationError: seller has no registered prefix
        AllocationConflict: allocation kept colliding after the retry budget
    """
    seller_id = get_request(request_id).seller_id
    prefix = normalize_prefix(get_seller(seller_id).prefix)

    def _op() -> ShipmentRequest:
        # Re-read under the lock; a concurrent approval may have won
        locked = lock_for_update(
            db.session.query(ShipmentRequest).filter_by(id=request_id)
        ).first()
        if locked.status != REQUEST_STATUS_PENDING:
            raise InvalidTransition(
                f"Cannot approve shipment request {request_id}: "
                f"current status is '{locked.status}', must be '{REQUEST_STATUS_PENDING}'"
            )

        plan = allocation_service.plan_allocation(seller_id, prefix, locked.total_quantity)
        allocation_service.commit_allocation(
            plan,
            reserved=True,
            shipment_request_id=locked.id,
        )

        locked.generated_qr_codes = plan.codes
        locked.status = REQUEST_STATUS_APPROVED
        locked.approved_at = utcnow()
        locked.approved_by = approved_by
        extend_seller_range(get_seller(seller_id), plan.numbers)

        allocation_service.commit_or_conflict(plan)
        return locked

    return allocation_service.allocate_with_retry(seller_id, prefix, _op)


def list_requests(
    *,
    seller_id: int | None = None,
    status: str | None = None,
    limit: int = 200,
) -> list[ShipmentRequest]:
    q = db.session.query(ShipmentRequest)
    if seller_id is not None:
        q = q.filter(ShipmentRequest.seller_id == seller_id)
    if status is not None:
        if status not in VALID_REQUEST_STATUSES:
            raise ValidationError(
                f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_REQUEST_STATUSES))}"
            )
        q = q.filter(ShipmentRequest.status == status)
    return q.order_by(ShipmentRequest.created_at.desc(), ShipmentRequest.id.desc()).limit(limit).all()
