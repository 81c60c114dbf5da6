# Overview: Service-layer operations for sellers and QR codes; encapsulates business logic and database work.

"""
QR Code Service

Sellers, their prefixes and ranges, and the QR code rows issued under them.

DELETION RULE: a code may be deleted only while it is available and no
cycle has ever referenced it (generated but never used). Deleting is a soft
delete: the row is deactivated and hidden from lookups and listings, but it
stays in the allocation universe so its string is never issued again.
"""

from __future__ import annotations

from typing import Iterable

from sqlalchemy import func

from ..extensions import db
from ..models import Cycle, QRCode, Seller, ShipmentRequest
from ..models.codes import (
    CODE_STATE_RESERVED,
    CODE_STATUS_ACTIVE,
    CODE_STATUS_AVAILABLE,
    CODE_STATUSES,
)
from ..models.cycles import CYCLE_STATUS_COMPLETED
from ..models.shipments import REQUEST_STATUS_PENDING
from ..validation import ConflictError, NotFoundError, ValidationError, normalize_prefix, require_id_list
from matcycle.time_utils import utcnow
from . import allocation_service


class PreconditionFailed(ValueError):
    """Permanent refusal: the entity is not in a state that allows the operation."""


def get_seller(seller_id: int) -> Seller:
    seller = db.session.get(Seller, seller_id)
    if seller is None:
        raise NotFoundError(f"Seller {seller_id} not found")
    return seller


def list_sellers(*, include_inactive: bool = False) -> list[Seller]:
    q = db.session.query(Seller)
    if not include_inactive:
        q = q.filter(Seller.is_active.is_(True))
    return q.order_by(Seller.id).all()


def create_seller(name: str, *, email: str | None = None, prefix: str | None = None) -> Seller:
    if not name or not str(name).strip():
        raise ValidationError("name is required")

    seller = Seller(name=str(name).strip(), email=email)
    if prefix is not None:
        _assign_prefix(seller, prefix)

    db.session.add(seller)
    db.session.commit()
    return seller


def _assign_prefix(seller: Seller, prefix: str) -> None:
    normalized = normalize_prefix(prefix)
    owner = db.session.query(Seller).filter(
        Seller.prefix == normalized,
        Seller.id != seller.id,
    ).first()
    if owner:
        raise ConflictError(f"Prefix {normalized} is already registered to seller {owner.id}")
    seller.prefix = normalized


def register_prefix(seller_id: int, prefix: str) -> Seller:
    """
    Register (or change) a seller's code prefix.

    Changing the prefix of a seller who already holds codes would orphan
    those numbers from the seller's range, so it is refused.
    """
    seller = get_seller(seller_id)
    normalized = normalize_prefix(prefix)
    if seller.prefix == normalized:
        return seller

    if seller.prefix is not None:
        has_codes = db.session.query(QRCode.id).filter(QRCode.owner_id == seller.id).first()
        if has_codes:
            raise PreconditionFailed(
                f"Seller {seller.id} already holds codes under {seller.prefix}; prefix cannot change"
            )

    _assign_prefix(seller, normalized)
    db.session.commit()
    return seller


def extend_seller_range(seller: Seller, numbers: Iterable[int]) -> None:
    """Widen range_start/range_end to cover the given numbers (no commit)."""
    numbers = list(numbers)
    if not numbers:
        return
    low, high = min(numbers), max(numbers)
    seller.range_start = low if seller.range_start is None else min(seller.range_start, low)
    seller.range_end = high if seller.range_end is None else max(seller.range_end, high)


def sync_seller_range(seller_id: int) -> tuple[int | None, int | None]:
    """
    Recompute the seller range from the allocation universe.

    The stored range is a cache; this never trusts it.
    """
    seller = get_seller(seller_id)
    prefix = normalize_prefix(seller.prefix)

    used = allocation_service.collect_used_numbers(seller.id, prefix)
    if used:
        seller.range_start, seller.range_end = min(used), max(used)
    else:
        seller.range_start, seller.range_end = None, None

    db.session.commit()
    return seller.range_start, seller.range_end


def generate_codes(seller_id: int, count: int) -> list[QRCode]:
    """
    Operator "generate N codes": allocate and create available codes.

    Raises:
        ValidationError: seller has no prefix, or bad count
        AllocationConflict: retries exhausted
    """
    seller = get_seller(seller_id)
    prefix = normalize_prefix(seller.prefix)

    def _extend(rows, plan):
        extend_seller_range(get_seller(seller_id), plan.numbers)

    return allocation_service.allocate_codes(
        seller.id,
        prefix,
        count,
        before_commit=_extend,
    )


def get_code(code_id: int) -> QRCode:
    code = db.session.get(QRCode, code_id)
    if code is None:
        raise NotFoundError(f"QR code {code_id} not found")
    return code


def normalize_code_value(value: str) -> str:
    """Scanned values arrive with stray whitespace and lower case."""
    return value.strip().upper().replace(" ", "")


def get_code_by_value(value: str) -> QRCode:
    if not value or not str(value).strip():
        raise ValidationError("code is required")
    code = db.session.query(QRCode).filter_by(code=normalize_code_value(value)).filter(
        QRCode.is_active.is_(True)
    ).first()
    if code is None:
        raise NotFoundError(f"QR code {value!r} not found")
    return code


def list_codes(
    owner_id: int,
    prefix_pattern: str | None = None,
    *,
    status: str | None = None,
) -> list[QRCode]:
    """
    Active (not deleted) codes owned by a seller, ordered by code.

    prefix_pattern is a SQL LIKE pattern such as 'RIS-%'.
    """
    q = db.session.query(QRCode).filter(
        QRCode.owner_id == owner_id,
        QRCode.is_active.is_(True),
    )
    if prefix_pattern:
        q = q.filter(QRCode.code.like(prefix_pattern))
    if status is not None:
        if status not in CODE_STATUSES:
            raise ValidationError(f"Invalid status '{status}'")
        q = q.filter(QRCode.status == status)
    return q.order_by(QRCode.prefix, QRCode.number).all()


def list_reserved_codes(owner_id: int) -> list[list[str]]:
    """generated_qr_codes of each of the seller's shipment requests, oldest first."""
    rows = (
        db.session.query(ShipmentRequest.generated_qr_codes)
        .filter(
            ShipmentRequest.seller_id == owner_id,
            ShipmentRequest.generated_qr_codes.isnot(None),
        )
        .order_by(ShipmentRequest.id)
        .all()
    )
    return [list(codes or []) for (codes,) in rows]


def has_active_cycle(qr_code_id: int) -> bool:
    return db.session.query(Cycle.id).filter(
        Cycle.qr_code_id == qr_code_id,
        Cycle.status != CYCLE_STATUS_COMPLETED,
    ).first() is not None


def update_code_status(ids: int | Iterable[int], status: str, *, last_reset_at=None) -> list[QRCode]:
    """
    Set status (and optionally last_reset_at) on one or more codes.

    A code with an active cycle is never made available here; cycle
    completion is the only path that frees a code in use.
    """
    if status not in CODE_STATUSES:
        raise ValidationError(f"Invalid status '{status}'")
    id_list = [ids] if isinstance(ids, int) and not isinstance(ids, bool) else require_id_list(ids, "ids")

    codes = db.session.query(QRCode).filter(QRCode.id.in_(id_list), QRCode.is_active.is_(True)).all()
    missing = set(id_list) - {c.id for c in codes}
    if missing:
        raise NotFoundError(f"QR codes not found: {sorted(missing)}")

    if status == CODE_STATUS_AVAILABLE:
        busy = [c.code for c in codes if has_active_cycle(c.id)]
        if busy:
            raise PreconditionFailed(f"QR codes have an active cycle: {', '.join(busy)}")

    for code in codes:
        code.status = status
        if last_reset_at is not None:
            code.last_reset_at = last_reset_at

    db.session.commit()
    return codes


def delete_code(code_id: int) -> QRCode:
    """
    Delete (deactivate) a generated-but-never-used code.

    The row is kept with is_active=False; its number stays in U.

    Raises:
        NotFoundError: no such code
        PreconditionFailed: code already deleted, not available, or a cycle
            ever referenced it
    """
    code = get_code(code_id)
    if not code.is_active:
        raise PreconditionFailed(f"QR code {code.code} is already deleted")

    if code.status != CODE_STATUS_AVAILABLE or code.state == CODE_STATE_RESERVED:
        raise PreconditionFailed(
            f"QR code {code.code} cannot be deleted: status is '{code.status}'"
        )

    ever_used = db.session.query(Cycle.id).filter(Cycle.qr_code_id == code.id).first()
    if ever_used:
        raise PreconditionFailed(f"QR code {code.code} cannot be deleted: it has cycle history")

    code.is_active = False
    code.deactivated_at = utcnow()
    db.session.commit()
    return code


def seller_code_summary(seller_id: int) -> dict:
    """Counts for a seller's dashboard card."""
    seller = get_seller(seller_id)

    by_status = dict(
        db.session.query(QRCode.status, func.count(QRCode.id))
        .filter(QRCode.owner_id == seller.id, QRCode.is_active.is_(True))
        .group_by(QRCode.status)
        .all()
    )
    reserved = db.session.query(func.count(QRCode.id)).filter(
        QRCode.owner_id == seller.id,
        QRCode.state == CODE_STATE_RESERVED,
        QRCode.is_active.is_(True),
    ).scalar() or 0
    pending_requests = db.session.query(func.count(ShipmentRequest.id)).filter(
        ShipmentRequest.seller_id == seller.id,
        ShipmentRequest.status == REQUEST_STATUS_PENDING,
    ).scalar() or 0

    return {
        "seller_id": seller.id,
        "prefix": seller.prefix,
        "range_start": seller.range_start,
        "range_end": seller.range_end,
        "total": sum(by_status.values()),
        "available": by_status.get(CODE_STATUS_AVAILABLE, 0),
        "active": by_status.get(CODE_STATUS_ACTIVE, 0),
        "reserved": reserved,
        "pending_requests": pending_requests,
    }
