# Overview: Service-layer operations for QR number allocation; encapsulates business logic and database work.

"""
Number Allocator

PURPOSE: hand out the next free numeric suffixes under a seller's prefix
so that no two issued codes ever share a number.

UNIVERSE OF USED NUMBERS (U):
- numbers parsed from every QRCode.code LIKE 'PREFIX-%' (any owner)
- numbers parsed from generated_qr_codes of the seller's shipment requests

    next = max(U) + 1   (1 when U is empty)

Codes that do not match PREFIX-<digits> exactly are foreign/legacy and are
left out of U.

CONCURRENCY:
U is a read; the insert is a later write. Two allocations that read the same
U would pick the same numbers. Three layers keep that from producing
duplicates:
1. allocation_lock(seller_id, prefix) serializes allocations in-process
2. commit_allocation re-derives U right before inserting and refuses a plan
   whose numbers are no longer free
3. the (prefix, number) and code unique constraints reject whatever slips
   past both (other processes); the IntegrityError becomes AllocationConflict

AllocationConflict is the only error that callers retry, and only by
re-running the whole read-allocate-write sequence.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import QRCode, ShipmentRequest
from ..models.codes import (
    CODE_STATE_MATERIALIZED,
    CODE_STATE_RESERVED,
    CODE_STATUS_AVAILABLE,
    CODE_STATUS_PENDING,
)
from ..validation import (
    MAX_CODES_PER_REQUEST,
    ConflictError,
    normalize_prefix,
    require_positive_int,
)
from .concurrency import DB_RETRYABLE, allocation_lock, run_with_retry


MIN_NUMBER_WIDTH = 3
DEFAULT_ALLOCATION_ATTEMPTS = 3


class AllocationConflict(ConflictError):
    """
    A number-allocation commit collided with a concurrent allocation.

    Retryable: re-run the read-allocate-write sequence against a fresh U.
    """

    def __init__(self, message: str, *, numbers: Iterable[int] = ()):
        super().__init__(message)
        self.numbers = sorted(numbers)


@dataclass(frozen=True)
class AllocationPlan:
    """Contiguous numbers picked from one read of U."""
    seller_id: int
    prefix: str
    numbers: tuple[int, ...]

    @property
    def codes(self) -> list[str]:
        return [format_code(self.prefix, n) for n in self.numbers]

    @property
    def first(self) -> int:
        return self.numbers[0]

    @property
    def last(self) -> int:
        return self.numbers[-1]


def format_code(prefix: str, number: int) -> str:
    """PREFIX-NNN; padded to at least three digits, never truncated."""
    return f"{prefix}-{number:0{MIN_NUMBER_WIDTH}d}"


def parse_code_number(code: str, prefix: str) -> int | None:
    """
    Extract the numeric suffix of a code under the given prefix.

    Returns None for anything that is not exactly PREFIX-<digits>
    (other prefixes, mixed case, trailing garbage).
    """
    if not isinstance(code, str):
        return None
    match = re.fullmatch(rf"{re.escape(prefix)}-(\d+)", code)
    if not match:
        return None
    return int(match.group(1))


def _like_pattern(prefix: str) -> str:
    # Prefixes are letters only, so no LIKE wildcards to escape
    return f"{prefix}-%"


def used_code_numbers(prefix: str) -> set[int]:
    """
    Numbers held by QRCode rows under the prefix.

    Not filtered by owner: code strings are globally unique, so a number
    still held by a previous owner of the prefix is just as unavailable.
    """
    rows = (
        db.session.query(QRCode.code)
        .filter(QRCode.code.like(_like_pattern(prefix)))
        .all()
    )
    numbers = set()
    for (code,) in rows:
        n = parse_code_number(code, prefix)
        if n is not None:
            numbers.add(n)
    return numbers


def reserved_request_numbers(seller_id: int, prefix: str) -> set[int]:
    """Numbers listed in generated_qr_codes across the seller's shipment requests."""
    rows = (
        db.session.query(ShipmentRequest.generated_qr_codes)
        .filter(
            ShipmentRequest.seller_id == seller_id,
            ShipmentRequest.generated_qr_codes.isnot(None),
        )
        .all()
    )
    numbers = set()
    for (codes,) in rows:
        for code in codes or []:
            n = parse_code_number(code, prefix)
            if n is not None:
                numbers.add(n)
    return numbers


def collect_used_numbers(seller_id: int, prefix: str) -> set[int]:
    """The allocation universe U for (seller, prefix)."""
    return used_code_numbers(prefix) | reserved_request_numbers(seller_id, prefix)


def next_number(used: Iterable[int]) -> int:
    used = list(used)
    return max(used) + 1 if used else 1


def plan_allocation(seller_id: int, prefix: str, count: int) -> AllocationPlan:
    """
    Read U and pick the next `count` contiguous numbers.

    A plan is only valid until someone else allocates; commit_allocation
    re-checks it.
    """
    prefix = normalize_prefix(prefix)
    count = require_positive_int(count, "count", maximum=MAX_CODES_PER_REQUEST)

    start = next_number(collect_used_numbers(seller_id, prefix))
    return AllocationPlan(
        seller_id=seller_id,
        prefix=prefix,
        numbers=tuple(range(start, start + count)),
    )


def commit_allocation(
    plan: AllocationPlan,
    *,
    reserved: bool = False,
    shipment_request_id: int | None = None,
) -> list[QRCode]:
    """
    Insert QRCode rows for a plan after re-deriving U.

    reserved=True creates pending/reserved rows (shipment approval);
    otherwise rows are materialized and available (direct generation).

    Raises:
        AllocationConflict: a planned number is already used, or the insert
            hit a unique constraint (the session is rolled back then)
    """
    current = collect_used_numbers(plan.seller_id, plan.prefix)
    taken = current.intersection(plan.numbers)
    if taken:
        raise AllocationConflict(
            f"Numbers already allocated under {plan.prefix}: "
            + ", ".join(format_code(plan.prefix, n) for n in sorted(taken)),
            numbers=taken,
        )

    rows = [
        QRCode(
            code=format_code(plan.prefix, n),
            prefix=plan.prefix,
            number=n,
            owner_id=plan.seller_id,
            status=CODE_STATUS_PENDING if reserved else CODE_STATUS_AVAILABLE,
            state=CODE_STATE_RESERVED if reserved else CODE_STATE_MATERIALIZED,
            shipment_request_id=shipment_request_id,
        )
        for n in plan.numbers
    ]
    db.session.add_all(rows)
    try:
        db.session.flush()
    except IntegrityError as exc:
        db.session.rollback()
        raise AllocationConflict(
            f"Concurrent allocation under {plan.prefix} for numbers "
            f"{plan.first}-{plan.last}",
            numbers=plan.numbers,
        ) from exc
    return rows


def commit_or_conflict(plan: AllocationPlan) -> None:
    """Commit the session, translating a unique-constraint hit into AllocationConflict."""
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise AllocationConflict(
            f"Concurrent allocation under {plan.prefix} for numbers "
            f"{plan.first}-{plan.last}",
            numbers=plan.numbers,
        ) from exc


def allocate_with_retry(seller_id: int, prefix: str, op, *, attempts: int | None = None):
    """
    Run op() inside the (seller, prefix) single-writer section, retrying
    the whole sequence on AllocationConflict and DB concurrency errors.

    op must perform its own read of U (via plan_allocation) on every call.
    """
    if attempts is None:
        attempts = _configured_attempts()

    def _locked():
        with allocation_lock(seller_id, prefix):
            try:
                return op()
            except Exception:
                # Never leave half-written allocations in the session
                db.session.rollback()
                raise

    return run_with_retry(
        _locked,
        attempts=attempts,
        retry_on=DB_RETRYABLE + (AllocationConflict,),
    )


def allocate_codes(
    seller_id: int,
    prefix: str,
    count: int,
    *,
    before_commit=None,
) -> list[QRCode]:
    """
    Full read-allocate-write sequence for `count` new codes, committed.

    before_commit(rows, plan) runs inside the same transaction, after the
    rows are flushed; use it for writes that must land with the codes.

    Raises:
        ValidationError: bad prefix or count
        AllocationConflict: still colliding after the retry budget
    """
    prefix = normalize_prefix(prefix)
    count = require_positive_int(count, "count", maximum=MAX_CODES_PER_REQUEST)

    def _op() -> list[QRCode]:
        plan = plan_allocation(seller_id, prefix, count)
        rows = commit_allocation(plan)
        if before_commit is not None:
            before_commit(rows, plan)
        commit_or_conflict(plan)
        return rows

    return allocate_with_retry(seller_id, prefix, _op)


def _configured_attempts() -> int:
    if has_app_context():
        return int(current_app.config.get("ALLOCATION_RETRY_ATTEMPTS", DEFAULT_ALLOCATION_ATTEMPTS))
    return DEFAULT_ALLOCATION_ATTEMPTS


__all__ = [
    "AllocationConflict",
    "AllocationPlan",
    "allocate_codes",
    "allocate_with_retry",
    "collect_used_numbers",
    "commit_allocation",
    "commit_or_conflict",
    "format_code",
    "next_number",
    "parse_code_number",
    "plan_allocation",
]
