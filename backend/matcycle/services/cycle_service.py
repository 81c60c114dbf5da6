# Overview: Service-layer operations for mat cycles; encapsulates business logic and database work.

"""
Mat Cycle Lifecycle Service

================================================================================
PURPOSE: govern one mat's rental/test lifespan on a QR code
================================================================================

STATE MACHINE:
    (code available) --scan--> ON_TEST
    ON_TEST        --extend test / set test start / sign contract--> ON_TEST
    ON_TEST        --mark dirty-->                  DIRTY
    DIRTY          --request pickup-->              WAITING_DRIVER
    ON_TEST (long) --request pickup-->              WAITING_DRIVER
    WAITING_DRIVER --driver confirms-->             COMPLETED
    DIRTY, ON_TEST --self-delivery-->               COMPLETED

RULES:
1. At most one non-completed cycle per QR code
2. COMPLETED is terminal; nothing mutates it further
3. Completion is the only place a code returns to 'available'
   (and last_reset_at is stamped)
4. A transition requested from the wrong source state raises
   InvalidTransition; it is never coerced or silently skipped
5. Every transition appends a CycleHistory row

"LONG ON TEST" is a read-time classification, not a state: an on_test cycle
without a signed contract is a warning at >= 20 days and critical at >= 25.
Only long-on-test cycles may skip DIRTY and go straight to WAITING_DRIVER.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app, has_app_context
from sqlalchemy import func

from ..extensions import db
from ..models import Cycle, CycleHistory, DriverPickup, DriverPickupItem, MatType, QRCode, Seller
from ..models.codes import (
    CODE_STATE_MATERIALIZED,
    CODE_STATE_RESERVED,
    CODE_STATUS_ACTIVE,
    CODE_STATUS_AVAILABLE,
    CODE_STATUS_PENDING,
)
from ..models.cycles import (
    CYCLE_STATUS_COMPLETED,
    CYCLE_STATUS_DIRTY,
    CYCLE_STATUS_ON_TEST,
    CYCLE_STATUS_WAITING_DRIVER,
    CYCLE_STATUSES,
)
from ..models.pickups import PICKUP_STATUS_COMPLETED, PICKUP_STATUS_IN_PROGRESS, PICKUP_STATUS_PENDING
from ..validation import NotFoundError, ValidationError, require_id_list
from matcycle.time_utils import SECONDS_PER_DAY, add_days, to_naive_utc, utcnow, whole_days_between
from .code_service import PreconditionFailed, get_code_by_value
from .concurrency import lock_for_update, run_with_retry


TEST_PERIOD_DAYS = 7
LONG_TEST_WARNING_DAYS = 20
LONG_TEST_CRITICAL_DAYS = 25

LEVEL_WARNING = "warning"
LEVEL_CRITICAL = "critical"

SELF_DELIVERY_NOTE = "Self delivery"

# Ordinary transitions. on_test -> waiting_driver is additionally allowed
# for long-on-test cycles (see can_transition).
ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    CYCLE_STATUS_ON_TEST: frozenset({CYCLE_STATUS_ON_TEST, CYCLE_STATUS_DIRTY, CYCLE_STATUS_COMPLETED}),
    CYCLE_STATUS_DIRTY: frozenset({CYCLE_STATUS_WAITING_DRIVER, CYCLE_STATUS_COMPLETED}),
    CYCLE_STATUS_WAITING_DRIVER: frozenset({CYCLE_STATUS_COMPLETED}),
    CYCLE_STATUS_COMPLETED: frozenset(),
}


class InvalidTransition(ValueError):
    """
    Raised when a cycle (or request) operation targets an incompatible state.

    A domain error: the caller asked for something the state machine forbids.
    """


@dataclass(frozen=True)
class TimeRemaining:
    """Countdown to the end of the test window."""
    expired: bool
    days: int
    hours: int
    minutes: int

    def to_dict(self) -> dict:
        return {
            "expired": self.expired,
            "days": self.days,
            "hours": self.hours,
            "minutes": self.minutes,
        }


def _setting(key: str, default: int) -> int:
    if has_app_context():
        return int(current_app.config.get(key, default))
    return default


def configured_test_period() -> int:
    return _setting("TEST_PERIOD_DAYS", TEST_PERIOD_DAYS)


def warning_days() -> int:
    return _setting("LONG_TEST_WARNING_DAYS", LONG_TEST_WARNING_DAYS)


def critical_days() -> int:
    return _setting("LONG_TEST_CRITICAL_DAYS", LONG_TEST_CRITICAL_DAYS)


def validate_status(status: str) -> None:
    if status not in CYCLE_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(CYCLE_STATUSES))}"
        )


# =============================================================================
# Read-time classification
# =============================================================================

def days_on_test(cycle: Cycle, now: datetime | None = None) -> int:
    now = now or utcnow()
    return max(0, whole_days_between(cycle.test_start_date, now))


def long_test_level(cycle: Cycle, now: datetime | None = None) -> str | None:
    """None, 'warning' (>= 20 days) or 'critical' (>= 25 days)."""
    if cycle.status != CYCLE_STATUS_ON_TEST or cycle.contract_signed:
        return None
    days = days_on_test(cycle, now)
    if days >= critical_days():
        return LEVEL_CRITICAL
    if days >= warning_days():
        return LEVEL_WARNING
    return None


def is_long_on_test(cycle: Cycle, now: datetime | None = None) -> bool:
    return long_test_level(cycle, now) is not None


def time_remaining(cycle: Cycle, now: datetime | None = None) -> TimeRemaining:
    """Time left in the test window (test_start_date + TEST_PERIOD_DAYS)."""
    now = to_naive_utc(now or utcnow())
    end = add_days(to_naive_utc(cycle.test_start_date), configured_test_period())
    diff = int((end - now).total_seconds())

    if diff < 0:
        overdue = -diff
        return TimeRemaining(
            expired=True,
            days=overdue // SECONDS_PER_DAY,
            hours=(overdue % SECONDS_PER_DAY) // 3600,
            minutes=0,
        )
    return TimeRemaining(
        expired=False,
        days=diff // SECONDS_PER_DAY,
        hours=(diff % SECONDS_PER_DAY) // 3600,
        minutes=(diff % 3600) // 60,
    )


def can_transition(cycle: Cycle, to_status: str, now: datetime | None = None) -> bool:
    validate_status(to_status)
    if to_status in ALLOWED_TRANSITIONS[cycle.status]:
        return True
    return (
        cycle.status == CYCLE_STATUS_ON_TEST
        and to_status == CYCLE_STATUS_WAITING_DRIVER
        and is_long_on_test(cycle, now)
    )


def check_transition(
    cycle: Cycle,
    to_status: str,
    *,
    allowed_from: tuple[str, ...],
    now: datetime | None = None,
) -> None:
    """Raise InvalidTransition unless cycle is in allowed_from and may move to to_status."""
    if cycle.status not in allowed_from or not can_transition(cycle, to_status, now):
        raise InvalidTransition(
            f"Cannot move cycle {cycle.id} to '{to_status}': "
            f"current status is '{cycle.status}', must be one of: {', '.join(allowed_from)}"
        )


# =============================================================================
# Queries
# =============================================================================

def get_cycle(cycle_id: int) -> Cycle:
    cycle = db.session.get(Cycle, cycle_id)
    if cycle is None:
        raise NotFoundError(f"Cycle {cycle_id} not found")
    return cycle


def _locked_cycle(cycle_id: int) -> Cycle:
    cycle = lock_for_update(db.session.query(Cycle).filter_by(id=cycle_id)).first()
    if cycle is None:
        raise NotFoundError(f"Cycle {cycle_id} not found")
    return cycle


def get_active_cycle(qr_code_id: int) -> Cycle | None:
    return db.session.query(Cycle).filter(
        Cycle.qr_code_id == qr_code_id,
        Cycle.status != CYCLE_STATUS_COMPLETED,
    ).first()


def list_cycles(
    *,
    salesperson_id: int | None = None,
    status: str | None = None,
    include_completed: bool = False,
    limit: int = 200,
) -> list[Cycle]:
    q = db.session.query(Cycle)
    if salesperson_id is not None:
        q = q.filter(Cycle.salesperson_id == salesperson_id)
    if status is not None:
        validate_status(status)
        q = q.filter(Cycle.status == status)
    elif not include_completed:
        q = q.filter(Cycle.status != CYCLE_STATUS_COMPLETED)
    return q.order_by(Cycle.created_at.desc(), Cycle.id.desc()).limit(limit).all()


def list_long_on_test(
    *,
    salesperson_id: int | None = None,
    now: datetime | None = None,
) -> list[dict]:
    """
    On-test cycles flagged for operator attention, longest first.

    Each entry: {"cycle": Cycle, "days_on_test": int, "level": str}.
    Contract-signed cycles never appear, whatever their age.
    """
    now = now or utcnow()
    q = db.session.query(Cycle).filter(
        Cycle.status == CYCLE_STATUS_ON_TEST,
        Cycle.contract_signed.is_(False),
    )
    if salesperson_id is not None:
        q = q.filter(Cycle.salesperson_id == salesperson_id)

    flagged = []
    for cycle in q.order_by(Cycle.test_start_date.asc(), Cycle.id.asc()):
        level = long_test_level(cycle, now)
        if level:
            flagged.append({"cycle": cycle, "days_on_test": days_on_test(cycle, now), "level": level})
    return flagged


def get_cycle_history(cycle_id: int) -> list[CycleHistory]:
    get_cycle(cycle_id)
    return (
        db.session.query(CycleHistory)
        .filter_by(cycle_id=cycle_id)
        .order_by(CycleHistory.id)
        .all()
    )


def inventory_by_seller() -> dict:
    """
    Mats out in the field per active seller, counted by cycle status.

    Sellers without open cycles are listed with zero counts. Returns
    {"sellers": [...], "totals": {...}}; completed cycles are not counted.
    """
    counted = (CYCLE_STATUS_ON_TEST, CYCLE_STATUS_DIRTY, CYCLE_STATUS_WAITING_DRIVER)

    rows = (
        db.session.query(Cycle.salesperson_id, Cycle.status, func.count(Cycle.id))
        .filter(Cycle.status != CYCLE_STATUS_COMPLETED)
        .group_by(Cycle.salesperson_id, Cycle.status)
        .all()
    )
    counts: dict[int, dict[str, int]] = {}
    for seller_id, status, n in rows:
        counts.setdefault(seller_id, {})[status] = n

    sellers = []
    totals = {status: 0 for status in counted}
    totals["total"] = 0
    for seller in db.session.query(Seller).filter(Seller.is_active.is_(True)).order_by(Seller.name, Seller.id):
        by_status = counts.get(seller.id, {})
        entry = {"seller_id": seller.id, "name": seller.name, "prefix": seller.prefix}
        for status in counted:
            entry[status] = by_status.get(status, 0)
            totals[status] += entry[status]
        entry["total"] = sum(entry[status] for status in counted)
        totals["total"] += entry["total"]
        sellers.append(entry)

    return {"sellers": sellers, "totals": totals}


# =============================================================================
# Transition primitives (no commit; callers own the transaction)
# =============================================================================

def record_history(
    cycle: Cycle,
    action: str,
    *,
    old_status: str | None,
    performed_by: str | None,
    details: dict | None = None,
) -> CycleHistory:
    entry = CycleHistory(
        cycle_id=cycle.id,
        action=action,
        old_status=old_status,
        new_status=cycle.status,
        performed_by=performed_by,
        details=details or {},
    )
    db.session.add(entry)
    return entry


def transition_to_waiting_driver(
    cycle: Cycle,
    *,
    performed_by: str | None = None,
    now: datetime | None = None,
    pickup_id: int | None = None,
) -> Cycle:
    """dirty (or long on_test) -> waiting_driver."""
    now = now or utcnow()
    check_transition(
        cycle,
        CYCLE_STATUS_WAITING_DRIVER,
        allowed_from=(CYCLE_STATUS_DIRTY, CYCLE_STATUS_ON_TEST),
        now=now,
    )
    old = cycle.status
    cycle.status = CYCLE_STATUS_WAITING_DRIVER
    cycle.pickup_requested_at = now
    record_history(
        cycle,
        "pickup_requested",
        old_status=old,
        performed_by=performed_by,
        details={"pickup_id": pickup_id} if pickup_id is not None else None,
    )
    return cycle


def complete_cycle(
    cycle: Cycle,
    *,
    action: str,
    performed_by: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Cycle:
    """
    Terminate a cycle and free its code.

    The single point where a QR code goes back to 'available'.
    """
    now = now or utcnow()
    old = cycle.status
    cycle.status = CYCLE_STATUS_COMPLETED
    cycle.driver_pickup_at = now
    if notes:
        cycle.notes = notes

    code = cycle.qr_code
    code.status = CODE_STATUS_AVAILABLE
    code.last_reset_at = now

    record_history(cycle, action, old_status=old, performed_by=performed_by)
    return cycle


def confirm_driver_pickup_of(
    cycle: Cycle,
    *,
    performed_by: str | None = None,
    now: datetime | None = None,
) -> Cycle:
    """waiting_driver -> completed (no commit)."""
    check_transition(
        cycle,
        CYCLE_STATUS_COMPLETED,
        allowed_from=(CYCLE_STATUS_WAITING_DRIVER,),
        now=now,
    )
    return complete_cycle(cycle, action="driver_pickup", performed_by=performed_by, now=now)


def open_pickup_items(cycle_ids: list[int]) -> list[DriverPickupItem]:
    """Items of still-open pickups that carry any of the given cycles."""
    if not cycle_ids:
        return []
    return (
        db.session.query(DriverPickupItem)
        .join(DriverPickup, DriverPickupItem.pickup_id == DriverPickup.id)
        .filter(
            DriverPickupItem.cycle_id.in_(cycle_ids),
            DriverPickup.status != PICKUP_STATUS_COMPLETED,
        )
        .all()
    )


def close_finished_pickups(items: list[DriverPickupItem], now: datetime) -> list[int]:
    """
    Tick the given items and close every touched pickup whose cycles are
    all completed (no commit). Returns the ids of the closed pickups.
    """
    touched: dict[int, DriverPickup] = {}
    for item in items:
        if not item.picked_up:
            item.picked_up = True
            item.picked_up_at = now
        touched[item.pickup_id] = item.pickup

    closed = []
    for pickup_id, pickup in sorted(touched.items()):
        if all(i.cycle.status == CYCLE_STATUS_COMPLETED for i in pickup.items):
            pickup.status = PICKUP_STATUS_COMPLETED
            pickup.completed_at = now
            closed.append(pickup_id)
        elif pickup.status == PICKUP_STATUS_PENDING:
            pickup.status = PICKUP_STATUS_IN_PROGRESS
    return closed


# =============================================================================
# Operations
# =============================================================================

def scan_code(
    code_value: str,
    *,
    salesperson_id: int,
    mat_type_code: str,
    company_id: str | None = None,
    contact_id: str | None = None,
    notes: str | None = None,
    test_start_date: datetime | None = None,
    performed_by: str | None = None,
) -> Cycle:
    """
    Scan a free code and put the mat on test (code -> active).

    A reserved code from an approved shipment is materialized here.

    Raises:
        NotFoundError: unknown code
        ValidationError: unknown mat type
        PreconditionFailed: code belongs to another seller
        InvalidTransition: code already has an active cycle, or is not free
    """
    if not mat_type_code or not str(mat_type_code).strip():
        raise ValidationError("mat_type_code is required")
    mat_code = str(mat_type_code).strip().upper()

    def _op() -> Cycle:
        found = get_code_by_value(code_value)
        code = lock_for_update(db.session.query(QRCode).filter_by(id=found.id)).first()

        if code.owner_id != salesperson_id:
            raise PreconditionFailed(f"QR code {code.code} does not belong to seller {salesperson_id}")

        if get_active_cycle(code.id) is not None:
            raise InvalidTransition(f"QR code {code.code} already has an active cycle")

        reserved = code.state == CODE_STATE_RESERVED
        free = code.status == CODE_STATUS_AVAILABLE or (reserved and code.status == CODE_STATUS_PENDING)
        if not free:
            raise InvalidTransition(f"QR code {code.code} is not available (status '{code.status}')")

        mat_type = db.session.query(MatType).filter_by(code=mat_code, is_active=True).first()
        if mat_type is None:
            raise ValidationError(f"Unknown mat type code: {mat_code}")

        cycle = Cycle(
            qr_code_id=code.id,
            mat_type_id=mat_type.id,
            salesperson_id=salesperson_id,
            status=CYCLE_STATUS_ON_TEST,
            company_id=company_id,
            contact_id=contact_id,
            notes=notes,
            test_start_date=to_naive_utc(test_start_date) or utcnow(),
        )
        db.session.add(cycle)

        code.state = CODE_STATE_MATERIALIZED
        code.status = CODE_STATUS_ACTIVE
        db.session.flush()

        record_history(
            cycle,
            "created",
            old_status=None,
            performed_by=performed_by,
            details={"mat_type": mat_code, "materialized": reserved},
        )
        db.session.commit()
        return cycle

    return _run(_op)


def extend_test(cycle_id: int, *, performed_by: str | None = None) -> Cycle:
    """Push test_start_date forward by one test period; status stays on_test."""
    def _op() -> Cycle:
        cycle = _locked_cycle(cycle_id)
        check_transition(cycle, CYCLE_STATUS_ON_TEST, allowed_from=(CYCLE_STATUS_ON_TEST,))

        period = configured_test_period()
        cycle.test_start_date = add_days(to_naive_utc(cycle.test_start_date), period)
        cycle.extensions_count = (cycle.extensions_count or 0) + 1
        record_history(
            cycle,
            "test_extended",
            old_status=CYCLE_STATUS_ON_TEST,
            performed_by=performed_by,
            details={
                "extensions_count": cycle.extensions_count,
                "new_end_date": add_days(cycle.test_start_date, period).isoformat(),
            },
        )
        db.session.commit()
        return cycle

    return _run(_op)


def set_test_start_date(
    cycle_id: int,
    when: datetime,
    *,
    performed_by: str | None = None,
) -> Cycle:
    """Correct the test start of an on_test cycle; the test period restarts from it."""
    if not isinstance(when, datetime):
        raise ValidationError("test_start_date must be a datetime")
    new_start = to_naive_utc(when)

    def _op() -> Cycle:
        cycle = _locked_cycle(cycle_id)
        check_transition(cycle, CYCLE_STATUS_ON_TEST, allowed_from=(CYCLE_STATUS_ON_TEST,))

        old_start = to_naive_utc(cycle.test_start_date)
        cycle.test_start_date = new_start
        record_history(
            cycle,
            "test_start_changed",
            old_status=CYCLE_STATUS_ON_TEST,
            performed_by=performed_by,
            details={
                "old_test_start_date": old_start.isoformat() if old_start else None,
                "new_test_start_date": new_start.isoformat(),
            },
        )
        db.session.commit()
        return cycle

    return _run(_op)


def mark_dirty(cycle_id: int, *, performed_by: str | None = None) -> Cycle:
    def _op() -> Cycle:
        cycle = _locked_cycle(cycle_id)
        check_transition(cycle, CYCLE_STATUS_DIRTY, allowed_from=(CYCLE_STATUS_ON_TEST,))

        cycle.status = CYCLE_STATUS_DIRTY
        cycle.test_end_date = utcnow()
        record_history(cycle, "marked_dirty", old_status=CYCLE_STATUS_ON_TEST, performed_by=performed_by)
        db.session.commit()
        return cycle

    return _run(_op)


def sign_contract(
    cycle_id: int,
    *,
    frequency: str | None = None,
    performed_by: str | None = None,
) -> Cycle:
    """Record a signed contract; the cycle stays on_test and leaves the long-test lists."""
    def _op() -> Cycle:
        cycle = _locked_cycle(cycle_id)
        check_transition(cycle, CYCLE_STATUS_ON_TEST, allowed_from=(CYCLE_STATUS_ON_TEST,))

        cycle.contract_signed = True
        cycle.contract_signed_at = utcnow()
        cycle.contract_frequency = frequency or cycle.contract_frequency
        record_history(
            cycle,
            "contract_signed",
            old_status=CYCLE_STATUS_ON_TEST,
            performed_by=performed_by,
            details={"frequency": frequency},
        )
        db.session.commit()
        return cycle

    return _run(_op)


def self_deliver(cycle_ids: list[int], *, performed_by: str | None = None) -> list[Cycle]:
    """
    Seller hands mats back without a driver: dirty/on_test -> completed.

    All ids are checked before anything changes; one bad id rejects the batch.
    """
    ids = require_id_list(cycle_ids, "cycle_ids")

    def _op() -> list[Cycle]:
        cycles = [_locked_cycle(cid) for cid in ids]
        for cycle in cycles:
            check_transition(
                cycle,
                CYCLE_STATUS_COMPLETED,
                allowed_from=(CYCLE_STATUS_DIRTY, CYCLE_STATUS_ON_TEST),
            )

        now = utcnow()
        for cycle in cycles:
            complete_cycle(
                cycle,
                action="self_delivery",
                performed_by=performed_by,
                notes=SELF_DELIVERY_NOTE,
                now=now,
            )
        db.session.commit()
        return cycles

    return _run(_op)


def confirm_driver_pickup(cycle_id: int, *, performed_by: str | None = None) -> Cycle:
    """
    Driver collected the mat: waiting_driver -> completed, code freed.

    The cycle's pickup item is ticked and its pickup closed once every
    cycle on it is completed.
    """
    def _op() -> Cycle:
        cycle = _locked_cycle(cycle_id)
        now = utcnow()
        confirm_driver_pickup_of(cycle, performed_by=performed_by, now=now)
        db.session.flush()
        close_finished_pickups(open_pickup_items([cycle.id]), now)
        db.session.commit()
        return cycle

    return _run(_op)


def _run(op):
    """run_with_retry that also rolls back on domain errors."""
    def _guarded():
        try:
            return op()
        except (InvalidTransition, PreconditionFailed, ValidationError, NotFoundError):
            db.session.rollback()
            raise

    return run_with_retry(_guarded)
