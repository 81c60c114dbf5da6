# Overview: Service-layer operations for driver pickups; encapsulates business logic and database work.

"""
Driver Pickup Batching

A pickup groups cycles the driver should collect in one trip.

    create_pickup:    dirty / long on_test cycles -> waiting_driver
    complete_pickup:  waiting_driver -> completed, codes freed

BATCH SEMANTICS:
- atomic=True (default): every id is validated before anything changes;
  one bad id rejects the whole batch and nothing is written
- atomic=False: ids are validated one by one; the valid ones are applied
  and committed, and PartialBatchFailure reports the rest

A pickup is closed (status=completed) once every cycle on it is completed.
Items carry a picked_up checkbox the driver ticks during the route; it does
not move cycles by itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from ..extensions import db
from ..models import Cycle, DriverPickup, DriverPickupItem
from ..models.cycles import (
    CYCLE_STATUS_COMPLETED,
    CYCLE_STATUS_DIRTY,
    CYCLE_STATUS_ON_TEST,
    CYCLE_STATUS_WAITING_DRIVER,
)
from ..models.pickups import (
    PICKUP_STATUS_COMPLETED,
    PICKUP_STATUS_IN_PROGRESS,
    PICKUP_STATUS_PENDING,
    PICKUP_STATUSES,
)
from ..validation import NotFoundError, ValidationError, require_id_list
from matcycle.time_utils import to_naive_utc, utcnow
from .code_service import PreconditionFailed
from .concurrency import lock_for_update, run_with_retry
from .cycle_service import (
    InvalidTransition,
    check_transition,
    close_finished_pickups,
    confirm_driver_pickup_of,
    open_pickup_items,
    transition_to_waiting_driver,
)


@dataclass
class PickupCompletion:
    """Per-item outcome of a complete_pickup batch."""
    completed: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)
    closed_pickups: list[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict:
        return {
            "completed": list(self.completed),
            "failed": [{"cycle_id": cid, "error": msg} for cid, msg in self.failed.items()],
            "closed_pickups": list(self.closed_pickups),
        }


class PartialBatchFailure(Exception):
    """Some items of a non-atomic batch failed; the rest were applied."""

    def __init__(self, result: PickupCompletion):
        super().__init__(
            f"{len(result.failed)} of {len(result.completed) + len(result.failed)} items failed"
        )
        self.result = result


def get_pickup(pickup_id: int) -> DriverPickup:
    pickup = db.session.get(DriverPickup, pickup_id)
    if pickup is None:
        raise NotFoundError(f"Driver pickup {pickup_id} not found")
    return pickup


def list_pickups(*, status: str | None = None, limit: int = 200) -> list[DriverPickup]:
    q = db.session.query(DriverPickup)
    if status is not None:
        if status not in PICKUP_STATUSES:
            raise ValidationError(
                f"Invalid status '{status}'. Must be one of: {', '.join(PICKUP_STATUSES)}"
            )
        q = q.filter(DriverPickup.status == status)
    return q.order_by(DriverPickup.created_at.desc(), DriverPickup.id.desc()).limit(limit).all()


def _locked_cycles(cycle_ids: list[int]) -> list[Cycle]:
    cycles = (
        lock_for_update(db.session.query(Cycle).filter(Cycle.id.in_(cycle_ids)))
        .all()
    )
    by_id = {c.id: c for c in cycles}
    missing = [cid for cid in cycle_ids if cid not in by_id]
    if missing:
        raise NotFoundError(f"Cycles not found: {missing}")
    return [by_id[cid] for cid in cycle_ids]


def create_pickup(
    cycle_ids,
    *,
    notes: str | None = None,
    created_by: str | None = None,
    scheduled_date: datetime | None = None,
    assigned_driver: str | None = None,
) -> DriverPickup:
    """
    Queue cycles for a driver (-> waiting_driver).

    Every cycle must be dirty or long on test. All ids are checked before
    the pickup row is written.

    Raises:
        ValidationError: empty list or duplicate ids
        NotFoundError: unknown cycle id
        InvalidTransition: a cycle is not eligible
    """
    ids = require_id_list(cycle_ids, "cycle_ids")

    def _op() -> DriverPickup:
        now = utcnow()
        cycles = _locked_cycles(ids)
        for cycle in cycles:
            check_transition(
                cycle,
                CYCLE_STATUS_WAITING_DRIVER,
                allowed_from=(CYCLE_STATUS_DIRTY, CYCLE_STATUS_ON_TEST),
                now=now,
            )

        pickup = DriverPickup(
            status=PICKUP_STATUS_PENDING,
            notes=notes,
            scheduled_date=to_naive_utc(scheduled_date),
            assigned_driver=assigned_driver,
            created_by=created_by,
        )
        db.session.add(pickup)
        db.session.flush()

        for cycle in cycles:
            db.session.add(DriverPickupItem(pickup_id=pickup.id, cycle_id=cycle.id))
            transition_to_waiting_driver(cycle, performed_by=created_by, now=now, pickup_id=pickup.id)

        db.session.commit()
        return pickup

    return _run(_op)


def complete_pickup(cycle_ids, *, performed_by: str | None = None, atomic: bool = True) -> PickupCompletion:
    """
    Driver collected the mats: waiting_driver -> completed, codes freed.

    Raises:
        ValidationError: empty list or duplicate ids
        NotFoundError: unknown cycle id (atomic mode)
        InvalidTransition: a cycle is not waiting for the driver (atomic mode)
        PartialBatchFailure: some items failed (non-atomic mode); the
            successful ones are committed
    """
    ids = require_id_list(cycle_ids, "cycle_ids")

    def _op() -> PickupCompletion:
        now = utcnow()
        result = PickupCompletion()

        if atomic:
            cycles = _locked_cycles(ids)
            for cycle in cycles:
                check_transition(
                    cycle,
                    CYCLE_STATUS_COMPLETED,
                    allowed_from=(CYCLE_STATUS_WAITING_DRIVER,),
                    now=now,
                )
        else:
            found = {
                c.id: c for c in
                lock_for_update(db.session.query(Cycle).filter(Cycle.id.in_(ids))).all()
            }
            cycles = []
            for cid in ids:
                cycle = found.get(cid)
                if cycle is None:
                    result.failed[cid] = f"Cycle {cid} not found"
                    continue
                try:
                    check_transition(
                        cycle,
                        CYCLE_STATUS_COMPLETED,
                        allowed_from=(CYCLE_STATUS_WAITING_DRIVER,),
                        now=now,
                    )
                except InvalidTransition as exc:
                    result.failed[cid] = str(exc)
                    continue
                cycles.append(cycle)

        for cycle in cycles:
            confirm_driver_pickup_of(cycle, performed_by=performed_by, now=now)
            result.completed.append(cycle.id)

        db.session.flush()
        result.closed_pickups = close_finished_pickups(open_pickup_items(result.completed), now)
        db.session.commit()
        return result

    result = _run(_op)
    if result.failed:
        raise PartialBatchFailure(result)
    return result


def complete_pickup_by_id(pickup_id: int, *, performed_by: str | None = None) -> DriverPickup:
    """
    Complete every outstanding cycle on a pickup and close it.

    Cycles already completed are left as they are; any other non-waiting
    cycle rejects the whole pickup.
    """
    def _op() -> DriverPickup:
        now = utcnow()
        pickup = lock_for_update(db.session.query(DriverPickup).filter_by(id=pickup_id)).first()
        if pickup is None:
            raise NotFoundError(f"Driver pickup {pickup_id} not found")
        if pickup.status == PICKUP_STATUS_COMPLETED:
            raise InvalidTransition(f"Driver pickup {pickup_id} is already completed")

        outstanding = [i.cycle for i in pickup.items if i.cycle.status != CYCLE_STATUS_COMPLETED]
        for cycle in outstanding:
            check_transition(
                cycle,
                CYCLE_STATUS_COMPLETED,
                allowed_from=(CYCLE_STATUS_WAITING_DRIVER,),
                now=now,
            )
        for cycle in outstanding:
            confirm_driver_pickup_of(cycle, performed_by=performed_by, now=now)

        db.session.flush()
        close_finished_pickups(list(pickup.items), now)
        if pickup.status != PICKUP_STATUS_COMPLETED:
            # empty pickup
            pickup.status = PICKUP_STATUS_COMPLETED
            pickup.completed_at = now
        db.session.commit()
        return pickup

    return _run(_op)


def mark_item_picked_up(item_id: int, picked_up: bool = True, *, notes: str | None = None) -> DriverPickupItem:
    """Tick (or untick) an item on the driver's list; cycles are not touched."""
    if not isinstance(picked_up, bool):
        raise ValidationError("picked_up must be a boolean")

    item = db.session.get(DriverPickupItem, item_id)
    if item is None:
        raise NotFoundError(f"Driver pickup item {item_id} not found")
    if item.pickup.status == PICKUP_STATUS_COMPLETED:
        raise PreconditionFailed(f"Driver pickup {item.pickup_id} is already completed")

    item.picked_up = picked_up
    item.picked_up_at = utcnow() if picked_up else None
    item.notes = notes
    if picked_up and item.pickup.status == PICKUP_STATUS_PENDING:
        item.pickup.status = PICKUP_STATUS_IN_PROGRESS

    db.session.commit()
    return item


def update_pickup_status(pickup_id: int, status: str) -> DriverPickup:
    """
    Move a pickup forward (pending -> in_progress -> completed).

    Completing here goes through complete_pickup_by_id so cycles are closed too.
    """
    if status not in PICKUP_STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'. Must be one of: {', '.join(PICKUP_STATUSES)}"
        )

    pickup = get_pickup(pickup_id)
    current = PICKUP_STATUSES.index(pickup.status)
    target = PICKUP_STATUSES.index(status)
    if target < current:
        raise InvalidTransition(
            f"Cannot move driver pickup {pickup_id} from '{pickup.status}' back to '{status}'"
        )
    if target == current:
        return pickup

    if status == PICKUP_STATUS_COMPLETED:
        return complete_pickup_by_id(pickup_id)

    pickup.status = status
    db.session.commit()
    return pickup


def _run(op):
    def _guarded():
        try:
            return op()
        except (InvalidTransition, ValidationError, NotFoundError):
            db.session.rollback()
            raise

    return run_with_retry(_guarded)
