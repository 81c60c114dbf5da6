from __future__ import annotations

from ..extensions import db
from matcycle.time_utils import to_utc_z


PICKUP_STATUS_PENDING = "pending"
PICKUP_STATUS_IN_PROGRESS = "in_progress"
PICKUP_STATUS_COMPLETED = "completed"
PICKUP_STATUSES = (PICKUP_STATUS_PENDING, PICKUP_STATUS_IN_PROGRESS, PICKUP_STATUS_COMPLETED)


class DriverPickup(db.Model):
    """
    A batch of cycles queued for physical collection by a driver.

    STATE MACHINE:
        pending -> in_progress -> completed

    A pickup completes once every item is picked up.
    """
    __tablename__ = "driver_pickups"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String(16), nullable=False, default=PICKUP_STATUS_PENDING, index=True)
    notes = db.Column(db.Text, nullable=True)
    scheduled_date = db.Column(db.DateTime(timezone=True), nullable=True)
    assigned_driver = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    items = db.relationship(
        "DriverPickupItem",
        backref="pickup",
        lazy=True,
        order_by="DriverPickupItem.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "notes": self.notes,
            "scheduled_date": to_utc_z(self.scheduled_date),
            "assigned_driver": self.assigned_driver,
            "created_by": self.created_by,
            "completed_at": to_utc_z(self.completed_at),
            "created_at": to_utc_z(self.created_at),
            "items": [item.to_dict() for item in self.items],
        }


class DriverPickupItem(db.Model):
    __tablename__ = "driver_pickup_items"
    __table_args__ = (
        db.UniqueConstraint("pickup_id", "cycle_id", name="uq_pickup_items_pickup_cycle"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pickup_id = db.Column(db.Integer, db.ForeignKey("driver_pickups.id"), nullable=False, index=True)
    cycle_id = db.Column(db.Integer, db.ForeignKey("cycles.id"), nullable=False, index=True)
    picked_up = db.Column(db.Boolean, nullable=False, default=False)
    picked_up_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    cycle = db.relationship("Cycle")

    def to_dict(self) -> dict:
        cycle = self.cycle
        return {
            "id": self.id,
            "pickup_id": self.pickup_id,
            "cycle_id": self.cycle_id,
            "qr_code": cycle.qr_code.code if cycle and cycle.qr_code else None,
            "picked_up": self.picked_up,
            "picked_up_at": to_utc_z(self.picked_up_at),
            "notes": self.notes,
        }
