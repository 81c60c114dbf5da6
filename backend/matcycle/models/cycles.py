from __future__ import annotations

from ..extensions import db
from matcycle.time_utils import to_utc_z


CYCLE_STATUS_ON_TEST = "on_test"
CYCLE_STATUS_DIRTY = "dirty"
CYCLE_STATUS_WAITING_DRIVER = "waiting_driver"
CYCLE_STATUS_COMPLETED = "completed"
CYCLE_STATUSES = {
    CYCLE_STATUS_ON_TEST,
    CYCLE_STATUS_DIRTY,
    CYCLE_STATUS_WAITING_DRIVER,
    CYCLE_STATUS_COMPLETED,
}


class Cycle(db.Model):
    """
    One rental/test lifespan of a physical mat bound to a QR code.

    At most one non-completed cycle references a QR code at any time
    (the "active cycle"). Completion frees the code back to available.

    company_id / contact_id point at CRM records owned by an upstream
    service; they are stored as opaque references.
    """
    __tablename__ = "cycles"
    __table_args__ = (
        db.Index("ix_cycles_qr_status", "qr_code_id", "status"),
        db.Index("ix_cycles_salesperson_status", "salesperson_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    qr_code_id = db.Column(db.Integer, db.ForeignKey("qr_codes.id"), nullable=False, index=True)
    mat_type_id = db.Column(db.Integer, db.ForeignKey("mat_types.id"), nullable=True, index=True)
    salesperson_id = db.Column(db.Integer, db.ForeignKey("sellers.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=CYCLE_STATUS_ON_TEST, index=True)

    company_id = db.Column(db.String(64), nullable=True)
    contact_id = db.Column(db.String(64), nullable=True)

    test_start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    test_end_date = db.Column(db.DateTime(timezone=True), nullable=True)
    pickup_requested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    driver_pickup_at = db.Column(db.DateTime(timezone=True), nullable=True)

    contract_signed = db.Column(db.Boolean, nullable=False, default=False)
    contract_signed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    contract_frequency = db.Column(db.String(32), nullable=True)

    extensions_count = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    qr_code = db.relationship("QRCode", backref=db.backref("cycles", lazy=True))
    mat_type = db.relationship("MatType")
    salesperson = db.relationship("Seller", backref=db.backref("cycles", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Cycle id={self.id} qr_code_id={self.qr_code_id} status={self.status}>"

    @property
    def is_active(self) -> bool:
        return self.status != CYCLE_STATUS_COMPLETED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "qr_code_id": self.qr_code_id,
            "qr_code": self.qr_code.code if self.qr_code else None,
            "mat_type": self.mat_type.code if self.mat_type else None,
            "salesperson_id": self.salesperson_id,
            "status": self.status,
            "company_id": self.company_id,
            "contact_id": self.contact_id,
            "test_start_date": to_utc_z(self.test_start_date),
            "test_end_date": to_utc_z(self.test_end_date),
            "pickup_requested_at": to_utc_z(self.pickup_requested_at),
            "driver_pickup_at": to_utc_z(self.driver_pickup_at),
            "contract_signed": self.contract_signed,
            "contract_signed_at": to_utc_z(self.contract_signed_at),
            "contract_frequency": self.contract_frequency,
            "extensions_count": self.extensions_count,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CycleHistory(db.Model):
    """Append-only audit trail of cycle transitions."""
    __tablename__ = "cycle_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cycle_id = db.Column(db.Integer, db.ForeignKey("cycles.id"), nullable=False, index=True)
    action = db.Column(db.String(64), nullable=False)
    old_status = db.Column(db.String(16), nullable=True)
    new_status = db.Column(db.String(16), nullable=False)
    performed_by = db.Column(db.String(64), nullable=True)
    # "metadata" is reserved on declarative classes
    details = db.Column("metadata", db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cycle = db.relationship(
        "Cycle",
        backref=db.backref("history", lazy=True, order_by="CycleHistory.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cycle_id": self.cycle_id,
            "action": self.action,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "performed_by": self.performed_by,
            "metadata": self.details or {},
            "created_at": to_utc_z(self.created_at),
        }
