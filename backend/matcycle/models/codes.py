from __future__ import annotations

from ..extensions import db
from matcycle.time_utils import to_utc_z


CODE_STATUS_AVAILABLE = "available"
CODE_STATUS_PENDING = "pending"
CODE_STATUS_ACTIVE = "active"
CODE_STATUSES = {CODE_STATUS_AVAILABLE, CODE_STATUS_PENDING, CODE_STATUS_ACTIVE}

CODE_STATE_RESERVED = "reserved"
CODE_STATE_MATERIALIZED = "materialized"


class QRCode(db.Model):
    """
    A printed QR code string PREFIX-NNN.

    UNIQUENESS:
    - code is globally unique and never issued twice; deleting a code only
      deactivates the row (is_active=False), so its number stays in use
    - (prefix, number) is unique; a racing allocation that picks the same
      number fails on flush and surfaces as AllocationConflict

    TWO-PHASE STATE:
    - reserved: number handed out by a shipment approval, not yet scanned
      (status=pending)
    - materialized: generated directly (status=available) or scanned at
      least once (status=active while a cycle runs)
    """
    __tablename__ = "qr_codes"
    __table_args__ = (
        db.UniqueConstraint("prefix", "number", name="uq_qr_codes_prefix_number"),
        db.Index("ix_qr_codes_owner_status", "owner_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    prefix = db.Column(db.String(4), nullable=False, index=True)
    number = db.Column(db.Integer, nullable=False)

    owner_id = db.Column(db.Integer, db.ForeignKey("sellers.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=CODE_STATUS_AVAILABLE, index=True)
    state = db.Column(db.String(16), nullable=False, default=CODE_STATE_MATERIALIZED)

    shipment_request_id = db.Column(
        db.Integer, db.ForeignKey("shipment_requests.id"), nullable=True, index=True
    )
    last_reset_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    deactivated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    owner = db.relationship("Seller", backref=db.backref("qr_codes", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<QRCode id={self.id} code={self.code!r} status={self.status}>"

    @property
    def is_reserved(self) -> bool:
        return self.state == CODE_STATE_RESERVED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "prefix": self.prefix,
            "number": self.number,
            "owner_id": self.owner_id,
            "status": self.status,
            "state": self.state,
            "shipment_request_id": self.shipment_request_id,
            "last_reset_at": to_utc_z(self.last_reset_at),
            "is_active": self.is_active,
            "deactivated_at": to_utc_z(self.deactivated_at),
            "created_at": to_utc_z(self.created_at),
        }
