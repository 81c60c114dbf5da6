from __future__ import annotations

from ..extensions import db
from matcycle.time_utils import to_utc_z


REQUEST_STATUS_PENDING = "pending"
REQUEST_STATUS_APPROVED = "approved"


class ShipmentRequest(db.Model):
    """
    A batch reservation of future QR codes for a seller.

    STATE MACHINE:
        pending -> approved (terminal, irreversible)

    quantities maps mat type code -> count. generated_qr_codes is written
    once, on approval, and holds exactly sum(quantities) unique codes.
    """
    __tablename__ = "shipment_requests"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("sellers.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=REQUEST_STATUS_PENDING, index=True)

    quantities = db.Column(db.JSON, nullable=False)
    generated_qr_codes = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    approved_by = db.Column(db.String(64), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    seller = db.relationship("Seller", backref=db.backref("shipment_requests", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def total_quantity(self) -> int:
        return sum((self.quantities or {}).values())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "status": self.status,
            "quantities": dict(self.quantities or {}),
            "total_quantity": self.total_quantity,
            "generated_qr_codes": list(self.generated_qr_codes) if self.generated_qr_codes is not None else None,
            "notes": self.notes,
            "created_by": self.created_by,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "created_at": to_utc_z(self.created_at),
        }
