from __future__ import annotations

from ..extensions import db
from matcycle.time_utils import to_utc_z


class Seller(db.Model):
    """
    A salesperson who owns QR codes and places mats on test.

    PREFIX: 2-4 upper-case letters namespacing the seller's code numbers
    (e.g. RIS -> RIS-001). Nullable until an operator registers one;
    shipment approval and code generation require it.

    RANGE: range_start/range_end cache the min/max number ever assigned
    under the prefix. Derived data, recomputed on sync and never read by
    the allocator.
    """
    __tablename__ = "sellers"
    __table_args__ = (
        db.UniqueConstraint("prefix", name="uq_sellers_prefix"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    prefix = db.Column(db.String(4), nullable=True)

    range_start = db.Column(db.Integer, nullable=True)
    range_end = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Seller id={self.id} prefix={self.prefix!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "prefix": self.prefix,
            "range_start": self.range_start,
            "range_end": self.range_end,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class MatType(db.Model):
    __tablename__ = "mat_types"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
        }
