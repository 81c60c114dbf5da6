# Overview: Service-layer operations for the mat type catalog.

from __future__ import annotations

from ..extensions import db
from ..models import MatType
from ..validation import ConflictError, ModelValidationPolicy, ValidationError, validate_payload


MAT_TYPE_POLICY = ModelValidationPolicy(
    writable_fields={"code", "name", "is_active"},
    required_on_create={"code", "name"},
)


def create_mat_type(payload: dict) -> MatType:
    """
    Add a mat type (e.g. MBW2 "Mat 85x150").

    Codes are stored upper-case; shipment quantities are keyed by them.
    """
    patch = validate_payload(model=MatType, payload=payload, policy=MAT_TYPE_POLICY, partial=False)
    code = patch["code"].upper()
    if not code:
        raise ValidationError("code cannot be blank")

    if db.session.query(MatType.id).filter_by(code=code).first():
        raise ConflictError(f"Mat type {code} already exists")

    mat_type = MatType(code=code, name=patch["name"], is_active=patch.get("is_active", True))
    db.session.add(mat_type)
    db.session.commit()
    return mat_type


def list_mat_types(*, include_inactive: bool = False) -> list[MatType]:
    q = db.session.query(MatType)
    if not include_inactive:
        q = q.filter(MatType.is_active.is_(True))
    return q.order_by(MatType.code).all()
