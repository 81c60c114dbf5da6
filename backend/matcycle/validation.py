from __future__ import annotations
import re

from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Seller prefixes namespace QR code numbering: 2-4 letters, stored upper-case
PREFIX_RE = re.compile(r"^[A-Z]{2,4}$")

# Upper bound for a single allocation request (codes per call)
MAX_CODES_PER_REQUEST = 10_000


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., prefix already taken)."""


class NotFoundError(LookupError):
    """404-level: the referenced entity does not exist."""


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion: rejects bools, floats, decimals and
    scientific notation. Plain digit strings are accepted.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def require_positive_int(value: Any, field: str, *, maximum: int | None = None) -> int:
    n = coerce_int(value, field)
    if n <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    if maximum is not None and n > maximum:
        raise ValidationError(f"{field} cannot exceed {maximum}")
    return n


def normalize_prefix(value: Any) -> str:
    """Validate a seller prefix and return its canonical upper-case form."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("Seller has no registered code prefix")
    if not isinstance(value, str):
        raise ValidationError("prefix must be a string")
    prefix = value.strip().upper()
    if not PREFIX_RE.match(prefix):
        raise ValidationError(f"Invalid prefix '{value}': must be 2-4 letters")
    return prefix


def validate_quantities(quantities: Any) -> dict[str, int]:
    """
    Validate a shipment request's quantities mapping (mat-type code -> count).

    Returns a cleaned dict with stripped, upper-cased mat-type codes.
    Existence of the mat types is checked by the caller against the store.
    """
    if not isinstance(quantities, Mapping) or not quantities:
        raise ValidationError("quantities must be a non-empty mapping of mat type code to count")

    cleaned: dict[str, int] = {}
    for raw_code, raw_count in quantities.items():
        if not isinstance(raw_code, str) or not raw_code.strip():
            raise ValidationError("mat type codes must be non-empty strings")
        code = raw_code.strip().upper()
        if code in cleaned:
            raise ValidationError(f"Duplicate mat type code: {code}")
        cleaned[code] = require_positive_int(
            raw_count, f"quantities[{code}]", maximum=MAX_CODES_PER_REQUEST
        )

    if sum(cleaned.values()) > MAX_CODES_PER_REQUEST:
        raise ValidationError(f"A single request cannot exceed {MAX_CODES_PER_REQUEST} codes")
    return cleaned


def require_id_list(values: Any, field: str) -> list[int]:
    """Non-empty list of unique integer ids, order preserved."""
    if not isinstance(values, (list, tuple)) or not values:
        raise ValidationError(f"{field} must be a non-empty list")
    ids = [coerce_int(v, field) for v in values]
    if len(set(ids)) != len(ids):
        raise ValidationError(f"{field} contains duplicate ids")
    return ids


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which columns a client payload may carry for a model.

    writable_fields: columns a client may set
    required_on_create: columns that must be present when partial=False
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    return {c.key: c for c in model.__mapper__.columns}


def _coerce_value(col, value: Any):
    if isinstance(col.type, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    if isinstance(col.type, (String, Text)):
        if not isinstance(value, (str, int)) or isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a string")
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Clean a JSON payload against the model's columns and a policy.

    Only writable fields survive; strings are stripped and checked against
    nullability and String(n) length. Returns the cleaned patch.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in (policy.required_on_create or set()) if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)
    patch: dict = {}

    for key, raw in payload.items():
        if key not in policy.writable_fields or key not in cols:
            raise ValidationError(f"Field not allowed: {key}")
        col = cols[key]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
            continue

        value = _coerce_value(col, raw)
        if isinstance(value, str):
            if value == "" and not col.nullable:
                raise ValidationError(f"{key} cannot be blank")
            length = getattr(col.type, "length", None)
            if length and len(value) > length:
                raise ValidationError(f"{key} exceeds max length {length}")

        patch[key] = value

    return patch
