from __future__ import annotations
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from fleetops.time_utils import parse_iso_datetime, parse_iso_date

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum money value: 9,999,999,999,999,999.99 fits Numeric(18, 2)
MAX_MONEY = Decimal("9999999999999999.99")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate trip code)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = frozenset()


# Trip fields that data entry may set. Status, lifecycle timestamps and actors
# are owned by the trip lifecycle service and never appear here.
TRIP_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "trip_code",
        "departure_date",
        "planned_arrival_date",
        "vehicle_id",
        "driver_id",
        "route_id",
        "customer_id",
        "cargo_description",
        "actual_distance_km",
        "freight_revenue",
        "additional_charges",
        "notes",
    }),
    required_on_create=frozenset({"trip_code", "departure_date"}),
)

EXPENSE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "expense_code",
        "description",
        "amount",
        "expense_date",
        "trip_id",
        "notes",
    }),
    required_on_create=frozenset({"expense_code", "description", "amount", "expense_date"}),
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or "e" in stripped.lower() or "." in stripped:
                raise ValidationError(f"{col.key} must be a plain integer")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        raise ValidationError(f"{col.key} must be an integer")

    # Decimals (money, distance). Floats go through str() to avoid binary noise.
    if isinstance(coltype, Numeric):
        if isinstance(value, bool):
            raise ValidationError(f"{col.key} must be a number")
        try:
            dec = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
        except InvalidOperation:
            raise ValidationError(f"{col.key} must be a number")
        if not dec.is_finite():
            raise ValidationError(f"{col.key} must be a finite number")
        return dec

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                d = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
            if d is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 date")
            return d
        raise ValidationError(f"{col.key} must be a date")

    # Strings / Text
    if isinstance(coltype, (String, Text)):
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
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_trip(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for key in ("freight_revenue", "additional_charges"):
        value = patch.get(key)
        if value is None:
            continue
        if value < 0:
            raise ValidationError(f"{key} must be >= 0")
        if value > MAX_MONEY:
            raise ValidationError(f"{key} cannot exceed {MAX_MONEY}")

    distance = patch.get("actual_distance_km")
    if distance is not None and distance < 0:
        raise ValidationError("actual_distance_km must be >= 0")

    departure = patch.get("departure_date")
    arrival = patch.get("planned_arrival_date")
    if departure is not None and arrival is not None and arrival < departure:
        raise ValidationError("planned_arrival_date cannot be before departure_date")


def enforce_rules_expense(patch: dict) -> None:
    amount = patch.get("amount")
    if "amount" in patch:
        if amount is None or amount <= 0:
            raise ValidationError("amount must be > 0")
        if amount > MAX_MONEY:
            raise ValidationError(f"amount cannot exceed {MAX_MONEY}")
