from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .time_utils import parse_iso_datetime


# Per-call generation limits
MAX_GENERATE_QUANTITY = 10_000
MAX_BULK_TOTAL_QUANTITY = 100_000
MAX_BULK_PACKAGE_SIZE = 1_000

FUNDING_SOURCE_RE = re.compile(r"^[0-9]$")
MEDICINE_TYPE_RE = re.compile(r"^[FIHB]$")
ACTIVE_INGREDIENT_RE = re.compile(r"^[0-9]{3}$")
UPPER_LETTER_RE = re.compile(r"^[A-Z]$")


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate master)."""


class CodeInUseError(ConflictError):
    """A master or code cannot be removed because issued codes depend on it."""


class NotFoundError(LookupError):
    """404-level: the referenced stock, master or code does not exist."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required when creating
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


MASTER_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "funding_source_code", "funding_source_name",
        "medicine_type_code", "medicine_type_name",
        "active_ingredient_code", "active_ingredient_name",
        "producer_code", "producer_name",
        "package_type_code", "package_type_name",
    },
    required_on_create={
        "funding_source_code", "funding_source_name",
        "medicine_type_code", "medicine_type_name",
        "active_ingredient_code", "active_ingredient_name",
        "producer_code", "producer_name",
    },
)

# Codes are the master's identity; after creation only names and status change
MASTER_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "funding_source_name", "medicine_type_name", "active_ingredient_name",
        "producer_name", "package_type_name", "status",
    },
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return int(value.strip())
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be true or false")

    # Codes and names are case-normalized by the rule functions, not here
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
    Validates + normalizes an incoming dict against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if payload.get(f) in (None, ""))
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable and col.default is None:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_master(patch: dict) -> None:
    """
    Code-field rules for a QR code master. The codes become fixed-width
    fields of every issued code, so their charset and width are strict.
    """
    rules = (
        ("funding_source_code", FUNDING_SOURCE_RE, "Funding source code must be a single digit"),
        ("medicine_type_code", MEDICINE_TYPE_RE, "Medicine type code must be F, I, H, or B"),
        ("active_ingredient_code", ACTIVE_INGREDIENT_RE, "Active ingredient code must be 3 digits"),
        ("producer_code", UPPER_LETTER_RE, "Producer code must be an uppercase letter"),
    )
    for key, pattern, message in rules:
        if key in patch and not pattern.match(patch[key] or ""):
            raise ValidationError(message)

    package_code = patch.get("package_type_code") or None
    package_name = patch.get("package_type_name") or None
    if package_code is not None and not UPPER_LETTER_RE.match(package_code):
        raise ValidationError("Package type code must be an uppercase letter")
    if (package_code is None) != (package_name is None):
        raise ValidationError("Package type code and name must be provided together")


def normalize_batch_info(batch_info: dict | None) -> dict | None:
    """
    Validate batch metadata and convert dates to ISO strings for JSON storage.
    """
    if batch_info is None:
        return None
    if not isinstance(batch_info, dict):
        raise ValidationError("batch_info must be an object")

    cleaned = dict(batch_info)

    dates: dict[str, datetime] = {}
    for key in ("manufacture_date", "expiry_date"):
        raw = cleaned.get(key)
        if raw is None:
            continue
        if isinstance(raw, datetime):
            dt = raw
        else:
            try:
                dt = parse_iso_datetime(str(raw))
            except ValueError:
                raise ValidationError(f"batch_info.{key} must be an ISO-8601 date")
        if dt is not None:
            dates[key] = dt
            cleaned[key] = dt.date().isoformat()

    if "manufacture_date" in dates and "expiry_date" in dates:
        if dates["expiry_date"] <= dates["manufacture_date"]:
            raise ValidationError("Expiry date must be after manufacture date")

    quantity = cleaned.get("quantity")
    if quantity is not None:
        if not isinstance(quantity, (int, float)) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError("batch_info.quantity must be positive")

    return cleaned


def _require_int_in_range(name: str, value, low: int, high: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if value < low:
        raise ValidationError(f"{name} must be at least {low}")
    if value > high:
        raise ValidationError(f"{name} too large (max {high})")


def enforce_rules_generate(quantity) -> None:
    _require_int_in_range("quantity", quantity, 1, MAX_GENERATE_QUANTITY)


def enforce_rules_bulk_generate(total_quantity, bulk_package_size) -> None:
    _require_int_in_range("total_quantity", total_quantity, 1, MAX_BULK_TOTAL_QUANTITY)
    _require_int_in_range("bulk_package_size", bulk_package_size, 1, MAX_BULK_PACKAGE_SIZE)
