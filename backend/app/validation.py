from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any

from app.time_utils import parse_iso_date, parse_iso_datetime


# Maximum single amount: 9,999,999,999.99 (999,999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999_999
_INTEGER_RE = re.compile(r"^-?[0-9]+\Z")


class CustodyError(Exception):
    """
    Base for expected, recoverable custody outcomes.

    Each subclass carries a stable `code` and the HTTP status routes return.
    Anything that is not a CustodyError is an internal error.
    """
    code = "CUSTODY_ERROR"
    http_status = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CustodyError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"
    http_status = 400


class PermissionDeniedError(CustodyError):
    """Role or station ownership mismatch."""
    code = "PERMISSION_DENIED"
    http_status = 403


class NotFoundError(CustodyError):
    code = "NOT_FOUND"
    http_status = 404


class InvalidStateError(CustodyError):
    """Operation is not valid for the record's current status. Not retryable."""
    code = "INVALID_STATE"
    http_status = 409


class ConflictError(CustodyError):
    """Concurrent mutation lost, or duplicate chain link. Retryable after refetch."""
    code = "CONFLICT"
    http_status = 409


class BusinessRuleError(CustodyError):
    """Chain rule violated by the creation inputs."""
    code = "BUSINESS_RULE"
    http_status = 422


def parse_cents(value: Any, field: str, *, required: bool = True, allow_negative: bool = False) -> int | None:
    """
    Strict integer-cents coercion.

    Accepts ints and plain digit strings; rejects bools, floats, decimals and
    scientific notation so no amount is ever silently rounded.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer amount in cents")

    if isinstance(value, int):
        cents = value
    elif isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer amount in cents (no decimals)")
        if not _INTEGER_RE.match(stripped):
            raise ValidationError(f"{field} must be an integer amount in cents")
        cents = int(stripped)
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer amount in cents, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer amount in cents")

    if cents < 0 and not allow_negative:
        raise ValidationError(f"{field} cannot be negative")
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} exceeds the maximum allowed amount")
    return cents


def parse_int_id(value: Any, field: str, *, required: bool = False) -> int | None:
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, int) and not isinstance(value, bool):
        parsed = value
    elif isinstance(value, str) and _INTEGER_RE.match(value.strip()):
        parsed = int(value.strip())
    else:
        raise ValidationError(f"{field} must be an integer id")
    if parsed <= 0:
        raise ValidationError(f"{field} must be a positive id")
    return parsed


def parse_datetime_field(value: Any, field: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def parse_date_field(value: Any, field: str, *, required: bool = False) -> date | None:
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 date (YYYY-MM-DD)")
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date (YYYY-MM-DD)")


def parse_choice(value: Any, field: str, choices: list[str], *, default: str | None = None) -> str:
    if value is None or value == "":
        if default is None:
            raise ValidationError(f"{field} is required")
        return default
    normalized = str(value).strip().lower()
    if normalized not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}")
    return normalized


def clean_text(value: Any, field: str, *, max_length: int | None = None, required: bool = False) -> str | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    text = str(value).strip()
    if not text:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text
