from __future__ import annotations

from typing import Any


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


class PosError(Exception):
    """
    Expected business-rule or input failure.

    Carries an HTTP-ish status code and a machine-readable details payload so
    routes can surface it without leaking internals. Anything that is not a
    PosError is an internal fault.
    """
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class BadRequestError(PosError):
    """400-level input problem or business rule violation."""
    status_code = 400


class NotFoundError(PosError):
    """404-level missing entity."""
    status_code = 404


class ConflictError(PosError):
    """409-level uniqueness conflict (e.g., duplicate receipt number)."""
    status_code = 409


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion for JSON input.

    Rejects bools, floats, decimals-in-strings and scientific notation so a
    "12.5" quantity or a 1e3 price never slips through as an int.
    """
    if isinstance(value, bool):
        raise BadRequestError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise BadRequestError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise BadRequestError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise BadRequestError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise BadRequestError(f"{field} must be an integer")
    if isinstance(value, float):
        raise BadRequestError(f"{field} must be an integer, not a decimal")
    raise BadRequestError(f"{field} must be an integer")


def coerce_positive_int(value: Any, field: str) -> int:
    if value is None:
        raise BadRequestError(f"{field} is required")
    n = coerce_int(value, field)
    if n <= 0:
        raise BadRequestError(f"{field} must be > 0")
    return n


def coerce_non_negative_int(value: Any, field: str, default: int = 0) -> int:
    if value is None:
        return default
    n = coerce_int(value, field)
    if n < 0:
        raise BadRequestError(f"{field} must be >= 0")
    return n


def coerce_price_cents(value: Any, field: str = "unit_price_cents") -> int:
    price = coerce_positive_int(value, field)
    if price > MAX_PRICE_CENTS:
        raise BadRequestError(f"{field} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")
    return price


def normalize_choice(value: Any, choices: tuple[str, ...], field: str) -> str:
    """Case-insensitive enum check; returns the lowercase canonical value."""
    if not isinstance(value, str) or value.strip().lower() not in choices:
        raise BadRequestError(
            f"Invalid {field}. Must be one of: {', '.join(choices)}",
            details={"allowed": list(choices)},
        )
    return value.strip().lower()


def require_fields(payload: Any, *fields: str) -> dict:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise BadRequestError("Invalid JSON payload")
    missing = [f for f in fields if payload.get(f) is None]
    if missing:
        raise BadRequestError(f"Missing required fields: {', '.join(missing)}")
    return payload
