"""
Idempotency key derivation for inbound payments.

A payment's identity is the tuple (method, reference, value date, amount in
minor units, loan). Re-deliveries of the same payment, even re-keyed by a
human with different casing or stray whitespace, collapse onto one key; any
change to a defining attribute produces a different key.

Key material::

    lower(strip(method)) | lower(strip(reference)) | YYYY-MM-DD | amount_minor | strip(loan_id)

hashed with SHA-256 (hex). Pure and total over valid input; the only failure
mode is malformed input, rejected with ``IdempotencyInputError``.
"""

from datetime import date, datetime
from decimal import Decimal

from payment_kernel.exceptions import IdempotencyInputError
from payment_kernel.utils.hashing import HashFunction, compute_payload_hash, sha256_hex

__all__ = [
    "compute_payload_hash",
    "derive_idempotency_key",
    "normalize_amount_minor",
    "normalize_loan_id",
    "normalize_token",
    "normalize_value_date",
]


def normalize_token(value: str, field: str) -> str:
    """Case/whitespace-normalize a key component."""
    if not isinstance(value, str):
        raise IdempotencyInputError(field, f"expected str, got {type(value).__name__}")
    normalized = value.strip().lower()
    if not normalized:
        raise IdempotencyInputError(field, "must not be empty")
    return normalized


def normalize_amount_minor(amount: object, field: str = "amount_minor") -> int:
    """
    Coerce an amount to integer minor units.

    Floats are refused outright: a float amount has already lost precision
    before it reaches this core.
    """
    if isinstance(amount, bool) or isinstance(amount, float):
        raise IdempotencyInputError(field, f"{type(amount).__name__} is not an exact amount")
    if isinstance(amount, Decimal):
        if not amount.is_finite() or amount != amount.to_integral_value():
            raise IdempotencyInputError(field, f"{amount} is not a whole number of minor units")
        amount = int(amount)
    if not isinstance(amount, int):
        raise IdempotencyInputError(field, f"expected int minor units, got {type(amount).__name__}")
    if amount < 0:
        raise IdempotencyInputError(field, "must not be negative")
    return amount


def normalize_value_date(value: date | str, field: str = "value_date") -> str:
    """Render a value date as ``YYYY-MM-DD``."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()).isoformat()
        except ValueError:
            raise IdempotencyInputError(field, f"{value!r} is not an ISO date") from None
    raise IdempotencyInputError(field, f"expected date or ISO string, got {type(value).__name__}")


def normalize_loan_id(value: str | int) -> str:
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise IdempotencyInputError("loan_id", f"expected str or int, got {type(value).__name__}")
    normalized = str(value).strip()
    if not normalized:
        raise IdempotencyInputError("loan_id", "must not be empty")
    return normalized


def derive_idempotency_key(
    method: str,
    reference: str,
    value_date: date | str,
    amount_minor: int,
    loan_id: str | int,
    hash_function: HashFunction = sha256_hex,
) -> str:
    """
    Derive the deterministic idempotency key for a payment.

    Args:
        method: Payment method (ach, wire, check, ...). Case-insensitive.
        reference: Channel reference (check number, trace id). Case- and
            surrounding-whitespace-insensitive.
        value_date: Settlement date, ``date`` or ISO string.
        amount_minor: Amount in integer minor units (cents).
        loan_id: Loan reference.
        hash_function: Digest over the UTF-8 key material.

    Returns:
        Hex digest string.

    Raises:
        IdempotencyInputError: On any malformed component.

    Example:
        >>> derive_idempotency_key("ACH", " ach-12345 ", "2025-08-24", 100000, 1) == \\
        ...     derive_idempotency_key("ach", "ACH-12345", "2025-08-24", 100000, "1")
        True
    """
    material = "|".join(
        (
            normalize_token(method, "method"),
            normalize_token(reference, "reference"),
            normalize_value_date(value_date),
            str(normalize_amount_minor(amount_minor)),
            normalize_loan_id(loan_id),
        )
    )
    return hash_function(material.encode("utf-8"))
