"""
Deterministic hashing utilities.

All hashing in the payment kernel must be deterministic and reproducible:
payload hashes gate idempotent ingestion, chain hashes make the event and
compliance logs tamper-evident, and artifact hashes are evidence. This module
provides the canonical functions used throughout.
"""

import hashlib
import json
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

HashFunction = Callable[[bytes], str]


def _json_serializer(obj: Any) -> Any:
    """
    Serialize types json does not handle natively.

    Raises:
        TypeError: If object type is not supported (floats are supported by
            json itself; they are rejected earlier, at the money boundaries).
    """
    if isinstance(obj, Decimal):
        return str(obj.normalize())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """
    Convert data to canonical JSON: sorted keys, no whitespace, stable
    rendering of Decimal/datetime/UUID.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def to_json_safe(data: Any) -> Any:
    """Round-trip through canonical JSON so stored data hashes the same when re-read."""
    return json.loads(canonicalize_json(data))


def sha256_hex(content: bytes) -> str:
    """Default hash function: hex-encoded SHA-256 (64 characters)."""
    return hashlib.sha256(content).hexdigest()


def compute_payload_hash(payload: Any) -> str:
    """SHA-256 of the canonical JSON of ``payload``."""
    return sha256_hex(canonicalize_json(payload).encode("utf-8"))


def hash_locator(locator: str, hash_function: HashFunction = sha256_hex) -> str:
    """
    Hash of the locator string itself.

    A best-effort fingerprint for artifacts whose bytes are not directly
    readable. It proves the locator was not changed, never that the object
    behind it is intact.
    """
    return hash_function(locator.encode("utf-8"))


def compute_chain_hash(
    prev: str | None,
    data: Any,
    correlation_id: str,
) -> str:
    """
    Hash of one chain record: SHA-256 of ``{"prev", "data", "correlationId"}``.

    The three top-level members are always emitted in that order regardless
    of how the caller built ``data``; nested keys of ``data`` are sorted.
    ``prev`` is None (JSON null) for the first record of a scope.
    """
    document = (
        '{"prev":'
        + json.dumps(prev)
        + ',"data":'
        + canonicalize_json(data)
        + ',"correlationId":'
        + json.dumps(correlation_id)
        + "}"
    )
    return sha256_hex(document.encode("utf-8"))
