"""Hashing and idempotency-key helpers."""

from payment_kernel.utils.hashing import (
    HashFunction,
    canonicalize_json,
    compute_chain_hash,
    compute_payload_hash,
    hash_locator,
    sha256_hex,
)
from payment_kernel.utils.idempotency import derive_idempotency_key

__all__ = [
    "HashFunction",
    "canonicalize_json",
    "compute_chain_hash",
    "compute_payload_hash",
    "derive_idempotency_key",
    "hash_locator",
    "sha256_hex",
]
