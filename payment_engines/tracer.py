"""
payment_engines.tracer -- Engine invocation tracer emitting PAYMENT_ENGINE_TRACE.

Responsibility:
    ``@traced_engine`` wraps a pure engine call and emits one structured log
    record with the engine name, version, a deterministic fingerprint of
    selected arguments, and the duration.

Architecture position:
    Engines -- support for the pure calculation layer.  Emits a log record
    only; never touches the database or the clock used for business dates.

Invariants enforced:
    - Fingerprints are deterministic: dict keys are sorted, Decimals render
      normalized, dataclasses render field by field.
    - Arguments are bound against the wrapped signature, so positional and
      keyword calls fingerprint identically.

Failure modes:
    - Fingerprint fields that are not parameters of the engine are recorded
      as ``null``.

Audit relevance:
    The input fingerprint lets an auditor confirm that a stored allocation
    was produced from the inputs on record.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import time
from collections.abc import Callable
from decimal import Decimal
from enum import Enum
from typing import Any

from payment_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

TRACE_TYPE = "PAYMENT_ENGINE_TRACE"


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return str(value.normalize())
    if isinstance(value, (int, str)):
        return str(value)
    if isinstance(value, Enum):
        return _canonicalize(value.value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        return type(value).__name__ + _canonicalize(fields)
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: dict[str, Any],
) -> str:
    """16-hex-char SHA-256 prefix over the named arguments."""
    canonical = "|".join(
        f"{name}={_canonicalize(arguments.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits PAYMENT_ENGINE_TRACE for pure engine invocations."""

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fp = compute_input_fingerprint(fingerprint_fields, dict(bound.arguments))

            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            _logger.info(
                TRACE_TYPE,
                extra={
                    "trace_type": TRACE_TYPE,
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fp,
                    "duration_ms": duration_ms,
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
