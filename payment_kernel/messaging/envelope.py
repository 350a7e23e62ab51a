"""
Message envelope: the wire format every broker message carries.

    {schema, message_id, correlation_id, causation_id, idempotency_key?,
     occurred_at, producer, version, data}

parse_envelope() is the only way a received dict becomes a MessageEnvelope:
it checks the envelope fields, then validates ``data`` against the variant
registered for ``schema``.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from payment_kernel.exceptions import EnvelopeValidationError
from payment_kernel.messaging.schemas import EnvelopeSchemaRegistry, EnvelopeVariant

_REQUIRED_TEXT = ("schema", "message_id", "correlation_id", "causation_id", "producer")


@dataclass(frozen=True)
class MessageEnvelope:
    schema: str
    message_id: str
    correlation_id: str
    causation_id: str
    occurred_at: datetime
    producer: str
    version: int
    data: dict[str, Any] = field(default_factory=dict)
    idempotency_key: str | None = None
    trace_id: str | None = None
    retry_count: int = 0

    def variant(self) -> EnvelopeVariant:
        """Typed view of ``data``."""
        return EnvelopeSchemaRegistry.validate(self.schema, self.data)

    def with_retry(self) -> "MessageEnvelope":
        return replace(self, retry_count=self.retry_count + 1)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "schema": self.schema,
            "message_id": self.message_id,
            "correlation_id": self.correlation_id,
            "causation_id": self.causation_id,
            "occurred_at": self.occurred_at.isoformat(),
            "producer": self.producer,
            "version": self.version,
            "data": self.data,
        }
        if self.idempotency_key is not None:
            body["idempotency_key"] = self.idempotency_key
        if self.trace_id is not None:
            body["trace_id"] = self.trace_id
        if self.retry_count:
            body["retry_count"] = self.retry_count
        return body


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def parse_envelope(raw: Mapping[str, Any]) -> MessageEnvelope:
    """
    Validate and build an envelope from a decoded message body.

    Raises:
        EnvelopeValidationError: Envelope fields or ``data`` are malformed.
        SchemaNotFoundError: ``schema`` has no registered variant.
    """
    if not isinstance(raw, Mapping):
        raise EnvelopeValidationError(None, ["envelope must be an object"])

    schema = raw.get("schema")
    errors: list[str] = []
    for key in _REQUIRED_TEXT:
        value = raw.get(key)
        if not isinstance(value, str) or not value.strip():
            errors.append(f"{key} must be a non-empty string")

    occurred_at = _parse_timestamp(raw.get("occurred_at"))
    if occurred_at is None:
        errors.append("occurred_at must be an ISO 8601 timestamp")

    version = raw.get("version")
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        errors.append("version must be a positive integer")

    data = raw.get("data")
    if not isinstance(data, Mapping):
        errors.append("data must be an object")

    idempotency_key = raw.get("idempotency_key")
    if idempotency_key is not None and not isinstance(idempotency_key, str):
        errors.append("idempotency_key must be a string")

    retry_count = raw.get("retry_count", 0)
    if isinstance(retry_count, bool) or not isinstance(retry_count, int) or retry_count < 0:
        errors.append("retry_count must be a non-negative integer")

    if errors:
        raise EnvelopeValidationError(schema if isinstance(schema, str) else None, errors)

    # Unknown schema or malformed variant raises here
    EnvelopeSchemaRegistry.validate(schema, data)

    return MessageEnvelope(
        schema=schema,
        message_id=raw["message_id"],
        correlation_id=raw["correlation_id"],
        causation_id=raw["causation_id"],
        occurred_at=occurred_at,
        producer=raw["producer"],
        version=version,
        data=dict(data),
        idempotency_key=idempotency_key,
        trace_id=raw.get("trace_id"),
        retry_count=retry_count,
    )
