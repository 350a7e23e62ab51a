"""MessageFactory -- builds envelopes with consistent producer and causation."""

from collections.abc import Callable
from typing import Any
from uuid import uuid4

from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.messaging.envelope import MessageEnvelope
from payment_kernel.messaging.schemas import ERROR_SCHEMA, EnvelopeSchemaRegistry


def _new_id() -> str:
    return str(uuid4())


class MessageFactory:
    """
    Creates envelopes for one producer.

    Contract:
        - producer is rendered ``"<name>@<version>"``.
        - A new message starts a causation chain at its correlation id.
        - Replies keep the correlation id and cite the original message id
          as causation.
        - Every created envelope's data is validated against its schema.
    """

    def __init__(
        self,
        producer: str,
        version: str = "1.0.0",
        clock: Clock | None = None,
        id_factory: Callable[[], str] = _new_id,
    ):
        self._producer = f"{producer}@{version}"
        self._clock = clock or SystemClock()
        self._new_id = id_factory

    @property
    def producer(self) -> str:
        return self._producer

    def create_message(
        self,
        schema: str,
        data: dict[str, Any],
        correlation_id: str | None = None,
        causation_id: str | None = None,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
    ) -> MessageEnvelope:
        EnvelopeSchemaRegistry.validate(schema, data)
        correlation_id = correlation_id or self._new_id()
        return MessageEnvelope(
            schema=schema,
            message_id=self._new_id(),
            correlation_id=correlation_id,
            causation_id=causation_id or correlation_id,
            occurred_at=self._clock.now(),
            producer=self._producer,
            version=1,
            data=data,
            idempotency_key=idempotency_key,
            trace_id=trace_id,
        )

    def create_reply(
        self,
        original: MessageEnvelope,
        schema: str,
        data: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> MessageEnvelope:
        return self.create_message(
            schema,
            data,
            correlation_id=original.correlation_id,
            causation_id=original.message_id,
            idempotency_key=idempotency_key,
            trace_id=original.trace_id,
        )

    def create_error_message(
        self,
        original: MessageEnvelope,
        error: BaseException,
        retryable: bool = False,
    ) -> MessageEnvelope:
        """Wrap a failed message for a dead-letter queue."""
        return self.create_message(
            ERROR_SCHEMA,
            {
                "original_message": original.to_dict(),
                "error": {
                    "name": type(error).__name__,
                    "message": str(error) or type(error).__name__,
                    "code": getattr(error, "code", None),
                },
                "retryable": retryable,
                "failed_at": self._clock.now().isoformat(),
            },
            correlation_id=original.correlation_id,
            causation_id=original.message_id,
            trace_id=original.trace_id,
        )
