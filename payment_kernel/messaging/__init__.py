"""Message envelopes, schema registry, topology, retry and idempotent consumption."""

from payment_kernel.messaging.consumer import IdempotentConsumer, MessageHandler, ProcessingResult
from payment_kernel.messaging.envelope import MessageEnvelope, parse_envelope
from payment_kernel.messaging.factory import MessageFactory
from payment_kernel.messaging.retry import RetryPolicy, is_permanent_error
from payment_kernel.messaging.schemas import (
    ERROR_SCHEMA,
    LIFECYCLE_SCHEMA_PREFIX,
    PAYMENT_SCHEMA,
    ArtifactRef,
    EnvelopeSchemaRegistry,
    ErrorMessage,
    PaymentLifecycleEvent,
    PaymentMessage,
)
from payment_kernel.messaging.topology import (
    PAYMENTS_EVENTS_EXCHANGE,
    DeadLetterRoute,
    EventPublisher,
    InMemoryTransport,
    LifecycleStage,
    MessageTransport,
    PaymentSource,
    dead_letter_route,
    payment_routing_key,
)

__all__ = [
    "ArtifactRef",
    "DeadLetterRoute",
    "ERROR_SCHEMA",
    "EnvelopeSchemaRegistry",
    "ErrorMessage",
    "EventPublisher",
    "IdempotentConsumer",
    "InMemoryTransport",
    "LIFECYCLE_SCHEMA_PREFIX",
    "LifecycleStage",
    "MessageEnvelope",
    "MessageFactory",
    "MessageHandler",
    "MessageTransport",
    "PAYMENTS_EVENTS_EXCHANGE",
    "PAYMENT_SCHEMA",
    "PaymentLifecycleEvent",
    "PaymentMessage",
    "PaymentSource",
    "ProcessingResult",
    "RetryPolicy",
    "dead_letter_route",
    "is_permanent_error",
    "parse_envelope",
    "payment_routing_key",
]
