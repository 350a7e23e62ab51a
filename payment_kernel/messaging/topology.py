"""
Broker topology and transport abstraction.

Payment lifecycle events are published to the ``payments.events`` topic
exchange with routing key ``payment.<source>.<stage>``.  Messages that fail
permanently or exhaust their retries go to the per-domain dead-letter queue
``q.<domain>.dlq`` bound to exchange ``<domain>.dlq``.

The broker itself is external.  Everything here talks to a MessageTransport;
InMemoryTransport records publishes for tests and local runs.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from payment_kernel.exceptions import BrokerUnavailableError
from payment_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from payment_kernel.messaging.envelope import MessageEnvelope

logger = get_logger("messaging.topology")

PAYMENTS_EVENTS_EXCHANGE = "payments.events"


class PaymentSource(str, Enum):
    """Channels a payment can arrive through; used as the routing segment."""

    ACH = "ach"
    WIRE = "wire"
    CHECK = "check"
    LOCKBOX = "lockbox"
    CARD = "card"


class LifecycleStage(str, Enum):
    INITIATED = "initiated"
    VALIDATED = "validated"
    PROCESSED = "processed"


def payment_routing_key(source: PaymentSource | str, stage: LifecycleStage | str) -> str:
    source = PaymentSource(source)
    stage = LifecycleStage(stage)
    return f"payment.{source.value}.{stage.value}"


@dataclass(frozen=True)
class DeadLetterRoute:
    domain: str

    @property
    def exchange(self) -> str:
        return f"{self.domain}.dlq"

    @property
    def queue(self) -> str:
        return f"q.{self.domain}.dlq"

    @property
    def routing_key(self) -> str:
        return "#"


def dead_letter_route(domain: str) -> DeadLetterRoute:
    if not domain or "." in domain:
        raise ValueError(f"Invalid dead-letter domain: {domain!r}")
    return DeadLetterRoute(domain)


@dataclass(frozen=True)
class PublishedMessage:
    exchange: str
    routing_key: str
    body: dict[str, Any]


class MessageTransport(ABC):
    """Publishes serialized envelopes to an exchange."""

    @abstractmethod
    def publish(self, exchange: str, routing_key: str, body: dict[str, Any]) -> None:
        """
        Raises:
            BrokerUnavailableError: The broker did not accept the message.
        """


@dataclass
class InMemoryTransport(MessageTransport):
    """Records publishes.  ``available=False`` simulates a broker outage."""

    available: bool = True
    published: list[PublishedMessage] = field(default_factory=list)

    def publish(self, exchange: str, routing_key: str, body: dict[str, Any]) -> None:
        if not self.available:
            raise BrokerUnavailableError("publish", exchange, "broker unavailable")
        self.published.append(PublishedMessage(exchange, routing_key, body))

    def messages_for(self, exchange: str) -> list[PublishedMessage]:
        return [m for m in self.published if m.exchange == exchange]


class EventPublisher:
    """Routes envelopes onto the payments topology."""

    def __init__(self, transport: MessageTransport):
        self._transport = transport

    def publish_lifecycle(
        self,
        envelope: "MessageEnvelope",
        source: PaymentSource | str,
        stage: LifecycleStage | str,
    ) -> str:
        routing_key = payment_routing_key(source, stage)
        self._transport.publish(PAYMENTS_EVENTS_EXCHANGE, routing_key, envelope.to_dict())
        logger.info(
            "lifecycle_event_published",
            extra={
                "exchange": PAYMENTS_EVENTS_EXCHANGE,
                "routing_key": routing_key,
                "message_id": envelope.message_id,
                "schema": envelope.schema,
            },
        )
        return routing_key

    def publish_dead_letter(self, envelope: "MessageEnvelope", domain: str) -> DeadLetterRoute:
        route = dead_letter_route(domain)
        self._transport.publish(route.exchange, route.queue, envelope.to_dict())
        logger.warning(
            "message_dead_lettered",
            extra={
                "exchange": route.exchange,
                "queue": route.queue,
                "message_id": envelope.message_id,
                "causation_id": envelope.causation_id,
            },
        )
        return route
