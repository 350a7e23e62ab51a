"""
PaymentEventLog -- per-correlation hash-chained journal of payment events.

Responsibility:
    Records each state transition of a payment (received, allocated,
    returned, ...) in a chain scoped to the payment's correlation id.

Architecture position:
    Kernel > Services.  Called by the intake pipeline and by anything that
    moves a payment through its lifecycle.

Invariants enforced:
    - event_hash = compute_chain_hash(prev_hash, data, correlation_id).
    - Appends to one correlation id are serialized on its ChainHead row.
    - Actor type is validated; unknown values raise InvalidActorError.

Audit relevance:
    verify_chain(correlation_id) proves the sequence of events recorded
    for a payment has not been edited or reordered since it was written.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select

from payment_kernel.domain.actors import SYSTEM_ACTOR_ID, ActorType, parse_actor_type
from payment_kernel.logging_config import get_logger
from payment_kernel.models.chain import PaymentEvent
from payment_kernel.services.hash_chain import HashChainLog
from payment_kernel.utils.hashing import to_json_safe

logger = get_logger("services.payment_event_log")


class PaymentEventLog(HashChainLog):
    """
    Chain of PaymentEvent records keyed by correlation id.

    Non-goals:
        - Does NOT commit.
        - Does NOT interpret event types; any dotted name is accepted.
    """

    model = PaymentEvent
    hash_attr = "event_hash"

    def head_key(self, scope: str) -> str:
        return f"payment_event:{scope}"

    def _scope_filter(self, scope: str) -> Any:
        return PaymentEvent.correlation_id == scope

    def record_material(self, record: PaymentEvent) -> tuple[Any, str]:
        return record.data, record.correlation_id

    def append(
        self,
        event_type: str,
        data: dict[str, Any],
        correlation_id: str,
        actor_type: ActorType | str,
        actor_id: str | None,
        ingestion_id: UUID | None = None,
        payment_id: str | None = None,
    ) -> PaymentEvent:
        actor = parse_actor_type(actor_type)
        event = PaymentEvent(
            correlation_id=correlation_id,
            event_type=event_type,
            actor_type=actor.value,
            actor_id=actor_id or SYSTEM_ACTOR_ID,
            ingestion_id=ingestion_id,
            payment_id=payment_id,
            data=to_json_safe(data),
            occurred_at=self._clock.now(),
        )
        self.append_record(correlation_id, event)

        logger.info(
            "payment_event_recorded",
            extra={
                "event_type": event_type,
                "correlation_id": correlation_id,
                "seq": event.seq,
                "event_hash": event.event_hash,
            },
        )
        return event

    def record_system_event(
        self,
        event_type: str,
        data: dict[str, Any],
        correlation_id: str,
        ingestion_id: UUID | None = None,
        payment_id: str | None = None,
    ) -> PaymentEvent:
        return self.append(
            event_type, data, correlation_id, ActorType.SYSTEM, SYSTEM_ACTOR_ID,
            ingestion_id=ingestion_id, payment_id=payment_id,
        )

    def record_human_event(
        self,
        event_type: str,
        data: dict[str, Any],
        correlation_id: str,
        user_id: str,
        ingestion_id: UUID | None = None,
        payment_id: str | None = None,
    ) -> PaymentEvent:
        return self.append(
            event_type, data, correlation_id, ActorType.HUMAN, user_id,
            ingestion_id=ingestion_id, payment_id=payment_id,
        )

    def record_ai_event(
        self,
        event_type: str,
        data: dict[str, Any],
        correlation_id: str,
        model_id: str,
        ingestion_id: UUID | None = None,
        payment_id: str | None = None,
    ) -> PaymentEvent:
        return self.append(
            event_type, data, correlation_id, ActorType.AI, model_id,
            ingestion_id=ingestion_id, payment_id=payment_id,
        )

    def get_events(self, correlation_id: str) -> list[PaymentEvent]:
        return self.records(correlation_id)

    def get_events_by_ingestion(self, ingestion_id: UUID) -> list[PaymentEvent]:
        return list(
            self._session.execute(
                select(PaymentEvent)
                .where(PaymentEvent.ingestion_id == ingestion_id)
                .order_by(PaymentEvent.correlation_id, PaymentEvent.seq)
            ).scalars().all()
        )

    def get_events_by_payment(self, payment_id: str) -> list[PaymentEvent]:
        return list(
            self._session.execute(
                select(PaymentEvent)
                .where(PaymentEvent.payment_id == payment_id)
                .order_by(PaymentEvent.correlation_id, PaymentEvent.seq)
            ).scalars().all()
        )
