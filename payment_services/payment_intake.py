"""
payment_services.payment_intake -- Inbound payment pipeline.

Responsibility:
    Takes one ``loanserve.payments.v1`` envelope from admission to
    allocation: the ingestion ledger admits it exactly once, its artifacts
    are stored as evidence, the amount is run through the waterfall
    against the loan's outstanding obligations, and ``payment.received``
    and ``payment.allocated`` are appended to the payment's event chain.

Architecture position:
    Services -- stateful orchestration over kernel services and the pure
    waterfall engine.  Nothing below this layer imports it.

Invariants enforced:
    - A re-delivered payment (same idempotency key and payload) returns the
      original ingestion with its stored artifacts and events; nothing is
      allocated or appended twice.
    - A reused key with a different payload raises before any evidence,
      allocation or event is written.
    - The allocation conserves the payment amount (asserted by the engine).
    - With chain verification on, the correlation chain is walked after the
      appends and a break raises instead of being reported as success.

Failure modes:
    - EnvelopeValidationError / SchemaNotFoundError: data does not match
      its schema.
    - MalformedIngestionError: the envelope is not a payment message.
    - IngestionConflictError: idempotency key reused with another payload.
    - ChainDiscontinuityError: the correlation chain failed verification.

Audit relevance:
    PAYMENT.RECEIVED (from the ingestion ledger) and PAYMENT.ALLOCATED are
    written to the compliance chain; the payment events themselves are
    hash-chained per correlation id.

Usage:
    intake = PaymentIntakeService(session, obligations, clock=clock)
    consumer = IdempotentConsumer(session, "payment-intake")
    consumer.process(envelope, intake.handle)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from payment_engines.waterfall import (
    DEFAULT_WATERFALL,
    BucketName,
    ObligationBucket,
    Outstanding,
    WaterfallAllocator,
    WaterfallResult,
)
from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.exceptions import MalformedIngestionError
from payment_kernel.logging_config import LogContext, get_logger
from payment_kernel.messaging.envelope import MessageEnvelope
from payment_kernel.messaging.factory import MessageFactory
from payment_kernel.messaging.schemas import (
    LIFECYCLE_SCHEMA_PREFIX,
    PaymentMessage,
)
from payment_kernel.messaging.topology import EventPublisher, LifecycleStage, PaymentSource
from payment_kernel.models.artifact import PaymentArtifact
from payment_kernel.models.chain import ComplianceEventType, PaymentEvent
from payment_kernel.services.artifact_store import ArtifactInput, ArtifactStore
from payment_kernel.services.compliance_audit import ComplianceAuditLog
from payment_kernel.services.hash_chain import ChainVerification
from payment_kernel.services.ingestion_ledger import IngestionLedger, IngestResult
from payment_kernel.services.payment_event_log import PaymentEventLog

logger = get_logger("services.payment_intake")

PAYMENT_RECEIVED = "payment.received"
PAYMENT_ALLOCATED = "payment.allocated"


# =============================================================================
# Obligation sources
# =============================================================================


class ObligationSource(ABC):
    """Where the pipeline learns what a loan currently owes."""

    @abstractmethod
    def obligations_for(self, loan_id: str, value_date: date) -> Sequence[ObligationBucket]:
        """Buckets owed on ``loan_id`` as of ``value_date``, in any order."""
        ...


class OutstandingObligationSource(ObligationSource):
    """
    Builds buckets from an ``Outstanding`` balance lookup.

    Priority follows ``waterfall`` order.  The ``future`` bucket is not an
    obligation; whatever is left over lands in suspense instead.
    """

    def __init__(
        self,
        lookup: Callable[[str, date], Outstanding],
        waterfall: Sequence[BucketName] = DEFAULT_WATERFALL,
    ):
        self._lookup = lookup
        self._waterfall = tuple(waterfall)

    def obligations_for(self, loan_id: str, value_date: date) -> list[ObligationBucket]:
        outstanding = self._lookup(loan_id, value_date)
        return [
            ObligationBucket(bucket.value, outstanding.for_bucket(bucket), priority=rank)
            for rank, bucket in enumerate(self._waterfall, start=1)
            if bucket is not BucketName.FUTURE
        ]


class StaticObligationSource(ObligationSource):
    """Fixed buckets per loan; loans not listed owe nothing."""

    def __init__(self, obligations: Mapping[str, Sequence[ObligationBucket]]):
        self._obligations = {str(k): tuple(v) for k, v in obligations.items()}

    def obligations_for(self, loan_id: str, value_date: date) -> list[ObligationBucket]:
        return list(self._obligations.get(str(loan_id), ()))


# =============================================================================
# Result
# =============================================================================


@dataclass(frozen=True)
class IntakeResult:
    """
    Outcome of one pass through the pipeline.

    For duplicates ``allocation`` is None and ``artifacts`` / ``events``
    are the records written by the original delivery.
    """

    ingestion: IngestResult
    artifacts: tuple[PaymentArtifact, ...] = ()
    allocation: WaterfallResult | None = None
    events: tuple[PaymentEvent, ...] = ()
    chain: ChainVerification | None = None

    @property
    def is_duplicate(self) -> bool:
        return self.ingestion.is_duplicate

    @property
    def ingestion_id(self) -> UUID:
        return self.ingestion.ingestion_id

    def summary(self) -> dict[str, Any]:
        """JSON-safe digest, stored as the consumer's result hash."""
        return {
            "ingestion_id": str(self.ingestion_id),
            "idempotency_key": self.ingestion.idempotency_key,
            "status": self.ingestion.status.value,
            "artifact_ids": [str(a.id) for a in self.artifacts],
            "event_hashes": [e.event_hash for e in self.events],
            "allocation": self.allocation.as_dict() if self.allocation else None,
            "suspense": self.allocation.suspense if self.allocation else None,
        }


# =============================================================================
# Service
# =============================================================================


class PaymentIntakeService:
    """
    Ingest -> evidence -> allocate -> record.

    Contract:
        process(envelope) returns an IntakeResult; handle(envelope) returns
        its JSON-safe summary for use as an IdempotentConsumer handler.

    Non-goals:
        - Does NOT commit.
        - Does NOT post allocations to the general ledger;
          ``allocations_to_postings`` gives the mapping when needed.
    """

    def __init__(
        self,
        session: Session,
        obligations: ObligationSource,
        clock: Clock | None = None,
        audit_log: ComplianceAuditLog | None = None,
        artifact_store: ArtifactStore | None = None,
        publisher: EventPublisher | None = None,
        factory: MessageFactory | None = None,
        verify_chain: bool = True,
        audit_accepted: bool = True,
    ):
        self._session = session
        self._obligations = obligations
        self._clock = clock or SystemClock()
        self._audit_log = audit_log or ComplianceAuditLog(session, self._clock)
        self._ledger = IngestionLedger(
            session,
            clock=self._clock,
            audit_log=self._audit_log if audit_accepted else None,
        )
        self._artifacts = artifact_store or ArtifactStore(
            session, clock=self._clock, audit_log=self._audit_log
        )
        self._events = PaymentEventLog(session, self._clock)
        self._allocator = WaterfallAllocator()
        self._publisher = publisher
        self._factory = factory or MessageFactory("payment-intake", clock=self._clock)
        self._verify_chain = verify_chain

    def handle(self, envelope: MessageEnvelope) -> dict[str, Any]:
        return self.process(envelope).summary()

    def process(self, envelope: MessageEnvelope) -> IntakeResult:
        """
        Raises:
            EnvelopeValidationError / SchemaNotFoundError / MalformedIngestionError:
                Rejected before anything is written.
            IngestionConflictError: Key reused with a different payload.
            ChainDiscontinuityError: Verification of the correlation chain failed.
        """
        with LogContext.bind(
            correlation_id=envelope.correlation_id,
            message_id=envelope.message_id,
        ):
            message = envelope.variant()
            if not isinstance(message, PaymentMessage):
                raise MalformedIngestionError(
                    "schema", f"{envelope.schema} is not a payment message"
                )

            ingested = self._ledger.ingest_envelope(envelope)
            if ingested.is_duplicate:
                return self._duplicate(ingested)

            with LogContext.bind(ingestion_id=str(ingested.ingestion_id)):
                return self._admit(envelope, message, ingested)

    def _duplicate(self, ingested: IngestResult) -> IntakeResult:
        logger.info(
            "payment_intake_duplicate",
            extra={
                "ingestion_id": str(ingested.ingestion_id),
                "idempotency_key": ingested.idempotency_key,
            },
        )
        return IntakeResult(
            ingestion=ingested,
            artifacts=tuple(self._artifacts.get_by_ingestion(ingested.ingestion_id)),
            events=tuple(self._events.get_events_by_ingestion(ingested.ingestion_id)),
        )

    def _admit(
        self,
        envelope: MessageEnvelope,
        message: PaymentMessage,
        ingested: IngestResult,
    ) -> IntakeResult:
        ingestion = ingested.ingestion
        correlation_id = envelope.correlation_id
        payment_id = str(ingestion.id)

        artifacts = tuple(
            self._artifacts.store_batch(
                ArtifactInput(
                    ingestion_id=ingestion.id,
                    artifact_type=ref.artifact_type,
                    locator=ref.uri,
                    content_hash=ref.content_hash,
                    source_metadata={"provider": message.provider},
                )
                for ref in message.artifacts
            )
        )

        buckets = self._obligations.obligations_for(ingestion.loan_id, ingestion.value_date)
        allocation = self._allocator.allocate(ingestion.amount_minor, buckets)

        received = self._events.record_system_event(
            PAYMENT_RECEIVED,
            {
                "ingestion_id": payment_id,
                "idempotency_key": ingestion.idempotency_key,
                "channel": ingestion.channel,
                "method": ingestion.method,
                "loan_id": ingestion.loan_id,
                "amount_minor": ingestion.amount_minor,
                "currency": ingestion.currency,
                "value_date": ingestion.value_date,
                "artifact_ids": [str(a.id) for a in artifacts],
            },
            correlation_id,
            ingestion_id=ingestion.id,
            payment_id=payment_id,
        )
        allocated = self._events.record_system_event(
            PAYMENT_ALLOCATED,
            {
                "ingestion_id": payment_id,
                "amount_minor": ingestion.amount_minor,
                "allocations": allocation.as_dict(),
                "suspense": allocation.suspense,
            },
            correlation_id,
            ingestion_id=ingestion.id,
            payment_id=payment_id,
        )
        self._audit_log.log(
            event_type=ComplianceEventType.PAYMENT_ALLOCATED,
            resource_type="payment_ingestion",
            resource_id=ingestion.id,
            payload={
                "loan_id": ingestion.loan_id,
                "amount_minor": ingestion.amount_minor,
                "allocations": allocation.as_dict(),
                "suspense": allocation.suspense,
            },
            correlation_id=correlation_id,
        )

        chain = None
        if self._verify_chain:
            chain = self._events.verify_chain(correlation_id)
            if not chain.valid:
                raise self._events.discontinuity_error(chain)

        self._publish_processed(envelope, message, payment_id)

        logger.info(
            "payment_intake_completed",
            extra={
                "loan_id": ingestion.loan_id,
                "amount_minor": ingestion.amount_minor,
                "artifact_count": len(artifacts),
                "suspense": allocation.suspense,
            },
        )
        return IntakeResult(
            ingestion=ingested,
            artifacts=artifacts,
            allocation=allocation,
            events=(received, allocated),
            chain=chain,
        )

    def _publish_processed(
        self,
        envelope: MessageEnvelope,
        message: PaymentMessage,
        payment_id: str,
    ) -> None:
        if self._publisher is None:
            return
        try:
            source = PaymentSource(message.channel)
        except ValueError:
            # realtime, paypal, ... have no lifecycle routing segment
            logger.debug(
                "lifecycle_publish_skipped",
                extra={"channel": message.channel},
            )
            return
        reply = self._factory.create_reply(
            envelope,
            f"{LIFECYCLE_SCHEMA_PREFIX}{LifecycleStage.PROCESSED.value}",
            {
                "payment_id": payment_id,
                "source": source.value,
                "loan_id": message.loan_id,
                "amount_cents": message.amount_cents,
            },
        )
        self._publisher.publish_lifecycle(reply, source, LifecycleStage.PROCESSED)
