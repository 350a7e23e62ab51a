"""
IdempotentConsumer -- at-most-once handler execution over at-least-once delivery.

Responsibility:
    Runs a handler for each delivered envelope exactly once per
    (consumer, message_id), records the outcome in the consumer inbox, and
    decides retry versus dead-letter for failures.

Architecture position:
    Kernel > Messaging.  Sits between the broker adapter (which acks, nacks
    or schedules redelivery from the ProcessingResult) and domain services.

Invariants enforced:
    - (consumer, message_id) UNIQUE in ``consumer_inbox``; a redelivery
      returns the stored result hash and never calls the handler.
    - Handler writes and the inbox row commit together: both live in one
      savepoint, so a failing handler leaves no inbox row and no partial
      writes.
    - Validation, conflict and integrity errors are never retried.

Failure modes:
    - Handler exception -> ProcessingResult(success=False, ...); never raised.
    - Dead-letter publish failure -> the message is kept for retry rather
      than lost.

Audit relevance:
    Dead-lettered messages are published as ``loanserve.v1.error`` envelopes
    carrying the original message, logged at ERROR, and recorded as a
    SYSTEM.MESSAGE_DEAD_LETTERED compliance entry.  A chain discontinuity
    flagged inside a failed handler is rolled back with the handler's
    writes, so the consumer records it again outside the savepoint.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.exceptions import BrokerUnavailableError, ChainDiscontinuityError
from payment_kernel.logging_config import LogContext, get_logger
from payment_kernel.messaging.envelope import MessageEnvelope
from payment_kernel.messaging.factory import MessageFactory
from payment_kernel.messaging.retry import RetryPolicy
from payment_kernel.messaging.topology import EventPublisher, MessageTransport
from payment_kernel.models.chain import ComplianceEventType
from payment_kernel.models.consumer_inbox import ConsumerInboxRecord
from payment_kernel.services.compliance_audit import ComplianceAuditLog
from payment_kernel.services.hash_chain import record_chain_discontinuity
from payment_kernel.utils.hashing import compute_payload_hash, to_json_safe

logger = get_logger("messaging.consumer")

MessageHandler = Callable[[MessageEnvelope], Any]


@dataclass(frozen=True)
class ProcessingResult:
    success: bool
    result_hash: str | None = None
    error: BaseException | None = None
    should_retry: bool = False
    retry_delay_ms: int | None = None
    dead_letter: bool = False
    duplicate: bool = False


class IdempotentConsumer:
    """
    Inbox-backed message consumer.

    Contract:
        process(envelope, handler) returns a ProcessingResult; the handler's
        return value must be JSON-serializable (it is hashed and stored).
    Non-goals:
        Does not talk to a broker for acks; the adapter acts on the result.
    """

    def __init__(
        self,
        session: Session,
        consumer_id: str,
        max_retries: int = 3,
        retry_policy: RetryPolicy | None = None,
        transport: MessageTransport | None = None,
        clock: Clock | None = None,
        dlq_domain: str = "payments",
        retention_days: int = 30,
        factory: MessageFactory | None = None,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self._session = session
        self._consumer_id = consumer_id
        self._max_retries = max_retries
        self._retry_policy = retry_policy or RetryPolicy()
        self._clock = clock or SystemClock()
        self._publisher = EventPublisher(transport) if transport is not None else None
        self._dlq_domain = dlq_domain
        self._retention_days = retention_days
        self._factory = factory or MessageFactory(consumer_id, clock=self._clock)

    @property
    def consumer_id(self) -> str:
        return self._consumer_id

    def get_processed(self, message_id: str) -> ConsumerInboxRecord | None:
        return self._session.execute(
            select(ConsumerInboxRecord).where(
                ConsumerInboxRecord.consumer == self._consumer_id,
                ConsumerInboxRecord.message_id == message_id,
            )
        ).scalar_one_or_none()

    def is_processed(self, message_id: str) -> bool:
        return self.get_processed(message_id) is not None

    def process(self, envelope: MessageEnvelope, handler: MessageHandler) -> ProcessingResult:
        with LogContext.bind(
            correlation_id=envelope.correlation_id,
            message_id=envelope.message_id,
            trace_id=envelope.trace_id,
        ):
            existing = self.get_processed(envelope.message_id)
            if existing is not None:
                return self._already_processed(existing)

            savepoint = self._session.begin_nested()
            try:
                result = handler(envelope)
                record = self._record(envelope, result)
                savepoint.commit()
            except IntegrityError as exc:
                # Usually another worker committed the same message first
                savepoint.rollback()
                existing = self.get_processed(envelope.message_id)
                if existing is None:
                    return self._handle_failure(envelope, exc)
                return self._already_processed(existing)
            except Exception as exc:
                savepoint.rollback()
                if isinstance(exc, ChainDiscontinuityError):
                    self._preserve_discontinuity_flag(exc)
                return self._handle_failure(envelope, exc)

            logger.info(
                "message_processed",
                extra={
                    "consumer": self._consumer_id,
                    "schema": envelope.schema,
                    "result_hash": record.result_hash,
                },
            )
            return ProcessingResult(success=True, result_hash=record.result_hash)

    def _record(self, envelope: MessageEnvelope, result: Any) -> ConsumerInboxRecord:
        record = ConsumerInboxRecord(
            consumer=self._consumer_id,
            message_id=envelope.message_id,
            schema=envelope.schema,
            result_hash=compute_payload_hash(result),
            result_data=to_json_safe(result),
            processed_at=self._clock.now(),
        )
        self._session.add(record)
        self._session.flush()
        return record

    def _already_processed(self, record: ConsumerInboxRecord) -> ProcessingResult:
        logger.info(
            "message_already_processed",
            extra={"consumer": self._consumer_id, "processed_at": record.processed_at},
        )
        return ProcessingResult(success=True, result_hash=record.result_hash, duplicate=True)

    def _preserve_discontinuity_flag(self, exc: ChainDiscontinuityError) -> None:
        """Re-record a chain discontinuity the rolled-back handler had flagged."""
        entry = record_chain_discontinuity(self._session, self._clock, exc)
        logger.warning(
            "chain_discontinuity_flag_preserved",
            extra={"consumer": self._consumer_id, "chain_scope": exc.scope, "seq": entry.seq},
        )

    def _handle_failure(self, envelope: MessageEnvelope, exc: Exception) -> ProcessingResult:
        attempt = envelope.retry_count + 1
        should_retry = self._retry_policy.should_retry(exc, attempt, self._max_retries)

        if should_retry:
            delay = self._retry_policy.delay_ms(attempt)
            logger.warning(
                "message_processing_failed",
                extra={
                    "consumer": self._consumer_id,
                    "attempt": attempt,
                    "max_retries": self._max_retries,
                    "retry_delay_ms": delay,
                    "error_type": type(exc).__name__,
                },
                exc_info=exc,
            )
            return ProcessingResult(
                success=False,
                error=exc,
                should_retry=True,
                retry_delay_ms=delay,
            )

        if self._publisher is not None:
            error_envelope = self._factory.create_error_message(envelope, exc, retryable=False)
            try:
                self._publisher.publish_dead_letter(error_envelope, self._dlq_domain)
            except BrokerUnavailableError as publish_error:
                logger.error(
                    "dead_letter_publish_failed",
                    extra={"consumer": self._consumer_id, "dlq_domain": self._dlq_domain},
                    exc_info=publish_error,
                )
                return ProcessingResult(
                    success=False,
                    error=exc,
                    should_retry=True,
                    retry_delay_ms=self._retry_policy.delay_ms(attempt),
                )

        ComplianceAuditLog(self._session, self._clock).log(
            event_type=ComplianceEventType.MESSAGE_DEAD_LETTERED,
            resource_type="message",
            resource_id=envelope.message_id,
            payload={
                "consumer": self._consumer_id,
                "schema": envelope.schema,
                "attempt": attempt,
                "error_type": type(exc).__name__,
                "error_code": getattr(exc, "code", None),
                "dlq_domain": self._dlq_domain,
            },
            correlation_id=envelope.correlation_id,
            description=str(exc),
        )

        logger.error(
            "message_dead_lettered",
            extra={
                "consumer": self._consumer_id,
                "attempt": attempt,
                "error_type": type(exc).__name__,
                "error_code": getattr(exc, "code", None),
                "dlq_domain": self._dlq_domain,
            },
            exc_info=exc,
        )
        return ProcessingResult(success=False, error=exc, dead_letter=True)

    def cleanup(self, older_than_days: int | None = None) -> int:
        """Delete this consumer's inbox rows past the retention window."""
        days = self._retention_days if older_than_days is None else older_than_days
        cutoff = self._clock.now() - timedelta(days=days)
        removed = self._session.execute(
            delete(ConsumerInboxRecord).where(
                ConsumerInboxRecord.consumer == self._consumer_id,
                ConsumerInboxRecord.processed_at < cutoff,
            )
        ).rowcount
        self._session.flush()
        logger.info(
            "consumer_inbox_cleaned",
            extra={"consumer": self._consumer_id, "removed": removed, "cutoff": cutoff},
        )
        return removed
