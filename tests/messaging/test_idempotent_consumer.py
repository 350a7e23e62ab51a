"""
Tests for IdempotentConsumer.

Covers:
- Handler runs once per (consumer, message_id); redelivery returns the stored hash
- Separate consumers each process the same message
- Transient failures are retried with backoff and leave no inbox row
- Permanent failures and exhausted retries are dead-lettered
- A failed dead-letter publish keeps the message for retry
- Dead letters are recorded in the compliance chain
- Inbox retention cleanup
"""

import pytest
from sqlalchemy import func, select

from payment_kernel.exceptions import BrokerUnavailableError, MalformedIngestionError
from payment_kernel.messaging.consumer import IdempotentConsumer
from payment_kernel.messaging.retry import RetryPolicy
from payment_kernel.messaging.schemas import ERROR_SCHEMA
from payment_kernel.models.chain import ChainHead, ComplianceEventType
from payment_kernel.utils.hashing import compute_payload_hash


@pytest.fixture
def retry_policy():
    return RetryPolicy(random_source=lambda: 0.0)


@pytest.fixture
def consumer(session, transport, deterministic_clock, retry_policy):
    return IdempotentConsumer(
        session,
        "payment-validator",
        max_retries=3,
        retry_policy=retry_policy,
        transport=transport,
        clock=deterministic_clock,
    )


class CountingHandler:
    def __init__(self, result=None, error=None):
        self.calls = 0
        self.result = result if result is not None else {"status": "ok"}
        self.error = error

    def __call__(self, envelope):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


class TestExactlyOnce:
    def test_first_delivery_runs_handler(self, consumer, payment_envelope):
        envelope = payment_envelope()
        handler = CountingHandler()

        result = consumer.process(envelope, handler)

        assert result.success
        assert not result.duplicate
        assert result.result_hash == compute_payload_hash({"status": "ok"})
        assert handler.calls == 1
        assert consumer.is_processed(envelope.message_id)

    def test_redelivery_skips_handler(self, consumer, payment_envelope):
        """Same message id twice: handler once, same stored hash returned."""
        envelope = payment_envelope()
        handler = CountingHandler()

        first = consumer.process(envelope, handler)
        second = consumer.process(envelope, handler)

        assert handler.calls == 1
        assert second.success and second.duplicate
        assert second.result_hash == first.result_hash

    def test_consumers_are_independent(self, session, consumer, payment_envelope, deterministic_clock):
        envelope = payment_envelope()
        other = IdempotentConsumer(session, "payment-router", clock=deterministic_clock)
        handler = CountingHandler()

        consumer.process(envelope, handler)
        other.process(envelope, handler)

        assert handler.calls == 2

    def test_result_stored(self, consumer, payment_envelope):
        envelope = payment_envelope()
        consumer.process(envelope, CountingHandler(result={"allocated": 100000}))

        record = consumer.get_processed(envelope.message_id)
        assert record.result_data == {"allocated": 100000}
        assert record.schema == envelope.schema


class TestFailures:
    def test_transient_failure_retried(self, consumer, payment_envelope, transport):
        envelope = payment_envelope()
        result = consumer.process(envelope, CountingHandler(error=RuntimeError("db timeout")))

        assert not result.success
        assert result.should_retry
        assert result.retry_delay_ms == 5000
        assert not result.dead_letter
        assert not consumer.is_processed(envelope.message_id)
        assert transport.published == []

    def test_backoff_grows_with_retry_count(self, consumer, payment_envelope):
        envelope = payment_envelope().with_retry()
        result = consumer.process(envelope, CountingHandler(error=RuntimeError("again")))
        assert result.retry_delay_ms == 10000

    def test_handler_writes_rolled_back(self, session, consumer, payment_envelope):
        """A failing handler leaves neither an inbox row nor its own writes."""

        def handler(envelope):
            session.add(ChainHead(scope="handler-side-effect", seq=0))
            session.flush()
            raise RuntimeError("after write")

        consumer.process(payment_envelope(), handler)

        count = session.execute(
            select(func.count()).select_from(ChainHead).where(ChainHead.scope == "handler-side-effect")
        ).scalar_one()
        assert count == 0

    def test_exhausted_retries_dead_lettered(self, consumer, payment_envelope, transport):
        envelope = payment_envelope().with_retry().with_retry()
        result = consumer.process(envelope, CountingHandler(error=RuntimeError("still failing")))

        assert result.dead_letter
        assert not result.should_retry
        dlq = transport.messages_for("payments.dlq")
        assert len(dlq) == 1
        assert dlq[0].routing_key == "q.payments.dlq"
        assert dlq[0].body["schema"] == ERROR_SCHEMA
        assert dlq[0].body["causation_id"] == envelope.message_id
        assert dlq[0].body["data"]["original_message"]["message_id"] == envelope.message_id

    def test_permanent_failure_dead_lettered_immediately(self, consumer, payment_envelope, transport):
        error = MalformedIngestionError("amount_minor", "must be an integer")
        result = consumer.process(payment_envelope(), CountingHandler(error=error))

        assert result.dead_letter
        assert result.error is error
        assert transport.messages_for("payments.dlq")[0].body["data"]["error"]["code"] == "MALFORMED_INGESTION"

    def test_dead_letter_logged(self, consumer, payment_envelope, captured_logs):
        consumer.process(payment_envelope(), CountingHandler(error=MalformedIngestionError("x", "y")))

        records = [r for r in captured_logs() if r["message"] == "message_dead_lettered" and r["level"] == "ERROR"]
        assert len(records) == 1
        assert records[0]["error_code"] == "MALFORMED_INGESTION"

    def test_dead_letter_audited(self, consumer, payment_envelope, audit_log):
        envelope = payment_envelope()
        consumer.process(envelope, CountingHandler(error=MalformedIngestionError("x", "y")))

        [entry] = audit_log.get_entries(event_type=ComplianceEventType.MESSAGE_DEAD_LETTERED)
        assert entry.resource_id == envelope.message_id
        assert entry.correlation_id == envelope.correlation_id
        assert entry.payload["consumer"] == "payment-validator"
        assert entry.payload["error_code"] == "MALFORMED_INGESTION"

    def test_retry_not_audited(self, consumer, payment_envelope, audit_log):
        consumer.process(payment_envelope(), CountingHandler(error=RuntimeError("blip")))
        assert audit_log.get_entries(event_type=ComplianceEventType.MESSAGE_DEAD_LETTERED) == []

    def test_dlq_publish_failure_keeps_message(self, consumer, payment_envelope, transport):
        """If the DLQ is unreachable the message is retried, not dropped."""
        transport.available = False
        result = consumer.process(payment_envelope(), CountingHandler(error=MalformedIngestionError("x", "y")))

        assert not result.dead_letter
        assert result.should_retry
        assert result.retry_delay_ms == 5000

    def test_without_transport_still_reports_dead_letter(self, session, payment_envelope, deterministic_clock):
        consumer = IdempotentConsumer(session, "bare", clock=deterministic_clock)
        result = consumer.process(payment_envelope(), CountingHandler(error=MalformedIngestionError("x", "y")))
        assert result.dead_letter

    def test_max_retries_must_be_positive(self, session):
        with pytest.raises(ValueError):
            IdempotentConsumer(session, "c", max_retries=0)


class TestCleanup:
    def test_old_rows_removed(self, consumer, payment_envelope, deterministic_clock):
        old = payment_envelope(reference="OLD-1")
        consumer.process(old, CountingHandler())
        deterministic_clock.advance(31 * 24 * 3600)
        recent = payment_envelope(reference="NEW-1")
        consumer.process(recent, CountingHandler())

        assert consumer.cleanup() == 1
        assert not consumer.is_processed(old.message_id)
        assert consumer.is_processed(recent.message_id)

    def test_explicit_window(self, consumer, payment_envelope, deterministic_clock):
        envelope = payment_envelope()
        consumer.process(envelope, CountingHandler())
        deterministic_clock.advance(2 * 24 * 3600)

        assert consumer.cleanup(older_than_days=5) == 0
        assert consumer.cleanup(older_than_days=1) == 1
