"""
Tests for the IngestionLedger idempotent gate.

Covers:
- First receipt persists one ingestion
- The ACH-12345 re-delivery returns the original record
- Same key with a different payload is a conflict, never an overwrite
- Validation before any write
- Envelope ingestion
- Immutability of stored ingestions
"""

from dataclasses import replace
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from payment_kernel.exceptions import (
    ImmutabilityViolationError,
    IngestionConflictError,
    IngestionNotFoundError,
    MalformedIngestionError,
)
from payment_kernel.models.chain import ComplianceEventType
from payment_kernel.models.ingestion import PaymentIngestion
from payment_kernel.services.ingestion_ledger import IngestionLedger, IngestStatus
from payment_kernel.utils.idempotency import derive_idempotency_key
from tests.support import make_payment_data, make_request


def _count(session):
    return session.execute(select(func.count()).select_from(PaymentIngestion)).scalar_one()


class TestFirstReceipt:
    """A new payment is admitted exactly once."""

    def test_accepted_and_persisted(self, session, ledger):
        """First receipt returns ACCEPTED with the stored row."""
        result = ledger.ingest(make_request())

        assert result.status == IngestStatus.ACCEPTED
        assert not result.is_duplicate
        assert _count(session) == 1
        stored = ledger.get(result.ingestion_id)
        assert stored.amount_minor == 100000
        assert stored.loan_id == "1"
        assert stored.method == "ach"
        assert stored.idempotency_key == derive_idempotency_key(
            "ach", "ACH-12345", "2025-08-24", 100000, "1"
        )

    def test_received_at_from_clock(self, ledger, deterministic_clock):
        result = ledger.ingest(make_request())
        assert result.ingestion.received_at == deterministic_clock.now()

    def test_audited_as_payment_received(self, ledger, audit_log):
        """Acceptance writes a PAYMENT.RECEIVED compliance entry."""
        result = ledger.ingest(make_request())

        entries = audit_log.get_entries(event_type=ComplianceEventType.PAYMENT_RECEIVED)
        assert len(entries) == 1
        assert entries[0].resource_id == str(result.ingestion_id)
        assert entries[0].payload["idempotency_key"] == result.idempotency_key

    def test_no_audit_log_no_compliance_entry(self, session, deterministic_clock, audit_log):
        """Auditing admission is optional."""
        IngestionLedger(session, clock=deterministic_clock).ingest(make_request())
        assert audit_log.get_entries() == []

    def test_logs_payment_ingested(self, ledger, captured_logs):
        ledger.ingest(make_request())
        assert any(r["message"] == "payment_ingested" for r in captured_logs())


class TestDuplicateDelivery:
    """Re-delivery converges on the original record."""

    def test_ach_12345_twice_yields_one_record(self, session, ledger):
        """Identical ACH payload ingested twice: one record, second call returns the first id."""
        first = ledger.ingest(make_request(reference="ACH-12345", amount_minor=100000, loan_id=1))
        second = ledger.ingest(make_request(reference="ACH-12345", amount_minor=100000, loan_id=1))

        assert second.status == IngestStatus.DUPLICATE
        assert second.ingestion_id == first.ingestion_id
        assert _count(session) == 1

    def test_recased_reference_is_same_payment(self, session, ledger):
        """A human re-keying the reference in lowercase does not create a second payment."""
        payload = make_payment_data()
        first = ledger.ingest(make_request(raw_payload=payload))
        second = ledger.ingest(make_request(reference="ach-12345 ", method="ACH", raw_payload=payload))

        assert second.is_duplicate
        assert second.ingestion_id == first.ingestion_id
        assert _count(session) == 1

    def test_duplicate_has_no_side_effects(self, ledger, audit_log):
        """Only the first receipt is audited."""
        ledger.ingest(make_request())
        ledger.ingest(make_request())

        assert len(audit_log.get_entries(event_type=ComplianceEventType.PAYMENT_RECEIVED)) == 1

    def test_duplicate_logged(self, ledger, captured_logs):
        ledger.ingest(make_request())
        ledger.ingest(make_request())
        assert any(r["message"] == "ingestion_duplicate" for r in captured_logs())

    def test_different_reference_is_new_payment(self, session, ledger):
        ledger.ingest(make_request(reference="ACH-12345"))
        ledger.ingest(make_request(reference="ACH-12346"))
        assert _count(session) == 2


class TestConflict:
    """Same key, different payload: conflict, original untouched."""

    def test_conflict_raised(self, session, ledger):
        first = ledger.ingest(make_request())
        altered = make_payment_data()
        altered["source"]["batch_id"] = "B-999"

        with pytest.raises(IngestionConflictError) as exc_info:
            ledger.ingest(make_request(raw_payload=altered))

        error = exc_info.value
        assert error.existing_ingestion_id == str(first.ingestion_id)
        assert error.existing_payload_hash == first.payload_hash
        assert error.new_payload_hash != first.payload_hash
        assert error.code == "IDEMPOTENCY_CONFLICT"

    def test_original_never_overwritten(self, session, ledger):
        first = ledger.ingest(make_request())
        altered = make_payment_data()
        altered["source"]["provider"] = "other"

        with pytest.raises(IngestionConflictError):
            ledger.ingest(make_request(raw_payload=altered))

        stored = ledger.get(first.ingestion_id)
        assert stored.payload_hash == first.payload_hash
        assert stored.raw_payload["source"]["provider"] == "column"
        assert _count(session) == 1

    def test_conflict_logged_with_both_hashes(self, ledger, captured_logs):
        ledger.ingest(make_request())
        altered = make_payment_data()
        altered["artifacts"] = [{"type": "receipt", "uri": "s3://b/r.pdf"}]
        with pytest.raises(IngestionConflictError):
            ledger.ingest(make_request(raw_payload=altered))

        records = [r for r in captured_logs() if r["message"] == "ingestion_conflict"]
        assert len(records) == 1
        assert records[0]["level"] == "ERROR"
        assert records[0]["existing_payload_hash"] != records[0]["new_payload_hash"]

    def test_conflict_audited(self, ledger, audit_log):
        first = ledger.ingest(make_request())
        altered = make_payment_data()
        altered["source"]["batch_id"] = "B-999"
        with pytest.raises(IngestionConflictError) as exc_info:
            ledger.ingest(make_request(raw_payload=altered))

        [entry] = audit_log.get_entries(event_type=ComplianceEventType.PAYMENT_CONFLICT)
        assert entry.resource_id == str(first.ingestion_id)
        assert entry.payload["existing_payload_hash"] == first.payload_hash
        assert entry.payload["new_payload_hash"] == exc_info.value.new_payload_hash
        assert audit_log.verify().valid


class TestValidation:
    """Malformed input is rejected before anything is written."""

    @pytest.mark.parametrize(
        "field,overrides",
        [
            ("channel", {"channel": " "}),
            ("method", {"method": ""}),
            ("source_reference", {"reference": ""}),
        ],
    )
    def test_blank_fields(self, session, ledger, field, overrides):
        with pytest.raises(MalformedIngestionError) as exc_info:
            ledger.ingest(make_request(raw_payload={}, **overrides))
        assert exc_info.value.field == field
        assert _count(session) == 0

    def test_float_amount(self, session, ledger):
        with pytest.raises(MalformedIngestionError) as exc_info:
            ledger.ingest(make_request(amount_minor=1000.5, raw_payload={}))
        assert exc_info.value.field == "amount_minor"
        assert _count(session) == 0

    def test_envelope_must_be_object(self, ledger):
        bad = replace(make_request(), normalized_envelope=["not", "an", "object"])
        with pytest.raises(MalformedIngestionError) as exc_info:
            ledger.ingest(bad)
        assert exc_info.value.field == "normalized_envelope"

    def test_missing_loan(self, ledger):
        with pytest.raises(MalformedIngestionError) as exc_info:
            ledger.ingest(make_request(loan_id="  ", raw_payload={}))
        assert exc_info.value.field == "loan_id"


class TestEnvelopeIngestion:
    """loanserve.payments.v1 envelopes pass through the same gate."""

    def test_ingest_envelope(self, ledger, payment_envelope):
        envelope = payment_envelope(correlation_id="corr-env")
        result = ledger.ingest_envelope(envelope)

        assert result.status == IngestStatus.ACCEPTED
        assert result.ingestion.correlation_id == "corr-env"
        assert result.ingestion.raw_payload == envelope.data
        assert result.ingestion.normalized_envelope["schema"] == envelope.schema

    def test_redelivery_with_new_message_id_is_duplicate(self, ledger, payment_envelope):
        """Producers may re-stamp message ids; the body decides identity."""
        first = ledger.ingest_envelope(payment_envelope())
        second = ledger.ingest_envelope(payment_envelope())
        assert second.is_duplicate
        assert second.ingestion_id == first.ingestion_id

    def test_wrong_schema_rejected(self, ledger, message_factory):
        envelope = message_factory.create_message(
            "loanserve.v1.payment.processed",
            {"payment_id": "p1", "source": "ach", "loan_id": "1", "amount_cents": 1},
        )
        with pytest.raises(MalformedIngestionError) as exc_info:
            ledger.ingest_envelope(envelope)
        assert exc_info.value.field == "schema"


class TestLookupAndImmutability:
    def test_unknown_id(self, ledger):
        with pytest.raises(IngestionNotFoundError):
            ledger.get(uuid4())

    def test_lookup_by_key(self, ledger):
        result = ledger.ingest(make_request())
        assert ledger.get_by_idempotency_key(result.idempotency_key).id == result.ingestion_id
        assert ledger.get_by_idempotency_key("0" * 64) is None

    def test_list_by_channel(self, ledger):
        ledger.ingest(make_request(reference="A-1"))
        ledger.ingest(make_request(reference="W-1", channel="wire", method="wire"))
        assert [i.source_reference for i in ledger.list_by_channel("ach")] == ["A-1"]

    def test_update_blocked(self, session, ledger):
        """Stored ingestions are evidence and cannot be edited."""
        result = ledger.ingest(make_request())
        result.ingestion.amount_minor = 1

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
