"""
IngestionLedger -- the single idempotent gate every inbound payment passes.

Responsibility:
    Validates an inbound payment, derives its idempotency key and payload
    hash, and persists it exactly once.  Re-deliveries resolve to the
    original record; a reused key with a different payload is a conflict.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the intake pipeline
    (and by channel adapters directly) before any allocation happens.

Invariants enforced:
    - idempotency_key is unique (DB constraint is the final arbiter).
    - Same key + same payload hash -> DUPLICATE, no side effects.
    - Same key + different payload hash -> IngestionConflictError; the
      existing record is never overwritten.
    - Validation happens before any write.

Failure modes:
    - MalformedIngestionError: invalid envelope or payment attributes.
    - IngestionConflictError: key reused with a different payload.
    - Concurrent duplicate insert: the insert runs in a savepoint; the loser
      catches sqlalchemy IntegrityError, rolls the savepoint back, and
      resolves against the winner's row.

Audit relevance:
    Acceptance is logged and, when an audit log is wired, recorded as a
    PAYMENT.RECEIVED compliance entry.  Conflicts are logged at ERROR with
    both payload hashes and, with an audit log, recorded as PAYMENT.CONFLICT
    before the error is raised.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.exceptions import (
    IdempotencyInputError,
    IngestionConflictError,
    IngestionNotFoundError,
    MalformedIngestionError,
)
from payment_kernel.logging_config import get_logger
from payment_kernel.messaging.schemas import PAYMENT_SCHEMA
from payment_kernel.models.chain import ComplianceEventType
from payment_kernel.models.ingestion import PaymentIngestion
from payment_kernel.utils.hashing import (
    HashFunction,
    canonicalize_json,
    sha256_hex,
    to_json_safe,
)
from payment_kernel.utils.idempotency import (
    derive_idempotency_key,
    normalize_amount_minor,
    normalize_value_date,
)

if TYPE_CHECKING:
    from payment_kernel.messaging.envelope import MessageEnvelope
    from payment_kernel.services.compliance_audit import ComplianceAuditLog

logger = get_logger("services.ingestion_ledger")


class IngestStatus(str, Enum):
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class IngestionRequest:
    """One inbound payment as handed over by a channel adapter."""

    channel: str
    source_reference: str
    method: str
    value_date: date | str
    amount_minor: int
    loan_id: str | int
    raw_payload: Mapping[str, Any]
    normalized_envelope: Mapping[str, Any]
    currency: str = "USD"
    correlation_id: str | None = None


@dataclass(frozen=True)
class IngestResult:
    status: IngestStatus
    ingestion: PaymentIngestion
    idempotency_key: str
    payload_hash: str

    @property
    def is_duplicate(self) -> bool:
        return self.status == IngestStatus.DUPLICATE

    @property
    def ingestion_id(self) -> UUID:
        return self.ingestion.id


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise MalformedIngestionError(field, "must be a non-empty string")
    return value.strip()


class IngestionLedger:
    """
    Idempotent persistence of inbound payments.

    Contract:
        ingest() returns an IngestResult whose ingestion is the canonical
        record for the request's idempotency key.

    Guarantees:
        - At most one PaymentIngestion per idempotency key.
        - DUPLICATE results carry the existing record untouched.

    Non-goals:
        - Does NOT commit -- caller controls the transaction.
        - Does NOT offer an overwrite path for conflicts; corrections are an
          operator action outside this ledger.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        audit_log: "ComplianceAuditLog | None" = None,
        hash_function: HashFunction = sha256_hex,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._audit_log = audit_log
        self._hash = hash_function

    # Validation

    def _validate(self, request: IngestionRequest) -> tuple[str, int, str]:
        if not isinstance(request.normalized_envelope, Mapping):
            raise MalformedIngestionError(
                "normalized_envelope", "must be a JSON object"
            )
        if not isinstance(request.raw_payload, Mapping):
            raise MalformedIngestionError("raw_payload", "must be a JSON object")

        _require_text(request.channel, "channel")
        _require_text(request.source_reference, "source_reference")
        _require_text(request.method, "method")
        _require_text(request.currency, "currency")

        if (
            request.loan_id is None
            or isinstance(request.loan_id, bool)
            or not str(request.loan_id).strip()
        ):
            raise MalformedIngestionError("loan_id", "must not be empty")

        try:
            amount = normalize_amount_minor(request.amount_minor)
            value_date = normalize_value_date(request.value_date)
        except IdempotencyInputError as exc:
            raise MalformedIngestionError(exc.field, exc.reason) from exc

        return value_date, amount, str(request.loan_id).strip()

    # Lookups

    def _find_by_key(self, idempotency_key: str) -> PaymentIngestion | None:
        return self._session.execute(
            select(PaymentIngestion).where(
                PaymentIngestion.idempotency_key == idempotency_key
            )
        ).scalar_one_or_none()

    def get(self, ingestion_id: UUID) -> PaymentIngestion:
        ingestion = self._session.get(PaymentIngestion, ingestion_id)
        if ingestion is None:
            raise IngestionNotFoundError(str(ingestion_id))
        return ingestion

    def get_by_idempotency_key(self, idempotency_key: str) -> PaymentIngestion | None:
        return self._find_by_key(idempotency_key)

    def list_by_channel(self, channel: str, limit: int = 100) -> list[PaymentIngestion]:
        return list(
            self._session.execute(
                select(PaymentIngestion)
                .where(PaymentIngestion.channel == channel)
                .order_by(PaymentIngestion.received_at)
                .limit(limit)
            ).scalars().all()
        )

    # Ingest

    def payload_hash(self, raw_payload: Mapping[str, Any]) -> str:
        return self._hash(canonicalize_json(dict(raw_payload)).encode("utf-8"))

    def _resolve_existing(
        self,
        existing: PaymentIngestion,
        idempotency_key: str,
        payload_hash: str,
    ) -> IngestResult:
        if existing.payload_hash != payload_hash:
            logger.error(
                "ingestion_conflict",
                extra={
                    "idempotency_key": idempotency_key,
                    "ingestion_id": str(existing.id),
                    "existing_payload_hash": existing.payload_hash,
                    "new_payload_hash": payload_hash,
                },
            )
            if self._audit_log is not None:
                self._audit_log.log(
                    event_type=ComplianceEventType.PAYMENT_CONFLICT,
                    resource_type="payment_ingestion",
                    resource_id=existing.id,
                    payload={
                        "idempotency_key": idempotency_key,
                        "existing_payload_hash": existing.payload_hash,
                        "new_payload_hash": payload_hash,
                    },
                    correlation_id=existing.correlation_id,
                    description="Idempotency key reused with a different payload",
                )
            raise IngestionConflictError(
                idempotency_key=idempotency_key,
                existing_ingestion_id=str(existing.id),
                existing_payload_hash=existing.payload_hash,
                new_payload_hash=payload_hash,
            )

        logger.info(
            "ingestion_duplicate",
            extra={
                "idempotency_key": idempotency_key,
                "ingestion_id": str(existing.id),
            },
        )
        return IngestResult(
            status=IngestStatus.DUPLICATE,
            ingestion=existing,
            idempotency_key=idempotency_key,
            payload_hash=payload_hash,
        )

    def ingest(self, request: IngestionRequest) -> IngestResult:
        """
        Admit ``request`` exactly once.

        Raises:
            MalformedIngestionError: Validation failed; nothing persisted.
            IngestionConflictError: Key exists with a different payload hash.
        """
        value_date, amount, loan_id = self._validate(request)

        idempotency_key = derive_idempotency_key(
            request.method,
            request.source_reference,
            value_date,
            amount,
            loan_id,
            hash_function=self._hash,
        )
        payload_hash = self.payload_hash(request.raw_payload)

        existing = self._find_by_key(idempotency_key)
        if existing is not None:
            return self._resolve_existing(existing, idempotency_key, payload_hash)

        ingestion = PaymentIngestion(
            idempotency_key=idempotency_key,
            payload_hash=payload_hash,
            channel=request.channel.strip(),
            source_reference=request.source_reference.strip(),
            method=request.method.strip().lower(),
            value_date=date.fromisoformat(value_date),
            amount_minor=amount,
            currency=request.currency.strip().upper(),
            loan_id=loan_id,
            raw_payload=to_json_safe(dict(request.raw_payload)),
            normalized_envelope=to_json_safe(dict(request.normalized_envelope)),
            correlation_id=request.correlation_id,
            received_at=self._clock.now(),
        )

        savepoint = self._session.begin_nested()
        try:
            self._session.add(ingestion)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            # Lost the race; the winner's row is now visible
            savepoint.rollback()
            logger.info(
                "ingestion_race_resolved",
                extra={"idempotency_key": idempotency_key},
            )
            existing = self._find_by_key(idempotency_key)
            if existing is None:
                raise
            return self._resolve_existing(existing, idempotency_key, payload_hash)

        logger.info(
            "payment_ingested",
            extra={
                "ingestion_id": str(ingestion.id),
                "idempotency_key": idempotency_key,
                "channel": ingestion.channel,
                "amount_minor": amount,
                "loan_id": loan_id,
            },
        )

        if self._audit_log is not None:
            self._audit_log.log(
                event_type=ComplianceEventType.PAYMENT_RECEIVED,
                resource_type="payment_ingestion",
                resource_id=ingestion.id,
                payload={
                    "idempotency_key": idempotency_key,
                    "payload_hash": payload_hash,
                    "channel": ingestion.channel,
                    "amount_minor": amount,
                    "loan_id": loan_id,
                    "value_date": value_date,
                },
                correlation_id=request.correlation_id,
            )

        return IngestResult(
            status=IngestStatus.ACCEPTED,
            ingestion=ingestion,
            idempotency_key=idempotency_key,
            payload_hash=payload_hash,
        )

    def ingest_envelope(self, envelope: "MessageEnvelope") -> IngestResult:
        """
        Admit a ``loanserve.payments.v1`` message.

        The raw payload is the message body, so a redelivery hashes
        identically even when the producer assigned a new message id.
        """
        if envelope.schema != PAYMENT_SCHEMA:
            raise MalformedIngestionError(
                "schema", f"expected {PAYMENT_SCHEMA}, got {envelope.schema}"
            )
        data = envelope.data
        source = data.get("source") or {}
        payment = data.get("payment") or {}
        borrower = data.get("borrower") or {}

        return self.ingest(
            IngestionRequest(
                channel=source.get("channel"),
                source_reference=payment.get("reference"),
                method=payment.get("method"),
                value_date=payment.get("value_date"),
                amount_minor=payment.get("amount_cents"),
                loan_id=borrower.get("loan_id"),
                currency=payment.get("currency", "USD"),
                raw_payload=data,
                normalized_envelope=envelope.to_dict(),
                correlation_id=envelope.correlation_id,
            )
        )
