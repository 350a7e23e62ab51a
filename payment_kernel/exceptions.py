"""
Typed Exception Hierarchy for the Payment Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Money-moving code must fail precisely. Callers catch by type, never by
message text, and every error carries:
  1. a TYPED exception class (catch by type, not message)
  2. a CODE class attribute (machine-readable, API-safe)
  3. structured DATA attributes (exact divergent values, ids, hashes)

Operators see "discontinuity at record 3, expected 9f2c..., found 41aa..."
rather than "something went wrong".

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    PaymentKernelError (base)
    |
    +-- ValidationError                 malformed input, rejected before persistence
    |   +-- IdempotencyInputError
    |   +-- MalformedIngestionError
    |   +-- InvalidArtifactError
    |   +-- InvalidActorError
    |   +-- InvalidAllocationInputError
    |   +-- InvalidCollectionError
    |   +-- SchemaNotFoundError
    |   +-- EnvelopeValidationError
    |   +-- InvalidExportFormatError
    |
    +-- NotFoundError
    |   +-- IngestionNotFoundError
    |   +-- ArtifactNotFoundError
    |   +-- ContractNotFoundError
    |   +-- CycleNotFoundError
    |
    +-- ConflictError                   requires explicit operator action
    |   +-- IngestionConflictError
    |   +-- CycleStateError
    |
    +-- DataIntegrityError              hash mismatch / chain break / tamper
    |   +-- ArtifactHashMismatchError
    |   +-- ChainDiscontinuityError
    |   +-- ImmutabilityViolationError
    |
    +-- ReconciliationError
    |   +-- ReconciliationVarianceError
    |   +-- ReconciliationMissingError
    |
    +-- TransportError                  retried with backoff, then dead-lettered
        +-- BrokerUnavailableError
        +-- FetchTimeoutError

DataIntegrityError is the taxonomy's "IntegrityError". It is not named
IntegrityError so that it never shadows sqlalchemy.exc.IntegrityError, which
the persistence layer catches for unique-constraint races.

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_IDEMPOTENCY_INPUT   | Key material missing or non-integer amount
                | MALFORMED_INGESTION         | Ingestion request fails boundary checks
                | INVALID_ARTIFACT            | Artifact missing ingestion id, type or locator
                | INVALID_ACTOR               | Actor class not system/human/ai
                | INVALID_ALLOCATION_INPUT    | Float amount, negative payment, bad bucket
                | INVALID_COLLECTION          | Collection outside cycle period or bad amount
                | SCHEMA_NOT_FOUND            | Envelope schema not registered
                | ENVELOPE_VALIDATION_ERROR   | Envelope or its data variant malformed
                | INVALID_EXPORT_FORMAT       | Export format not csv/xml
----------------|-----------------------------|-----------------------------------------
Not found       | INGESTION_NOT_FOUND         | Ingestion id doesn't exist
                | ARTIFACT_NOT_FOUND          | Artifact id doesn't exist
                | CONTRACT_NOT_FOUND          | Investor contract doesn't exist
                | CYCLE_NOT_FOUND             | Remittance cycle doesn't exist
----------------|-----------------------------|-----------------------------------------
Conflict        | IDEMPOTENCY_CONFLICT        | Same key, different payload hash
                | CYCLE_STATE_CONFLICT        | Transition attempted from wrong status
----------------|-----------------------------|-----------------------------------------
Integrity       | ARTIFACT_HASH_MISMATCH      | Stored artifact hash != recomputed
                | CHAIN_DISCONTINUITY         | Hash chain link or record hash broken
                | IMMUTABILITY_VIOLATION      | Update/delete of an append-only record
----------------|-----------------------------|-----------------------------------------
Reconciliation  | RECONCILIATION_VARIANCE     | Latest snapshot unbalanced, release blocked
                | RECONCILIATION_MISSING      | Release attempted with no snapshot
----------------|-----------------------------|-----------------------------------------
Transport       | BROKER_UNAVAILABLE          | Publish failed, broker unreachable
                | FETCH_TIMEOUT               | External fetch exceeded its timeout

===============================================================================
HANDLING PATTERNS
===============================================================================

1. DUPLICATES ARE SUCCESS, CONFLICTS ARE NOT:

    result = ledger.ingest(request)          # DUPLICATE returns existing record
    ...
    except IngestionConflictError as e:      # same key, different payload
        route_to_operator(e.idempotency_key, e.existing_payload_hash, e.new_payload_hash)

2. INTEGRITY ERRORS ARE NEVER AUTO-HEALED:

    except ChainDiscontinuityError as e:
        alert_compliance(e.scope, e.index, e.expected_hash, e.actual_hash)

3. RETRYABILITY IS A PROPERTY OF THE TYPE:

    ValidationError / ConflictError / DataIntegrityError -> never retried
    TransportError                                       -> retried, then DLQ
"""


class PaymentKernelError(Exception):
    """
    Base exception for all payment kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PAYMENT_KERNEL_ERROR"
    retryable: bool = False


# Validation


class ValidationError(PaymentKernelError):
    """Malformed input rejected at the boundary."""

    code: str = "VALIDATION_ERROR"


class IdempotencyInputError(ValidationError):
    """Idempotency key material is missing or malformed."""

    code: str = "INVALID_IDEMPOTENCY_INPUT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid idempotency input '{field}': {reason}")


class MalformedIngestionError(ValidationError):
    """Ingestion request failed boundary validation."""

    code: str = "MALFORMED_INGESTION"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Malformed ingestion field '{field}': {reason}")


class InvalidArtifactError(ValidationError):
    """Artifact metadata failed boundary validation."""

    code: str = "INVALID_ARTIFACT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid artifact field '{field}': {reason}")


class InvalidActorError(ValidationError):
    """Actor class is not one of system, human, ai."""

    code: str = "INVALID_ACTOR"

    def __init__(self, actor_type: str):
        self.actor_type = actor_type
        super().__init__(f"Invalid actor type: {actor_type!r}")


class InvalidAllocationInputError(ValidationError):
    """Waterfall input violates the exact-arithmetic contract."""

    code: str = "INVALID_ALLOCATION_INPUT"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid allocation input '{field}': {reason}")


class InvalidCollectionError(ValidationError):
    """Collection amounts, loan or date rejected by a remittance cycle."""

    code: str = "INVALID_COLLECTION"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid collection field '{field}': {reason}")


class SchemaNotFoundError(ValidationError):
    """No envelope schema registered under this name."""

    code: str = "SCHEMA_NOT_FOUND"

    def __init__(self, schema: str):
        self.schema = schema
        super().__init__(f"No schema registered: {schema}")


class EnvelopeValidationError(ValidationError):
    """Message envelope or its data variant is malformed."""

    code: str = "ENVELOPE_VALIDATION_ERROR"

    def __init__(self, schema: str | None, errors: list[str]):
        self.schema = schema
        self.errors = errors
        super().__init__(
            f"Envelope validation failed for {schema}: {'; '.join(errors)}"
        )


class InvalidExportFormatError(ValidationError):
    """Remittance export format is not supported."""

    code: str = "INVALID_EXPORT_FORMAT"

    def __init__(self, export_format: str):
        self.export_format = export_format
        super().__init__(f"Unsupported export format: {export_format!r}")


# Not found


class NotFoundError(PaymentKernelError):
    """Base exception for missing records."""

    code: str = "NOT_FOUND"


class IngestionNotFoundError(NotFoundError):
    """Payment ingestion does not exist."""

    code: str = "INGESTION_NOT_FOUND"

    def __init__(self, ingestion_id: str):
        self.ingestion_id = ingestion_id
        super().__init__(f"Ingestion not found: {ingestion_id}")


class ArtifactNotFoundError(NotFoundError):
    """Payment artifact does not exist."""

    code: str = "ARTIFACT_NOT_FOUND"

    def __init__(self, artifact_id: str):
        self.artifact_id = artifact_id
        super().__init__(f"Artifact not found: {artifact_id}")


class ContractNotFoundError(NotFoundError):
    """Investor contract does not exist."""

    code: str = "CONTRACT_NOT_FOUND"

    def __init__(self, contract_id: str):
        self.contract_id = contract_id
        super().__init__(f"Investor contract not found: {contract_id}")


class CycleNotFoundError(NotFoundError):
    """Remittance cycle does not exist."""

    code: str = "CYCLE_NOT_FOUND"

    def __init__(self, cycle_id: str):
        self.cycle_id = cycle_id
        super().__init__(f"Remittance cycle not found: {cycle_id}")


# Conflict


class ConflictError(PaymentKernelError):
    """Base exception for conflicts that need explicit operator resolution."""

    code: str = "CONFLICT"


class IngestionConflictError(ConflictError):
    """
    Idempotency key reused with a different payload.

    Either a genuine correction (requires the explicit override path) or an
    upstream bug. Never auto-resolved.
    """

    code: str = "IDEMPOTENCY_CONFLICT"

    def __init__(
        self,
        idempotency_key: str,
        existing_ingestion_id: str,
        existing_payload_hash: str,
        new_payload_hash: str,
    ):
        self.idempotency_key = idempotency_key
        self.existing_ingestion_id = existing_ingestion_id
        self.existing_payload_hash = existing_payload_hash
        self.new_payload_hash = new_payload_hash
        super().__init__(
            f"Idempotency key {idempotency_key} already ingested as "
            f"{existing_ingestion_id} with payload hash {existing_payload_hash}, "
            f"received {new_payload_hash}"
        )


class CycleStateError(ConflictError):
    """Remittance cycle is not in the status the transition requires."""

    code: str = "CYCLE_STATE_CONFLICT"

    def __init__(self, cycle_id: str, expected_status: str, actual_status: str):
        self.cycle_id = cycle_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        super().__init__(
            f"Remittance cycle {cycle_id} is not {expected_status} "
            f"(current status: {actual_status})"
        )


# Integrity


class DataIntegrityError(PaymentKernelError):
    """Base exception for tamper-evidence failures. Never auto-healed."""

    code: str = "INTEGRITY_ERROR"


class ArtifactHashMismatchError(DataIntegrityError):
    """Stored artifact hash does not match the recomputed hash."""

    code: str = "ARTIFACT_HASH_MISMATCH"

    def __init__(
        self,
        artifact_id: str,
        hash_source: str,
        expected_hash: str,
        actual_hash: str,
    ):
        self.artifact_id = artifact_id
        self.hash_source = hash_source
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Artifact {artifact_id} hash mismatch ({hash_source}): "
            f"stored {expected_hash}, recomputed {actual_hash}"
        )


class ChainDiscontinuityError(DataIntegrityError):
    """Hash chain is broken at a specific record index."""

    code: str = "CHAIN_DISCONTINUITY"

    def __init__(
        self,
        scope: str,
        index: int,
        expected_hash: str | None,
        actual_hash: str | None,
        chain: str | None = None,
        reason: str | None = None,
        records_checked: int | None = None,
    ):
        self.scope = scope
        self.index = index
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        self.chain = chain
        self.reason = reason
        self.records_checked = records_checked
        super().__init__(
            f"Hash chain {scope} broken at record {index}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


class ImmutabilityViolationError(DataIntegrityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Reconciliation


class ReconciliationError(PaymentKernelError):
    """Base exception for reconciliation gating."""

    code: str = "RECONCILIATION_ERROR"


class ReconciliationVarianceError(ReconciliationError):
    """Latest reconciliation snapshot is unbalanced; release is blocked."""

    code: str = "RECONCILIATION_VARIANCE"

    def __init__(self, cycle_id: str, snapshot_id: str, differences: dict[str, int]):
        self.cycle_id = cycle_id
        self.snapshot_id = snapshot_id
        self.differences = differences
        super().__init__(
            f"Remittance cycle {cycle_id} is unbalanced per snapshot "
            f"{snapshot_id}: {differences}"
        )


class ReconciliationMissingError(ReconciliationError):
    """Release attempted before any reconciliation snapshot exists."""

    code: str = "RECONCILIATION_MISSING"

    def __init__(self, cycle_id: str):
        self.cycle_id = cycle_id
        super().__init__(f"Remittance cycle {cycle_id} has no reconciliation snapshot")


# Transport


class TransportError(PaymentKernelError):
    """Broker or external fetch failure. Retried with backoff."""

    code: str = "TRANSPORT_ERROR"
    retryable: bool = True

    def __init__(self, operation: str, target: str, reason: str):
        self.operation = operation
        self.target = target
        self.reason = reason
        super().__init__(f"Transport failure during {operation} to {target}: {reason}")


class BrokerUnavailableError(TransportError):
    """Message broker could not accept a publish."""

    code: str = "BROKER_UNAVAILABLE"


class FetchTimeoutError(TransportError):
    """External fetch exceeded its bounded timeout."""

    code: str = "FETCH_TIMEOUT"
