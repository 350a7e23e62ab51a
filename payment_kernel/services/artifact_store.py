"""
ArtifactStore -- evidence documents attached to payment ingestions.

Responsibility:
    Stores artifact metadata with a hash of the evidence, verifies stored
    hashes on demand, and removes an ingestion's artifacts.

Architecture position:
    Kernel > Services -- imperative shell.  Content is read through an
    injected ArtifactFetcher; hashing through an injected hash function.

Invariants enforced:
    - An artifact always names its ingestion, type and locator.
    - hash_source states what the stored hash covers:
        content   bytes fetched from the locator
        locator   the locator string (opaque schemes or fetch failure)
        provided  supplied by the producer
    - Stored hashes are never corrected.  A mismatch is reported and audited.
    - Missing or unreachable content never blocks storing.

Failure modes:
    - InvalidArtifactError: missing ingestion id, type or locator.
    - IngestionNotFoundError: the owning ingestion does not exist.
    - ArtifactNotFoundError: verify_hash() on an unknown id.

Audit relevance:
    ARTIFACT.STORED, ARTIFACT.HASH_MISMATCH and ARTIFACT.DELETED are
    written to the compliance chain.  A mismatch stays queryable; the
    evidentiary record is never removed because it is compromised.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.exceptions import (
    ArtifactHashMismatchError,
    ArtifactNotFoundError,
    IngestionNotFoundError,
    InvalidArtifactError,
)
from payment_kernel.logging_config import get_logger
from payment_kernel.models.artifact import HashSource, PaymentArtifact
from payment_kernel.models.chain import ComplianceEventType
from payment_kernel.models.ingestion import PaymentIngestion
from payment_kernel.services.artifact_fetcher import (
    ArtifactFetcher,
    HttpArtifactFetcher,
    locator_scheme,
)
from payment_kernel.services.compliance_audit import ComplianceAuditLog
from payment_kernel.utils.hashing import HashFunction, hash_locator, sha256_hex, to_json_safe

logger = get_logger("services.artifact_store")

DEFAULT_LOCATOR_HASH_SCHEMES = ("s3", "gs", "file")


@dataclass(frozen=True)
class ArtifactInput:
    """Artifact metadata as received from a channel."""

    ingestion_id: UUID
    artifact_type: str
    locator: str
    content_hash: str | None = None
    size_bytes: int | None = None
    mime_type: str | None = None
    source_metadata: Mapping[str, Any] = field(default_factory=dict)


class VerificationStatus(str, Enum):
    VERIFIED = "verified"
    MISMATCH = "mismatch"
    UNVERIFIABLE = "unverifiable"


@dataclass(frozen=True)
class HashVerification:
    """
    Result of re-hashing a stored artifact.

    valid is None when the content could not be read, so nothing was proved
    either way.
    """

    artifact_id: UUID
    valid: bool | None
    status: VerificationStatus
    expected_hash: str
    actual_hash: str | None
    hash_source: str


class ArtifactStore:
    """
    Evidence store for payment ingestions.

    Contract:
        store() always persists when the metadata is valid and the ingestion
        exists, falling back to a locator hash when content is unavailable.

    Non-goals:
        - Does NOT store artifact bytes; only locator, hash and metadata.
        - Does NOT commit.
    """

    def __init__(
        self,
        session: Session,
        fetcher: ArtifactFetcher | None = None,
        clock: Clock | None = None,
        audit_log: ComplianceAuditLog | None = None,
        hash_function: HashFunction = sha256_hex,
        locator_hash_schemes: Iterable[str] = DEFAULT_LOCATOR_HASH_SCHEMES,
    ):
        self._session = session
        self._fetcher = fetcher or HttpArtifactFetcher()
        self._clock = clock or SystemClock()
        self._audit_log = audit_log or ComplianceAuditLog(session, self._clock)
        self._hash = hash_function
        self._locator_hash_schemes = frozenset(s.lower() for s in locator_hash_schemes)

    def _uses_locator_hash(self, locator: str) -> bool:
        return locator_scheme(locator) in self._locator_hash_schemes

    def _read_content(self, locator: str) -> bytes | None:
        if self._uses_locator_hash(locator) or not self._fetcher.can_fetch(locator):
            return None
        return self._fetcher.fetch(locator)

    @staticmethod
    def _validate(artifact: ArtifactInput) -> None:
        if artifact.ingestion_id is None:
            raise InvalidArtifactError("ingestion_id", "is required")
        if not isinstance(artifact.artifact_type, str) or not artifact.artifact_type.strip():
            raise InvalidArtifactError("artifact_type", "must be a non-empty string")
        if not isinstance(artifact.locator, str) or not artifact.locator.strip():
            raise InvalidArtifactError("locator", "must be a non-empty string")
        if artifact.content_hash is not None and not artifact.content_hash.strip():
            raise InvalidArtifactError("content_hash", "must not be blank when supplied")

    # Store

    def store(self, artifact: ArtifactInput) -> PaymentArtifact:
        """
        Persist one artifact.

        Raises:
            InvalidArtifactError: Required metadata missing.
            IngestionNotFoundError: ingestion_id does not exist.
        """
        self._validate(artifact)
        ingestion = self._session.get(PaymentIngestion, artifact.ingestion_id)
        if ingestion is None:
            raise IngestionNotFoundError(str(artifact.ingestion_id))

        locator = artifact.locator.strip()
        size_bytes = artifact.size_bytes
        reachable: bool | None = None

        if artifact.content_hash is not None:
            content_hash = artifact.content_hash.strip().lower()
            hash_source = HashSource.PROVIDED
        else:
            content = self._read_content(locator)
            if content is not None:
                content_hash = self._hash(content)
                hash_source = HashSource.CONTENT
                reachable = True
                if size_bytes is None:
                    size_bytes = len(content)
            else:
                content_hash = hash_locator(locator, self._hash)
                hash_source = HashSource.LOCATOR
                logger.warning(
                    "artifact_locator_hash_fallback",
                    extra={
                        "ingestion_id": str(ingestion.id),
                        "locator": locator,
                        "scheme": locator_scheme(locator),
                    },
                )

        if reachable is None and self._fetcher.can_fetch(locator):
            reachable = self._fetcher.is_reachable(locator)
            if not reachable:
                logger.warning(
                    "artifact_locator_unreachable",
                    extra={"ingestion_id": str(ingestion.id), "locator": locator},
                )

        stored = PaymentArtifact(
            ingestion_id=ingestion.id,
            artifact_type=artifact.artifact_type.strip(),
            locator=locator,
            content_hash=content_hash,
            hash_source=hash_source.value,
            size_bytes=size_bytes,
            mime_type=artifact.mime_type,
            source_metadata=to_json_safe(dict(artifact.source_metadata or {})),
            reachable=reachable,
            created_at=self._clock.now(),
        )
        self._session.add(stored)
        self._session.flush()
        self._session.expire(ingestion, ["artifacts"])

        logger.info(
            "artifact_stored",
            extra={
                "artifact_id": str(stored.id),
                "ingestion_id": str(ingestion.id),
                "artifact_type": stored.artifact_type,
                "hash_source": stored.hash_source,
            },
        )
        self._audit_log.log(
            event_type=ComplianceEventType.ARTIFACT_STORED,
            resource_type="payment_artifact",
            resource_id=stored.id,
            payload={
                "ingestion_id": ingestion.id,
                "artifact_type": stored.artifact_type,
                "locator": locator,
                "content_hash": content_hash,
                "hash_source": stored.hash_source,
                "reachable": reachable,
            },
            correlation_id=ingestion.correlation_id,
        )
        return stored

    def store_batch(self, artifacts: Iterable[ArtifactInput]) -> list[PaymentArtifact]:
        """Store every artifact in the caller's transaction, in input order."""
        return [self.store(artifact) for artifact in artifacts]

    # Read

    def get(self, artifact_id: UUID) -> PaymentArtifact:
        artifact = self._session.get(PaymentArtifact, artifact_id)
        if artifact is None:
            raise ArtifactNotFoundError(str(artifact_id))
        return artifact

    def get_by_ingestion(self, ingestion_id: UUID) -> list[PaymentArtifact]:
        return list(
            self._session.execute(
                select(PaymentArtifact)
                .where(PaymentArtifact.ingestion_id == ingestion_id)
                .order_by(PaymentArtifact.created_at)
            ).scalars().all()
        )

    def get_by_ingestion_and_type(
        self, ingestion_id: UUID, artifact_type: str
    ) -> PaymentArtifact | None:
        return self._session.execute(
            select(PaymentArtifact)
            .where(
                PaymentArtifact.ingestion_id == ingestion_id,
                PaymentArtifact.artifact_type == artifact_type,
            )
            .order_by(PaymentArtifact.created_at)
            .limit(1)
        ).scalar_one_or_none()

    # Verify

    def verify_hash(self, artifact_id: UUID) -> HashVerification:
        """
        Recompute an artifact's hash and compare it with the stored value.

        Never raises on mismatch: the ArtifactHashMismatchError is logged
        and audited, and the result carries valid=False.
        """
        artifact = self.get(artifact_id)
        expected = artifact.content_hash

        if artifact.hash_source == HashSource.LOCATOR.value:
            actual = hash_locator(artifact.locator, self._hash)
        else:
            content = self._read_content(artifact.locator)
            if content is None:
                logger.warning(
                    "artifact_hash_unverifiable",
                    extra={
                        "artifact_id": str(artifact.id),
                        "locator": artifact.locator,
                        "hash_source": artifact.hash_source,
                    },
                )
                return HashVerification(
                    artifact_id=artifact.id,
                    valid=None,
                    status=VerificationStatus.UNVERIFIABLE,
                    expected_hash=expected,
                    actual_hash=None,
                    hash_source=artifact.hash_source,
                )
            actual = self._hash(content)

        if actual == expected:
            logger.info(
                "artifact_hash_verified",
                extra={"artifact_id": str(artifact.id), "hash_source": artifact.hash_source},
            )
            return HashVerification(
                artifact_id=artifact.id,
                valid=True,
                status=VerificationStatus.VERIFIED,
                expected_hash=expected,
                actual_hash=actual,
                hash_source=artifact.hash_source,
            )

        error = ArtifactHashMismatchError(
            artifact_id=str(artifact.id),
            hash_source=artifact.hash_source,
            expected_hash=expected,
            actual_hash=actual,
        )
        logger.error(
            "artifact_hash_mismatch",
            exc_info=error,
            extra={"artifact_id": str(artifact.id), "ingestion_id": str(artifact.ingestion_id)},
        )
        self._audit_log.log(
            event_type=ComplianceEventType.ARTIFACT_HASH_MISMATCH,
            resource_type="payment_artifact",
            resource_id=artifact.id,
            payload={
                "code": error.code,
                "hash_source": artifact.hash_source,
                "expected_hash": expected,
                "actual_hash": actual,
                "locator": artifact.locator,
            },
            description=str(error),
        )
        return HashVerification(
            artifact_id=artifact.id,
            valid=False,
            status=VerificationStatus.MISMATCH,
            expected_hash=expected,
            actual_hash=actual,
            hash_source=artifact.hash_source,
        )

    # Delete

    def delete_by_ingestion(self, ingestion_id: UUID) -> int:
        """Delete every artifact of ``ingestion_id``; returns how many."""
        artifacts = self.get_by_ingestion(ingestion_id)
        for artifact in artifacts:
            self._session.delete(artifact)
        self._session.flush()
        ingestion = self._session.get(PaymentIngestion, ingestion_id)
        if ingestion is not None:
            self._session.expire(ingestion, ["artifacts"])

        logger.info(
            "artifacts_deleted",
            extra={"ingestion_id": str(ingestion_id), "count": len(artifacts)},
        )
        if artifacts:
            self._audit_log.log(
                event_type=ComplianceEventType.ARTIFACT_DELETED,
                resource_type="payment_ingestion",
                resource_id=ingestion_id,
                payload={
                    "count": len(artifacts),
                    "artifact_ids": sorted(str(a.id) for a in artifacts),
                },
            )
        return len(artifacts)
