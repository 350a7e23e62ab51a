"""
HashChainLog -- shared append/verify/rebuild mechanism for chained records.

Responsibility:
    Appends records whose hash depends on their predecessor's hash, and
    re-walks stored chains to detect any insertion, edit, or reordering.
    Concrete logs (PaymentEventLog, ComplianceAuditLog) supply the ORM model
    and the material each record hash covers.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - One writer per chain scope: the scope's ChainHead row is locked
      (``SELECT ... FOR UPDATE``) while the tail is read and advanced, in the
      caller's transaction.  Aggregate-max-plus-one is never used.
    - A record's hash is compute_chain_hash(prev_hash, material, correlation_id).
    - Verification walks records in seq order and reports the FIRST failure
      with both hash values.  Nothing is ever repaired.

Failure modes:
    - IntegrityError on first use of a scope when two writers create the
      head row simultaneously (savepoint rollback and retry).
    - ChainDiscontinuityError from assert_chain_intact().

Audit relevance:
    A discontinuity is logged at CRITICAL and recorded as a
    COMPLIANCE.CHAIN_DISCONTINUITY compliance entry.  Operators see the
    exact index and divergent values.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.exceptions import ChainDiscontinuityError
from payment_kernel.logging_config import get_logger
from payment_kernel.models.chain import ChainHead
from payment_kernel.utils.hashing import compute_chain_hash

logger = get_logger("services.hash_chain")


@dataclass(frozen=True)
class ChainVerification:
    """Outcome of walking one chain scope."""

    scope: str
    valid: bool
    records_checked: int
    discontinuity_at: int | None = None
    expected_hash: str | None = None
    actual_hash: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class ChainRebuild:
    """Authoritative recomputation of a chain from stored data only."""

    scope: str
    record_count: int
    terminal_hash: str | None
    hashes: tuple[str, ...]
    stored_terminal_hash: str | None

    @property
    def matches_stored(self) -> bool:
        return self.terminal_hash == self.stored_terminal_hash


class HashChainLog(ABC):
    """
    Base class for hash-chained append-only logs.

    Contract:
        Subclasses set ``model`` and ``hash_attr`` and implement the scope
        and material hooks.  append_record() is the only write path.

    Guarantees:
        - seq is strictly increasing per scope, starting at 1.
        - prev_hash of the first record in a scope is None.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT enforce linkage with a DB constraint; verify_chain() is
          the detection mechanism.
    """

    model: type
    hash_attr: str

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    # Hooks

    @abstractmethod
    def head_key(self, scope: str) -> str:
        """ChainHead.scope value for a chain scope."""

    @abstractmethod
    def _scope_filter(self, scope: str) -> Any:
        """WHERE clause selecting the records of ``scope``."""

    @abstractmethod
    def record_material(self, record: Any) -> tuple[Any, str]:
        """Return ``(data, correlation_id)`` hashed for ``record``."""

    # Append

    def _lock_head(self, scope: str) -> ChainHead:
        key = self.head_key(scope)
        stmt = (
            select(ChainHead)
            .where(ChainHead.scope == key)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        head = self._session.execute(stmt).scalar_one_or_none()
        if head is not None:
            return head

        # First append to this scope; another writer may be creating it too
        savepoint = self._session.begin_nested()
        try:
            head = ChainHead(scope=key, seq=0, head_hash=None)
            self._session.add(head)
            self._session.flush()
            savepoint.commit()
            return head
        except IntegrityError:
            logger.debug("chain_head_race_retry", extra={"chain_scope": key})
            savepoint.rollback()
            return self._session.execute(stmt).scalar_one()

    def append_record(self, scope: str, record: Any) -> Any:
        """
        Link ``record`` to the tail of ``scope`` and add it to the session.

        Preconditions:
            Every hashed field of ``record`` is already set.
        Postconditions:
            record.seq, record.prev_hash and the record hash are set; the
            chain head points at the new record.
        """
        head = self._lock_head(scope)

        record.seq = head.seq + 1
        record.prev_hash = head.head_hash
        data, correlation_id = self.record_material(record)
        record_hash = compute_chain_hash(record.prev_hash, data, correlation_id)
        setattr(record, self.hash_attr, record_hash)

        self._session.add(record)
        head.seq = record.seq
        head.head_hash = record_hash
        self._session.flush()

        assert record.seq == head.seq, "chain head must track the appended record"

        logger.debug(
            "chain_record_appended",
            extra={
                "chain": self.model.__tablename__,
                "chain_scope": scope,
                "seq": record.seq,
                "record_hash": record_hash,
            },
        )
        return record

    # Read

    def records(self, scope: str) -> list[Any]:
        return list(
            self._session.execute(
                select(self.model)
                .where(self._scope_filter(scope))
                .order_by(self.model.seq)
            ).scalars().all()
        )

    def head_hash(self, scope: str) -> str | None:
        head = self._session.execute(
            select(ChainHead).where(ChainHead.scope == self.head_key(scope))
        ).scalar_one_or_none()
        return head.head_hash if head else None

    # Verification

    def verify_chain(self, scope: str) -> ChainVerification:
        """
        Walk ``scope`` in seq order, checking linkage then recomputed hash.

        Returns at the first failure, after flagging it.
        """
        prev_hash: str | None = None
        records = self.records(scope)

        for index, record in enumerate(records):
            stored_hash = getattr(record, self.hash_attr)

            if record.prev_hash != prev_hash:
                result = ChainVerification(
                    scope=scope,
                    valid=False,
                    records_checked=index + 1,
                    discontinuity_at=index,
                    expected_hash=prev_hash,
                    actual_hash=record.prev_hash,
                    reason="prev_hash_mismatch",
                )
                self.flag_discontinuity(result)
                return result

            data, correlation_id = self.record_material(record)
            recomputed = compute_chain_hash(record.prev_hash, data, correlation_id)
            if recomputed != stored_hash:
                result = ChainVerification(
                    scope=scope,
                    valid=False,
                    records_checked=index + 1,
                    discontinuity_at=index,
                    expected_hash=recomputed,
                    actual_hash=stored_hash,
                    reason="hash_mismatch",
                )
                self.flag_discontinuity(result)
                return result

            prev_hash = stored_hash

        logger.info(
            "chain_verified",
            extra={
                "chain": self.model.__tablename__,
                "chain_scope": scope,
                "records_checked": len(records),
            },
        )
        return ChainVerification(scope=scope, valid=True, records_checked=len(records))

    def assert_chain_intact(self, scope: str) -> None:
        """
        Raises:
            ChainDiscontinuityError: At the first broken record.
        """
        result = self.verify_chain(scope)
        if not result.valid:
            raise self.discontinuity_error(result)

    def rebuild_chain(self, scope: str) -> ChainRebuild:
        """Recompute every hash from stored material, ignoring stored prev_hash."""
        records = self.records(scope)
        hashes: list[str] = []
        prev_hash: str | None = None
        for record in records:
            data, correlation_id = self.record_material(record)
            prev_hash = compute_chain_hash(prev_hash, data, correlation_id)
            hashes.append(prev_hash)

        stored_terminal = getattr(records[-1], self.hash_attr) if records else None
        rebuild = ChainRebuild(
            scope=scope,
            record_count=len(records),
            terminal_hash=prev_hash,
            hashes=tuple(hashes),
            stored_terminal_hash=stored_terminal,
        )
        if not rebuild.matches_stored:
            logger.warning(
                "chain_rebuild_terminal_mismatch",
                extra={
                    "chain": self.model.__tablename__,
                    "chain_scope": scope,
                    "terminal_hash": rebuild.terminal_hash,
                    "stored_terminal_hash": stored_terminal,
                },
            )
        return rebuild

    def discontinuity_error(self, result: ChainVerification) -> ChainDiscontinuityError:
        """ChainDiscontinuityError carrying everything needed to re-record the flag."""
        return ChainDiscontinuityError(
            scope=result.scope,
            index=result.discontinuity_at,
            expected_hash=result.expected_hash,
            actual_hash=result.actual_hash,
            chain=self.model.__tablename__,
            reason=result.reason,
            records_checked=result.records_checked,
        )

    def flag_discontinuity(self, result: ChainVerification) -> None:
        """Log at CRITICAL and record a compliance entry.  Never repairs."""
        logger.critical(
            "chain_discontinuity_detected",
            extra={
                "chain": self.model.__tablename__,
                "chain_scope": result.scope,
                "discontinuity_at": result.discontinuity_at,
                "expected_hash": result.expected_hash,
                "actual_hash": result.actual_hash,
                "reason": result.reason,
            },
        )
        record_chain_discontinuity(self._session, self._clock, self.discontinuity_error(result))


def record_chain_discontinuity(
    session: Session,
    clock: Clock,
    error: ChainDiscontinuityError,
) -> Any:
    """
    Write the COMPLIANCE.CHAIN_DISCONTINUITY entry for ``error``.

    flag_discontinuity() writes it in the verifying transaction.  A caller
    that rolls that work back (IdempotentConsumer discarding a failed
    handler's savepoint) calls this again in its own transaction so the
    flag survives.
    """
    from payment_kernel.models.chain import ComplianceEventType
    from payment_kernel.services.compliance_audit import ComplianceAuditLog

    return ComplianceAuditLog(session, clock).log(
        event_type=ComplianceEventType.CHAIN_DISCONTINUITY,
        resource_type=error.chain or "hash_chain",
        resource_id=error.scope,
        payload={
            "discontinuity_at": error.index,
            "expected_hash": error.expected_hash,
            "actual_hash": error.actual_hash,
            "reason": error.reason,
            "records_checked": error.records_checked,
        },
        correlation_id=error.scope,
        description=f"Hash chain discontinuity at index {error.index}",
    )
