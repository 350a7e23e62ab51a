"""
ComplianceAuditLog -- the system-wide hash-chained compliance trail.

Responsibility:
    Records every compliance-relevant action (payment admission, evidence
    storage and verification, remittance transitions, reconciliation
    results, chain discontinuities) in one global chain.

Architecture position:
    Kernel > Services.  Used by every other service; imports nothing above
    the kernel.

Invariants enforced:
    - One global chain scope; strictly ordered by seq.
    - record_hash covers every stored field: event type, actor, resource,
      payload_hash, description, changed_fields and occurred_at, plus the
      previous record's hash.  The payload itself is covered through
      payload_hash.
    - Actor type is one of system | human | ai (InvalidActorError otherwise).

Failure modes:
    - InvalidActorError on an unknown actor type.

Audit relevance:
    This IS the compliance evidence.  verify() is the check operators run
    before producing an audit pack.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import select, true

from payment_kernel.domain.actors import SYSTEM_ACTOR_ID, ActorType, parse_actor_type
from payment_kernel.logging_config import LogContext, get_logger
from payment_kernel.models.chain import ComplianceAuditLogEntry, ComplianceEventType
from payment_kernel.services.hash_chain import ChainVerification, HashChainLog
from payment_kernel.utils.hashing import compute_payload_hash, to_json_safe

logger = get_logger("services.compliance_audit")

GLOBAL_SCOPE = "compliance_audit"


def _utc_isoformat(value: datetime) -> str:
    # SQLite hands back naive datetimes for values stored as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _diff_fields(previous: dict[str, Any], new: dict[str, Any]) -> list[str]:
    keys = set(previous) | set(new)
    return sorted(
        key
        for key in keys
        if to_json_safe(previous.get(key)) != to_json_safe(new.get(key))
    )


class ComplianceAuditLog(HashChainLog):
    """
    Append-only global compliance chain.

    Contract:
        log() appends one entry and returns it, flushed.
    Non-goals:
        - Does NOT commit.
        - Does NOT redact payloads; callers pass only what may be retained.
    """

    model = ComplianceAuditLogEntry
    hash_attr = "record_hash"

    def head_key(self, scope: str) -> str:
        return GLOBAL_SCOPE

    def _scope_filter(self, scope: str) -> Any:
        return true()

    def record_material(self, record: ComplianceAuditLogEntry) -> tuple[Any, str]:
        material = {
            "event_type": record.event_type,
            "actor_type": record.actor_type,
            "actor_id": record.actor_id,
            "resource_type": record.resource_type,
            "resource_id": record.resource_id,
            "payload_hash": record.payload_hash,
            "description": record.description,
            "changed_fields": record.changed_fields,
            "occurred_at": _utc_isoformat(record.occurred_at),
        }
        return material, record.correlation_id

    def log(
        self,
        event_type: ComplianceEventType | str,
        resource_type: str,
        resource_id: Any = None,
        actor_type: ActorType | str = ActorType.SYSTEM,
        actor_id: str = SYSTEM_ACTOR_ID,
        payload: dict[str, Any] | None = None,
        correlation_id: str | None = None,
        description: str | None = None,
        changed_fields: list[str] | None = None,
    ) -> ComplianceAuditLogEntry:
        """
        Append a compliance entry.

        ``correlation_id`` defaults to the bound LogContext correlation id,
        then to a fresh uuid.
        """
        actor = parse_actor_type(actor_type)
        if isinstance(event_type, Enum):
            event_type = event_type.value
        correlation_id = (
            correlation_id
            or LogContext.get_all().get("correlation_id")
            or str(uuid4())
        )
        safe_payload = to_json_safe(payload or {})

        entry = ComplianceAuditLogEntry(
            correlation_id=correlation_id,
            actor_type=actor.value,
            actor_id=actor_id,
            event_type=event_type,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            payload=safe_payload,
            payload_hash=compute_payload_hash(safe_payload),
            changed_fields=changed_fields,
            description=description,
            occurred_at=self._clock.now().astimezone(timezone.utc),
        )
        self.append_record(GLOBAL_SCOPE, entry)

        logger.info(
            "compliance_event_logged",
            extra={
                "event_type": event_type,
                "resource_type": resource_type,
                "resource_id": entry.resource_id,
                "seq": entry.seq,
            },
        )
        return entry

    def log_change(
        self,
        event_type: ComplianceEventType | str,
        resource_type: str,
        resource_id: Any,
        previous: dict[str, Any],
        new: dict[str, Any],
        actor_type: ActorType | str = ActorType.SYSTEM,
        actor_id: str = SYSTEM_ACTOR_ID,
        correlation_id: str | None = None,
        description: str | None = None,
    ) -> ComplianceAuditLogEntry:
        """Log a state change; changed_fields lists keys whose values differ."""
        return self.log(
            event_type=event_type,
            resource_type=resource_type,
            resource_id=resource_id,
            actor_type=actor_type,
            actor_id=actor_id,
            payload={"previous": previous, "new": new},
            correlation_id=correlation_id,
            description=description,
            changed_fields=_diff_fields(previous, new),
        )

    def get_entries(
        self,
        resource_type: str | None = None,
        resource_id: Any = None,
        correlation_id: str | None = None,
        event_type: ComplianceEventType | str | None = None,
        limit: int | None = None,
    ) -> list[ComplianceAuditLogEntry]:
        stmt = select(ComplianceAuditLogEntry)
        if resource_type is not None:
            stmt = stmt.where(ComplianceAuditLogEntry.resource_type == resource_type)
        if resource_id is not None:
            stmt = stmt.where(ComplianceAuditLogEntry.resource_id == str(resource_id))
        if correlation_id is not None:
            stmt = stmt.where(ComplianceAuditLogEntry.correlation_id == correlation_id)
        if event_type is not None:
            if isinstance(event_type, Enum):
                event_type = event_type.value
            stmt = stmt.where(ComplianceAuditLogEntry.event_type == event_type)
        stmt = stmt.order_by(ComplianceAuditLogEntry.seq)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self._session.execute(stmt).scalars().all())

    def verify(self) -> ChainVerification:
        return self.verify_chain(GLOBAL_SCOPE)
