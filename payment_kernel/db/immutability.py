"""
ORM-level immutability enforcement for append-only payment records.

Ingestions, chain records, reconciliation snapshots and generated export
files are evidence.  Once flushed they are never edited: corrections are made
by appending a new record, which keeps the history visible.

HOW IT WORKS
    session.flush()
         |
         v
    [before_update] --> _block_update() --> ImmutabilityViolationError
    [before_delete] --> _block_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if no protected row was touched)

PROTECTED ENTITIES

Entity                    | UPDATE  | DELETE  | Why
--------------------------|---------|---------|-------------------------------
PaymentIngestion          | blocked | allowed | Admission record; deletion is
                          |         |         | the retention path and cascades
                          |         |         | to artifacts
PaymentEvent              | blocked | blocked | Hash-chained journal
ComplianceAuditLogEntry   | blocked | blocked | Hash-chained compliance trail
ReconciliationSnapshot    | blocked | blocked | Release-gate evidence
RemittanceExport          | blocked | blocked | File handed to the investor

These listeners only see ORM unit-of-work flushes.  Bulk ``update()`` /
``delete()`` statements bypass them; tamper detection for the chained tables
is done by HashChainLog.verify_chain().
"""

from sqlalchemy import event
from sqlalchemy.orm import object_session

from payment_kernel.exceptions import ImmutabilityViolationError
from payment_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# model class -> [(event name, listener fn)]
_registered: dict[type, list[tuple[str, object]]] = {}


def _make_blocker(entity_type: str, operation: str):
    def _block(mapper, connection, target):
        if operation == "UPDATE":
            # Collection-only changes (child rows added/removed) emit no UPDATE
            session = object_session(target)
            if session is not None and not session.is_modified(
                target, include_collections=False
            ):
                return
        entity_id = str(target.id)
        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "operation": operation,
            },
        )
        verb = "modified" if operation == "UPDATE" else "deleted"
        raise ImmutabilityViolationError(
            entity_type=entity_type,
            entity_id=entity_id,
            reason=f"{entity_type} records are append-only and cannot be {verb}",
        )

    return _block


def protect_model(model: type, *, block_update: bool = True, block_delete: bool = True) -> None:
    """Attach UPDATE/DELETE blockers to ``model``.  Safe to call twice."""
    if model in _registered:
        return

    listeners: list[tuple[str, object]] = []
    if block_update:
        listeners.append(("before_update", _make_blocker(model.__name__, "UPDATE")))
    if block_delete:
        listeners.append(("before_delete", _make_blocker(model.__name__, "DELETE")))

    for event_name, fn in listeners:
        event.listen(model, event_name, fn)
    _registered[model] = listeners


def unprotect_model(model: type) -> None:
    for event_name, fn in _registered.pop(model, []):
        if event.contains(model, event_name, fn):
            event.remove(model, event_name, fn)


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement listeners.

    Call once after all models are imported and before any database
    operation begins.  Module-owned append-only models are discovered via
    payment_modules._orm_registry.
    """
    from payment_kernel.models.chain import ComplianceAuditLogEntry, PaymentEvent
    from payment_kernel.models.ingestion import PaymentIngestion
    from payment_modules._orm_registry import append_only_models

    protect_model(PaymentIngestion, block_delete=False)
    protect_model(PaymentEvent)
    protect_model(ComplianceAuditLogEntry)

    for model in append_only_models():
        protect_model(model)

    logger.info(
        "immutability_listeners_registered",
        extra={"model_count": len(_registered)},
    )


def unregister_immutability_listeners() -> None:
    """
    Remove every immutability listener.

    Only for tests that must violate immutability to prove detection.
    """
    for model in list(_registered):
        unprotect_model(model)


def listeners_registered() -> bool:
    return bool(_registered)
