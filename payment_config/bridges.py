"""
Config -> Kernel and Module Bridges.

Build kernel and module collaborators from settings.  These live in payment_config
because the kernel must never import it.

Usage:
    from payment_config.bridges import build_artifact_store, build_consumer

    settings = get_active_settings()
    store = build_artifact_store(session, settings, clock=clock)
    consumer = build_consumer(session, "payment-intake", settings, transport=transport)
    remittance = build_remittance_service(session, settings, clock=clock)
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from payment_config.schema import KernelSettings
from payment_kernel.domain.clock import Clock
from payment_kernel.messaging.consumer import IdempotentConsumer
from payment_kernel.messaging.retry import RetryPolicy
from payment_kernel.messaging.topology import EventPublisher, MessageTransport
from payment_kernel.services.artifact_fetcher import ArtifactFetcher, HttpArtifactFetcher
from payment_kernel.services.artifact_store import ArtifactStore
from payment_kernel.services.compliance_audit import ComplianceAuditLog
from payment_modules.remittance.reconciliation import LedgerReader, ReconciliationService
from payment_modules.remittance.service import RemittanceService
from payment_services.payment_intake import ObligationSource, PaymentIntakeService


def build_http_fetcher(settings: KernelSettings) -> HttpArtifactFetcher:
    return HttpArtifactFetcher(
        get_timeout=settings.artifacts.get_timeout_seconds,
        head_timeout=settings.artifacts.head_timeout_seconds,
    )


def build_artifact_store(
    session: Session,
    settings: KernelSettings,
    fetcher: ArtifactFetcher | None = None,
    clock: Clock | None = None,
    audit_log: ComplianceAuditLog | None = None,
) -> ArtifactStore:
    return ArtifactStore(
        session,
        fetcher=fetcher or build_http_fetcher(settings),
        clock=clock,
        audit_log=audit_log,
        locator_hash_schemes=settings.artifacts.locator_hash_schemes,
    )


def build_retry_policy(settings: KernelSettings) -> RetryPolicy:
    messaging = settings.messaging
    return RetryPolicy(
        base_delay_ms=messaging.retry_base_delay_ms,
        max_delay_ms=messaging.retry_max_delay_ms,
        jitter_ratio=messaging.retry_jitter_ratio,
    )


def build_consumer(
    session: Session,
    consumer_id: str,
    settings: KernelSettings,
    transport: MessageTransport | None = None,
    clock: Clock | None = None,
) -> IdempotentConsumer:
    messaging = settings.messaging
    return IdempotentConsumer(
        session,
        consumer_id,
        max_retries=messaging.max_retries,
        retry_policy=build_retry_policy(settings),
        transport=transport,
        clock=clock,
        dlq_domain=messaging.dead_letter_domain,
        retention_days=messaging.inbox_retention_days,
    )


def build_reconciliation_service(
    session: Session,
    settings: KernelSettings,
    ledger_reader: LedgerReader | None = None,
    clock: Clock | None = None,
    audit_log: ComplianceAuditLog | None = None,
) -> ReconciliationService:
    reconciliation = settings.reconciliation
    return ReconciliationService(
        session,
        ledger_reader=ledger_reader,
        variance_threshold_minor=reconciliation.variance_threshold_minor,
        investor_payable_account=reconciliation.investor_payable_account,
        servicer_fee_income_account=reconciliation.servicer_fee_income_account,
        clock=clock,
        audit_log=audit_log,
    )


def build_remittance_service(
    session: Session,
    settings: KernelSettings,
    ledger_reader: LedgerReader | None = None,
    clock: Clock | None = None,
    audit_log: ComplianceAuditLog | None = None,
) -> RemittanceService:
    remittance = settings.remittance
    audit_log = audit_log or ComplianceAuditLog(session, clock)
    return RemittanceService(
        session,
        reconciliation=build_reconciliation_service(
            session, settings, ledger_reader=ledger_reader, clock=clock, audit_log=audit_log
        ),
        clock=clock,
        audit_log=audit_log,
        fee_basis=remittance.servicer_fee_basis,
        require_balanced_reconciliation=remittance.require_balanced_reconciliation,
        default_export_format=remittance.default_export_format,
    )


def build_payment_intake(
    session: Session,
    settings: KernelSettings,
    obligations: ObligationSource,
    fetcher: ArtifactFetcher | None = None,
    transport: MessageTransport | None = None,
    clock: Clock | None = None,
    audit_log: ComplianceAuditLog | None = None,
) -> PaymentIntakeService:
    audit_log = audit_log or ComplianceAuditLog(session, clock)
    return PaymentIntakeService(
        session,
        obligations,
        clock=clock,
        audit_log=audit_log,
        artifact_store=build_artifact_store(
            session, settings, fetcher=fetcher, clock=clock, audit_log=audit_log
        ),
        publisher=EventPublisher(transport) if transport is not None else None,
        verify_chain=settings.chain.verify_after_intake,
        audit_accepted=settings.ingestion.audit_accepted,
    )
