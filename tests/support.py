"""Builders and test doubles shared across the suite."""

from payment_kernel.messaging.schemas import PAYMENT_SCHEMA
from payment_kernel.services.artifact_fetcher import ArtifactFetcher
from payment_kernel.services.ingestion_ledger import IngestionRequest


class FakeFetcher(ArtifactFetcher):
    """In-memory fetcher: ``contents`` maps locator -> bytes."""

    def __init__(self, contents=None, reachable=None, schemes=("http", "https")):
        self.contents = dict(contents or {})
        self.reachable = set(reachable if reachable is not None else self.contents)
        self.schemes = schemes
        self.fetched = []

    def can_fetch(self, locator):
        return locator.split(":", 1)[0].lower() in self.schemes

    def fetch(self, locator):
        self.fetched.append(locator)
        return self.contents.get(locator)

    def is_reachable(self, locator):
        return locator in self.reachable


def make_payment_data(
    reference="ACH-12345",
    amount_cents=100000,
    loan_id="1",
    value_date="2025-08-24",
    method="ach",
    channel="ach",
    artifacts=None,
    **payment_overrides,
):
    payment = {
        "amount_cents": amount_cents,
        "currency": "USD",
        "method": method,
        "value_date": value_date,
        "reference": reference,
    }
    payment.update(payment_overrides)
    return {
        "source": {"channel": channel, "provider": "column", "batch_id": "B-001"},
        "borrower": {"loan_id": loan_id},
        "payment": payment,
        "artifacts": artifacts or [],
    }


def make_request(
    reference="ACH-12345",
    amount_minor=100000,
    loan_id=1,
    value_date="2025-08-24",
    method="ach",
    channel="ach",
    raw_payload=None,
    correlation_id="corr-1",
):
    payload = raw_payload if raw_payload is not None else make_payment_data(
        reference=reference,
        amount_cents=amount_minor,
        loan_id=str(loan_id),
        value_date=value_date,
        method=method,
        channel=channel,
    )
    return IngestionRequest(
        channel=channel,
        source_reference=reference,
        method=method,
        value_date=value_date,
        amount_minor=amount_minor,
        loan_id=loan_id,
        raw_payload=payload,
        normalized_envelope={"schema": PAYMENT_SCHEMA, "data": payload},
        correlation_id=correlation_id,
    )
