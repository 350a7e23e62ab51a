"""
Envelope data variants and their registry.

An envelope's ``data`` is never trusted by shape.  Each schema string maps to
exactly one variant class; parse_envelope() looks the variant up here and
builds it from ``data``, rejecting unknown schemas and malformed bodies at the
boundary.

This is part of the functional core - no I/O, no ORM.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any, ClassVar

from payment_kernel.exceptions import EnvelopeValidationError, SchemaNotFoundError
from payment_kernel.logging_config import get_logger
from payment_kernel.messaging.topology import LifecycleStage, PaymentSource

logger = get_logger("messaging.schemas")

PAYMENT_SCHEMA = "loanserve.payments.v1"
ERROR_SCHEMA = "loanserve.v1.error"
LIFECYCLE_SCHEMA_PREFIX = "loanserve.v1.payment."

PAYMENT_METHODS = frozenset(
    {"ach", "wire", "realtime", "check", "card", "paypal", "venmo", "book", "lockbox"}
)


class _Checker:
    """Accumulates field errors so a rejection lists every problem at once."""

    def __init__(self, schema: str):
        self.schema = schema
        self.errors: list[str] = []

    def mapping(self, data: Any, path: str) -> Mapping[str, Any]:
        if not isinstance(data, Mapping):
            self.errors.append(f"{path} must be an object")
            return {}
        return data

    def text(self, data: Mapping[str, Any], key: str, path: str, required: bool = True) -> str | None:
        value = data.get(key)
        if value is None and not required:
            return None
        if not isinstance(value, str) or not value.strip():
            self.errors.append(f"{path}.{key} must be a non-empty string")
            return None
        return value

    def integer(self, data: Mapping[str, Any], key: str, path: str) -> int | None:
        value = data.get(key)
        if isinstance(value, bool) or not isinstance(value, int):
            self.errors.append(f"{path}.{key} must be an integer")
            return None
        if value < 0:
            self.errors.append(f"{path}.{key} must not be negative")
            return None
        return value

    def iso_date(self, data: Mapping[str, Any], key: str, path: str) -> str | None:
        value = self.text(data, key, path)
        if value is None:
            return None
        try:
            date.fromisoformat(value)
        except ValueError:
            self.errors.append(f"{path}.{key} must be YYYY-MM-DD")
            return None
        return value

    def one_of(self, value: str | None, allowed: frozenset[str] | set[str], path: str) -> str | None:
        if value is not None and value not in allowed:
            self.errors.append(f"{path} must be one of {sorted(allowed)}")
            return None
        return value

    def raise_if_errors(self) -> None:
        if self.errors:
            logger.warning(
                "envelope_data_rejected",
                extra={"schema": self.schema, "errors": self.errors},
            )
            raise EnvelopeValidationError(self.schema, list(self.errors))


@dataclass(frozen=True)
class ArtifactRef:
    artifact_type: str
    uri: str
    content_hash: str | None = None


@dataclass(frozen=True)
class PaymentMessage:
    """``loanserve.payments.v1`` -- one inbound payment."""

    channel: str
    provider: str
    loan_id: str
    amount_cents: int
    currency: str
    method: str
    value_date: str
    reference: str
    artifacts: tuple[ArtifactRef, ...] = ()
    batch_id: str | None = None

    @classmethod
    def from_data(cls, schema: str, data: Mapping[str, Any]) -> "PaymentMessage":
        check = _Checker(schema)
        source = check.mapping(data.get("source"), "source")
        borrower = check.mapping(data.get("borrower"), "borrower")
        payment = check.mapping(data.get("payment"), "payment")

        channel = check.one_of(check.text(source, "channel", "source"), PAYMENT_METHODS, "source.channel")
        provider = check.text(source, "provider", "source")
        loan_id = check.text(borrower, "loan_id", "borrower")
        amount = check.integer(payment, "amount_cents", "payment")
        currency = check.one_of(check.text(payment, "currency", "payment"), {"USD"}, "payment.currency")
        method = check.one_of(check.text(payment, "method", "payment"), PAYMENT_METHODS, "payment.method")
        value_date = check.iso_date(payment, "value_date", "payment")
        reference = check.text(payment, "reference", "payment")

        raw_artifacts = data.get("artifacts", [])
        artifacts: list[ArtifactRef] = []
        if not isinstance(raw_artifacts, list):
            check.errors.append("artifacts must be a list")
        else:
            for i, item in enumerate(raw_artifacts):
                item = check.mapping(item, f"artifacts[{i}]")
                artifact_type = check.text(item, "type", f"artifacts[{i}]")
                uri = check.text(item, "uri", f"artifacts[{i}]")
                content_hash = check.text(item, "hash", f"artifacts[{i}]", required=False)
                if artifact_type and uri:
                    artifacts.append(ArtifactRef(artifact_type, uri, content_hash))

        check.raise_if_errors()
        return cls(
            channel=channel,
            provider=provider,
            loan_id=loan_id,
            amount_cents=amount,
            currency=currency,
            method=method,
            value_date=value_date,
            reference=reference,
            artifacts=tuple(artifacts),
            batch_id=source.get("batch_id"),
        )


@dataclass(frozen=True)
class PaymentLifecycleEvent:
    """``loanserve.v1.payment.<stage>`` -- a payment moved through a stage."""

    stage: LifecycleStage
    payment_id: str
    source: PaymentSource
    loan_id: str
    amount_cents: int

    @classmethod
    def from_data(cls, schema: str, data: Mapping[str, Any]) -> "PaymentLifecycleEvent":
        check = _Checker(schema)
        payment_id = check.text(data, "payment_id", "data")
        source = check.one_of(
            check.text(data, "source", "data"),
            {s.value for s in PaymentSource},
            "data.source",
        )
        loan_id = check.text(data, "loan_id", "data")
        amount = check.integer(data, "amount_cents", "data")
        check.raise_if_errors()
        return cls(
            stage=LifecycleStage(schema[len(LIFECYCLE_SCHEMA_PREFIX):]),
            payment_id=payment_id,
            source=PaymentSource(source),
            loan_id=loan_id,
            amount_cents=amount,
        )


@dataclass(frozen=True)
class ErrorMessage:
    """``loanserve.v1.error`` -- a failed message bound for a dead-letter queue."""

    original_message: Mapping[str, Any]
    error_type: str
    error_message: str
    error_code: str | None
    retryable: bool
    failed_at: str

    @classmethod
    def from_data(cls, schema: str, data: Mapping[str, Any]) -> "ErrorMessage":
        check = _Checker(schema)
        original = check.mapping(data.get("original_message"), "original_message")
        error = check.mapping(data.get("error"), "error")
        name = check.text(error, "name", "error")
        message = check.text(error, "message", "error")
        failed_at = check.text(data, "failed_at", "data")
        retryable = data.get("retryable")
        if not isinstance(retryable, bool):
            check.errors.append("data.retryable must be a boolean")
        check.raise_if_errors()
        return cls(
            original_message=original,
            error_type=name,
            error_message=message,
            error_code=error.get("code"),
            retryable=retryable,
            failed_at=failed_at,
        )


EnvelopeVariant = PaymentMessage | PaymentLifecycleEvent | ErrorMessage


class EnvelopeSchemaRegistry:
    """
    Schema string -> data variant class.

    Usage:
        variant = EnvelopeSchemaRegistry.validate("loanserve.payments.v1", data)
        if EnvelopeSchemaRegistry.has_schema(schema):
            ...
    """

    # Class-level registry: schema -> variant class
    _variants: ClassVar[dict[str, type]] = {}

    @classmethod
    def register(cls, schema: str, variant: type) -> None:
        if schema in cls._variants and cls._variants[schema] is not variant:
            raise ValueError(f"Schema {schema} already registered to {cls._variants[schema].__name__}")
        cls._variants[schema] = variant
        logger.debug(
            "envelope_schema_registered",
            extra={"schema": schema, "variant": variant.__name__},
        )

    @classmethod
    def get(cls, schema: str) -> type:
        """
        Raises:
            SchemaNotFoundError: If ``schema`` is not registered.
        """
        try:
            return cls._variants[schema]
        except KeyError:
            logger.warning("envelope_schema_not_found", extra={"schema": schema})
            raise SchemaNotFoundError(schema) from None

    @classmethod
    def has_schema(cls, schema: str) -> bool:
        return schema in cls._variants

    @classmethod
    def list_schemas(cls) -> list[str]:
        return sorted(cls._variants)

    @classmethod
    def validate(cls, schema: str, data: Mapping[str, Any]) -> EnvelopeVariant:
        """Build the tagged variant for ``schema`` from ``data``."""
        return cls.get(schema).from_data(schema, data)


def _register_builtin_schemas() -> None:
    EnvelopeSchemaRegistry.register(PAYMENT_SCHEMA, PaymentMessage)
    for stage in LifecycleStage:
        EnvelopeSchemaRegistry.register(LIFECYCLE_SCHEMA_PREFIX + stage.value, PaymentLifecycleEvent)
    EnvelopeSchemaRegistry.register(ERROR_SCHEMA, ErrorMessage)


_register_builtin_schemas()
