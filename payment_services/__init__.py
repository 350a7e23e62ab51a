"""
payment_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes kernel services with the pure
    payment engines.

Architecture position:
    Services -- the top layer.
        payment_services/ -> payment_engines/, payment_kernel/  (allowed)
        payment_kernel/, payment_engines/ -> payment_services/  (FORBIDDEN)
"""

from payment_services.payment_intake import (
    PAYMENT_ALLOCATED,
    PAYMENT_RECEIVED,
    IntakeResult,
    ObligationSource,
    OutstandingObligationSource,
    PaymentIntakeService,
    StaticObligationSource,
)

__all__ = [
    "IntakeResult",
    "ObligationSource",
    "OutstandingObligationSource",
    "PAYMENT_ALLOCATED",
    "PAYMENT_RECEIVED",
    "PaymentIntakeService",
    "StaticObligationSource",
]
