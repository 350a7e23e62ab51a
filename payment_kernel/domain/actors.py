"""
Actor classification for chained events and compliance records.

Every PaymentEvent and ComplianceAuditLogEntry is tagged with the class of
actor that caused it. The set is closed: values outside it are rejected at
the boundary, never coerced (an "admin" or "integration" string is an error,
not a guess).
"""

from enum import Enum

from payment_kernel.exceptions import InvalidActorError


class ActorType(str, Enum):
    """Closed enumeration of actor classes."""

    SYSTEM = "system"
    HUMAN = "human"
    AI = "ai"


SYSTEM_ACTOR_ID = "payment-pipeline"


def parse_actor_type(value: "ActorType | str") -> ActorType:
    """Validate an actor class.

    Raises:
        InvalidActorError: If ``value`` is not exactly one of system, human, ai.
    """
    if isinstance(value, ActorType):
        return value
    if not isinstance(value, str):
        raise InvalidActorError(repr(value))
    try:
        return ActorType(value)
    except ValueError:
        raise InvalidActorError(value) from None
