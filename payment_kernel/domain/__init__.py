"""Pure domain primitives: clocks and actor typing."""

from payment_kernel.domain.actors import SYSTEM_ACTOR_ID, ActorType, parse_actor_type
from payment_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "ActorType",
    "Clock",
    "DeterministicClock",
    "SYSTEM_ACTOR_ID",
    "SystemClock",
    "parse_actor_type",
]
