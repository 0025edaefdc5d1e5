"""
Dispute round lifecycle.
"""
from .round_service import MAX_ROUNDS_PER_CUSTOMER, RoundService, round_response
from .state_machine import RoundStateMachine

__all__ = [
    "MAX_ROUNDS_PER_CUSTOMER",
    "RoundService",
    "RoundStateMachine",
    "round_response",
]
