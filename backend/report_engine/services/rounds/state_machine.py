"""
Round State Machine

RoundStatus is the source of truth.
State transitions:
    DRAFT → SAVED → SENT
    any non-deleted state → DELETED (terminal)

Forward only. Saving a saved round again is allowed.
Status does not gate snapshot loads; only a deleted round refuses them.
"""
from typing import Optional, Tuple

from ...exceptions import RoundTransitionError
from ...models.round_models import RoundStatus


class RoundStateMachine:
    """Deterministic round transitions keyed on (current_state, action)."""

    # State transition map: (current_state, action) -> new_state
    TRANSITIONS = {
        (RoundStatus.DRAFT, "save"): RoundStatus.SAVED,
        (RoundStatus.SAVED, "save"): RoundStatus.SAVED,

        (RoundStatus.SAVED, "send"): RoundStatus.SENT,

        (RoundStatus.DRAFT, "delete"): RoundStatus.DELETED,
        (RoundStatus.SAVED, "delete"): RoundStatus.DELETED,
        (RoundStatus.SENT, "delete"): RoundStatus.DELETED,
    }

    def can_transition(self, current_state: RoundStatus, action: str) -> Tuple[bool, Optional[str]]:
        if (RoundStatus(current_state), action) not in self.TRANSITIONS:
            return False, f"Invalid transition: {RoundStatus(current_state).value} + {action}"
        return True, None

    def transition(self, current_state: RoundStatus, action: str) -> RoundStatus:
        """
        Raises:
            RoundTransitionError: If transition is not allowed
        """
        is_allowed, error = self.can_transition(current_state, action)
        if not is_allowed:
            raise RoundTransitionError(error)
        return self.TRANSITIONS[(RoundStatus(current_state), action)]
