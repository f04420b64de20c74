"""Version lifecycle module for ModelGate.

Implements the model version state machine.
"""

from .states import VersionState, TransitionRule, VALID_TRANSITIONS, TERMINAL_STATES, parse_state
from .machine import VersionStateMachine, validate_transition
from .models import Actor, ModelVersion, StateTransitionRequest

__all__ = [
    "VersionState",
    "TransitionRule",
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "parse_state",
    "VersionStateMachine",
    "validate_transition",
    "Actor",
    "ModelVersion",
    "StateTransitionRequest",
]
