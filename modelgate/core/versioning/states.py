"""Model version lifecycle states and transitions.

State Machine Diagram:

    ┌───────┐
    │ DRAFT │ ← Initial state (new version registered)
    └───┬───┘
        │
    ┌───▼───────┐    ┌───────────────────┐
    │ SUBMITTED │◄──►│ CHANGES_REQUESTED │
    └───┬───────┘    └─────────▲─────────┘
        │                      │
    ┌───▼──────────────┐       │
    │ APPROVED_STAGING │       │
    └───┬──────────────┘       │
        │                      │
    ┌───▼─────┐                │
    │ STAGING │────────────────┘
    └───┬─────┘
        │
    ┌───▼───────────┐
    │ APPROVED_PROD │
    └───┬───────────┘
        │
    ┌───▼────────┐    ┌────────────┐    ┌─────────┐
    │ PRODUCTION │───►│ DEPRECATED │───►│ RETIRED │
    └────────────┘    └────────────┘    └─────────┘

Governed transitions (promotions to a higher-trust stage) run policy
and approval checks; the others are purely structural.
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, NamedTuple, Optional, Set

from modelgate.core.errors import UnknownStateError


class VersionState(str, Enum):
    """Lifecycle states of a model version."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    CHANGES_REQUESTED = "changes_requested"
    APPROVED_STAGING = "approved_staging"
    STAGING = "staging"
    APPROVED_PROD = "approved_prod"
    PRODUCTION = "production"
    DEPRECATED = "deprecated"
    RETIRED = "retired"


class TransitionRule(NamedTuple):
    """Defines a valid state transition."""
    from_state: VersionState
    to_state: VersionState
    governed: bool = False


TRANSITION_RULES: list[TransitionRule] = [
    # Review loop
    TransitionRule(VersionState.DRAFT, VersionState.SUBMITTED),
    TransitionRule(VersionState.SUBMITTED, VersionState.CHANGES_REQUESTED),
    TransitionRule(VersionState.CHANGES_REQUESTED, VersionState.SUBMITTED),

    # Promotions
    TransitionRule(VersionState.SUBMITTED, VersionState.APPROVED_STAGING, governed=True),
    TransitionRule(VersionState.APPROVED_STAGING, VersionState.STAGING, governed=True),
    TransitionRule(VersionState.STAGING, VersionState.APPROVED_PROD, governed=True),
    TransitionRule(VersionState.APPROVED_PROD, VersionState.PRODUCTION, governed=True),

    # Send back from staging; send-backs are never governed
    TransitionRule(VersionState.STAGING, VersionState.CHANGES_REQUESTED),

    # Lifecycle end
    TransitionRule(VersionState.PRODUCTION, VersionState.DEPRECATED),
    TransitionRule(VersionState.DEPRECATED, VersionState.RETIRED),
]

# Build lookup tables for efficient access
VALID_TRANSITIONS: Dict[VersionState, FrozenSet[VersionState]] = {
    state: frozenset(
        rule.to_state for rule in TRANSITION_RULES if rule.from_state == state
    )
    for state in VersionState
}
TRANSITION_LOOKUP: Dict[tuple[VersionState, VersionState], TransitionRule] = {
    (rule.from_state, rule.to_state): rule for rule in TRANSITION_RULES
}

TERMINAL_STATES: Set[VersionState] = {
    state for state, targets in VALID_TRANSITIONS.items() if not targets
}

# Every state must appear in the table, as a source or a target
_covered = {rule.from_state for rule in TRANSITION_RULES} | {
    rule.to_state for rule in TRANSITION_RULES
}
assert _covered == set(VersionState), (
    f"Transition table does not cover states: {set(VersionState) - _covered}"
)
assert TERMINAL_STATES == {VersionState.RETIRED}, TERMINAL_STATES
del _covered


def parse_state(value: Any) -> VersionState:
    """Coerce a raw value into a VersionState.

    Raises:
        UnknownStateError: If the value is not a known state
    """
    if isinstance(value, VersionState):
        return value
    try:
        return VersionState(value)
    except ValueError:
        raise UnknownStateError(value) from None


def can_transition(from_state: VersionState, to_state: VersionState) -> bool:
    """Check if a transition is valid from the given state."""
    return to_state in VALID_TRANSITIONS.get(from_state, frozenset())


def get_transition_rule(
    from_state: VersionState, to_state: VersionState
) -> Optional[TransitionRule]:
    """Get the transition rule for a state pair."""
    return TRANSITION_LOOKUP.get((from_state, to_state))


def is_governed(from_state: VersionState, to_state: VersionState) -> bool:
    """Check whether a transition needs policy and approval checks."""
    rule = get_transition_rule(from_state, to_state)
    return bool(rule and rule.governed)
