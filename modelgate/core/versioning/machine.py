"""Version state machine.

Pure validation of lifecycle transitions. The machine never holds entity
state; callers pass the current state with every call.
"""

from typing import Any

from modelgate.core.errors import TransitionError

from .states import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    TransitionRule,
    VersionState,
    can_transition,
    get_transition_rule,
    parse_state,
)


class VersionStateMachine:
    """
    State machine for model version promotion.

    Stateless and safe to share between concurrent requests. Provides:
    - Total validation of (current, target) pairs
    - Lookup of available targets and transition rules
    - Strict variant raising TransitionError for callers that need one
    """

    def validate_transition(self, current: Any, target: Any) -> bool:
        """
        Check whether moving from current to target is a legal edge.

        Args:
            current: Current state (VersionState or its string value)
            target: Requested state

        Returns:
            True if the pair is in the transition table

        Raises:
            UnknownStateError: If either value is not a known state
        """
        return can_transition(parse_state(current), parse_state(target))

    def require_transition(self, current: Any, target: Any) -> TransitionRule:
        """
        Return the rule for a transition, raising if it is not allowed.

        Raises:
            TransitionError: If the edge is not in the transition table
            UnknownStateError: If either value is not a known state
        """
        from_state = parse_state(current)
        to_state = parse_state(target)
        rule = get_transition_rule(from_state, to_state)
        if rule is None:
            raise TransitionError(
                f"Cannot transition from {from_state.value} to {to_state.value}",
                from_state,
                to_state,
            )
        return rule

    def get_available_targets(self, current: Any) -> list[VersionState]:
        """Get the states reachable in one step, in declaration order."""
        targets = VALID_TRANSITIONS[parse_state(current)]
        return [state for state in VersionState if state in targets]

    def is_terminal(self, state: Any) -> bool:
        """Check if a state has no outgoing transitions."""
        return parse_state(state) in TERMINAL_STATES


_default_machine = VersionStateMachine()


def validate_transition(current: Any, target: Any) -> bool:
    """Module-level shortcut for VersionStateMachine.validate_transition."""
    return _default_machine.validate_transition(current, target)
