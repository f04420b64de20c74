"""Exception types for the governance core.

Business outcomes (invalid transition, blocking violation, missing approval)
are never raised; they are reported inside a PromotionBlockingResult.
The exceptions below cover structural faults and concurrency conflicts.
"""

from typing import Any, Optional


class GovernanceError(Exception):
    """Base class for all ModelGate errors."""


class GovernanceConfigError(GovernanceError, ValueError):
    """Raised when decision inputs are structurally malformed."""


class UnknownStateError(GovernanceConfigError):
    """Raised when a value is not a known VersionState."""

    def __init__(self, value: Any):
        super().__init__(f"Unknown version state: {value!r}")
        self.value = value


class UnknownRiskTierError(GovernanceConfigError):
    """Raised when a value is not a known RiskTier."""

    def __init__(self, value: Any):
        super().__init__(f"Unknown risk tier: {value!r}")
        self.value = value


class PolicyDefinitionError(GovernanceConfigError):
    """Raised when a policy definition cannot be parsed."""

    def __init__(self, message: str, policy_id: Optional[str] = None):
        prefix = f"Policy {policy_id}: " if policy_id else ""
        super().__init__(f"{prefix}{message}")
        self.policy_id = policy_id


class MalformedRequestError(GovernanceConfigError):
    """Raised when a transition request does not match its snapshot."""


class TransitionError(GovernanceError):
    """Raised when a caller requires an edge that is not in the transition table."""

    def __init__(self, message: str, from_state: Any, to_state: Any):
        super().__init__(message)
        self.from_state = from_state
        self.to_state = to_state


class PolicyEvaluationError(GovernanceError):
    """A single policy could not be evaluated against its context.

    The evaluation engine escalates these to critical violations instead
    of aborting the whole evaluation.
    """

    def __init__(self, message: str, field: str, policy_id: Optional[str] = None):
        super().__init__(message)
        self.field = field
        self.policy_id = policy_id


class MissingContextFieldError(PolicyEvaluationError):
    """A condition referenced a field absent from the evaluation context."""

    def __init__(self, field: str, policy_id: Optional[str] = None):
        super().__init__(f"missing context field '{field}'", field, policy_id)


class InvalidContextValueError(PolicyEvaluationError):
    """A context value has a type the condition operator cannot handle."""

    def __init__(self, field: str, value: Any, reason: str, policy_id: Optional[str] = None):
        super().__init__(
            f"invalid value {value!r} for context field '{field}': {reason}",
            field,
            policy_id,
        )
        self.value = value


class CommitConflictError(GovernanceError):
    """Raised when a state commit lost a compare-and-set race.

    Retryable: the caller must reload a fresh snapshot and re-run the
    full decision.
    """

    retryable = True

    def __init__(self, version_id: str, expected_state: Any, actual_state: Any = None):
        super().__init__(
            f"Version {version_id} is no longer in state {getattr(expected_state, 'value', expected_state)}"
            + (f" (now {getattr(actual_state, 'value', actual_state)})" if actual_state is not None else "")
        )
        self.version_id = version_id
        self.expected_state = expected_state
        self.actual_state = actual_state
