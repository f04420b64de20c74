"""Policy evaluation engine for ModelGate.

Evaluates a model version's evaluation context against governance
policies and reports every violation found. Whether a violation is
acceptable (overridden) is decided by the promotion blocking service,
not here.
"""

import logging
import uuid
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple
from dataclasses import dataclass, replace
from datetime import datetime

from modelgate.core.approval.roles import RiskTier, parse_risk_tier
from modelgate.core.errors import PolicyDefinitionError, PolicyEvaluationError
from modelgate.core.versioning.states import VersionState, parse_state

from .context import EvaluationContext
from .rules import Condition, evaluate_condition

logger = logging.getLogger(__name__)

VIOLATION_NAMESPACE = uuid.UUID("6f1d3c52-2a4b-4b8e-9a57-0d5c3e7f2b10")


class PolicySeverity(str, Enum):
    """Severity of a policy and of the violations it produces."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Severity level ordering (higher = more severe)
SEVERITY_LEVELS = {
    PolicySeverity.CRITICAL: 4,
    PolicySeverity.HIGH: 3,
    PolicySeverity.MEDIUM: 2,
    PolicySeverity.LOW: 1,
}


class Enforcement(str, Enum):
    """What a violation of the policy does to a promotion."""

    BLOCK = "block"
    WARN = "warn"


class OverrideState(str, Enum):
    NONE = "none"
    OVERRIDDEN = "overridden"


@dataclass(frozen=True)
class Policy:
    """
    A governance policy.

    All conditions must hold for the policy to pass. `priority` orders
    evaluation (lower first); ties are broken by policy id.
    """
    id: str
    name: str
    severity: PolicySeverity
    conditions: Tuple[Condition, ...] = ()
    can_override: bool = False
    priority: int = 100
    enforcement: Enforcement = Enforcement.BLOCK
    stages: Optional[FrozenSet[VersionState]] = None
    risk_tiers: Optional[FrozenSet[RiskTier]] = None
    enabled: bool = True
    description: Optional[str] = None

    def __post_init__(self):
        try:
            object.__setattr__(self, "severity", PolicySeverity(self.severity))
            object.__setattr__(self, "enforcement", Enforcement(self.enforcement))
        except ValueError as e:
            raise PolicyDefinitionError(str(e), self.id) from None
        object.__setattr__(self, "conditions", tuple(self.conditions))
        if self.stages is not None:
            object.__setattr__(self, "stages", frozenset(parse_state(s) for s in self.stages))
        if self.risk_tiers is not None:
            object.__setattr__(
                self, "risk_tiers", frozenset(parse_risk_tier(t) for t in self.risk_tiers)
            )

    @property
    def sort_key(self) -> tuple[int, str]:
        return (self.priority, self.id)

    def applies_to(self, target_state: Any, risk_tier: Any) -> bool:
        """Check whether this policy governs a promotion to target_state at risk_tier."""
        if not self.enabled:
            return False
        if self.stages is not None and parse_state(target_state) not in self.stages:
            return False
        if self.risk_tiers is not None and parse_risk_tier(risk_tier) not in self.risk_tiers:
            return False
        return True


@dataclass(frozen=True)
class PolicyViolation:
    """
    A policy that did not pass for a version.

    Severity, enforcement and overridability are copied from the policy at
    evaluation time so later policy edits do not change the record.
    """
    id: str
    version_id: Optional[str]
    policy_id: str
    policy_name: str
    severity: PolicySeverity
    message: str
    enforcement: Enforcement = Enforcement.BLOCK
    can_override: bool = False
    failures: Tuple[str, ...] = ()
    fault_field: Optional[str] = None
    override_state: OverrideState = OverrideState.NONE
    override_reason: Optional[str] = None
    overridden_by: Optional[str] = None
    overridden_at: Optional[datetime] = None

    @property
    def is_overridden(self) -> bool:
        return self.override_state == OverrideState.OVERRIDDEN

    @property
    def is_fault(self) -> bool:
        """True when the violation stands for a policy that could not be evaluated."""
        return self.fault_field is not None

    @property
    def severity_level(self) -> int:
        return SEVERITY_LEVELS[self.severity]

    def with_override(self, reason: str, actor: str, at: datetime) -> "PolicyViolation":
        """Return an overridden copy of this violation."""
        return replace(
            self,
            override_state=OverrideState.OVERRIDDEN,
            override_reason=reason,
            overridden_by=actor,
            overridden_at=at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "version_id": self.version_id,
            "policy_id": self.policy_id,
            "policy_name": self.policy_name,
            "severity": self.severity.value,
            "message": self.message,
            "enforcement": self.enforcement.value,
            "can_override": self.can_override,
            "failures": list(self.failures),
            "fault_field": self.fault_field,
            "override_state": self.override_state.value,
            "override_reason": self.override_reason,
            "overridden_by": self.overridden_by,
            "overridden_at": self.overridden_at.isoformat() if self.overridden_at else None,
        }


@dataclass(frozen=True)
class EvaluationResult:
    """Raw outcome of evaluating a set of policies."""
    violations: Tuple[PolicyViolation, ...] = ()
    evaluated: Tuple[str, ...] = ()

    @property
    def passed(self) -> bool:
        """True iff no policy produced a violation."""
        return not self.violations

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passed": self.passed,
            "evaluated": list(self.evaluated),
            "violations": [v.to_dict() for v in self.violations],
        }


def violation_id(version_id: Optional[str], policy_id: str) -> str:
    """Deterministic violation id for a (version, policy) pair."""
    return str(uuid.uuid5(VIOLATION_NAMESPACE, f"{version_id}:{policy_id}"))


def order_policies(policies: Iterable[Policy]) -> List[Policy]:
    """Sort policies by declared priority, then id."""
    return sorted(policies, key=lambda p: p.sort_key)


class PolicyEvaluationEngine:
    """
    Evaluates a version's context against governance policies.

    Every policy is evaluated; there is no short-circuit on the first
    failure. A policy that cannot be evaluated because its context is
    incomplete or malformed becomes a critical, blocking, non-overridable
    violation (fail closed).
    """

    def evaluate(
        self,
        context: EvaluationContext,
        policies: Iterable[Policy],
    ) -> EvaluationResult:
        """
        Evaluate policies against a context.

        Args:
            context: Read-only version facts
            policies: Applicable policies, in any order

        Returns:
            EvaluationResult with violations in evaluation order
        """
        violations: List[PolicyViolation] = []
        evaluated: List[str] = []

        for policy in order_policies(policies):
            evaluated.append(policy.id)
            violation = self._evaluate_policy(policy, context)
            if violation is not None:
                violations.append(violation)

        logger.debug(
            "Evaluated %d policies for version %s: %d violations",
            len(evaluated), context.version_id, len(violations),
        )
        return EvaluationResult(violations=tuple(violations), evaluated=tuple(evaluated))

    def _evaluate_policy(
        self,
        policy: Policy,
        context: EvaluationContext,
    ) -> Optional[PolicyViolation]:
        failures: List[str] = []
        try:
            for condition in policy.conditions:
                passed, reason = evaluate_condition(condition, context, policy.id)
                if not passed:
                    failures.append(reason)
        except PolicyEvaluationError as e:
            logger.warning(
                "Policy %s could not be evaluated for version %s: %s",
                policy.id, context.version_id, e,
            )
            return PolicyViolation(
                id=violation_id(context.version_id, policy.id),
                version_id=context.version_id,
                policy_id=policy.id,
                policy_name=policy.name,
                severity=PolicySeverity.CRITICAL,
                message=f"Policy '{policy.name}' could not be evaluated: {e}",
                enforcement=Enforcement.BLOCK,
                can_override=False,
                fault_field=e.field,
            )

        if not failures:
            return None

        return PolicyViolation(
            id=violation_id(context.version_id, policy.id),
            version_id=context.version_id,
            policy_id=policy.id,
            policy_name=policy.name,
            severity=policy.severity,
            message="; ".join(failures),
            enforcement=policy.enforcement,
            can_override=policy.can_override,
            failures=tuple(failures),
        )

