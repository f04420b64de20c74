"""Promotion blocking service.

Fuses the state machine, the policy engine and the approval requirement
resolver into a single allow/block decision for a transition request.
Business outcomes are always returned as a PromotionBlockingResult;
only malformed inputs raise.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from modelgate.core.approval.resolver import (
    Approval,
    ApprovalRequirementResolver,
)
from modelgate.core.approval.roles import ApproverRole
from modelgate.core.errors import MalformedRequestError
from modelgate.core.policy.context import EvaluationContext
from modelgate.core.policy.engine import (
    Enforcement,
    Policy,
    PolicyEvaluationEngine,
    PolicySeverity,
    PolicyViolation,
)
from modelgate.core.versioning.machine import VersionStateMachine
from modelgate.core.versioning.models import ModelVersion, StateTransitionRequest
from modelgate.core.versioning.states import VersionState, get_transition_rule

logger = logging.getLogger(__name__)


class BlockingReasonKind(str, Enum):
    """Why a promotion was not allowed."""

    INVALID_TRANSITION = "invalid_transition"
    POLICY_VIOLATION = "policy_violation"
    MISSING_APPROVAL = "missing_approval"
    REJECTED_APPROVAL = "rejected_approval"
    TWO_PERSON_RULE = "two_person_rule"


@dataclass(frozen=True)
class BlockingReason:
    """One structured reason a decision is blocked."""
    kind: BlockingReasonKind
    message: str
    policy_id: Optional[str] = None
    role: Optional[ApproverRole] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "policy_id": self.policy_id,
            "role": self.role.value if self.role else None,
        }


# Days an override stays valid, from the policy severity when granted
OVERRIDE_VALIDITY_DAYS = {
    PolicySeverity.CRITICAL: 30,
    PolicySeverity.HIGH: 30,
    PolicySeverity.MEDIUM: 90,
    PolicySeverity.LOW: 90,
}


@dataclass(frozen=True)
class OverrideClaim:
    """
    A reasoned request to waive the violation of one policy.

    A claim with `expires_at` set stops applying once a request is made at
    or after that instant; without it the claim never expires.
    """
    policy_id: str
    reason: str
    actor: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: Optional[datetime] = None

    @classmethod
    def for_policy(
        cls,
        policy: Policy,
        reason: str,
        actor: str,
        timestamp: Optional[datetime] = None,
    ) -> "OverrideClaim":
        """Claim expiring after the validity period for the policy's severity."""
        granted = timestamp or datetime.now(timezone.utc)
        return cls(
            policy_id=policy.id,
            reason=reason,
            actor=actor,
            timestamp=granted,
            expires_at=granted + timedelta(days=OVERRIDE_VALIDITY_DAYS[policy.severity]),
        )

    @property
    def has_reason(self) -> bool:
        return bool(self.reason and self.reason.strip())

    def is_active(self, at: datetime) -> bool:
        return self.expires_at is None or self.expires_at > at


@dataclass(frozen=True)
class PromotionBlockingResult:
    """
    Outcome of a promotion decision.

    `blocking_violations` is ordered by severity (most severe first), then
    policy id. `target_state` is only set when the transition is allowed.
    """
    version_id: str
    current_state: VersionState
    requested_state: VersionState
    allowed: bool
    governed: bool = False
    reasons: Tuple[BlockingReason, ...] = ()
    blocking_violations: Tuple[PolicyViolation, ...] = ()
    overridden: Tuple[PolicyViolation, ...] = ()
    warnings: Tuple[PolicyViolation, ...] = ()
    missing_roles: Tuple[ApproverRole, ...] = ()
    rejected_roles: Tuple[ApproverRole, ...] = ()
    two_person_required: bool = False
    two_person_satisfied: bool = True
    target_state: Optional[VersionState] = None

    @property
    def invalid_transition(self) -> bool:
        return any(r.kind == BlockingReasonKind.INVALID_TRANSITION for r in self.reasons)

    def reason_kinds(self) -> List[BlockingReasonKind]:
        return [r.kind for r in self.reasons]

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary for storage."""
        return {
            "version_id": self.version_id,
            "current_state": self.current_state.value,
            "requested_state": self.requested_state.value,
            "allowed": self.allowed,
            "governed": self.governed,
            "reasons": [r.to_dict() for r in self.reasons],
            "blocking_violations": [v.to_dict() for v in self.blocking_violations],
            "overridden": [v.to_dict() for v in self.overridden],
            "warnings": [v.to_dict() for v in self.warnings],
            "missing_roles": [r.value for r in self.missing_roles],
            "rejected_roles": [r.value for r in self.rejected_roles],
            "two_person_required": self.two_person_required,
            "two_person_satisfied": self.two_person_satisfied,
            "target_state": self.target_state.value if self.target_state else None,
        }


def _role_order(roles: Iterable[ApproverRole]) -> Tuple[ApproverRole, ...]:
    """Order roles by their declaration in ApproverRole."""
    wanted = set(roles)
    return tuple(role for role in ApproverRole if role in wanted)


def _select_claims(overrides: Iterable[OverrideClaim], at: datetime) -> Dict[str, OverrideClaim]:
    """Pick the latest reasoned claim per policy id that is still active at `at`."""
    selected: Dict[str, OverrideClaim] = {}
    for claim in overrides:
        if not claim.has_reason:
            continue
        if not claim.is_active(at):
            logger.info(
                "Ignoring override by %s for policy %s: expired at %s",
                claim.actor, claim.policy_id, claim.expires_at.isoformat(),
            )
            continue
        current = selected.get(claim.policy_id)
        if current is None or claim.timestamp >= current.timestamp:
            selected[claim.policy_id] = claim
    return selected


class PromotionBlockingService:
    """
    Decides whether a model version may move to a requested state.

    Order of checks:
    1. Transition table; an invalid edge short-circuits everything else
    2. Applicable policies, with overrides applied
    3. Approval quorum for the version's risk tier

    The service is stateless and holds no entity data between calls.
    """

    def __init__(
        self,
        state_machine: Optional[VersionStateMachine] = None,
        engine: Optional[PolicyEvaluationEngine] = None,
        resolver: Optional[ApprovalRequirementResolver] = None,
    ):
        self.state_machine = state_machine or VersionStateMachine()
        self.engine = engine or PolicyEvaluationEngine()
        self.resolver = resolver or ApprovalRequirementResolver()

    def decide(
        self,
        request: StateTransitionRequest,
        version: ModelVersion,
        approvals: Iterable[Approval],
        policies: Iterable[Policy],
        overrides: Iterable[OverrideClaim] = (),
        context: Optional[EvaluationContext] = None,
    ) -> PromotionBlockingResult:
        """
        Compute the promotion decision for a request.

        Args:
            request: The transition request, including the acting identity
            version: Fresh snapshot of the version
            approvals: Approval entries recorded for the version
            policies: Candidate policies; only applicable ones are evaluated
            overrides: Override claims for policy violations
            context: Evaluation facts; built from the version when omitted

        Returns:
            PromotionBlockingResult

        Raises:
            MalformedRequestError: If the request targets another version
            UnknownStateError / UnknownRiskTierError: For unknown enum values
        """
        if request.version_id != version.id:
            raise MalformedRequestError(
                f"Request for version {request.version_id} decided against snapshot of {version.id}"
            )

        current = version.state
        target = request.target_state

        if not self.state_machine.validate_transition(current, target):
            logger.info(
                "Rejected transition %s -> %s for version %s requested by %s: not in transition table",
                current.value, target.value, version.id, request.requested_by.identity,
            )
            return PromotionBlockingResult(
                version_id=version.id,
                current_state=current,
                requested_state=target,
                allowed=False,
                reasons=(
                    BlockingReason(
                        kind=BlockingReasonKind.INVALID_TRANSITION,
                        message=f"Cannot transition from {current.value} to {target.value}",
                    ),
                ),
            )

        rule = get_transition_rule(current, target)
        if not rule.governed:
            logger.info(
                "Allowed structural transition %s -> %s for version %s",
                current.value, target.value, version.id,
            )
            return PromotionBlockingResult(
                version_id=version.id,
                current_state=current,
                requested_state=target,
                allowed=True,
                target_state=target,
            )

        blocking, overridden, warnings = self._evaluate_policies(
            version, target, policies, overrides, context, request.requested_at
        )

        round_approvals = [
            a for a in approvals
            if a.version_id == version.id and a.review_round == version.review_round
        ]
        check = self.resolver.check(round_approvals, version.risk_tier)

        reasons: List[BlockingReason] = [
            BlockingReason(
                kind=BlockingReasonKind.POLICY_VIOLATION,
                message=f"{v.policy_name}: {v.message}",
                policy_id=v.policy_id,
            )
            for v in blocking
        ]
        for role in _role_order(check.missing_roles - check.rejected_roles):
            reasons.append(BlockingReason(
                kind=BlockingReasonKind.MISSING_APPROVAL,
                message=f"Approval from {role.value} is required",
                role=role,
            ))
        for role in _role_order(check.rejected_roles):
            reasons.append(BlockingReason(
                kind=BlockingReasonKind.REJECTED_APPROVAL,
                message=f"{role.value} rejected this version",
                role=role,
            ))
        if not check.missing_roles and not check.two_person_satisfied:
            reasons.append(BlockingReason(
                kind=BlockingReasonKind.TWO_PERSON_RULE,
                message=(
                    f"{version.risk_tier.value} risk requires approvals from at least "
                    f"two distinct reviewers, got {len(check.approvers)}"
                ),
            ))

        allowed = not blocking and check.sufficient

        logger.info(
            "Promotion %s -> %s for version %s requested by %s: %s "
            "(%d blocking, %d overridden, missing roles: %s)",
            current.value, target.value, version.id, request.requested_by.identity,
            "allowed" if allowed else "blocked",
            len(blocking), len(overridden),
            ", ".join(r.value for r in _role_order(check.missing_roles)) or "none",
        )

        return PromotionBlockingResult(
            version_id=version.id,
            current_state=current,
            requested_state=target,
            allowed=allowed,
            governed=True,
            reasons=tuple(reasons),
            blocking_violations=tuple(blocking),
            overridden=tuple(overridden),
            warnings=tuple(warnings),
            missing_roles=_role_order(check.missing_roles),
            rejected_roles=_role_order(check.rejected_roles),
            two_person_required=check.two_person_required,
            two_person_satisfied=check.two_person_satisfied,
            target_state=target if allowed else None,
        )

    def _evaluate_policies(
        self,
        version: ModelVersion,
        target: VersionState,
        policies: Iterable[Policy],
        overrides: Iterable[OverrideClaim],
        context: Optional[EvaluationContext],
        requested_at: datetime,
    ) -> Tuple[List[PolicyViolation], List[PolicyViolation], List[PolicyViolation]]:
        """Evaluate applicable policies and split violations by outcome."""
        if context is None:
            context = EvaluationContext.build(version, target_state=target)
        elif context.target_state is None:
            context = context.with_target(target)

        applicable = [p for p in policies if p.applies_to(target, version.risk_tier)]
        evaluation = self.engine.evaluate(context, applicable)
        claims = _select_claims(overrides, requested_at)

        blocking: List[PolicyViolation] = []
        overridden: List[PolicyViolation] = []
        warnings: List[PolicyViolation] = []

        for violation in evaluation.violations:
            if violation.enforcement == Enforcement.WARN:
                warnings.append(violation)
                continue
            claim = claims.get(violation.policy_id)
            if claim is not None and violation.can_override:
                overridden.append(
                    violation.with_override(claim.reason.strip(), claim.actor, claim.timestamp)
                )
                continue
            if claim is not None:
                logger.warning(
                    "Ignoring override by %s for non-overridable policy %s on version %s",
                    claim.actor, violation.policy_id, version.id,
                )
            blocking.append(violation)

        blocking.sort(key=lambda v: (-v.severity_level, v.policy_id))
        return blocking, overridden, warnings
