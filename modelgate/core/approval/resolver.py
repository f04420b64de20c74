"""Approval requirement resolution.

Maps a version's risk tier to the reviewer roles that must approve it and
decides whether a set of recorded approvals satisfies those requirements,
including the two-person rule for Medium and High risk.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional

from modelgate.core.errors import GovernanceConfigError

from .roles import (
    ApproverRole,
    RiskTier,
    parse_approver_role,
    parse_risk_tier,
    required_roles,
    requires_two_person_approval,
)


class ApprovalStatus(str, Enum):
    """Status of a single reviewer's approval entry."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Approval:
    """
    One reviewer's decision for a version in a review round.

    Entries are unique per (version_id, role, review_round); a later
    submission by the same role replaces the earlier one.
    """
    version_id: str
    role: ApproverRole
    approver: str
    status: ApprovalStatus
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    comment: Optional[str] = None
    review_round: int = 1

    def __post_init__(self):
        object.__setattr__(self, "role", parse_approver_role(self.role))
        try:
            object.__setattr__(self, "status", ApprovalStatus(self.status))
        except ValueError:
            raise GovernanceConfigError(f"Unknown approval status: {self.status!r}") from None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version_id": self.version_id,
            "role": self.role.value,
            "approver": self.approver,
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "comment": self.comment,
            "review_round": self.review_round,
        }


@dataclass(frozen=True)
class ApprovalCheck:
    """Detailed outcome of checking approvals against a tier."""
    tier: RiskTier
    required_roles: FrozenSet[ApproverRole]
    approved_roles: FrozenSet[ApproverRole]
    missing_roles: FrozenSet[ApproverRole]
    rejected_roles: FrozenSet[ApproverRole]
    approvers: FrozenSet[str]
    two_person_required: bool
    two_person_satisfied: bool

    @property
    def sufficient(self) -> bool:
        """True iff every required role is approved and the two-person rule holds."""
        return not self.missing_roles and not self.rejected_roles and self.two_person_satisfied


def latest_by_role(approvals: Iterable[Approval]) -> Dict[ApproverRole, Approval]:
    """
    Reduce approvals to the current entry per role.

    The entry with the latest timestamp wins; on equal timestamps the one
    appearing later in the input wins.
    """
    latest: Dict[ApproverRole, tuple[datetime, int, Approval]] = {}
    for index, approval in enumerate(approvals):
        key = (approval.timestamp, index)
        current = latest.get(approval.role)
        if current is None or key >= current[:2]:
            latest[approval.role] = (approval.timestamp, index, approval)
    return {role: entry[2] for role, entry in latest.items()}


class ApprovalRequirementResolver:
    """
    Resolves approval requirements for a risk tier.

    Stateless; every method is a pure function of its arguments.
    """

    def required_roles(self, tier: Any) -> FrozenSet[ApproverRole]:
        """Get the roles that must approve a version of this tier."""
        return required_roles(tier)

    def requires_two_person_approval(self, tier: Any) -> bool:
        """Check if approvals must come from two distinct identities."""
        return requires_two_person_approval(tier)

    def check(self, approvals: Iterable[Approval], tier: Any) -> ApprovalCheck:
        """
        Check approvals against the requirements of a tier.

        Args:
            approvals: Approval entries of the current review round
            tier: Risk tier of the version

        Returns:
            ApprovalCheck describing approved, missing and rejected roles

        Raises:
            UnknownRiskTierError: If the tier is not known
        """
        tier = parse_risk_tier(tier)
        needed = required_roles(tier)
        current = latest_by_role(approvals)

        approved = {
            role: entry for role, entry in current.items()
            if role in needed and entry.status == ApprovalStatus.APPROVED
        }
        rejected = frozenset(
            role for role, entry in current.items()
            if role in needed and entry.status == ApprovalStatus.REJECTED
        )
        approvers = frozenset(entry.approver for entry in approved.values())

        two_person = requires_two_person_approval(tier)
        two_person_ok = len(approvers) >= 2 if two_person else True

        return ApprovalCheck(
            tier=tier,
            required_roles=needed,
            approved_roles=frozenset(approved),
            missing_roles=needed - frozenset(approved),
            rejected_roles=rejected,
            approvers=approvers,
            two_person_required=two_person,
            two_person_satisfied=two_person_ok,
        )

    def has_sufficient_approvals(self, approvals: Iterable[Approval], tier: Any) -> bool:
        """
        Check if approvals satisfy the tier.

        True iff every required role has a current approved entry, no required
        role's current entry is a rejection, and, for Medium and High risk,
        the approving identities number at least two.
        """
        return self.check(approvals, tier).sufficient
