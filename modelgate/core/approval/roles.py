"""Risk tiers and the approver roles each tier requires.

Defines the three standard reviewer roles:
1. MRC - Model Risk Committee, required for every promotion
2. Security - required from Medium risk upward
3. SRE - required for High risk
"""

from enum import Enum
from typing import Any, Dict, FrozenSet

from modelgate.core.errors import GovernanceConfigError, UnknownRiskTierError


class RiskTier(str, Enum):
    """Risk classification of a model version."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class ApproverRole(str, Enum):
    """Reviewer roles that can approve a promotion."""

    MRC = "MRC"
    SECURITY = "Security"
    SRE = "SRE"


# Required roles per tier
ROLE_REQUIREMENTS: Dict[RiskTier, FrozenSet[ApproverRole]] = {
    RiskTier.LOW: frozenset({ApproverRole.MRC}),
    RiskTier.MEDIUM: frozenset({ApproverRole.MRC, ApproverRole.SECURITY}),
    RiskTier.HIGH: frozenset({ApproverRole.MRC, ApproverRole.SECURITY, ApproverRole.SRE}),
}

TWO_PERSON_TIERS: FrozenSet[RiskTier] = frozenset({RiskTier.MEDIUM, RiskTier.HIGH})

# Exhaustive over tiers, and monotonically non-decreasing in risk
assert set(ROLE_REQUIREMENTS) == set(RiskTier), "ROLE_REQUIREMENTS must cover every RiskTier"
assert (
    ROLE_REQUIREMENTS[RiskTier.LOW]
    <= ROLE_REQUIREMENTS[RiskTier.MEDIUM]
    <= ROLE_REQUIREMENTS[RiskTier.HIGH]
), "Role requirements must not shrink as risk grows"


def parse_risk_tier(value: Any) -> RiskTier:
    """Coerce a raw value into a RiskTier.

    Accepts the canonical values and their case-insensitive forms.

    Raises:
        UnknownRiskTierError: If the value is not a known tier
    """
    if isinstance(value, RiskTier):
        return value
    if isinstance(value, str):
        for tier in RiskTier:
            if tier.value.lower() == value.strip().lower():
                return tier
    raise UnknownRiskTierError(value)


def parse_approver_role(value: Any) -> ApproverRole:
    """Coerce a raw value into an ApproverRole.

    Raises:
        GovernanceConfigError: If the value is not a known role
    """
    if isinstance(value, ApproverRole):
        return value
    try:
        return ApproverRole(value)
    except ValueError:
        raise GovernanceConfigError(f"Unknown approver role: {value!r}") from None


def required_roles(tier: Any) -> FrozenSet[ApproverRole]:
    """Get the approver roles required for a risk tier."""
    return ROLE_REQUIREMENTS[parse_risk_tier(tier)]


def requires_two_person_approval(tier: Any) -> bool:
    """Check whether the two-person rule applies to a risk tier."""
    return parse_risk_tier(tier) in TWO_PERSON_TIERS
