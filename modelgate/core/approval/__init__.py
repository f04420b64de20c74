"""Approval requirements module for ModelGate.

Defines risk tiers, reviewer roles, and approval quorum checks.
"""

from .roles import (
    RiskTier,
    ApproverRole,
    ROLE_REQUIREMENTS,
    parse_risk_tier,
    required_roles,
    requires_two_person_approval,
)
from .resolver import (
    Approval,
    ApprovalStatus,
    ApprovalCheck,
    ApprovalRequirementResolver,
    latest_by_role,
)

__all__ = [
    "RiskTier",
    "ApproverRole",
    "ROLE_REQUIREMENTS",
    "parse_risk_tier",
    "required_roles",
    "requires_two_person_approval",
    "Approval",
    "ApprovalStatus",
    "ApprovalCheck",
    "ApprovalRequirementResolver",
    "latest_by_role",
]
