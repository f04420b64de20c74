"""Policy evaluation engine for ModelGate.

Evaluates model versions against declarative governance policies.
"""

from .context import EvaluationContext
from .engine import (
    Enforcement,
    EvaluationResult,
    OverrideState,
    Policy,
    PolicyEvaluationEngine,
    PolicySeverity,
    PolicyViolation,
    SEVERITY_LEVELS,
)
from .rules import Condition, ConditionSource, RuleOperator
from .loader import default_policies, load_configured_policies, load_policy_file, parse_policy

__all__ = [
    "EvaluationContext",
    "Enforcement",
    "EvaluationResult",
    "OverrideState",
    "Policy",
    "PolicyEvaluationEngine",
    "PolicySeverity",
    "PolicyViolation",
    "SEVERITY_LEVELS",
    "Condition",
    "ConditionSource",
    "RuleOperator",
    "load_policy_file",
    "parse_policy",
    "default_policies",
    "load_configured_policies",
]
