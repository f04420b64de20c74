"""Loading of declarative policy definitions.

Policies are stored as YAML documents of the form::

    policies:
      - id: min-accuracy
        name: Minimum accuracy
        severity: high
        can_override: true
        priority: 10
        stages: [approved_staging, approved_prod]
        conditions:
          - source: evaluation
            field: results.accuracy
            operator: gte
            value: 0.9
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List

import yaml

from modelgate.core.config import get_settings
from modelgate.core.errors import GovernanceConfigError, PolicyDefinitionError

from .engine import Policy
from .rules import Condition

logger = logging.getLogger(__name__)


def parse_policy(data: Dict[str, Any]) -> Policy:
    """Parse a policy definition dictionary.

    Args:
        data: Policy definition

    Returns:
        Policy instance

    Raises:
        PolicyDefinitionError: If the definition is incomplete or invalid
    """
    if not isinstance(data, dict):
        raise PolicyDefinitionError(f"Policy definition must be a mapping, got {type(data).__name__}")

    policy_id = data.get("id")
    if not policy_id:
        raise PolicyDefinitionError("Policy definition is missing an id")
    if not data.get("name"):
        raise PolicyDefinitionError("Policy definition is missing a name", policy_id)
    if "severity" not in data:
        raise PolicyDefinitionError("Policy definition is missing a severity", policy_id)

    raw_conditions = data.get("conditions", [])
    if not isinstance(raw_conditions, list) or not raw_conditions:
        raise PolicyDefinitionError("Policy needs at least one condition", policy_id)

    try:
        conditions = tuple(Condition.from_dict(c) for c in raw_conditions)
        return Policy(
            id=str(policy_id),
            name=data["name"],
            severity=data["severity"],
            conditions=conditions,
            can_override=bool(data.get("can_override", False)),
            priority=int(data.get("priority", 100)),
            enforcement=data.get("enforcement", "block"),
            stages=data.get("stages"),
            risk_tiers=data.get("risk_tiers"),
            enabled=bool(data.get("enabled", True)),
            description=data.get("description"),
        )
    except PolicyDefinitionError as e:
        if e.policy_id is None:
            raise PolicyDefinitionError(str(e), policy_id) from None
        raise
    except GovernanceConfigError as e:
        raise PolicyDefinitionError(str(e), policy_id) from None


def parse_policies(definitions: List[Dict[str, Any]]) -> List[Policy]:
    """Parse a list of definitions, rejecting duplicate ids."""
    policies = []
    seen = set()
    for data in definitions:
        policy = parse_policy(data)
        if policy.id in seen:
            raise PolicyDefinitionError("Duplicate policy id", policy.id)
        seen.add(policy.id)
        policies.append(policy)
    return policies


def load_policy_file(path: str) -> List[Policy]:
    """Load policies from a YAML file.

    Args:
        path: Path to the policy file

    Returns:
        List of Policy instances

    Raises:
        FileNotFoundError: If the file doesn't exist
        yaml.YAMLError: If the file is invalid YAML
        PolicyDefinitionError: If a definition is invalid
    """
    policy_file = Path(path)

    if not policy_file.exists():
        raise FileNotFoundError(f"Policy file not found: {path}")

    with policy_file.open("r") as f:
        document = yaml.safe_load(f)

    if document is None:
        return []

    if isinstance(document, dict):
        document = document.get("policies", [])

    if not isinstance(document, list):
        raise PolicyDefinitionError(
            f"Policy file root must be a list or a mapping with 'policies', got {type(document).__name__}"
        )

    return parse_policies(_expand_env_vars(document))


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in definitions."""
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return os.path.expandvars(obj)
    else:
        return obj


# Default policies for quick setup
DEFAULT_POLICIES: List[Dict[str, Any]] = [
    {
        "id": "model-card-required",
        "name": "Model card required",
        "severity": "medium",
        "can_override": True,
        "priority": 10,
        "conditions": [
            {
                "source": "metadata",
                "field": "model_card",
                "operator": "exists",
                "description": "A model card must be attached before promotion",
            },
        ],
    },
    {
        "id": "evaluation-passed",
        "name": "Evaluation suite passed",
        "severity": "critical",
        "can_override": False,
        "priority": 20,
        "conditions": [
            {
                "source": "evaluation",
                "field": "status",
                "operator": "eq",
                "value": "passed",
                "description": "The latest evaluation suite run must pass",
            },
        ],
    },
    {
        "id": "artifacts-present",
        "name": "Model artifacts present",
        "severity": "high",
        "can_override": False,
        "priority": 30,
        "conditions": [
            {
                "source": "artifact",
                "field": "types",
                "operator": "contains",
                "value": "weights",
                "description": "Model weights must be registered as an artifact",
            },
        ],
    },
    {
        "id": "license-review",
        "name": "Artifact license review",
        "severity": "low",
        "can_override": True,
        "priority": 90,
        "enforcement": "warn",
        "conditions": [
            {
                "source": "artifact",
                "field": "licenses",
                "operator": "length_gt",
                "value": 0,
                "description": "Artifacts should declare a license",
            },
        ],
    },
]


def default_policies() -> List[Policy]:
    """Build the starter policy set."""
    return parse_policies(DEFAULT_POLICIES)


def load_configured_policies(settings=None) -> List[Policy]:
    """Load the policy file named in settings, or the starter set if none is configured."""
    settings = settings or get_settings()
    if settings.policy_file:
        policies = load_policy_file(settings.policy_file)
        logger.info("Loaded %d policies from %s", len(policies), settings.policy_file)
        return policies
    return default_policies()
