"""Policy rule definitions for ModelGate.

Rules are conditions that a model version must satisfy before it can be
promoted. A policy holds one or more conditions that must all hold.
"""

import re
from enum import Enum
from numbers import Real
from typing import Any, Dict, Optional, Tuple
from dataclasses import dataclass

from modelgate.core.errors import (
    InvalidContextValueError,
    MissingContextFieldError,
    PolicyDefinitionError,
)

from .context import EvaluationContext


class ConditionSource(str, Enum):
    """Where in the evaluation context a condition reads its value."""

    FIELD = "field"               # Version record (state, risk_tier, version, ...)
    METADATA = "metadata"         # Version metadata
    ARTIFACT = "artifact"         # Attached artifacts
    EVALUATION = "evaluation"     # Latest evaluation-suite result
    LINEAGE = "lineage"           # Lineage facts


class RuleOperator(str, Enum):
    """Operators for rule comparisons."""

    EQUALS = "eq"
    NOT_EQUALS = "ne"
    GREATER_THAN = "gt"
    GREATER_THAN_OR_EQUAL = "gte"
    LESS_THAN = "lt"
    LESS_THAN_OR_EQUAL = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    MATCHES = "matches"           # Regex search
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    LENGTH_EQUALS = "length_eq"
    LENGTH_GREATER_THAN = "length_gt"
    LENGTH_LESS_THAN = "length_lt"


NUMERIC_OPERATORS = {
    RuleOperator.GREATER_THAN,
    RuleOperator.GREATER_THAN_OR_EQUAL,
    RuleOperator.LESS_THAN,
    RuleOperator.LESS_THAN_OR_EQUAL,
}
LENGTH_OPERATORS = {
    RuleOperator.LENGTH_EQUALS,
    RuleOperator.LENGTH_GREATER_THAN,
    RuleOperator.LENGTH_LESS_THAN,
}
PRESENCE_OPERATORS = {RuleOperator.EXISTS, RuleOperator.NOT_EXISTS}

# Special artifact fields computed across all artifacts
ARTIFACT_AGGREGATES = ("count", "total_size", "types", "licenses")

_MISSING = object()


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


@dataclass(frozen=True)
class Condition:
    """
    A single predicate over the evaluation context.

    `field` is a dotted path inside the selected source, e.g.
    `results.accuracy` for an evaluation or `framework` for metadata.
    """
    source: ConditionSource
    field: str
    operator: RuleOperator
    value: Any = None
    description: Optional[str] = None  # Custom failure message

    def __post_init__(self):
        try:
            object.__setattr__(self, "source", ConditionSource(self.source))
        except ValueError:
            raise PolicyDefinitionError(f"Unknown condition source: {self.source!r}") from None
        try:
            object.__setattr__(self, "operator", RuleOperator(self.operator))
        except ValueError:
            raise PolicyDefinitionError(f"Unknown operator: {self.operator!r}") from None
        if not self.field:
            raise PolicyDefinitionError("Condition is missing a field path")
        if self.operator in NUMERIC_OPERATORS and not _is_number(self.value):
            raise PolicyDefinitionError(
                f"Operator {self.operator.value} needs a numeric value, got {self.value!r}"
            )
        if self.operator in LENGTH_OPERATORS and not isinstance(self.value, int):
            raise PolicyDefinitionError(
                f"Operator {self.operator.value} needs an integer length, got {self.value!r}"
            )
        if self.operator in (RuleOperator.IN, RuleOperator.NOT_IN):
            if not isinstance(self.value, (list, tuple, set, frozenset)):
                raise PolicyDefinitionError(
                    f"Operator {self.operator.value} needs a list value, got {self.value!r}"
                )
            object.__setattr__(self, "value", tuple(self.value))
        if self.operator == RuleOperator.MATCHES:
            try:
                re.compile(str(self.value))
            except re.error as e:
                raise PolicyDefinitionError(f"Invalid regex {self.value!r}: {e}") from None

    @property
    def path(self) -> str:
        """Fully qualified field name used in messages."""
        return f"{self.source.value}.{self.field}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert condition to dictionary for serialization."""
        value = list(self.value) if isinstance(self.value, tuple) else self.value
        return {
            "source": self.source.value,
            "field": self.field,
            "operator": self.operator.value,
            "value": value,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        """Create condition from dictionary."""
        if "operator" not in data:
            raise PolicyDefinitionError("Condition is missing an operator")
        return cls(
            source=data.get("source", data.get("type", "field")),
            field=data.get("field", ""),
            operator=data["operator"],
            value=data.get("value"),
            description=data.get("description"),
        )


def lookup_path(data: Any, path: str) -> Any:
    """Walk a dotted path through nested mappings; _MISSING if absent."""
    value = data
    for segment in path.split("."):
        if hasattr(value, "get") and segment in value:
            value = value[segment]
        else:
            return _MISSING
    return value


def _artifact_total_size(artifacts, path: str, policy_id: Optional[str]) -> Real:
    total = 0
    for artifact in artifacts:
        size = artifact.get("size")
        if size is None:
            continue
        if not _is_number(size):
            raise InvalidContextValueError(path, size, "artifact size must be a number", policy_id)
        total += size
    return total


def _artifact_distinct(artifacts, key: str, path: str, policy_id: Optional[str]) -> list:
    values = [a[key] for a in artifacts if a.get(key)]
    for value in values:
        if not isinstance(value, str):
            raise InvalidContextValueError(path, value, f"artifact {key} must be a string", policy_id)
    return sorted(set(values))


def resolve_value(
    condition: Condition,
    context: EvaluationContext,
    policy_id: Optional[str] = None,
) -> Any:
    """
    Get the context value a condition refers to.

    Returns _MISSING when the field does not exist.

    Raises:
        InvalidContextValueError: If an artifact aggregate meets a malformed value
    """
    source = condition.source

    if source == ConditionSource.FIELD:
        return lookup_path(context.version, condition.field)

    if source == ConditionSource.METADATA:
        return lookup_path(context.metadata, condition.field)

    if source == ConditionSource.LINEAGE:
        return lookup_path(context.lineage, condition.field)

    if source == ConditionSource.EVALUATION:
        if not context.evaluations:
            return _MISSING
        return lookup_path(context.evaluations[0], condition.field)

    if source == ConditionSource.ARTIFACT:
        artifacts = context.artifacts
        if condition.field == "count":
            return len(artifacts)
        if condition.field == "total_size":
            return _artifact_total_size(artifacts, condition.path, policy_id)
        if condition.field == "types":
            return _artifact_distinct(artifacts, "type", condition.path, policy_id)
        if condition.field == "licenses":
            return _artifact_distinct(artifacts, "license", condition.path, policy_id)
        values = [lookup_path(a, condition.field) for a in artifacts]
        present = [v for v in values if v is not _MISSING and v is not None]
        if artifacts and not present:
            return _MISSING
        return present

    raise PolicyDefinitionError(f"Unknown condition source: {source!r}")


def evaluate_condition(
    condition: Condition,
    context: EvaluationContext,
    policy_id: Optional[str] = None,
) -> Tuple[bool, Optional[str]]:
    """
    Evaluate a single condition against the evaluation context.

    Args:
        condition: The condition to evaluate
        context: Version facts
        policy_id: Owning policy, for error context

    Returns:
        Tuple of (passed, reason)

    Raises:
        MissingContextFieldError: If the referenced field is absent or null
        InvalidContextValueError: If the value cannot be compared
    """
    actual = resolve_value(condition, context, policy_id)
    operator = condition.operator

    if operator in PRESENCE_OPERATORS:
        present = actual is not _MISSING and actual is not None
        passed = present if operator == RuleOperator.EXISTS else not present
        return _outcome(passed, condition, None if actual is _MISSING else actual)

    if actual is _MISSING or actual is None:
        raise MissingContextFieldError(condition.path, policy_id)

    try:
        passed = _compare_values(condition, actual, policy_id)
    except TypeError as e:
        # e.g. unhashable membership or mixed-type ordering
        raise InvalidContextValueError(condition.path, actual, str(e), policy_id) from e
    return _outcome(passed, condition, actual)


def _outcome(passed: bool, condition: Condition, actual: Any) -> Tuple[bool, Optional[str]]:
    if passed:
        return True, None
    if condition.description:
        return False, condition.description
    return False, (
        f"Condition {condition.path} {condition.operator.value} {condition.value!r} "
        f"failed (actual: {actual!r})"
    )


def _compare_values(condition: Condition, actual: Any, policy_id: Optional[str]) -> bool:
    """Compare values using the condition's operator."""
    operator = condition.operator
    expected = condition.value

    def invalid(reason: str) -> InvalidContextValueError:
        return InvalidContextValueError(condition.path, actual, reason, policy_id)

    if operator == RuleOperator.EQUALS:
        return actual == expected
    if operator == RuleOperator.NOT_EQUALS:
        return actual != expected

    if operator in NUMERIC_OPERATORS:
        if isinstance(actual, str):
            try:
                actual = float(actual)
            except ValueError:
                raise invalid("expected a number") from None
        if not _is_number(actual):
            raise invalid("expected a number")
        if operator == RuleOperator.GREATER_THAN:
            return actual > expected
        if operator == RuleOperator.GREATER_THAN_OR_EQUAL:
            return actual >= expected
        if operator == RuleOperator.LESS_THAN:
            return actual < expected
        return actual <= expected

    if operator == RuleOperator.IN:
        return actual in expected
    if operator == RuleOperator.NOT_IN:
        return actual not in expected

    if operator in (RuleOperator.CONTAINS, RuleOperator.NOT_CONTAINS):
        if isinstance(actual, (list, tuple, set, frozenset)):
            found = expected in actual
        elif isinstance(actual, str):
            found = str(expected) in actual
        else:
            raise invalid("expected a list or string")
        return found if operator == RuleOperator.CONTAINS else not found

    if operator == RuleOperator.MATCHES:
        if not isinstance(actual, (str, int, float)):
            raise invalid("expected a scalar value")
        return re.search(str(expected), str(actual)) is not None

    if operator in LENGTH_OPERATORS:
        if not isinstance(actual, (list, tuple, str, set, frozenset)):
            raise invalid("expected a list or string")
        length = len(actual)
        if operator == RuleOperator.LENGTH_EQUALS:
            return length == expected
        if operator == RuleOperator.LENGTH_GREATER_THAN:
            return length > expected
        return length < expected

    raise PolicyDefinitionError(f"Unknown operator: {operator!r}")
