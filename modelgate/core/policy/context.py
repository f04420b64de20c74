"""Read-only evaluation context handed to the policy engine."""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Tuple


def freeze(value: Any) -> Any:
    """Recursively convert mappings and lists into read-only equivalents."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(item) for item in value)
    if isinstance(value, set):
        return frozenset(freeze(item) for item in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of freeze, producing plain dicts and lists for serialization."""
    if isinstance(value, Mapping):
        return {key: thaw(item) for key, item in value.items()}
    if isinstance(value, (tuple, list)):
        return [thaw(item) for item in value]
    if isinstance(value, frozenset):
        return sorted(thaw(item) for item in value)
    return value


@dataclass(frozen=True)
class EvaluationContext:
    """
    Facts a policy may inspect.

    - version: the version record (id, model_id, version, state, risk_tier, ...)
    - metadata: free-form version metadata (framework, owners, ...)
    - artifacts: artifact records attached to the version
    - evaluations: evaluation-suite results, latest first
    - lineage: lineage facts (datasets, parent versions, ...)
    - target_state: state the version is being promoted to, if any

    All nested data is frozen on construction so evaluation cannot mutate it.
    """
    version: Mapping[str, Any] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)
    artifacts: Tuple[Mapping[str, Any], ...] = ()
    evaluations: Tuple[Mapping[str, Any], ...] = ()
    lineage: Mapping[str, Any] = field(default_factory=dict)
    target_state: Optional[str] = None

    def __post_init__(self):
        for name in ("version", "metadata", "artifacts", "evaluations", "lineage"):
            object.__setattr__(self, name, freeze(getattr(self, name)))

    @property
    def version_id(self) -> Optional[str]:
        return self.version.get("id")

    @classmethod
    def build(
        cls,
        version,
        *,
        evaluations: Iterable[Mapping[str, Any]] = (),
        artifacts: Iterable[Mapping[str, Any]] = (),
        lineage: Optional[Mapping[str, Any]] = None,
        target_state: Any = None,
    ) -> "EvaluationContext":
        """Build a context from a ModelVersion and its related facts."""
        record = version.to_dict()
        return cls(
            version=record,
            metadata=record.pop("metadata", {}),
            artifacts=tuple(artifacts),
            evaluations=tuple(evaluations),
            lineage=lineage or {},
            target_state=getattr(target_state, "value", target_state),
        )

    def with_target(self, target_state: Any) -> "EvaluationContext":
        """Return a copy of the context aimed at another target state."""
        return EvaluationContext(
            version=self.version,
            metadata=self.metadata,
            artifacts=self.artifacts,
            evaluations=self.evaluations,
            lineage=self.lineage,
            target_state=getattr(target_state, "value", target_state),
        )
