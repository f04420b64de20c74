"""Value objects describing model versions and transition requests."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Optional, Tuple

from modelgate.core.approval.roles import RiskTier, parse_risk_tier

from .states import VersionState, parse_state


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Actor:
    """An already-authenticated identity and the roles it holds."""
    identity: str
    roles: FrozenSet[str] = frozenset()

    def has_role(self, role: Any) -> bool:
        return getattr(role, "value", role) in self.roles


@dataclass(frozen=True)
class ModelVersion:
    """
    Snapshot of a model version as read from persistence.

    The core never mutates a version; it only computes whether a
    transition is allowed.
    """
    id: str
    model_id: str
    version: str
    state: VersionState
    risk_tier: RiskTier
    created_at: datetime = field(default_factory=utcnow)
    review_round: int = 1
    owners: Tuple[str, ...] = ()
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Coerce raw persistence values; unknown values are structural faults
        object.__setattr__(self, "state", parse_state(self.state))
        object.__setattr__(self, "risk_tier", parse_risk_tier(self.risk_tier))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "model_id": self.model_id,
            "version": self.version,
            "state": self.state.value,
            "risk_tier": self.risk_tier.value,
            "created_at": self.created_at.isoformat(),
            "review_round": self.review_round,
            "owners": list(self.owners),
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class StateTransitionRequest:
    """A request to move a version to a new lifecycle state."""
    version_id: str
    target_state: VersionState
    requested_by: Actor
    requested_at: datetime = field(default_factory=utcnow)
    comment: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "target_state", parse_state(self.target_state))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version_id": self.version_id,
            "target_state": self.target_state.value,
            "requested_by": self.requested_by.identity,
            "requested_at": self.requested_at.isoformat(),
            "comment": self.comment,
        }
