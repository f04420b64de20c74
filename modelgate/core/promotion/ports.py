"""Boundary contracts implemented by collaborators around the core.

The decision core never performs I/O itself. Loading snapshots, committing
state, recording audit events and delivering notifications happen through
these interfaces.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol, Tuple

from modelgate.core.approval.resolver import Approval
from modelgate.core.policy.context import EvaluationContext
from modelgate.core.policy.engine import Policy
from modelgate.core.versioning.models import ModelVersion, StateTransitionRequest
from modelgate.core.versioning.states import VersionState

from .blocking import OverrideClaim, PromotionBlockingResult

if TYPE_CHECKING:
    from modelgate.services.notifications import NotificationIntent


@dataclass(frozen=True)
class DecisionSnapshot:
    """Consistent point-in-time view of everything a decision needs."""
    version: ModelVersion
    approvals: Tuple[Approval, ...] = ()
    policies: Tuple[Policy, ...] = ()
    context: Optional[EvaluationContext] = None
    overrides: Tuple[OverrideClaim, ...] = ()


class CommitOutcome(str, Enum):
    SUCCESS = "success"
    CONFLICT = "conflict"


class DeliveryStatus(str, Enum):
    ACK = "ack"
    FAILURE = "failure"


@dataclass(frozen=True)
class DeliveryResult:
    """Result of handing one notification intent to a sink."""
    key: Tuple[str, str, str]
    status: DeliveryStatus
    error: Optional[str] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.status == DeliveryStatus.ACK


@dataclass(frozen=True)
class DecisionRecorded:
    """Audit event emitted once per decision."""
    request: StateTransitionRequest
    result: PromotionBlockingResult
    timestamp: datetime
    extra_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "decision_recorded",
            "request": self.request.to_dict(),
            "result": self.result.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "extra_data": dict(self.extra_data),
        }


class SnapshotProvider(Protocol):
    def load_decision_inputs(self, version_id: str) -> DecisionSnapshot:
        """Return a consistent snapshot; raise LookupError if the version is unknown."""
        ...


class CommitSink(Protocol):
    def commit_transition(
        self,
        version_id: str,
        expected_state: VersionState,
        new_state: VersionState,
    ) -> CommitOutcome:
        """Atomically set the new state iff the version is still in expected_state."""
        ...


class NotificationSink(Protocol):
    def deliver(self, intent: "NotificationIntent") -> DeliveryResult:
        ...


class AuditSink(Protocol):
    def record(self, event: DecisionRecorded) -> None:
        ...


class NullNotificationSink:
    """Sink that acknowledges every intent without delivering it."""

    def deliver(self, intent: "NotificationIntent") -> DeliveryResult:
        return DeliveryResult(key=intent.key, status=DeliveryStatus.ACK, attempts=0)


class InMemoryAuditSink:
    """Audit sink keeping events in a list, for tests and dry runs."""

    def __init__(self):
        self.events: list[DecisionRecorded] = []

    def record(self, event: DecisionRecorded) -> None:
        self.events.append(event)

    def __len__(self) -> int:
        return len(self.events)

    def latest(self) -> Optional[DecisionRecorded]:
        return self.events[-1] if self.events else None

