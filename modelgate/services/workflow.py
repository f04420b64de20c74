"""Promotion workflow.

Runs one transition request end to end: load a fresh snapshot, decide,
record the decision, commit the state change with compare-and-set, and
hand notification intents to the delivery sink.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Tuple

from modelgate.core.errors import CommitConflictError
from modelgate.core.promotion.blocking import PromotionBlockingResult, PromotionBlockingService
from modelgate.core.promotion.ports import (
    AuditSink,
    CommitOutcome,
    CommitSink,
    DecisionRecorded,
    DeliveryResult,
    DeliveryStatus,
    NotificationSink,
    NullNotificationSink,
    SnapshotProvider,
)
from modelgate.core.versioning.models import StateTransitionRequest, utcnow

from .notifications import PolicyNotificationService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkflowOutcome:
    """What happened to a request after the decision was made."""
    result: PromotionBlockingResult
    committed: bool
    deliveries: Tuple[DeliveryResult, ...] = ()

    @property
    def failed_deliveries(self) -> Tuple[DeliveryResult, ...]:
        return tuple(d for d in self.deliveries if not d.ok)


class PromotionWorkflow:
    """
    Orchestrates a transition request around the pure decision service.

    Notification delivery never changes the decision or rolls back a
    committed transition. A failed audit write is logged and does not
    undo the decision either.
    """

    def __init__(
        self,
        snapshots: SnapshotProvider,
        commits: CommitSink,
        audit: AuditSink,
        notifier: Optional[NotificationSink] = None,
        notification_service: Optional[PolicyNotificationService] = None,
        service: Optional[PromotionBlockingService] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.snapshots = snapshots
        self.commits = commits
        self.audit = audit
        self.notifier = notifier or NullNotificationSink()
        self.notification_service = notification_service or PolicyNotificationService()
        self.service = service or PromotionBlockingService()
        self.clock = clock

    def run(self, request: StateTransitionRequest) -> WorkflowOutcome:
        """
        Process a transition request.

        Args:
            request: The transition request

        Returns:
            WorkflowOutcome with the decision, commit flag and delivery results

        Raises:
            LookupError: If the version does not exist
            CommitConflictError: If the version changed state after the snapshot
        """
        snapshot = self.snapshots.load_decision_inputs(request.version_id)
        result = self.service.decide(
            request,
            snapshot.version,
            snapshot.approvals,
            snapshot.policies,
            overrides=snapshot.overrides,
            context=snapshot.context,
        )

        self._record(request, result)

        committed = False
        if result.allowed:
            outcome = self.commits.commit_transition(
                request.version_id, result.current_state, result.requested_state
            )
            if outcome == CommitOutcome.CONFLICT:
                logger.warning(
                    "Commit conflict for version %s: no longer in %s",
                    request.version_id, result.current_state.value,
                )
                raise CommitConflictError(request.version_id, result.current_state)
            committed = True
            logger.info(
                "Version %s moved %s -> %s",
                request.version_id, result.current_state.value, result.requested_state.value,
            )

        deliveries = self._deliver(result)
        return WorkflowOutcome(result=result, committed=committed, deliveries=deliveries)

    def _record(self, request: StateTransitionRequest, result: PromotionBlockingResult) -> None:
        event = DecisionRecorded(
            request=request,
            result=result,
            timestamp=self.clock(),
            extra_data={"actor_roles": sorted(request.requested_by.roles)},
        )
        try:
            self.audit.record(event)
        except Exception:
            logger.exception("Failed to record decision for version %s", request.version_id)

    def _deliver(self, result: PromotionBlockingResult) -> Tuple[DeliveryResult, ...]:
        intents = self.notification_service.on_decision(result)
        deliveries = []
        for intent in intents:
            try:
                delivery = self.notifier.deliver(intent)
            except Exception as e:
                logger.exception("Notification sink raised for %s", intent.key)
                delivery = DeliveryResult(key=intent.key, status=DeliveryStatus.FAILURE, error=str(e))
            if not delivery.ok:
                logger.warning("Notification %s not delivered: %s", intent.key, delivery.error)
            deliveries.append(delivery)
        return tuple(deliveries)
