"""Promotion decision module for ModelGate.

Combines transition validation, policy evaluation and approval checks
into a single promotion decision.
"""

from .blocking import (
    BlockingReason,
    BlockingReasonKind,
    OverrideClaim,
    PromotionBlockingResult,
    PromotionBlockingService,
)
from .ports import (
    AuditSink,
    CommitOutcome,
    CommitSink,
    DecisionRecorded,
    DecisionSnapshot,
    DeliveryResult,
    DeliveryStatus,
    InMemoryAuditSink,
    NotificationSink,
    NullNotificationSink,
    SnapshotProvider,
)

__all__ = [
    "BlockingReason",
    "BlockingReasonKind",
    "OverrideClaim",
    "PromotionBlockingResult",
    "PromotionBlockingService",
    "AuditSink",
    "CommitOutcome",
    "CommitSink",
    "DecisionRecorded",
    "DecisionSnapshot",
    "DeliveryResult",
    "DeliveryStatus",
    "InMemoryAuditSink",
    "NotificationSink",
    "NullNotificationSink",
    "SnapshotProvider",
]
