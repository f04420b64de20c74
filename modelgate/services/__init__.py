"""Services built around the ModelGate decision core."""

from .notifications import (
    NotificationIntent,
    NotificationKind,
    NotificationRole,
    PolicyNotificationService,
    SEVERITY_RECIPIENTS,
    WebhookNotificationSink,
)
from .workflow import PromotionWorkflow, WorkflowOutcome

__all__ = [
    "NotificationIntent",
    "NotificationKind",
    "NotificationRole",
    "PolicyNotificationService",
    "SEVERITY_RECIPIENTS",
    "WebhookNotificationSink",
    "PromotionWorkflow",
    "WorkflowOutcome",
]
