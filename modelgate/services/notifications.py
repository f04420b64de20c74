"""Notification intents and webhook delivery for promotion decisions.

Handles:
- Turning a blocking decision into notification intents per recipient role
- Review requests for approval roles that are still missing
- Webhook delivery of intents with retry

Building intents is pure and deterministic; delivery is a separate step
whose failures never affect the governance decision.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import httpx
from jinja2 import Template

from modelgate.core.approval.roles import ApproverRole
from modelgate.core.config import get_settings
from modelgate.core.policy.engine import PolicySeverity, PolicyViolation
from modelgate.core.promotion.blocking import PromotionBlockingResult
from modelgate.core.promotion.ports import DeliveryResult, DeliveryStatus

logger = logging.getLogger(__name__)


class NotificationRole(str, Enum):
    """Groups that receive governance notifications."""
    MODEL_OWNER = "model_owner"
    MRC = "mrc"
    SECURITY = "security"
    SRE = "sre"


class NotificationKind(str, Enum):
    POLICY_VIOLATION = "policy_violation"
    REVIEW_REQUESTED = "review_requested"


# Recipients per violation severity
SEVERITY_RECIPIENTS: Dict[PolicySeverity, Tuple[NotificationRole, ...]] = {
    PolicySeverity.CRITICAL: (NotificationRole.SECURITY, NotificationRole.MODEL_OWNER),
    PolicySeverity.HIGH: (NotificationRole.MRC, NotificationRole.SECURITY),
    PolicySeverity.MEDIUM: (NotificationRole.MRC,),
    PolicySeverity.LOW: (NotificationRole.MODEL_OWNER,),
}

APPROVER_RECIPIENTS: Dict[ApproverRole, NotificationRole] = {
    ApproverRole.MRC: NotificationRole.MRC,
    ApproverRole.SECURITY: NotificationRole.SECURITY,
    ApproverRole.SRE: NotificationRole.SRE,
}

REVIEW_REQUEST_KEY = "review-request"

RecipientResolver = Callable[[PolicySeverity], Sequence[Any]]


# Message templates
TEMPLATES = {
    NotificationKind.POLICY_VIOLATION: {
        "subject": "[ModelGate] {{ severity|upper }} policy violation blocks {{ version_id }}",
        "body": """
Promotion of model version {{ version_id }} to {{ requested_state }} is blocked.

Policy: {{ policy_name }} ({{ policy_id }})
Severity: {{ severity }}
Overridable: {{ "yes" if can_override else "no" }}
Message: {{ message }}

Review at: {{ review_url }}

---
ModelGate
""",
    },
    NotificationKind.REVIEW_REQUESTED: {
        "subject": "[ModelGate] {{ role }} review requested for {{ version_id }}",
        "body": """
Model version {{ version_id }} needs an approval from {{ role }} before it can
move to {{ requested_state }}.

Review at: {{ review_url }}

---
ModelGate
""",
    },
}


@dataclass(frozen=True)
class NotificationIntent:
    """Something that should be told to a recipient role; not yet delivered."""
    version_id: str
    policy_id: Optional[str]
    recipient_role: str
    kind: NotificationKind
    subject: str
    body: str
    severity: Optional[PolicySeverity] = None

    @property
    def key(self) -> Tuple[str, str, str]:
        """Deduplication key (version_id, policy_id, recipient_role)."""
        return (self.version_id, self.policy_id or REVIEW_REQUEST_KEY, self.recipient_role)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "event": self.kind.value,
            "key": list(self.key),
            "version_id": self.version_id,
            "policy_id": self.policy_id,
            "recipient_role": self.recipient_role,
            "severity": self.severity.value if self.severity else None,
            "subject": self.subject,
            "body": self.body,
        }


def default_recipients(severity: PolicySeverity) -> Sequence[NotificationRole]:
    return SEVERITY_RECIPIENTS[severity]


class PolicyNotificationService:
    """
    Builds notification intents from promotion decisions.

    No delivery, counters or random ids: the same decision always yields
    the same intents, so retrying callers can deduplicate on `key`.
    """

    def __init__(self, base_url: Optional[str] = None):
        self.base_url = (base_url or get_settings().notification_base_url).rstrip("/")

    def on_decision(
        self,
        result: PromotionBlockingResult,
        recipients: Optional[RecipientResolver] = None,
    ) -> List[NotificationIntent]:
        """
        Build intents for a decision.

        Args:
            result: The promotion decision
            recipients: Maps a violation severity to recipient roles

        Returns:
            Intents in a stable order: violations first (in result order),
            then review requests for missing roles
        """
        resolve = recipients or default_recipients
        intents: List[NotificationIntent] = []
        seen = set()

        def add(intent: NotificationIntent) -> None:
            if intent.key not in seen:
                seen.add(intent.key)
                intents.append(intent)

        for violation in result.blocking_violations:
            for role in resolve(violation.severity):
                add(self._violation_intent(result, violation, getattr(role, "value", role)))

        for role in result.missing_roles:
            add(self._review_intent(result, APPROVER_RECIPIENTS[role].value, role))

        return intents

    def _review_url(self, version_id: str) -> str:
        return f"{self.base_url}/versions/{version_id}/review"

    def _violation_intent(
        self,
        result: PromotionBlockingResult,
        violation: PolicyViolation,
        recipient_role: str,
    ) -> NotificationIntent:
        context = {
            "version_id": result.version_id,
            "requested_state": result.requested_state.value,
            "policy_id": violation.policy_id,
            "policy_name": violation.policy_name,
            "severity": violation.severity.value,
            "can_override": violation.can_override,
            "message": violation.message,
            "review_url": self._review_url(result.version_id),
        }
        subject, body = _render(NotificationKind.POLICY_VIOLATION, context)
        return NotificationIntent(
            version_id=result.version_id,
            policy_id=violation.policy_id,
            recipient_role=recipient_role,
            kind=NotificationKind.POLICY_VIOLATION,
            subject=subject,
            body=body,
            severity=violation.severity,
        )

    def _review_intent(
        self,
        result: PromotionBlockingResult,
        recipient_role: str,
        approver_role: ApproverRole,
    ) -> NotificationIntent:
        context = {
            "version_id": result.version_id,
            "requested_state": result.requested_state.value,
            "role": approver_role.value,
            "review_url": self._review_url(result.version_id),
        }
        subject, body = _render(NotificationKind.REVIEW_REQUESTED, context)
        return NotificationIntent(
            version_id=result.version_id,
            policy_id=None,
            recipient_role=recipient_role,
            kind=NotificationKind.REVIEW_REQUESTED,
            subject=subject,
            body=body,
        )


def _render(kind: NotificationKind, context: Dict[str, Any]) -> Tuple[str, str]:
    template = TEMPLATES[kind]
    subject = Template(template["subject"]).render(**context)
    body = Template(template["body"]).render(**context).strip()
    return subject, body


class WebhookNotificationSink:
    """
    Delivers intents as JSON to a webhook endpoint.

    Retries transport errors and non-2xx responses up to max_retries times,
    waiting retry_delay seconds before the first retry and doubling the wait
    after each further failure.
    Never raises for delivery failures; they are returned as FAILURE results.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self._client = client or httpx.Client(timeout=timeout)

    @classmethod
    def from_settings(cls, settings=None, **kwargs) -> "WebhookNotificationSink":
        settings = settings or get_settings()
        if not settings.webhook_url:
            raise ValueError("webhook_url is not configured")
        return cls(
            settings.webhook_url,
            timeout=settings.webhook_timeout,
            max_retries=settings.webhook_max_retries,
            retry_delay=settings.webhook_retry_delay,
            **kwargs,
        )

    def deliver(self, intent: NotificationIntent) -> DeliveryResult:
        """Post one intent, retrying on failure."""
        delay = self.retry_delay
        last_error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self._client.post(self.url, json=intent.to_payload(), headers=self.headers)
                response.raise_for_status()
                return DeliveryResult(key=intent.key, status=DeliveryStatus.ACK, attempts=attempt)
            except httpx.HTTPError as e:
                last_error = str(e)
                logger.warning(
                    "Webhook delivery of %s failed (attempt %d/%d): %s",
                    intent.key, attempt, self.max_retries, e,
                )
            # Exponential backoff
            if attempt < self.max_retries:
                time.sleep(delay)
                delay *= 2
        return DeliveryResult(
            key=intent.key,
            status=DeliveryStatus.FAILURE,
            error=last_error,
            attempts=self.max_retries,
        )

    def close(self) -> None:
        self._client.close()
