"""Tests for the promotion workflow."""

import pytest

from modelgate.core.errors import CommitConflictError
from modelgate.core.promotion.ports import (
    CommitOutcome,
    DecisionSnapshot,
    DeliveryResult,
    DeliveryStatus,
    InMemoryAuditSink,
)
from modelgate.core.versioning.states import VersionState
from modelgate.services.notifications import PolicyNotificationService
from modelgate.services.workflow import PromotionWorkflow
from tests.factories import approvals_for, at, failing_policy, make_request, make_version


class FakeSnapshots:
    def __init__(self, snapshot):
        self.snapshot = snapshot
        self.loads = 0

    def load_decision_inputs(self, version_id):
        self.loads += 1
        if version_id != self.snapshot.version.id:
            raise LookupError(version_id)
        return self.snapshot


class FakeCommits:
    def __init__(self, outcome=CommitOutcome.SUCCESS):
        self.outcome = outcome
        self.calls = []

    def commit_transition(self, version_id, expected_state, new_state):
        self.calls.append((version_id, expected_state, new_state))
        return self.outcome


class RecordingNotifier:
    def __init__(self, fail=False, explode=False):
        self.fail = fail
        self.explode = explode
        self.delivered = []

    def deliver(self, intent):
        if self.explode:
            raise RuntimeError("sink down")
        self.delivered.append(intent)
        status = DeliveryStatus.FAILURE if self.fail else DeliveryStatus.ACK
        return DeliveryResult(key=intent.key, status=status, error="boom" if self.fail else None)


class BrokenAudit:
    def record(self, event):
        raise RuntimeError("audit store unavailable")


def make_workflow(snapshot, commits=None, audit=None, notifier=None):
    return PromotionWorkflow(
        snapshots=FakeSnapshots(snapshot),
        commits=commits or FakeCommits(),
        audit=audit if audit is not None else InMemoryAuditSink(),
        notifier=notifier,
        notification_service=PolicyNotificationService(base_url="https://gate.example.com"),
        clock=lambda: at(90),
    )


@pytest.fixture
def allowed_snapshot():
    version = make_version(state="submitted", risk_tier="Low")
    return DecisionSnapshot(version=version, approvals=tuple(approvals_for(version, ["MRC"])))


@pytest.fixture
def blocked_snapshot():
    version = make_version(state="submitted", risk_tier="Low")
    return DecisionSnapshot(version=version, policies=(failing_policy(id="p", severity="high"),))


class TestPromotionWorkflow:
    """End-to-end request handling with fake boundaries."""

    def test_allowed_request_commits(self, allowed_snapshot):
        commits = FakeCommits()
        audit = InMemoryAuditSink()
        workflow = make_workflow(allowed_snapshot, commits=commits, audit=audit)
        outcome = workflow.run(make_request(allowed_snapshot.version, "approved_staging"))
        assert outcome.result.allowed
        assert outcome.committed
        assert commits.calls == [
            (allowed_snapshot.version.id, VersionState.SUBMITTED, VersionState.APPROVED_STAGING),
        ]
        assert len(audit) == 1
        assert audit.latest().timestamp == at(90)

    def test_blocked_request_not_committed(self, blocked_snapshot):
        commits = FakeCommits()
        notifier = RecordingNotifier()
        workflow = make_workflow(blocked_snapshot, commits=commits, notifier=notifier)
        outcome = workflow.run(make_request(blocked_snapshot.version, "approved_staging"))
        assert not outcome.result.allowed
        assert not outcome.committed
        assert commits.calls == []
        assert [i.recipient_role for i in notifier.delivered] == ["mrc", "security", "mrc"]
        assert all(d.ok for d in outcome.deliveries)

    def test_audit_recorded_once_per_decision(self, blocked_snapshot):
        audit = InMemoryAuditSink()
        workflow = make_workflow(blocked_snapshot, audit=audit)
        request = make_request(blocked_snapshot.version, "approved_staging")
        workflow.run(request)
        event = audit.latest()
        assert len(audit) == 1
        assert event.request == request
        assert event.to_dict()["result"]["allowed"] is False

    def test_commit_conflict_raises(self, allowed_snapshot):
        """Test that a lost compare-and-set surfaces as a retryable error."""
        workflow = make_workflow(allowed_snapshot, commits=FakeCommits(CommitOutcome.CONFLICT))
        with pytest.raises(CommitConflictError) as exc_info:
            workflow.run(make_request(allowed_snapshot.version, "approved_staging"))
        assert exc_info.value.retryable
        assert exc_info.value.expected_state is VersionState.SUBMITTED

    def test_delivery_failure_does_not_change_decision(self, blocked_snapshot):
        workflow = make_workflow(blocked_snapshot, notifier=RecordingNotifier(fail=True))
        outcome = workflow.run(make_request(blocked_snapshot.version, "approved_staging"))
        assert not outcome.result.allowed
        assert len(outcome.failed_deliveries) == len(outcome.deliveries) == 3

    def test_raising_sink_collected_as_failure(self, blocked_snapshot):
        workflow = make_workflow(blocked_snapshot, notifier=RecordingNotifier(explode=True))
        outcome = workflow.run(make_request(blocked_snapshot.version, "approved_staging"))
        assert all(d.status is DeliveryStatus.FAILURE for d in outcome.deliveries)
        assert outcome.deliveries[0].error == "sink down"

    def test_audit_failure_does_not_block_commit(self, allowed_snapshot):
        commits = FakeCommits()
        workflow = make_workflow(allowed_snapshot, commits=commits, audit=BrokenAudit())
        outcome = workflow.run(make_request(allowed_snapshot.version, "approved_staging"))
        assert outcome.committed

    def test_unknown_version_raises_lookup_error(self, allowed_snapshot):
        workflow = make_workflow(allowed_snapshot)
        with pytest.raises(LookupError):
            workflow.run(make_request(make_version(), "approved_staging"))

    def test_default_notifier_acknowledges(self, blocked_snapshot):
        outcome = make_workflow(blocked_snapshot).run(
            make_request(blocked_snapshot.version, "approved_staging")
        )
        assert outcome.deliveries
        assert outcome.failed_deliveries == ()
