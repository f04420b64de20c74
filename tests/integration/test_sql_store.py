"""Integration tests for the SQL governance store on SQLite."""

import logging

import pytest

from modelgate.core.approval.resolver import Approval
from modelgate.core.errors import CommitConflictError, PolicyDefinitionError, UnknownRiskTierError
from modelgate.core.policy.loader import parse_policies
from modelgate.core.promotion.ports import CommitOutcome, InMemoryAuditSink
from modelgate.core.versioning.models import StateTransitionRequest
from modelgate.core.versioning.states import VersionState
from modelgate.db.models import ApprovalRecord, DecisionAuditLog
from modelgate.db.session import make_engine, make_session_factory
from modelgate.db.store import SqlGovernanceStore
from modelgate.services.notifications import PolicyNotificationService
from modelgate.services.workflow import PromotionWorkflow
from tests.factories import at, make_actor, make_override

pytestmark = pytest.mark.integration


@pytest.fixture
def store(db_session):
    return SqlGovernanceStore(db_session)


@pytest.fixture
def version(store):
    return store.add_version(
        "mv-100", "churn-model", "2.0.0", "Medium",
        state="submitted",
        owners=["owner@example.com"],
        metadata={"model_card": "cards/churn.md", "framework": "xgboost"},
        lineage={"datasets": ["events-2024"]},
    )


def approve(store, role, approver, minutes=0, status="approved", review_round=1):
    return store.upsert_approval(Approval(
        version_id="mv-100", role=role, approver=approver, status=status,
        timestamp=at(minutes), review_round=review_round,
    ))


def request(target):
    return StateTransitionRequest(
        version_id="mv-100", target_state=target, requested_by=make_actor("owner@example.com"),
    )


class TestVersionMapping:
    """Row to domain mapping."""

    def test_round_trip_fields(self, store, version):
        loaded = store.get_version("mv-100")
        assert loaded.state is VersionState.SUBMITTED
        assert loaded.risk_tier.value == "Medium"
        assert loaded.owners == ("owner@example.com",)
        assert loaded.metadata["framework"] == "xgboost"
        assert loaded.review_round == 1
        assert loaded.created_at.tzinfo is not None

    def test_unknown_version(self, store):
        with pytest.raises(LookupError):
            store.get_version("missing")

    def test_invalid_tier_rejected(self, store):
        with pytest.raises(UnknownRiskTierError):
            store.add_version("mv-bad", "m", "1.0.0", "Extreme")


class TestApprovals:
    """Approval upsert semantics."""

    def test_last_writer_wins(self, store, version, db_session):
        approve(store, "MRC", "alice", status="rejected")
        approve(store, "MRC", "bob", minutes=5)
        rows = db_session.query(ApprovalRecord).filter_by(version_id="mv-100").all()
        assert len(rows) == 1
        assert rows[0].approver == "bob"
        assert rows[0].status == "approved"

    def test_unknown_version_rejected(self, store):
        with pytest.raises(LookupError):
            store.upsert_approval(Approval(version_id="nope", role="MRC", approver="a", status="approved"))

    def test_returns_stored_row(self, store, version):
        approve(store, "MRC", "alice", status="rejected")
        stored = approve(store, "MRC", "bob", minutes=5)
        assert stored.approver == "bob"
        assert stored.status.value == "approved"


@pytest.fixture
def shared_db(tmp_path):
    """Two sessions on one file-backed SQLite database."""
    db_engine = make_engine(f"sqlite:///{tmp_path}/gate.db")
    factory = make_session_factory(db_engine, create_tables=True)
    first, second = factory(), factory()
    try:
        yield first, second
    finally:
        first.close()
        second.close()
        db_engine.dispose()


class TestConcurrentApprovals:
    """Approval upserts from competing sessions."""

    @pytest.fixture
    def stores(self, shared_db):
        first, second = (SqlGovernanceStore(s) for s in shared_db)
        first.add_version("mv-100", "churn-model", "2.0.0", "Medium", state="submitted")
        return first, second

    def test_upsert_after_competing_insert(self, stores):
        first, second = stores
        first.get_version("mv-100")
        approve(second, "MRC", "bob")
        stored = approve(first, "MRC", "alice", minutes=5)
        assert stored.approver == "alice"
        second.session.expire_all()
        rows = second.session.query(ApprovalRecord).filter_by(version_id="mv-100").all()
        assert [r.approver for r in rows] == ["alice"]

    def test_fallback_retries_after_integrity_error(self, stores, monkeypatch):
        """Test the select-then-insert path when another session inserts in between."""
        first, second = stores
        monkeypatch.setattr("modelgate.db.store._UPSERT_INSERTS", {})
        session_add = first.session.add
        raced = []

        def add_after_competitor(instance, *args, **kwargs):
            if isinstance(instance, ApprovalRecord) and not raced:
                raced.append(True)
                approve(second, "MRC", "bob")
            return session_add(instance, *args, **kwargs)

        monkeypatch.setattr(first.session, "add", add_after_competitor)
        stored = approve(first, "MRC", "alice", minutes=5)
        assert raced
        assert stored.approver == "alice"
        assert second.session.query(ApprovalRecord).count() == 1


class TestSnapshot:
    """Loading decision inputs."""

    def test_snapshot_contents(self, store, version):
        approve(store, "MRC", "alice")
        store.add_artifact("mv-100", "model.bin", "weights", size=2048, license="Apache-2.0")
        store.add_evaluation("mv-100", "nightly", {"results": {"auc": 0.7}}, passed=False, created_at=at(1))
        store.add_evaluation("mv-100", "nightly", {"results": {"auc": 0.9}}, passed=True, created_at=at(2))
        store.add_override("mv-100", make_override("card"))

        snapshot = store.load_decision_inputs("mv-100")
        assert snapshot.version.id == "mv-100"
        assert [a.approver for a in snapshot.approvals] == ["alice"]
        assert snapshot.context.evaluations[0]["results"]["auc"] == 0.9
        assert snapshot.context.artifacts[0]["license"] == "Apache-2.0"
        assert snapshot.context.lineage["datasets"] == ("events-2024",)
        assert snapshot.overrides[0].policy_id == "card"
        assert snapshot.policies == ()

    def test_override_expiry_round_trip(self, store, version):
        store.add_override("mv-100", make_override("card", expires_at=at(90)))
        store.add_override("mv-100", make_override("size", minutes=31))
        claims = {c.policy_id: c for c in store.load_decision_inputs("mv-100").overrides}
        assert claims["card"].expires_at == at(90)
        assert claims["size"].expires_at is None

    def test_stored_policies_loaded(self, store, version, sample_policy_definitions):
        for definition in sample_policy_definitions:
            store.save_policy(definition)
        snapshot = store.load_decision_inputs("mv-100")
        assert [p.id for p in snapshot.policies] == ["min-accuracy", "no-gpl"]

    def test_invalid_policy_not_stored(self, store):
        with pytest.raises(PolicyDefinitionError):
            store.save_policy({"id": "broken", "name": "Broken", "severity": "high", "conditions": []})

    def test_configured_policies_take_precedence(self, db_session, version, sample_policy_definitions):
        policies = parse_policies(sample_policy_definitions[:1])
        store = SqlGovernanceStore(db_session, policies=policies)
        assert [p.id for p in store.load_decision_inputs("mv-100").policies] == ["min-accuracy"]


class TestCommitTransition:
    """Compare-and-set state commits."""

    def test_commit_success(self, store, version):
        outcome = store.commit_transition("mv-100", VersionState.SUBMITTED, VersionState.APPROVED_STAGING)
        assert outcome is CommitOutcome.SUCCESS
        assert store.get_version("mv-100").state is VersionState.APPROVED_STAGING

    def test_stale_expected_state_conflicts(self, store, version):
        store.commit_transition("mv-100", VersionState.SUBMITTED, VersionState.APPROVED_STAGING)
        outcome = store.commit_transition("mv-100", VersionState.SUBMITTED, VersionState.CHANGES_REQUESTED)
        assert outcome is CommitOutcome.CONFLICT
        assert store.get_version("mv-100").state is VersionState.APPROVED_STAGING

    def test_resubmission_opens_new_round(self, store, version):
        store.commit_transition("mv-100", VersionState.SUBMITTED, VersionState.CHANGES_REQUESTED)
        store.commit_transition("mv-100", VersionState.CHANGES_REQUESTED, VersionState.SUBMITTED)
        assert store.get_version("mv-100").review_round == 2


class TestWorkflowOnStore:
    """Full workflow against the SQL store."""

    def make_workflow(self, store, audit=None):
        return PromotionWorkflow(
            snapshots=store,
            commits=store,
            audit=audit if audit is not None else store,
            notification_service=PolicyNotificationService(base_url="https://gate.example.com"),
        )

    def test_promotion_with_two_reviewers(self, store, version):
        approve(store, "MRC", "alice")
        approve(store, "Security", "bob", minutes=1)
        outcome = self.make_workflow(store).run(request("approved_staging"))
        assert outcome.committed
        assert store.get_version("mv-100").state is VersionState.APPROVED_STAGING
        log = store.audit_log("mv-100")
        assert len(log) == 1
        assert log[0].allowed
        assert log[0].result["target_state"] == "approved_staging"

    def test_blocked_promotion_leaves_state(self, store, version):
        approve(store, "MRC", "alice")
        approve(store, "Security", "alice", minutes=1)
        outcome = self.make_workflow(store).run(request("approved_staging"))
        assert not outcome.committed
        assert store.get_version("mv-100").state is VersionState.SUBMITTED
        assert store.audit_log("mv-100")[0].result["two_person_satisfied"] is False

    def test_old_round_approvals_ignored_after_resubmission(self, store, version):
        approve(store, "MRC", "alice")
        approve(store, "Security", "bob", minutes=1)
        workflow = self.make_workflow(store, audit=InMemoryAuditSink())
        workflow.run(request("changes_requested"))
        workflow.run(request("submitted"))
        outcome = workflow.run(request("approved_staging"))
        assert not outcome.result.allowed
        assert {r.value for r in outcome.result.missing_roles} == {"MRC", "Security"}

    def test_failed_audit_write_does_not_block_commit(self, store, version, db_session, caplog):
        """Test that the session stays usable after the audit insert fails."""
        DecisionAuditLog.__table__.drop(db_session.get_bind())
        with caplog.at_level(logging.ERROR, logger="modelgate.services.workflow"):
            outcome = self.make_workflow(store).run(request("changes_requested"))
        assert outcome.result.allowed
        assert outcome.committed
        assert store.get_version("mv-100").state is VersionState.CHANGES_REQUESTED
        assert "Failed to record decision" in caplog.text

    def test_conflict_when_state_moved(self, store, version):
        """Test a commit racing a concurrent state change."""
        approve(store, "MRC", "alice")
        approve(store, "Security", "bob", minutes=1)

        class RacingStore:
            def load_decision_inputs(self, version_id):
                snapshot = store.load_decision_inputs(version_id)
                store.commit_transition(version_id, VersionState.SUBMITTED, VersionState.CHANGES_REQUESTED)
                return snapshot

        workflow = PromotionWorkflow(
            snapshots=RacingStore(),
            commits=store,
            audit=InMemoryAuditSink(),
            notification_service=PolicyNotificationService(base_url="https://gate.example.com"),
        )
        with pytest.raises(CommitConflictError):
            workflow.run(request("approved_staging"))
