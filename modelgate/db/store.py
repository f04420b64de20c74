"""SQL-backed governance store.

Implements the snapshot, commit and audit boundaries of the promotion
workflow on top of a SQLAlchemy session.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from modelgate.core.approval.resolver import Approval
from modelgate.core.approval.roles import parse_risk_tier
from modelgate.core.policy.context import EvaluationContext
from modelgate.core.policy.engine import Policy
from modelgate.core.policy.loader import parse_policy
from modelgate.core.promotion.blocking import OverrideClaim
from modelgate.core.promotion.ports import CommitOutcome, DecisionRecorded, DecisionSnapshot
from modelgate.core.versioning.models import ModelVersion, utcnow
from modelgate.core.versioning.states import VersionState, parse_state

from .models import (
    ApprovalRecord,
    ArtifactRecord,
    DecisionAuditLog,
    EvaluationRecord,
    ModelVersionRecord,
    OverrideRecord,
    PolicyRecord,
)

logger = logging.getLogger(__name__)

# Dialects with INSERT ... ON CONFLICT DO UPDATE
_UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo; stored values are always UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# Row -> domain mapping

def version_from_row(row: ModelVersionRecord) -> ModelVersion:
    return ModelVersion(
        id=row.id,
        model_id=row.model_id,
        version=row.version,
        state=row.state,
        risk_tier=row.risk_tier,
        created_at=_aware(row.created_at),
        review_round=row.review_round,
        owners=tuple(row.owners or ()),
        metadata=dict(row.extra_data or {}),
    )


def approval_from_row(row: ApprovalRecord) -> Approval:
    return Approval(
        version_id=row.version_id,
        role=row.role,
        approver=row.approver,
        status=row.status,
        timestamp=_aware(row.decided_at),
        comment=row.comment,
        review_round=row.review_round,
    )


def override_from_row(row: OverrideRecord) -> OverrideClaim:
    return OverrideClaim(
        policy_id=row.policy_id,
        reason=row.reason,
        actor=row.actor,
        timestamp=_aware(row.created_at),
        expires_at=_aware(row.expires_at),
    )


def artifact_from_row(row: ArtifactRecord) -> Dict[str, Any]:
    artifact = dict(row.extra_data or {})
    artifact.update(name=row.name, type=row.type)
    if row.size is not None:
        artifact["size"] = row.size
    if row.license is not None:
        artifact["license"] = row.license
    return artifact


def evaluation_from_row(row: EvaluationRecord) -> Dict[str, Any]:
    evaluation = dict(row.results or {})
    evaluation.update(suite=row.suite, created_at=_aware(row.created_at).isoformat())
    if row.passed is not None:
        evaluation["passed"] = row.passed
    return evaluation


def policy_from_row(row: PolicyRecord) -> Policy:
    definition = dict(row.definition)
    definition["id"] = row.id
    definition["enabled"] = row.enabled and definition.get("enabled", True)
    return parse_policy(definition)


class SqlGovernanceStore:
    """
    Governance persistence on a SQLAlchemy session.

    Writes commit immediately. When `policies` is given those policies are
    used for every snapshot instead of the stored policy rows.
    """

    def __init__(self, session: Session, policies: Optional[Iterable[Policy]] = None):
        self.session = session
        self.policies = tuple(policies) if policies is not None else None

    # Versions

    def add_version(
        self,
        version_id: str,
        model_id: str,
        version: str,
        risk_tier: Any,
        state: Any = VersionState.DRAFT,
        owners: Iterable[str] = (),
        metadata: Optional[Dict[str, Any]] = None,
        lineage: Optional[Dict[str, Any]] = None,
    ) -> ModelVersion:
        """Register a version. State and tier are validated before storing."""
        record = ModelVersionRecord(
            id=version_id,
            model_id=model_id,
            version=version,
            state=parse_state(state).value,
            risk_tier=parse_risk_tier(risk_tier).value,
            owners=list(owners),
            extra_data=dict(metadata or {}),
            lineage=dict(lineage or {}),
        )
        self.session.add(record)
        self.session.commit()
        logger.info("Registered version %s (%s@%s)", version_id, model_id, version)
        return version_from_row(record)

    def get_version(self, version_id: str) -> ModelVersion:
        """
        Raises:
            LookupError: If the version does not exist
        """
        return version_from_row(self._version_row(version_id))

    def _version_row(self, version_id: str) -> ModelVersionRecord:
        record = self.session.get(ModelVersionRecord, version_id)
        if record is None:
            raise LookupError(f"Model version not found: {version_id}")
        return record

    # Facts

    def add_artifact(
        self,
        version_id: str,
        name: str,
        type: str,
        size: Optional[int] = None,
        license: Optional[str] = None,
        **extra: Any,
    ) -> None:
        self._version_row(version_id)
        self.session.add(ArtifactRecord(
            version_id=version_id, name=name, type=type, size=size, license=license, extra_data=extra,
        ))
        self.session.commit()

    def add_evaluation(
        self,
        version_id: str,
        suite: str,
        results: Dict[str, Any],
        passed: Optional[bool] = None,
        created_at: Optional[datetime] = None,
    ) -> None:
        self._version_row(version_id)
        self.session.add(EvaluationRecord(
            version_id=version_id,
            suite=suite,
            results=dict(results),
            passed=passed,
            created_at=created_at or utcnow(),
        ))
        self.session.commit()

    def save_policy(self, definition: Dict[str, Any]) -> Policy:
        """Validate and store a policy definition, replacing any with the same id."""
        policy = parse_policy(definition)
        record = self.session.get(PolicyRecord, policy.id)
        if record is None:
            record = PolicyRecord(id=policy.id)
            self.session.add(record)
        record.definition = dict(definition)
        record.enabled = policy.enabled
        self.session.commit()
        return policy

    # Approvals and overrides

    def upsert_approval(self, approval: Approval) -> Approval:
        """
        Store an approval; last writer wins per (version, role, round).

        Returns:
            The approval as stored
        """
        self._version_row(approval.version_id)
        key = {
            "version_id": approval.version_id,
            "role": approval.role.value,
            "review_round": approval.review_round,
        }
        decision = {
            "approver": approval.approver,
            "status": approval.status.value,
            "comment": approval.comment,
            "decided_at": approval.timestamp or utcnow(),
        }

        insert = _UPSERT_INSERTS.get(self.session.get_bind().dialect.name)
        if insert is not None:
            stmt = insert(ApprovalRecord).values(**key, **decision)
            stmt = stmt.on_conflict_do_update(
                index_elements=list(key),
                set_={name: stmt.excluded[name] for name in decision},
            )
            self.session.execute(stmt)
            self.session.commit()
        else:
            self._upsert_approval_row(key, decision)
        self.session.expire_all()

        record = self.session.execute(
            select(ApprovalRecord).filter_by(**key)
        ).scalar_one()
        logger.info(
            "Recorded %s %s by %s for version %s (round %d)",
            approval.role.value, approval.status.value, approval.approver,
            approval.version_id, approval.review_round,
        )
        return approval_from_row(record)

    def _upsert_approval_row(self, key: Dict[str, Any], decision: Dict[str, Any]) -> None:
        # Dialects without ON CONFLICT: a concurrent insert surfaces as
        # IntegrityError, after which the row exists and is updated.
        for attempt in range(2):
            record = self.session.execute(
                select(ApprovalRecord).filter_by(**key)
            ).scalar_one_or_none()
            if record is None:
                record = ApprovalRecord(**key)
                self.session.add(record)
            for name, value in decision.items():
                setattr(record, name, value)
            try:
                self.session.commit()
                return
            except IntegrityError:
                self.session.rollback()
                if attempt:
                    raise

    def add_override(self, version_id: str, claim: OverrideClaim) -> None:
        self._version_row(version_id)
        self.session.add(OverrideRecord(
            version_id=version_id,
            policy_id=claim.policy_id,
            reason=claim.reason,
            actor=claim.actor,
            created_at=claim.timestamp,
            expires_at=claim.expires_at,
        ))
        self.session.commit()

    # SnapshotProvider

    def load_decision_inputs(self, version_id: str) -> DecisionSnapshot:
        """
        Read everything needed for one decision.

        Raises:
            LookupError: If the version does not exist
        """
        record = self._version_row(version_id)
        version = version_from_row(record)

        approvals = [
            approval_from_row(row)
            for row in self.session.execute(
                select(ApprovalRecord)
                .where(ApprovalRecord.version_id == version_id)
                .order_by(ApprovalRecord.decided_at, ApprovalRecord.id)
            ).scalars()
        ]
        overrides = [
            override_from_row(row)
            for row in self.session.execute(
                select(OverrideRecord)
                .where(OverrideRecord.version_id == version_id)
                .order_by(OverrideRecord.created_at, OverrideRecord.id)
            ).scalars()
        ]
        artifacts = [
            artifact_from_row(row)
            for row in self.session.execute(
                select(ArtifactRecord)
                .where(ArtifactRecord.version_id == version_id)
                .order_by(ArtifactRecord.id)
            ).scalars()
        ]
        # Latest first
        evaluations = [
            evaluation_from_row(row)
            for row in self.session.execute(
                select(EvaluationRecord)
                .where(EvaluationRecord.version_id == version_id)
                .order_by(EvaluationRecord.created_at.desc(), EvaluationRecord.id.desc())
            ).scalars()
        ]

        context = EvaluationContext.build(
            version,
            evaluations=evaluations,
            artifacts=artifacts,
            lineage=dict(record.lineage or {}),
        )

        return DecisionSnapshot(
            version=version,
            approvals=tuple(approvals),
            policies=self._load_policies(),
            context=context,
            overrides=tuple(overrides),
        )

    def _load_policies(self) -> tuple:
        if self.policies is not None:
            return self.policies
        rows = self.session.execute(select(PolicyRecord).order_by(PolicyRecord.id)).scalars()
        return tuple(policy_from_row(row) for row in rows)

    # CommitSink

    def commit_transition(
        self,
        version_id: str,
        expected_state: VersionState,
        new_state: VersionState,
    ) -> CommitOutcome:
        """
        Compare-and-set the version state.

        Moving from changes_requested back to submitted opens a new review round.
        """
        expected_state = parse_state(expected_state)
        new_state = parse_state(new_state)
        values: Dict[str, Any] = {"state": new_state.value, "updated_at": utcnow()}
        if expected_state == VersionState.CHANGES_REQUESTED and new_state == VersionState.SUBMITTED:
            values["review_round"] = ModelVersionRecord.review_round + 1

        result = self.session.execute(
            update(ModelVersionRecord)
            .where(
                ModelVersionRecord.id == version_id,
                ModelVersionRecord.state == expected_state.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.session.rollback()
            return CommitOutcome.CONFLICT
        self.session.commit()
        self.session.expire_all()
        return CommitOutcome.SUCCESS

    # AuditSink

    def record(self, event: DecisionRecorded) -> None:
        """
        Append a decision to the audit log.

        A failed write is rolled back before re-raising so the session stays
        usable for the commit that follows.
        """
        result = event.result
        try:
            self.session.add(DecisionAuditLog(
                version_id=result.version_id,
                actor=event.request.requested_by.identity,
                from_state=result.current_state.value,
                to_state=result.requested_state.value,
                allowed=result.allowed,
                result=result.to_dict(),
                extra_data=dict(event.extra_data),
                created_at=event.timestamp,
            ))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def audit_log(self, version_id: str) -> List[DecisionAuditLog]:
        return list(self.session.execute(
            select(DecisionAuditLog)
            .where(DecisionAuditLog.version_id == version_id)
            .order_by(DecisionAuditLog.id)
        ).scalars())
