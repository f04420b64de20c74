"""Database models for model versions, approvals and decisions.

Every row type has an explicit mapping to its domain value object in
modelgate.db.store; columns are plain strings so unknown values surface
as configuration errors when mapped, not when stored.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

from .base import Base


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ModelVersionRecord(Base):
    """A registered model version and its lifecycle state."""
    __tablename__ = "model_versions"

    id = Column(String(64), primary_key=True)
    model_id = Column(String(255), nullable=False, index=True)
    version = Column(String(100), nullable=False)
    state = Column(String(50), nullable=False, default="draft", index=True)
    risk_tier = Column(String(20), nullable=False)
    review_round = Column(Integer, nullable=False, default=1)
    owners = Column(JSON, nullable=False, default=list)
    extra_data = Column("metadata", JSON, nullable=False, default=dict)
    lineage = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    __table_args__ = (
        UniqueConstraint("model_id", "version", name="uq_model_version"),
    )

    def __repr__(self) -> str:
        return f"<ModelVersionRecord {self.model_id}@{self.version} [{self.state}]>"


class ApprovalRecord(Base):
    """
    One reviewer decision for a version.

    Unique per (version_id, role, review_round); a resubmission for the
    same role and round overwrites the previous row.
    """
    __tablename__ = "approvals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    version_id = Column(String(64), ForeignKey("model_versions.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False)
    review_round = Column(Integer, nullable=False, default=1)
    approver = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False)
    comment = Column(Text, nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=False, default=_now)

    __table_args__ = (
        UniqueConstraint("version_id", "role", "review_round", name="uq_approval_role_round"),
    )


class OverrideRecord(Base):
    """A reasoned waiver requested for one policy on one version."""
    __tablename__ = "policy_overrides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    version_id = Column(String(64), ForeignKey("model_versions.id", ondelete="CASCADE"), nullable=False, index=True)
    policy_id = Column(String(255), nullable=False)
    reason = Column(Text, nullable=False)
    actor = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    expires_at = Column(DateTime(timezone=True), nullable=True)  # NULL never expires


class PolicyRecord(Base):
    """Stored policy definition, in the same shape as the YAML policy files."""
    __tablename__ = "policies"

    id = Column(String(255), primary_key=True)
    definition = Column(JSON, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


class ArtifactRecord(Base):
    """An artifact attached to a version (weights, model card, SBOM, ...)."""
    __tablename__ = "artifacts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    version_id = Column(String(64), ForeignKey("model_versions.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    type = Column(String(50), nullable=False)
    size = Column(Integer, nullable=True)
    license = Column(String(100), nullable=True)
    extra_data = Column(JSON, nullable=False, default=dict)


class EvaluationRecord(Base):
    """Results of one evaluation-suite run against a version."""
    __tablename__ = "evaluations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    version_id = Column(String(64), ForeignKey("model_versions.id", ondelete="CASCADE"), nullable=False, index=True)
    suite = Column(String(255), nullable=False)
    passed = Column(Boolean, nullable=True)
    results = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)


class DecisionAuditLog(Base):
    """
    Append-only record of promotion decisions.

    One row per decision, allowed or blocked.
    """
    __tablename__ = "decision_audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    version_id = Column(String(64), nullable=False, index=True)
    actor = Column(String(255), nullable=False)
    from_state = Column(String(50), nullable=False)
    to_state = Column(String(50), nullable=False)
    allowed = Column(Boolean, nullable=False)
    result = Column(JSON, nullable=False)
    extra_data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_now, index=True)
