"""Persistence for ModelGate."""

from .base import Base
from .models import (
    ApprovalRecord,
    ArtifactRecord,
    DecisionAuditLog,
    EvaluationRecord,
    ModelVersionRecord,
    OverrideRecord,
    PolicyRecord,
)
from .session import make_engine, make_session_factory, open_session
from .store import SqlGovernanceStore

__all__ = [
    "Base",
    "ApprovalRecord",
    "ArtifactRecord",
    "DecisionAuditLog",
    "EvaluationRecord",
    "ModelVersionRecord",
    "OverrideRecord",
    "PolicyRecord",
    "make_engine",
    "make_session_factory",
    "open_session",
    "SqlGovernanceStore",
]
