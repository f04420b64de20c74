"""Pytest configuration and shared fixtures."""

import pytest

from modelgate.core.approval.resolver import ApprovalRequirementResolver
from modelgate.core.config import get_settings
from modelgate.core.policy.engine import PolicyEvaluationEngine
from modelgate.core.promotion.blocking import PromotionBlockingService
from modelgate.core.versioning.machine import VersionStateMachine
from modelgate.db.session import make_engine, make_session_factory
from tests.factories import make_actor


@pytest.fixture(autouse=True)
def clear_settings_cache(monkeypatch):
    """Keep cached settings from leaking between tests."""
    monkeypatch.delenv("MODELGATE_WEBHOOK_URL", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def state_machine():
    return VersionStateMachine()


@pytest.fixture
def resolver():
    return ApprovalRequirementResolver()


@pytest.fixture
def engine():
    return PolicyEvaluationEngine()


@pytest.fixture
def service():
    return PromotionBlockingService()


@pytest.fixture
def requester():
    return make_actor("owner@example.com", roles=("model_owner",))


@pytest.fixture
def sample_policy_definitions():
    """Policy definitions in the YAML file shape."""
    return [
        {
            "id": "min-accuracy",
            "name": "Minimum accuracy",
            "severity": "high",
            "can_override": True,
            "priority": 10,
            "conditions": [
                {"source": "evaluation", "field": "results.accuracy", "operator": "gte", "value": 0.9},
            ],
        },
        {
            "id": "no-gpl",
            "name": "No GPL licensed artifacts",
            "severity": "critical",
            "priority": 20,
            "stages": ["approved_prod", "production"],
            "conditions": [
                {"source": "artifact", "field": "licenses", "operator": "not_contains", "value": "GPL-3.0"},
            ],
        },
    ]


@pytest.fixture
def db_session():
    """Session on a fresh in-memory SQLite database."""
    db_engine = make_engine("sqlite://")
    factory = make_session_factory(db_engine, create_tables=True)
    session = factory()
    try:
        yield session
    finally:
        session.close()
        db_engine.dispose()
