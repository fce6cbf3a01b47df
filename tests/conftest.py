"""
Pytest configuration and fixtures for Stellar Collab tests.

This module provides common test fixtures and configuration
for the entire test suite.
"""

import asyncio
import os
import tempfile
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

import pytest

from stellar_collab.agents.communication import DeliveryRequirements, MessageBus, SystemMessage
from stellar_collab.agents.registry import AgentCapability, AgentProfile, AgentRegistry
from stellar_collab.config.settings import EngineSettings, Settings
from stellar_collab.core.clock import utc_now
from stellar_collab.core.logging import setup_logging
from stellar_collab.monitoring.metrics import MetricsAggregator
from stellar_collab.orchestration.goals import CollaborationGoal, Constraint, ConstraintType


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """Set up logging for tests."""
    setup_logging(log_level="DEBUG", environment="testing")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def test_settings() -> Generator[Settings, None, None]:
    """Create test settings with safe defaults."""
    test_env = {
        "ENVIRONMENT": "testing",
        "DEBUG": "true",
        "LOG_LEVEL": "DEBUG",
    }

    original_env = {}
    for key, value in test_env.items():
        original_env[key] = os.environ.get(key)
        os.environ[key] = value

    try:
        from stellar_collab.config.settings import get_settings
        get_settings.cache_clear()
        settings = get_settings()
        yield settings
    finally:
        for key, value in original_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

        get_settings.cache_clear()


@pytest.fixture
def engine_settings() -> EngineSettings:
    """Engine settings with short timeouts so failure paths finish quickly."""
    return EngineSettings(
        negotiation_round_timeout_seconds=0.5,
        advisor_timeout_seconds=0.5,
        advisor_backoff_seconds=0.01,
        broadcast_max_retries=2,
        broadcast_retry_backoff_seconds=0.01,
        broadcast_ack_timeout_seconds=0.1,
    )


@pytest.fixture
def metrics() -> MetricsAggregator:
    return MetricsAggregator()


@pytest.fixture
def agent_registry() -> AgentRegistry:
    """Registry with a small, mixed-skill team."""
    return AgentRegistry([
        AgentProfile(
            agent_id="atlas-001",
            agent_type="atlas",
            capabilities=[
                AgentCapability(name="planning", proficiency=0.9),
                AgentCapability(name="analysis", proficiency=0.8),
            ],
        ),
        AgentProfile(
            agent_id="edison-001",
            agent_type="edison",
            capabilities=[
                AgentCapability(name="prototyping", proficiency=0.9),
                AgentCapability(name="analysis", proficiency=0.6),
            ],
        ),
        AgentProfile(
            agent_id="curie-001",
            agent_type="curie",
            capabilities=[AgentCapability(name="research", proficiency=0.85)],
        ),
    ])


@pytest.fixture
def sample_goal() -> CollaborationGoal:
    """Goal with one resource constraint and skills the registry covers."""
    return CollaborationGoal(
        id="goal-001",
        description="Ship the recommendation prototype",
        objective="Deliver a working prototype with an evaluation report",
        success_criteria=["prototype_demo", "evaluation_report"],
        required_skills=["planning", "prototyping", "research"],
        constraints=[
            Constraint(
                constraint_type=ConstraintType.RESOURCE,
                description="Two GPUs shared across the team",
                flexibility=0.3,
                impact=0.7,
                mitigation_strategies=["Book GPU slots a day ahead"],
            )
        ],
    )


def make_message(
    recipients: List[str],
    acknowledgment_required: bool = True,
    expires_in: float = 30.0,
    sender: str = "orchestrator",
) -> SystemMessage:
    return SystemMessage(
        message_id=str(uuid.uuid4()),
        sender=sender,
        recipients=recipients,
        subject="Maintenance window",
        content={"window": "02:00-03:00"},
        delivery_requirements=DeliveryRequirements(
            acknowledgment_required=acknowledgment_required,
            expiration_time=utc_now() + timedelta(seconds=expires_in),
        ),
    )


async def ack_consumer(bus: MessageBus, agent_id: str, silent: bool = False) -> None:
    """Drain ``agent_id``'s queue, acknowledging everything unless ``silent``."""
    while True:
        message = await bus.receive_message(agent_id, timeout=1.0)
        if message is not None and not silent:
            await bus.acknowledge(agent_id, message.message_id)


class ScriptedAdvisor:
    """Advisor returning canned responses per request kind, or failing."""

    def __init__(self, responses: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None):
        self.responses = responses or {}
        self.error = error
        self.calls: List[str] = []

    async def advise(self, request_kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(request_kind)
        if self.error is not None:
            raise self.error
        return self.responses.get(request_kind, {})


class SlowAdvisor:
    def __init__(self, delay: float):
        self.delay = delay
        self.calls = 0

    async def advise(self, request_kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return {}


@pytest.fixture
def scripted_advisor() -> ScriptedAdvisor:
    """Advisor shaped like the text-generation backend's structured replies."""
    return ScriptedAdvisor({
        "collaboration_structure": {
            "collaboration_structure": "hierarchical",
            "communication_protocols": ["daily_sync", "milestone_reviews"],
            "coordination_mechanisms": ["task_dependencies", "resource_sharing"],
            "success_metrics": ["velocity", "defect_rate"],
        },
        "conflict_actions": {
            "implementation_steps": ["Share the GPU calendar", "Agree on a rota"],
            "follow_up": ["Review allocation next sprint"],
        },
        "negotiation_alternatives": {
            "alternative_solutions": [
                "Split the budget evenly",
                {"description": "Time-box GPU usage", "terms": {"gpu_hours": 10}},
            ],
        },
    })


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers based on file location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def message_factory():
    return make_message


@pytest.fixture
def consumer():
    return ack_consumer


@pytest.fixture
def advisor_factory():
    return ScriptedAdvisor


@pytest.fixture
def slow_advisor_factory():
    return SlowAdvisor
