"""Pytest configuration and fixtures for AgentComm tests."""

from pathlib import Path

import pytest

from agentcomm.coordinator import Coordinator
from agentcomm.dispatcher import CommandDispatcher
from agentcomm.store import AgentStore


@pytest.fixture
def agents_root(tmp_path: Path) -> Path:
    """Create a temporary root for agent namespaces."""
    root = tmp_path / "agents"
    root.mkdir()
    return root


@pytest.fixture
def store(agents_root: Path) -> AgentStore:
    """An initialized namespace for agent 'alpha'."""
    store = AgentStore(agents_root, "alpha")
    store.initialize({"language": "python"})
    return store


@pytest.fixture
def coordinator(agents_root: Path) -> Coordinator:
    """Coordinator with agents 'a' and 'b' registered."""
    coordinator = Coordinator(agents_root)
    coordinator.register("a", {"role": "frontend"})
    coordinator.register("b", {"role": "backend"})
    return coordinator


@pytest.fixture
def dispatcher(coordinator: Coordinator) -> CommandDispatcher:
    return CommandDispatcher(coordinator)


@pytest.fixture
def sample_task() -> dict:
    """Minimal valid task document."""
    return {
        "id": "task-001",
        "title": "Build login form",
        "description": "Email and password fields",
        "agent_id": "alpha",
    }
