"""Tests for the per-agent durable namespace."""

import json

import pytest

from agentcomm.errors import NotFoundError
from agentcomm.schemas import MailboxMessage, MessageType, Task, TaskState
from agentcomm.store import AgentStore


class TestInitialize:
    """Test namespace creation."""

    def test_creates_layout(self, agents_root):
        """initialize creates every default document and mailbox directory."""
        store = AgentStore(agents_root, "alpha")
        assert store.initialize({"language": "python"}) is True

        base = agents_root / "alpha"
        assert (base / "context.md").exists()
        assert (base / "relationships.json").exists()
        assert (base / "mcp_config.json").exists()
        for name in ("pending", "active", "completed"):
            assert json.loads((base / "tasks" / f"{name}.json").read_text()) == []
        assert (base / "tasks" / "requests" / "incoming").is_dir()
        assert (base / "tasks" / "requests" / "outgoing").is_dir()

    def test_default_context_mentions_capabilities(self, store):
        """The default context log carries the agent id and capabilities."""
        context = store.read_context()
        assert context.startswith("# Agent alpha Context")
        assert '"language": "python"' in context

    def test_idempotent(self, store, sample_task):
        """A second initialize never overwrites existing documents."""
        store.append_context("keep me")
        store.write_tasks(TaskState.PENDING, [Task.from_dict(sample_task)])

        assert store.initialize() is False

        assert "keep me" in store.read_context()
        assert len(store.read_tasks(TaskState.PENDING)) == 1

    def test_rejects_path_like_ids(self, agents_root):
        """Agent ids cannot escape the root."""
        with pytest.raises(ValueError):
            AgentStore(agents_root, "../evil")

    def test_require_unknown_agent(self, agents_root):
        """require raises NotFoundError before initialization."""
        with pytest.raises(NotFoundError):
            AgentStore(agents_root, "ghost").require()


class TestContext:
    """Test the context log."""

    def test_append_keeps_prior_content(self, store):
        """Appends add timestamped entries without truncating."""
        before = store.read_context()
        store.append_context("first note")
        store.append_context("second note")

        context = store.read_context()
        assert context.startswith(before)
        assert context.index("first note") < context.index("second note")
        assert "\n## " in context[len(before):]

    def test_missing_context_is_an_error(self, store):
        """Reading a deleted context log raises."""
        store.context_path.unlink()
        with pytest.raises(FileNotFoundError):
            store.read_context()


class TestConfig:
    """Test capability config updates."""

    def test_write_config_merges_and_counts(self, store):
        """Capabilities merge, connect time stays, counter increments."""
        first = store.write_config({"language": "python"})
        second = store.write_config({"framework": "fastapi"})

        assert second.connected_at == first.connected_at
        assert second.registration_count == first.registration_count + 1
        assert second.capabilities == {"language": "python", "framework": "fastapi"}
        assert second.last_updated is not None

        on_disk = json.loads(store.config_path.read_text())
        assert on_disk["registrationCount"] == second.registration_count


class TestTaskCollections:
    """Test task collection files."""

    def test_missing_collection_reads_empty(self, store):
        """An absent collection file is an empty collection."""
        (store.tasks_path / "active.json").unlink()
        assert store.read_tasks(TaskState.ACTIVE) == []

    def test_write_then_read(self, store, sample_task):
        """Tasks persist as JSON documents."""
        store.write_tasks(TaskState.COMPLETED, [Task.from_dict(sample_task)])

        raw = json.loads((store.tasks_path / "completed.json").read_text())
        assert raw[0]["id"] == "task-001"
        assert store.read_tasks(TaskState.COMPLETED)[0].title == "Build login form"


class TestMailboxNamespaces:
    """Test incoming/outgoing/processed directories."""

    def test_write_and_archive(self, store):
        """Incoming messages can be listed and archived into processed/."""
        message = MailboxMessage(type=MessageType.CONTEXT_SYNC, from_agent_id="beta", to_agent_id="alpha")
        path = store.write_incoming(message)

        assert store.list_incoming() == [path]

        archived = store.archive_incoming(path)
        assert archived.parent == store.processed_path
        assert store.list_incoming() == []
        assert store.list_processed() == [archived]

    def test_outgoing(self, store):
        """Outgoing messages are addressed by message id."""
        message = MailboxMessage(type=MessageType.STATUS_UPDATE, from_agent_id="alpha", to_agent_id="beta")
        path = store.write_outgoing(message)
        assert path.name == f"{message.id}.json"
        assert store.list_outgoing() == [path]
