"""Per-agent durable namespace on the local filesystem.

Layout under ``<root>/<agent_id>/``::

    context.md
    relationships.json
    mcp_config.json
    tasks/pending.json
    tasks/active.json
    tasks/completed.json
    tasks/requests/incoming/<message-id>.json
    tasks/requests/incoming/processed/<message-id>.json
    tasks/requests/outgoing/<message-id>.json
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from agentcomm.errors import NotFoundError
from agentcomm.schemas import (
    AgentConfig,
    MailboxMessage,
    RelationshipRegistry,
    Task,
    TaskState,
    utc_now,
)

logger = logging.getLogger(__name__)

CONTEXT_TEMPLATE = """# Agent {agent_id} Context

## Current State
- Status: Initialized
- Created: {created}

## Capabilities
{capabilities}

## Knowledge Base

## Recent Activities

## Notes
"""


class AgentStore:
    """File-backed storage for one agent's context, tasks, relationships and mailbox."""

    def __init__(self, root: Path | str, agent_id: str):
        """Bind the store to an agent namespace. Nothing is created until initialize().

        Args:
            root: Directory holding every agent namespace
            agent_id: Agent identifier (used as the namespace directory name)
        """
        if not agent_id or "/" in agent_id or "\\" in agent_id or agent_id in {".", ".."}:
            raise ValueError(f"Invalid agent id: {agent_id!r}")

        self.root = Path(root)
        self.agent_id = agent_id
        self.agent_path = self.root / agent_id
        self.context_path = self.agent_path / "context.md"
        self.relationships_path = self.agent_path / "relationships.json"
        self.config_path = self.agent_path / "mcp_config.json"
        self.tasks_path = self.agent_path / "tasks"
        self.incoming_path = self.tasks_path / "requests" / "incoming"
        self.outgoing_path = self.tasks_path / "requests" / "outgoing"
        self.processed_path = self.incoming_path / "processed"

    def exists(self) -> bool:
        """True once the namespace has been initialized."""
        return self.config_path.exists()

    def require(self) -> AgentStore:
        """Return self, or raise NotFoundError for an uninitialized namespace."""
        if not self.exists():
            raise NotFoundError(f"Agent {self.agent_id} not found")
        return self

    def initialize(self, capabilities: dict[str, Any] | None = None) -> bool:
        """Create the namespace and default documents that are still missing.

        Existing documents are never overwritten.

        Returns:
            True if the namespace did not exist before this call
        """
        created = not self.exists()

        for directory in (self.agent_path, self.tasks_path, self.incoming_path, self.outgoing_path):
            directory.mkdir(parents=True, exist_ok=True)

        if not self.context_path.exists():
            self.context_path.write_text(
                CONTEXT_TEMPLATE.format(
                    agent_id=self.agent_id,
                    created=utc_now(),
                    capabilities=json.dumps(capabilities or {}, indent=2),
                ),
                encoding="utf-8",
            )

        for state in TaskState:
            path = self._tasks_file(state)
            if not path.exists():
                self._write_json(path, [])

        if not self.relationships_path.exists():
            self._write_json(self.relationships_path, RelationshipRegistry().to_dict())

        if not self.config_path.exists():
            self._write_json(self.config_path, AgentConfig(agent_id=self.agent_id).to_dict())

        if created:
            logger.info(f"Initialized namespace for agent {self.agent_id} at {self.agent_path}")
        return created

    # --- Context log ---

    def read_context(self) -> str:
        """Read the context log.

        Raises:
            FileNotFoundError: If the context document is missing
        """
        return self.context_path.read_text(encoding="utf-8")

    def append_context(self, content: str) -> None:
        """Append a timestamped entry, keeping all prior content."""
        current = self.read_context()
        timestamp = utc_now()
        updated = f"{current}\n\n## {timestamp}\n{content}\n\n_Last updated: {timestamp}_\n"
        self.context_path.write_text(updated, encoding="utf-8")
        logger.debug(f"Appended context entry for agent {self.agent_id}")

    # --- Relationships ---

    def read_relationships(self) -> RelationshipRegistry:
        if not self.relationships_path.exists():
            return RelationshipRegistry()
        return RelationshipRegistry.model_validate(self._read_json(self.relationships_path))

    def write_relationships(self, registry: RelationshipRegistry) -> None:
        self._write_json(self.relationships_path, registry.to_dict())

    # --- Config ---

    def read_config(self) -> AgentConfig:
        return AgentConfig.model_validate(self._read_json(self.config_path))

    def write_config(self, capabilities: dict[str, Any] | None = None) -> AgentConfig:
        """Merge capability updates into the config and bump its update counter.

        The original connect time is preserved.
        """
        if self.config_path.exists():
            config = self.read_config()
        else:
            config = AgentConfig(agent_id=self.agent_id)

        config.capabilities = {**config.capabilities, **(capabilities or {})}
        config.last_updated = utc_now()
        config.registration_count += 1
        self._write_json(self.config_path, config.to_dict())
        return config

    # --- Task collections ---

    def read_tasks(self, state: TaskState) -> list[Task]:
        """Load one task collection. A missing file reads as empty."""
        path = self._tasks_file(state)
        if not path.exists():
            return []
        return [Task.model_validate(item) for item in self._read_json(path)]

    def write_tasks(self, state: TaskState, tasks: list[Task]) -> None:
        self._write_json(self._tasks_file(state), [task.to_dict() for task in tasks])

    # --- Mailbox namespaces ---

    def write_outgoing(self, message: MailboxMessage) -> Path:
        return self._write_message(self.outgoing_path, message)

    def write_incoming(self, message: MailboxMessage) -> Path:
        return self._write_message(self.incoming_path, message)

    def list_incoming(self) -> list[Path]:
        """Message files waiting in the incoming namespace, oldest name first."""
        if not self.incoming_path.exists():
            return []
        return sorted(p for p in self.incoming_path.glob("*.json") if p.is_file())

    def list_outgoing(self) -> list[Path]:
        if not self.outgoing_path.exists():
            return []
        return sorted(p for p in self.outgoing_path.glob("*.json") if p.is_file())

    def list_processed(self) -> list[Path]:
        if not self.processed_path.exists():
            return []
        return sorted(p for p in self.processed_path.glob("*.json") if p.is_file())

    def archive_incoming(self, message_path: Path) -> Path:
        """Move a consumed message into the processed sub-namespace."""
        self.processed_path.mkdir(parents=True, exist_ok=True)
        target = self.processed_path / message_path.name
        message_path.replace(target)
        return target

    # --- Helpers ---

    def _tasks_file(self, state: TaskState) -> Path:
        return self.tasks_path / f"{TaskState(state).value}.json"

    def _write_message(self, directory: Path, message: MailboxMessage) -> Path:
        path = directory / f"{message.id}.json"
        self._write_json(path, message.to_dict())
        return path

    @staticmethod
    def _read_json(path: Path) -> Any:
        return json.loads(path.read_text(encoding="utf-8"))

    @staticmethod
    def _write_json(path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
