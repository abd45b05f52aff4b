"""Pydantic schemas for AgentComm agents, tasks, relationships and messages."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from agentcomm.errors import TaskValidationError


def utc_now() -> str:
    """Current time as an ISO-8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    """Fresh globally unique identifier."""
    return str(uuid.uuid4())


class TaskType(str, Enum):
    """Kinds of task. Request and response tasks carry extra linkage."""

    IMPLEMENTATION = "implementation"
    REQUEST = "request"
    RESPONSE = "response"


class TaskPriority(str, Enum):
    """Task priority levels."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TaskStatus(str, Enum):
    """Task lifecycle status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class TaskState(str, Enum):
    """Task collections. A task physically lives in exactly one of them."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


class RelationshipCategory(str, Enum):
    """Relationship categories, in lookup order."""

    CONSUMER = "consumer"
    PRODUCER = "producer"
    BIDIRECTIONAL = "bidirectional"
    OPTIONAL = "optional"


class RelationshipStatus(str, Enum):
    """Relationship status."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class MessageType(str, Enum):
    """Mailbox message types. Each has exactly one handler."""

    TASK_REQUEST = "TASK_REQUEST"
    TASK_RESPONSE = "TASK_RESPONSE"
    STATUS_UPDATE = "STATUS_UPDATE"
    DEPENDENCY_NOTIFICATION = "DEPENDENCY_NOTIFICATION"
    INTEGRATION_TEST = "INTEGRATION_TEST"
    COMPLETION_NOTIFICATION = "COMPLETION_NOTIFICATION"
    CONTEXT_SYNC = "CONTEXT_SYNC"


# --- Tasks ---


def task_violations(data: Mapping[str, Any]) -> list[str]:
    """List every structural rule a raw task document breaks.

    Args:
        data: Task document (as stored on disk or received over the wire)

    Returns:
        Human-readable violations; empty when the document is valid
    """
    errors = []
    task_type = data.get("type") or TaskType.IMPLEMENTATION.value
    priority = data.get("priority") or TaskPriority.MEDIUM.value
    status = data.get("status") or TaskStatus.PENDING.value

    if not data.get("id"):
        errors.append("Task ID is required")
    if not data.get("title"):
        errors.append("Task title is required")
    if not data.get("agent_id"):
        errors.append("Agent ID is required")
    if not (data.get("created_by") or data.get("agent_id")):
        errors.append("Task creator (created_by) is required")
    if task_type not in {t.value for t in TaskType}:
        errors.append("Task type must be implementation, request, or response")
    if priority not in {p.value for p in TaskPriority}:
        errors.append("Task priority must be high, medium, or low")
    if status not in {s.value for s in TaskStatus}:
        errors.append("Task status must be pending, in_progress, completed, or blocked")

    if task_type == TaskType.REQUEST.value and not data.get("target_agent_id"):
        errors.append("Request tasks must have a target_agent_id")
    if task_type == TaskType.RESPONSE.value and not data.get("reference_task_id"):
        errors.append("Response tasks must have a reference_task_id")

    return errors


class Task(BaseModel):
    """A unit of work owned by one agent."""

    id: str = Field(default_factory=new_id)
    type: TaskType = TaskType.IMPLEMENTATION
    title: str = ""
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
    agent_id: str = ""
    created_by: str = ""
    target_agent_id: str | None = None
    reference_task_id: str | None = None
    dependencies: list[str] = Field(default_factory=list)
    deliverables: list[Any] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _fill_defaults(self) -> Task:
        if not self.created_by:
            self.created_by = self.agent_id
        self.metadata.setdefault("estimated_effort", None)
        self.metadata.setdefault("tags", [])
        self.metadata.setdefault("communication_thread", None)
        return self

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Task:
        """Build a task, rejecting it with every violation listed at once.

        Raises:
            TaskValidationError: If the document breaks any rule
        """
        errors = task_violations(data)
        if errors:
            raise TaskValidationError(errors)
        return cls.model_validate({k: v for k, v in data.items() if v is not None})

    def violations(self) -> list[str]:
        return task_violations(self.to_dict())

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def touch(self) -> None:
        self.updated_at = utc_now()

    def update_status(self, status: TaskStatus) -> None:
        self.status = status
        self.touch()

    def add_dependency(self, task_id: str) -> None:
        if task_id not in self.dependencies:
            self.dependencies.append(task_id)
            self.touch()

    def add_deliverable(self, deliverable: Any) -> None:
        if deliverable not in self.deliverables:
            self.deliverables.append(deliverable)
            self.touch()

    def is_ready(self, completed_ids: set[str] | list[str]) -> bool:
        """True when every dependency is already completed."""
        completed = set(completed_ids)
        return all(dep in completed for dep in self.dependencies)

    def create_response(
        self,
        responding_agent_id: str,
        description: str | None = None,
        deliverables: list[Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Task:
        """Build the response task answering this request task.

        Raises:
            ValueError: If this task is not a request
        """
        if self.type != TaskType.REQUEST:
            raise ValueError("Can only create responses for request tasks")

        return Task(
            type=TaskType.RESPONSE,
            title=f"Response to: {self.title}",
            description=description or f"Response to request: {self.description}",
            priority=self.priority,
            agent_id=responding_agent_id,
            created_by=responding_agent_id,
            target_agent_id=self.agent_id,
            reference_task_id=self.id,
            deliverables=list(deliverables or []),
            metadata={
                **(metadata or {}),
                "communication_thread": self.metadata.get("communication_thread") or self.id,
            },
        )


# --- Relationships ---


class Relationship(BaseModel):
    """One (peer, category) entry in an agent's relationship registry."""

    model_config = ConfigDict(populate_by_name=True)

    agent_id: str = Field(..., alias="agentId")
    type: str = "direct"
    established: str = Field(default_factory=utc_now)
    status: RelationshipStatus = RelationshipStatus.ACTIVE
    last_updated: str | None = Field(default=None, alias="lastUpdated")


CATEGORY_FIELDS: dict[RelationshipCategory, str] = {
    RelationshipCategory.CONSUMER: "consumers",
    RelationshipCategory.PRODUCER: "producers",
    RelationshipCategory.BIDIRECTIONAL: "bidirectional",
    RelationshipCategory.OPTIONAL: "optional",
}


class RelationshipRegistry(BaseModel):
    """The four named relationship lists of one agent."""

    consumers: list[Relationship] = Field(default_factory=list)
    producers: list[Relationship] = Field(default_factory=list)
    bidirectional: list[Relationship] = Field(default_factory=list)
    optional: list[Relationship] = Field(default_factory=list)

    def bucket(self, category: RelationshipCategory) -> list[Relationship]:
        return getattr(self, CATEGORY_FIELDS[category])

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Agent configuration ---

DEFAULT_AGENT_SETTINGS: dict[str, int] = {
    "messageRetryAttempts": 3,
    "messageTimeout": 30000,
    "heartbeatInterval": 60000,
}


class AgentConfig(BaseModel):
    """Capability/config document of one agent."""

    model_config = ConfigDict(populate_by_name=True)

    agent_id: str = Field(..., alias="agentId")
    capabilities: dict[str, Any] = Field(default_factory=dict)
    connected_at: str = Field(default_factory=utc_now, alias="connectedAt")
    last_updated: str | None = Field(default=None, alias="lastUpdated")
    registration_count: int = Field(default=0, alias="registrationCount")
    mcp_endpoint: str | None = Field(default=None, alias="mcpEndpoint")
    message_types: list[str] = Field(
        default_factory=lambda: [t.value for t in MessageType],
        alias="messageTypes",
    )
    settings: dict[str, Any] = Field(default_factory=lambda: dict(DEFAULT_AGENT_SETTINGS))

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# --- Mailbox ---


class MailboxMessage(BaseModel):
    """An asynchronous message between two agents."""

    id: str = Field(default_factory=new_id)
    type: MessageType
    timestamp: str = Field(default_factory=utc_now)
    from_agent_id: str
    to_agent_id: str
    payload: dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
