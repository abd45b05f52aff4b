"""JSON-RPC command dispatcher over the coordination engine.

Every domain operation is registered once as an ``Operation`` member. Its tool
name (``agent-register``) and its legacy method name (``agent/register``) both
route to the same handler through a single lookup table.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from mcp.types import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    ErrorData,
    TextContent,
    Tool,
)
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from agentcomm import __version__
from agentcomm.coordinator import Coordinator
from agentcomm.errors import NotFoundError
from agentcomm.schemas import (
    MessageType,
    RelationshipCategory,
    RelationshipStatus,
    Task,
    TaskState,
    TaskStatus,
)

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "agentcomm"
TOOL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

Handler = Callable[[dict[str, Any]], Awaitable[Any]]
EventListener = Callable[[str, dict[str, Any]], Awaitable[None]]


class MethodNotFoundError(NotFoundError):
    """Raised when a method or tool name has no handler."""

    pass


class Operation(str, Enum):
    """Domain operations. The value is the portable tool name."""

    AGENT_REGISTER = "agent-register"
    AGENT_STATUS = "agent-status"
    TASK_CREATE = "task-create"
    TASK_GET = "task-get"
    TASK_REQUEST = "task-request"
    TASK_UPDATE = "task-update"
    RELATIONSHIP_ADD = "relationship-add"
    RELATIONSHIP_REMOVE = "relationship-remove"
    RELATIONSHIP_UPDATE = "relationship-update"
    RELATIONSHIP_LIST = "relationship-list"
    CONTEXT_GET = "context-get"
    CONTEXT_UPDATE = "context-update"
    MESSAGE_SEND = "message-send"
    MAILBOX_POLL = "mailbox-poll"

    @property
    def legacy_name(self) -> str:
        """Slash-separated method name, e.g. ``agent/register``."""
        return self.value.replace("-", "/", 1)


# --- Params ---


class OperationParams(BaseModel):
    """Base for operation params. Wire names are camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AgentRegisterParams(OperationParams):
    agent_id: str = Field(..., min_length=1)
    capabilities: dict[str, Any] = Field(default_factory=dict)
    force_update: bool = False


class AgentStatusParams(OperationParams):
    agent_id: str | None = None


class TaskCreateParams(OperationParams):
    agent_id: str = Field(..., min_length=1)
    task: dict[str, Any]
    created_by: str | None = None


class TaskGetParams(OperationParams):
    agent_id: str = Field(..., min_length=1)
    state: TaskState | None = Field(default=None, description="Filter tasks by state (optional)")
    task_id: str | None = None


class TaskRequestParams(OperationParams):
    from_agent_id: str = Field(..., min_length=1)
    to_agent_id: str = Field(..., min_length=1)
    task_request: dict[str, Any]


class TaskUpdateParams(OperationParams):
    agent_id: str = Field(..., min_length=1)
    task_id: str = Field(..., min_length=1)
    status: TaskStatus
    deliverables: list[Any] = Field(default_factory=list)
    reason: str | None = None


class RelationshipAddParams(OperationParams):
    agent_id: str = Field(..., min_length=1)
    target_agent_id: str = Field(..., min_length=1)
    relationship_type: RelationshipCategory
    subtype: str | None = None


class RelationshipRemoveParams(OperationParams):
    agent_id: str = Field(..., min_length=1)
    target_agent_id: str = Field(..., min_length=1)


class RelationshipUpdateParams(OperationParams):
    agent_id: str = Field(..., min_length=1)
    target_agent_id: str = Field(..., min_length=1)
    status: RelationshipStatus


class RelationshipListParams(OperationParams):
    agent_id: str = Field(..., min_length=1)
    target_agent_id: str | None = None


class ContextGetParams(OperationParams):
    agent_id: str = Field(..., min_length=1)


class ContextUpdateParams(OperationParams):
    agent_id: str = Field(..., min_length=1)
    context: str = Field(..., min_length=1)


class MessageSendParams(OperationParams):
    from_agent_id: str = Field(..., min_length=1)
    to_agent_id: str = Field(..., min_length=1)
    message_type: MessageType
    message_data: dict[str, Any] = Field(default_factory=dict)


class MailboxPollParams(OperationParams):
    pass


OPERATION_PARAMS: dict[Operation, type[OperationParams]] = {
    Operation.AGENT_REGISTER: AgentRegisterParams,
    Operation.AGENT_STATUS: AgentStatusParams,
    Operation.TASK_CREATE: TaskCreateParams,
    Operation.TASK_GET: TaskGetParams,
    Operation.TASK_REQUEST: TaskRequestParams,
    Operation.TASK_UPDATE: TaskUpdateParams,
    Operation.RELATIONSHIP_ADD: RelationshipAddParams,
    Operation.RELATIONSHIP_REMOVE: RelationshipRemoveParams,
    Operation.RELATIONSHIP_UPDATE: RelationshipUpdateParams,
    Operation.RELATIONSHIP_LIST: RelationshipListParams,
    Operation.CONTEXT_GET: ContextGetParams,
    Operation.CONTEXT_UPDATE: ContextUpdateParams,
    Operation.MESSAGE_SEND: MessageSendParams,
    Operation.MAILBOX_POLL: MailboxPollParams,
}

OPERATION_DESCRIPTIONS: dict[Operation, str] = {
    Operation.AGENT_REGISTER: "Register a new agent or merge capabilities into an existing one",
    Operation.AGENT_STATUS: "Get agent status, or system status when agentId is omitted",
    Operation.TASK_CREATE: "Create a new pending task for an agent",
    Operation.TASK_GET: "Get tasks for an agent, optionally filtered by state or task id",
    Operation.TASK_REQUEST: "Send a task request from one agent to another",
    Operation.TASK_UPDATE: "Update task status (in_progress, blocked, completed)",
    Operation.RELATIONSHIP_ADD: "Add an agent relationship (consumer, producer, bidirectional, optional)",
    Operation.RELATIONSHIP_REMOVE: "Remove every relationship with another agent",
    Operation.RELATIONSHIP_UPDATE: "Set relationship status with another agent",
    Operation.RELATIONSHIP_LIST: "List an agent's relationships and related agents",
    Operation.CONTEXT_GET: "Read an agent's context log",
    Operation.CONTEXT_UPDATE: "Append an entry to an agent's context log",
    Operation.MESSAGE_SEND: "Send a typed message between agents",
    Operation.MAILBOX_POLL: "Process every registered agent's incoming messages now",
}


def build_tools() -> list[Tool]:
    """Static discovery manifest: one tool per operation, named by its tool name."""
    return [
        Tool(
            name=op.value,
            description=OPERATION_DESCRIPTIONS[op],
            inputSchema=OPERATION_PARAMS[op].model_json_schema(by_alias=True),
        )
        for op in Operation
    ]


TOOLS = build_tools()


# --- Incorporation guidance ---


def incorporation_guidance(task: Task, completed_by: str) -> dict[str, Any]:
    """Advisory follow-up for the creator of a task someone else completed.

    The suggested task is returned as data only; nothing is enqueued.
    """
    creator = task.created_by
    deliverables = list(task.deliverables)
    listed = "\n".join(f"- {d}" for d in deliverables)

    return {
        "message": (
            f"This task was created by {creator}. Consider creating an incorporation "
            f"task for them to review and integrate your changes."
        ),
        "creator_agent": creator,
        "completed_by": completed_by,
        "original_task": {
            "id": task.id,
            "title": task.title,
            "description": task.description,
            "priority": task.priority.value,
            "deliverables": deliverables,
            "metadata": task.metadata,
        },
        "suggested_incorporation_task": {
            "title": f"Incorporate changes from: {task.title}",
            "description": (
                f'Task "{task.title}" has been completed by {completed_by}. '
                f"Please review and incorporate the following deliverables:\n\n{listed}"
                f"\n\nOriginal task description: {task.description}"
            ),
            "priority": task.priority.value,
            "agent_id": creator,
            "created_by": completed_by,
            "target_agent_id": creator,
            "reference_task_id": task.id,
            "deliverables": deliverables,
            "metadata": {
                **task.metadata,
                "incorporation_task": True,
                "original_task_id": task.id,
                "completed_by": completed_by,
                "tags": [*task.metadata.get("tags", []), "incorporation", "review"],
            },
        },
        "implementation_steps": [
            f'1. Create a new task for agent "{creator}" using the suggested_incorporation_task data',
            f'2. Use the task-create tool with agentId="{creator}"',
            f"3. The incorporation task will help {creator} review and integrate the "
            f"deliverables: {', '.join(str(d) for d in deliverables)}",
        ],
    }


# --- Envelopes ---


def success_response(request_id: Any, result: Any) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def error_response(request_id: Any, code: int, message: str) -> dict[str, Any]:
    error = ErrorData(code=code, message=message)
    return {"jsonrpc": "2.0", "id": request_id, "error": error.model_dump(exclude_none=True)}


class CommandDispatcher:
    """Maps JSON-RPC methods onto coordinator operations."""

    def __init__(
        self,
        coordinator: Coordinator,
        server_name: str = SERVER_NAME,
        server_version: str = __version__,
    ):
        self.coordinator = coordinator
        self.server_name = server_name
        self.server_version = server_version
        self.listeners: list[EventListener] = []

        operation_handlers: dict[Operation, Handler] = {
            Operation.AGENT_REGISTER: self._agent_register,
            Operation.AGENT_STATUS: self._agent_status,
            Operation.TASK_CREATE: self._task_create,
            Operation.TASK_GET: self._task_get,
            Operation.TASK_REQUEST: self._task_request,
            Operation.TASK_UPDATE: self._task_update,
            Operation.RELATIONSHIP_ADD: self._relationship_add,
            Operation.RELATIONSHIP_REMOVE: self._relationship_remove,
            Operation.RELATIONSHIP_UPDATE: self._relationship_update,
            Operation.RELATIONSHIP_LIST: self._relationship_list,
            Operation.CONTEXT_GET: self._context_get,
            Operation.CONTEXT_UPDATE: self._context_update,
            Operation.MESSAGE_SEND: self._message_send,
            Operation.MAILBOX_POLL: self._mailbox_poll,
        }
        self.operations = operation_handlers

        # Single lookup table: protocol methods plus both names of every operation
        self.methods: dict[str, Handler] = {
            "initialize": self._initialize,
            "initialized": self._initialized,
            "notifications/initialized": self._initialized,
            "ping": self._ping,
            "tools/list": self._tools_list,
            "tools/call": self._tools_call,
            "resources/list": self._resources_list,
            "prompts/list": self._prompts_list,
        }
        for op, handler in operation_handlers.items():
            self.methods[op.legacy_name] = handler
            self.methods[op.value] = handler

    def resolve(self, method: str) -> Handler | None:
        return self.methods.get(method)

    def resolve_tool(self, name: str) -> Handler:
        """Handler for a tool name in either naming scheme.

        Raises:
            MethodNotFoundError: If the name is not an operation
        """
        for op in Operation:
            if name in (op.value, op.legacy_name):
                return self.operations[op]
        raise MethodNotFoundError(f"Tool not found: {name}")

    @property
    def method_names(self) -> list[str]:
        return list(self.methods)

    def add_listener(self, listener: EventListener) -> None:
        """Subscribe to domain events (``agent/registered``, ``task/created``)."""
        self.listeners.append(listener)

    async def _emit(self, event: str, params: dict[str, Any]) -> None:
        for listener in self.listeners:
            try:
                await listener(event, params)
            except Exception:
                logger.error(f"Event listener failed for {event}", exc_info=True)

    # --- Dispatch ---

    async def dispatch(self, request: dict[str, Any]) -> dict[str, Any] | None:
        """Run one JSON-RPC request.

        Returns:
            Response envelope, or None for notifications (requests without an id)
        """
        if not isinstance(request, dict):
            return error_response(None, INVALID_REQUEST, "Invalid request")

        is_notification = "id" not in request
        request_id = request.get("id")
        method = request.get("method")
        params = request.get("params") or {}

        handler = self.resolve(method) if isinstance(method, str) else None
        if handler is None:
            logger.warning(f"Method not found: {method}")
            if is_notification:
                return None
            return error_response(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")

        try:
            result = await handler(params)
        except MethodNotFoundError as e:
            logger.warning(str(e))
            if is_notification:
                return None
            return error_response(request_id, METHOD_NOT_FOUND, str(e))
        except Exception as e:
            logger.error(f"Error handling {method}: {e}", exc_info=True)
            if is_notification:
                return None
            return error_response(request_id, INTERNAL_ERROR, str(e))

        if is_notification:
            return None
        return success_response(request_id, result if result is not None else {})

    async def dispatch_line(self, line: str) -> dict[str, Any] | None:
        """Parse one newline-delimited request and dispatch it."""
        try:
            request = json.loads(line)
        except json.JSONDecodeError as e:
            logger.warning(f"Parse error: {e}")
            return error_response(None, PARSE_ERROR, f"Parse error: {e}")
        return await self.dispatch(request)

    async def call(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Invoke a method directly, raising instead of building an error envelope."""
        handler = self.resolve(method)
        if handler is None:
            raise MethodNotFoundError(f"Method not found: {method}")
        return await handler(params or {})

    # --- Protocol methods ---

    async def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        client = params.get("clientInfo", {})
        logger.info(f"Initialize from {client.get('name', 'unknown client')}")
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}, "resources": {}, "prompts": {}, "logging": {}},
            "serverInfo": {"name": self.server_name, "version": self.server_version},
        }

    async def _initialized(self, params: dict[str, Any]) -> None:
        return None

    async def _ping(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def _tools_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"tools": [tool.model_dump(by_alias=True, exclude_none=True) for tool in TOOLS]}

    async def _tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name", "")
        handler = self.resolve_tool(name)
        result = await handler(params.get("arguments") or {})
        content = TextContent(type="text", text=json.dumps(result, indent=2))
        return {"content": [content.model_dump(exclude_none=True)]}

    async def _resources_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"resources": []}

    async def _prompts_list(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"prompts": []}

    # --- Operations ---

    async def _agent_register(self, params: dict[str, Any]) -> dict[str, Any]:
        p = AgentRegisterParams.model_validate(params)
        config, existed = self.coordinator.register(p.agent_id, p.capabilities)
        action = "updated" if existed else "registered"

        await self._emit(
            "agent/registered",
            {"agentId": p.agent_id, "capabilities": config.capabilities},
        )
        return {
            "success": True,
            "agentId": p.agent_id,
            "message": f"Agent {p.agent_id} {action} successfully",
            "wasUpdated": existed,
            "registrationCount": config.registration_count,
        }

    async def _agent_status(self, params: dict[str, Any]) -> dict[str, Any]:
        p = AgentStatusParams.model_validate(params)
        if p.agent_id:
            return {"success": True, "status": self.coordinator.agent_status(p.agent_id)}
        return {"success": True, "status": self.coordinator.system_status()}

    async def _task_create(self, params: dict[str, Any]) -> dict[str, Any]:
        p = TaskCreateParams.model_validate(params)
        task = self.coordinator.create_task(p.agent_id, p.task, p.created_by)

        await self._emit(
            "task/created",
            {"agentId": p.agent_id, "taskId": task.id, "task": task.to_dict()},
        )
        return {"success": True, "taskId": task.id, "message": "Task created successfully"}

    async def _task_get(self, params: dict[str, Any]) -> dict[str, Any]:
        p = TaskGetParams.model_validate(params)

        if p.task_id:
            state, task = self.coordinator.get_task(p.agent_id, p.task_id)
            return {"success": True, "state": state.value, "task": task.to_dict()}

        tasks = self.coordinator.get_tasks(p.agent_id, p.state)
        if p.state is not None:
            payload: Any = [t.to_dict() for t in tasks]
            suffix = f" with state {p.state.value}"
        else:
            payload = {state: [t.to_dict() for t in items] for state, items in tasks.items()}
            suffix = ""
        return {
            "success": True,
            "tasks": payload,
            "message": f"Tasks retrieved for agent {p.agent_id}{suffix}",
        }

    async def _task_request(self, params: dict[str, Any]) -> dict[str, Any]:
        p = TaskRequestParams.model_validate(params)
        message, task = self.coordinator.request_task(p.from_agent_id, p.to_agent_id, p.task_request)
        return {
            "success": True,
            "requestId": message.id,
            "taskId": task.id,
            "message": f"Task request sent from {p.from_agent_id} to {p.to_agent_id}",
        }

    async def _task_update(self, params: dict[str, Any]) -> dict[str, Any]:
        p = TaskUpdateParams.model_validate(params)
        task = self.coordinator.update_task(
            p.agent_id, p.task_id, p.status, p.deliverables, p.reason
        )

        response: dict[str, Any] = {
            "success": True,
            "message": f"Task {p.task_id} status updated to {p.status.value}",
            "task": task.to_dict(),
        }
        if p.status == TaskStatus.COMPLETED and task.created_by and task.created_by != p.agent_id:
            response["incorporation_needed"] = True
            response["incorporation_guidance"] = incorporation_guidance(task, p.agent_id)
        return response

    async def _relationship_add(self, params: dict[str, Any]) -> dict[str, Any]:
        p = RelationshipAddParams.model_validate(params)
        added = self.coordinator.add_relationship(
            p.agent_id, p.target_agent_id, p.relationship_type, p.subtype
        )
        if added:
            message = f"Relationship {p.relationship_type.value} added between {p.agent_id} and {p.target_agent_id}"
        else:
            message = f"Relationship {p.relationship_type.value} between {p.agent_id} and {p.target_agent_id} already exists"
        return {"success": True, "added": added, "message": message}

    async def _relationship_remove(self, params: dict[str, Any]) -> dict[str, Any]:
        p = RelationshipRemoveParams.model_validate(params)
        removed = self.coordinator.remove_relationship(p.agent_id, p.target_agent_id)
        if removed:
            message = f"Removed relationship between {p.agent_id} and {p.target_agent_id}"
        else:
            message = f"No relationship between {p.agent_id} and {p.target_agent_id}"
        return {"success": True, "removed": removed, "message": message}

    async def _relationship_update(self, params: dict[str, Any]) -> dict[str, Any]:
        p = RelationshipUpdateParams.model_validate(params)
        updated = self.coordinator.update_relationship(p.agent_id, p.target_agent_id, p.status)
        if updated:
            message = f"Relationship with {p.target_agent_id} set to {p.status.value}"
        else:
            message = f"No relationship between {p.agent_id} and {p.target_agent_id}"
        return {"success": True, "updated": updated, "message": message}

    async def _relationship_list(self, params: dict[str, Any]) -> dict[str, Any]:
        p = RelationshipListParams.model_validate(params)
        manager = self.coordinator.relationships(p.agent_id)

        response: dict[str, Any] = {
            "success": True,
            "relationships": manager.store.read_relationships().to_dict(),
            "relatedAgents": manager.related_agents(),
            "stats": manager.stats(),
        }
        if p.target_agent_id:
            response["relationshipType"] = manager.relationship_type(p.target_agent_id)
        return response

    async def _context_get(self, params: dict[str, Any]) -> dict[str, Any]:
        p = ContextGetParams.model_validate(params)
        return {"success": True, "context": self.coordinator.get_context(p.agent_id)}

    async def _context_update(self, params: dict[str, Any]) -> dict[str, Any]:
        p = ContextUpdateParams.model_validate(params)
        self.coordinator.update_context(p.agent_id, p.context)
        return {"success": True, "message": f"Context updated for agent {p.agent_id}"}

    async def _message_send(self, params: dict[str, Any]) -> dict[str, Any]:
        p = MessageSendParams.model_validate(params)
        message = self.coordinator.send_message(
            p.from_agent_id, p.to_agent_id, p.message_type, p.message_data
        )
        return {
            "success": True,
            "messageId": message.id,
            "message": f"Message sent from {p.from_agent_id} to {p.to_agent_id}",
        }

    async def _mailbox_poll(self, params: dict[str, Any]) -> dict[str, Any]:
        return {"success": True, "processed": self.coordinator.poll()}
