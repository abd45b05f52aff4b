"""REST shim: one dispatcher call per HTTP request."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Body, FastAPI, Query
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from agentcomm import __version__
from agentcomm.config import Settings
from agentcomm.coordinator import Coordinator
from agentcomm.dispatcher import CommandDispatcher, Operation
from agentcomm.errors import CoordinationError, NotFoundError
from agentcomm.schemas import utc_now

logger = logging.getLogger(__name__)

DEFAULT_REST_PORT = 3000


def create_app(
    settings: Settings | None = None,
    coordinator: Coordinator | None = None,
) -> FastAPI:
    """Build the REST app. Results are the raw dispatcher results."""
    settings = settings or Settings.from_env()
    if coordinator is None:
        settings.agents_path.mkdir(parents=True, exist_ok=True)
        coordinator = Coordinator(settings.agents_path, poll_interval_ms=settings.poll_interval_ms)
    dispatcher = CommandDispatcher(coordinator)

    app = FastAPI(
        title="AgentComm REST API",
        description="HTTP wrapper over the AgentComm command dispatcher",
        version=__version__,
    )
    app.state.dispatcher = dispatcher

    async def call(op: Operation, params: dict[str, Any]) -> Any:
        # Drop absent optional fields so params defaults apply
        return await dispatcher.call(op.value, {k: v for k, v in params.items() if v is not None})

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(CoordinationError)
    async def coordination_error_handler(request, exc: CoordinationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def generic_exception_handler(request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "healthy", "timestamp": utc_now(), "agents": len(coordinator.agents)}

    @app.post("/api/agents/register")
    async def register_agent(body: dict[str, Any] = Body(...)) -> Any:
        return await call(
            Operation.AGENT_REGISTER,
            {"agentId": body.get("agentId"), "capabilities": body.get("capabilities")},
        )

    @app.get("/api/agents/{agent_id}/status")
    async def agent_status(agent_id: str) -> Any:
        return await call(Operation.AGENT_STATUS, {"agentId": agent_id})

    @app.get("/api/system/status")
    async def system_status() -> Any:
        return await call(Operation.AGENT_STATUS, {})

    @app.post("/api/agents/{agent_id}/tasks")
    async def create_task(agent_id: str, task: dict[str, Any] = Body(...)) -> Any:
        return await call(
            Operation.TASK_CREATE,
            {"agentId": agent_id, "task": task, "createdBy": task.get("created_by")},
        )

    @app.get("/api/agents/{agent_id}/tasks")
    async def get_tasks(agent_id: str, state: str | None = Query(default=None)) -> Any:
        return await call(Operation.TASK_GET, {"agentId": agent_id, "state": state})

    @app.put("/api/agents/{agent_id}/tasks/{task_id}")
    async def update_task(agent_id: str, task_id: str, body: dict[str, Any] = Body(...)) -> Any:
        return await call(
            Operation.TASK_UPDATE,
            {
                "agentId": agent_id,
                "taskId": task_id,
                "status": body.get("status"),
                "deliverables": body.get("deliverables"),
                "reason": body.get("reason"),
            },
        )

    @app.post("/api/agents/{from_agent_id}/requests/{to_agent_id}")
    async def request_task(
        from_agent_id: str,
        to_agent_id: str,
        task_request: dict[str, Any] = Body(...),
    ) -> Any:
        return await call(
            Operation.TASK_REQUEST,
            {"fromAgentId": from_agent_id, "toAgentId": to_agent_id, "taskRequest": task_request},
        )

    @app.post("/api/agents/{agent_id}/relationships")
    async def add_relationship(agent_id: str, body: dict[str, Any] = Body(...)) -> Any:
        return await call(
            Operation.RELATIONSHIP_ADD,
            {
                "agentId": agent_id,
                "targetAgentId": body.get("targetAgentId"),
                "relationshipType": body.get("relationshipType"),
                "subtype": body.get("subtype"),
            },
        )

    @app.get("/api/agents/{agent_id}/relationships")
    async def list_relationships(agent_id: str) -> Any:
        return await call(Operation.RELATIONSHIP_LIST, {"agentId": agent_id})

    @app.delete("/api/agents/{agent_id}/relationships/{target_agent_id}")
    async def remove_relationship(agent_id: str, target_agent_id: str) -> Any:
        return await call(
            Operation.RELATIONSHIP_REMOVE,
            {"agentId": agent_id, "targetAgentId": target_agent_id},
        )

    @app.get("/api/agents/{agent_id}/context")
    async def get_context(agent_id: str) -> Any:
        return await call(Operation.CONTEXT_GET, {"agentId": agent_id})

    @app.put("/api/agents/{agent_id}/context")
    async def update_context(agent_id: str, body: dict[str, Any] = Body(...)) -> Any:
        return await call(Operation.CONTEXT_UPDATE, {"agentId": agent_id, "context": body.get("context")})

    @app.post("/api/agents/{from_agent_id}/messages/{to_agent_id}")
    async def send_message(
        from_agent_id: str,
        to_agent_id: str,
        body: dict[str, Any] = Body(...),
    ) -> Any:
        return await call(
            Operation.MESSAGE_SEND,
            {
                "fromAgentId": from_agent_id,
                "toAgentId": to_agent_id,
                "messageType": body.get("messageType"),
                "messageData": body.get("messageData"),
            },
        )

    @app.get("/api/docs")
    async def docs() -> dict[str, Any]:
        """Route index mapped to the underlying operation."""
        return {
            "title": app.title,
            "version": __version__,
            "endpoints": [
                {"method": method, "path": route.path, "name": route.name}
                for route in app.routes
                if route.path.startswith("/api/") or route.path == "/health"
                for method in sorted(getattr(route, "methods", None) or [])
            ],
        }

    return app
