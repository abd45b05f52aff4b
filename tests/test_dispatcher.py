"""Tests for the JSON-RPC command dispatcher."""

import json

import pytest

from agentcomm.dispatcher import (
    OPERATION_PARAMS,
    PROTOCOL_VERSION,
    TOOL_NAME_PATTERN,
    TOOLS,
    Operation,
)


def rpc(method, params=None, request_id=1):
    request = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        request["params"] = params
    return request


class TestMethodTable:
    """Test dual naming of operations."""

    def test_both_names_share_one_handler(self, dispatcher):
        """Legacy and tool names resolve to the same handler object."""
        for op in Operation:
            assert dispatcher.resolve(op.legacy_name) is dispatcher.resolve(op.value)
            assert dispatcher.resolve(op.value) is not None

    def test_tool_names_are_portable(self):
        """Every tool name matches the portable pattern and has no slash."""
        for op in Operation:
            assert TOOL_NAME_PATTERN.match(op.value)
            assert "/" in op.legacy_name

    def test_legacy_name(self):
        """Only the first hyphen becomes a slash."""
        assert Operation.AGENT_REGISTER.legacy_name == "agent/register"
        assert Operation.RELATIONSHIP_LIST.legacy_name == "relationship/list"

    def test_manifest_covers_every_operation(self):
        """tools/list has one entry per operation with camelCase params."""
        names = {tool.name for tool in TOOLS}
        assert names == {op.value for op in Operation}
        assert set(OPERATION_PARAMS) == set(Operation)

        register = next(t for t in TOOLS if t.name == "agent-register")
        assert "agentId" in register.inputSchema["properties"]
        assert register.inputSchema["required"] == ["agentId"]


class TestDispatch:
    """Test the JSON-RPC envelope."""

    async def test_unknown_method(self, dispatcher):
        """Unknown methods return -32601 with the request id intact."""
        response = await dispatcher.dispatch(rpc("agent/explode", request_id=42))

        assert response["id"] == 42
        assert response["error"]["code"] == -32601
        assert "agent/explode" in response["error"]["message"]

    async def test_handler_error(self, dispatcher):
        """Handler exceptions become -32603 with the message."""
        response = await dispatcher.dispatch(rpc("task-create", {"agentId": "ghost", "task": {"title": "x"}}, 7))

        assert response["id"] == 7
        assert response["error"]["code"] == -32603
        assert "ghost" in response["error"]["message"]

    async def test_params_validation_error(self, dispatcher):
        """Missing required params are reported as internal errors."""
        response = await dispatcher.dispatch(rpc("agent-register", {}))
        assert response["error"]["code"] == -32603

    async def test_parse_error(self, dispatcher):
        """Malformed JSON gets -32700 and a null id."""
        response = await dispatcher.dispatch_line("{oops")
        assert response["id"] is None
        assert response["error"]["code"] == -32700

    async def test_notification_has_no_response(self, dispatcher):
        """Requests without an id are not answered."""
        assert await dispatcher.dispatch({"jsonrpc": "2.0", "method": "notifications/initialized"}) is None
        assert await dispatcher.dispatch({"jsonrpc": "2.0", "method": "nope"}) is None

    async def test_empty_result(self, dispatcher):
        """A handler returning nothing yields an empty result."""
        response = await dispatcher.dispatch(rpc("initialized"))
        assert response["result"] == {}


class TestProtocolMethods:
    """Test handshake and discovery."""

    async def test_initialize(self, dispatcher):
        """initialize advertises the protocol version and capabilities."""
        response = await dispatcher.dispatch(rpc("initialize", {"clientInfo": {"name": "test"}}))
        result = response["result"]

        assert result["protocolVersion"] == PROTOCOL_VERSION
        assert set(result["capabilities"]) == {"tools", "resources", "prompts", "logging"}
        assert result["serverInfo"]["name"] == "agentcomm"

    async def test_tools_list(self, dispatcher):
        """tools/list returns the static manifest."""
        response = await dispatcher.dispatch(rpc("tools/list"))
        tools = response["result"]["tools"]
        assert len(tools) == len(Operation)
        assert all("inputSchema" in tool for tool in tools)

    async def test_empty_listings(self, dispatcher):
        """resources/list and prompts/list are empty."""
        assert (await dispatcher.dispatch(rpc("resources/list")))["result"] == {"resources": []}
        assert (await dispatcher.dispatch(rpc("prompts/list")))["result"] == {"prompts": []}

    async def test_tools_call_either_name(self, dispatcher):
        """tools/call accepts both naming schemes and wraps results as text."""
        for name in ("agent-status", "agent/status"):
            response = await dispatcher.dispatch(rpc("tools/call", {"name": name, "arguments": {"agentId": "a"}}))
            content = response["result"]["content"]

            assert len(content) == 1
            assert content[0]["type"] == "text"
            assert json.loads(content[0]["text"])["status"]["agentId"] == "a"

    async def test_tools_call_unknown_tool(self, dispatcher):
        """Unknown tool names are method-not-found errors."""
        response = await dispatcher.dispatch(rpc("tools/call", {"name": "initialize"}))
        assert response["error"]["code"] == -32601


class TestOperations:
    """Test operation results."""

    async def test_register(self, dispatcher):
        """agent-register reports updates and counts registrations."""
        result = await dispatcher.call("agent/register", {"agentId": "c", "capabilities": {"x": 1}})
        assert result["wasUpdated"] is False
        assert result["registrationCount"] == 1

        again = await dispatcher.call("agent-register", {"agentId": "c", "forceUpdate": True})
        assert again["wasUpdated"] is True
        assert again["registrationCount"] == 2

    async def test_register_emits_event(self, dispatcher):
        """Listeners hear about registrations and created tasks."""
        events = []

        async def listener(event, params):
            events.append((event, params))

        dispatcher.add_listener(listener)
        await dispatcher.call("agent-register", {"agentId": "c"})
        await dispatcher.call("task-create", {"agentId": "c", "task": {"title": "T"}})

        assert [e for e, _ in events] == ["agent/registered", "task/created"]
        assert events[1][1]["agentId"] == "c"

    async def test_task_get(self, dispatcher):
        """task-get returns one collection, all collections or a single task."""
        created = await dispatcher.call("task-create", {"agentId": "a", "task": {"title": "T1"}})

        pending = await dispatcher.call("task-get", {"agentId": "a", "state": "pending"})
        assert [t["id"] for t in pending["tasks"]] == [created["taskId"]]

        everything = await dispatcher.call("task/get", {"agentId": "a"})
        assert set(everything["tasks"]) == {"pending", "active", "completed"}

        single = await dispatcher.call("task-get", {"agentId": "a", "taskId": created["taskId"]})
        assert single["state"] == "pending"
        assert single["task"]["title"] == "T1"

    async def test_task_get_invalid_state(self, dispatcher):
        """Unknown states are rejected."""
        response = await dispatcher.dispatch(rpc("task-get", {"agentId": "a", "state": "archived"}))
        assert response["error"]["code"] == -32603

    async def test_incorporation_guidance(self, dispatcher):
        """Completing someone else's task returns an advisory follow-up."""
        created = await dispatcher.call(
            "task-create",
            {"agentId": "b", "task": {"title": "Build API", "deliverables": ["d1"]}, "createdBy": "a"},
        )

        result = await dispatcher.call(
            "task-update",
            {"agentId": "b", "taskId": created["taskId"], "status": "completed", "deliverables": []},
        )

        assert result["incorporation_needed"] is True
        guidance = result["incorporation_guidance"]
        assert guidance["creator_agent"] == "a"
        assert guidance["completed_by"] == "b"
        suggested = guidance["suggested_incorporation_task"]
        assert suggested["title"] == "Incorporate changes from: Build API"
        assert suggested["target_agent_id"] == "a"
        assert suggested["agent_id"] == "a"
        assert suggested["reference_task_id"] == created["taskId"]
        assert suggested["deliverables"] == ["d1"]
        assert "incorporation" in suggested["metadata"]["tags"]
        assert len(guidance["implementation_steps"]) == 3

        # Advisory only: nothing was enqueued for the creator
        assert (await dispatcher.call("task-get", {"agentId": "a", "state": "pending"}))["tasks"] == []

    async def test_no_guidance_for_own_task(self, dispatcher):
        """Completing your own task carries no incorporation payload."""
        created = await dispatcher.call("task-create", {"agentId": "a", "task": {"title": "Mine"}})
        result = await dispatcher.call("task-update", {"agentId": "a", "taskId": created["taskId"], "status": "completed"})
        assert "incorporation_needed" not in result

    async def test_relationship_operations(self, dispatcher):
        """relationship add/list/update/remove round through the manager."""
        added = await dispatcher.call(
            "relationship-add", {"agentId": "a", "targetAgentId": "b", "relationshipType": "producer"}
        )
        assert added["added"] is True
        duplicate = await dispatcher.call(
            "relationship/add", {"agentId": "a", "targetAgentId": "b", "relationshipType": "producer"}
        )
        assert duplicate["added"] is False

        updated = await dispatcher.call(
            "relationship-update", {"agentId": "a", "targetAgentId": "b", "status": "inactive"}
        )
        assert updated["updated"] is True

        listing = await dispatcher.call("relationship-list", {"agentId": "a", "targetAgentId": "b"})
        assert listing["relatedAgents"] == ["b"]
        assert listing["relationshipType"] == {"category": "producer", "type": "direct"}
        assert listing["stats"]["inactiveRelationships"] == 1
        assert listing["relationships"]["producers"][0]["agentId"] == "b"

        removed = await dispatcher.call("relationship-remove", {"agentId": "a", "targetAgentId": "b"})
        assert removed["removed"] is True

    async def test_invalid_relationship_type(self, dispatcher):
        """Relationship categories are validated."""
        response = await dispatcher.dispatch(
            rpc("relationship-add", {"agentId": "a", "targetAgentId": "b", "relationshipType": "friend"})
        )
        assert response["error"]["code"] == -32603

    async def test_context_and_messages(self, dispatcher):
        """context-update appends; message-send plus mailbox-poll delivers."""
        await dispatcher.call("context-update", {"agentId": "a", "context": "Shipped v1"})
        context = await dispatcher.call("context-get", {"agentId": "a"})
        assert "Shipped v1" in context["context"]

        sent = await dispatcher.call(
            "message-send",
            {"fromAgentId": "a", "toAgentId": "b", "messageType": "CONTEXT_SYNC", "messageData": {"details": "v1"}},
        )
        assert sent["messageId"]

        polled = await dispatcher.call("mailbox-poll")
        assert polled["processed"] == 1
        assert "Context sync from a" in (await dispatcher.call("context-get", {"agentId": "b"}))["context"]

    async def test_task_request(self, dispatcher):
        """task-request returns the request and derived task ids."""
        result = await dispatcher.call(
            "task-request", {"fromAgentId": "a", "toAgentId": "b", "taskRequest": {"title": "Review"}}
        )
        assert result["requestId"] != result["taskId"]

        await dispatcher.call("mailbox/poll")
        pending = await dispatcher.call("task-get", {"agentId": "b", "state": "pending"})
        assert pending["tasks"][0]["id"] == result["taskId"]
