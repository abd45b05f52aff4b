"""Tests for the REST API."""

import pytest
from fastapi.testclient import TestClient

from agentcomm.rest import create_app


class TestRestAPI:
    """Test the HTTP routes over the dispatcher."""

    @pytest.fixture
    def client(self, coordinator):
        return TestClient(create_app(coordinator=coordinator))

    def test_health(self, client):
        """Health reports the registered agents."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["agents"] == 2

    def test_register(self, client):
        """Registering a new agent creates its namespace."""
        response = client.post("/api/agents/register", json={"agentId": "c", "capabilities": {"x": 1}})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["wasUpdated"] is False
        assert body["registrationCount"] == 1

    def test_register_missing_id(self, client):
        """A missing agent id is a client error."""
        response = client.post("/api/agents/register", json={"capabilities": {}})
        assert response.status_code == 400

    def test_unknown_agent_is_404(self, client):
        """Operations on unknown agents return 404."""
        response = client.get("/api/agents/ghost/status")

        assert response.status_code == 404
        assert "ghost" in response.json()["detail"]

    def test_system_status(self, client):
        """System status lists every agent."""
        response = client.get("/api/system/status")

        assert response.status_code == 200
        assert response.json()["status"]["totalAgents"] == 2

    def test_task_lifecycle(self, client):
        """Create, activate and complete a task over HTTP."""
        created = client.post("/api/agents/a/tasks", json={"title": "Write docs", "description": "API guide"})
        assert created.status_code == 200
        task_id = created.json()["taskId"]

        pending = client.get("/api/agents/a/tasks", params={"state": "pending"})
        assert [t["id"] for t in pending.json()["tasks"]] == [task_id]

        started = client.put(f"/api/agents/a/tasks/{task_id}", json={"status": "in_progress"})
        assert started.status_code == 200

        done = client.put(
            f"/api/agents/a/tasks/{task_id}",
            json={"status": "completed", "deliverables": ["docs/api.md"]},
        )
        assert done.status_code == 200
        assert done.json()["task"]["deliverables"] == ["docs/api.md"]

        everything = client.get("/api/agents/a/tasks").json()["tasks"]
        assert [t["id"] for t in everything["completed"]] == [task_id]

    def test_invalid_task_is_400(self, client):
        """Tasks without a title are rejected."""
        response = client.post("/api/agents/a/tasks", json={"description": "no title"})
        assert response.status_code == 400

    def test_invalid_transition_is_400(self, client):
        """Moving a task back to pending is rejected."""
        task_id = client.post("/api/agents/a/tasks", json={"title": "T", "description": "D"}).json()["taskId"]

        response = client.put(f"/api/agents/a/tasks/{task_id}", json={"status": "pending"})
        assert response.status_code == 400

    def test_request_task(self, client, coordinator):
        """Task requests land in the target's pending queue after a poll."""
        response = client.post("/api/agents/a/requests/b", json={"title": "API", "description": "Build it"})

        assert response.status_code == 200
        task_id = response.json()["taskId"]
        assert coordinator.poll() == 1
        pending = client.get("/api/agents/b/tasks", params={"state": "pending"}).json()["tasks"]
        assert pending[0]["id"] == task_id
        assert pending[0]["created_by"] == "a"

    def test_relationships(self, client):
        """Relationships can be added, listed and removed."""
        added = client.post(
            "/api/agents/a/relationships",
            json={"targetAgentId": "b", "relationshipType": "producer"},
        )
        assert added.json()["added"] is True

        listed = client.get("/api/agents/a/relationships").json()
        assert listed["relatedAgents"] == ["b"]

        removed = client.delete("/api/agents/a/relationships/b")
        assert removed.json()["removed"] is True

    def test_bad_relationship_type(self, client):
        """Unknown relationship categories are a client error."""
        response = client.post(
            "/api/agents/a/relationships",
            json={"targetAgentId": "b", "relationshipType": "friends"},
        )
        assert response.status_code == 400

    def test_context(self, client):
        """Context updates are appended and readable."""
        client.put("/api/agents/a/context", json={"context": "Switched to REST"})

        response = client.get("/api/agents/a/context")
        assert "Switched to REST" in response.json()["context"]

    def test_send_message(self, client):
        """Messages are written to both mailboxes."""
        response = client.post(
            "/api/agents/a/messages/b",
            json={"messageType": "STATUS_UPDATE", "messageData": {"task_id": "t1", "status": "blocked"}},
        )

        assert response.status_code == 200
        assert response.json()["messageId"]

    def test_docs(self, client):
        """The docs route lists the API endpoints."""
        endpoints = client.get("/api/docs").json()["endpoints"]

        paths = {(e["method"], e["path"]) for e in endpoints}
        assert ("POST", "/api/agents/register") in paths
        assert ("DELETE", "/api/agents/{agent_id}/relationships/{target_agent_id}") in paths
