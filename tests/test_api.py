"""
TaskFlow - API Tests
====================

HTTP facade: request validation, response shapes, failure code mapping.
"""

from uuid import uuid4

import pytest
from httpx import AsyncClient

from taskflow.api.deps import FAILURE_STATUS_CODES
from taskflow.core.workflow import FailureCode

API = "/api/v1"


@pytest.fixture
async def app_id(client: AsyncClient) -> str:
    response = await client.post(f"{API}/applications", json={"name": "Shop"})
    return response.json()["id"]


@pytest.fixture
async def feature_id(client: AsyncClient, app_id: str) -> str:
    response = await client.post(f"{API}/applications/{app_id}/features", json={"name": "Checkout"})
    return response.json()["id"]


@pytest.fixture
async def task_id(client: AsyncClient, feature_id: str) -> str:
    response = await client.post(f"{API}/features/{feature_id}/tasks", json={"name": "Add coupon field"})
    return response.json()["id"]


@pytest.fixture
async def session_id(client: AsyncClient, task_id: str) -> str:
    response = await client.post(f"{API}/sessions", json={"task_type": "code-editing", "task_id": task_id})
    return response.json()["session"]["id"]


# ==========================================================================
# Health
# ==========================================================================

class TestHealth:
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"

    async def test_root(self, client: AsyncClient):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["api"] == API


class TestFailureMapping:
    def test_every_code_is_mapped(self):
        assert set(FAILURE_STATUS_CODES) == set(FailureCode)

    @pytest.mark.parametrize(
        "code",
        [
            FailureCode.MISSING_BLOCKING_INFO,
            FailureCode.SELF_BLOCKING_NOT_ALLOWED,
            FailureCode.INVALID_STATUS,
            FailureCode.INVALID_ARGUMENT,
        ],
    )
    def test_validation_failures_are_422(self, code: FailureCode):
        assert FAILURE_STATUS_CODES[code] == 422


# ==========================================================================
# Hierarchy
# ==========================================================================

class TestApplications:
    async def test_create(self, client: AsyncClient):
        response = await client.post(
            f"{API}/applications",
            json={"name": "Shop", "repository_url": "https://example.com/shop.git"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Shop"
        assert "id" in data
        assert "created_at" in data

    async def test_duplicate(self, client: AsyncClient, app_id: str):
        response = await client.post(f"{API}/applications", json={"name": "Shop"})

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "duplicate_name"

    async def test_blank_name(self, client: AsyncClient):
        response = await client.post(f"{API}/applications", json={"name": ""})

        assert response.status_code == 422

    async def test_list_and_get(self, client: AsyncClient, app_id: str):
        listed = await client.get(f"{API}/applications")
        fetched = await client.get(f"{API}/applications/{app_id}")

        assert [a["id"] for a in listed.json()] == [app_id]
        assert fetched.json()["name"] == "Shop"

    async def test_get_not_found(self, client: AsyncClient):
        response = await client.get(f"{API}/applications/{uuid4()}")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "entity_not_found"


class TestFeatures:
    async def test_create(self, client: AsyncClient, app_id: str):
        response = await client.post(
            f"{API}/applications/{app_id}/features",
            json={"name": "Checkout", "priority": 3, "metadata": {"scope_paths": ["src/*"]}},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "planned"
        assert data["priority"] == 3
        assert data["metadata"] == {"scope_paths": ["src/*"]}
        assert data["status_history"] == []

    async def test_parent_not_found(self, client: AsyncClient):
        response = await client.post(f"{API}/applications/{uuid4()}/features", json={"name": "Checkout"})

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "parent_not_found"

    async def test_invalid_status(self, client: AsyncClient, app_id: str):
        response = await client.post(
            f"{API}/applications/{app_id}/features",
            json={"name": "Checkout", "status": "needs_revision"},
        )

        assert response.status_code == 422

    async def test_list_with_counts(self, client: AsyncClient, app_id: str, task_id: str):
        response = await client.get(f"{API}/applications/{app_id}/features")

        assert response.status_code == 200
        [feature] = response.json()
        assert feature["task_counts"]["backlog"] == 1
        assert feature["total_tasks"] == 1

    async def test_list_status_filter(self, client: AsyncClient, app_id: str, feature_id: str):
        response = await client.get(f"{API}/applications/{app_id}/features?status=completed")

        assert response.json() == []

    async def test_transition(self, client: AsyncClient, feature_id: str, task_id: str):
        response = await client.post(f"{API}/features/{feature_id}/status", json={"status": "in_progress"})

        assert response.status_code == 200
        data = response.json()
        assert data["previous_status"] == "planned"
        assert data["new_status"] == "in_progress"
        assert data["task_counts"]["backlog"] == 1

    async def test_completion_and_next_task(self, client: AsyncClient, feature_id: str, task_id: str):
        completion = await client.get(f"{API}/features/{feature_id}/completion")
        next_task = await client.get(f"{API}/features/{feature_id}/next-task")
        excluded = await client.get(f"{API}/features/{feature_id}/next-task", params={"exclude_task_id": task_id})

        assert completion.json() == {
            "feature_id": feature_id,
            "total": 1,
            "completed": 0,
            "remaining": 1,
            "feature_completed": False,
        }
        assert next_task.json()["next_task"]["id"] == task_id
        assert excluded.json()["next_task"] is None


class TestTasks:
    async def test_create_and_list(self, client: AsyncClient, feature_id: str):
        created = await client.post(
            f"{API}/features/{feature_id}/tasks",
            json={"name": "Validate coupon", "acceptance_criteria": "Rejects expired coupons", "priority": 2},
        )
        listed = await client.get(f"{API}/features/{feature_id}/tasks")

        assert created.status_code == 201
        assert created.json()["status"] == "backlog"
        assert [t["name"] for t in listed.json()] == ["Validate coupon"]

    async def test_duplicate(self, client: AsyncClient, feature_id: str, task_id: str):
        response = await client.post(f"{API}/features/{feature_id}/tasks", json={"name": "Add coupon field"})

        assert response.status_code == 409

    async def test_transition_history(self, client: AsyncClient, task_id: str):
        await client.post(f"{API}/tasks/{task_id}/status", json={"status": "ready"})
        await client.post(f"{API}/tasks/{task_id}/status", json={"status": "in_progress"})

        task = (await client.get(f"{API}/tasks/{task_id}")).json()

        assert task["status"] == "in_progress"
        assert [e["status"] for e in task["status_history"]] == ["in_progress", "ready"]

    async def test_already_current(self, client: AsyncClient, task_id: str):
        response = await client.post(f"{API}/tasks/{task_id}/status", json={"status": "backlog"})

        assert response.status_code == 200
        assert response.json()["already_current"] is True

    async def test_blocked_without_info(self, client: AsyncClient, task_id: str):
        response = await client.post(f"{API}/tasks/{task_id}/status", json={"status": "blocked"})

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "missing_blocking_info"

    async def test_self_blocking(self, client: AsyncClient, task_id: str):
        response = await client.post(
            f"{API}/tasks/{task_id}/status",
            json={"status": "blocked", "blocking_reason": "x", "blocked_by_id": task_id},
        )

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "self_blocking_not_allowed"

    async def test_blocker_not_found(self, client: AsyncClient, task_id: str):
        response = await client.post(
            f"{API}/tasks/{task_id}/status",
            json={"status": "blocked", "blocking_reason": "x", "blocked_by_id": str(uuid4())},
        )

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "blocking_entity_not_found"

    async def test_wrong_status_set(self, client: AsyncClient, task_id: str):
        response = await client.post(f"{API}/tasks/{task_id}/status", json={"status": "planned"})

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "invalid_status"

    async def test_task_progress(self, client: AsyncClient, task_id: str):
        response = await client.post(f"{API}/tasks/{task_id}/status", json={"status": "completed"})

        assert response.json()["feature_progress"]["feature_completed"] is True


# ==========================================================================
# Sessions
# ==========================================================================

class TestSessions:
    async def test_initialize(self, client: AsyncClient, task_id: str):
        response = await client.post(
            f"{API}/sessions",
            json={"task_type": "code-editing", "task_id": task_id, "context_description": "coupon"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["session"]["status"] == "active"
        assert data["session"]["compliance_score"] == 100
        assert "Add coupon field" in data["scope_statement"]
        assert data["previous_sessions"] == []

    async def test_initialize_missing_link(self, client: AsyncClient):
        response = await client.post(f"{API}/sessions", json={"task_type": "research", "task_id": str(uuid4())})

        assert response.status_code == 404

    async def test_get_with_stats(self, client: AsyncClient, session_id: str):
        await client.post(f"{API}/sessions/{session_id}/file-changes", json={"file_path": "a.ts", "change_type": "created"})

        response = await client.get(f"{API}/sessions/{session_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["session"]["id"] == session_id
        assert data["stats"]["files_changed"] == 1

    async def test_get_unknown(self, client: AsyncClient):
        response = await client.get(f"{API}/sessions/nope")

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "invalid_or_inactive_session"

    async def test_checkpoint_needed(self, client: AsyncClient, session_id: str):
        response = await client.get(f"{API}/sessions/{session_id}/checkpoint-needed")

        assert response.json() == {"session_id": session_id, "checkpoint_needed": False}

    async def test_tracked_actions(self, client: AsyncClient, session_id: str):
        checkpoint = await client.post(
            f"{API}/sessions/{session_id}/checkpoints",
            json={"progress": "p", "changes_description": "c", "current_thinking": "t"},
        )
        decision = await client.post(
            f"{API}/sessions/{session_id}/decisions",
            json={"description": "d", "reasoning": "r"},
        )
        snapshot = await client.post(
            f"{API}/sessions/{session_id}/snapshots",
            json={"file_path": "a.ts", "content": "  indented\n"},
        )
        duplicate = await client.post(
            f"{API}/sessions/{session_id}/snapshots",
            json={"file_path": "a.ts", "content": "  indented\n"},
        )

        assert checkpoint.status_code == 201
        assert decision.status_code == 201
        assert snapshot.json()["duplicate"] is False
        assert duplicate.status_code == 200
        assert duplicate.json()["duplicate"] is True
        assert duplicate.json()["existing_snapshot_id"] == snapshot.json()["snapshot"]["id"]

    async def test_scope_violation_is_200(self, client: AsyncClient, feature_id: str):
        task = await client.post(
            f"{API}/features/{feature_id}/tasks",
            json={"name": "Scoped", "metadata": {"scope_paths": ["src/*"]}},
        )
        session = await client.post(f"{API}/sessions", json={"task_type": "code-editing", "task_id": task.json()["id"]})
        sid = session.json()["session"]["id"]

        response = await client.post(
            f"{API}/sessions/{sid}/file-changes",
            json={"file_path": "docs/readme.md", "change_type": "modified"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["accepted"] is False
        assert data["compliance_score"] == 90
        assert data["violation"]["result"] == "violation"

    async def test_end_then_terminal(self, client: AsyncClient, session_id: str):
        ended = await client.post(f"{API}/sessions/{session_id}/end", json={"summary": "done"})
        after = await client.post(
            f"{API}/sessions/{session_id}/file-changes",
            json={"file_path": "a.ts", "change_type": "created"},
        )

        assert ended.status_code == 200
        assert ended.json()["session"]["status"] == "completed"
        assert after.status_code == 409
        assert after.json()["detail"]["code"] == "session_not_active"

    async def test_end_requires_summary(self, client: AsyncClient, session_id: str):
        response = await client.post(f"{API}/sessions/{session_id}/end", json={"summary": ""})

        assert response.status_code == 422

    async def test_abandon(self, client: AsyncClient, session_id: str):
        response = await client.post(f"{API}/sessions/{session_id}/abandon", json={"reason": "wrong task"})

        assert response.status_code == 200
        assert response.json()["status"] == "abandoned"
        assert response.json()["summary"] == "wrong task"

    async def test_feedback(self, client: AsyncClient, session_id: str):
        response = await client.post(
            f"{API}/sessions/{session_id}/feedback",
            json={
                "feedback_type": "positive",
                "description": "Checkpoint every few edits",
                "applicable_task_types": ["code-editing"],
                "reusability_score": 8,
            },
        )

        assert response.status_code == 201
        assert response.json()["applicable_task_types"] == ["code-editing"]

    async def test_task_session_history(self, client: AsyncClient, task_id: str, session_id: str):
        await client.post(
            f"{API}/sessions/{session_id}/checkpoints",
            json={"progress": "p", "changes_description": "c", "current_thinking": "t"},
        )

        response = await client.get(f"{API}/tasks/{task_id}/sessions")

        assert response.status_code == 200
        [entry] = response.json()
        assert entry["session"]["id"] == session_id
        assert len(entry["checkpoints"]) == 1
