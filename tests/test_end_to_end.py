"""
TaskFlow - End-to-End Tests
===========================

One task taken from backlog to a closed session, through the services
and through the HTTP API.
"""

from httpx import AsyncClient

from taskflow.core.models import ChangeType, FeatureStatus, SessionStatus, TaskStatus
from taskflow.core.workflow import (
    EndSessionResult,
    HierarchyService,
    SessionComplianceTracker,
    StatusTransitionEngine,
)

API = "/api/v1"


class TestCouponWorkflow:
    async def test_services(
        self,
        hierarchy: HierarchyService,
        engine: StatusTransitionEngine,
        tracker: SessionComplianceTracker,
    ):
        application = await hierarchy.create_application("Shop")
        feature = await hierarchy.create_feature(application.id, "Checkout")
        task = await hierarchy.create_task(feature.id, "Add coupon field")
        assert feature.status == FeatureStatus.PLANNED
        assert task.status == TaskStatus.BACKLOG

        await engine.transition_status("task", task.id, "ready")
        await engine.transition_status("task", task.id, "in_progress")

        assert task.status == TaskStatus.IN_PROGRESS
        assert len(task.status_history) == 2
        assert task.status_history[0]["status"] == "in_progress"

        init = await tracker.initialize_session("code-editing", task_id=task.id)
        session_id = init.session.id

        change = await tracker.record_file_change(session_id, "src/checkout.ts", ChangeType.MODIFIED)
        assert change.accepted
        assert change.compliance_score == 100

        await tracker.create_checkpoint(
            session_id,
            progress="Coupon input rendered",
            changes_description="Modified src/checkout.ts",
            current_thinking="Validation comes next",
        )

        result = await tracker.end_session(session_id, "added coupon field")

        assert isinstance(result, EndSessionResult)
        assert result.session.status == SessionStatus.COMPLETED
        assert result.session.end_time is not None
        assert result.next_task is None
        # The task itself is still in progress
        assert result.feature_completed is False
        assert result.stats.files_changed == 1
        assert result.stats.checkpoints == 1

    async def test_http(self, client: AsyncClient):
        app_id = (await client.post(f"{API}/applications", json={"name": "Shop"})).json()["id"]
        feature_id = (await client.post(
            f"{API}/applications/{app_id}/features", json={"name": "Checkout"},
        )).json()["id"]
        task_id = (await client.post(
            f"{API}/features/{feature_id}/tasks", json={"name": "Add coupon field"},
        )).json()["id"]

        for status in ("ready", "in_progress"):
            response = await client.post(f"{API}/tasks/{task_id}/status", json={"status": status})
            assert response.status_code == 200

        session = await client.post(f"{API}/sessions", json={"task_type": "code-editing", "task_id": task_id})
        session_id = session.json()["session"]["id"]

        change = await client.post(
            f"{API}/sessions/{session_id}/file-changes",
            json={"file_path": "src/checkout.ts", "change_type": "modified"},
        )
        assert change.json()["accepted"] is True
        assert change.json()["compliance_score"] == 100

        checkpoint = await client.post(
            f"{API}/sessions/{session_id}/checkpoints",
            json={
                "progress": "Coupon input rendered",
                "changes_description": "Modified src/checkout.ts",
                "current_thinking": "Validation comes next",
            },
        )
        assert checkpoint.status_code == 201

        ended = await client.post(f"{API}/sessions/{session_id}/end", json={"summary": "added coupon field"})

        assert ended.status_code == 200
        data = ended.json()
        assert data["session"]["status"] == "completed"
        assert data["session"]["end_time"] is not None
        assert data["next_task"] is None
        assert data["feature_completed"] is False
        assert data["completion"]["remaining"] == 1

        task = (await client.get(f"{API}/tasks/{task_id}")).json()
        assert [e["status"] for e in task["status_history"]] == ["in_progress", "ready"]
