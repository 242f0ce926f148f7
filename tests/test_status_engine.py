"""
TaskFlow - Status Transition Engine Tests
=========================================

Blocking rules, idempotence, and history ordering.
"""

from uuid import uuid4

import pytest

from taskflow.core.models import Feature, FeatureStatus, Task, TaskStatus
from taskflow.core.workflow import (
    EntityKind,
    FailureCode,
    HierarchyService,
    StatusTransitionEngine,
    TransitionResult,
    WorkflowFailure,
)
from taskflow.core.workflow.status_engine import DEFAULT_REASON


@pytest.fixture
async def other_task(hierarchy: HierarchyService, task: Task) -> Task:
    return await hierarchy.create_task(task.feature_id, "Validate coupon")


class TestTransition:
    async def test_applies_status(self, engine: StatusTransitionEngine, task: Task):
        result = await engine.transition_status(EntityKind.TASK, task.id, TaskStatus.READY)

        assert isinstance(result, TransitionResult)
        assert result.previous_status == "backlog"
        assert result.new_status == "ready"
        assert result.already_current is False
        assert task.status == TaskStatus.READY
        assert len(task.status_history) == 1

    async def test_history_entry(self, engine: StatusTransitionEngine, task: Task):
        result = await engine.transition_status("task", task.id, "in_progress")

        entry = result.history_entry
        assert entry["status"] == "in_progress"
        assert entry["changed_by"] == "tester"
        assert entry["reason"] == DEFAULT_REASON
        assert task.status_history[0] == entry

    async def test_changed_by_override(self, engine: StatusTransitionEngine, task: Task):
        result = await engine.transition_status("task", task.id, "ready", changed_by="reviewer")

        assert result.history_entry["changed_by"] == "reviewer"

    async def test_string_and_enum_inputs(self, engine: StatusTransitionEngine, feature: Feature):
        result = await engine.transition_status("feature", feature.id, FeatureStatus.READY)

        assert result.new_status == "ready"
        assert result.entity_kind == "feature"

    async def test_bumps_status_updated_at(self, engine: StatusTransitionEngine, task: Task):
        before = task.status_updated_at

        await engine.transition_status("task", task.id, "ready")

        assert task.status_updated_at != before

    async def test_missing_entity(self, engine: StatusTransitionEngine):
        result = await engine.transition_status("task", uuid4(), "ready")

        assert isinstance(result, WorkflowFailure)
        assert result.code == FailureCode.ENTITY_NOT_FOUND

    async def test_unknown_kind(self, engine: StatusTransitionEngine, task: Task):
        result = await engine.transition_status("epic", task.id, "ready")

        assert isinstance(result, WorkflowFailure)
        assert result.code == FailureCode.INVALID_ARGUMENT

    async def test_status_from_other_kind_rejected(self, engine: StatusTransitionEngine, task: Task, feature: Feature):
        task_result = await engine.transition_status("task", task.id, "planned")
        feature_result = await engine.transition_status("feature", feature.id, "needs_revision")

        assert task_result.code == FailureCode.INVALID_STATUS
        assert feature_result.code == FailureCode.INVALID_STATUS
        assert task.status_history == []


class TestIdempotence:
    async def test_same_status_twice(self, engine: StatusTransitionEngine, task: Task):
        first = await engine.transition_status("task", task.id, "ready")
        second = await engine.transition_status("task", task.id, "ready")

        assert first.already_current is False
        assert second.already_current is True
        assert second.history_entry is None
        assert len(task.status_history) == 1

    async def test_current_status_is_noop(self, engine: StatusTransitionEngine, task: Task):
        result = await engine.transition_status("task", task.id, "backlog")

        assert result.already_current is True
        assert task.status_history == []

    async def test_blocked_twice_identical(self, engine: StatusTransitionEngine, task: Task, other_task: Task):
        for _ in range(2):
            result = await engine.transition_status(
                "task", task.id, "blocked",
                blocking_reason="needs validation", blocked_by_id=other_task.id,
            )

        assert result.already_current is True
        assert len(task.status_history) == 1

    async def test_blocked_with_new_reason_is_a_change(
        self, engine: StatusTransitionEngine, task: Task, other_task: Task,
    ):
        await engine.transition_status(
            "task", task.id, "blocked", blocking_reason="first", blocked_by_id=other_task.id,
        )
        result = await engine.transition_status(
            "task", task.id, "blocked", blocking_reason="second", blocked_by_id=other_task.id,
        )

        assert result.already_current is False
        assert task.blocking_reason == "second"
        assert len(task.status_history) == 2


class TestBlocking:
    async def test_blocked_requires_both_fields(self, engine: StatusTransitionEngine, task: Task, other_task: Task):
        no_info = await engine.transition_status("task", task.id, "blocked")
        no_blocker = await engine.transition_status("task", task.id, "blocked", blocking_reason="x")
        no_reason = await engine.transition_status("task", task.id, "blocked", blocked_by_id=other_task.id)

        for result in (no_info, no_blocker, no_reason):
            assert isinstance(result, WorkflowFailure)
            assert result.code == FailureCode.MISSING_BLOCKING_INFO
        assert task.status == TaskStatus.BACKLOG

    async def test_self_blocking(self, engine: StatusTransitionEngine, task: Task):
        result = await engine.transition_status(
            "task", task.id, "blocked", blocking_reason="x", blocked_by_id=task.id,
        )

        assert isinstance(result, WorkflowFailure)
        assert result.code == FailureCode.SELF_BLOCKING_NOT_ALLOWED
        assert task.status_history == []

    async def test_blocker_must_exist(self, engine: StatusTransitionEngine, task: Task):
        result = await engine.transition_status(
            "task", task.id, "blocked", blocking_reason="x", blocked_by_id=uuid4(),
        )

        assert isinstance(result, WorkflowFailure)
        assert result.code == FailureCode.BLOCKING_ENTITY_NOT_FOUND

    async def test_blocker_must_be_same_kind(self, engine: StatusTransitionEngine, task: Task, feature: Feature):
        result = await engine.transition_status(
            "task", task.id, "blocked", blocking_reason="x", blocked_by_id=feature.id,
        )

        assert isinstance(result, WorkflowFailure)
        assert result.code == FailureCode.BLOCKING_ENTITY_NOT_FOUND

    async def test_blocked_sets_fields_and_reason(self, engine: StatusTransitionEngine, task: Task, other_task: Task):
        result = await engine.transition_status(
            "task", task.id, "blocked", blocking_reason="needs validation", blocked_by_id=other_task.id,
        )

        assert result.new_status == "blocked"
        assert task.blocked_by_id == other_task.id
        assert task.blocking_reason == "needs validation"
        assert task.status_history[0]["reason"] == "needs validation"

    async def test_unblocking_clears_fields(self, engine: StatusTransitionEngine, task: Task, other_task: Task):
        await engine.transition_status(
            "task", task.id, "blocked", blocking_reason="x", blocked_by_id=other_task.id,
        )

        await engine.transition_status("task", task.id, "ready")

        assert task.blocked_by_id is None
        assert task.blocking_reason is None

    async def test_mutual_blocking_accepted(self, engine: StatusTransitionEngine, task: Task, other_task: Task):
        """Only direct self-blocking is rejected."""
        first = await engine.transition_status(
            "task", task.id, "blocked", blocking_reason="a", blocked_by_id=other_task.id,
        )
        second = await engine.transition_status(
            "task", other_task.id, "blocked", blocking_reason="b", blocked_by_id=task.id,
        )

        assert isinstance(first, TransitionResult)
        assert isinstance(second, TransitionResult)

    async def test_feature_blocks_feature(
        self, engine: StatusTransitionEngine, hierarchy: HierarchyService, feature: Feature,
    ):
        payments = await hierarchy.create_feature(feature.application_id, "Payments")

        result = await engine.transition_status(
            "feature", feature.id, "blocked", blocking_reason="needs payments", blocked_by_id=payments.id,
        )

        assert result.new_status == "blocked"
        assert feature.blocked_by_id == payments.id


class TestHistory:
    async def test_most_recent_first(self, engine: StatusTransitionEngine, task: Task):
        sequence = ["ready", "in_progress", "in_review", "needs_revision", "in_progress", "completed"]
        for status in sequence:
            await engine.transition_status("task", task.id, status)

        assert len(task.status_history) == len(sequence)
        assert [e["status"] for e in task.status_history] == list(reversed(sequence))
        assert task.status_history[0]["status"] == task.status.value

    async def test_history_survives_reload(
        self, engine: StatusTransitionEngine, hierarchy: HierarchyService, task: Task,
    ):
        await engine.transition_status("task", task.id, "ready")
        await engine.transition_status("task", task.id, "in_progress")

        reloaded = await hierarchy.get_task(task.id)

        assert [e["status"] for e in reloaded.status_history] == ["in_progress", "ready"]


class TestSideEffects:
    async def test_feature_reports_task_counts(
        self, engine: StatusTransitionEngine, hierarchy: HierarchyService, task: Task, other_task: Task,
    ):
        await engine.transition_status("task", other_task.id, "completed")

        result = await engine.transition_status("feature", task.feature_id, "completed")

        assert result.task_counts["backlog"] == 1
        assert result.task_counts["completed"] == 1
        assert result.feature_progress is None
        # Child tasks are left alone
        assert (await hierarchy.get_task(task.id)).status == TaskStatus.BACKLOG

    async def test_task_reports_feature_progress(
        self, engine: StatusTransitionEngine, task: Task, other_task: Task,
    ):
        first = await engine.transition_status("task", task.id, "completed")
        assert first.feature_progress.remaining == 1
        assert not first.feature_progress.feature_completed

        second = await engine.transition_status("task", other_task.id, "completed")
        assert second.feature_progress.remaining == 0
        assert second.feature_progress.feature_completed
        assert second.task_counts is None

    async def test_feature_status_untouched_by_tasks(
        self, engine: StatusTransitionEngine, hierarchy: HierarchyService, task: Task,
    ):
        await engine.transition_status("task", task.id, "completed")

        feature = await hierarchy.get_feature(task.feature_id)

        assert feature.status == FeatureStatus.PLANNED
