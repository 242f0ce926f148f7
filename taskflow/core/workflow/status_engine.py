"""
Status Transition Engine - Feature and Task lifecycle changes.

Validates blocking information, applies the new status, and prepends an
entry to the entity's inline status history.

Rules:
- BLOCKED requires both a blocking reason and a blocker of the same kind
- a blocker must exist and must not be the entity itself
- an identical (status, blocker, reason) request is a no-op
- leaving BLOCKED clears both blocking fields

Only direct self-blocking is rejected. Longer cycles (A blocks B blocks A)
are accepted as-is.

Child tasks are never transitioned automatically. Feature transitions
report task counts, task transitions report their feature's completion, and
the caller decides what to do with them.
"""

import enum
from typing import Optional, Union
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.core.config import settings
from taskflow.core.models import Feature, FeatureStatus, Task, TaskStatus, utcnow
from taskflow.core.workflow.hierarchy import HierarchyService
from taskflow.core.workflow.results import (
    FailureCode,
    TransitionResult,
    WorkflowError,
    workflow_operation,
)

logger = structlog.get_logger()


class EntityKind(str, enum.Enum):
    """Entities that carry a status lifecycle."""
    FEATURE = "feature"
    TASK = "task"


DEFAULT_REASON = "Status updated"


class StatusTransitionEngine:
    """
    Applies status changes to features and tasks.

    Each call re-reads the entity before validating, so a transition is
    checked against the stored state rather than a cached copy.
    """

    MODELS = {
        EntityKind.FEATURE: Feature,
        EntityKind.TASK: Task,
    }

    STATUSES = {
        EntityKind.FEATURE: FeatureStatus,
        EntityKind.TASK: TaskStatus,
    }

    # Feature statuses after which callers usually look at remaining tasks
    FEATURE_CLOSING_STATUSES = {
        FeatureStatus.COMPLETED,
        FeatureStatus.WONT_DO,
        FeatureStatus.ABANDONED,
    }

    def __init__(self, db: AsyncSession, actor: Optional[str] = None):
        self.db = db
        self.actor = actor or settings.STATUS_CHANGE_ACTOR
        self.hierarchy = HierarchyService(db)

    @workflow_operation("transition_status")
    async def transition_status(
        self,
        entity_kind: Union[EntityKind, str],
        entity_id: UUID,
        target_status: Union[FeatureStatus, TaskStatus, str],
        blocking_reason: Optional[str] = None,
        blocked_by_id: Optional[UUID] = None,
        changed_by: Optional[str] = None,
    ) -> TransitionResult:
        """
        Move a feature or task to target_status.

        Args:
            entity_kind: "feature" or "task"
            entity_id: Entity to transition
            target_status: Status from the entity kind's own status set
            blocking_reason: Required when target_status is blocked
            blocked_by_id: Blocking entity of the same kind; required when
                target_status is blocked
            changed_by: Recorded in the history entry (defaults to the
                engine's actor)

        Returns:
            TransitionResult, with already_current=True when nothing changed
        """
        kind = self._coerce_kind(entity_kind)
        model = self.MODELS[kind]
        status = self._coerce_status(kind, target_status)
        blocking_reason = (blocking_reason or "").strip() or None

        entity = await self._load(model, entity_id)
        if entity is None:
            raise WorkflowError(
                FailureCode.ENTITY_NOT_FOUND,
                f"{model.__name__} {entity_id} does not exist",
            )

        blocked = status.value == "blocked"
        if blocked and (blocking_reason is None or blocked_by_id is None):
            raise WorkflowError(
                FailureCode.MISSING_BLOCKING_INFO,
                "A blocked status requires both a blocking reason and the blocking entity",
                blocking_reason=blocking_reason,
                blocked_by_id=str(blocked_by_id) if blocked_by_id else None,
            )
        if blocked_by_id is not None:
            await self._validate_blocker(model, entity, blocked_by_id)

        requested = (
            status,
            blocked_by_id if blocked else None,
            blocking_reason if blocked else None,
        )
        current = (entity.status, entity.blocked_by_id, entity.blocking_reason)
        previous_status = entity.status.value

        if requested == current:
            logger.info(
                "Status already current",
                entity_kind=kind.value,
                entity_id=str(entity.id),
                status=status.value,
            )
            return await self._result(kind, entity, previous_status, already_current=True)

        entity.blocked_by_id = requested[1]
        entity.blocking_reason = requested[2]
        entry = entity.record_status_change(
            status,
            changed_by=changed_by or self.actor,
            reason=blocking_reason or DEFAULT_REASON,
            changed_at=utcnow(),
        )
        await self.db.commit()

        logger.info(
            "Status transition applied",
            entity_kind=kind.value,
            entity_id=str(entity.id),
            previous_status=previous_status,
            new_status=status.value,
            history_length=len(entity.status_history),
        )
        return await self._result(kind, entity, previous_status, already_current=False, entry=entry)

    # ======================================================================
    # Validation
    # ======================================================================

    async def _validate_blocker(self, model: type, entity, blocked_by_id: UUID) -> None:
        if blocked_by_id == entity.id:
            raise WorkflowError(
                FailureCode.SELF_BLOCKING_NOT_ALLOWED,
                f"{model.__name__} {entity.id} cannot block itself",
            )
        if await self.db.get(model, blocked_by_id) is None:
            raise WorkflowError(
                FailureCode.BLOCKING_ENTITY_NOT_FOUND,
                f"Blocking {model.__name__.lower()} {blocked_by_id} does not exist",
            )

    def _coerce_kind(self, entity_kind: Union[EntityKind, str]) -> EntityKind:
        try:
            return EntityKind(entity_kind)
        except ValueError:
            raise WorkflowError(
                FailureCode.INVALID_ARGUMENT,
                f"Unknown entity kind: {entity_kind}",
            ) from None

    def _coerce_status(self, kind: EntityKind, target_status) -> enum.Enum:
        """Statuses are only valid within their own kind's set."""
        status_cls = self.STATUSES[kind]
        if isinstance(target_status, enum.Enum):
            target_status = target_status.value
        try:
            return status_cls(target_status)
        except ValueError:
            allowed = ", ".join(s.value for s in status_cls)
            raise WorkflowError(
                FailureCode.INVALID_STATUS,
                f"'{target_status}' is not a valid {kind.value} status (allowed: {allowed})",
            ) from None

    # ======================================================================
    # Helpers
    # ======================================================================

    async def _load(self, model: type, entity_id: UUID):
        result = await self.db.execute(
            select(model)
            .where(model.id == entity_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _result(
        self,
        kind: EntityKind,
        entity,
        previous_status: str,
        already_current: bool,
        entry: Optional[dict] = None,
    ) -> TransitionResult:
        result = TransitionResult(
            entity_kind=kind.value,
            entity_id=entity.id,
            previous_status=previous_status,
            new_status=entity.status.value,
            already_current=already_current,
            history_entry=entry,
        )

        if kind == EntityKind.FEATURE:
            result.task_counts = await self.hierarchy.task_counts(entity.id)
            if entity.status in self.FEATURE_CLOSING_STATUSES:
                open_tasks = sum(
                    count for status, count in result.task_counts.items()
                    if status != TaskStatus.COMPLETED.value
                )
                if open_tasks:
                    logger.info(
                        "Feature closed with unfinished tasks",
                        feature_id=str(entity.id),
                        status=entity.status.value,
                        open_tasks=open_tasks,
                    )
        else:
            result.feature_progress = await self.hierarchy.compute_completion(entity.feature_id)

        return result
