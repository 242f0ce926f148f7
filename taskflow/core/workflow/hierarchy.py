"""
Hierarchy Service - Application -> Feature -> Task creation and queries.

Creation enforces that the parent exists and that the name is unique within
it. Status is set once at creation; later changes go through the
StatusTransitionEngine.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Union
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.core.models import (
    Application,
    Feature,
    FeatureStatus,
    Task,
    TaskStatus,
)
from taskflow.core.workflow.results import (
    FailureCode,
    FeatureCompletion,
    WorkflowError,
    workflow_operation,
)

logger = structlog.get_logger()


@dataclass
class FeatureSummary:
    """Feature with its task counts keyed by task status."""
    feature: Feature
    task_counts: dict[str, int] = field(default_factory=dict)

    @property
    def total_tasks(self) -> int:
        return sum(self.task_counts.values())


def empty_task_counts() -> dict[str, int]:
    return {status.value: 0 for status in TaskStatus}


class HierarchyService:
    """Creates and reads applications, features and tasks."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ======================================================================
    # Applications
    # ======================================================================

    @workflow_operation("create_application")
    async def create_application(
        self,
        name: str,
        description: Optional[str] = None,
        repository_url: Optional[str] = None,
    ) -> Application:
        name = _require_name(name)
        existing = await self.db.scalar(
            select(Application.id).where(Application.name == name)
        )
        if existing is not None:
            raise WorkflowError(
                FailureCode.DUPLICATE_NAME,
                f"Application '{name}' already exists",
                existing_id=str(existing),
            )

        application = Application(
            name=name,
            description=description,
            repository_url=repository_url,
        )
        await self._insert(application, f"Application '{name}' already exists")
        logger.info("Application created", application_id=str(application.id), name=name)
        return application

    @workflow_operation("list_applications")
    async def list_applications(self) -> list[Application]:
        result = await self.db.execute(select(Application).order_by(Application.name))
        return list(result.scalars().all())

    @workflow_operation("get_application")
    async def get_application(self, application_id: UUID) -> Application:
        return await self._get_or_raise(Application, application_id)

    # ======================================================================
    # Features
    # ======================================================================

    @workflow_operation("create_feature")
    async def create_feature(
        self,
        application_id: UUID,
        name: str,
        description: Optional[str] = None,
        status: Union[FeatureStatus, str] = FeatureStatus.PLANNED,
        priority: int = 1,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Feature:
        name = _require_name(name)
        status = _coerce(FeatureStatus, status)

        if await self.db.get(Application, application_id) is None:
            raise WorkflowError(
                FailureCode.PARENT_NOT_FOUND,
                f"Application {application_id} does not exist",
            )
        existing = await self.db.scalar(
            select(Feature.id).where(
                Feature.application_id == application_id,
                Feature.name == name,
            )
        )
        if existing is not None:
            raise WorkflowError(
                FailureCode.DUPLICATE_NAME,
                f"Feature '{name}' already exists for this application",
                existing_id=str(existing),
            )

        feature = Feature(
            application_id=application_id,
            name=name,
            description=description,
            status=status,
            priority=priority,
            metadata_=dict(metadata or {}),
            status_history=[],
        )
        await self._insert(feature, f"Feature '{name}' already exists for this application")
        logger.info("Feature created", feature_id=str(feature.id), name=name, status=status.value)
        return feature

    @workflow_operation("get_feature")
    async def get_feature(self, feature_id: UUID) -> Feature:
        return await self._get_or_raise(Feature, feature_id)

    @workflow_operation("list_features")
    async def list_features(
        self,
        application_id: UUID,
        status: Optional[Union[FeatureStatus, str]] = None,
    ) -> list[FeatureSummary]:
        """Features of an application, most urgent first, with task counts."""
        await self._get_or_raise(Application, application_id, FailureCode.PARENT_NOT_FOUND)

        query = select(Feature).where(Feature.application_id == application_id)
        if status is not None:
            query = query.where(Feature.status == _coerce(FeatureStatus, status))
        query = query.order_by(Feature.priority.desc(), Feature.created_at)
        features = list((await self.db.execute(query)).scalars().all())

        counts: dict[UUID, dict[str, int]] = {f.id: empty_task_counts() for f in features}
        if features:
            rows = await self.db.execute(
                select(Task.feature_id, Task.status, func.count())
                .where(Task.feature_id.in_(counts.keys()))
                .group_by(Task.feature_id, Task.status)
            )
            for feature_id, task_status, count in rows:
                counts[feature_id][task_status.value] = count

        return [FeatureSummary(feature=f, task_counts=counts[f.id]) for f in features]

    # ======================================================================
    # Tasks
    # ======================================================================

    @workflow_operation("create_task")
    async def create_task(
        self,
        feature_id: UUID,
        name: str,
        description: Optional[str] = None,
        acceptance_criteria: Optional[str] = None,
        status: Union[TaskStatus, str] = TaskStatus.BACKLOG,
        priority: int = 1,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Task:
        name = _require_name(name)
        status = _coerce(TaskStatus, status)

        if await self.db.get(Feature, feature_id) is None:
            raise WorkflowError(
                FailureCode.PARENT_NOT_FOUND,
                f"Feature {feature_id} does not exist",
            )
        existing = await self.db.scalar(
            select(Task.id).where(Task.feature_id == feature_id, Task.name == name)
        )
        if existing is not None:
            raise WorkflowError(
                FailureCode.DUPLICATE_NAME,
                f"Task '{name}' already exists for this feature",
                existing_id=str(existing),
            )

        task = Task(
            feature_id=feature_id,
            name=name,
            description=description,
            acceptance_criteria=acceptance_criteria,
            status=status,
            priority=priority,
            metadata_=dict(metadata or {}),
            status_history=[],
        )
        await self._insert(task, f"Task '{name}' already exists for this feature")
        logger.info("Task created", task_id=str(task.id), name=name, status=status.value)
        return task

    @workflow_operation("get_task")
    async def get_task(self, task_id: UUID) -> Task:
        return await self._get_or_raise(Task, task_id)

    @workflow_operation("list_tasks")
    async def list_tasks(
        self,
        feature_id: UUID,
        status: Optional[Union[TaskStatus, str]] = None,
    ) -> list[Task]:
        await self._get_or_raise(Feature, feature_id, FailureCode.PARENT_NOT_FOUND)

        query = select(Task).where(Task.feature_id == feature_id)
        if status is not None:
            query = query.where(Task.status == _coerce(TaskStatus, status))
        query = query.order_by(Task.priority.desc(), Task.created_at)
        return list((await self.db.execute(query)).scalars().all())

    # ======================================================================
    # Feature Progress Queries
    # ======================================================================

    @workflow_operation("next_task")
    async def next_task(
        self,
        feature_id: UUID,
        exclude_task_id: Optional[UUID] = None,
    ) -> Optional[Task]:
        """Most urgent task in the feature that is not completed, if any."""
        await self._get_or_raise(Feature, feature_id)
        return await self.find_next_task(feature_id, exclude_task_id)

    @workflow_operation("feature_completion")
    async def feature_completion(self, feature_id: UUID) -> FeatureCompletion:
        await self._get_or_raise(Feature, feature_id)
        return await self.compute_completion(feature_id)

    async def find_next_task(
        self,
        feature_id: UUID,
        exclude_task_id: Optional[UUID] = None,
    ) -> Optional[Task]:
        query = select(Task).where(
            Task.feature_id == feature_id,
            Task.status != TaskStatus.COMPLETED,
        )
        if exclude_task_id is not None:
            query = query.where(Task.id != exclude_task_id)
        query = query.order_by(
            Task.priority.desc(),
            Task.created_at.asc(),
            Task.id.asc(),
        ).limit(1)
        return (await self.db.execute(query)).scalar_one_or_none()

    async def compute_completion(self, feature_id: UUID) -> FeatureCompletion:
        counts = await self.task_counts(feature_id)
        return FeatureCompletion(
            feature_id=feature_id,
            total=sum(counts.values()),
            completed=counts[TaskStatus.COMPLETED.value],
        )

    async def task_counts(self, feature_id: UUID) -> dict[str, int]:
        """Task counts by status for one feature, every status present."""
        counts = empty_task_counts()
        rows = await self.db.execute(
            select(Task.status, func.count())
            .where(Task.feature_id == feature_id)
            .group_by(Task.status)
        )
        for task_status, count in rows:
            counts[task_status.value] = count
        return counts

    # ======================================================================
    # Helpers
    # ======================================================================

    async def _get_or_raise(
        self,
        model: type,
        entity_id: UUID,
        code: FailureCode = FailureCode.ENTITY_NOT_FOUND,
    ):
        entity = await self.db.get(model, entity_id)
        if entity is None:
            raise WorkflowError(code, f"{model.__name__} {entity_id} does not exist")
        return entity

    async def _insert(self, entity: Any, duplicate_message: str) -> None:
        """Insert and commit; a unique-constraint race reads as a duplicate."""
        self.db.add(entity)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise WorkflowError(FailureCode.DUPLICATE_NAME, duplicate_message) from e
        await self.db.refresh(entity)


def _require_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise WorkflowError(FailureCode.INVALID_ARGUMENT, "Name is required")
    return name


def _coerce(enum_cls, value):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise WorkflowError(
            FailureCode.INVALID_STATUS,
            f"'{value}' is not a valid {enum_cls.__name__} (allowed: {allowed})",
        ) from None
