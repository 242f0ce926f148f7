"""
TaskFlow - Hierarchy API
========================

Application, feature and task endpoints, status transitions, and the
feature progress queries.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from taskflow.api.deps import Hierarchy, StatusEngine, Tracker, unwrap
from taskflow.core.models import FeatureStatus, TaskStatus
from taskflow.core.schemas import (
    ApplicationCreate,
    ApplicationResponse,
    FeatureCompletionResponse,
    FeatureCreate,
    FeatureResponse,
    FeatureSummaryResponse,
    NextTaskResponse,
    SessionHistoryResponse,
    StatusChangeRequest,
    TaskCreate,
    TaskResponse,
    TransitionResponse,
)
from taskflow.core.workflow import EntityKind, FeatureSummary

router = APIRouter(tags=["Hierarchy"])


def summary_response(summary: FeatureSummary) -> FeatureSummaryResponse:
    feature = FeatureResponse.model_validate(summary.feature)
    return FeatureSummaryResponse(
        **feature.model_dump(),
        task_counts=summary.task_counts,
        total_tasks=summary.total_tasks,
    )


# ==========================================================================
# Applications
# ==========================================================================

@router.post(
    "/applications",
    response_model=ApplicationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create application",
    responses={409: {"description": "Name already in use"}},
)
async def create_application(
    data: ApplicationCreate,
    hierarchy: Hierarchy,
) -> ApplicationResponse:
    application = unwrap(await hierarchy.create_application(
        name=data.name,
        description=data.description,
        repository_url=data.repository_url,
    ))
    return ApplicationResponse.model_validate(application)


@router.get(
    "/applications",
    response_model=list[ApplicationResponse],
    summary="List applications",
)
async def list_applications(hierarchy: Hierarchy) -> list[ApplicationResponse]:
    applications = unwrap(await hierarchy.list_applications())
    return [ApplicationResponse.model_validate(a) for a in applications]


@router.get(
    "/applications/{application_id}",
    response_model=ApplicationResponse,
    summary="Get application",
)
async def get_application(application_id: UUID, hierarchy: Hierarchy) -> ApplicationResponse:
    return ApplicationResponse.model_validate(unwrap(await hierarchy.get_application(application_id)))


# ==========================================================================
# Features
# ==========================================================================

@router.post(
    "/applications/{application_id}/features",
    response_model=FeatureResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create feature",
    responses={
        404: {"description": "Application not found"},
        409: {"description": "Name already in use within the application"},
    },
)
async def create_feature(
    application_id: UUID,
    data: FeatureCreate,
    hierarchy: Hierarchy,
) -> FeatureResponse:
    feature = unwrap(await hierarchy.create_feature(
        application_id=application_id,
        name=data.name,
        description=data.description,
        status=data.status,
        priority=data.priority,
        metadata=data.metadata,
    ))
    return FeatureResponse.model_validate(feature)


@router.get(
    "/applications/{application_id}/features",
    response_model=list[FeatureSummaryResponse],
    summary="List features with task counts",
)
async def list_features(
    application_id: UUID,
    hierarchy: Hierarchy,
    status_filter: Optional[FeatureStatus] = Query(
        None, alias="status", description="Filter by status"
    ),
) -> list[FeatureSummaryResponse]:
    summaries = unwrap(await hierarchy.list_features(application_id, status=status_filter))
    return [summary_response(s) for s in summaries]


@router.get(
    "/features/{feature_id}",
    response_model=FeatureResponse,
    summary="Get feature",
)
async def get_feature(feature_id: UUID, hierarchy: Hierarchy) -> FeatureResponse:
    return FeatureResponse.model_validate(unwrap(await hierarchy.get_feature(feature_id)))


@router.post(
    "/features/{feature_id}/status",
    response_model=TransitionResponse,
    summary="Change feature status",
    responses={
        404: {"description": "Feature or blocking feature not found"},
        422: {"description": "Invalid status or blocking information"},
    },
)
async def change_feature_status(
    feature_id: UUID,
    data: StatusChangeRequest,
    engine: StatusEngine,
) -> TransitionResponse:
    """
    Move a feature to another status.

    Child tasks are not touched; the response carries their counts by
    status so the caller can decide what to do with them.
    """
    result = unwrap(await engine.transition_status(
        EntityKind.FEATURE,
        feature_id,
        data.status,
        blocking_reason=data.blocking_reason,
        blocked_by_id=data.blocked_by_id,
        changed_by=data.changed_by,
    ))
    return TransitionResponse.model_validate(result)


@router.get(
    "/features/{feature_id}/next-task",
    response_model=NextTaskResponse,
    summary="Next actionable task",
)
async def get_next_task(
    feature_id: UUID,
    hierarchy: Hierarchy,
    exclude_task_id: Optional[UUID] = Query(None, description="Task to skip"),
) -> NextTaskResponse:
    task = unwrap(await hierarchy.next_task(feature_id, exclude_task_id=exclude_task_id))
    return NextTaskResponse(
        feature_id=feature_id,
        next_task=TaskResponse.model_validate(task) if task else None,
    )


@router.get(
    "/features/{feature_id}/completion",
    response_model=FeatureCompletionResponse,
    summary="Feature task completion",
)
async def get_feature_completion(
    feature_id: UUID,
    hierarchy: Hierarchy,
) -> FeatureCompletionResponse:
    return FeatureCompletionResponse.model_validate(
        unwrap(await hierarchy.feature_completion(feature_id))
    )


# ==========================================================================
# Tasks
# ==========================================================================

@router.post(
    "/features/{feature_id}/tasks",
    response_model=TaskResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create task",
    responses={
        404: {"description": "Feature not found"},
        409: {"description": "Name already in use within the feature"},
    },
)
async def create_task(
    feature_id: UUID,
    data: TaskCreate,
    hierarchy: Hierarchy,
) -> TaskResponse:
    task = unwrap(await hierarchy.create_task(
        feature_id=feature_id,
        name=data.name,
        description=data.description,
        acceptance_criteria=data.acceptance_criteria,
        status=data.status,
        priority=data.priority,
        metadata=data.metadata,
    ))
    return TaskResponse.model_validate(task)


@router.get(
    "/features/{feature_id}/tasks",
    response_model=list[TaskResponse],
    summary="List tasks",
)
async def list_tasks(
    feature_id: UUID,
    hierarchy: Hierarchy,
    status_filter: Optional[TaskStatus] = Query(
        None, alias="status", description="Filter by status"
    ),
) -> list[TaskResponse]:
    tasks = unwrap(await hierarchy.list_tasks(feature_id, status=status_filter))
    return [TaskResponse.model_validate(t) for t in tasks]


@router.get(
    "/tasks/{task_id}",
    response_model=TaskResponse,
    summary="Get task",
)
async def get_task(task_id: UUID, hierarchy: Hierarchy) -> TaskResponse:
    return TaskResponse.model_validate(unwrap(await hierarchy.get_task(task_id)))


@router.post(
    "/tasks/{task_id}/status",
    response_model=TransitionResponse,
    summary="Change task status",
    responses={
        404: {"description": "Task or blocking task not found"},
        422: {"description": "Invalid status or blocking information"},
    },
)
async def change_task_status(
    task_id: UUID,
    data: StatusChangeRequest,
    engine: StatusEngine,
) -> TransitionResponse:
    """
    Move a task to another status.

    The response includes the feature's completion figures; when nothing
    is left open the caller may want to close the feature.
    """
    result = unwrap(await engine.transition_status(
        EntityKind.TASK,
        task_id,
        data.status,
        blocking_reason=data.blocking_reason,
        blocked_by_id=data.blocked_by_id,
        changed_by=data.changed_by,
    ))
    return TransitionResponse.model_validate(result)


@router.get(
    "/tasks/{task_id}/sessions",
    response_model=list[SessionHistoryResponse],
    summary="Session history for a task",
)
async def get_task_sessions(task_id: UUID, tracker: Tracker) -> list[SessionHistoryResponse]:
    entries = unwrap(await tracker.session_history(task_id))
    return [SessionHistoryResponse.model_validate(e) for e in entries]
