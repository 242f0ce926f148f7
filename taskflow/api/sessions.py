"""
TaskFlow - Sessions API
=======================

Session lifecycle and tracked actions.

Every tracked action requires an active session: 409 with code
session_not_active once the session has ended or been abandoned.
"""

from fastapi import APIRouter, status

from taskflow.api.deps import Tracker, unwrap
from taskflow.core.schemas import (
    AbandonSessionRequest,
    CheckpointCreate,
    CheckpointNeededResponse,
    CheckpointResponse,
    DecisionCreate,
    DecisionResponse,
    EndSessionRequest,
    EndSessionResponse,
    FeedbackCreate,
    FeedbackResponse,
    FileChangeCreate,
    FileChangeResultResponse,
    SessionCreate,
    SessionDetailResponse,
    SessionInitResponse,
    SessionResponse,
    SessionStatsResponse,
    SnapshotCreate,
    SnapshotResultResponse,
)

router = APIRouter(prefix="/sessions", tags=["Sessions"])


# ==========================================================================
# Lifecycle
# ==========================================================================

@router.post(
    "",
    response_model=SessionInitResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Initialize session",
    responses={404: {"description": "Linked application, feature or task not found"}},
)
async def initialize_session(data: SessionCreate, tracker: Tracker) -> SessionInitResponse:
    """
    Start an active session, optionally linked to the hierarchy.

    The response includes the scope statement, recent sessions on the same
    task, and proven strategies for the task type.
    """
    result = unwrap(await tracker.initialize_session(
        task_type=data.task_type,
        context_description=data.context_description,
        application_id=data.application_id,
        feature_id=data.feature_id,
        task_id=data.task_id,
    ))
    return SessionInitResponse.model_validate(result)


@router.get(
    "/{session_id}",
    response_model=SessionDetailResponse,
    summary="Get session with stats",
)
async def get_session(session_id: str, tracker: Tracker) -> SessionDetailResponse:
    session = unwrap(await tracker.get_session(session_id))
    stats = unwrap(await tracker.session_stats(session_id))
    return SessionDetailResponse(
        session=SessionResponse.model_validate(session),
        stats=SessionStatsResponse.model_validate(stats),
    )


@router.get(
    "/{session_id}/checkpoint-needed",
    response_model=CheckpointNeededResponse,
    summary="Is a checkpoint due",
)
async def checkpoint_needed(session_id: str, tracker: Tracker) -> CheckpointNeededResponse:
    needed = unwrap(await tracker.checkpoint_needed(session_id))
    return CheckpointNeededResponse(session_id=session_id, checkpoint_needed=needed)


@router.post(
    "/{session_id}/end",
    response_model=EndSessionResponse,
    summary="End session",
    responses={409: {"description": "Session not found or not active"}},
)
async def end_session(
    session_id: str,
    data: EndSessionRequest,
    tracker: Tracker,
) -> EndSessionResponse:
    """
    Complete the session. Terminal.

    next_task and feature_completed are hints only; nothing is transitioned.
    """
    result = unwrap(await tracker.end_session(session_id, data.summary))
    return EndSessionResponse.model_validate(result)


@router.post(
    "/{session_id}/abandon",
    response_model=SessionResponse,
    summary="Abandon session",
    responses={409: {"description": "Session not found or not active"}},
)
async def abandon_session(
    session_id: str,
    data: AbandonSessionRequest,
    tracker: Tracker,
) -> SessionResponse:
    session = unwrap(await tracker.abandon_session(session_id, reason=data.reason))
    return SessionResponse.model_validate(session)


# ==========================================================================
# Tracked Actions
# ==========================================================================

@router.post(
    "/{session_id}/file-changes",
    response_model=FileChangeResultResponse,
    summary="Record file change",
)
async def record_file_change(
    session_id: str,
    data: FileChangeCreate,
    tracker: Tracker,
) -> FileChangeResultResponse:
    """
    Record a file operation.

    An out-of-scope operation still returns 200 with accepted=false: the
    violation is recorded and the compliance score reduced.
    """
    result = unwrap(await tracker.record_file_change(session_id, data.file_path, data.change_type))
    return FileChangeResultResponse.model_validate(result)


@router.post(
    "/{session_id}/checkpoints",
    response_model=CheckpointResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create checkpoint",
)
async def create_checkpoint(
    session_id: str,
    data: CheckpointCreate,
    tracker: Tracker,
) -> CheckpointResponse:
    checkpoint = unwrap(await tracker.create_checkpoint(
        session_id,
        progress=data.progress,
        changes_description=data.changes_description,
        current_thinking=data.current_thinking,
        next_steps=data.next_steps,
    ))
    return CheckpointResponse.model_validate(checkpoint)


@router.post(
    "/{session_id}/decisions",
    response_model=DecisionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Log decision",
)
async def log_decision(
    session_id: str,
    data: DecisionCreate,
    tracker: Tracker,
) -> DecisionResponse:
    decision = unwrap(await tracker.log_decision(
        session_id,
        description=data.description,
        reasoning=data.reasoning,
        alternatives=data.alternatives,
    ))
    return DecisionResponse.model_validate(decision)


@router.post(
    "/{session_id}/snapshots",
    response_model=SnapshotResultResponse,
    summary="Create snapshot",
)
async def create_snapshot(
    session_id: str,
    data: SnapshotCreate,
    tracker: Tracker,
) -> SnapshotResultResponse:
    """Identical content for the same file is reported as duplicate=true."""
    result = unwrap(await tracker.create_snapshot(session_id, data.file_path, data.content))
    return SnapshotResultResponse.model_validate(result)


@router.post(
    "/{session_id}/feedback",
    response_model=FeedbackResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record feedback",
)
async def record_feedback(
    session_id: str,
    data: FeedbackCreate,
    tracker: Tracker,
) -> FeedbackResponse:
    feedback = unwrap(await tracker.record_feedback(
        session_id,
        feedback_type=data.feedback_type,
        description=data.description,
        applicable_task_types=data.applicable_task_types,
        reusability_score=data.reusability_score,
        tags=data.tags,
        decision_id=data.decision_id,
    ))
    return FeedbackResponse.model_validate(feedback)
