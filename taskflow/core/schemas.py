"""
TaskFlow - Pydantic Schemas
===========================

Request and response schemas for API validation.
Responses are built from ORM rows and workflow result dataclasses.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from taskflow.core.models import (
    ChangeType,
    FeatureStatus,
    FeedbackType,
    SessionStatus,
    SessionTaskType,
    TaskStatus,
    ValidationResult,
    ValidationType,
)


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class TimestampSchema(BaseSchema):
    """Schema with timestamp fields."""

    created_at: datetime
    updated_at: datetime


# ==========================================================================
# Hierarchy Schemas
# ==========================================================================

class ApplicationCreate(BaseSchema):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    repository_url: Optional[str] = Field(None, max_length=2000)


class ApplicationResponse(TimestampSchema):
    id: UUID
    name: str
    description: Optional[str] = None
    repository_url: Optional[str] = None


class FeatureCreate(BaseSchema):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    status: FeatureStatus = FeatureStatus.PLANNED
    priority: int = Field(1, description="Higher = more urgent")
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Open key/value bag; may declare scope_paths and excluded_paths",
    )


class TaskCreate(BaseSchema):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    acceptance_criteria: Optional[str] = None
    status: TaskStatus = TaskStatus.BACKLOG
    priority: int = Field(1, description="Higher = more urgent")
    metadata: dict[str, Any] = Field(default_factory=dict)


class StatusHistoryEntry(BaseSchema):
    """One entry of an entity's inline status history."""

    status: str
    changed_at: str
    changed_by: str
    reason: str


class StatusTrackedResponse(TimestampSchema):
    """Fields shared by features and tasks."""

    id: UUID
    name: str
    description: Optional[str] = None
    priority: int
    blocking_reason: Optional[str] = None
    blocked_by_id: Optional[UUID] = None
    status_updated_at: datetime
    status_history: list[StatusHistoryEntry] = []
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("metadata_", "metadata"),
    )


class FeatureResponse(StatusTrackedResponse):
    application_id: UUID
    status: FeatureStatus


class FeatureSummaryResponse(FeatureResponse):
    """Feature with task counts keyed by task status."""

    task_counts: dict[str, int] = {}
    total_tasks: int = 0


class TaskResponse(StatusTrackedResponse):
    feature_id: UUID
    acceptance_criteria: Optional[str] = None
    status: TaskStatus


class StatusChangeRequest(BaseSchema):
    """
    Request to move a feature or task to another status.

    status is validated against the entity kind's own status set by the
    transition engine.
    """

    status: str
    blocking_reason: Optional[str] = None
    blocked_by_id: Optional[UUID] = None
    changed_by: Optional[str] = Field(None, max_length=255)


class FeatureCompletionResponse(BaseSchema):
    feature_id: UUID
    total: int
    completed: int
    remaining: int
    feature_completed: bool


class TransitionResponse(BaseSchema):
    entity_kind: str
    entity_id: UUID
    previous_status: str
    new_status: str
    already_current: bool
    history_entry: Optional[StatusHistoryEntry] = None
    task_counts: Optional[dict[str, int]] = None
    feature_progress: Optional[FeatureCompletionResponse] = None


class NextTaskResponse(BaseSchema):
    feature_id: UUID
    next_task: Optional[TaskResponse] = None


# ==========================================================================
# Session Schemas
# ==========================================================================

class SessionCreate(BaseSchema):
    task_type: SessionTaskType
    context_description: Optional[str] = None
    application_id: Optional[UUID] = None
    feature_id: Optional[UUID] = None
    task_id: Optional[UUID] = None


class SessionResponse(BaseSchema):
    id: str
    task_id: Optional[UUID] = None
    feature_id: Optional[UUID] = None
    application_id: Optional[UUID] = None
    task_type: SessionTaskType
    context_description: Optional[str] = None
    status: SessionStatus
    start_time: datetime
    end_time: Optional[datetime] = None
    summary: Optional[str] = None
    last_checkpoint_at: Optional[datetime] = None
    last_file_change_at: Optional[datetime] = None
    last_decision_at: Optional[datetime] = None
    compliance_score: int


class SessionStatsResponse(BaseSchema):
    session_id: str
    compliance_score: int
    files_changed: int
    checkpoints: int
    decisions: int
    snapshots: int
    scope_violations: int
    files: dict[str, dict[str, int]] = {}


class SessionDetailResponse(BaseSchema):
    session: SessionResponse
    stats: SessionStatsResponse


class FeedbackCreate(BaseSchema):
    feedback_type: FeedbackType
    description: str = Field(min_length=1)
    applicable_task_types: list[SessionTaskType] = Field(min_length=1)
    reusability_score: Optional[int] = Field(None, ge=1, le=10)
    tags: Optional[list[str]] = None
    decision_id: Optional[UUID] = None


class FeedbackResponse(BaseSchema):
    id: UUID
    session_id: Optional[str] = None
    decision_id: Optional[UUID] = None
    feedback_type: FeedbackType
    description: str
    reusability_score: Optional[int] = None
    applicable_task_types: list[str] = []
    tags: Optional[list[str]] = None
    created_at: datetime


class SessionInitResponse(BaseSchema):
    session: SessionResponse
    scope_statement: str
    first_checkpoint_due: datetime
    previous_sessions: list[SessionResponse] = []
    proven_strategies: list[FeedbackResponse] = []


class CheckpointNeededResponse(BaseSchema):
    session_id: str
    checkpoint_needed: bool


# ==========================================================================
# Tracked Action Schemas
# ==========================================================================

class FileChangeCreate(BaseSchema):
    file_path: str = Field(min_length=1)
    change_type: ChangeType


class FileChangeResponse(BaseSchema):
    id: UUID
    session_id: str
    file_path: str
    change_type: ChangeType
    timestamp: datetime


class ScopeValidationResponse(BaseSchema):
    id: UUID
    session_id: str
    validation_type: ValidationType
    result: ValidationResult
    details: str
    timestamp: datetime


class FileChangeResultResponse(BaseSchema):
    """accepted=False means the change was out of scope and not recorded."""

    accepted: bool
    compliance_score: int
    checkpoint_due: bool
    stats: SessionStatsResponse
    file_change: Optional[FileChangeResponse] = None
    violation: Optional[ScopeValidationResponse] = None
    warnings: list[str] = []


class CheckpointCreate(BaseSchema):
    progress: str = Field(min_length=1)
    changes_description: str = Field(min_length=1)
    current_thinking: str = Field(min_length=1)
    next_steps: Optional[str] = None


class CheckpointResponse(BaseSchema):
    id: UUID
    session_id: str
    progress: str
    changes_description: str
    current_thinking: str
    next_steps: Optional[str] = None
    timestamp: datetime


class DecisionCreate(BaseSchema):
    description: str = Field(min_length=1)
    reasoning: str = Field(min_length=1)
    alternatives: Optional[str] = None


class DecisionResponse(BaseSchema):
    id: UUID
    session_id: str
    description: str
    reasoning: str
    alternatives: Optional[str] = None
    timestamp: datetime


class SnapshotCreate(BaseSchema):
    # Content is captured byte-for-byte
    model_config = ConfigDict(str_strip_whitespace=False)

    file_path: str = Field(min_length=1)
    content: str


class SnapshotResponse(BaseSchema):
    id: UUID
    session_id: str
    file_path: str
    content_hash: str
    timestamp: datetime


class SnapshotResultResponse(BaseSchema):
    """duplicate=True means identical content was already captured."""

    content_hash: str
    duplicate: bool
    snapshot: Optional[SnapshotResponse] = None
    existing_snapshot_id: Optional[UUID] = None


class EndSessionRequest(BaseSchema):
    summary: str = Field(min_length=1)


class AbandonSessionRequest(BaseSchema):
    reason: Optional[str] = None


class EndSessionResponse(BaseSchema):
    session: SessionResponse
    stats: SessionStatsResponse
    next_task: Optional[TaskResponse] = None
    completion: Optional[FeatureCompletionResponse] = None
    feature_completed: bool = False


class SessionHistoryResponse(BaseSchema):
    session: SessionResponse
    checkpoints: list[CheckpointResponse] = []


# ==========================================================================
# Common Schemas
# ==========================================================================

class ErrorResponse(BaseSchema):
    """Error response schema."""

    error: str
    detail: Optional[str] = None
    code: Optional[str] = None


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str
    version: str
    environment: str
    database: str
