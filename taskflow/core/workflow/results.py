"""
Workflow results and failures.

Every public workflow operation returns either its result dataclass or a
WorkflowFailure. WorkflowError is raised inside the engines and converted at
the operation boundary by @workflow_operation; it never escapes to callers.
"""

import enum
import functools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError

from taskflow.core.models import (
    Checkpoint,
    Feedback,
    FileChange,
    ScopeValidation,
    Snapshot,
    Task,
    WorkSession,
)

logger = structlog.get_logger()

T = TypeVar("T")


class FailureCode(str, enum.Enum):
    """Caller-fixable validation failures plus the store failure."""
    MISSING_BLOCKING_INFO = "missing_blocking_info"
    SELF_BLOCKING_NOT_ALLOWED = "self_blocking_not_allowed"
    BLOCKING_ENTITY_NOT_FOUND = "blocking_entity_not_found"
    ENTITY_NOT_FOUND = "entity_not_found"
    PARENT_NOT_FOUND = "parent_not_found"
    DUPLICATE_NAME = "duplicate_name"
    INVALID_STATUS = "invalid_status"
    INVALID_ARGUMENT = "invalid_argument"
    INVALID_OR_INACTIVE_SESSION = "invalid_or_inactive_session"
    SESSION_NOT_ACTIVE = "session_not_active"
    STORE_ERROR = "store_error"


@dataclass
class WorkflowFailure:
    """Typed failure returned in place of a result."""
    code: FailureCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)


class WorkflowError(Exception):
    """Raised inside the engines when an operation cannot proceed."""

    def __init__(self, code: FailureCode, message: str, **details: Any):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def to_failure(self) -> WorkflowFailure:
        return WorkflowFailure(code=self.code, message=self.message, details=self.details)


Outcome = Union[T, WorkflowFailure]


def workflow_operation(name: str):
    """
    Mark a coroutine method as a workflow operation boundary.

    WorkflowError becomes a WorkflowFailure. Store errors are rolled back and
    surfaced verbatim as STORE_ERROR, without retry. The decorated method's
    instance must expose the AsyncSession as ``self.db``.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[Outcome[T]]]:
        @functools.wraps(func)
        async def wrapper(self, *args: Any, **kwargs: Any) -> Outcome[T]:
            try:
                return await func(self, *args, **kwargs)
            except WorkflowError as e:
                logger.info(
                    "Workflow operation rejected",
                    operation=name,
                    code=e.code.value,
                    reason=e.message,
                )
                return e.to_failure()
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error("Store error", operation=name, error=str(e))
                return WorkflowFailure(code=FailureCode.STORE_ERROR, message=str(e))

        return wrapper

    return decorator


# ==========================================================================
# Status Transitions
# ==========================================================================

@dataclass
class FeatureCompletion:
    """Task completion figures for one feature."""
    feature_id: UUID
    total: int
    completed: int

    @property
    def remaining(self) -> int:
        return self.total - self.completed

    @property
    def feature_completed(self) -> bool:
        return self.total > 0 and self.remaining == 0


@dataclass
class TransitionResult:
    """
    Outcome of a status transition.

    already_current is set when the requested status and blocking fields
    matched the stored ones and nothing was written.
    task_counts is filled for features; feature_progress for tasks.
    """
    entity_kind: str
    entity_id: UUID
    previous_status: str
    new_status: str
    already_current: bool
    history_entry: Optional[dict[str, Any]] = None
    task_counts: Optional[dict[str, int]] = None
    feature_progress: Optional[FeatureCompletion] = None


# ==========================================================================
# Session Tracking
# ==========================================================================

@dataclass
class SessionStats:
    """Derived counters for a session. Never stored."""
    session_id: str
    compliance_score: int
    files_changed: int = 0
    checkpoints: int = 0
    decisions: int = 0
    snapshots: int = 0
    scope_violations: int = 0
    files: dict[str, dict[str, int]] = field(default_factory=dict)


@dataclass
class FileChangeResult:
    """
    Outcome of recording a file change.

    When accepted is False the change was outside the session's scope: a
    violation was logged in place of the file change and the compliance
    score was reduced.
    """
    accepted: bool
    compliance_score: int
    checkpoint_due: bool
    stats: SessionStats
    file_change: Optional[FileChange] = None
    violation: Optional[ScopeValidation] = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class SnapshotResult:
    """Created snapshot, or the id of the identical one already captured."""
    content_hash: str
    snapshot: Optional[Snapshot] = None
    duplicate: bool = False
    existing_snapshot_id: Optional[UUID] = None


@dataclass
class SessionInitResult:
    session: WorkSession
    scope_statement: str
    first_checkpoint_due: datetime
    previous_sessions: list[WorkSession] = field(default_factory=list)
    proven_strategies: list[Feedback] = field(default_factory=list)


@dataclass
class EndSessionResult:
    """
    Closed session plus advisory follow-ups for the caller.

    next_task and completion are only computed when the session is linked
    to a feature, directly or through its task.
    """
    session: WorkSession
    stats: SessionStats
    next_task: Optional[Task] = None
    completion: Optional[FeatureCompletion] = None

    @property
    def feature_completed(self) -> bool:
        return self.completion is not None and self.completion.feature_completed


@dataclass
class SessionHistoryEntry:
    session: WorkSession
    checkpoints: list[Checkpoint] = field(default_factory=list)
