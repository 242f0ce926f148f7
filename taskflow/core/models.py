"""
TaskFlow - Database Models
==========================

SQLAlchemy models for the Application -> Feature -> Task hierarchy and the
working sessions tracked against it.

Status fields on Feature and Task are only changed through the status
transition engine, which appends to the inline status history.
"""

import enum
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from taskflow.core.database import Base


# ==========================================================================
# Helpers
# ==========================================================================

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands timestamps back naive; treat those as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _values_enum(enum_cls: type[enum.Enum], name: str) -> Enum:
    """Store enum values (lowercase strings) rather than member names."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


# ==========================================================================
# Enums
# ==========================================================================

class FeatureStatus(str, enum.Enum):
    """Lifecycle of a feature."""
    PLANNED = "planned"
    BACKLOG = "backlog"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    ON_HOLD = "on_hold"
    IN_REVIEW = "in_review"
    COMPLETED = "completed"
    WONT_DO = "wont_do"
    ABANDONED = "abandoned"
    ARCHIVED = "archived"


class TaskStatus(str, enum.Enum):
    """Lifecycle of a task."""
    BACKLOG = "backlog"
    READY = "ready"
    BLOCKED = "blocked"
    ON_HOLD = "on_hold"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    NEEDS_REVISION = "needs_revision"
    COMPLETED = "completed"
    WONT_DO = "wont_do"
    ABANDONED = "abandoned"
    ARCHIVED = "archived"


class SessionStatus(str, enum.Enum):
    """Working session status. Only ACTIVE accepts tracked actions."""
    ACTIVE = "active"
    COMPLETED = "completed"    # Ended with a summary
    ABANDONED = "abandoned"


class SessionTaskType(str, enum.Enum):
    """Kind of work a session is doing."""
    CODE_EDITING = "code-editing"
    PLANNING = "planning"
    RESEARCH = "research"
    EXPLORATION = "exploration"


class ChangeType(str, enum.Enum):
    """File operation recorded against a session."""
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


class ValidationType(str, enum.Enum):
    """Kind of compliance check logged in scope_validations."""
    SCOPE_CHECK = "scope_check"
    CHECKPOINT_REMINDER = "checkpoint_reminder"
    FILE_VERIFICATION = "file_verification"


class ValidationResult(str, enum.Enum):
    PASS = "pass"
    WARNING = "warning"
    VIOLATION = "violation"


class FeedbackType(str, enum.Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


# ==========================================================================
# Mixins
# ==========================================================================

class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


class StatusTrackedMixin:
    """
    Status bookkeeping shared by Feature and Task.

    status_history is an append-only list kept most-recent-first. Each entry
    is {status, changed_at, changed_by, reason}. The list is replaced rather
    than mutated in place so the JSON column is flagged dirty.
    """

    blocking_reason: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    status_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    status_history: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )
    # "metadata" is reserved on declarative classes
    metadata_: Mapped[dict] = mapped_column(
        "metadata",
        JSON,
        default=dict,
        nullable=False,
    )

    def record_status_change(
        self,
        status: enum.Enum,
        *,
        changed_by: str,
        reason: str,
        changed_at: datetime,
    ) -> dict[str, Any]:
        """Set the new status and prepend its history entry."""
        entry = {
            "status": status.value,
            "changed_at": changed_at.isoformat(),
            "changed_by": changed_by,
            "reason": reason,
        }
        self.status = status
        self.status_updated_at = changed_at
        self.status_history = [entry, *(self.status_history or [])]
        return entry


def _blocking_constraints(table: str) -> tuple[CheckConstraint, ...]:
    return (
        CheckConstraint(
            "blocked_by_id IS NULL OR blocked_by_id != id",
            name=f"{table}_no_self_blocking",
        ),
        CheckConstraint(
            "(blocking_reason IS NULL AND blocked_by_id IS NULL) OR "
            "(blocking_reason IS NOT NULL AND blocked_by_id IS NOT NULL)",
            name=f"{table}_blocking_requires_reason",
        ),
        CheckConstraint(
            "status != 'blocked' OR blocked_by_id IS NOT NULL",
            name=f"{table}_blocked_requires_blocker",
        ),
    )


# ==========================================================================
# Hierarchy
# ==========================================================================

class Application(Base, TimestampMixin):
    """Top-level software product. Deleting it cascades to its features."""

    __tablename__ = "applications"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    repository_url: Mapped[Optional[str]] = mapped_column(
        String(2000),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Application {self.name}>"


class Feature(Base, TimestampMixin, StatusTrackedMixin):
    """Major functionality grouping within an application."""

    __tablename__ = "features"
    __table_args__ = (
        UniqueConstraint("application_id", "name", name="uq_features_application_name"),
        *_blocking_constraints("features"),
    )

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    application_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    status: Mapped[FeatureStatus] = mapped_column(
        _values_enum(FeatureStatus, "feature_status"),
        default=FeatureStatus.PLANNED,
        nullable=False,
        index=True,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
    )  # Higher = more urgent
    blocked_by_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("features.id"),
        nullable=True,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<Feature {self.name} [{self.status.value}]>"


class Task(Base, TimestampMixin, StatusTrackedMixin):
    """Specific work item within a feature."""

    __tablename__ = "tasks"
    __table_args__ = (
        UniqueConstraint("feature_id", "name", name="uq_tasks_feature_name"),
        *_blocking_constraints("tasks"),
    )

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    feature_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("features.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    acceptance_criteria: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    status: Mapped[TaskStatus] = mapped_column(
        _values_enum(TaskStatus, "task_status"),
        default=TaskStatus.BACKLOG,
        nullable=False,
        index=True,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
    )
    blocked_by_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("tasks.id"),
        nullable=True,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<Task {self.name} [{self.status.value}]>"


# ==========================================================================
# Sessions
# ==========================================================================

class WorkSession(Base):
    """
    One AI working period, optionally scoped to an application, feature or
    task. The id is a token generated by the tracker, not by the database.

    Created ACTIVE, mutated by every tracked action, and finalized exactly
    once (COMPLETED or ABANDONED).
    """

    __tablename__ = "sessions"
    __table_args__ = (
        CheckConstraint(
            "compliance_score >= 0 AND compliance_score <= 100",
            name="sessions_compliance_score_range",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
    )
    task_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("tasks.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    feature_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("features.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    application_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("applications.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    task_type: Mapped[SessionTaskType] = mapped_column(
        _values_enum(SessionTaskType, "session_task_type"),
        nullable=False,
    )
    context_description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    status: Mapped[SessionStatus] = mapped_column(
        _values_enum(SessionStatus, "session_status"),
        default=SessionStatus.ACTIVE,
        nullable=False,
        index=True,
    )

    # Lifecycle
    start_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    end_time: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    summary: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    # Compliance tracking
    last_checkpoint_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_file_change_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    last_decision_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    compliance_score: Mapped[int] = mapped_column(
        Integer,
        default=100,
        nullable=False,
    )  # 0-100

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<WorkSession {self.id} [{self.status.value}]>"


# ==========================================================================
# Session Audit Records (immutable once written)
# ==========================================================================

class FileChange(Base):
    """A file operation recorded during a session."""

    __tablename__ = "file_changes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    file_path: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    change_type: Mapped[ChangeType] = mapped_column(
        _values_enum(ChangeType, "change_type"),
        nullable=False,
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<FileChange {self.change_type.value} {self.file_path}>"


class Checkpoint(Base):
    """Periodic progress record within a session."""

    __tablename__ = "checkpoints"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    progress: Mapped[str] = mapped_column(Text, nullable=False)
    changes_description: Mapped[str] = mapped_column(Text, nullable=False)
    current_thinking: Mapped[str] = mapped_column(Text, nullable=False)
    next_steps: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )


class Snapshot(Base):
    """
    Full copy of a file's content at a point in time.

    content_hash is the SHA-256 of the content; one row per
    (session, file, hash).
    """

    __tablename__ = "snapshots"
    __table_args__ = (
        UniqueConstraint(
            "session_id", "file_path", "content_hash",
            name="uq_snapshots_session_file_hash",
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    file_path: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )


class Decision(Base):
    """Recorded rationale for a development choice."""

    __tablename__ = "decisions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reasoning: Mapped[str] = mapped_column(Text, nullable=False)
    alternatives: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )


class ScopeValidation(Base):
    """Compliance check outcome: scope violations and checkpoint reminders."""

    __tablename__ = "scope_validations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    session_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    validation_type: Mapped[ValidationType] = mapped_column(
        _values_enum(ValidationType, "validation_type"),
        nullable=False,
    )
    result: Mapped[ValidationResult] = mapped_column(
        _values_enum(ValidationResult, "validation_result"),
        nullable=False,
    )
    details: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )


class Feedback(Base):
    """
    Effectiveness of a strategy, reusable across sessions.

    Positive feedback with a high reusability score is offered back to new
    sessions of the same task type.
    """

    __tablename__ = "feedback"
    __table_args__ = (
        CheckConstraint(
            "reusability_score IS NULL OR (reusability_score >= 1 AND reusability_score <= 10)",
            name="feedback_reusability_score_range",
        ),
        Index("ix_feedback_type_score", "feedback_type", "reusability_score"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    session_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("sessions.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    decision_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("decisions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    feedback_type: Mapped[FeedbackType] = mapped_column(
        _values_enum(FeedbackType, "feedback_type"),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reusability_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    applicable_task_types: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    tags: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
