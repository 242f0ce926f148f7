"""
Session Compliance Tracker
==========================

Tracks an AI working session from initialization to its terminal state and
keeps its compliance bookkeeping:

1. Every tracked action (file change, checkpoint, decision, snapshot)
   requires an ACTIVE session
2. File changes are checked against the session's scope; a violation is
   logged instead of the change and costs a fixed penalty on the score
3. A checkpoint is due once the configured interval has passed since the
   later of the last checkpoint and the session start. This is advisory
   only and never rejects a call
4. Snapshots are deduplicated per (session, file, content hash)
5. Ending a session is terminal

There is no in-process locking. Two concurrent writers on one session rely
on the database's row-level semantics; the score penalty is issued as a
single UPDATE to keep that window small.
"""

import hashlib
import secrets
from datetime import datetime, timedelta
from typing import Any, Optional, Union
from uuid import UUID

import structlog
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.core.config import settings
from taskflow.core.models import (
    Application,
    ChangeType,
    Checkpoint,
    Decision,
    Feature,
    Feedback,
    FeedbackType,
    FileChange,
    ScopeValidation,
    SessionStatus,
    SessionTaskType,
    Snapshot,
    Task,
    ValidationResult,
    ValidationType,
    WorkSession,
    as_utc,
    utcnow,
)
from taskflow.core.workflow.hierarchy import HierarchyService
from taskflow.core.workflow.results import (
    EndSessionResult,
    FailureCode,
    FileChangeResult,
    SessionHistoryEntry,
    SessionInitResult,
    SessionStats,
    SnapshotResult,
    WorkflowError,
    workflow_operation,
)
from taskflow.core.workflow.scope import ScopeValidator, normalize_path

logger = structlog.get_logger()


def generate_session_id() -> str:
    """Session ids are tokens minted here, not database keys."""
    return secrets.token_urlsafe(16)


def content_fingerprint(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class SessionComplianceTracker:
    """
    Session lifecycle and compliance operations.

    Every public operation returns its result or a WorkflowFailure, and
    re-reads the session row before acting on it.
    """

    def __init__(
        self,
        db: AsyncSession,
        validator: Optional[ScopeValidator] = None,
    ):
        self.db = db
        self.validator = validator or ScopeValidator(db)
        self.hierarchy = HierarchyService(db)
        self.checkpoint_interval = timedelta(minutes=settings.CHECKPOINT_INTERVAL_MINUTES)
        self.violation_penalty = settings.SCOPE_VIOLATION_PENALTY

    # ======================================================================
    # Lifecycle
    # ======================================================================

    @workflow_operation("initialize_session")
    async def initialize_session(
        self,
        task_type: Union[SessionTaskType, str],
        context_description: Optional[str] = None,
        application_id: Optional[UUID] = None,
        feature_id: Optional[UUID] = None,
        task_id: Optional[UUID] = None,
    ) -> SessionInitResult:
        """
        Open a new ACTIVE session, optionally linked to the hierarchy.

        Returns the session with its scope statement, recent sessions on the
        same task, and proven strategies for the task type.
        """
        task_type = _coerce_arg(SessionTaskType, task_type, "task type")

        task = await self._linked(Task, task_id)
        feature = await self._linked(Feature, feature_id)
        application = await self._linked(Application, application_id)

        now = utcnow()
        session = WorkSession(
            id=generate_session_id(),
            task_id=task_id,
            feature_id=feature_id,
            application_id=application_id,
            task_type=task_type,
            context_description=context_description or "",
            status=SessionStatus.ACTIVE,
            start_time=now,
            compliance_score=settings.COMPLIANCE_SCORE_MAX,
        )
        self.db.add(session)
        await self.db.commit()

        previous = await self._previous_sessions(task_id, exclude=session.id) if task_id else []
        strategies = await self._proven_strategies(task_type)

        logger.info(
            "Session initialized",
            session_id=session.id,
            task_type=task_type.value,
            task_id=str(task_id) if task_id else None,
            feature_id=str(feature_id) if feature_id else None,
            application_id=str(application_id) if application_id else None,
        )

        return SessionInitResult(
            session=session,
            scope_statement=_scope_statement(session, task, feature, application),
            first_checkpoint_due=now + self.checkpoint_interval,
            previous_sessions=previous,
            proven_strategies=strategies,
        )

    @workflow_operation("end_session")
    async def end_session(self, session_id: str, summary: str) -> EndSessionResult:
        """
        Complete an ACTIVE session with a summary. Terminal.

        Also looks up the next actionable task in the session's feature and
        whether the feature has any incomplete tasks left. Neither is acted
        upon here.
        """
        summary = (summary or "").strip()
        if not summary:
            raise WorkflowError(
                FailureCode.INVALID_ARGUMENT,
                "A summary of what was accomplished is required",
            )

        session = await self._require_active(session_id)
        session.status = SessionStatus.COMPLETED
        session.end_time = utcnow()
        session.summary = summary
        await self.db.commit()

        result = EndSessionResult(session=session, stats=await self._stats(session))

        feature_id = session.feature_id
        if feature_id is None and session.task_id is not None:
            task = await self.db.get(Task, session.task_id)
            feature_id = task.feature_id if task else None

        if feature_id is not None:
            result.next_task = await self.hierarchy.find_next_task(
                feature_id, exclude_task_id=session.task_id
            )
            result.completion = await self.hierarchy.compute_completion(feature_id)

        logger.info(
            "Session ended",
            session_id=session.id,
            compliance_score=session.compliance_score,
            next_task_id=str(result.next_task.id) if result.next_task else None,
            feature_completed=result.feature_completed,
        )
        return result

    @workflow_operation("abandon_session")
    async def abandon_session(self, session_id: str, reason: Optional[str] = None) -> WorkSession:
        """Close an ACTIVE session without completing it. Terminal."""
        session = await self._require_active(session_id)
        session.status = SessionStatus.ABANDONED
        session.end_time = utcnow()
        session.summary = reason
        await self.db.commit()

        logger.info("Session abandoned", session_id=session.id, reason=reason)
        return session

    # ======================================================================
    # Tracked Actions
    # ======================================================================

    @workflow_operation("record_file_change")
    async def record_file_change(
        self,
        session_id: str,
        file_path: str,
        change_type: Union[ChangeType, str],
    ) -> FileChangeResult:
        """
        Record a file operation after checking it against the session scope.

        Out-of-scope operations are not recorded: a violation is logged, the
        compliance score drops by the penalty (never below 0), and the
        result comes back with accepted=False.
        """
        change_type = _coerce_arg(ChangeType, change_type, "change type")
        file_path = normalize_path(file_path or "")
        if not file_path:
            raise WorkflowError(FailureCode.INVALID_ARGUMENT, "File path is required")

        session = await self._require_active(session_id)
        now = utcnow()

        check = await self.validator.evaluate(session, file_path, change_type)
        if not check.compliant:
            violation = self.validator.record_violation(session, check)
            await self._apply_penalty(session)
            await self.db.commit()
            await self.db.refresh(session)

            return FileChangeResult(
                accepted=False,
                compliance_score=session.compliance_score,
                checkpoint_due=self._checkpoint_due(session, now),
                stats=await self._stats(session),
                violation=violation,
                warnings=[
                    f"The operation on '{file_path}' is outside the assigned scope",
                    "Compliance score reduced",
                ],
            )

        file_change = FileChange(
            session_id=session.id,
            file_path=file_path,
            change_type=change_type,
            timestamp=now,
        )
        self.db.add(file_change)
        session.last_file_change_at = now

        checkpoint_due = self._checkpoint_due(session, now)
        if checkpoint_due:
            self.db.add(ScopeValidation(
                session_id=session.id,
                validation_type=ValidationType.CHECKPOINT_REMINDER,
                result=ValidationResult.WARNING,
                details=f"Checkpoint overdue at file change: {file_path}",
                timestamp=now,
            ))
            logger.info("Checkpoint due", session_id=session.id)

        await self.db.commit()

        stats = await self._stats(session)
        warnings = []
        if checkpoint_due:
            warnings.append("No checkpoint has been created recently")
        if stats.decisions == 0:
            warnings.append("No decisions have been logged yet")
        if change_type == ChangeType.MODIFIED and stats.snapshots == 0:
            warnings.append("Files were modified but no snapshots exist")

        return FileChangeResult(
            accepted=True,
            compliance_score=session.compliance_score,
            checkpoint_due=checkpoint_due,
            stats=stats,
            file_change=file_change,
            warnings=warnings,
        )

    @workflow_operation("create_checkpoint")
    async def create_checkpoint(
        self,
        session_id: str,
        progress: str,
        changes_description: str,
        current_thinking: str,
        next_steps: Optional[str] = None,
    ) -> Checkpoint:
        """Persist a progress checkpoint. Any cadence is accepted."""
        session = await self._require_active(session_id)
        now = utcnow()

        checkpoint = Checkpoint(
            session_id=session.id,
            progress=progress,
            changes_description=changes_description,
            current_thinking=current_thinking,
            next_steps=next_steps,
            timestamp=now,
        )
        self.db.add(checkpoint)
        session.last_checkpoint_at = now
        await self.db.commit()

        logger.info("Checkpoint created", session_id=session.id, checkpoint_id=str(checkpoint.id))
        return checkpoint

    @workflow_operation("log_decision")
    async def log_decision(
        self,
        session_id: str,
        description: str,
        reasoning: str,
        alternatives: Optional[str] = None,
    ) -> Decision:
        session = await self._require_active(session_id)
        now = utcnow()

        decision = Decision(
            session_id=session.id,
            description=description,
            reasoning=reasoning,
            alternatives=alternatives,
            timestamp=now,
        )
        self.db.add(decision)
        session.last_decision_at = now
        await self.db.commit()

        logger.info("Decision logged", session_id=session.id, decision_id=str(decision.id))
        return decision

    @workflow_operation("create_snapshot")
    async def create_snapshot(self, session_id: str, file_path: str, content: str) -> SnapshotResult:
        """
        Capture file content, unless identical content for the same file was
        already captured in this session (reported as duplicate).
        """
        file_path = normalize_path(file_path or "")
        if not file_path:
            raise WorkflowError(FailureCode.INVALID_ARGUMENT, "File path is required")

        session = await self._require_active(session_id)
        content_hash = content_fingerprint(content)

        existing = await self._existing_snapshot(session.id, file_path, content_hash)
        if existing is not None:
            logger.info("Duplicate snapshot skipped", session_id=session.id, file_path=file_path)
            return SnapshotResult(
                content_hash=content_hash,
                duplicate=True,
                existing_snapshot_id=existing,
            )

        snapshot = Snapshot(
            session_id=session.id,
            file_path=file_path,
            content=content,
            content_hash=content_hash,
            timestamp=utcnow(),
        )
        self.db.add(snapshot)
        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race against an identical snapshot
            await self.db.rollback()
            existing = await self._existing_snapshot(session_id, file_path, content_hash)
            return SnapshotResult(
                content_hash=content_hash,
                duplicate=True,
                existing_snapshot_id=existing,
            )

        logger.info("Snapshot created", session_id=session.id, file_path=file_path)
        return SnapshotResult(content_hash=content_hash, snapshot=snapshot)

    @workflow_operation("record_feedback")
    async def record_feedback(
        self,
        session_id: str,
        feedback_type: Union[FeedbackType, str],
        description: str,
        applicable_task_types: list[Union[SessionTaskType, str]],
        reusability_score: Optional[int] = None,
        tags: Optional[list[str]] = None,
        decision_id: Optional[UUID] = None,
    ) -> Feedback:
        """
        Record how well a strategy worked.

        Allowed on ended sessions too; feedback is usually written afterwards.
        """
        feedback_type = _coerce_arg(FeedbackType, feedback_type, "feedback type")
        task_types = [_coerce_arg(SessionTaskType, t, "task type").value for t in applicable_task_types]
        if not task_types:
            raise WorkflowError(FailureCode.INVALID_ARGUMENT, "At least one applicable task type is required")
        if reusability_score is not None and not 1 <= reusability_score <= 10:
            raise WorkflowError(FailureCode.INVALID_ARGUMENT, "Reusability score must be between 1 and 10")

        session = await self._load_session(session_id)
        if session is None:
            raise WorkflowError(
                FailureCode.INVALID_OR_INACTIVE_SESSION,
                f"Session {session_id} does not exist",
            )
        if decision_id is not None:
            decision = await self.db.get(Decision, decision_id)
            if decision is None or decision.session_id != session.id:
                raise WorkflowError(
                    FailureCode.ENTITY_NOT_FOUND,
                    f"Decision {decision_id} does not belong to session {session.id}",
                )

        feedback = Feedback(
            session_id=session.id,
            decision_id=decision_id,
            feedback_type=feedback_type,
            description=description,
            reusability_score=reusability_score,
            applicable_task_types=task_types,
            tags=list(tags) if tags else None,
        )
        self.db.add(feedback)
        await self.db.commit()
        return feedback

    # ======================================================================
    # Queries
    # ======================================================================

    @workflow_operation("get_session")
    async def get_session(self, session_id: str) -> WorkSession:
        session = await self._load_session(session_id)
        if session is None:
            raise WorkflowError(
                FailureCode.INVALID_OR_INACTIVE_SESSION,
                f"Session {session_id} does not exist",
            )
        return session

    @workflow_operation("checkpoint_needed")
    async def checkpoint_needed(self, session_id: str) -> bool:
        """True once the checkpoint interval has elapsed. Read-only."""
        session = await self._load_session(session_id)
        if session is None:
            raise WorkflowError(
                FailureCode.INVALID_OR_INACTIVE_SESSION,
                f"Session {session_id} does not exist",
            )
        return self._checkpoint_due(session, utcnow())

    @workflow_operation("session_stats")
    async def session_stats(self, session_id: str) -> SessionStats:
        session = await self._load_session(session_id)
        if session is None:
            raise WorkflowError(
                FailureCode.INVALID_OR_INACTIVE_SESSION,
                f"Session {session_id} does not exist",
            )
        return await self._stats(session)

    @workflow_operation("session_history")
    async def session_history(self, task_id: UUID) -> list[SessionHistoryEntry]:
        """All sessions for a task, newest first, each with its checkpoints."""
        if await self.db.get(Task, task_id) is None:
            raise WorkflowError(FailureCode.ENTITY_NOT_FOUND, f"Task {task_id} does not exist")

        sessions = (await self.db.execute(
            select(WorkSession)
            .where(WorkSession.task_id == task_id)
            .order_by(WorkSession.start_time.desc())
        )).scalars().all()
        if not sessions:
            return []

        entries = {s.id: SessionHistoryEntry(session=s) for s in sessions}
        checkpoints = (await self.db.execute(
            select(Checkpoint)
            .where(Checkpoint.session_id.in_(entries.keys()))
            .order_by(Checkpoint.timestamp.asc())
        )).scalars().all()
        for checkpoint in checkpoints:
            entries[checkpoint.session_id].checkpoints.append(checkpoint)

        return list(entries.values())

    # ======================================================================
    # Internals
    # ======================================================================

    async def _load_session(self, session_id: str) -> Optional[WorkSession]:
        if not session_id:
            return None
        result = await self.db.execute(
            select(WorkSession)
            .where(WorkSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _require_active(self, session_id: str) -> WorkSession:
        session = await self._load_session(session_id)
        if session is None:
            raise WorkflowError(
                FailureCode.INVALID_OR_INACTIVE_SESSION,
                f"Session {session_id or '<none>'} does not exist",
            )
        if session.status != SessionStatus.ACTIVE:
            raise WorkflowError(
                FailureCode.SESSION_NOT_ACTIVE,
                f"Session {session.id} is {session.status.value}, not active",
                status=session.status.value,
            )
        return session

    async def _linked(self, model: type, entity_id: Optional[UUID]):
        if entity_id is None:
            return None
        entity = await self.db.get(model, entity_id)
        if entity is None:
            raise WorkflowError(
                FailureCode.ENTITY_NOT_FOUND,
                f"{model.__name__} {entity_id} does not exist",
            )
        return entity

    def _checkpoint_due(self, session: WorkSession, now: datetime) -> bool:
        reference = as_utc(session.start_time)
        last_checkpoint = as_utc(session.last_checkpoint_at)
        if last_checkpoint is not None and last_checkpoint > reference:
            reference = last_checkpoint
        return now - reference >= self.checkpoint_interval

    async def _apply_penalty(self, session: WorkSession) -> None:
        """Decrement the score in one statement, floored at zero."""
        decremented = WorkSession.compliance_score - self.violation_penalty
        await self.db.execute(
            update(WorkSession)
            .where(WorkSession.id == session.id)
            .values(compliance_score=case((decremented < 0, 0), else_=decremented))
            .execution_options(synchronize_session=False)
        )

    async def _existing_snapshot(
        self,
        session_id: str,
        file_path: str,
        content_hash: str,
    ) -> Optional[UUID]:
        return await self.db.scalar(
            select(Snapshot.id).where(
                Snapshot.session_id == session_id,
                Snapshot.file_path == file_path,
                Snapshot.content_hash == content_hash,
            )
        )

    async def _count(self, model: type, session_id: str, *criteria: Any) -> int:
        count = await self.db.scalar(
            select(func.count()).select_from(model).where(model.session_id == session_id, *criteria)
        )
        return count or 0

    async def _stats(self, session: WorkSession) -> SessionStats:
        stats = SessionStats(
            session_id=session.id,
            compliance_score=session.compliance_score,
            files_changed=await self._count(FileChange, session.id),
            checkpoints=await self._count(Checkpoint, session.id),
            decisions=await self._count(Decision, session.id),
            snapshots=await self._count(Snapshot, session.id),
            scope_violations=await self._count(
                ScopeValidation,
                session.id,
                ScopeValidation.result == ValidationResult.VIOLATION,
            ),
        )

        rows = await self.db.execute(
            select(FileChange.file_path, FileChange.change_type, func.count())
            .where(FileChange.session_id == session.id)
            .group_by(FileChange.file_path, FileChange.change_type)
        )
        for file_path, change_type, count in rows:
            per_file = stats.files.setdefault(file_path, {c.value: 0 for c in ChangeType})
            per_file[change_type.value] = count

        return stats

    async def _previous_sessions(self, task_id: UUID, exclude: str) -> list[WorkSession]:
        result = await self.db.execute(
            select(WorkSession)
            .where(WorkSession.task_id == task_id, WorkSession.id != exclude)
            .order_by(WorkSession.start_time.desc())
            .limit(settings.PREVIOUS_SESSIONS_LIMIT)
        )
        return list(result.scalars().all())

    async def _proven_strategies(self, task_type: SessionTaskType) -> list[Feedback]:
        """Positive, highly reusable feedback that applies to this task type."""
        result = await self.db.execute(
            select(Feedback)
            .where(
                Feedback.feedback_type == FeedbackType.POSITIVE,
                Feedback.reusability_score >= settings.PROVEN_STRATEGY_MIN_SCORE,
            )
            .order_by(Feedback.reusability_score.desc(), Feedback.created_at.desc())
        )
        # applicable_task_types is a JSON list; containment is checked here
        matching = [
            f for f in result.scalars().all()
            if task_type.value in (f.applicable_task_types or [])
        ]
        return matching[:settings.PROVEN_STRATEGY_LIMIT]


def _coerce_arg(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise WorkflowError(
            FailureCode.INVALID_ARGUMENT,
            f"'{value}' is not a valid {label} (allowed: {allowed})",
        ) from None


def _scope_statement(
    session: WorkSession,
    task: Optional[Task],
    feature: Optional[Feature],
    application: Optional[Application],
) -> str:
    """Narrowest linked context wins."""
    if task is not None:
        statement = f'Restricted to task "{task.name}"'
        if task.description:
            statement += f": {task.description}"
        return statement
    if feature is not None:
        return f'Restricted to feature "{feature.name}"'
    if application is not None:
        return f'Restricted to application "{application.name}"'
    return f'Restricted to "{session.context_description or session.task_type.value + " task"}"'
