"""
Scope Validator - decides whether a file operation belongs to a session.

Scope comes from the session's linked context. A task's metadata (or, when
the task declares nothing, its feature's metadata) may carry:

    scope_paths:    glob patterns the session is allowed to touch
    excluded_paths: glob patterns it must never touch

A path matching an excluded pattern is a violation. When scope_paths is
declared, a path matching none of them is a violation. Sessions without
linked context or without declared patterns always pass.

Patterns use fnmatch semantics; "*" also matches across "/".
"""

from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.core.config import settings
from taskflow.core.models import (
    ChangeType,
    Feature,
    ScopeValidation,
    Task,
    ValidationResult,
    ValidationType,
    WorkSession,
)

logger = structlog.get_logger()


@dataclass
class ScopeCheck:
    """Result of a scope evaluation."""
    compliant: bool
    rule: str
    message: str
    scope_paths: list[str] = field(default_factory=list)
    excluded_paths: list[str] = field(default_factory=list)


@dataclass
class ScopeRules:
    scope_paths: list[str] = field(default_factory=list)
    excluded_paths: list[str] = field(default_factory=list)


def normalize_path(file_path: str) -> str:
    path = file_path.strip().replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path


def _patterns(metadata: Optional[dict], key: str) -> list[str]:
    value = (metadata or {}).get(key) or []
    if isinstance(value, str):
        value = [value]
    return [normalize_path(p) for p in value if p]


class ScopeValidator:
    """Evaluates file operations against a session's declared scope."""

    def __init__(self, db: AsyncSession, enabled: Optional[bool] = None):
        self.db = db
        self.enabled = settings.SCOPE_ENFORCEMENT_ENABLED if enabled is None else enabled

    async def evaluate(
        self,
        session: WorkSession,
        file_path: str,
        change_type: ChangeType,
    ) -> ScopeCheck:
        """
        Check one file operation.

        Args:
            session: Active session the operation belongs to
            file_path: Path as reported by the caller
            change_type: created / modified / deleted

        Returns:
            ScopeCheck; compliant=False means the operation must not be recorded
        """
        if not self.enabled:
            return ScopeCheck(True, "enforcement_disabled", "Scope enforcement is disabled")

        rules = await self.resolve_rules(session)
        path = normalize_path(file_path)

        for pattern in rules.excluded_paths:
            if fnmatchcase(path, pattern):
                return ScopeCheck(
                    compliant=False,
                    rule="excluded_path",
                    message=f"{path} ({change_type.value}) matches excluded pattern '{pattern}'",
                    scope_paths=rules.scope_paths,
                    excluded_paths=rules.excluded_paths,
                )

        if rules.scope_paths and not any(fnmatchcase(path, p) for p in rules.scope_paths):
            return ScopeCheck(
                compliant=False,
                rule="outside_scope_paths",
                message=f"File operation outside scope: {path} ({change_type.value})",
                scope_paths=rules.scope_paths,
                excluded_paths=rules.excluded_paths,
            )

        return ScopeCheck(
            compliant=True,
            rule="passed",
            message="Scope checks passed",
            scope_paths=rules.scope_paths,
            excluded_paths=rules.excluded_paths,
        )

    async def resolve_rules(self, session: WorkSession) -> ScopeRules:
        """Task patterns take precedence; exclusions from task and feature add up."""
        task = await self.db.get(Task, session.task_id) if session.task_id else None

        feature_id = session.feature_id or (task.feature_id if task else None)
        feature = await self.db.get(Feature, feature_id) if feature_id else None

        task_meta = task.metadata_ if task else None
        feature_meta = feature.metadata_ if feature else None

        scope_paths = _patterns(task_meta, "scope_paths") or _patterns(feature_meta, "scope_paths")
        excluded = _patterns(task_meta, "excluded_paths") + _patterns(feature_meta, "excluded_paths")
        return ScopeRules(scope_paths=scope_paths, excluded_paths=excluded)

    def record_violation(self, session: WorkSession, check: ScopeCheck) -> ScopeValidation:
        """Stage a violation row; the caller commits it with the score penalty."""
        violation = ScopeValidation(
            session_id=session.id,
            validation_type=ValidationType.SCOPE_CHECK,
            result=ValidationResult.VIOLATION,
            details=check.message,
        )
        self.db.add(violation)

        logger.warning(
            "Scope violation",
            session_id=session.id,
            rule=check.rule,
            details=check.message,
        )
        return violation
