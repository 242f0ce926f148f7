"""
TaskFlow Workflow Engine
========================

Status lifecycle for the Application -> Feature -> Task hierarchy and
compliance tracking for the AI working sessions run against it.

Components:
- HierarchyService: Creation and progress queries for the hierarchy
- StatusTransitionEngine: Validated status changes with inline history
- SessionComplianceTracker: Session lifecycle, audit records, compliance score
- ScopeValidator: Scope policy for file operations

Every public operation returns its result or a WorkflowFailure.
"""

from taskflow.core.workflow.hierarchy import FeatureSummary, HierarchyService
from taskflow.core.workflow.results import (
    EndSessionResult,
    FailureCode,
    FeatureCompletion,
    FileChangeResult,
    SessionHistoryEntry,
    SessionInitResult,
    SessionStats,
    SnapshotResult,
    TransitionResult,
    WorkflowError,
    WorkflowFailure,
)
from taskflow.core.workflow.scope import ScopeCheck, ScopeValidator
from taskflow.core.workflow.session_tracker import SessionComplianceTracker
from taskflow.core.workflow.status_engine import EntityKind, StatusTransitionEngine

__all__ = [
    "HierarchyService",
    "FeatureSummary",
    "StatusTransitionEngine",
    "EntityKind",
    "SessionComplianceTracker",
    "ScopeValidator",
    "ScopeCheck",
    "FailureCode",
    "WorkflowError",
    "WorkflowFailure",
    "FeatureCompletion",
    "TransitionResult",
    "SessionStats",
    "FileChangeResult",
    "SnapshotResult",
    "SessionInitResult",
    "EndSessionResult",
    "SessionHistoryEntry",
]
