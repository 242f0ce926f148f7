"""
TaskFlow - API Dependencies
===========================

Shared dependencies for FastAPI endpoints.
"""

from typing import Annotated, TypeVar, Union

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from taskflow.core.database import get_db
from taskflow.core.workflow import (
    FailureCode,
    HierarchyService,
    SessionComplianceTracker,
    StatusTransitionEngine,
    WorkflowFailure,
)

T = TypeVar("T")


# ==========================================================================
# Failure Mapping
# ==========================================================================

FAILURE_STATUS_CODES = {
    FailureCode.ENTITY_NOT_FOUND: 404,
    FailureCode.PARENT_NOT_FOUND: 404,
    FailureCode.BLOCKING_ENTITY_NOT_FOUND: 404,
    FailureCode.DUPLICATE_NAME: 409,
    FailureCode.SESSION_NOT_ACTIVE: 409,
    FailureCode.INVALID_OR_INACTIVE_SESSION: 409,
    FailureCode.MISSING_BLOCKING_INFO: 422,
    FailureCode.SELF_BLOCKING_NOT_ALLOWED: 422,
    FailureCode.INVALID_STATUS: 422,
    FailureCode.INVALID_ARGUMENT: 422,
    FailureCode.STORE_ERROR: 503,
}


def unwrap(outcome: Union[T, WorkflowFailure]) -> T:
    """
    Return a workflow result, or raise the HTTPException for its failure.

    The response detail carries the failure code so clients can branch on
    it without parsing the message.
    """
    if isinstance(outcome, WorkflowFailure):
        raise HTTPException(
            status_code=FAILURE_STATUS_CODES.get(outcome.code, status.HTTP_400_BAD_REQUEST),
            detail={
                "code": outcome.code.value,
                "message": outcome.message,
                **outcome.details,
            },
        )
    return outcome


# ==========================================================================
# Service Dependencies
# ==========================================================================

def get_hierarchy(db: Annotated[AsyncSession, Depends(get_db)]) -> HierarchyService:
    return HierarchyService(db)


def get_status_engine(db: Annotated[AsyncSession, Depends(get_db)]) -> StatusTransitionEngine:
    return StatusTransitionEngine(db)


def get_tracker(db: Annotated[AsyncSession, Depends(get_db)]) -> SessionComplianceTracker:
    return SessionComplianceTracker(db)


# ==========================================================================
# Type Aliases for Dependency Injection
# ==========================================================================

# Use these in endpoint signatures for cleaner code
DbSession = Annotated[AsyncSession, Depends(get_db)]
Hierarchy = Annotated[HierarchyService, Depends(get_hierarchy)]
StatusEngine = Annotated[StatusTransitionEngine, Depends(get_status_engine)]
Tracker = Annotated[SessionComplianceTracker, Depends(get_tracker)]
