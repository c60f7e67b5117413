"""
Preferences API endpoints.
Learns sender preferences from user actions and serves suggestions, stored
preferences and the weekly summary.
"""

import logging
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from db import get_db
from routers.deps import get_user_id
from schemas import (
    ApplyPreferencesRequest,
    ApplyPreferencesResponse,
    AutoActionsRequest,
    LearnPreferencesRequest,
    LearnPreferencesResponse,
    PreferenceResponse,
    ResetPreferencesResponse,
    SuggestionResponse,
    WeeklySummaryResponse,
)
from triage.personalization import (
    LearnedAction,
    PreferenceConflictError,
    PreferenceLearner,
    week_start_for,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def get_learner() -> PreferenceLearner:
    return PreferenceLearner()


@router.post("/learn", response_model=LearnPreferencesResponse)
async def learn_preferences(
    request: LearnPreferencesRequest,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    learner: PreferenceLearner = Depends(get_learner),
) -> LearnPreferencesResponse:
    """
    Record user actions and update learned preferences.

    Raises:
        HTTPException: 409 if concurrent updates kept conflicting
    """
    actions = [LearnedAction(sender=a.sender, action=a.action, subject=a.subject) for a in request.actions]
    try:
        learned = await learner.learn(db, user_id, actions)
    except PreferenceConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return LearnPreferencesResponse(learned=learned)


@router.post("/apply", response_model=ApplyPreferencesResponse)
async def apply_preferences(
    request: ApplyPreferencesRequest,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    learner: PreferenceLearner = Depends(get_learner),
) -> ApplyPreferencesResponse:
    """Suggest actions for emails from preferences at or above min_confidence."""
    suggestions = await learner.apply_preferences(
        db,
        user_id,
        [{"id": e.id, "sender": e.sender} for e in request.emails],
        min_confidence=request.min_confidence,
    )
    return ApplyPreferencesResponse(suggestions=[SuggestionResponse(**s) for s in suggestions])


@router.get("", response_model=List[PreferenceResponse])
async def list_preferences(
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    learner: PreferenceLearner = Depends(get_learner),
) -> List[PreferenceResponse]:
    preferences = await learner.list_preferences(db, user_id)
    return [PreferenceResponse.model_validate(p) for p in preferences]


@router.delete("/{preference_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_preference(
    preference_id: int,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    learner: PreferenceLearner = Depends(get_learner),
) -> None:
    if not await learner.delete_preference(db, user_id, preference_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Preference {preference_id} not found",
        )


@router.delete("", response_model=ResetPreferencesResponse)
async def reset_preferences(
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    learner: PreferenceLearner = Depends(get_learner),
) -> ResetPreferencesResponse:
    """Delete every learned preference of the current user."""
    deleted = await learner.reset_preferences(db, user_id)
    return ResetPreferencesResponse(deleted=deleted)


@router.post("/auto-actions", status_code=status.HTTP_204_NO_CONTENT)
async def record_auto_actions(
    request: AutoActionsRequest,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    learner: PreferenceLearner = Depends(get_learner),
) -> None:
    await learner.record_auto_actions(db, user_id, request.count)


@router.get("/weekly-summary", response_model=WeeklySummaryResponse)
async def get_weekly_summary(
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    learner: PreferenceLearner = Depends(get_learner),
) -> WeeklySummaryResponse:
    """
    Counters of the current week. A week without activity returns zeros.
    """
    summary = await learner.get_weekly_summary(db, user_id)
    if summary is None:
        return WeeklySummaryResponse(week_start=week_start_for(datetime.utcnow().date()))
    return WeeklySummaryResponse.model_validate(summary)
