"""
HTTP read routes for migrated entity types.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from migration.dependencies import get_reads
from migration.readers import DEFAULT_LIST_LIMIT, MigratedReads
from migration.schemas import (
    ActionPlan,
    AiMessage,
    OnboardingProfile,
    PillarCheckIn,
    PillarScore,
    UserCoreState,
)

router = APIRouter()


def _found(record: Optional[dict], what: str, user_id: str) -> dict:
    if record is None:
        raise HTTPException(status_code=404, detail=f"{what} not found for user {user_id}")
    return record


@router.get("/users/{user_id}/checkins", response_model=list[PillarCheckIn])
def list_checkins(
    user_id: str,
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=500),
    pillar: Optional[str] = None,
    reads: MigratedReads = Depends(get_reads),
):
    return reads.recent_checkins(user_id, pillar=pillar, limit=limit)


@router.get("/users/{user_id}/scores", response_model=list[PillarScore])
def list_scores(user_id: str, reads: MigratedReads = Depends(get_reads)):
    return reads.pillar_scores(user_id)


@router.get("/users/{user_id}/scores/{pillar}", response_model=PillarScore)
def get_score(user_id: str, pillar: str, reads: MigratedReads = Depends(get_reads)):
    return _found(reads.pillar_score(user_id, pillar), f"Score for pillar {pillar}", user_id)


@router.get("/users/{user_id}/onboarding", response_model=OnboardingProfile)
def get_onboarding(user_id: str, reads: MigratedReads = Depends(get_reads)):
    return _found(reads.onboarding_profile(user_id), "Onboarding profile", user_id)


@router.get("/users/{user_id}/core-state", response_model=UserCoreState)
def get_core_state(user_id: str, reads: MigratedReads = Depends(get_reads)):
    return _found(reads.user_core_state(user_id), "User state", user_id)


@router.get("/users/{user_id}/action-plans", response_model=list[ActionPlan])
def list_action_plans(
    user_id: str,
    pillar: Optional[str] = None,
    reads: MigratedReads = Depends(get_reads),
):
    return reads.action_plans(user_id, pillar=pillar)


@router.get("/users/{user_id}/ai-messages", response_model=list[AiMessage])
def list_ai_messages(
    user_id: str,
    session_id: Optional[str] = None,
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=500),
    reads: MigratedReads = Depends(get_reads),
):
    return reads.ai_messages(user_id, session_id=session_id, limit=limit)
