"""
Pydantic schemas for the migrated read API.

Readers hand back camelCase dicts; the models accept them by alias and
serialize the same way.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PillarCheckIn(CamelModel):
    id: str
    user_id: str
    pillar_identifier: str
    value: int
    note: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PillarScore(CamelModel):
    id: str
    user_id: str
    pillar_identifier: str
    score: float
    trend: str = "stable"
    weekly_scores: list[Any] = []
    monthly_scores: list[Any] = []
    quick_wins: list[Any] = []
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OnboardingProfile(CamelModel):
    user_id: str
    doc: dict[str, Any]
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UserCoreState(CamelModel):
    user_id: str
    allowed_pillars: Optional[Any] = None
    pillars: Optional[Any] = None
    settings: Optional[Any] = None
    subscription_tier: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ActionPlan(CamelModel):
    id: str
    user_id: str
    pillar_identifier: Optional[str] = None
    doc: dict[str, Any]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AiMessage(CamelModel):
    id: str
    user_id: str
    session_id: Optional[str] = None
    role: str
    content: Optional[Any] = None
    meta: Optional[Any] = None
    created_at: Optional[datetime] = None
