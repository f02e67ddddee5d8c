from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date
from enum import Enum

# Column defaults for lazily created rows
MASTERY_DEFAULTS = {"current_xp": 0, "rank": "C-", "version": 0}
STATS_DEFAULTS = {
    "total_xp": 0,
    "current_level": 1,
    "streak_days": 0,
    "last_study_date": None,
    "gear_points": 0,
    "version": 0
}

class ActivityKind(str, Enum):
    TOPIC = "topic"
    PRACTICE_EXAM = "practice_exam"
    REVIEW = "review"

class XPCalculation(BaseModel):
    base_xp: int
    study_minutes: int
    streak_multiplier: float = 1.0
    total_xp: int

class XPAwardRequest(BaseModel):
    subject_id: str
    activity: ActivityKind
    study_minutes: int = Field(0, ge=0)

class XPAwardResult(BaseModel):
    success: bool = True
    xp_gained: int
    new_rank: str
    leveled_up: bool = False

class SubjectMastery(BaseModel):
    id: str
    user_id: str
    subject_id: str
    current_xp: int = 0
    rank: str = "C-"
    version: int = 0

class UserStats(BaseModel):
    id: Optional[str] = None
    user_id: str
    total_xp: int = 0
    current_level: int = 1
    streak_days: int = 0
    last_study_date: Optional[date] = None
    gear_points: int = 0
    version: int = 0

class RankInfo(BaseModel):
    rank: str
    stars: int
    min_xp: int
    max_xp: Optional[int] = None  # None for the top rank
    progress: int
    xp_to_next: int
    color: str

class MasteryView(BaseModel):
    subject_id: str
    current_xp: int
    rank: RankInfo

class PlayerProfile(BaseModel):
    stats: UserStats
    equipped_title: Optional[dict] = None
    total_study_hours: int = 0
    titles_earned: int = 0
    titles_total: int = 0
    masteries: List[MasteryView] = []
