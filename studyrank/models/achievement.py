from pydantic import BaseModel
from typing import Optional
from enum import Enum

class RequirementType(str, Enum):
    DEFAULT = "default"              # starter title, always granted
    SUBJECT_RANK = "subject_rank"    # one subject at a rank letter
    STREAK = "streak"                # consecutive study days
    TOTAL_MINUTES = "total_minutes"  # cumulative study time
    ALL_SUBJECTS = "all_subjects"    # every subject at a rank ordinal
    BEST_RANK = "best_rank"          # any subject at a rank ordinal

class TitleRarity(str, Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"

class AchievementKind(str, Enum):
    TITLE = "title"
    BADGE = "badge"

    @property
    def catalog_table(self) -> str:
        return "titles" if self is AchievementKind.TITLE else "badges"

    @property
    def unlock_table(self) -> str:
        return "user_titles" if self is AchievementKind.TITLE else "user_badges"

    @property
    def id_column(self) -> str:
        return "title_id" if self is AchievementKind.TITLE else "badge_id"

class AchievementDefinition(BaseModel):
    id: str
    name: str
    description: str = ""
    rarity: TitleRarity = TitleRarity.COMMON
    requirement_type: str
    requirement_value: Optional[int] = None
    requirement_subject_id: Optional[str] = None
    requirement_rank: Optional[str] = None
    gear_points: int = 0

class AchievementProgress(BaseModel):
    kind: AchievementKind
    id: str
    name: str
    description: str
    rarity: TitleRarity
    gear_points: int
    unlocked: bool
    progress: Optional[int] = None
    requirement: Optional[int] = None
    percentage: Optional[float] = None

class EquipTitleRequest(BaseModel):
    title_id: str
