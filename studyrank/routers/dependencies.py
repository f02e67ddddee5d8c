from datetime import datetime
from typing import Callable

from fastapi import Depends

from studyrank.core.database import RecordStore, get_database
from studyrank.services.achievement_service import AchievementService
from studyrank.services.gamification_service import GamificationService
from studyrank.services.review_scheduler import utc_now
from studyrank.services.study_service import StudyService


def get_clock() -> Callable[[], datetime]:
    return utc_now


def get_achievement_service(
    db: RecordStore = Depends(get_database),
    clock: Callable[[], datetime] = Depends(get_clock)
) -> AchievementService:
    return AchievementService(db=db, clock=clock)


def get_gamification_service(
    db: RecordStore = Depends(get_database),
    clock: Callable[[], datetime] = Depends(get_clock),
    achievement_service: AchievementService = Depends(get_achievement_service)
) -> GamificationService:
    return GamificationService(db=db, clock=clock, achievement_service=achievement_service)


def get_study_service(
    db: RecordStore = Depends(get_database),
    clock: Callable[[], datetime] = Depends(get_clock),
    gamification_service: GamificationService = Depends(get_gamification_service)
) -> StudyService:
    return StudyService(db=db, clock=clock, gamification_service=gamification_service)
