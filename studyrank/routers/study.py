from fastapi import APIRouter, Depends, Query, status

from studyrank.core.security import get_user_id
from studyrank.models.study import StudyEventCreate, StudyRecordResult, StudySummary
from studyrank.routers.dependencies import get_study_service
from studyrank.services.study_service import StudyService

router = APIRouter()


@router.post("/records", response_model=StudyRecordResult, status_code=status.HTTP_201_CREATED)
async def record_study(
    event: StudyEventCreate,
    user_id: str = Depends(get_user_id),
    study_service: StudyService = Depends(get_study_service)
):
    """Record a studied topic or practice exam; schedules 5 reviews and awards XP"""
    return await study_service.record_study(user_id, event)


@router.get("/summary", response_model=StudySummary)
async def get_study_summary(
    period: str = Query("week", pattern="^(week|month)$"),
    user_id: str = Depends(get_user_id),
    study_service: StudyService = Depends(get_study_service)
):
    """Study minutes per subject for the last week or month"""
    return await study_service.get_study_summary(user_id, period)
