from fastapi import APIRouter, Depends, Query
from typing import List
from datetime import date

from studyrank.core.security import get_user_id
from studyrank.models.study import ReviewScheduleEntry, ReviewSlot, ReviewCompletion
from studyrank.routers.dependencies import get_study_service
from studyrank.services.review_scheduler import schedule_reviews
from studyrank.services.study_service import StudyService

router = APIRouter()


@router.get("/today", response_model=List[ReviewScheduleEntry])
async def get_todays_reviews(
    include_overdue: bool = Query(False),
    user_id: str = Depends(get_user_id),
    study_service: StudyService = Depends(get_study_service)
):
    """Get today's review queue"""
    return await study_service.get_review_queue(user_id, include_overdue=include_overdue)


@router.get("/calendar", response_model=List[ReviewSlot])
async def preview_review_calendar(study_date: date):
    """Preview the review dates a study session on ``study_date`` would get"""
    return [
        ReviewSlot(review_number=review_number, scheduled_date=scheduled_date)
        for review_number, scheduled_date in schedule_reviews(study_date)
    ]


@router.post("/{schedule_id}/complete", response_model=ReviewCompletion)
async def complete_review(
    schedule_id: str,
    user_id: str = Depends(get_user_id),
    study_service: StudyService = Depends(get_study_service)
):
    """Mark a review as done; review XP is awarded only the first time"""
    return await study_service.complete_review(user_id, schedule_id)
