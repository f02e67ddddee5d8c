from fastapi import APIRouter, Depends
from typing import List, Dict

from studyrank.core.security import get_user_id
from studyrank.models.progress import XPAwardRequest, XPAwardResult, PlayerProfile
from studyrank.routers.dependencies import get_gamification_service
from studyrank.services.gamification_service import GamificationService
from studyrank.services.rank_table import rank_table

router = APIRouter()


@router.post("/award", response_model=XPAwardResult)
async def award_xp(
    award: XPAwardRequest,
    user_id: str = Depends(get_user_id),
    gamification_service: GamificationService = Depends(get_gamification_service)
):
    """Award XP for a completed activity.

    Not idempotent: each call adds XP. A store failure comes back as
    ``success: false`` so the client can offer a retry.
    """
    return await gamification_service.award_xp(
        user_id=user_id,
        subject_id=award.subject_id,
        activity=award.activity,
        study_minutes=award.study_minutes
    )


@router.get("/profile", response_model=PlayerProfile)
async def get_player_profile(
    user_id: str = Depends(get_user_id),
    gamification_service: GamificationService = Depends(get_gamification_service)
):
    """Get complete gamification profile for user"""
    return await gamification_service.get_profile(user_id)


@router.get("/ranks", response_model=List[Dict])
async def get_rank_table():
    """The rank ladder from C- to S+9"""
    return rank_table()
