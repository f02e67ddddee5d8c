from fastapi import APIRouter, Depends
from typing import List

from studyrank.core.security import get_user_id
from studyrank.models.achievement import AchievementProgress, EquipTitleRequest
from studyrank.routers.dependencies import get_achievement_service
from studyrank.services.achievement_service import AchievementService

router = APIRouter()


@router.get("", response_model=List[AchievementProgress])
async def get_achievements(
    user_id: str = Depends(get_user_id),
    achievement_service: AchievementService = Depends(get_achievement_service)
):
    """All titles and badges with unlock state and progress"""
    return await achievement_service.get_catalog(user_id)


@router.post("/evaluate")
async def evaluate_achievements(
    user_id: str = Depends(get_user_id),
    achievement_service: AchievementService = Depends(get_achievement_service)
):
    """Run an unlock pass now; safe to call any time"""
    granted = await achievement_service.evaluate_unlocks(user_id)
    return {"granted": sorted(granted)}


@router.put("/titles/equipped")
async def equip_title(
    request: EquipTitleRequest,
    user_id: str = Depends(get_user_id),
    achievement_service: AchievementService = Depends(get_achievement_service)
):
    """Equip one of the user's unlocked titles"""
    title = await achievement_service.equip_title(user_id, request.title_id)
    return {"equipped_title": title}
