import logging
from typing import List, Dict, Optional, Callable
from datetime import date, datetime

from studyrank.core.config import settings
from studyrank.core.database import RecordStore, get_database
from studyrank.core.exceptions import PersistenceError, StudyRankError
from studyrank.models.progress import (
    ActivityKind, XPCalculation, XPAwardResult, UserStats, MasteryView,
    PlayerProfile, MASTERY_DEFAULTS, STATS_DEFAULTS
)
from studyrank.services.achievement_service import AchievementService
from studyrank.services.rank_table import DEFAULT_RANK, rank_for_xp, rank_info, round_half_up
from studyrank.services.review_scheduler import as_calendar_date, utc_now

logger = logging.getLogger(__name__)


def next_streak(previous_streak: int, last_study_date: Optional[date], today: date) -> int:
    """Streak after studying on ``today``.

    Same day keeps the streak, the next day extends it, and any longer gap
    starts over at 1.
    """
    if last_study_date is None:
        return 1

    gap = (today - last_study_date).days
    if gap == 1:
        return previous_streak + 1
    if gap > 1:
        return 1
    # gap == 0 (or a clock that went backwards): today already counted
    return previous_streak


def level_for_xp(total_xp: int, xp_per_level: int = 1000) -> int:
    return total_xp // xp_per_level + 1


class GamificationService:
    def __init__(
        self,
        db: Optional[RecordStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
        achievement_service: Optional[AchievementService] = None
    ):
        self._db = db
        self.clock = clock or utc_now
        self.achievement_service = achievement_service or AchievementService(db=db, clock=self.clock)
        self.base_xp = {
            ActivityKind.TOPIC: 50,
            ActivityKind.PRACTICE_EXAM: 100,
            ActivityKind.REVIEW: 30
        }
        self.streak_multiplier = 1.2
        self.xp_per_level = 1000

    async def _get_db(self) -> RecordStore:
        return self._db or await get_database()

    def calculate_xp(self, activity: ActivityKind, study_minutes: int, has_streak: bool) -> XPCalculation:
        """Calculate XP earned for a study activity"""
        if study_minutes < 0:
            raise ValueError("study_minutes cannot be negative")

        base_xp = self.base_xp[ActivityKind(activity)]
        total_xp = base_xp + study_minutes
        multiplier = 1.0

        # Streak bonus
        if has_streak:
            multiplier = self.streak_multiplier
            total_xp = round_half_up(total_xp * multiplier)

        return XPCalculation(
            base_xp=base_xp,
            study_minutes=study_minutes,
            streak_multiplier=multiplier,
            total_xp=total_xp
        )

    def _mastery_changes(self, mastery: Dict, xp_gained: int) -> Dict:
        new_xp = (mastery.get("current_xp") or 0) + xp_gained
        return {
            "current_xp": new_xp,
            "rank": rank_for_xp(new_xp),
            "updated_at": self.clock().isoformat()
        }

    def _stats_changes(self, stats: Dict, xp_gained: int, today: date) -> Dict:
        last_study = stats.get("last_study_date")
        last_study_date = as_calendar_date(last_study) if last_study else None
        new_total = (stats.get("total_xp") or 0) + xp_gained

        return {
            "total_xp": new_total,
            "current_level": level_for_xp(new_total, self.xp_per_level),
            "streak_days": next_streak(stats.get("streak_days") or 0, last_study_date, today),
            "last_study_date": today.isoformat(),
            "updated_at": self.clock().isoformat()
        }

    def _revert_mastery(self, db: RecordStore, user_id: str, subject_id: str, xp_gained: int) -> None:
        """Take back a mastery increment whose stats write never landed"""
        try:
            db.compare_and_swap(
                "subject_mastery",
                {"user_id": user_id, "subject_id": subject_id},
                lambda current: self._mastery_changes(current, -xp_gained),
                defaults=MASTERY_DEFAULTS,
                max_retries=settings.cas_max_retries
            )
        except PersistenceError:
            logger.exception("Could not revert %d XP on subject %s for user %s", xp_gained, subject_id, user_id)

    async def award_xp(
        self,
        user_id: str,
        subject_id: str,
        activity: ActivityKind,
        study_minutes: int = 0
    ) -> XPAwardResult:
        """Credit XP for one completed activity and update rank and streak.

        Not idempotent: every call adds XP, so callers must invoke it once per
        user action. Store failures are reported as ``success=False`` rather
        than raised, and a mastery increment whose stats write failed is taken
        back so the caller can retry. Achievement evaluation runs afterwards
        and cannot change the result.
        """
        db = await self._get_db()
        previous_rank = DEFAULT_RANK

        try:
            existing = db.get("subject_mastery", user_id=user_id, subject_id=subject_id)
            if existing:
                previous_rank = existing.get("rank") or DEFAULT_RANK

            # Streak state before this activity decides the bonus
            stats = db.get("user_stats", user_id=user_id)
            has_streak = bool(stats) and (stats.get("streak_days") or 0) > 0

            xp_calc = self.calculate_xp(activity, study_minutes, has_streak)
            xp_gained = xp_calc.total_xp

            before, mastery = db.compare_and_swap(
                "subject_mastery",
                {"user_id": user_id, "subject_id": subject_id},
                lambda current: self._mastery_changes(current, xp_gained),
                defaults=MASTERY_DEFAULTS,
                max_retries=settings.cas_max_retries
            )
            previous_rank = before.get("rank") or DEFAULT_RANK
            new_rank = mastery["rank"]

            today = self.clock().date()
            try:
                db.compare_and_swap(
                    "user_stats",
                    {"user_id": user_id},
                    lambda current: self._stats_changes(current, xp_gained, today),
                    defaults=STATS_DEFAULTS,
                    max_retries=settings.cas_max_retries
                )
            except PersistenceError:
                self._revert_mastery(db, user_id, subject_id, xp_gained)
                raise
        except PersistenceError:
            logger.exception("Error awarding XP to user %s for subject %s", user_id, subject_id)
            return XPAwardResult(
                success=False,
                xp_gained=0,
                new_rank=previous_rank,
                leveled_up=False
            )

        leveled_up = new_rank != previous_rank
        logger.info(
            "User %s earned %d XP (%s) in subject %s: %s -> %s",
            user_id, xp_gained, ActivityKind(activity).value, subject_id, previous_rank, new_rank
        )

        try:
            await self.achievement_service.evaluate_unlocks(user_id)
        except StudyRankError:
            # Best effort: the XP above is already committed and the next pass retries
            logger.exception("Achievement evaluation failed for user %s", user_id)

        return XPAwardResult(
            success=True,
            xp_gained=xp_gained,
            new_rank=new_rank,
            leveled_up=leveled_up
        )

    async def get_or_create_stats(self, user_id: str) -> UserStats:
        db = await self._get_db()
        stats = db.get_or_create("user_stats", STATS_DEFAULTS, user_id=user_id)
        return UserStats(**stats)

    async def get_masteries(self, user_id: str) -> List[MasteryView]:
        """Per-subject XP with rank, progress and XP to next rank"""
        db = await self._get_db()
        rows = db.query("subject_mastery", match={"user_id": user_id}, order_by=["current_xp"], desc=True)

        return [
            MasteryView(
                subject_id=row["subject_id"],
                current_xp=row.get("current_xp") or 0,
                rank=rank_info(row.get("current_xp") or 0)
            )
            for row in rows
        ]

    async def get_total_study_minutes(self, user_id: str) -> int:
        db = await self._get_db()
        records = db.query("study_records", columns="study_minutes", match={"user_id": user_id})
        return sum(record.get("study_minutes") or 0 for record in records)

    async def get_profile(self, user_id: str) -> PlayerProfile:
        """Get the complete player card for a user.

        First access creates the stats row and grants/equips the starter title.
        """
        stats = await self.get_or_create_stats(user_id)
        equipped = await self.achievement_service.ensure_starter_title(user_id)
        title_counts = await self.achievement_service.count_titles(user_id)
        total_minutes = await self.get_total_study_minutes(user_id)

        # Starter-title grants may have credited gear points
        stats = await self.get_or_create_stats(user_id)

        return PlayerProfile(
            stats=stats,
            equipped_title=equipped,
            total_study_hours=total_minutes // 60,
            titles_earned=title_counts["earned"],
            titles_total=title_counts["total"],
            masteries=await self.get_masteries(user_id)
        )
