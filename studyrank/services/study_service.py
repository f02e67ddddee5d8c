import logging
import uuid
from collections import defaultdict
from typing import List, Optional, Callable
from datetime import date, datetime, timedelta

from studyrank.core.database import RecordStore, get_database
from studyrank.core.exceptions import NotFoundError, PersistenceError
from studyrank.models.progress import ActivityKind
from studyrank.models.study import (
    StudyEventCreate, StudyEvent, ReviewScheduleEntry, ReviewCompletion,
    StudyRecordResult, StudySummary, SubjectMinutes
)
from studyrank.services.gamification_service import GamificationService
from studyrank.services.review_scheduler import (
    schedule_reviews, format_date_for_db, is_due, is_overdue, utc_now
)

logger = logging.getLogger(__name__)

SUMMARY_PERIODS = {"week": 7, "month": 30}


class StudyService:
    def __init__(
        self,
        db: Optional[RecordStore] = None,
        clock: Optional[Callable[[], datetime]] = None,
        gamification_service: Optional[GamificationService] = None
    ):
        self._db = db
        self.clock = clock or utc_now
        self.gamification_service = gamification_service or GamificationService(db=db, clock=self.clock)

    async def _get_db(self) -> RecordStore:
        return self._db or await get_database()

    async def record_study(self, user_id: str, event: StudyEventCreate) -> StudyRecordResult:
        """Record a completed topic or practice exam, schedule its reviews and award XP"""
        db = await self._get_db()
        studied_at = event.studied_at or self.clock()

        record = db.create("study_records", {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "subject_id": event.subject_id,
            "record_type": event.record_type.value,
            "topic_id": event.topic_id,
            "practice_exam_id": event.practice_exam_id,
            "study_minutes": event.study_minutes,
            "studied_at": studied_at.isoformat()
        })

        schedules = [
            {
                "id": str(uuid.uuid4()),
                "study_record_id": record["id"],
                "user_id": user_id,
                "subject_id": event.subject_id,
                "review_number": review_number,
                "scheduled_date": format_date_for_db(scheduled_date),
                "completed": False,
                "completed_at": None
            }
            for review_number, scheduled_date in schedule_reviews(studied_at)
        ]
        try:
            created = db.create_many("review_schedules", schedules)
            if len(created) != len(schedules):
                raise PersistenceError(
                    f"expected {len(schedules)} reviews for study record {record['id']}, got {len(created)}"
                )
        except PersistenceError:
            logger.warning("Scheduling reviews for study record %s failed, removing it", record["id"])
            db.delete("review_schedules", study_record_id=record["id"])
            db.delete("study_records", id=record["id"])
            raise

        xp = await self.gamification_service.award_xp(
            user_id=user_id,
            subject_id=event.subject_id,
            activity=event.record_type.activity,
            study_minutes=event.study_minutes
        )

        return StudyRecordResult(
            study_record=StudyEvent(**record),
            reviews=[ReviewScheduleEntry(**row) for row in created],
            xp=xp
        )

    async def get_review_queue(
        self,
        user_id: str,
        today: Optional[date] = None,
        include_overdue: bool = False
    ) -> List[ReviewScheduleEntry]:
        """Reviews scheduled for today that are still open (optionally older ones too)"""
        db = await self._get_db()
        today = today or self.clock().date()

        filters = {"user_id": user_id, "completed": False}
        if include_overdue:
            rows = db.query("review_schedules", match=filters, lte={"scheduled_date": today.isoformat()})
        else:
            rows = db.query("review_schedules", match={**filters, "scheduled_date": today.isoformat()})

        entries = [ReviewScheduleEntry(**row) for row in rows]
        entries = [
            entry for entry in entries
            if is_due(entry, today) or (include_overdue and is_overdue(entry, today))
        ]
        return sorted(entries, key=lambda entry: (entry.scheduled_date, entry.review_number))

    async def complete_review(self, user_id: str, schedule_id: str) -> ReviewCompletion:
        """Mark a review done and award review XP exactly once"""
        db = await self._get_db()

        entry = db.get("review_schedules", id=schedule_id, user_id=user_id)
        if not entry:
            raise NotFoundError(f"Review {schedule_id} not found")

        # Only the request that flips completed=false wins the XP
        completed_at = self.clock().isoformat()
        flipped = db.update(
            "review_schedules",
            {"completed": True, "completed_at": completed_at},
            id=schedule_id,
            user_id=user_id,
            completed=False
        )
        if not flipped:
            logger.info("Review %s already completed by user %s", schedule_id, user_id)
            return ReviewCompletion(schedule_id=schedule_id, already_completed=True)

        xp = await self.gamification_service.award_xp(
            user_id=user_id,
            subject_id=entry["subject_id"],
            activity=ActivityKind.REVIEW,
            study_minutes=0
        )
        if not xp.success:
            # Reopen the review so a retry can win the flip again
            logger.warning("Review %s XP not awarded, reopening it", schedule_id)
            db.update(
                "review_schedules",
                {"completed": False, "completed_at": None},
                id=schedule_id,
                user_id=user_id,
                completed_at=completed_at
            )
        return ReviewCompletion(schedule_id=schedule_id, xp=xp)

    async def get_study_summary(self, user_id: str, period: str = "week") -> StudySummary:
        """Minutes studied per subject over the last week or month"""
        if period not in SUMMARY_PERIODS:
            raise ValueError(f"Unknown period {period!r}, expected one of {sorted(SUMMARY_PERIODS)}")

        db = await self._get_db()
        now = self.clock()
        start = now - timedelta(days=SUMMARY_PERIODS[period])

        records = db.query(
            "study_records",
            columns="subject_id,study_minutes,studied_at",
            match={"user_id": user_id},
            gte={"studied_at": start.isoformat()},
            lte={"studied_at": now.isoformat()}
        )

        minutes_by_subject = defaultdict(int)
        for record in records:
            minutes_by_subject[record["subject_id"]] += record.get("study_minutes") or 0

        subjects = [
            SubjectMinutes(subject_id=subject_id, minutes=minutes)
            for subject_id, minutes in sorted(minutes_by_subject.items(), key=lambda item: -item[1])
        ]
        return StudySummary(
            period=period,
            start_date=start.date(),
            end_date=now.date(),
            total_minutes=sum(minutes_by_subject.values()),
            subjects=subjects
        )
