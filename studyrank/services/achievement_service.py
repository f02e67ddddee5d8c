import logging
from functools import cached_property
from typing import List, Dict, Optional, Set, Callable
from datetime import datetime

from studyrank.core.config import settings
from studyrank.core.database import RecordStore, get_database
from studyrank.core.exceptions import (
    DuplicateRecordError, InvariantViolation, NotFoundError, PersistenceError
)
from studyrank.models.achievement import (
    AchievementDefinition, AchievementKind, AchievementProgress, RequirementType
)
from studyrank.models.progress import STATS_DEFAULTS
from studyrank.services.rank_table import letter_ordinal, rank_ordinal
from studyrank.services.review_scheduler import utc_now

logger = logging.getLogger(__name__)


class ProgressSnapshot:
    """Lazily loaded view of one user's persisted progress.

    Each piece is read at most once per evaluation pass, and only if some
    definition's predicate needs it.
    """

    def __init__(self, db: RecordStore, user_id: str):
        self.db = db
        self.user_id = user_id

    @cached_property
    def stats(self) -> Dict:
        return self.db.get("user_stats", user_id=self.user_id) or {}

    @cached_property
    def masteries(self) -> Dict[str, Dict]:
        rows = self.db.query("subject_mastery", match={"user_id": self.user_id})
        return {row["subject_id"]: row for row in rows}

    @cached_property
    def subject_ids(self) -> Set[str]:
        return {row["id"] for row in self.db.query("subjects", columns="id")}

    @cached_property
    def total_minutes(self) -> int:
        records = self.db.query("study_records", columns="study_minutes", match={"user_id": self.user_id})
        return sum(record.get("study_minutes") or 0 for record in records)

    @property
    def streak_days(self) -> int:
        return self.stats.get("streak_days") or 0

    @property
    def best_rank_ordinal(self) -> Optional[int]:
        if not self.masteries:
            return None
        return max(rank_ordinal(m["rank"]) for m in self.masteries.values())


class AchievementService:
    def __init__(self, db: Optional[RecordStore] = None, clock: Optional[Callable[[], datetime]] = None):
        self._db = db
        self.clock = clock or utc_now

    async def _get_db(self) -> RecordStore:
        return self._db or await get_database()

    def _load_definitions(self, db: RecordStore, kind: AchievementKind) -> List[AchievementDefinition]:
        return [AchievementDefinition(**row) for row in db.query(kind.catalog_table)]

    def _load_unlocked(self, db: RecordStore, kind: AchievementKind, user_id: str) -> Set[str]:
        rows = db.query(kind.unlock_table, columns=kind.id_column, match={"user_id": user_id})
        return {row[kind.id_column] for row in rows}

    def _required_value(self, definition: AchievementDefinition) -> int:
        if definition.requirement_value is None:
            raise InvariantViolation(f"{definition.id} ({definition.requirement_type}) has no requirement_value")
        return definition.requirement_value

    def _check_requirement(self, definition: AchievementDefinition, snapshot: ProgressSnapshot) -> bool:
        """Evaluate one unlock predicate against the snapshot"""
        try:
            requirement_type = RequirementType(definition.requirement_type)
        except ValueError:
            raise InvariantViolation(
                f"{definition.id} has unknown requirement type {definition.requirement_type!r}"
            ) from None

        if requirement_type == RequirementType.DEFAULT:
            return True

        if requirement_type == RequirementType.SUBJECT_RANK:
            subject_id = definition.requirement_subject_id
            if not subject_id or not definition.requirement_rank:
                raise InvariantViolation(f"{definition.id} needs requirement_subject_id and requirement_rank")
            if subject_id not in snapshot.subject_ids:
                raise InvariantViolation(f"{definition.id} references missing subject {subject_id}")

            mastery = snapshot.masteries.get(subject_id)
            if not mastery:
                return False
            # Compared by major letter only: A- and A+ both satisfy "A"
            return letter_ordinal(mastery["rank"]) >= letter_ordinal(definition.requirement_rank)

        if requirement_type == RequirementType.STREAK:
            return snapshot.streak_days >= self._required_value(definition)

        if requirement_type == RequirementType.TOTAL_MINUTES:
            return snapshot.total_minutes >= self._required_value(definition)

        if requirement_type == RequirementType.ALL_SUBJECTS:
            required = self._required_value(definition)
            if not snapshot.subject_ids:
                return False
            # Full 20-step ordinal here, unlike SUBJECT_RANK
            for subject_id in snapshot.subject_ids:
                mastery = snapshot.masteries.get(subject_id)
                if not mastery or rank_ordinal(mastery["rank"]) < required:
                    return False
            return True

        if requirement_type == RequirementType.BEST_RANK:
            best = snapshot.best_rank_ordinal
            return best is not None and best >= self._required_value(definition)

        return False

    def _is_satisfied(self, definition: AchievementDefinition, snapshot: ProgressSnapshot) -> bool:
        try:
            return self._check_requirement(definition, snapshot)
        except InvariantViolation as e:
            logger.warning("Skipping achievement %s: %s", definition.id, e)
            return False

    def _insert_unlocks(
        self,
        db: RecordStore,
        kind: AchievementKind,
        user_id: str,
        definitions: List[AchievementDefinition]
    ) -> List[AchievementDefinition]:
        """Insert unlock rows, returning the definitions actually inserted"""
        unlocked_at = self.clock().isoformat()
        rows = [
            {
                "user_id": user_id,
                kind.id_column: definition.id,
                "unlocked_at": unlocked_at,
                "gear_points": definition.gear_points,
                "gear_points_credited": False
            }
            for definition in definitions
        ]

        try:
            db.create_many(kind.unlock_table, rows)
            return definitions
        except DuplicateRecordError:
            logger.info("Concurrent %s unlock for user %s, inserting one by one", kind.value, user_id)

        inserted = []
        for definition, row in zip(definitions, rows):
            try:
                db.create(kind.unlock_table, row)
                inserted.append(definition)
            except DuplicateRecordError:
                continue  # another pass already granted it
        return inserted

    def _release_claims(self, db: RecordStore, user_id: str, claimed: List) -> None:
        for kind, row in claimed:
            db.update(
                kind.unlock_table,
                {"gear_points_credited": False},
                user_id=user_id,
                **{kind.id_column: row[kind.id_column]}
            )

    def _credit_pending_gear_points(self, db: RecordStore, user_id: str) -> int:
        """Credit the gear points owed by every unlock row not yet credited.

        Rows are claimed by flipping ``gear_points_credited`` before the stats
        write, so two passes never credit the same unlock. If the write fails
        the claims are released and the next pass picks the rows up again.
        """
        claimed = []
        try:
            for kind in AchievementKind:
                rows = db.update(
                    kind.unlock_table,
                    {"gear_points_credited": True},
                    user_id=user_id,
                    gear_points_credited=False
                )
                claimed.extend((kind, row) for row in rows)

            gear_points = sum(row.get("gear_points") or 0 for _, row in claimed)
            if gear_points:
                db.compare_and_swap(
                    "user_stats",
                    {"user_id": user_id},
                    lambda current: {"gear_points": (current.get("gear_points") or 0) + gear_points},
                    defaults=STATS_DEFAULTS,
                    max_retries=settings.cas_max_retries
                )
        except PersistenceError:
            logger.warning("Gear point credit for user %s failed, releasing %d claims", user_id, len(claimed))
            self._release_claims(db, user_id, claimed)
            raise

        return gear_points

    async def evaluate_unlocks(self, user_id: str) -> Set[str]:
        """Grant every title and badge the user newly qualifies for.

        Unlocks are one-shot: definitions already held are never re-checked.
        Each unlock row records the gear points it owes, and every pass
        credits whatever earlier passes failed to. Returns the ids granted by
        this pass.
        """
        db = await self._get_db()
        snapshot = ProgressSnapshot(db, user_id)
        granted: List[AchievementDefinition] = []

        for kind in AchievementKind:
            unlocked = self._load_unlocked(db, kind, user_id)
            qualifying = [
                definition
                for definition in self._load_definitions(db, kind)
                if definition.id not in unlocked and self._is_satisfied(definition, snapshot)
            ]
            if qualifying:
                granted.extend(self._insert_unlocks(db, kind, user_id, qualifying))

        self._credit_pending_gear_points(db, user_id)

        for definition in granted:
            logger.info("User %s unlocked %s (+%d gear points)", user_id, definition.name, definition.gear_points)

        return {definition.id for definition in granted}

    async def get_equipped_title(self, user_id: str) -> Optional[Dict]:
        db = await self._get_db()
        equipped = db.get("user_equipped_title", user_id=user_id)
        if not equipped:
            return None
        return db.get("titles", id=equipped["title_id"])

    async def equip_title(self, user_id: str, title_id: str) -> Dict:
        """Equip an unlocked title (a user wears at most one)"""
        db = await self._get_db()

        if not db.get("user_titles", user_id=user_id, title_id=title_id):
            raise NotFoundError(f"Title {title_id} is not unlocked for this user")

        db.upsert(
            "user_equipped_title",
            {"user_id": user_id, "title_id": title_id, "updated_at": self.clock().isoformat()},
            on_conflict="user_id"
        )
        return db.get("titles", id=title_id)

    async def ensure_starter_title(self, user_id: str) -> Optional[Dict]:
        """Grant default titles and equip one if the user has nothing equipped"""
        await self.evaluate_unlocks(user_id)

        equipped = await self.get_equipped_title(user_id)
        if equipped:
            return equipped

        db = await self._get_db()
        defaults = db.query("titles", match={"requirement_type": RequirementType.DEFAULT.value})
        unlocked = self._load_unlocked(db, AchievementKind.TITLE, user_id)
        for title in defaults:
            if title["id"] in unlocked:
                return await self.equip_title(user_id, title["id"])
        return None

    async def count_titles(self, user_id: str) -> Dict[str, int]:
        db = await self._get_db()
        return {
            "earned": len(self._load_unlocked(db, AchievementKind.TITLE, user_id)),
            "total": len(db.query("titles", columns="id"))
        }

    async def get_catalog(self, user_id: str) -> List[AchievementProgress]:
        """Every title and badge with unlock state and progress toward numeric goals"""
        db = await self._get_db()
        snapshot = ProgressSnapshot(db, user_id)
        catalog = []

        for kind in AchievementKind:
            unlocked = self._load_unlocked(db, kind, user_id)

            for definition in self._load_definitions(db, kind):
                progress = None
                if definition.requirement_type == RequirementType.STREAK.value:
                    progress = snapshot.streak_days
                elif definition.requirement_type == RequirementType.TOTAL_MINUTES.value:
                    progress = snapshot.total_minutes
                elif definition.requirement_type == RequirementType.BEST_RANK.value:
                    try:
                        progress = snapshot.best_rank_ordinal or 0
                    except InvariantViolation as e:
                        logger.warning("No progress for %s: %s", definition.id, e)

                requirement = definition.requirement_value
                percentage = None
                if progress is not None and requirement:
                    percentage = min(progress / requirement * 100, 100)

                catalog.append(AchievementProgress(
                    kind=kind,
                    id=definition.id,
                    name=definition.name,
                    description=definition.description,
                    rarity=definition.rarity,
                    gear_points=definition.gear_points,
                    unlocked=definition.id in unlocked,
                    progress=min(progress, requirement) if progress is not None and requirement else progress,
                    requirement=requirement,
                    percentage=round(percentage, 1) if percentage is not None else None
                ))

        return catalog
