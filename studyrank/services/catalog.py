"""Starter catalog of titles and badges.

Ids are derived with uuid5 from a stable key so seeding is repeatable: running
``seed_catalog`` twice upserts the same rows instead of duplicating them.
"""

import logging
import uuid
from typing import List, Dict

from studyrank.core.database import RecordStore
from studyrank.models.achievement import AchievementKind, RequirementType, TitleRarity
from studyrank.services.rank_table import rank_ordinal

logger = logging.getLogger(__name__)

CATALOG_NAMESPACE = uuid.UUID("5f0c6a57-2d7e-4a47-9a40-3f1f4e3c2b10")


def catalog_id(kind: AchievementKind, key: str) -> str:
    return str(uuid.uuid5(CATALOG_NAMESPACE, f"{kind.value}:{key}"))


def _entry(kind, key, name, description, rarity, requirement_type, gear_points, **requirement) -> Dict:
    return {
        "id": catalog_id(kind, key),
        "name": name,
        "description": description,
        "rarity": rarity.value,
        "requirement_type": requirement_type.value,
        "requirement_value": requirement.get("value"),
        "requirement_subject_id": requirement.get("subject_id"),
        "requirement_rank": requirement.get("rank"),
        "gear_points": gear_points
    }


TITLE = AchievementKind.TITLE
BADGE = AchievementKind.BADGE

DEFAULT_TITLES = [
    _entry(TITLE, "beginner", "Beginner", "Everyone starts somewhere", TitleRarity.COMMON,
           RequirementType.DEFAULT, 0),
    _entry(TITLE, "streak-7", "Weekly Regular", "Study 7 days in a row", TitleRarity.RARE,
           RequirementType.STREAK, 100, value=7),
    _entry(TITLE, "streak-30", "Unbroken", "Study 30 days in a row", TitleRarity.EPIC,
           RequirementType.STREAK, 500, value=30),
    _entry(TITLE, "minutes-6000", "Hundred Hours", "Log 100 hours of study", TitleRarity.EPIC,
           RequirementType.TOTAL_MINUTES, 500, value=6000),
    _entry(TITLE, "all-subjects-b", "Well Rounded", "Every subject at B- or above", TitleRarity.EPIC,
           RequirementType.ALL_SUBJECTS, 800, value=rank_ordinal("B-")),
    _entry(TITLE, "all-subjects-s", "Grand Master", "Every subject at S or above", TitleRarity.LEGENDARY,
           RequirementType.ALL_SUBJECTS, 3000, value=rank_ordinal("S")),
]

DEFAULT_BADGES = [
    _entry(BADGE, "streak-3", "Warming Up", "3-day study streak", TitleRarity.COMMON,
           RequirementType.STREAK, 30, value=3),
    _entry(BADGE, "streak-14", "On Fire", "14-day study streak", TitleRarity.RARE,
           RequirementType.STREAK, 200, value=14),
    _entry(BADGE, "minutes-600", "Ten Hours In", "Log 10 hours of study", TitleRarity.COMMON,
           RequirementType.TOTAL_MINUTES, 50, value=600),
    _entry(BADGE, "minutes-3000", "Fifty Hours In", "Log 50 hours of study", TitleRarity.RARE,
           RequirementType.TOTAL_MINUTES, 250, value=3000),
    _entry(BADGE, "best-rank-a", "A-Lister", "Reach A- in any subject", TitleRarity.RARE,
           RequirementType.BEST_RANK, 300, value=rank_ordinal("A-")),
    _entry(BADGE, "best-rank-s9", "Off the Charts", "Reach S+9 in any subject", TitleRarity.LEGENDARY,
           RequirementType.BEST_RANK, 5000, value=rank_ordinal("S+9")),
]


def subject_titles(subject: Dict) -> List[Dict]:
    """Rank titles for one subject: reaching A and S in it"""
    return [
        _entry(TITLE, f"{subject['id']}:{letter}", f"{subject['name']} {label}",
               f"Reach {letter} rank in {subject['name']}", rarity,
               RequirementType.SUBJECT_RANK, gear_points,
               subject_id=subject["id"], rank=letter)
        for letter, label, rarity, gear_points in (
            ("A", "Ace", TitleRarity.RARE, 300),
            ("S", "Sovereign", TitleRarity.LEGENDARY, 1000),
        )
    ]


def seed_catalog(db: RecordStore) -> Dict[str, int]:
    """Upsert the starter titles, badges and per-subject rank titles"""
    titles = list(DEFAULT_TITLES)
    for subject in db.query("subjects", columns="id,name"):
        titles.extend(subject_titles(subject))

    for title in titles:
        db.upsert(TITLE.catalog_table, title, on_conflict="id")
    for badge in DEFAULT_BADGES:
        db.upsert(BADGE.catalog_table, badge, on_conflict="id")

    logger.info("Seeded %d titles and %d badges", len(titles), len(DEFAULT_BADGES))
    return {"titles": len(titles), "badges": len(DEFAULT_BADGES)}
