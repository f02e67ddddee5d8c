import math
from bisect import bisect_right
from typing import List, Dict, Optional, Tuple

from studyrank.core.exceptions import InvariantViolation
from studyrank.models.progress import RankInfo

# (rank, min_xp). Each rank runs up to the next rank's min_xp - 1; the last is unbounded.
RANK_THRESHOLDS = [
    ("C-", 0),
    ("C", 500),
    ("C+", 1000),
    ("B-", 2000),
    ("B", 3500),
    ("B+", 5500),
    ("A-", 8000),
    ("A", 11000),
    ("A+", 15000),
    ("S", 20000),
    ("S+0", 25000),
    ("S+1", 28000),
    ("S+2", 31000),
    ("S+3", 34000),
    ("S+4", 37000),
    ("S+5", 40000),
    ("S+6", 43000),
    ("S+7", 46000),
    ("S+8", 49000),
    ("S+9", 52000),
]

RANKS: List[str] = [rank for rank, _ in RANK_THRESHOLDS]
DEFAULT_RANK = RANKS[0]
TOP_RANK = RANKS[-1]

_MIN_XP = [min_xp for _, min_xp in RANK_THRESHOLDS]
_ORDINALS: Dict[str, int] = {rank: index for index, rank in enumerate(RANKS)}

# Major-letter buckets; sub-grades inside a letter compare equal
LETTER_VALUES = {"C": 1, "B": 2, "A": 3, "S": 4}

RANK_COLORS = {
    "C": "#10B981",  # green
    "B": "#3B82F6",  # blue
    "A": "#F59E0B",  # orange
    "S": "#EF4444",  # red
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _index_for_xp(xp: int) -> int:
    if xp < 0:
        raise ValueError(f"XP cannot be negative: {xp}")
    return bisect_right(_MIN_XP, xp) - 1


def rank_bounds(rank: str) -> Tuple[int, Optional[int]]:
    """(min_xp, max_xp) for a rank; max_xp is None for the top rank"""
    index = rank_ordinal(rank)
    if index == len(RANKS) - 1:
        return _MIN_XP[index], None
    return _MIN_XP[index], _MIN_XP[index + 1] - 1


def rank_for_xp(xp: int) -> str:
    return RANKS[_index_for_xp(xp)]


def progress_within_rank(xp: int) -> int:
    """Percent (0-100) of the way through the current rank"""
    min_xp, max_xp = rank_bounds(rank_for_xp(xp))
    if max_xp is None:
        return 100
    width = max_xp - min_xp + 1
    return max(0, min(100, round_half_up(100 * (xp - min_xp) / width)))


def xp_to_next_rank(xp: int) -> int:
    _, max_xp = rank_bounds(rank_for_xp(xp))
    if max_xp is None:
        return 0
    return max_xp - xp + 1


def rank_ordinal(rank: str) -> int:
    """Fine-grained position of a rank: C- = 0 ... S = 9 ... S+9 = 19"""
    try:
        return _ORDINALS[rank]
    except KeyError:
        raise InvariantViolation(f"Unknown rank: {rank!r}") from None


def letter_ordinal(rank: str) -> int:
    """Major-letter position of a rank (C=1, B=2, A=3, S=4)"""
    if not rank or rank[0] not in LETTER_VALUES:
        raise InvariantViolation(f"Unknown rank: {rank!r}")
    return LETTER_VALUES[rank[0]]


def rank_color(rank: str) -> str:
    return RANK_COLORS.get(rank[:1], "#6B7280")


def rank_info(xp: int) -> RankInfo:
    rank = rank_for_xp(xp)
    min_xp, max_xp = rank_bounds(rank)
    return RankInfo(
        rank=rank,
        stars=rank_ordinal(rank),
        min_xp=min_xp,
        max_xp=max_xp,
        progress=progress_within_rank(xp),
        xp_to_next=xp_to_next_rank(xp),
        color=rank_color(rank)
    )


def rank_table() -> List[Dict]:
    """The full table, for display"""
    table = []
    for rank in RANKS:
        min_xp, max_xp = rank_bounds(rank)
        table.append({
            "rank": rank,
            "stars": rank_ordinal(rank),
            "min_xp": min_xp,
            "max_xp": max_xp,
            "color": rank_color(rank)
        })
    return table
