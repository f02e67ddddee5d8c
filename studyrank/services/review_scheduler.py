from typing import List, Tuple, Union, Callable, Optional
from datetime import date, datetime, timedelta, timezone

from studyrank.models.study import ReviewScheduleEntry

# Forgetting-curve approximation: review 1, 3, 7, 14 and 30 days after studying
REVIEW_INTERVALS = (1, 3, 7, 14, 30)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_calendar_date(value: Union[date, datetime, str]) -> date:
    """Reduce a date, datetime or ISO string to its calendar day"""
    if isinstance(value, str):
        value = datetime.fromisoformat(value) if "T" in value or " " in value else date.fromisoformat(value)
    if isinstance(value, datetime):
        return value.date()
    return value


def format_date_for_db(value: Union[date, datetime]) -> str:
    """YYYY-MM-DD, the form schedule dates are stored and compared in"""
    return as_calendar_date(value).isoformat()


def today_string(clock: Optional[Callable[[], datetime]] = None) -> str:
    return format_date_for_db((clock or utc_now)())


def schedule_reviews(study_date: Union[date, datetime]) -> List[Tuple[int, date]]:
    """Return the five (review_number, scheduled_date) pairs for a study date"""
    day = as_calendar_date(study_date)
    return [
        (review_number, day + timedelta(days=interval))
        for review_number, interval in enumerate(REVIEW_INTERVALS, start=1)
    ]


def is_due(entry: ReviewScheduleEntry, today: date) -> bool:
    return entry.scheduled_date == today and not entry.completed


def is_overdue(entry: ReviewScheduleEntry, today: date) -> bool:
    # Missed reviews never expire; they stay open until completed
    return entry.scheduled_date < today and not entry.completed
