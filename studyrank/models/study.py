from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import datetime, date
from enum import Enum

from studyrank.models.progress import ActivityKind, XPAwardResult

class RecordType(str, Enum):
    TOPIC = "topic"
    PRACTICE_EXAM = "practice_exam"

    @property
    def activity(self) -> ActivityKind:
        return ActivityKind(self.value)

class StudyEventCreate(BaseModel):
    subject_id: str
    record_type: RecordType
    topic_id: Optional[str] = None
    practice_exam_id: Optional[str] = None
    study_minutes: int = Field(0, ge=0)
    studied_at: Optional[datetime] = None  # defaults to now

    @model_validator(mode="after")
    def check_target(self):
        if self.record_type == RecordType.TOPIC and not self.topic_id:
            raise ValueError("topic_id is required for topic records")
        if self.record_type == RecordType.PRACTICE_EXAM and not self.practice_exam_id:
            raise ValueError("practice_exam_id is required for practice exam records")
        return self

class StudyEvent(BaseModel):
    id: str
    user_id: str
    subject_id: str
    record_type: RecordType
    topic_id: Optional[str] = None
    practice_exam_id: Optional[str] = None
    study_minutes: int = 0
    studied_at: datetime

class ReviewScheduleEntry(BaseModel):
    id: Optional[str] = None
    study_record_id: Optional[str] = None
    user_id: Optional[str] = None
    subject_id: Optional[str] = None
    review_number: int = Field(..., ge=1, le=5)
    scheduled_date: date
    completed: bool = False
    completed_at: Optional[datetime] = None

class ReviewSlot(BaseModel):
    review_number: int
    scheduled_date: date

class ReviewCompletion(BaseModel):
    schedule_id: str
    already_completed: bool = False
    xp: Optional[XPAwardResult] = None

class StudyRecordResult(BaseModel):
    study_record: StudyEvent
    reviews: List[ReviewScheduleEntry]
    xp: XPAwardResult

class SubjectMinutes(BaseModel):
    subject_id: str
    minutes: int

class StudySummary(BaseModel):
    period: str
    start_date: date
    end_date: date
    total_minutes: int
    subjects: List[SubjectMinutes]
