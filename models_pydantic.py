"""Pydantic models validating records at the persistence boundary and LLM output."""

from dataclasses import asdict
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from availability import WEEKDAY_NAMES
from models import (
    Alert,
    AlertType,
    DiagnosticResult,
    Difficulty,
    Learner,
    LearnerPreferences,
    Performance,
    Severity,
    StudyPlan,
    Task,
    TaskStatus,
    TaskType,
    TimeOfDay,
    Topic,
)


class TopicPydantic(BaseModel):
    """A unit of exam content in the topic catalog."""

    topic_id: str = Field(..., description="Unique identifier of the topic")
    name: str = Field(..., description="Display name of the topic")
    category: str = Field(..., description="Exam category the topic belongs to")
    difficulty: Difficulty = Field(default=Difficulty.MEDIUM)
    importance: int = Field(default=5, description="Exam weight of the topic (1-10)", ge=1, le=10)
    estimated_duration: int = Field(default=30, description="Estimated study time in minutes", ge=0)
    prerequisites: List[str] = Field(
        default_factory=list,
        description="Topic ids that should be studied before this one",
    )
    description: str = Field(default="")

    @field_validator("prerequisites")
    @classmethod
    def no_self_prerequisite(cls, v: List[str], info) -> List[str]:
        topic_id = info.data.get("topic_id")
        if topic_id and topic_id in v:
            raise ValueError(f"Topic {topic_id} lists itself as a prerequisite")
        return v

    class Config:
        json_schema_extra = {
            "example": {
                "topic_id": "pharm-basics",
                "name": "Pharmacology basics",
                "category": "PHARMACOLOGICAL_THERAPIES",
                "difficulty": "MEDIUM",
                "importance": 8,
                "estimated_duration": 90,
                "prerequisites": ["anatomy-intro"],
            }
        }

    def to_model(self) -> Topic:
        return Topic(**self.model_dump())


class PreferencesPydantic(BaseModel):
    available_days: List[str] = Field(default_factory=lambda: WEEKDAY_NAMES[:5])
    study_hours_per_day: float = Field(default=2.0, gt=0, le=24)
    preferred_study_time: TimeOfDay = Field(default=TimeOfDay.MORNING)
    start_hour: int = Field(default=9, ge=0, le=23)
    end_hour: int = Field(default=17, ge=1, le=24)

    @field_validator("available_days")
    @classmethod
    def validate_weekdays(cls, v: List[str]) -> List[str]:
        unknown = [d for d in v if d not in WEEKDAY_NAMES]
        if unknown:
            raise ValueError(f"Unknown weekday names: {unknown}")
        return v

    @model_validator(mode="after")
    def check_hours(self) -> "PreferencesPydantic":
        if self.end_hour <= self.start_hour:
            raise ValueError("end_hour must be after start_hour")
        return self

    def to_model(self) -> LearnerPreferences:
        return LearnerPreferences(**self.model_dump())


class LearnerPydantic(BaseModel):
    learner_id: str
    name: str = ""
    exam_date: Optional[date] = None
    preferences: PreferencesPydantic = Field(default_factory=PreferencesPydantic)

    def to_model(self) -> Learner:
        return Learner(
            learner_id=self.learner_id,
            name=self.name,
            exam_date=self.exam_date,
            preferences=self.preferences.to_model(),
        )


class DiagnosticPydantic(BaseModel):
    learner_id: str
    completed: bool = False
    skipped: bool = False
    score: float = Field(default=0.0, ge=0, le=100)
    weak_areas: List[str] = Field(default_factory=list)
    missed_topic_ids: List[str] = Field(default_factory=list)
    recommended_focus: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    def to_model(self) -> DiagnosticResult:
        return DiagnosticResult(**self.model_dump())


class StudyPlanPydantic(BaseModel):
    plan_id: str
    learner_id: str
    start_date: date
    end_date: date
    exam_date: date
    current_version: int = Field(default=1, ge=1)
    is_personalized: bool = False

    @model_validator(mode="after")
    def check_dates(self) -> "StudyPlanPydantic":
        if self.exam_date < self.start_date:
            raise ValueError("exam_date must not precede start_date")
        return self

    def to_model(self) -> StudyPlan:
        return StudyPlan(**self.model_dump())


class TaskPydantic(BaseModel):
    task_id: str
    plan_id: str
    topic_id: str
    task_type: TaskType
    start_time: datetime
    end_time: datetime
    duration: int = Field(..., ge=1)
    difficulty: Difficulty = Difficulty.MEDIUM
    status: TaskStatus = TaskStatus.PENDING
    title: str = ""
    description: str = ""
    original_start_time: Optional[datetime] = None
    original_end_time: Optional[datetime] = None
    is_remedial: bool = False
    created_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_window(self) -> "TaskPydantic":
        minutes = (self.end_time - self.start_time).total_seconds() / 60
        if minutes != self.duration:
            raise ValueError(
                f"Task {self.task_id}: duration {self.duration} does not match window of {minutes:g} minutes"
            )
        return self

    def to_model(self) -> Task:
        return Task(**self.model_dump())


class PerformancePydantic(BaseModel):
    performance_id: str
    learner_id: str
    task_id: str
    topic_id: str
    confidence: int = Field(..., ge=1, le=5)
    completed: bool = False
    time_spent: int = Field(default=0, ge=0)
    score: Optional[float] = Field(default=None, ge=0, le=100)
    created_at: Optional[datetime] = None

    def to_model(self) -> Performance:
        return Performance(**self.model_dump())


class AlertPydantic(BaseModel):
    alert_id: str
    learner_id: str
    plan_id: str
    alert_type: AlertType
    severity: Severity = Severity.MEDIUM
    message: str
    related_task_id: Optional[str] = None
    related_topic_id: Optional[str] = None
    is_resolved: bool = False
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def to_model(self) -> Alert:
        return Alert(**self.model_dump())


class StateSnapshotPydantic(BaseModel):
    """Everything the store holds, as written to and read from the JSON state file."""

    topics: List[TopicPydantic] = Field(default_factory=list)
    learners: List[LearnerPydantic] = Field(default_factory=list)
    diagnostics: List[DiagnosticPydantic] = Field(default_factory=list)
    plans: List[StudyPlanPydantic] = Field(default_factory=list)
    tasks: List[TaskPydantic] = Field(default_factory=list)
    performances: List[PerformancePydantic] = Field(default_factory=list)
    alerts: List[AlertPydantic] = Field(default_factory=list)

    @field_validator("topics")
    @classmethod
    def unique_topic_ids(cls, topics: List[TopicPydantic]) -> List[TopicPydantic]:
        seen = set()
        for topic in topics:
            if topic.topic_id in seen:
                raise ValueError(f"Duplicate topic id: {topic.topic_id}")
            seen.add(topic.topic_id)
        return topics


def to_record(model_cls, obj) -> dict:
    """Validate a dataclass through its boundary model and return a JSON-ready dict."""
    return model_cls.model_validate(asdict(obj)).model_dump(mode="json")


class SuggestionPydantic(BaseModel):
    """One suggestion produced by the insight model."""

    title: str = Field(..., description="Short headline for the suggestion")
    detail: str = Field(..., description="One or two sentences explaining it to the learner")
    priority: Literal["LOW", "MEDIUM", "HIGH"] = Field(default="MEDIUM")
    related_topic_id: Optional[str] = Field(default=None)


class InsightPydantic(BaseModel):
    """Natural-language annotation of an adaptation run."""

    summary: str = Field(..., description="Plain-language summary of what changed in the plan and why")
    suggestions: List[SuggestionPydantic] = Field(default_factory=list)
    confidence: float = Field(default=0.5, ge=0, le=1)
