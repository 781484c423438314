"""Pydantic schemas for catalog content, learner progress and engine outputs.

JSON payloads keep the camelCase keys used by the web client and the stored
progress blobs (``lessonId``, ``totalQuestions`` ...). Python code uses the
snake_case attribute names; both spellings are accepted on input.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "MasteryLevel",
    "ReasoningType",
    "Priority",
    "CamelModel",
    "QuizQuestion",
    "LessonSection",
    "LessonContent",
    "Lesson",
    "Milestone",
    "LearningPath",
    "AssessmentOption",
    "AssessmentQuestion",
    "AssessmentResult",
    "QuizResult",
    "TopicMastery",
    "ActivityLogEntry",
    "LearningStreak",
    "UserProgress",
    "TopicGap",
    "GapRecommendation",
    "GapAnalysis",
    "AlternativeLesson",
    "EnhancedRecommendation",
]

MasteryLevel = Literal["mastered", "proficient", "needs-work", "not-started"]
ReasoningType = Literal["review", "continue", "advance", "fill-gap", "complete"]
Priority = Literal["high", "medium", "low"]
ActivityType = Literal[
    "lesson_started",
    "lesson_completed",
    "quiz_completed",
    "path_started",
    "milestone_reached",
]


class CamelModel(BaseModel):
    """Base model serialising to the client's camelCase JSON keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Catalog content
# ---------------------------------------------------------------------------


class QuizQuestion(CamelModel):
    id: str
    question: str
    type: Literal["multiple_choice", "true_false"] = "multiple_choice"
    options: List[str] = Field(default_factory=list)
    correct: str
    explanation: str = ""


class LessonSection(CamelModel):
    title: str
    content: str


class LessonContent(CamelModel):
    introduction: str = ""
    sections: List[LessonSection] = Field(default_factory=list)
    summary: str = ""
    key_takeaways: List[str] = Field(default_factory=list)


class Lesson(CamelModel):
    id: str
    title: str
    topic: str
    difficulty: Literal["beginner", "intermediate", "advanced"] = "beginner"
    duration: int = 0
    prerequisites: List[str] = Field(
        default_factory=list,
        description="Lesson ids that must be completed before this lesson is eligible as next.",
    )
    objectives: List[str] = Field(default_factory=list)
    content: LessonContent = Field(default_factory=LessonContent)
    quiz: List[QuizQuestion] = Field(default_factory=list)
    audio_urls: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def find_question(self, question_id: str) -> Optional[QuizQuestion]:
        return next((q for q in self.quiz if q.id == question_id), None)


class Milestone(CamelModel):
    after_lesson: int = Field(description="1-based position in the path after which the milestone is reached.")
    title: str
    message: str = ""


class LearningPath(CamelModel):
    id: str
    name: str
    description: str = ""
    target_audience: str = ""
    duration: str = ""
    lesson_count: int = 0
    difficulty: Literal["beginner", "intermediate", "advanced"] = "beginner"
    color: str = ""
    icon: str = ""
    lessons: List[str] = Field(
        default_factory=list,
        description="Ordered lesson ids; order drives the next-in-path decision.",
    )
    milestones: List[Milestone] = Field(default_factory=list)

    def milestone_after(self, lesson_id: str) -> Optional[Milestone]:
        if lesson_id not in self.lessons:
            return None
        position = self.lessons.index(lesson_id) + 1
        return next((m for m in self.milestones if m.after_lesson == position), None)


class AssessmentOption(CamelModel):
    value: str
    label: str
    points: Dict[str, int] = Field(default_factory=dict)


class AssessmentQuestion(CamelModel):
    id: str
    question: str
    options: List[AssessmentOption] = Field(default_factory=list)


class AssessmentResult(CamelModel):
    """Outcome of the placement questionnaire."""

    recommended_path: str
    scores: Dict[str, int] = Field(default_factory=dict)
    completed_at: str


# ---------------------------------------------------------------------------
# Learner progress
# ---------------------------------------------------------------------------


class QuizResult(CamelModel):
    lesson_id: str
    score: int = Field(ge=0, description="Number of correct answers.")
    total_questions: int = Field(gt=0)
    percentage: Optional[int] = None
    time_spent: Optional[int] = Field(default=None, description="Seconds spent on the quiz.")
    completed_at: Optional[str] = None


class TopicMastery(CamelModel):
    topic: str
    score: int = Field(default=0, description="0-100 running two-point average of quiz percentages.")
    lessons_completed: int = 0
    total_lessons: int = 0
    last_updated: Optional[str] = None

    @field_validator("score", mode="before")
    @classmethod
    def _round_fractional_score(cls, value: Any) -> Any:
        # Stored blobs may carry fractional scores; round half-up like the client.
        if isinstance(value, float) and math.isfinite(value):
            return int(math.floor(value + 0.5))
        return value


class ActivityLogEntry(CamelModel):
    id: str
    type: ActivityType
    lesson_id: Optional[str] = None
    lesson_title: Optional[str] = None
    path_id: Optional[str] = None
    path_name: Optional[str] = None
    score: Optional[int] = None
    total_questions: Optional[int] = None
    milestone_title: Optional[str] = None
    timestamp: str


class LearningStreak(CamelModel):
    current_streak: int = 0
    longest_streak: int = 0
    last_active_date: str = Field(default="", description="YYYY-MM-DD of the last active day.")
    total_days_active: int = 0


class UserProgress(CamelModel):
    current_path: Optional[str] = None
    completed_lessons: List[str] = Field(default_factory=list)
    quiz_results: Dict[str, QuizResult] = Field(
        default_factory=dict,
        description="One result per lesson; the latest attempt overwrites.",
    )
    topic_mastery: Dict[str, TopicMastery] = Field(default_factory=dict)
    last_activity: Optional[str] = None
    activity_log: List[ActivityLogEntry] = Field(default_factory=list)
    streak: LearningStreak = Field(default_factory=LearningStreak)
    assessment_result: Optional[AssessmentResult] = None


# ---------------------------------------------------------------------------
# Engine outputs
# ---------------------------------------------------------------------------


class TopicGap(CamelModel):
    topic: str
    score: int
    level: MasteryLevel
    lessons_completed: int
    lessons_needed_for_review: List[str] = Field(default_factory=list)
    last_updated: Optional[str] = None


class GapRecommendation(CamelModel):
    type: Literal["review", "practice", "advance"]
    topic: str
    lesson_id: str
    reason: str
    priority: Priority


class GapAnalysis(CamelModel):
    overall_mastery: int = 0
    total_topics: int = 0
    mastered_topics: int = 0
    proficient_topics: int = 0
    gap_topics: int = 0
    not_started_topics: int = 0
    gaps: List[TopicGap] = Field(default_factory=list)
    strengths: List[TopicGap] = Field(default_factory=list)
    recommendations: List[GapRecommendation] = Field(default_factory=list)


class AlternativeLesson(CamelModel):
    lesson_id: str
    title: str
    topic: str
    reason: str


class EnhancedRecommendation(CamelModel):
    next_lesson: Optional[str] = Field(
        description="Recommended lesson id; only None for a path without lessons and nothing else to suggest.",
    )
    lesson_title: str
    lesson_topic: str
    reasoning: str
    reasoning_type: ReasoningType
    priority: Priority
    path_progress: int
    topic_mastery: Optional[int] = None
    alternative_lessons: List[AlternativeLesson] = Field(default_factory=list)
    voice_announcement: str
