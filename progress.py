"""Learner progress lifecycle: defaults, quiz completion, activity log and stats.

Functions here never mutate the ``UserProgress`` they receive; they return an
updated deep copy. Persistence is the caller's job (see ``db``).
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence
from uuid import uuid4

from pydantic import ValidationError

from env_validation import get_env_int
from gap_detection import (
    MASTERY_THRESHOLD,
    calculate_topic_mastery,
    merge_quiz_result,
    quiz_percentage,
    quiz_percentage_rounded,
    round_half_up,
)
from schemas import (
    ActivityLogEntry,
    AssessmentResult,
    LearningPath,
    LearningStreak,
    Lesson,
    QuizResult,
    TopicMastery,
    UserProgress,
)

_LOGGER = logging.getLogger(__name__)


def _activity_log_limit() -> int:
    return max(1, get_env_int("ACTIVITY_LOG_LIMIT", 50))


def _utcnow(now: Optional[datetime] = None) -> datetime:
    return now or datetime.now(timezone.utc)


def create_empty_progress() -> UserProgress:
    return UserProgress()


# ---------------------------------------------------------------------------
# Load boundary
# ---------------------------------------------------------------------------


def _coerce_models(raw: Any, model, *, keyed: bool, key_field: Optional[str] = None) -> Any:
    """Validate each entry separately so one bad record does not drop the rest."""

    if keyed:
        if not isinstance(raw, Mapping):
            return {}
        cleaned: Dict[str, Any] = {}
        for key, value in raw.items():
            if key_field and isinstance(value, Mapping) and not value.get(key_field):
                value = {**value, key_field: str(key)}
            try:
                cleaned[str(key)] = model.model_validate(value)
            except ValidationError as exc:
                _LOGGER.warning("Dropping invalid %s entry %s: %s", model.__name__, key, exc.errors()[:1])
        return cleaned

    if not isinstance(raw, list):
        return []
    items = []
    for value in raw:
        try:
            items.append(model.model_validate(value))
        except ValidationError as exc:
            _LOGGER.warning("Dropping invalid %s entry: %s", model.__name__, exc.errors()[:1])
    return items


def _coerce_streak(raw: Any) -> LearningStreak:
    """Default each streak field on its own; a null date keeps the counters."""

    if not isinstance(raw, Mapping):
        return LearningStreak()
    fields = {key: value for key, value in raw.items() if value is not None}
    try:
        return LearningStreak.model_validate(fields)
    except ValidationError as exc:
        bad = {error["loc"][0] for error in exc.errors() if error.get("loc")}
        _LOGGER.warning("Defaulting invalid streak fields: %s", sorted(str(key) for key in bad))
    fields = {key: value for key, value in fields.items() if key not in bad}
    try:
        return LearningStreak.model_validate(fields)
    except ValidationError:
        return LearningStreak()


def migrate_progress(
    raw: Any,
    lesson_topic_map: Optional[Mapping[str, str]] = None,
) -> UserProgress:
    """Turn a stored or client-supplied blob into a valid ``UserProgress``.

    Missing or wrongly typed fields fall back to their empty defaults. When
    quiz results exist but topic mastery is absent and a ``lesson_topic_map``
    is supplied, mastery is rebuilt from the quiz results.
    """

    if isinstance(raw, UserProgress):
        return raw.model_copy(deep=True)
    if not isinstance(raw, Mapping):
        return create_empty_progress()

    def pick(*keys: str) -> Any:
        for key in keys:
            if key in raw:
                return raw[key]
        return None

    current_path = pick("currentPath", "current_path")
    completed = pick("completedLessons", "completed_lessons")
    last_activity = pick("lastActivity", "last_activity")
    streak_raw = pick("streak")
    assessment_raw = pick("assessmentResult", "assessment_result")

    streak = _coerce_streak(streak_raw)

    assessment: Optional[AssessmentResult] = None
    if isinstance(assessment_raw, Mapping):
        try:
            assessment = AssessmentResult.model_validate(assessment_raw)
        except ValidationError:
            assessment = None

    progress = UserProgress(
        current_path=str(current_path) if current_path else None,
        completed_lessons=list(dict.fromkeys(str(item) for item in completed))
        if isinstance(completed, list)
        else [],
        quiz_results=_coerce_models(
            pick("quizResults", "quiz_results"), QuizResult, keyed=True, key_field="lessonId"
        ),
        topic_mastery=_coerce_models(
            pick("topicMastery", "topic_mastery"), TopicMastery, keyed=True, key_field="topic"
        ),
        last_activity=str(last_activity) if last_activity else None,
        activity_log=_coerce_models(pick("activityLog", "activity_log"), ActivityLogEntry, keyed=False),
        streak=streak,
        assessment_result=assessment,
    )

    if progress.quiz_results and not progress.topic_mastery and lesson_topic_map is not None:
        progress.topic_mastery = calculate_topic_mastery(progress.quiz_results, lesson_topic_map)
    return progress


# ---------------------------------------------------------------------------
# Streak and activity log
# ---------------------------------------------------------------------------


def update_streak(streak: Optional[LearningStreak], today: Optional[date] = None) -> LearningStreak:
    today = today or _utcnow().date()
    today_text = today.isoformat()

    if streak is None or not streak.last_active_date:
        return LearningStreak(
            current_streak=1,
            longest_streak=max(1, streak.longest_streak if streak else 0),
            last_active_date=today_text,
            total_days_active=(streak.total_days_active if streak else 0) + 1,
        )

    try:
        last_active = date.fromisoformat(streak.last_active_date[:10])
    except ValueError:
        last_active = None

    days = abs((today - last_active).days) if last_active is not None else None
    if days == 0:
        return streak.model_copy()
    if days == 1:
        current = streak.current_streak + 1
        return LearningStreak(
            current_streak=current,
            longest_streak=max(current, streak.longest_streak),
            last_active_date=today_text,
            total_days_active=streak.total_days_active + 1,
        )
    return LearningStreak(
        current_streak=1,
        longest_streak=max(1, streak.longest_streak),
        last_active_date=today_text,
        total_days_active=streak.total_days_active + 1,
    )


def _activity_id(now: datetime) -> str:
    return f"{int(now.timestamp() * 1000)}-{uuid4().hex[:9]}"


def add_activity(
    progress: UserProgress,
    activity_type: str,
    *,
    now: Optional[datetime] = None,
    **details: Any,
) -> UserProgress:
    moment = _utcnow(now)
    entry = ActivityLogEntry(
        id=_activity_id(moment),
        type=activity_type,
        timestamp=moment.isoformat(),
        **details,
    )
    updated = progress.model_copy(deep=True)
    updated.activity_log = [entry, *updated.activity_log][: _activity_log_limit()]
    updated.last_activity = entry.timestamp
    updated.streak = update_streak(progress.streak, moment.date())
    return updated


def set_current_path(progress: UserProgress, path: LearningPath, *, now: Optional[datetime] = None) -> UserProgress:
    updated = add_activity(progress, "path_started", now=now, path_id=path.id, path_name=path.name)
    updated.current_path = path.id
    return updated


def log_lesson_started(progress: UserProgress, lesson: Lesson, *, now: Optional[datetime] = None) -> UserProgress:
    return add_activity(progress, "lesson_started", now=now, lesson_id=lesson.id, lesson_title=lesson.title)


# ---------------------------------------------------------------------------
# Quiz completion
# ---------------------------------------------------------------------------


def record_quiz_completion(
    progress: UserProgress,
    lesson: Lesson,
    score: int,
    total_questions: int,
    *,
    topic_lesson_count: int,
    path: Optional[LearningPath] = None,
    time_spent: Optional[int] = None,
    now: Optional[datetime] = None,
) -> UserProgress:
    """Apply one finished quiz for ``lesson`` and return the new progress.

    The lesson is marked completed on first completion, its quiz result is
    overwritten, and the lesson's topic mastery is merged with the new score.
    """

    moment = _utcnow(now)
    stamp = moment.isoformat()
    updated = progress.model_copy(deep=True)

    first_completion = lesson.id not in updated.completed_lessons
    if first_completion:
        updated.completed_lessons.append(lesson.id)

    result = QuizResult(
        lesson_id=lesson.id,
        score=score,
        total_questions=total_questions,
        time_spent=time_spent,
        completed_at=stamp,
    )
    result.percentage = quiz_percentage_rounded(result)
    updated.quiz_results[lesson.id] = result

    updated.topic_mastery[lesson.topic] = merge_quiz_result(
        updated.topic_mastery.get(lesson.topic),
        lesson.topic,
        result,
        total_lessons=topic_lesson_count,
        now=moment,
    )
    updated.last_activity = stamp

    if first_completion:
        updated = add_activity(
            updated, "lesson_completed", now=moment, lesson_id=lesson.id, lesson_title=lesson.title
        )
        milestone = path.milestone_after(lesson.id) if path is not None else None
        if milestone is not None:
            updated = add_activity(
                updated,
                "milestone_reached",
                now=moment,
                milestone_title=milestone.title,
                path_id=path.id,
                path_name=path.name,
            )
    return add_activity(
        updated,
        "quiz_completed",
        now=moment,
        lesson_id=lesson.id,
        lesson_title=lesson.title,
        score=score,
        total_questions=total_questions,
    )


# ---------------------------------------------------------------------------
# Read helpers
# ---------------------------------------------------------------------------


def resume_lesson_for_path(progress: UserProgress, path_lessons: Sequence[str]) -> Optional[str]:
    """Lesson after the last completed one; ``None`` once the last lesson is done."""

    completed = set(progress.completed_lessons)
    for idx in range(len(path_lessons) - 1, -1, -1):
        if path_lessons[idx] in completed:
            if idx < len(path_lessons) - 1:
                return path_lessons[idx + 1]
            return None
    return path_lessons[0] if path_lessons else None


def has_started_learning(progress: UserProgress) -> bool:
    return progress.current_path is not None or bool(progress.completed_lessons)


def calculate_stats(progress: UserProgress) -> Dict[str, int]:
    results = list(progress.quiz_results.values())
    average = round_half_up(sum(quiz_percentage(r) for r in results) / len(results)) if results else 0

    topics = list(progress.topic_mastery.values())
    overall = round_half_up(sum(t.score for t in topics) / len(topics)) if topics else 0

    return {
        "lessonsCompleted": len(progress.completed_lessons),
        "quizzesTaken": len(results),
        "averageScore": average,
        "topicsMastered": sum(1 for t in topics if t.score >= MASTERY_THRESHOLD),
        "totalTopics": len(topics),
        "overallMastery": overall,
        "currentStreak": progress.streak.current_streak,
        "longestStreak": progress.streak.longest_streak,
        "totalDaysActive": progress.streak.total_days_active,
    }


def streak_message(streak: Optional[LearningStreak]) -> str:
    if streak is None or streak.current_streak == 0:
        return "Start learning to build your streak!"
    if streak.current_streak == 1:
        return "Great start! Come back tomorrow to continue your streak."
    if streak.current_streak < 7:
        return f"{streak.current_streak} day streak! Keep it up!"
    if streak.current_streak < 30:
        return f"{streak.current_streak} day streak! You're on fire!"
    return f"{streak.current_streak} day streak! Incredible dedication!"


__all__ = [
    "add_activity",
    "calculate_stats",
    "create_empty_progress",
    "has_started_learning",
    "log_lesson_started",
    "migrate_progress",
    "record_quiz_completion",
    "resume_lesson_for_path",
    "set_current_path",
    "streak_message",
    "update_streak",
]
