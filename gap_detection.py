"""Topic mastery classification and knowledge-gap analysis.

Everything in this module is pure: inputs are read, never mutated, and every
call allocates fresh output models. Missing data degrades to ``not-started``
rather than raising.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from schemas import (
    GapAnalysis,
    GapRecommendation,
    Lesson,
    MasteryLevel,
    QuizResult,
    TopicGap,
    TopicMastery,
    UserProgress,
)

MASTERY_THRESHOLD = 70
PROFICIENCY_THRESHOLD = 50
GAP_THRESHOLD = 50

MAX_GAP_RECOMMENDATIONS = 3
FALLBACK_TOPIC = "General"

# Ordering used when comparing buckets; higher is better.
LEVEL_RANK: Dict[str, int] = {
    "not-started": 0,
    "needs-work": 1,
    "proficient": 2,
    "mastered": 3,
}


def round_half_up(value: float) -> int:
    """Round like the web client does (``66.5 -> 67``), not banker's rounding."""

    return int(math.floor(value + 0.5))


def get_mastery_level(score: float) -> MasteryLevel:
    if score >= MASTERY_THRESHOLD:
        return "mastered"
    if score >= PROFICIENCY_THRESHOLD:
        return "proficient"
    if score > 0:
        return "needs-work"
    return "not-started"


def quiz_percentage(result: QuizResult) -> float:
    """Unrounded quiz percentage, clamped so it never exceeds 100."""

    total = result.total_questions
    if not total or total <= 0:
        return 0.0
    correct = max(0, min(result.score, total))
    return correct / total * 100


def quiz_percentage_rounded(result: QuizResult) -> int:
    return round_half_up(quiz_percentage(result))


def _now_iso(now: Optional[datetime] = None) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


def merge_quiz_result(
    existing: Optional[TopicMastery],
    topic: str,
    result: QuizResult,
    *,
    total_lessons: int,
    now: Optional[datetime] = None,
) -> TopicMastery:
    """Fold one finished quiz into the topic's mastery record.

    The new score is the average of the previous score and the new
    percentage, not a mean over every attempt: one early low score keeps
    pulling the topic down by half on each later merge.
    """

    percentage = quiz_percentage_rounded(result)
    if existing is None:
        return TopicMastery(
            topic=topic,
            score=percentage,
            lessons_completed=1,
            total_lessons=total_lessons,
            last_updated=_now_iso(now),
        )
    return TopicMastery(
        topic=topic,
        score=round_half_up((existing.score + percentage) / 2),
        lessons_completed=(existing.lessons_completed or 1) + 1,
        total_lessons=total_lessons,
        last_updated=_now_iso(now),
    )


def calculate_topic_mastery(
    quiz_results: Mapping[str, QuizResult],
    lesson_topic_map: Mapping[str, str],
    *,
    now: Optional[datetime] = None,
) -> Dict[str, TopicMastery]:
    """Rebuild topic mastery from scratch as the mean quiz percentage per topic."""

    buckets: Dict[str, List[int]] = {}
    for lesson_id, result in quiz_results.items():
        topic = lesson_topic_map.get(lesson_id) or FALLBACK_TOPIC
        buckets.setdefault(topic, []).append(quiz_percentage_rounded(result))

    stamp = _now_iso(now)
    mastery: Dict[str, TopicMastery] = {}
    for topic, percentages in buckets.items():
        mastery[topic] = TopicMastery(
            topic=topic,
            score=round_half_up(sum(percentages) / len(percentages)),
            lessons_completed=len(percentages),
            total_lessons=len(percentages),
            last_updated=stamp,
        )
    return mastery


def lessons_by_topic(lesson_topic_map: Mapping[str, str]) -> Dict[str, List[str]]:
    grouped: Dict[str, List[str]] = {}
    for lesson_id, topic in lesson_topic_map.items():
        grouped.setdefault(topic, []).append(lesson_id)
    return grouped


def extract_topics_from_lessons(lessons: Iterable[Lesson]) -> Tuple[List[str], Dict[str, str]]:
    """Return ``(all_topics, lesson_topic_map)`` with topics in first-seen order."""

    lesson_topic_map: Dict[str, str] = {}
    topics: List[str] = []
    for lesson in lessons:
        lesson_topic_map[lesson.id] = lesson.topic
        if lesson.topic not in topics:
            topics.append(lesson.topic)
    return topics, lesson_topic_map


def _topic_snapshot(
    topic: str,
    topic_lessons: Sequence[str],
    progress: UserProgress,
    completed: set[str],
) -> TopicGap:
    mastery = progress.topic_mastery.get(topic)
    completed_in_topic = [lesson_id for lesson_id in topic_lessons if lesson_id in completed]

    review: List[str] = []
    if mastery is not None and mastery.score < MASTERY_THRESHOLD:
        for lesson_id in topic_lessons:
            result = progress.quiz_results.get(lesson_id)
            if result is not None and quiz_percentage(result) < MASTERY_THRESHOLD:
                review.append(lesson_id)

    return TopicGap(
        topic=topic,
        score=mastery.score if mastery is not None else 0,
        level=get_mastery_level(mastery.score) if mastery is not None else "not-started",
        lessons_completed=len(completed_in_topic),
        lessons_needed_for_review=review,
        last_updated=mastery.last_updated if mastery is not None else None,
    )


def _gap_recommendations(
    gaps: Sequence[TopicGap],
    strengths: Sequence[TopicGap],
    grouped: Mapping[str, List[str]],
    completed: set[str],
) -> List[GapRecommendation]:
    recommendations: List[GapRecommendation] = []
    for gap in gaps[:MAX_GAP_RECOMMENDATIONS]:
        if gap.level == "not-started":
            topic_lessons = grouped.get(gap.topic) or []
            if topic_lessons:
                recommendations.append(
                    GapRecommendation(
                        type="practice",
                        topic=gap.topic,
                        lesson_id=topic_lessons[0],
                        reason=f"Start learning {gap.topic} to fill this knowledge gap",
                        priority="medium",
                    )
                )
        elif gap.lessons_needed_for_review:
            recommendations.append(
                GapRecommendation(
                    type="review",
                    topic=gap.topic,
                    lesson_id=gap.lessons_needed_for_review[0],
                    reason=f"Review to improve your {gap.topic} score from {gap.score}%",
                    priority="high" if gap.score < GAP_THRESHOLD else "medium",
                )
            )

    if strengths and len(recommendations) < MAX_GAP_RECOMMENDATIONS:
        strongest = strengths[0]
        remaining = [
            lesson_id
            for lesson_id in grouped.get(strongest.topic) or []
            if lesson_id not in completed
        ]
        if remaining:
            recommendations.append(
                GapRecommendation(
                    type="advance",
                    topic=strongest.topic,
                    lesson_id=remaining[0],
                    reason=f"You're doing great in {strongest.topic}! Continue to the next lesson",
                    priority="low",
                )
            )
    return recommendations


def analyze_gaps(
    progress: UserProgress,
    all_topics: Sequence[str],
    lesson_topic_map: Mapping[str, str],
) -> GapAnalysis:
    """Classify every catalog topic and rank the learner's knowledge gaps.

    Topics with no lessons in ``lesson_topic_map`` are skipped. Topics that
    were never started are reported as gaps only when the learner has not
    completed any lesson in them.
    """

    grouped = lessons_by_topic(lesson_topic_map)
    completed = set(progress.completed_lessons)

    gaps: List[TopicGap] = []
    strengths: List[TopicGap] = []
    for topic in all_topics:
        topic_lessons = grouped.get(topic)
        if not topic_lessons:
            continue
        snapshot = _topic_snapshot(topic, topic_lessons, progress, completed)
        if snapshot.level == "mastered":
            strengths.append(snapshot)
        elif snapshot.level != "not-started":
            gaps.append(snapshot)
        elif snapshot.lessons_completed == 0:
            gaps.append(snapshot)

    gaps.sort(key=lambda gap: gap.score)
    strengths.sort(key=lambda gap: gap.score, reverse=True)

    scored = strengths + [gap for gap in gaps if gap.level != "not-started"]
    overall = round_half_up(sum(t.score for t in scored) / len(scored)) if scored else 0

    return GapAnalysis(
        overall_mastery=overall,
        total_topics=len(all_topics),
        mastered_topics=len(strengths),
        proficient_topics=sum(1 for gap in gaps if gap.level == "proficient"),
        gap_topics=sum(1 for gap in gaps if gap.level == "needs-work"),
        not_started_topics=sum(1 for gap in gaps if gap.level == "not-started"),
        gaps=gaps,
        strengths=strengths,
        recommendations=_gap_recommendations(gaps, strengths, grouped, completed),
    )


__all__ = [
    "MASTERY_THRESHOLD",
    "PROFICIENCY_THRESHOLD",
    "GAP_THRESHOLD",
    "FALLBACK_TOPIC",
    "LEVEL_RANK",
    "round_half_up",
    "get_mastery_level",
    "quiz_percentage",
    "quiz_percentage_rounded",
    "merge_quiz_result",
    "calculate_topic_mastery",
    "lessons_by_topic",
    "extract_topics_from_lessons",
    "analyze_gaps",
]
