"""Path-scoped "what next" decision for a learner.

The decision is an ordered cascade of rules. Each rule pairs a guard with a
builder; the first rule whose guard matches produces the recommendation:

1. ``urgent_review``  completed path lesson scored below 50%
2. ``medium_review``  completed path lesson scored 50-69% while the path is
                      less than half done
3. ``continue_path``  first uncompleted path lesson with prerequisites met
4. ``fill_gap``       nothing left in the path, global gap analysis has work
5. ``path_complete``  fallback

Calls are stateless; the same inputs always yield the same decision.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

from gap_detection import (
    FALLBACK_TOPIC,
    GAP_THRESHOLD,
    MASTERY_THRESHOLD,
    quiz_percentage,
    round_half_up,
)
from schemas import (
    AlternativeLesson,
    EnhancedRecommendation,
    GapAnalysis,
    LearningPath,
    Lesson,
    Priority,
    ReasoningType,
    UserProgress,
)

MAX_ALTERNATIVES = 2
COMPLETE_REVIEW_COUNT = 3


def fallback_lesson(lesson_id: str) -> Lesson:
    """Stand-in record for a lesson id the catalog does not know."""

    return Lesson(id=lesson_id, title=lesson_id, topic=FALLBACK_TOPIC, prerequisites=[])


@dataclass
class _Facts:
    """Everything the rules look at, computed once per call."""

    path: LearningPath
    progress: UserProgress
    gap_analysis: GapAnalysis
    lesson_details: Mapping[str, Lesson]
    lesson_topic_map: Mapping[str, str]
    completed: set[str] = field(default_factory=set)
    path_progress: int = 0
    urgent: List[str] = field(default_factory=list)
    medium: List[str] = field(default_factory=list)
    eligible: List[str] = field(default_factory=list)

    @property
    def next_lesson(self) -> Optional[str]:
        return self.eligible[0] if self.eligible else None

    def lesson(self, lesson_id: str) -> Lesson:
        return self.lesson_details.get(lesson_id) or fallback_lesson(lesson_id)

    def topic_of(self, lesson_id: str) -> str:
        if lesson_id in self.lesson_details:
            return self.lesson_details[lesson_id].topic
        # Lessons missing from the catalog still count towards their mapped topic.
        return self.lesson_topic_map.get(lesson_id) or FALLBACK_TOPIC

    def percentage(self, lesson_id: str) -> Optional[float]:
        result = self.progress.quiz_results.get(lesson_id)
        if result is None:
            return None
        return quiz_percentage(result)

    def display_percentage(self, lesson_id: str) -> int:
        return round_half_up(self.percentage(lesson_id) or 0.0)

    def topic_mastery(self, topic: str) -> Optional[int]:
        mastery = self.progress.topic_mastery.get(topic)
        return mastery.score if mastery is not None else None

    def alternative(self, lesson_id: str, reason: str) -> AlternativeLesson:
        lesson = self.lesson(lesson_id)
        return AlternativeLesson(
            lesson_id=lesson_id,
            title=lesson.title,
            topic=lesson.topic,
            reason=reason,
        )


def _collect_facts(
    path: LearningPath,
    progress: UserProgress,
    gap_analysis: GapAnalysis,
    lesson_details: Mapping[str, Lesson],
    lesson_topic_map: Mapping[str, str],
) -> _Facts:
    facts = _Facts(
        path=path,
        progress=progress,
        gap_analysis=gap_analysis,
        lesson_details=lesson_details,
        lesson_topic_map=lesson_topic_map,
        completed=set(progress.completed_lessons),
    )

    path_lessons = list(dict.fromkeys(path.lessons))
    if path_lessons:
        done = sum(1 for lesson_id in path_lessons if lesson_id in facts.completed)
        facts.path_progress = round_half_up(done / len(path_lessons) * 100)

    for lesson_id in path_lessons:
        if lesson_id in facts.completed:
            percentage = facts.percentage(lesson_id)
            if percentage is None:
                continue
            if percentage < GAP_THRESHOLD:
                facts.urgent.append(lesson_id)
            elif percentage < MASTERY_THRESHOLD:
                facts.medium.append(lesson_id)
        elif all(req in facts.completed for req in facts.lesson(lesson_id).prerequisites):
            facts.eligible.append(lesson_id)
    return facts


def _build(
    facts: _Facts,
    lesson_id: Optional[str],
    *,
    reasoning: str,
    reasoning_type: ReasoningType,
    priority: Priority,
    alternatives: Sequence[AlternativeLesson],
    voice: str,
    path_progress: Optional[int] = None,
    topic_mastery: Optional[int] = None,
    use_topic_mastery: bool = True,
) -> EnhancedRecommendation:
    if lesson_id is None:
        title, topic = facts.path.name, FALLBACK_TOPIC
    else:
        lesson = facts.lesson(lesson_id)
        title, topic = lesson.title, lesson.topic
    if use_topic_mastery:
        topic_mastery = facts.topic_mastery(topic)
    return EnhancedRecommendation(
        next_lesson=lesson_id,
        lesson_title=title,
        lesson_topic=topic,
        reasoning=reasoning,
        reasoning_type=reasoning_type,
        priority=priority,
        path_progress=facts.path_progress if path_progress is None else path_progress,
        topic_mastery=topic_mastery,
        alternative_lessons=list(alternatives),
        voice_announcement=voice,
    )


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


def _urgent_review(facts: _Facts) -> EnhancedRecommendation:
    lesson_id = facts.urgent[0]
    title = facts.lesson(lesson_id).title
    score = facts.display_percentage(lesson_id)
    alternatives = [
        facts.alternative(other, f"Also scored {facts.display_percentage(other)}% and needs review")
        for other in facts.urgent[1 : 1 + MAX_ALTERNATIVES]
    ]
    return _build(
        facts,
        lesson_id,
        reasoning=(
            f'Your quiz score on "{title}" was {score}%, below the {GAP_THRESHOLD}% threshold. '
            f"Reviewing it now closes this gap before it affects later lessons in {facts.path.name}."
        ),
        reasoning_type="review",
        priority="high",
        alternatives=alternatives,
        voice=(
            f"Before moving on, let's revisit {title}. You scored {score} percent on its quiz, "
            "so a quick review will help lock in the key ideas."
        ),
    )


def _medium_review(facts: _Facts) -> EnhancedRecommendation:
    lesson_id = facts.medium[0]
    title = facts.lesson(lesson_id).title
    score = facts.display_percentage(lesson_id)
    alternatives: List[AlternativeLesson] = []
    if facts.next_lesson is not None:
        alternatives.append(facts.alternative(facts.next_lesson, "Skip the review and continue the path"))
    for other in facts.medium[1:]:
        if len(alternatives) >= MAX_ALTERNATIVES:
            break
        alternatives.append(
            facts.alternative(other, f"Scored {facts.display_percentage(other)}% and could use a review")
        )
    return _build(
        facts,
        lesson_id,
        reasoning=(
            f'You scored {score}% on "{title}". You are {facts.path_progress}% through '
            f"{facts.path.name}, so strengthening this foundation now makes the rest of the path easier."
        ),
        reasoning_type="review",
        priority="medium",
        alternatives=alternatives,
        voice=(
            f"I'd suggest reviewing {title} next. You scored {score} percent, which is close to mastery, "
            f"and you're {facts.path_progress} percent through {facts.path.name}."
        ),
    )


def _is_first_in_topic(facts: _Facts, lesson_id: str) -> bool:
    topic = facts.topic_of(lesson_id)
    return not any(
        facts.topic_of(done) == topic for done in facts.progress.completed_lessons if done != lesson_id
    )


def _continue_path(facts: _Facts) -> EnhancedRecommendation:
    lesson_id = facts.eligible[0]
    lesson = facts.lesson(lesson_id)
    mastery = facts.topic_mastery(lesson.topic)

    alternatives: List[AlternativeLesson] = []
    for other in facts.medium:
        if len(alternatives) >= MAX_ALTERNATIVES:
            break
        alternatives.append(
            facts.alternative(other, f"Optional review: you scored {facts.display_percentage(other)}%")
        )
    for other in facts.eligible[1:]:
        if len(alternatives) >= MAX_ALTERNATIVES:
            break
        alternatives.append(facts.alternative(other, "Also available: prerequisites met"))

    if _is_first_in_topic(facts, lesson_id):
        reasoning_type: ReasoningType = "advance"
        reasoning = (
            f'Next up in {facts.path.name}: "{lesson.title}", your first lesson in {lesson.topic}. '
            f"You are {facts.path_progress}% through the path."
        )
        voice = (
            f"Great progress! Next, you'll start {lesson.title}, your first lesson on {lesson.topic}. "
            f"You're {facts.path_progress} percent of the way through {facts.path.name}."
        )
    else:
        reasoning_type = "continue"
        reasoning = (
            f'Continue with "{lesson.title}" to build on what you have learned in {lesson.topic}. '
            f"You are {facts.path_progress}% through {facts.path.name}."
        )
        voice = f"Let's keep going with {lesson.title}. You're {facts.path_progress} percent through {facts.path.name}."
        if mastery is not None:
            reasoning += f" Your {lesson.topic} mastery is {mastery}%."
            voice += f" Your {lesson.topic} mastery is at {mastery} percent."

    return _build(
        facts,
        lesson_id,
        reasoning=reasoning,
        reasoning_type=reasoning_type,
        priority="medium",
        alternatives=alternatives,
        voice=voice,
    )


def _fill_gap(facts: _Facts) -> EnhancedRecommendation:
    recommendations = facts.gap_analysis.recommendations
    top = recommendations[0]
    title = facts.lesson(top.lesson_id).title
    alternatives = [
        facts.alternative(rec.lesson_id, rec.reason) for rec in recommendations[1 : 1 + MAX_ALTERNATIVES]
    ]
    return _build(
        facts,
        top.lesson_id,
        reasoning=f"There is nothing left to start in {facts.path.name}. {top.reason}.",
        reasoning_type="fill-gap",
        priority=top.priority,
        alternatives=alternatives,
        voice=(
            f"You've covered {facts.path.name}. To round out your knowledge, try {title}. {top.reason}."
        ),
    )


def _path_complete(facts: _Facts) -> EnhancedRecommendation:
    lessons = facts.path.lessons
    lesson_id = lessons[0] if lessons else None
    title = facts.lesson(lesson_id).title if lesson_id is not None else facts.path.name
    overall = facts.gap_analysis.overall_mastery
    alternatives = [facts.alternative(other, "Review for mastery") for other in lessons[:COMPLETE_REVIEW_COUNT]]
    return _build(
        facts,
        lesson_id,
        reasoning=(
            f"Congratulations! You've completed all lessons in the {facts.path.name} path. "
            "Consider reviewing earlier lessons or exploring a more advanced path."
        ),
        reasoning_type="complete",
        priority="low",
        alternatives=alternatives,
        voice=(
            f"Congratulations on completing {facts.path.name}! Your overall mastery is {overall} percent. "
            f"You can review {title} to keep it fresh, or explore a more advanced path."
        ),
        path_progress=100,
        topic_mastery=overall,
        use_topic_mastery=False,
    )


@dataclass(frozen=True)
class CascadeRule:
    name: str
    applies: Callable[[_Facts], bool]
    build: Callable[[_Facts], EnhancedRecommendation]


RULES: Tuple[CascadeRule, ...] = (
    CascadeRule("urgent_review", lambda f: bool(f.urgent), _urgent_review),
    CascadeRule("medium_review", lambda f: bool(f.medium) and f.path_progress < 50, _medium_review),
    CascadeRule("continue_path", lambda f: f.next_lesson is not None, _continue_path),
    CascadeRule("fill_gap", lambda f: bool(f.gap_analysis.recommendations), _fill_gap),
    CascadeRule("path_complete", lambda f: True, _path_complete),
)


def select_rule(facts: _Facts) -> CascadeRule:
    # ``path_complete`` always applies, so this never exhausts.
    return next(rule for rule in RULES if rule.applies(facts))


def recommend_with_rule(
    path: LearningPath,
    progress: UserProgress,
    gap_analysis: GapAnalysis,
    lesson_details: Mapping[str, Lesson],
    lesson_topic_map: Mapping[str, str],
) -> Tuple[str, EnhancedRecommendation]:
    """Return the applied rule's name with its recommendation, from one cascade pass."""

    facts = _collect_facts(path, progress, gap_analysis, lesson_details, lesson_topic_map)
    rule = select_rule(facts)
    return rule.name, rule.build(facts)


def recommend_next_lesson(
    path: LearningPath,
    progress: UserProgress,
    gap_analysis: GapAnalysis,
    lesson_details: Mapping[str, Lesson],
    lesson_topic_map: Mapping[str, str],
) -> EnhancedRecommendation:
    """Return exactly one recommendation for ``path`` from the first matching rule."""

    return recommend_with_rule(path, progress, gap_analysis, lesson_details, lesson_topic_map)[1]


__all__ = [
    "CascadeRule",
    "RULES",
    "fallback_lesson",
    "recommend_next_lesson",
    "recommend_with_rule",
    "select_rule",
]
