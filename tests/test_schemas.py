import pytest
from pydantic import ValidationError

from schemas import EnhancedRecommendation, LearningPath, Milestone, QuizResult, UserProgress


def test_progress_accepts_camel_case_and_dumps_camel_case():
    progress = UserProgress.model_validate(
        {
            "currentPath": "explorer",
            "completedLessons": ["a"],
            "quizResults": {"a": {"lessonId": "a", "score": 2, "totalQuestions": 2, "timeSpent": 30}},
            "topicMastery": {"X": {"topic": "X", "score": 100, "lessonsCompleted": 1, "totalLessons": 3}},
        }
    )
    assert progress.quiz_results["a"].time_spent == 30
    assert progress.topic_mastery["X"].total_lessons == 3

    dumped = progress.to_json_dict()
    assert dumped["currentPath"] == "explorer"
    assert dumped["quizResults"]["a"]["totalQuestions"] == 2
    assert dumped["streak"] == {"currentStreak": 0, "longestStreak": 0, "lastActiveDate": "", "totalDaysActive": 0}
    assert dumped["assessmentResult"] is None


def test_snake_case_names_are_accepted():
    result = QuizResult(lesson_id="a", score=1, total_questions=2)
    assert result.to_json_dict()["lessonId"] == "a"


@pytest.mark.parametrize("payload", [{"score": -1, "totalQuestions": 2}, {"score": 1, "totalQuestions": 0}])
def test_quiz_result_rejects_impossible_counts(payload):
    with pytest.raises(ValidationError):
        QuizResult.model_validate({"lessonId": "a", **payload})


def test_milestone_lookup_uses_one_based_position():
    path = LearningPath(
        id="p",
        name="P",
        lessons=["a", "b", "c"],
        milestones=[Milestone(after_lesson=2, title="Halfway")],
    )
    assert path.milestone_after("b").title == "Halfway"
    assert path.milestone_after("a") is None
    assert path.milestone_after("zzz") is None


def test_recommendation_serialises_alias_keys():
    rec = EnhancedRecommendation(
        next_lesson=None,
        lesson_title="Empty",
        lesson_topic="General",
        reasoning="Done",
        reasoning_type="complete",
        priority="low",
        path_progress=100,
        voice_announcement="Done",
    )
    data = rec.to_json_dict()
    assert data["nextLesson"] is None
    assert data["reasoningType"] == "complete"
    assert data["alternativeLessons"] == []
    assert data["voiceAnnouncement"] == "Done"
