import asyncio
import json
from typing import Optional
from unittest.mock import patch
from urllib.parse import urlencode

import pytest

import app
import tutor


def _call(method: str, path: str, payload: Optional[dict] = None, query: Optional[dict] = None) -> tuple[int, dict]:
    async def _run():
        body = json.dumps(payload).encode("utf-8") if payload is not None else b""
        received_once = False

        async def receive():
            nonlocal received_once
            if not received_once:
                received_once = True
                return {"type": "http.request", "body": body, "more_body": False}
            return {"type": "http.disconnect"}

        messages = []

        async def send(message):
            messages.append(message)

        headers = [(b"host", b"testserver"), (b"content-length", str(len(body)).encode())]
        if payload is not None:
            headers.append((b"content-type", b"application/json"))
        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": method,
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "scheme": "http",
            "query_string": urlencode(query or {}).encode(),
            "headers": headers,
            "client": ("testclient", 12345),
            "server": ("testserver", 80),
            "state": {},
        }

        await app.app(scope, receive, send)
        return messages

    messages = asyncio.run(_run())
    status = 500
    body_bytes = b""
    for message in messages:
        if message["type"] == "http.response.start":
            status = message["status"]
        elif message["type"] == "http.response.body":
            body_bytes += message.get("body", b"")
    return status, json.loads(body_bytes.decode("utf-8") or "{}")


@pytest.fixture
def api(temp_db, content_dir, monkeypatch):
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    return _call


URGENT_PROGRESS = {
    "completedLessons": ["ml-fundamentals-01", "ml-fundamentals-02"],
    "quizResults": {
        "ml-fundamentals-01": {"lessonId": "ml-fundamentals-01", "score": 4, "totalQuestions": 4},
        "ml-fundamentals-02": {"lessonId": "ml-fundamentals-02", "score": 1, "totalQuestions": 4},
    },
}


def test_root_and_paths(api):
    status, info = api("GET", "/")
    assert status == 200
    assert info["paths"] == 3
    assert info["aiFeedback"] is False

    status, payload = api("GET", "/paths")
    assert status == 200
    assert [p["id"] for p in payload["paths"]] == ["explorer", "practitioner", "specialist"]
    assert len(payload["assessmentQuiz"]["questions"]) == 2


def test_lesson_lookup(api):
    status, lesson = api("GET", "/lessons/ml-fundamentals-01")
    assert status == 200
    assert lesson["topic"] == "ML Fundamentals"
    assert lesson["content"]["keyTakeaways"]

    status, _ = api("GET", "/lessons/nope")
    assert status == 404


def test_quiz_evaluate_validation_and_lookup(api):
    status, payload = api("POST", "/quiz/evaluate", {"lessonId": "ml-fundamentals-01"})
    assert status == 400
    assert "required" in payload["detail"]

    status, _ = api("POST", "/quiz/evaluate", {"lessonId": "nope", "questionId": "q1", "answer": "A"})
    assert status == 404
    status, _ = api("POST", "/quiz/evaluate", {"lessonId": "ml-fundamentals-01", "questionId": "q9", "answer": "A"})
    assert status == 404


def test_quiz_evaluate_is_case_insensitive(api):
    status, payload = api("POST", "/quiz/evaluate", {"lessonId": "ml-fundamentals-01", "questionId": "q1", "answer": "a"})
    assert status == 200
    assert payload["isCorrect"] is True

    status, payload = api(
        "POST",
        "/quiz/evaluate",
        {"lessonId": "ml-fundamentals-01", "questionId": "q1", "answer": "C", "enhancedFeedback": True},
    )
    assert payload["isCorrect"] is False
    assert payload["aiFeedback"] is False
    assert payload["explanation"].startswith("Machine learning finds patterns")


def test_quiz_evaluate_uses_ai_feedback_when_configured(api, monkeypatch):
    monkeypatch.setenv("GOOGLE_API_KEY", "key")
    body = {"lessonId": "ml-fundamentals-01", "questionId": "q1", "answer": "C", "enhancedFeedback": True}

    with patch("app.tutor.generate_quiz_feedback", return_value="Nice try, think about data.") as generate:
        status, payload = api("POST", "/quiz/evaluate", body)
    assert status == 200
    assert payload["explanation"] == "Nice try, think about data."
    assert payload["aiFeedback"] is True
    generate.assert_called_once()

    with patch("app.tutor.generate_quiz_feedback", side_effect=tutor.FeedbackError("down")):
        status, payload = api("POST", "/quiz/evaluate", body)
    assert status == 200
    assert payload["aiFeedback"] is False
    assert payload["explanation"].startswith("Machine learning finds patterns")


def test_recommend_requires_known_path(api):
    status, payload = api("POST", "/adapt/recommend", {"userProgress": {}})
    assert status == 400
    assert payload["detail"] == "currentPath is required"

    status, payload = api("POST", "/adapt/recommend", {"userProgress": {}, "currentPath": "nowhere"})
    assert status == 404


def test_recommend_from_client_progress(api):
    status, rec = api("POST", "/adapt/recommend", {"userProgress": URGENT_PROGRESS, "currentPath": "explorer"})
    assert status == 200
    assert rec["nextLesson"] == "ml-fundamentals-02"
    assert rec["reasoningType"] == "review"
    assert rec["priority"] == "high"
    assert rec["pathProgress"] == 50
    assert rec["voiceAnnouncement"]


def test_recommend_without_progress_starts_path(api):
    status, rec = api("POST", "/adapt/recommend", {"currentPath": "explorer"})
    assert status == 200
    assert rec["nextLesson"] == "ml-fundamentals-01"
    assert rec["reasoningType"] == "advance"
    assert rec["pathProgress"] == 0


def test_gap_analysis_endpoint(api):
    status, analysis = api("POST", "/adapt/gaps", {"userProgress": URGENT_PROGRESS})
    assert status == 200
    assert analysis["totalTopics"] == 4
    assert analysis["overallMastery"] == 63
    assert analysis["proficientTopics"] == 1
    assert analysis["gapTopics"] == 0
    assert analysis["notStartedTopics"] == 3
    assert [r["type"] for r in analysis["recommendations"]] == ["practice"] * 3
    assert analysis["recommendations"][0]["lessonId"] == "deep-learning-01"


def test_quiz_completion_flow(api):
    status, payload = api(
        "POST",
        "/progress/quiz",
        {"userId": "u1", "lessonId": "ml-fundamentals-01", "score": 2, "totalQuestions": 2, "timeSpent": 60},
    )
    assert status == 200
    progress = payload["progress"]
    assert progress["completedLessons"] == ["ml-fundamentals-01"]
    assert progress["topicMastery"]["ML Fundamentals"]["score"] == 100
    assert progress["topicMastery"]["ML Fundamentals"]["totalLessons"] == 3
    assert [entry["type"] for entry in progress["activityLog"]] == ["quiz_completed", "lesson_completed"]
    assert payload["hasStarted"] is True

    status, stored = api("GET", "/progress", query={"user_id": "u1"})
    assert stored["progress"]["quizResults"]["ml-fundamentals-01"]["percentage"] == 100

    status, stats = api("GET", "/progress/stats", query={"user_id": "u1"})
    assert stats["lessonsCompleted"] == 1
    assert stats["averageScore"] == 100
    assert stats["topicsMastered"] == 1
    assert stats["currentStreak"] == 1
    assert stats["streakMessage"].startswith("Great start!")

    status, resume = api("GET", "/progress/resume", query={"user_id": "u1", "path_id": "explorer"})
    assert resume == {"pathId": "explorer", "lessonId": "ml-fundamentals-02"}


def test_lesson_start_is_logged(api):
    status, _ = api("POST", "/progress/lesson-start", {"userId": "u4", "lessonId": "nope"})
    assert status == 404

    status, payload = api("POST", "/progress/lesson-start", {"userId": "u4", "lessonId": "ml-fundamentals-01"})
    assert status == 200
    entry = payload["progress"]["activityLog"][0]
    assert entry["type"] == "lesson_started"
    assert entry["lessonId"] == "ml-fundamentals-01"
    assert payload["progress"]["completedLessons"] == []

    status, stored = api("GET", "/progress", query={"user_id": "u4"})
    assert stored["progress"]["activityLog"][0]["type"] == "lesson_started"
    assert stored["progress"]["streak"]["currentStreak"] == 1


def test_quiz_completion_rejects_bad_input(api):
    status, _ = api("POST", "/progress/quiz", {"userId": "u1", "lessonId": "ml-fundamentals-01", "score": 1, "totalQuestions": 0})
    assert status == 422

    status, _ = api("POST", "/progress/quiz", {"userId": "u1", "lessonId": "nope", "score": 1, "totalQuestions": 2})
    assert status == 404


def test_recommendations_for_stored_learner_are_recorded(api):
    api("POST", "/progress/quiz", {"userId": "u1", "lessonId": "ml-fundamentals-01", "score": 2, "totalQuestions": 2})

    status, rec = api("POST", "/adapt/recommend", {"userId": "u1", "currentPath": "explorer"})
    assert status == 200
    assert rec["nextLesson"] == "ml-fundamentals-02"
    assert rec["reasoningType"] == "continue"

    status, history = api("GET", "/adapt/history", query={"user_id": "u1"})
    assert status == 200
    assert len(history["events"]) == 1
    event = history["events"][0]
    assert event["lesson_id"] == "ml-fundamentals-02"
    assert event["reasoning_type"] == "continue"
    assert event["payload"]["rule"] == "continue_path"


def test_placement_stores_recommended_path(api):
    status, result = api(
        "POST",
        "/assessment/placement",
        {"userId": "u2", "answers": {"experience": "some", "goal": "apply"}},
    )
    assert status == 200
    assert result["recommendedPath"] == "practitioner"
    assert result["scores"] == {"explorer": 1, "practitioner": 5, "specialist": 1}

    status, stored = api("GET", "/progress", query={"user_id": "u2"})
    assert stored["progress"]["currentPath"] == "practitioner"
    assert stored["progress"]["assessmentResult"]["recommendedPath"] == "practitioner"
    assert stored["progress"]["activityLog"][0]["type"] == "path_started"

    status, resume = api("GET", "/progress/resume", query={"user_id": "u2"})
    assert resume["lessonId"] == "ml-fundamentals-02"


def test_path_selection_and_reset(api):
    status, _ = api("POST", "/progress/path", {"userId": "u3", "pathId": "nowhere"})
    assert status == 404

    status, payload = api("POST", "/progress/path", {"userId": "u3", "pathId": "specialist"})
    assert status == 200
    assert payload["progress"]["currentPath"] == "specialist"

    status, payload = api("PUT", "/progress", {"userId": "u3", "progress": {"completedLessons": ["deep-learning-01"]}})
    assert status == 200
    assert payload["progress"]["currentPath"] is None

    status, payload = api("DELETE", "/progress", query={"user_id": "u3"})
    assert payload == {"ok": True, "deleted": True}

    status, payload = api("GET", "/progress", query={"user_id": "u3"})
    assert payload["hasStarted"] is False
