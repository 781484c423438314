# app.py - AdaptLearn API
# - Catalog (paths, lessons, placement quiz) served from CONTENT_DIR
# - Gap analysis and "what next" recommendations over learner progress
# - Progress persisted per learner in SQLite (atomic quiz updates)

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import Field

import db
import tutor
from catalog import CatalogError, ContentCatalog, get_catalog
from gap_detection import analyze_gaps
from placement import recommend_path
from progress import (
    calculate_stats,
    create_empty_progress,
    has_started_learning,
    log_lesson_started,
    migrate_progress,
    record_quiz_completion,
    resume_lesson_for_path,
    set_current_path,
    streak_message,
)
from recommendation import recommend_with_rule
from schemas import CamelModel, UserProgress

logger = logging.getLogger(__name__)


def _json_logger(name: str) -> logging.Logger:
    json_logger = logging.getLogger(name)
    if not json_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(message)s"))
        json_logger.addHandler(handler)
    json_logger.setLevel(logging.INFO)
    json_logger.propagate = False
    return json_logger


_DECISION_LOGGER = _json_logger("adaptlearn.decisions")
_json_logger("adaptlearn.llm")


def _log_json(event: str, payload: Dict[str, Any]) -> None:
    record = {"event": event, **payload}
    try:
        message = json.dumps(record, ensure_ascii=False, sort_keys=True)
    except (TypeError, ValueError):
        fallback = {
            "event": event,
            "error": "serialization_failed",
            "payload_repr": repr(payload),
        }
        message = json.dumps(fallback, ensure_ascii=False, sort_keys=True)
    _DECISION_LOGGER.info(message)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        from env_validation import validate_environment
        validate_environment()

        db.init()
        catalog = get_catalog()
        logger.info("Catalog ready: %d paths, %d lessons", len(catalog.paths), len(catalog.lessons))
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="AdaptLearn", version="1.0.0", lifespan=_lifespan)


# ---------- Helpers ----------
def _catalog() -> ContentCatalog:
    try:
        return get_catalog()
    except (FileNotFoundError, CatalogError) as exc:
        logger.error("Catalog unavailable: %s", exc, exc_info=True)
        raise HTTPException(status_code=500, detail="Paths data not found")


def _require(value: Optional[str], name: str) -> str:
    if value is None or not str(value).strip():
        raise HTTPException(status_code=400, detail=f"{name} is required")
    return str(value).strip()


def _stored_progress(user_id: str, catalog: ContentCatalog) -> UserProgress:
    return migrate_progress(db.get_progress(user_id), catalog.lesson_topic_map())


def _resolve_progress(
    user_progress: Optional[Dict[str, Any]],
    user_id: Optional[str],
    catalog: ContentCatalog,
) -> UserProgress:
    if user_progress is not None:
        return migrate_progress(user_progress, catalog.lesson_topic_map())
    if user_id:
        return _stored_progress(user_id, catalog)
    return create_empty_progress()


def _progress_payload(user_id: str, progress: UserProgress) -> Dict[str, Any]:
    return {
        "userId": user_id,
        "progress": progress.to_json_dict(),
        "hasStarted": has_started_learning(progress),
    }


# ---------- Request bodies ----------
class QuizEvaluateBody(CamelModel):
    lesson_id: Optional[str] = None
    question_id: Optional[str] = None
    answer: Optional[str] = None
    enhanced_feedback: bool = False


class PlacementBody(CamelModel):
    answers: Dict[str, str] = Field(default_factory=dict)
    user_id: Optional[str] = None


class ProgressBody(CamelModel):
    user_id: str
    progress: Dict[str, Any] = Field(default_factory=dict)


class PathSelectBody(CamelModel):
    user_id: str
    path_id: str


class LessonStartBody(CamelModel):
    user_id: str
    lesson_id: str


class QuizCompletionBody(CamelModel):
    user_id: str
    lesson_id: str
    score: int = Field(ge=0)
    total_questions: int = Field(gt=0)
    time_spent: Optional[int] = Field(default=None, ge=0)


class AdaptBody(CamelModel):
    user_progress: Optional[Dict[str, Any]] = None
    user_id: Optional[str] = None
    current_path: Optional[str] = None


# ---------- Catalog ----------
@app.get("/")
def root():
    catalog = _catalog()
    return {
        "service": app.title,
        "version": app.version,
        "paths": len(catalog.paths),
        "lessons": len(catalog.lessons),
        "aiFeedback": tutor.feedback_enabled(),
    }


@app.get("/paths")
def list_paths():
    return _catalog().paths_payload()


@app.get("/lessons/{lesson_id}")
def get_lesson(lesson_id: str):
    lesson = _catalog().get_lesson(lesson_id)
    if lesson is None:
        raise HTTPException(status_code=404, detail="Lesson not found")
    return lesson.to_json_dict()


# ---------- Quiz ----------
@app.post("/quiz/evaluate")
def quiz_evaluate(body: QuizEvaluateBody):
    if not body.lesson_id or not body.question_id or not body.answer:
        raise HTTPException(status_code=400, detail="lessonId, questionId, and answer are required")

    lesson = _catalog().get_lesson(body.lesson_id)
    if lesson is None:
        raise HTTPException(status_code=404, detail="Lesson not found")
    question = lesson.find_question(body.question_id)
    if question is None:
        raise HTTPException(status_code=404, detail="Question not found")

    is_correct = body.answer.strip().upper() == question.correct.strip().upper()
    explanation = question.explanation
    ai_feedback = False
    if not is_correct and body.enhanced_feedback and tutor.feedback_enabled():
        try:
            generated = tutor.generate_quiz_feedback(question, body.answer, lesson.title, lesson.topic)
        except tutor.FeedbackError as exc:
            logger.warning("AI feedback failed, using default explanation: %s", exc)
            generated = None
        if generated:
            explanation = generated
            ai_feedback = True

    return {"isCorrect": is_correct, "explanation": explanation, "aiFeedback": ai_feedback}


# ---------- Placement ----------
@app.post("/assessment/placement")
def assessment_placement(body: PlacementBody):
    catalog = _catalog()
    path_ids = [path.id for path in catalog.paths]
    result = recommend_path(body.answers, catalog.assessment_questions, path_ids)

    if body.user_id:
        path = catalog.get_path(result.recommended_path)

        def _apply(raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
            progress = migrate_progress(raw, catalog.lesson_topic_map())
            progress.assessment_result = result
            if path is not None:
                progress = set_current_path(progress, path)
            return progress.to_json_dict()

        db.update_progress(body.user_id, _apply)

    _log_json(
        "placement_scored",
        {"user_id": body.user_id, "recommended_path": result.recommended_path, "scores": result.scores},
    )
    return result.to_json_dict()


# ---------- Progress ----------
@app.get("/progress")
def get_progress(user_id: str):
    catalog = _catalog()
    return _progress_payload(user_id, _stored_progress(user_id, catalog))


@app.put("/progress")
def put_progress(body: ProgressBody):
    catalog = _catalog()
    progress = migrate_progress(body.progress, catalog.lesson_topic_map())
    db.save_progress(body.user_id, progress.to_json_dict())
    return _progress_payload(body.user_id, progress)


@app.delete("/progress")
def delete_progress(user_id: str):
    deleted = db.delete_progress(user_id)
    return {"ok": True, "deleted": deleted}


@app.post("/progress/path")
def select_path(body: PathSelectBody):
    catalog = _catalog()
    path = catalog.get_path(body.path_id)
    if path is None:
        raise HTTPException(status_code=404, detail="Learning path not found")

    def _apply(raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        progress = migrate_progress(raw, catalog.lesson_topic_map())
        return set_current_path(progress, path).to_json_dict()

    stored = db.update_progress(body.user_id, _apply)
    return _progress_payload(body.user_id, migrate_progress(stored))


@app.post("/progress/lesson-start")
def start_lesson(body: LessonStartBody):
    catalog = _catalog()
    lesson = catalog.get_lesson(body.lesson_id)
    if lesson is None:
        raise HTTPException(status_code=404, detail="Lesson not found")

    def _apply(raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        progress = migrate_progress(raw, catalog.lesson_topic_map())
        return log_lesson_started(progress, lesson).to_json_dict()

    stored = db.update_progress(body.user_id, _apply)
    return _progress_payload(body.user_id, migrate_progress(stored))


@app.post("/progress/quiz")
def complete_quiz(body: QuizCompletionBody):
    catalog = _catalog()
    lesson = catalog.get_lesson(body.lesson_id)
    if lesson is None:
        raise HTTPException(status_code=404, detail="Lesson not found")
    topic_lesson_count = catalog.count_topic_lessons(lesson.topic)

    def _apply(raw: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        progress = migrate_progress(raw, catalog.lesson_topic_map())
        path = catalog.get_path(progress.current_path) if progress.current_path else None
        updated = record_quiz_completion(
            progress,
            lesson,
            body.score,
            body.total_questions,
            topic_lesson_count=topic_lesson_count,
            path=path,
            time_spent=body.time_spent,
        )
        return updated.to_json_dict()

    stored = migrate_progress(db.update_progress(body.user_id, _apply))
    mastery = stored.topic_mastery.get(lesson.topic)
    _log_json(
        "quiz_completed",
        {
            "user_id": body.user_id,
            "lesson_id": lesson.id,
            "topic": lesson.topic,
            "score": body.score,
            "total_questions": body.total_questions,
            "topic_mastery": mastery.score if mastery is not None else None,
        },
    )
    return _progress_payload(body.user_id, stored)


@app.get("/progress/stats")
def progress_stats(user_id: str):
    progress = _stored_progress(user_id, _catalog())
    stats = calculate_stats(progress)
    stats["streakMessage"] = streak_message(progress.streak)
    return stats


@app.get("/progress/resume")
def progress_resume(user_id: str, path_id: Optional[str] = None):
    catalog = _catalog()
    progress = _stored_progress(user_id, catalog)
    target = path_id or progress.current_path
    if not target:
        return {"pathId": None, "lessonId": None}
    path = catalog.get_path(target)
    if path is None:
        raise HTTPException(status_code=404, detail="Learning path not found")
    return {"pathId": path.id, "lessonId": resume_lesson_for_path(progress, path.lessons)}


# ---------- Adaptive engine ----------
@app.post("/adapt/gaps")
def adapt_gaps(body: AdaptBody):
    catalog = _catalog()
    all_topics, lesson_topic_map = catalog.topics()
    progress = _resolve_progress(body.user_progress, body.user_id, catalog)
    analysis = analyze_gaps(progress, all_topics, lesson_topic_map)
    _log_json(
        "gap_analysis",
        {
            "user_id": body.user_id,
            "overall_mastery": analysis.overall_mastery,
            "gap_topics": analysis.gap_topics,
            "mastered_topics": analysis.mastered_topics,
            "recommendations": [rec.lesson_id for rec in analysis.recommendations],
        },
    )
    return analysis.to_json_dict()


@app.post("/adapt/recommend")
def adapt_recommend(body: AdaptBody):
    current_path = _require(body.current_path, "currentPath")
    catalog = _catalog()
    path = catalog.get_path(current_path)
    if path is None:
        raise HTTPException(status_code=404, detail="Learning path not found")

    all_topics, lesson_topic_map = catalog.topics()
    progress = _resolve_progress(body.user_progress, body.user_id, catalog)
    analysis = analyze_gaps(progress, all_topics, lesson_topic_map)
    try:
        rule, recommendation = recommend_with_rule(path, progress, analysis, catalog.lessons, lesson_topic_map)
    except Exception as exc:
        logger.error("Recommendation failed for path %s: %s", path.id, exc, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")

    _log_json(
        "recommendation",
        {
            "user_id": body.user_id,
            "path_id": path.id,
            "rule": rule,
            "next_lesson": recommendation.next_lesson,
            "reasoning_type": recommendation.reasoning_type,
            "priority": recommendation.priority,
            "path_progress": recommendation.path_progress,
        },
    )
    if body.user_id:
        db.log_recommendation_event(
            body.user_id,
            path.id,
            lesson_id=recommendation.next_lesson,
            reasoning_type=recommendation.reasoning_type,
            priority=recommendation.priority,
            path_progress=recommendation.path_progress,
            payload={
                "rule": rule,
                "alternatives": [alt.lesson_id for alt in recommendation.alternative_lessons],
            },
        )
    return recommendation.to_json_dict()


@app.get("/adapt/history")
def adapt_history(user_id: str, path_id: Optional[str] = None, limit: int = 20):
    limit = max(1, min(limit, 200))
    events = db.list_recommendation_events(user_id, path_id, limit=limit)
    return {"userId": user_id, "events": events}
