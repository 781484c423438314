"""Lesson and learning-path catalog loader.

The catalog lives on disk as ``<content_dir>/paths/index.json`` plus one
``<content_dir>/lessons/<lesson_id>.json`` file per lesson. It is read-only
reference data; :func:`get_catalog` caches one loaded copy per directory.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from gap_detection import extract_topics_from_lessons
from recommendation import fallback_lesson
from schemas import AssessmentQuestion, LearningPath, Lesson

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_DIR = "content"


class CatalogError(ValueError):
    """Raised when catalog files contain invalid data."""


def content_dir() -> Path:
    return Path(os.getenv("CONTENT_DIR") or DEFAULT_CONTENT_DIR).resolve()


@dataclass
class ContentCatalog:
    """In-memory view of every path and lesson."""

    paths: List[LearningPath] = field(default_factory=list)
    lessons: Dict[str, Lesson] = field(default_factory=dict)
    assessment_questions: List[AssessmentQuestion] = field(default_factory=list)

    # ------------------------------------------------------------------
    def get_path(self, path_id: str) -> Optional[LearningPath]:
        return next((path for path in self.paths if path.id == path_id), None)

    def get_lesson(self, lesson_id: str) -> Optional[Lesson]:
        return self.lessons.get(lesson_id)

    def lesson_or_fallback(self, lesson_id: str) -> Lesson:
        return self.lessons.get(lesson_id) or fallback_lesson(lesson_id)

    # ------------------------------------------------------------------
    def topics(self) -> Tuple[List[str], Dict[str, str]]:
        return extract_topics_from_lessons(self.lessons.values())

    def all_topics(self) -> List[str]:
        return self.topics()[0]

    def lesson_topic_map(self) -> Dict[str, str]:
        return self.topics()[1]

    def count_topic_lessons(self, topic: str) -> int:
        return sum(1 for lesson in self.lessons.values() if lesson.topic == topic)

    def paths_payload(self) -> Dict[str, Any]:
        return {
            "paths": [path.to_json_dict() for path in self.paths],
            "assessmentQuiz": {
                "questions": [question.to_json_dict() for question in self.assessment_questions]
            },
        }


def _read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _load_paths(index_path: Path) -> Tuple[List[LearningPath], List[AssessmentQuestion]]:
    if not index_path.exists():
        raise FileNotFoundError(f"Paths index not found: {index_path}")

    try:
        raw = _read_json(index_path)
    except json.JSONDecodeError as exc:
        raise CatalogError(f"Paths index is not valid JSON: {exc}") from exc

    if not isinstance(raw, dict) or not isinstance(raw.get("paths"), list):
        raise CatalogError("Paths index must be an object with a 'paths' list")

    paths: List[LearningPath] = []
    seen: set[str] = set()
    for idx, entry in enumerate(raw["paths"], start=1):
        try:
            path = LearningPath.model_validate(entry)
        except ValidationError as exc:
            raise CatalogError(f"Path entry #{idx} is invalid: {exc}") from exc
        if path.id in seen:
            raise CatalogError(f"Duplicate path id detected: {path.id}")
        seen.add(path.id)
        paths.append(path)

    quiz = raw.get("assessmentQuiz") or {}
    if not isinstance(quiz, dict):
        raise CatalogError("assessmentQuiz must be an object")
    quiz_questions = quiz.get("questions") or []
    if not isinstance(quiz_questions, list):
        raise CatalogError("assessmentQuiz.questions must be a list")
    questions: List[AssessmentQuestion] = []
    for idx, entry in enumerate(quiz_questions, start=1):
        try:
            questions.append(AssessmentQuestion.model_validate(entry))
        except ValidationError as exc:
            raise CatalogError(f"Assessment question #{idx} is invalid: {exc}") from exc
    return paths, questions


def _load_lessons(lessons_dir: Path) -> Dict[str, Lesson]:
    lessons: Dict[str, Lesson] = {}
    if not lessons_dir.is_dir():
        logger.warning("Lessons directory missing: %s", lessons_dir)
        return lessons

    for lesson_file in sorted(lessons_dir.glob("*.json")):
        try:
            lesson = Lesson.model_validate(_read_json(lesson_file))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Skipping unreadable lesson file %s: %s", lesson_file.name, exc)
            continue
        if lesson.id in lessons:
            logger.warning("Duplicate lesson id %s in %s; keeping the first", lesson.id, lesson_file.name)
            continue
        lessons[lesson.id] = lesson
    return lessons


def load_catalog(root: str | Path | None = None) -> ContentCatalog:
    """Load the catalog below ``root`` (defaults to ``CONTENT_DIR``)."""

    base = Path(root) if root is not None else content_dir()
    paths, questions = _load_paths(base / "paths" / "index.json")
    lessons = _load_lessons(base / "lessons")

    for path in paths:
        missing = [lesson_id for lesson_id in path.lessons if lesson_id not in lessons]
        if missing:
            logger.warning("Path %s references unknown lessons: %s", path.id, ", ".join(missing))

    logger.info("Loaded catalog from %s: %d paths, %d lessons", base, len(paths), len(lessons))
    return ContentCatalog(paths=paths, lessons=lessons, assessment_questions=questions)


@lru_cache(maxsize=4)
def _cached_catalog(root: str) -> ContentCatalog:
    return load_catalog(root)


def get_catalog() -> ContentCatalog:
    return _cached_catalog(str(content_dir()))


def reset_catalog_cache() -> None:
    _cached_catalog.cache_clear()


__all__ = [
    "CatalogError",
    "ContentCatalog",
    "content_dir",
    "get_catalog",
    "load_catalog",
    "reset_catalog_cache",
]
