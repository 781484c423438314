"""AI tutoring feedback for wrong quiz answers via the Gemini REST API."""

import json
import logging
import os
import time
from typing import Any, Optional

import requests

from env_validation import get_env_float
from schemas import QuizQuestion

logger = logging.getLogger(__name__)

_LLM_LOGGER = logging.getLogger("adaptlearn.llm")

DEFAULT_MODEL = "gemini-1.5-flash"
DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
FEEDBACK_TEMPERATURE = 0.7
FEEDBACK_MAX_TOKENS = 256


class FeedbackError(RuntimeError):
    """Raised when the feedback service cannot be reached."""


def feedback_enabled() -> bool:
    return bool(os.getenv("GOOGLE_API_KEY"))


def _option_text(options: list[str], letter: str) -> str:
    return next((opt for opt in options if opt.upper().startswith(letter.upper())), letter)


def build_feedback_prompt(question: QuizQuestion, user_answer: str, lesson_title: str, topic: str) -> str:
    user_answer_text = _option_text(question.options, user_answer)
    correct_answer_text = _option_text(question.options, question.correct)
    return (
        f"You are an AI tutor helping a student learn about {topic}.\n\n"
        "The student just answered a quiz question incorrectly. Help them understand why their "
        "answer was wrong and guide them to the correct understanding.\n\n"
        f"Lesson: {lesson_title}\n\n"
        f"Question: {question.question}\n\n"
        f"Student's Answer: {user_answer_text}\n\n"
        f"Correct Answer: {correct_answer_text}\n\n"
        "Provide a brief, encouraging explanation (2-3 sentences) that:\n"
        "1. Acknowledges their thinking\n"
        "2. Explains why their specific answer is incorrect\n"
        "3. Clarifies why the correct answer is right\n\n"
        "Keep it concise and supportive - this will be read aloud."
    )


def _extract_text(data: Any) -> Optional[str]:
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None
    text = str(text).strip()
    return text or None


def generate_quiz_feedback(
    question: QuizQuestion,
    user_answer: str,
    lesson_title: str,
    topic: str,
    *,
    api_key: Optional[str] = None,
) -> Optional[str]:
    """Ask Gemini for a short explanation of a wrong answer.

    Returns ``None`` when the service answers with an error status or an
    unexpected body; raises ``FeedbackError`` on transport failures.
    """
    key = api_key or os.getenv("GOOGLE_API_KEY")
    if not key:
        return None

    model = os.getenv("GEMINI_MODEL", DEFAULT_MODEL)
    base = os.getenv("GEMINI_API_BASE", DEFAULT_API_BASE).rstrip("/")
    payload = {
        "contents": [
            {"role": "user", "parts": [{"text": build_feedback_prompt(question, user_answer, lesson_title, topic)}]}
        ],
        "generationConfig": {
            "temperature": FEEDBACK_TEMPERATURE,
            "maxOutputTokens": FEEDBACK_MAX_TOKENS,
        },
    }

    start = time.perf_counter()
    outcome = "error"
    try:
        try:
            response = requests.post(
                f"{base}/models/{model}:generateContent",
                params={"key": key},
                json=payload,
                timeout=get_env_float("LLM_TIMEOUT", 30.0),
            )
        except requests.RequestException as exc:
            raise FeedbackError(f"Feedback request failed: {exc}") from exc

        if not response.ok:
            logger.error("Gemini API error %s: %s", response.status_code, response.text[:300])
            outcome = f"http_{response.status_code}"
            return None
        try:
            data = response.json()
        except ValueError:
            logger.error("Gemini API returned a non-JSON body")
            return None
        text = _extract_text(data)
        outcome = "ok" if text else "empty"
        return text
    finally:
        record = {
            "event": "llm_call",
            "purpose": "quiz_feedback",
            "model": model,
            "latency_ms": int((time.perf_counter() - start) * 1000),
            "outcome": outcome,
        }
        _LLM_LOGGER.info(json.dumps(record, ensure_ascii=False))
