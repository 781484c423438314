"""Placement questionnaire scoring: pick a starting learning path."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Mapping, Optional, Sequence

from schemas import AssessmentQuestion, AssessmentResult

DEFAULT_PATH_ID = "explorer"


def score_placement(
    answers: Mapping[str, str],
    questions: Sequence[AssessmentQuestion],
    path_ids: Sequence[str],
) -> Dict[str, int]:
    """Sum the per-path points of every selected option.

    Unknown question ids and option values are ignored, as are points for
    paths outside ``path_ids``.
    """

    scores: Dict[str, int] = {path_id: 0 for path_id in path_ids}
    by_id = {question.id: question for question in questions}
    for question_id, value in answers.items():
        question = by_id.get(question_id)
        if question is None:
            continue
        option = next((opt for opt in question.options if opt.value == value), None)
        if option is None:
            continue
        for path_id, points in option.points.items():
            if path_id in scores:
                scores[path_id] += int(points or 0)
    return scores


def recommend_path(
    answers: Mapping[str, str],
    questions: Sequence[AssessmentQuestion],
    path_ids: Sequence[str],
    *,
    now: Optional[datetime] = None,
) -> AssessmentResult:
    scores = score_placement(answers, questions, path_ids)

    best_id: Optional[str] = None
    best_score = 0
    for path_id in path_ids:
        if scores[path_id] > best_score:
            best_id, best_score = path_id, scores[path_id]

    if best_id is None:
        if DEFAULT_PATH_ID in path_ids or not path_ids:
            best_id = DEFAULT_PATH_ID
        else:
            best_id = path_ids[0]

    return AssessmentResult(
        recommended_path=best_id,
        scores=scores,
        completed_at=(now or datetime.now(timezone.utc)).isoformat(),
    )


__all__ = ["DEFAULT_PATH_ID", "recommend_path", "score_placement"]
