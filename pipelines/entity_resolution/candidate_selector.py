"""
Canonical Candidate Selection.

Responsibilities:
- Score every member of a duplicate group.
- Order members by canonical preference and pick the recommended one.

Non-Responsibilities:
- No persistence.
- No resolution side effects.

Invariant:
The ordering is total: ties on score fall through to completeness,
recency and finally lesson_id, so the pick never depends on input order.
"""

from datetime import datetime
from typing import Iterable, List, Optional

from lessondedupe.models import LessonRecord, ScoredLesson

from .scoring import score_lesson


def _sort_key(scored: ScoredLesson):
    stamp = scored.lesson.effective_timestamp
    # Dated records sort ahead of undated ones; newer first among dated.
    recency_key = (0, -stamp.timestamp()) if stamp is not None else (1, 0.0)
    return (
        -scored.canonical_score,
        -scored.breakdown.completeness,
        recency_key,
        scored.lesson.lesson_id,
    )


def rank_members(lessons: Iterable[LessonRecord], now: Optional[datetime] = None) -> List[ScoredLesson]:
    """Score lessons and return them best-first."""
    scored = []
    for lesson in lessons:
        score, breakdown = score_lesson(lesson, now=now)
        scored.append(ScoredLesson(lesson=lesson, canonical_score=score, breakdown=breakdown))
    return sorted(scored, key=_sort_key)


def select_canonical(scored: List[ScoredLesson]) -> str:
    """Return the lesson_id of the best candidate from rank_members output."""
    if not scored:
        raise ValueError("Cannot select a canonical lesson from an empty group")
    return min(scored, key=_sort_key).lesson.lesson_id
