"""
Canonical Scoring for Duplicate Groups (v2 weights).

Responsibilities:
- Compute a deterministic canonical score for a single lesson record.
- Emit a per-component breakdown that sums back to the score.

Non-Responsibilities:
- No database access.
- No choice between group members.
- No reading of the wall clock; "now" is always passed in.

Invariant:
Given identical inputs, this module must always return
the same score and breakdown. Missing fields lower the score, never raise.
"""

import math
from datetime import datetime
from typing import Optional, Tuple

from lessondedupe.models import (
    COMPLETENESS_FIELDS,
    ContentAnalysis,
    LessonRecord,
    ScoreBreakdown,
)
from lessondedupe.normalize import has_copy_marker, is_empty, to_naive_utc

from .features import analyze_content

# Component order here fixes the summation order.
WEIGHTS = (
    ("content", 0.35),
    ("completeness", 0.20),
    ("recency", 0.15),
    ("quality", 0.15),
    ("notes", 0.10),
    ("naming", 0.05),
)

RECENCY_HORIZON_DAYS = 3650.0  # ten years of linear decay

DUPLICATE_NOTE_MARKERS = ("duplicate", "copy of")


def _clamp(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


def _is_number(value: Optional[float]) -> bool:
    return value is not None and not math.isnan(value)


def recency_score(record: LessonRecord, now: datetime, horizon_days: float = RECENCY_HORIZON_DAYS) -> float:
    """Linear decay from 1.0 (modified now or later) to 0.0 at the horizon. Undated is 0.0."""
    stamp = record.effective_timestamp
    if stamp is None:
        return 0.0
    age_days = (to_naive_utc(now) - to_naive_utc(stamp)).total_seconds() / 86400.0
    if age_days <= 0:
        return 1.0
    return 1.0 - min(age_days / horizon_days, 1.0)


def completeness_score(record: LessonRecord) -> float:
    filled = sum(1 for name in COMPLETENESS_FIELDS if not is_empty(getattr(record, name, None)))
    return filled / len(COMPLETENESS_FIELDS)


def quality_score(record: LessonRecord) -> float:
    """AI review signal: lesson_plan_confidence (0-100) first, then overall confidence (0-1)."""
    if _is_number(record.lesson_plan_confidence):
        return _clamp(record.lesson_plan_confidence / 100.0)
    if _is_number(record.confidence_overall):
        return _clamp(record.confidence_overall)
    return 0.0


def notes_score(record: LessonRecord) -> float:
    if is_empty(record.processing_notes):
        return 0.0
    notes = record.processing_notes.lower()
    if any(marker in notes for marker in DUPLICATE_NOTE_MARKERS):
        return 0.0
    return 1.0


def naming_score(record: LessonRecord) -> float:
    title = record.title
    if is_empty(title):
        return 0.0
    title = title.strip()
    if not title[0].isupper() or has_copy_marker(title):
        return 0.0
    return 1.0


def weighted_total(breakdown: ScoreBreakdown) -> float:
    total = 0.0
    for name, weight in WEIGHTS:
        total += weight * getattr(breakdown, name)
    return total


def score_lesson(
    record: LessonRecord,
    content_analysis: Optional[ContentAnalysis] = None,
    now: Optional[datetime] = None,
) -> Tuple[float, ScoreBreakdown]:
    """
    Score a lesson as a canonical candidate.

    Args:
        record: Lesson to score
        content_analysis: Precomputed analysis of the lesson text; computed
            from record.content_text when omitted
        now: Reference time for recency. Without it recency scores 0.0.

    Returns:
        Tuple of (canonical_score, breakdown)
    """
    if content_analysis is None:
        content_analysis = analyze_content(record.content_text)

    breakdown = ScoreBreakdown(
        content=_clamp(content_analysis.total_score),
        completeness=completeness_score(record),
        recency=recency_score(record, now) if now is not None else 0.0,
        quality=quality_score(record),
        notes=notes_score(record),
        naming=naming_score(record),
        content_details=content_analysis,
    )
    return weighted_total(breakdown), breakdown
