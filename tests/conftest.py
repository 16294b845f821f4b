"""
Pytest configuration and shared fixtures.
"""

import pytest
import json
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Callable, Iterable

from lessondedupe.database import dispose_engines, init_database, session_factory
from lessondedupe.logger import get_logger, reset_logger
from lessondedupe.models import LessonRecord
from storage.repositories.lessons import LessonRepository

NOW = datetime(2025, 1, 1, 12, 0, 0)

RICH_CONTENT = """Objectives:
Students will: identify salad greens and describe where they grow.

Materials:
- lettuce
- spinach
- bowls

Procedure:
1. Wash the greens
2. Cut the vegetables
3. Mix the dressing

Time: 45 minutes

Assessment:
Discuss which greens students liked best.
"""


@pytest.fixture(autouse=True)
def quiet_logger(tmp_path):
    """Route the global logger to a temp directory with no console output."""
    reset_logger()
    logger = get_logger(log_dir=tmp_path / "logs", enable_console=False)
    yield logger
    reset_logger()
    dispose_engines()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def make_lesson() -> Callable[..., LessonRecord]:
    """Build a LessonRecord with a title defaulting to the lesson id."""

    def _make(lesson_id: str, **fields) -> LessonRecord:
        fields.setdefault("title", f"Lesson {lesson_id}")
        return LessonRecord(lesson_id=lesson_id, **fields)

    return _make


@pytest.fixture
def db_path(tmp_path) -> Path:
    """Create a temporary initialized database."""
    path = tmp_path / "lessons.db"
    init_database(path)
    return path


@pytest.fixture
def factory(db_path):
    return session_factory(db_path)


@pytest.fixture
def seed(factory) -> Callable[[Iterable[LessonRecord]], None]:
    """Insert lesson records and commit."""

    def _seed(records: Iterable[LessonRecord]) -> None:
        session = factory()
        try:
            repo = LessonRepository(session)
            for record in records:
                repo.upsert(record)
            session.commit()
        finally:
            session.close()

    return _seed


@pytest.fixture
def salad_lessons(make_lesson) -> Dict[str, LessonRecord]:
    """Three near-duplicates where B is the clear canonical."""
    return {
        "A": make_lesson(
            "A",
            title="Garden Salad Copy",
            summary="Make a salad from the garden.",
            content_text="Make a salad.",
            grade_levels=("3",),
            tags=("salad",),
            last_modified=datetime(2019, 5, 1),
        ),
        "B": make_lesson(
            "B",
            title="Garden Salad",
            content_text=RICH_CONTENT,
            thematic_categories=("Garden Basics",),
            season_timing=("Spring",),
            core_competencies=("Garden Skills",),
            activity_type=("cooking",),
            lesson_format="single period",
            main_ingredients=("lettuce", "spinach"),
            skills=("washing",),
            lesson_plan_confidence=90.0,
            processing_notes="Reviewed by editor",
            last_modified=datetime(2024, 6, 1),
        ),
        "C": make_lesson(
            "C",
            title="garden salad",
            summary="An older summary.",
            objectives="Taste three greens.",
            content_text="Salad day.",
            cultural_heritage=("Italian",),
            created_at=datetime(2018, 3, 1),
        ),
    }


@pytest.fixture
def write_report(tmp_path) -> Callable[[list], Path]:
    """Write a duplicate report file containing the given groups."""

    def _write(groups: list, name: str = "report.json") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps({"groups": groups}, indent=2))
        return path

    return _write


def _report_group(group_id: str, lesson_ids, group_type: str = "near", similarity: float = 0.92,
                 recommended: str = None) -> Dict[str, Any]:
    """One group in the shape the similarity analysis writes."""
    group = {
        "groupId": group_id,
        "type": group_type,
        "similarityScore": similarity,
        "lessons": [{"lessonId": lesson_id, "title": f"Lesson {lesson_id}"} for lesson_id in lesson_ids],
    }
    if recommended is not None:
        group["recommendedCanonical"] = recommended
    return group


@pytest.fixture
def report_group() -> Callable[..., Dict[str, Any]]:
    return _report_group
