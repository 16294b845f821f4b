"""
Database schema and connection management.

Uses SQLite with SQLAlchemy for lessons and duplicate resolutions.
"""

import threading
from datetime import datetime
from pathlib import Path
from sqlalchemy import (
    create_engine,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()

_engines = {}
_engines_lock = threading.Lock()


class Lesson(Base):
    """Lesson plan model. Archived rows stay in the table with a canonical back-reference."""

    __tablename__ = "lessons"

    lesson_id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    summary = Column(Text, nullable=True)
    objectives = Column(Text, nullable=True)
    content_text = Column(Text, nullable=True)
    lesson_format = Column(String, nullable=True)
    grade_levels = Column(JSON, nullable=True)
    thematic_categories = Column(JSON, nullable=True)
    season_timing = Column(JSON, nullable=True)
    core_competencies = Column(JSON, nullable=True)
    cultural_heritage = Column(JSON, nullable=True)
    location_requirements = Column(JSON, nullable=True)
    activity_type = Column(JSON, nullable=True)
    main_ingredients = Column(JSON, nullable=True)
    skills = Column(JSON, nullable=True)
    academic_integration = Column(JSON, nullable=True)
    social_emotional_learning = Column(JSON, nullable=True)
    cooking_methods = Column(JSON, nullable=True)
    observances_holidays = Column(JSON, nullable=True)
    tags = Column(JSON, nullable=True)
    confidence_overall = Column(Float, nullable=True)
    lesson_plan_confidence = Column(Float, nullable=True)
    processing_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=True)
    last_modified = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)
    archived = Column(Boolean, nullable=False, default=False, index=True)
    canonical_id = Column(String, nullable=True, index=True)
    archived_at = Column(DateTime, nullable=True)
    archive_reason = Column(String, nullable=True)


class DuplicateResolution(Base):
    """One row per resolved duplicate group; group_key is the serialization point."""

    __tablename__ = "duplicate_resolutions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_key = Column(String, nullable=False, unique=True)
    canonical_id = Column(String, nullable=False, index=True)
    archived_ids = Column(JSON, nullable=False)
    duplicate_type = Column(String, nullable=False)
    similarity_score = Column(Float, nullable=False)
    lessons_in_group = Column(Integer, nullable=False)
    merge_applied = Column(Boolean, nullable=False, default=False)
    merged_fields = Column(JSON, nullable=True)
    title_updates = Column(JSON, nullable=True)
    resolved_by = Column(String, nullable=True)
    resolved_at = Column(DateTime, nullable=False, default=datetime.now)
    notes = Column(Text, nullable=False)


class DuplicateGroupDismissal(Base):
    """Keep-all decision for a group; its key is never listed as pending again."""

    __tablename__ = "duplicate_group_dismissals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_key = Column(String, nullable=False, unique=True)
    lesson_ids = Column(JSON, nullable=False)
    duplicate_type = Column(String, nullable=False)
    dismissed_by = Column(String, nullable=True)
    dismissed_at = Column(DateTime, nullable=False, default=datetime.now)
    notes = Column(Text, nullable=False)


def get_engine(db_path: Path):
    """
    Return the shared engine for a database file.

    Args:
        db_path: Path to SQLite database file
    """
    key = str(Path(db_path).resolve())
    with _engines_lock:
        engine = _engines.get(key)
        if engine is None:
            engine = create_engine(
                f"sqlite:///{db_path}",
                connect_args={"timeout": 30, "check_same_thread": False},
            )
            _engines[key] = engine
        return engine


def dispose_engines() -> None:
    """Close pooled connections for every database (useful for testing)."""
    with _engines_lock:
        for engine in _engines.values():
            engine.dispose()
        _engines.clear()


def init_database(db_path: Path) -> None:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(get_engine(db_path))


def session_factory(db_path: Path) -> sessionmaker:
    """
    Build a session factory bound to the database.

    Args:
        db_path: Path to SQLite database file

    Returns:
        sessionmaker producing independent sessions
    """
    return sessionmaker(bind=get_engine(db_path), expire_on_commit=False)


def get_session(db_path: Path):
    """
    Get database session.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLAlchemy session
    """
    return session_factory(db_path)()
