"""
Tests for database.py and the repositories - SQLite persistence.
"""

import pytest
from datetime import datetime
from sqlalchemy.exc import IntegrityError

from lessondedupe.database import DuplicateResolution, Lesson, init_database, get_session
from lessondedupe.models import DismissalRecord, GroupType, ResolutionRecord
from storage.repositories.dismissals import DismissalRepository
from storage.repositories.lessons import LessonRepository
from storage.repositories.resolutions import ResolutionRepository


class TestDatabaseInit:
    """Test database initialization."""

    def test_init_creates_database_file(self, tmp_path):
        """Test that init_database creates the database file."""
        db_path = tmp_path / "test.db"
        assert not db_path.exists()

        init_database(db_path)

        assert db_path.exists()

    def test_init_creates_tables(self, tmp_path):
        """Test that init_database creates both tables."""
        db_path = tmp_path / "test.db"
        init_database(db_path)

        session = get_session(db_path)
        assert session.query(Lesson).count() == 0
        assert session.query(DuplicateResolution).count() == 0
        session.close()

    def test_init_creates_parent_directories(self, tmp_path):
        """Test that init_database creates parent directories if missing."""
        db_path = tmp_path / "nested" / "dir" / "test.db"
        assert not db_path.parent.exists()

        init_database(db_path)

        assert db_path.exists()

    def test_init_is_idempotent(self, tmp_path):
        db_path = tmp_path / "test.db"
        init_database(db_path)
        init_database(db_path)

        assert db_path.exists()


class TestLessonModel:
    """Test the lessons table."""

    @pytest.fixture
    def db_session(self, db_path):
        session = get_session(db_path)
        yield session
        session.close()

    def test_lesson_without_title_fails(self, db_session):
        db_session.add(Lesson(lesson_id="A"))

        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_list_fields_stored_as_json(self, db_session):
        db_session.add(Lesson(lesson_id="A", title="Salad", skills=["knife", "washing"]))
        db_session.commit()

        assert db_session.get(Lesson, "A").skills == ["knife", "washing"]

    def test_defaults(self, db_session):
        db_session.add(Lesson(lesson_id="A", title="Salad"))
        db_session.commit()

        row = db_session.get(Lesson, "A")
        assert row.archived is False
        assert row.updated_at is not None
        assert row.canonical_id is None


class TestDuplicateResolutionModel:
    """Test the resolutions table."""

    @pytest.fixture
    def db_session(self, db_path):
        session = get_session(db_path)
        yield session
        session.close()

    def _row(self, **overrides):
        values = dict(
            group_key="A,B",
            canonical_id="A",
            archived_ids=["B"],
            duplicate_type="exact",
            similarity_score=1.0,
            lessons_in_group=2,
            notes="resolved",
        )
        values.update(overrides)
        return DuplicateResolution(**values)

    def test_group_key_unique(self, db_session):
        """Test that a second row for the same group_key is rejected."""
        db_session.add(self._row())
        db_session.commit()

        db_session.add(self._row(canonical_id="B", archived_ids=["A"]))

        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_resolved_at_defaults_to_now(self, db_session):
        before = datetime.now()
        db_session.add(self._row())
        db_session.commit()
        after = datetime.now()

        row = db_session.query(DuplicateResolution).one()
        assert before <= row.resolved_at <= after
        assert row.merge_applied is False


class TestLessonRepository:
    """Test lesson reads and writes."""

    @pytest.fixture
    def session(self, db_path):
        session = get_session(db_path)
        yield session
        session.close()

    def test_upsert_new_and_updated(self, session, make_lesson):
        repo = LessonRepository(session)

        assert repo.upsert(make_lesson("A")) == "new"
        session.commit()
        assert repo.upsert(make_lesson("A", summary="s")) == "updated"
        session.commit()

        assert repo.get("A").summary == "s"

    def test_record_roundtrip_keeps_tuples(self, session, make_lesson):
        repo = LessonRepository(session)
        repo.upsert(make_lesson("A", tags=("x", "y"), last_modified=datetime(2024, 1, 2)))
        session.commit()

        record = repo.get("A")
        assert record.tags == ("x", "y")
        assert record.skills == ()
        assert record.last_modified == datetime(2024, 1, 2)

    def test_fetch_live_skips_archived_and_unknown(self, session, make_lesson):
        repo = LessonRepository(session)
        repo.upsert(make_lesson("A"))
        repo.upsert(make_lesson("B", archived=True))
        session.commit()

        assert set(repo.fetch_live(["A", "B", "Z"])) == {"A"}
        assert repo.fetch_live([]) == {}

    def test_count_and_list_live(self, session, make_lesson):
        repo = LessonRepository(session)
        for lesson_id in ("C", "A", "B"):
            repo.upsert(make_lesson(lesson_id))
        repo.upsert(make_lesson("D", archived=True))
        session.commit()

        assert repo.count() == 3
        assert repo.count(include_archived=True) == 4
        assert [r.lesson_id for r in repo.list_live()] == ["A", "B", "C"]

    def test_archive(self, session, make_lesson):
        repo = LessonRepository(session)
        repo.upsert(make_lesson("A"))
        session.commit()

        assert repo.archive("A", "B", datetime(2025, 1, 1), "duplicate_resolution") is True
        session.commit()
        session.expire_all()

        record = repo.get("A")
        assert record.archived is True
        assert record.canonical_id == "B"
        assert session.get(Lesson, "A").archive_reason == "duplicate_resolution"

    def test_archive_matches_live_rows_only(self, session, make_lesson):
        repo = LessonRepository(session)
        repo.upsert(make_lesson("A"))
        session.commit()

        assert repo.archive("A", "B", datetime(2025, 1, 1), "duplicate_resolution") is True
        assert repo.archive("A", "C", datetime(2025, 1, 2), "duplicate_resolution") is False
        assert repo.archive("missing", "C", datetime(2025, 1, 2), "duplicate_resolution") is False
        session.commit()
        session.expire_all()

        assert repo.get("A").canonical_id == "B"

    def test_set_title_appends_note(self, session, make_lesson):
        repo = LessonRepository(session)
        repo.upsert(make_lesson("A", title="Old", processing_notes="Reviewed"))
        repo.upsert(make_lesson("B", title="Other"))
        session.commit()

        rows = repo.get_rows(["A", "B"])
        repo.set_title(rows["A"], "New", note="[edit] retitled")
        repo.set_title(rows["B"], "Better", note="[edit] retitled")
        session.commit()

        assert repo.get("A").title == "New"
        assert repo.get("A").processing_notes == "Reviewed\n[edit] retitled"
        assert repo.get("B").processing_notes == "[edit] retitled"


class TestDismissalRepository:
    """Test keep-all decisions."""

    def test_add_get_keys_and_all(self, db_path):
        session = get_session(db_path)
        repo = DismissalRepository(session)
        record = DismissalRecord(
            group_key="A,B",
            lesson_ids=("A", "B"),
            type=GroupType.TITLE,
            dismissed_at=datetime(2025, 1, 1),
            notes="Different grade levels",
            dismissed_by="editor-1",
        )

        repo.add(record)
        session.commit()

        assert repo.get("A,B") == record
        assert repo.get("C,D") is None
        assert repo.keys() == {"A,B"}
        assert repo.all() == [record]
        session.close()

    def test_group_key_unique(self, db_path):
        session = get_session(db_path)
        repo = DismissalRepository(session)
        record = DismissalRecord(
            group_key="A,B",
            lesson_ids=("A", "B"),
            type=GroupType.EXACT,
            dismissed_at=datetime(2025, 1, 1),
            notes="keep",
        )
        repo.add(record)

        with pytest.raises(IntegrityError):
            repo.add(record)
        session.close()


class TestResolutionRepository:
    """Test resolution reads and writes."""

    def test_add_get_and_all(self, db_path):
        session = get_session(db_path)
        repo = ResolutionRepository(session)
        record = ResolutionRecord(
            group_key="A,B",
            canonical_id="A",
            archived_ids=("B",),
            type=GroupType.TITLE,
            similarity_score=0.8,
            merge_applied=False,
            resolved_at=datetime(2025, 1, 1),
            notes="resolved",
        )

        repo.add(record, lessons_in_group=2)
        session.commit()

        assert repo.exists("A,B")
        assert not repo.exists("C,D")
        assert repo.get("A,B") == record
        assert repo.all() == [record]
        session.close()
