"""
Lessons Repository.

Responsibilities:
- Keyed reads of live lesson records.
- Row-level writes used inside the resolution transaction.
- Conversion between ORM rows and LessonRecord values.

Non-Responsibilities:
- No business logic.
- No commit or rollback; the caller owns the transaction.

Invariant:
Repositories must not encode domain decisions.
"""

from dataclasses import fields
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import update

from lessondedupe.database import Lesson
from lessondedupe.models import LIST_FIELDS, LessonRecord

_RECORD_FIELDS = tuple(f.name for f in fields(LessonRecord))


def to_record(row: Lesson) -> LessonRecord:
    values: Dict[str, Any] = {}
    for name in _RECORD_FIELDS:
        value = getattr(row, name, None)
        if name in LIST_FIELDS:
            value = tuple(value or ())
        values[name] = value
    values["archived"] = bool(row.archived)
    return LessonRecord(**values)


def _column_value(name: str, value: Any) -> Any:
    if name in LIST_FIELDS:
        return list(value) if value else None
    return value


class LessonRepository:
    def __init__(self, session):
        self.session = session

    def fetch_live(self, lesson_ids: Iterable[str]) -> Dict[str, LessonRecord]:
        """Return live (non-archived) records keyed by lesson_id; unknown ids are absent."""
        ids = list(set(lesson_ids))
        if not ids:
            return {}
        rows = (
            self.session.query(Lesson)
            .filter(Lesson.lesson_id.in_(ids), Lesson.archived.is_(False))
            .all()
        )
        return {row.lesson_id: to_record(row) for row in rows}

    def get_rows(self, lesson_ids: Iterable[str], refresh: bool = False) -> Dict[str, Lesson]:
        """Rows keyed by lesson_id. refresh=True reloads rows already in the session."""
        ids = list(set(lesson_ids))
        if not ids:
            return {}
        query = self.session.query(Lesson).filter(Lesson.lesson_id.in_(ids))
        if refresh:
            query = query.populate_existing()
        rows = query.all()
        return {row.lesson_id: row for row in rows}

    def get(self, lesson_id: str) -> Optional[LessonRecord]:
        row = self.session.get(Lesson, lesson_id)
        return to_record(row) if row is not None else None

    def list_live(self) -> List[LessonRecord]:
        rows = (
            self.session.query(Lesson)
            .filter(Lesson.archived.is_(False))
            .order_by(Lesson.lesson_id)
            .all()
        )
        return [to_record(row) for row in rows]

    def count(self, include_archived: bool = False) -> int:
        query = self.session.query(Lesson)
        if not include_archived:
            query = query.filter(Lesson.archived.is_(False))
        return query.count()

    def upsert(self, record: LessonRecord) -> str:
        """Insert or refresh a lesson row. Returns 'new' or 'updated'."""
        row = self.session.get(Lesson, record.lesson_id)
        status = "updated"
        if row is None:
            row = Lesson(lesson_id=record.lesson_id)
            self.session.add(row)
            status = "new"
        for name in _RECORD_FIELDS:
            if name == "lesson_id":
                continue
            setattr(row, name, _column_value(name, getattr(record, name)))
        if row.title is None:
            row.title = ""
        return status

    def set_fields(self, row: Lesson, values: Dict[str, Any]) -> None:
        for name, value in values.items():
            setattr(row, name, _column_value(name, value))

    def set_title(self, row: Lesson, title: str, note: str) -> None:
        row.title = title
        row.processing_notes = f"{row.processing_notes}\n{note}" if row.processing_notes else note

    def archive(self, lesson_id: str, canonical_id: str, archived_at: datetime, reason: str) -> bool:
        """
        Archive a live lesson.

        The update only matches a row that is still live, so two writers can
        never both archive it. Returns False when nothing matched.
        """
        result = self.session.execute(
            update(Lesson)
            .where(Lesson.lesson_id == lesson_id, Lesson.archived.is_(False))
            .values(
                archived=True,
                canonical_id=canonical_id,
                archived_at=archived_at,
                archive_reason=reason,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
