"""
Duplicate Resolutions Repository.

Responsibilities:
- Read and insert rows of the duplicate_resolutions table.

Non-Responsibilities:
- No business logic.
- No commit or rollback; the caller owns the transaction.

Invariant:
A group_key appears at most once; the unique constraint enforces it.
"""

from typing import Dict, List, Optional

from lessondedupe.database import DuplicateResolution
from lessondedupe.models import GroupType, ResolutionRecord, TitleUpdate


def to_resolution(row: DuplicateResolution) -> ResolutionRecord:
    return ResolutionRecord(
        group_key=row.group_key,
        canonical_id=row.canonical_id,
        archived_ids=tuple(row.archived_ids or ()),
        type=GroupType(row.duplicate_type),
        similarity_score=row.similarity_score,
        merge_applied=bool(row.merge_applied),
        resolved_at=row.resolved_at,
        notes=row.notes,
        resolved_by=row.resolved_by,
        title_updates=tuple(
            TitleUpdate(u["lesson_id"], u.get("old_title"), u["new_title"]) for u in row.title_updates or ()
        ),
    )


def _title_updates_column(updates) -> Optional[List[Dict]]:
    return [
        {"lesson_id": u.lesson_id, "old_title": u.old_title, "new_title": u.new_title} for u in updates
    ] or None


class ResolutionRepository:
    def __init__(self, session):
        self.session = session

    def get(self, group_key: str) -> Optional[ResolutionRecord]:
        row = self.session.query(DuplicateResolution).filter_by(group_key=group_key).first()
        return to_resolution(row) if row is not None else None

    def exists(self, group_key: str) -> bool:
        return (
            self.session.query(DuplicateResolution.id).filter_by(group_key=group_key).first()
            is not None
        )

    def add(self, record: ResolutionRecord, lessons_in_group: int, merged_fields: Optional[Dict] = None) -> DuplicateResolution:
        """Stage a resolution row and flush so a duplicate key fails inside the transaction."""
        row = DuplicateResolution(
            group_key=record.group_key,
            canonical_id=record.canonical_id,
            archived_ids=list(record.archived_ids),
            duplicate_type=record.type.value,
            similarity_score=record.similarity_score,
            lessons_in_group=lessons_in_group,
            merge_applied=record.merge_applied,
            merged_fields=merged_fields,
            title_updates=_title_updates_column(record.title_updates),
            resolved_by=record.resolved_by,
            resolved_at=record.resolved_at,
            notes=record.notes,
        )
        self.session.add(row)
        self.session.flush()
        return row

    def finish(self, row: DuplicateResolution, record: ResolutionRecord, merged_fields: Optional[Dict] = None) -> None:
        """Fill in the outcome of a resolution whose key was staged with add()."""
        row.notes = record.notes
        row.merged_fields = merged_fields
        row.title_updates = _title_updates_column(record.title_updates)

    def all(self) -> List[ResolutionRecord]:
        rows = self.session.query(DuplicateResolution).order_by(DuplicateResolution.resolved_at, DuplicateResolution.id).all()
        return [to_resolution(row) for row in rows]
