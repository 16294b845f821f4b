"""
Duplicate Group Dismissals Repository.

Responsibilities:
- Read and insert rows of the duplicate_group_dismissals table.

Non-Responsibilities:
- No business logic.
- No commit or rollback; the caller owns the transaction.

Invariant:
A group_key is dismissed at most once; the unique constraint enforces it.
"""

from typing import List, Optional, Set

from lessondedupe.database import DuplicateGroupDismissal
from lessondedupe.models import DismissalRecord, GroupType


def to_dismissal(row: DuplicateGroupDismissal) -> DismissalRecord:
    return DismissalRecord(
        group_key=row.group_key,
        lesson_ids=tuple(row.lesson_ids or ()),
        type=GroupType(row.duplicate_type),
        dismissed_at=row.dismissed_at,
        notes=row.notes,
        dismissed_by=row.dismissed_by,
    )


class DismissalRepository:
    def __init__(self, session):
        self.session = session

    def get(self, group_key: str) -> Optional[DismissalRecord]:
        row = self.session.query(DuplicateGroupDismissal).filter_by(group_key=group_key).first()
        return to_dismissal(row) if row is not None else None

    def keys(self) -> Set[str]:
        return {key for (key,) in self.session.query(DuplicateGroupDismissal.group_key).all()}

    def add(self, record: DismissalRecord) -> None:
        self.session.add(
            DuplicateGroupDismissal(
                group_key=record.group_key,
                lesson_ids=list(record.lesson_ids),
                duplicate_type=record.type.value,
                dismissed_by=record.dismissed_by,
                dismissed_at=record.dismissed_at,
                notes=record.notes,
            )
        )
        self.session.flush()

    def all(self) -> List[DismissalRecord]:
        rows = (
            self.session.query(DuplicateGroupDismissal)
            .order_by(DuplicateGroupDismissal.dismissed_at, DuplicateGroupDismissal.id)
            .all()
        )
        return [to_dismissal(row) for row in rows]
