"""
Duplicate Group Resolution Transaction.

Responsibilities:
- Validate the canonical choice and any title edits against the group.
- Merge metadata into the canonical record (fill-if-empty only).
- Soft-archive every other member and write the resolution record.
- Commit all of the above in one database transaction.

Non-Responsibilities:
- No scoring or canonical selection.
- No listing of pending groups.

Invariant:
At most one resolution exists per group_key, and a lesson is archived by at
most one resolution. Archived rows and their resolution record are committed
together or not at all.
"""

import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from lessondedupe.errors import (
    AlreadyResolved,
    DedupeError,
    InvalidCanonical,
    PersistenceFailure,
    StaleGroup,
    ValidationError,
)
from lessondedupe.logger import StructuredLogger, get_logger
from lessondedupe.models import (
    MERGEABLE_FIELDS,
    DuplicateGroup,
    LessonRecord,
    MergePolicy,
    ResolutionRecord,
    TitleUpdate,
)
from lessondedupe.normalize import is_empty
from storage.repositories.lessons import LessonRepository, to_record
from storage.repositories.resolutions import ResolutionRepository

from .tracker import ResolvedSetTracker

ARCHIVE_REASON = "duplicate_resolution"

MAX_TITLE_LENGTH = 500


def merge_on_empty(canonical: LessonRecord, duplicates: Iterable[LessonRecord]) -> Dict[str, Any]:
    """
    Values to fill on the canonical record from its duplicates.

    A field is filled only when the canonical's value is empty, taking the
    first non-empty value in duplicate order. Non-empty canonical values are
    never replaced.
    """
    duplicates = list(duplicates)
    merged: Dict[str, Any] = {}
    for name in MERGEABLE_FIELDS:
        if not is_empty(getattr(canonical, name)):
            continue
        for duplicate in duplicates:
            value = getattr(duplicate, name)
            if not is_empty(value):
                merged[name] = value
                break
    return merged


def validate_title_updates(group: DuplicateGroup, title_updates: Optional[Dict[str, str]]) -> Dict[str, str]:
    """
    Check title edits requested alongside a resolution.

    Returns the edits with surrounding whitespace removed.

    Raises:
        ValidationError: unknown lesson, empty title or title over 500 characters
    """
    cleaned: Dict[str, str] = {}
    for lesson_id, title in (title_updates or {}).items():
        if lesson_id not in group.members:
            raise ValidationError(f"Title update for {lesson_id!r}, which is not in group {group.group_key!r}")
        if not isinstance(title, str) or not title.strip():
            raise ValidationError(f"Invalid title for lesson {lesson_id!r}: title cannot be empty")
        if len(title) > MAX_TITLE_LENGTH:
            raise ValidationError(
                f"Invalid title for lesson {lesson_id!r}: title exceeds {MAX_TITLE_LENGTH} characters"
            )
        cleaned[lesson_id] = title.strip()
    return cleaned


def build_notes(
    group: DuplicateGroup,
    canonical_id: str,
    merged_fields: Dict[str, Any],
    notes: Optional[str],
    retitled: Iterable[str] = (),
) -> str:
    text = (
        f"Resolved {group.type.value} duplicate group of {len(group.members)} lessons "
        f"(similarity {group.similarity_score:.2f}): kept {canonical_id}, "
        f"archived {len(group.members) - 1}"
    )
    if merged_fields:
        text += f"; merged {', '.join(sorted(merged_fields))}"
    retitled = sorted(retitled)
    if retitled:
        text += f"; retitled {', '.join(retitled)}"
    if notes and notes.strip():
        text += f". {notes.strip()}"
    return text


def _jsonable(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: list(v) if isinstance(v, tuple) else v for k, v in values.items()}


class GroupResolver:
    """Executes resolutions against the lessons database."""

    def __init__(
        self,
        factory,
        tracker: Optional[ResolvedSetTracker] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.factory = factory
        self.tracker = tracker or ResolvedSetTracker()
        self.logger = logger or get_logger()
        # group_key -> [lock, number of callers holding or waiting on it]
        self._key_locks: Dict[str, List[Any]] = {}
        self._key_locks_guard = threading.Lock()

    @contextmanager
    def _key_lock(self, group_key: str):
        with self._key_locks_guard:
            entry = self._key_locks.setdefault(group_key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._key_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._key_locks[group_key]

    def resolve(
        self,
        group: DuplicateGroup,
        canonical_id: str,
        merge_policy: MergePolicy = MergePolicy(),
        notes: Optional[str] = None,
        resolved_by: Optional[str] = None,
        now: Optional[datetime] = None,
        title_updates: Optional[Dict[str, str]] = None,
    ) -> ResolutionRecord:
        """
        Collapse a duplicate group into its canonical lesson.

        Args:
            group: Group to resolve
            canonical_id: Member that survives
            merge_policy: Whether to fill empty canonical metadata from duplicates
            notes: Free-text note appended to the generated summary
            resolved_by: Id of the (already authorized) caller
            now: Resolution timestamp; defaults to the current time
            title_updates: New titles keyed by member lesson_id

        Returns:
            The committed ResolutionRecord

        Raises:
            InvalidCanonical: canonical_id is not a member
            ValidationError: a title edit is invalid
            AlreadyResolved: a resolution for the group key exists
            StaleGroup: a member is missing or archived
            PersistenceFailure: the commit failed and was rolled back
        """
        if canonical_id not in group.members:
            raise InvalidCanonical(canonical_id, group.group_key)
        titles = validate_title_updates(group, title_updates)

        group_type = group.type.value
        self.logger.record_resolution_attempt(group_type)

        if self.tracker.has(group.group_key):
            self.logger.record_resolution_conflict()
            self.logger.info("Group already resolved", group_key=group.group_key)
            raise AlreadyResolved(group.group_key, self.tracker.get(group.group_key))

        resolved_at = now or datetime.now()
        with self._key_lock(group.group_key):
            try:
                record = self._commit(group, canonical_id, merge_policy, notes, resolved_by, resolved_at, titles)
            except AlreadyResolved as e:
                if e.existing is not None:
                    self.tracker.record(e.existing)
                self.logger.record_resolution_conflict()
                self.logger.info("Group already resolved", group_key=group.group_key)
                raise
            except StaleGroup as e:
                self.logger.record_resolution_conflict()
                self.logger.warning("Group is stale", group_key=group.group_key, lesson_ids=list(e.lesson_ids))
                raise
            except PersistenceFailure as e:
                self.logger.record_resolution_failure(type(e.__cause__ or e).__name__)
                self.logger.error("Resolution rolled back", group_key=group.group_key, error=str(e))
                raise

        self.tracker.record(record)
        self.logger.record_resolution_success(group_type)
        self.logger.info(
            "Resolved duplicate group",
            group_key=record.group_key,
            canonical_id=record.canonical_id,
            archived=len(record.archived_ids),
            merge_applied=record.merge_applied,
            retitled=len(record.title_updates),
        )
        return record

    @staticmethod
    def _check_live(group: DuplicateGroup, rows: Dict[str, Any]) -> None:
        stale = [m for m in group.members if m not in rows or rows[m].archived]
        if stale:
            raise StaleGroup(group.group_key, stale)

    def _commit(
        self,
        group: DuplicateGroup,
        canonical_id: str,
        merge_policy: MergePolicy,
        notes: Optional[str],
        resolved_by: Optional[str],
        resolved_at: datetime,
        titles: Dict[str, str],
    ) -> ResolutionRecord:
        archived_ids = tuple(m for m in group.members if m != canonical_id)
        session = self.factory()
        try:
            resolutions = ResolutionRepository(session)
            existing = resolutions.get(group.group_key)
            if existing is not None:
                raise AlreadyResolved(group.group_key, existing)

            lessons = LessonRepository(session)
            self._check_live(group, lessons.get_rows(group.members))

            # Staging the key is the transaction's first write. A concurrent
            # writer waits here, then fails the unique check on the same key
            # or sees the members this one archived.
            record = ResolutionRecord(
                group_key=group.group_key,
                canonical_id=canonical_id,
                archived_ids=archived_ids,
                type=group.type,
                similarity_score=group.similarity_score,
                merge_applied=merge_policy.merge_metadata,
                resolved_at=resolved_at,
                notes="",
                resolved_by=resolved_by,
            )
            resolution_row = resolutions.add(record, lessons_in_group=len(group.members))

            rows = lessons.get_rows(group.members, refresh=True)
            self._check_live(group, rows)

            merged_fields: Dict[str, Any] = {}
            if merge_policy.merge_metadata:
                canonical_row = rows[canonical_id]
                merged_fields = merge_on_empty(
                    to_record(canonical_row),
                    [to_record(rows[lesson_id]) for lesson_id in archived_ids],
                )
                if merged_fields:
                    lessons.set_fields(canonical_row, merged_fields)

            applied = self._apply_titles(lessons, rows, titles, resolved_by, resolved_at)

            for lesson_id in archived_ids:
                if not lessons.archive(lesson_id, canonical_id, resolved_at, ARCHIVE_REASON):
                    raise StaleGroup(group.group_key, [lesson_id], reason="archived by another resolution")

            record = replace(
                record,
                notes=build_notes(group, canonical_id, merged_fields, notes, retitled=titles),
                title_updates=applied,
            )
            resolutions.finish(
                resolution_row,
                record,
                merged_fields=_jsonable(merged_fields) if merge_policy.merge_metadata else None,
            )
            session.commit()
            return record
        except DedupeError:
            session.rollback()
            raise
        except IntegrityError as e:
            # Another writer committed the same group_key first.
            session.rollback()
            raise AlreadyResolved(group.group_key, self._existing(group.group_key)) from e
        except SQLAlchemyError as e:
            session.rollback()
            existing = self._existing(group.group_key)
            if existing is not None:
                raise AlreadyResolved(group.group_key, existing) from e
            raise PersistenceFailure(f"Could not resolve group {group.group_key!r}: {e}") from e
        finally:
            session.close()

    @staticmethod
    def _apply_titles(
        lessons: LessonRepository,
        rows: Dict[str, Any],
        titles: Dict[str, str],
        resolved_by: Optional[str],
        resolved_at: datetime,
    ) -> Tuple[TitleUpdate, ...]:
        applied = []
        for lesson_id in sorted(titles):
            row = rows[lesson_id]
            applied.append(TitleUpdate(lesson_id, row.title, titles[lesson_id]))
            lessons.set_title(
                row,
                titles[lesson_id],
                note=f"[{resolved_at:%Y-%m-%d %H:%M:%S}] Title edited during group resolution by {resolved_by or 'unknown'}",
            )
        return tuple(applied)

    def _existing(self, group_key: str) -> Optional[ResolutionRecord]:
        session = self.factory()
        try:
            return ResolutionRepository(session).get(group_key)
        except SQLAlchemyError as e:
            self.logger.warning("Could not read back resolution", group_key=group_key, error=str(e))
            return None
        finally:
            session.close()
