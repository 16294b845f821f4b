"""
Service facade over the dedupe pipeline.

Wires the report loader, lesson store, resolved-set tracker and resolver
for one working session, and exposes the operations callers use:
pending-groups query, resolve and dismiss calls, auto-resolution and
history.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from pipelines.entity_resolution.candidate_selector import rank_members, select_canonical
from pipelines.entity_resolution.group_store import GroupStore, live_record_lookup
from pipelines.entity_resolution.resolver import GroupResolver
from pipelines.entity_resolution.tracker import ResolvedSetTracker
from storage.repositories.dismissals import DismissalRepository
from storage.repositories.lessons import LessonRepository
from storage.repositories.resolutions import ResolutionRepository

from .config import Settings
from .database import init_database, session_factory
from .errors import (
    AlreadyResolved,
    ConflictError,
    NotAuthorized,
    PersistenceFailure,
    ValidationError,
)
from .logger import StructuredLogger, get_logger
from .models import (
    DismissalRecord,
    DuplicateGroup,
    GroupType,
    LessonRecord,
    MergePolicy,
    ResolutionRecord,
    ScoredLesson,
)
from .normalize import compute_group_key
from .report import load_report


@dataclass(frozen=True)
class Caller:
    """An already-authenticated caller plus the result of the role check."""

    user_id: Optional[str]
    can_resolve: bool


SYSTEM_CALLER = Caller(user_id="system:auto-resolve", can_resolve=True)


@dataclass(frozen=True)
class ResolveRequest:
    group_key: str
    canonical_id: str
    archived_ids: Tuple[str, ...]
    type: GroupType
    similarity_score: float
    merge_metadata: bool = False
    notes: Optional[str] = None
    title_updates: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResolveRequest":
        """Build a request from the wire shape (camelCase keys)."""
        try:
            group_type = GroupType(data.get("type"))
        except ValueError:
            raise ValidationError(f"Unknown group type: {data.get('type')!r}")
        archived = data.get("archivedIds")
        if not isinstance(archived, list):
            raise ValidationError("archivedIds must be a list")
        titles = data.get("titleUpdates") or {}
        if not isinstance(titles, dict):
            raise ValidationError("titleUpdates must map lesson ids to titles")
        similarity = data.get("similarityScore")
        if not isinstance(similarity, (int, float)) or isinstance(similarity, bool):
            raise ValidationError("similarityScore must be a number")
        return cls(
            group_key=str(data.get("groupKey") or ""),
            canonical_id=str(data.get("canonicalId") or ""),
            archived_ids=tuple(archived),
            type=group_type,
            similarity_score=float(similarity),
            merge_metadata=bool(data.get("mergeMetadata", False)),
            notes=data.get("notes"),
            title_updates=tuple(sorted(titles.items())),
        )


@dataclass(frozen=True)
class ResolveResponse:
    success: bool
    archived_count: int
    replayed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "archivedCount": self.archived_count, "replayed": self.replayed}


@dataclass
class AutoResolveSummary:
    processed: int = 0
    resolved: int = 0
    skipped: int = 0
    failed: int = 0
    decisions: List[Dict[str, Any]] = field(default_factory=list)


def validate_request(request: ResolveRequest) -> DuplicateGroup:
    """Check a resolve request and rebuild the group it refers to."""
    if not request.canonical_id:
        raise ValidationError("canonicalId is required")
    if not request.archived_ids:
        raise ValidationError("archivedIds must name at least one lesson")
    if request.canonical_id in request.archived_ids:
        raise ValidationError("canonicalId must not also be archived")
    if len(set(request.archived_ids)) != len(request.archived_ids):
        raise ValidationError("archivedIds contains repeated ids")
    if not 0.0 <= request.similarity_score <= 1.0:
        raise ValidationError("similarityScore must be within [0, 1]")

    members = request.archived_ids + (request.canonical_id,)
    expected_key = compute_group_key(members)
    if request.group_key != expected_key:
        raise ValidationError(
            f"groupKey {request.group_key!r} does not match members (expected {expected_key!r})"
        )

    return DuplicateGroup(
        group_key=expected_key,
        type=request.type,
        similarity_score=request.similarity_score,
        recommended_canonical_id=request.canonical_id,
        members=tuple(sorted(members)),
    )


class DedupeService:
    """One working session against a lessons database and a duplicate report."""

    def __init__(
        self,
        db_path: Path,
        report_source: Optional[str] = None,
        report_loader: Optional[Callable] = None,
        http_timeout: float = 15.0,
        logger: Optional[StructuredLogger] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        init_database(db_path)
        self.factory = session_factory(db_path)
        self.logger = logger or get_logger()
        self.clock = clock

        if report_loader is None:
            if report_source is None:
                raise ValueError("Either report_source or report_loader is required")
            report_loader = lambda: load_report(report_source, timeout=http_timeout)  # noqa: E731

        self.tracker = ResolvedSetTracker(durable_lookup=self._durable_lookup)
        self.store = GroupStore(report_loader, live_record_lookup(self.factory), logger=self.logger)
        self.resolver = GroupResolver(self.factory, tracker=self.tracker, logger=self.logger)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "DedupeService":
        return cls(
            db_path=settings.db_path,
            report_source=settings.report_source,
            http_timeout=settings.http_timeout,
            **kwargs,
        )

    def _durable_lookup(self, group_key: str) -> Optional[ResolutionRecord]:
        session = self.factory()
        try:
            return ResolutionRepository(session).get(group_key)
        except SQLAlchemyError as e:
            # Cache miss only; the resolver re-checks inside its transaction.
            self.logger.warning("Resolution lookup failed", group_key=group_key, error=str(e))
            return None
        finally:
            session.close()

    def _dismissed_keys(self) -> Set[str]:
        session = self.factory()
        try:
            return DismissalRepository(session).keys()
        finally:
            session.close()

    def pending_groups(self, include_resolved: bool = False, now: Optional[datetime] = None) -> List[DuplicateGroup]:
        """Pending groups in report order; resolved and dismissed keys are left out unless include_resolved."""
        excluded = set() if include_resolved else self.tracker.keys() | self._dismissed_keys()
        return self.store.list_pending(excluded, now=now or self.clock())

    def score_group_records(self, lessons: Iterable[LessonRecord], now: Optional[datetime] = None) -> List[ScoredLesson]:
        return rank_members(lessons, now=now or self.clock())

    def resolve_group(
        self,
        group: DuplicateGroup,
        canonical_id: str,
        caller: Caller,
        merge_metadata: bool = False,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
        title_updates: Optional[Dict[str, str]] = None,
    ) -> ResolutionRecord:
        if not caller.can_resolve:
            raise NotAuthorized(f"Caller {caller.user_id!r} may not resolve duplicate groups")
        return self.resolver.resolve(
            group,
            canonical_id,
            MergePolicy(merge_metadata=merge_metadata),
            notes=notes,
            resolved_by=caller.user_id,
            now=now or self.clock(),
            title_updates=title_updates,
        )

    def handle_resolve(self, request: ResolveRequest, caller: Caller, now: Optional[datetime] = None) -> ResolveResponse:
        """
        Resolve call entry point.

        A retry carrying the same canonical and archived ids as the committed
        resolution is answered with success and replayed=True.
        """
        if not caller.can_resolve:
            raise NotAuthorized(f"Caller {caller.user_id!r} may not resolve duplicate groups")
        group = validate_request(request)
        try:
            record = self.resolve_group(
                group,
                request.canonical_id,
                caller,
                merge_metadata=request.merge_metadata,
                notes=request.notes,
                now=now,
                title_updates=dict(request.title_updates),
            )
        except AlreadyResolved as e:
            existing = e.existing
            if (
                existing is not None
                and existing.canonical_id == request.canonical_id
                and set(existing.archived_ids) == set(request.archived_ids)
            ):
                self.logger.info("Replayed resolve call", group_key=group.group_key)
                return ResolveResponse(success=True, archived_count=len(existing.archived_ids), replayed=True)
            raise
        return ResolveResponse(success=True, archived_count=len(record.archived_ids))

    def auto_resolve(
        self,
        group_type: GroupType = GroupType.EXACT,
        dry_run: bool = False,
        caller: Caller = SYSTEM_CALLER,
        now: Optional[datetime] = None,
    ) -> AutoResolveSummary:
        """Resolve every pending group of one type with its best-scoring member, merging metadata."""
        now = now or self.clock()
        summary = AutoResolveSummary()
        for group in self.pending_groups(now=now):
            if group.type != group_type:
                continue
            summary.processed += 1
            ranked = rank_members(group.lessons, now=now)
            canonical_id = select_canonical(ranked)
            best = ranked[0]
            reason = (
                f"Selected based on canonical_score={best.canonical_score:.3f}, "
                f"completeness={best.breakdown.completeness:.3f}, "
                f"modified={best.lesson.effective_timestamp or 'unknown'}"
            )
            summary.decisions.append(
                {"groupKey": group.group_key, "canonicalId": canonical_id, "reason": reason}
            )
            if dry_run:
                continue
            try:
                self.resolve_group(
                    group,
                    canonical_id,
                    caller,
                    merge_metadata=True,
                    notes=f"Auto-resolved. {reason}",
                    now=now,
                )
                summary.resolved += 1
            except ConflictError:
                summary.skipped += 1
            except PersistenceFailure:
                summary.failed += 1
        return summary

    def history(self) -> List[ResolutionRecord]:
        session = self.factory()
        try:
            records = ResolutionRepository(session).all()
        finally:
            session.close()
        for record in records:
            self.tracker.record(record)
        return records

    def dismiss_group(
        self,
        group: DuplicateGroup,
        caller: Caller,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DismissalRecord:
        """
        Keep every member of a group ("keep all") and stop listing its key.

        Nothing is archived. Dismissing a key twice returns the stored decision.

        Raises:
            NotAuthorized: caller lacks the resolve role
            AlreadyResolved: the group was resolved instead
            PersistenceFailure: the decision could not be stored
        """
        if not caller.can_resolve:
            raise NotAuthorized(f"Caller {caller.user_id!r} may not dismiss duplicate groups")
        if self.tracker.has(group.group_key):
            raise AlreadyResolved(group.group_key, self.tracker.get(group.group_key))

        record = DismissalRecord(
            group_key=group.group_key,
            lesson_ids=group.members,
            type=group.type,
            dismissed_at=now or self.clock(),
            notes=notes.strip() if notes and notes.strip() else "Dismissed via duplicate review",
            dismissed_by=caller.user_id,
        )
        session = self.factory()
        try:
            repo = DismissalRepository(session)
            existing = repo.get(group.group_key)
            if existing is not None:
                return existing
            repo.add(record)
            session.commit()
        except IntegrityError as e:
            # Dismissed concurrently; the stored decision stands.
            session.rollback()
            existing = DismissalRepository(session).get(group.group_key)
            if existing is None:
                raise PersistenceFailure(f"Could not dismiss group {group.group_key!r}: {e}") from e
            return existing
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceFailure(f"Could not dismiss group {group.group_key!r}: {e}") from e
        finally:
            session.close()

        self.logger.info("Dismissed duplicate group", group_key=group.group_key, lessons=len(group.members))
        return record

    def dismissals(self) -> List[DismissalRecord]:
        session = self.factory()
        try:
            return DismissalRepository(session).all()
        finally:
            session.close()

    def import_lessons(self, records: List[LessonRecord]) -> Dict[str, int]:
        counts = {"new": 0, "updated": 0}
        session = self.factory()
        try:
            repo = LessonRepository(session)
            for record in records:
                counts[repo.upsert(record)] += 1
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise PersistenceFailure(f"Lesson import failed: {e}") from e
        finally:
            session.close()
        return counts

    def get_lesson(self, lesson_id: str) -> Optional[LessonRecord]:
        session = self.factory()
        try:
            return LessonRepository(session).get(lesson_id)
        finally:
            session.close()
