"""
Duplicate Group Store (read side).

Responsibilities:
- Load candidate groups from the duplicate report.
- Attach live lesson records by keyed lookup.
- Derive each group's stable key and drop already-resolved keys.

Non-Responsibilities:
- No scoring beyond filling a missing recommendation.
- No writes.

Invariant:
Output order is report order. One unresolvable member never fails the
whole listing; it is dropped with a warning.
"""

from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy.exc import OperationalError

from lessondedupe.logger import StructuredLogger, get_logger
from lessondedupe.models import DuplicateGroup, LessonRecord
from lessondedupe.normalize import compute_group_key
from lessondedupe.report import ReportGroup
from lessondedupe.retry import exponential_backoff
from storage.repositories.lessons import LessonRepository

from .candidate_selector import rank_members, select_canonical

ReportLoader = Callable[[], List[ReportGroup]]
RecordLookup = Callable[[Iterable[str]], Dict[str, LessonRecord]]


def live_record_lookup(factory, max_retries: int = 3, base_delay: float = 0.5) -> RecordLookup:
    """
    Build a record lookup over the lessons table.

    Transient database errors are retried; exhaustion raises UpstreamUnavailable.
    """

    @exponential_backoff(
        "Lesson store lookup",
        retry_on=(OperationalError,),
        max_retries=max_retries,
        base_delay=base_delay,
    )
    def fetch(lesson_ids: List[str]) -> Dict[str, LessonRecord]:
        session = factory()
        try:
            return LessonRepository(session).fetch_live(lesson_ids)
        finally:
            session.close()

    # Materialized once so every attempt sees the same ids.
    return lambda lesson_ids: fetch(list(lesson_ids))


class GroupStore:
    def __init__(
        self,
        report_loader: ReportLoader,
        record_lookup: RecordLookup,
        logger: Optional[StructuredLogger] = None,
    ):
        self.report_loader = report_loader
        self.record_lookup = record_lookup
        self.logger = logger or get_logger()

    def list_pending(self, excluded_keys: Optional[Set[str]] = None, now: Optional[datetime] = None) -> List[DuplicateGroup]:
        """
        Return pending duplicate groups in report order.

        Args:
            excluded_keys: Group keys to leave out (already resolved)
            now: Reference time used when a recommendation has to be recomputed

        Raises:
            UpstreamUnavailable: report or lesson store unreachable
        """
        excluded = excluded_keys or set()
        report_groups = self.report_loader()

        all_ids = {lesson_id for g in report_groups for lesson_id in g.lesson_ids}
        live = self.record_lookup(all_ids)

        seen: Set[str] = set()
        pending: List[DuplicateGroup] = []
        for report_group in report_groups:
            group = self._build_group(report_group, live, now)
            if group is None:
                continue
            if group.group_key in seen:
                self.logger.debug(
                    "Skipping repeated group in report",
                    group_key=group.group_key,
                    source_group_id=report_group.source_group_id,
                )
                continue
            seen.add(group.group_key)
            if group.group_key in excluded:
                continue
            pending.append(group)

        self.logger.record_groups_listed(len(pending))
        return pending

    def _build_group(
        self,
        report_group: ReportGroup,
        live: Dict[str, LessonRecord],
        now: Optional[datetime],
    ) -> Optional[DuplicateGroup]:
        lessons: List[LessonRecord] = []
        for lesson_id in report_group.lesson_ids:
            record = live.get(lesson_id)
            if record is None:
                self.logger.warning(
                    "Dropping unresolvable group member",
                    lesson_id=lesson_id,
                    source_group_id=report_group.source_group_id,
                )
                self.logger.record_member_dropped()
                continue
            lessons.append(record)

        if len(lessons) < 2:
            self.logger.warning(
                "Dropping group with fewer than two live members",
                source_group_id=report_group.source_group_id,
                live_members=[l.lesson_id for l in lessons],
            )
            self.logger.record_group_dropped()
            return None

        # Keyed by live members only. A report group that lost a member to an
        # earlier resolution lists under the smaller key, which is exactly the
        # set a resolve or dismiss call for it acts on.
        members = tuple(sorted(l.lesson_id for l in lessons))
        recommended = report_group.recommended_canonical
        if recommended not in members:
            recommended = select_canonical(rank_members(lessons, now=now))

        return DuplicateGroup(
            group_key=compute_group_key(members),
            type=report_group.type,
            similarity_score=report_group.similarity_score,
            recommended_canonical_id=recommended,
            members=members,
            lessons=tuple(lessons),
            source_group_id=report_group.source_group_id,
        )
