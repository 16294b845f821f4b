import argparse
import json
import sys
from pathlib import Path

from . import __version__
from .config import load_settings
from .errors import (
    AlreadyResolved,
    ConflictError,
    DedupeError,
    PersistenceFailure,
    UpstreamUnavailable,
    ValidationError,
)
from .logger import get_logger, reset_logger
from .models import GroupType
from .normalize import split_group_key
from .schema import lesson_from_dict, normalize_lesson_keys, validate_lesson
from .service import Caller, DedupeService, ResolveRequest

# Exit codes per error class; argparse itself exits with 2 on usage errors.
EXIT_CODES = (
    (ValidationError, 2),
    (ConflictError, 3),
    (UpstreamUnavailable, 4),
    (PersistenceFailure, 5),
)


def build_service(args: argparse.Namespace) -> DedupeService:
    try:
        settings = load_settings()
    except ValueError as e:
        raise SystemExit(f"Configuration error: {e}")
    reset_logger()
    logger = get_logger(level=settings.log_level, log_dir=settings.log_dir)
    db_path = Path(args.db) if getattr(args, "db", None) else settings.db_path
    report = getattr(args, "report", None) or settings.report_source
    return DedupeService(
        db_path=db_path,
        report_source=report,
        http_timeout=settings.http_timeout,
        logger=logger,
    )


def _read_lessons(input_path: Path) -> list:
    with input_path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("lessons", [])
    if not isinstance(data, list):
        raise SystemExit(f"Expected a list of lessons in {input_path}")
    return data


def cmd_import_lessons(args: argparse.Namespace) -> None:
    input_path = Path(args.input)
    if not input_path.exists():
        raise SystemExit(f"Input file not found: {input_path}")

    records = []
    invalid = 0
    for entry in _read_lessons(input_path):
        if not isinstance(entry, dict):
            invalid += 1
            continue
        errors = validate_lesson(normalize_lesson_keys(entry))
        if errors:
            print(f"[validation_error] {entry.get('lessonId') or entry.get('lesson_id')} - {errors}")
            invalid += 1
            continue
        records.append(lesson_from_dict(entry))

    service = build_service(args)
    counts = service.import_lessons(records)
    print(f"Done. new={counts['new']} updated={counts['updated']} invalid={invalid}")


def cmd_pending(args: argparse.Namespace) -> None:
    service = build_service(args)
    groups = service.pending_groups(include_resolved=args.include_resolved)
    if args.json:
        payload = [
            {
                "groupKey": g.group_key,
                "type": g.type.value,
                "similarityScore": g.similarity_score,
                "recommendedCanonical": g.recommended_canonical_id,
                "members": list(g.members),
                "sourceGroupId": g.source_group_id,
            }
            for g in groups
        ]
        print(json.dumps(payload, indent=2))
        return
    if not groups:
        print("No pending duplicate groups.")
        return
    print(f"Found {len(groups)} pending groups:\n")
    for g in groups:
        print(f"Group: {g.group_key}")
        print(f"  Type: {g.type.value} (similarity {g.similarity_score:.2f})")
        print(f"  Recommended: {g.recommended_canonical_id}")
        for lesson in g.lessons:
            print(f"  - {lesson.lesson_id}: {lesson.title}")
        print()


def cmd_score(args: argparse.Namespace) -> None:
    lesson_ids = split_group_key(args.group_key)
    if len(lesson_ids) < 2:
        raise SystemExit("A group key names at least two lessons, e.g. A,B")
    service = build_service(args)
    live = service.store.record_lookup(lesson_ids)
    missing = [i for i in lesson_ids if i not in live]
    if missing:
        print(f"Not live: {', '.join(missing)}")
    ranked = service.score_group_records(list(live.values()))
    if args.json:
        payload = [
            {"lessonId": s.lesson.lesson_id, "canonicalScore": s.canonical_score, "breakdown": s.breakdown.to_dict()}
            for s in ranked
        ]
        print(json.dumps(payload, indent=2))
        return
    for rank, scored in enumerate(ranked, start=1):
        b = scored.breakdown
        print(f"{rank}. {scored.lesson.lesson_id} score={scored.canonical_score:.3f}")
        print(
            f"   content={b.content:.2f} completeness={b.completeness:.2f} recency={b.recency:.2f} "
            f"quality={b.quality:.2f} notes={b.notes:.2f} naming={b.naming:.2f}"
        )


def _pending_group(service: DedupeService, group_key: str):
    group = next((g for g in service.pending_groups() if g.group_key == group_key), None)
    if group is None:
        existing = service.tracker.get(group_key)
        if existing is not None:
            raise AlreadyResolved(group_key, existing)
        raise SystemExit(f"Group not pending: {group_key}")
    return group


def _parse_titles(values) -> dict:
    titles = {}
    for value in values or ():
        lesson_id, sep, title = value.partition("=")
        if not sep or not lesson_id.strip():
            raise SystemExit(f"Expected LESSON_ID=TITLE, got: {value}")
        titles[lesson_id.strip()] = title
    return titles


def cmd_resolve(args: argparse.Namespace) -> None:
    titles = _parse_titles(args.title)
    service = build_service(args)
    group = _pending_group(service, args.group_key)

    canonical_id = args.canonical or group.recommended_canonical_id
    if canonical_id not in group.members:
        raise ValidationError(f"Canonical {canonical_id!r} is not a member of group {group.group_key!r}")
    request = ResolveRequest(
        group_key=group.group_key,
        canonical_id=canonical_id,
        archived_ids=tuple(m for m in group.members if m != canonical_id),
        type=group.type,
        similarity_score=group.similarity_score,
        merge_metadata=args.merge_metadata,
        notes=args.notes,
        title_updates=tuple(sorted(titles.items())),
    )
    response = service.handle_resolve(request, Caller(user_id=args.user, can_resolve=True))
    status = "replayed" if response.replayed else "resolved"
    print(f"[{status}] {group.group_key} -> {canonical_id} (archived {response.archived_count})")


def cmd_dismiss(args: argparse.Namespace) -> None:
    service = build_service(args)
    group = _pending_group(service, args.group_key)
    record = service.dismiss_group(group, Caller(user_id=args.user, can_resolve=True), notes=args.notes)
    print(f"[dismissed] {record.group_key} (kept {len(record.lesson_ids)})")


def cmd_auto_resolve(args: argparse.Namespace) -> None:
    service = build_service(args)
    summary = service.auto_resolve(group_type=GroupType(args.type), dry_run=args.dry_run)
    for decision in summary.decisions:
        prefix = "[dry-run]" if args.dry_run else "[decision]"
        print(f"{prefix} {decision['groupKey']} -> {decision['canonicalId']}: {decision['reason']}")
    print(
        f"Done. processed={summary.processed} resolved={summary.resolved} "
        f"skipped={summary.skipped} failed={summary.failed}"
    )
    service.logger.log_metrics_summary()


def cmd_history(args: argparse.Namespace) -> None:
    service = build_service(args)
    records = service.history()
    if not records:
        print("No resolutions recorded.")
    for r in records:
        print(f"{r.resolved_at:%Y-%m-%d %H:%M:%S} {r.group_key} -> {r.canonical_id} ({r.type.value})")
        print(f"  {r.notes}")
        for update in r.title_updates:
            print(f"  title {update.lesson_id}: {update.old_title!r} -> {update.new_title!r}")
    for d in service.dismissals():
        print(f"{d.dismissed_at:%Y-%m-%d %H:%M:%S} {d.group_key} kept all ({d.type.value})")
        print(f"  {d.notes}")


def _add_db(p: argparse.ArgumentParser) -> None:
    p.add_argument("--db", help="Path to SQLite database (default: DEDUPE_DB_PATH or data/lessons.db)")


def _add_report(p: argparse.ArgumentParser) -> None:
    p.add_argument("--report", help="Duplicate report file or URL (default: DEDUPE_REPORT)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lessondedupe", description="Lesson duplicate resolution CLI")
    parser.add_argument("--version", action="store_true", help="Show version")

    subparsers = parser.add_subparsers(dest="command")

    imp = subparsers.add_parser("import-lessons", help="Load lesson records from a JSON export")
    imp.add_argument("--input", required=True, help="JSON file with a list of lessons (or {\"lessons\": [...]})")
    _add_db(imp)
    imp.set_defaults(func=cmd_import_lessons)

    pen = subparsers.add_parser("pending", help="List unresolved duplicate groups")
    pen.add_argument("--include-resolved", action="store_true", help="Do not filter out resolved or dismissed group keys")
    pen.add_argument("--json", action="store_true", help="Print JSON instead of text")
    _add_db(pen)
    _add_report(pen)
    pen.set_defaults(func=cmd_pending)

    sco = subparsers.add_parser("score", help="Show canonical scores for the members of a group")
    sco.add_argument("--group-key", required=True, help="Comma-separated lesson ids")
    sco.add_argument("--json", action="store_true", help="Print JSON instead of text")
    _add_db(sco)
    sco.set_defaults(func=cmd_score)

    res = subparsers.add_parser("resolve", help="Resolve one pending group")
    res.add_argument("--group-key", required=True, help="Group key as shown by 'pending'")
    res.add_argument("--canonical", help="Lesson id to keep (default: recommended canonical)")
    res.add_argument("--merge-metadata", action="store_true", help="Fill empty canonical metadata from duplicates")
    res.add_argument("--notes", help="Free-text note stored with the resolution")
    res.add_argument(
        "--title",
        action="append",
        metavar="LESSON_ID=TITLE",
        help="Rename a group member while resolving (repeatable)",
    )
    res.add_argument("--user", default="cli", help="Resolver id stored with the resolution")
    _add_db(res)
    _add_report(res)
    res.set_defaults(func=cmd_resolve)

    dis = subparsers.add_parser("dismiss", help="Keep every lesson of a pending group and stop listing it")
    dis.add_argument("--group-key", required=True, help="Group key as shown by 'pending'")
    dis.add_argument("--notes", help="Reason stored with the dismissal")
    dis.add_argument("--user", default="cli", help="Reviewer id stored with the dismissal")
    _add_db(dis)
    _add_report(dis)
    dis.set_defaults(func=cmd_dismiss)

    aut = subparsers.add_parser("auto-resolve", help="Resolve all pending groups of one type by score")
    aut.add_argument("--type", default=GroupType.EXACT.value, choices=[t.value for t in GroupType])
    aut.add_argument("--dry-run", action="store_true", help="Show decisions without writing")
    _add_db(aut)
    _add_report(aut)
    aut.set_defaults(func=cmd_auto_resolve)

    his = subparsers.add_parser("history", help="List committed resolutions and dismissals")
    _add_db(his)
    his.set_defaults(func=cmd_history)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if not hasattr(args, "func"):
        parser.print_help()
        return

    try:
        args.func(args)
    except DedupeError as e:
        print(f"Error: {e}", file=sys.stderr)
        for error_class, code in EXIT_CODES:
            if isinstance(e, error_class):
                raise SystemExit(code)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
