"""
Loader for the duplicate-analysis report.

The report is produced by an external similarity analysis and may be a
local JSON file or an http(s) URL. Its groupId values are transient and are
kept only for display; group identity is derived from member ids later.
"""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import requests

from .errors import UpstreamUnavailable
from .logger import get_logger
from .models import GroupType
from .retry import exponential_backoff, should_retry_http_status
from .schema import similarity_of, validate_report, validate_report_group


class RetryableStatus(Exception):
    """Raised for HTTP responses worth retrying (5xx, 429, 408)."""
    pass


@dataclass(frozen=True)
class ReportGroup:
    source_group_id: Optional[str]
    type: GroupType
    similarity_score: float
    recommended_canonical: Optional[str]
    lesson_ids: Tuple[str, ...]
    reported_scores: Dict[str, float]


def _is_url(source: str) -> bool:
    return urlparse(source).scheme in ("http", "https")


@exponential_backoff(
    "Duplicate report fetch",
    retry_on=(requests.exceptions.Timeout, requests.exceptions.ConnectionError, RetryableStatus),
    max_retries=3,
    base_delay=1.0,
)
def _fetch_with_retry(url: str, timeout: float):
    """Fetch the report with automatic retry on transient errors."""
    resp = requests.get(url, timeout=timeout)
    if should_retry_http_status(resp.status_code):
        raise RetryableStatus(f"HTTP {resp.status_code}")
    return resp


def fetch_report_document(source: str, timeout: float = 15.0) -> Dict[str, Any]:
    """
    Read the raw report document.

    Raises:
        UpstreamUnavailable: when the report cannot be read or parsed
    """
    if _is_url(source):
        try:
            resp = _fetch_with_retry(source, timeout)
            resp.raise_for_status()
            document = resp.json()
        except requests.exceptions.RequestException as e:
            get_logger().error("Duplicate report request failed", source=source, error=str(e))
            raise UpstreamUnavailable(f"Duplicate report request failed: {e}") from e
        except ValueError as e:
            raise UpstreamUnavailable(f"Duplicate report is not valid JSON: {source}") from e
    else:
        path = Path(source)
        if not path.exists():
            raise UpstreamUnavailable(f"Duplicate report not found: {path}")
        try:
            with path.open("r", encoding="utf-8") as f:
                document = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            raise UpstreamUnavailable(f"Duplicate report unreadable: {path}: {e}") from e

    errors = validate_report(document)
    if errors:
        raise UpstreamUnavailable(f"Malformed duplicate report {source}: {'; '.join(errors)}")
    return document


def parse_report(document: Dict[str, Any]) -> List[ReportGroup]:
    """Turn report groups into ReportGroup values, skipping malformed ones with a warning."""
    groups: List[ReportGroup] = []
    for index, raw in enumerate(document.get("groups", [])):
        errors = validate_report_group(raw)
        if errors:
            get_logger().warning(
                "Skipping malformed report group",
                index=index,
                group_id=raw.get("groupId") if isinstance(raw, dict) else None,
                errors=errors,
            )
            continue

        lesson_ids: List[str] = []
        scores: Dict[str, float] = {}
        for lesson in raw["lessons"]:
            lesson_id = lesson["lessonId"]
            if lesson_id not in lesson_ids:
                lesson_ids.append(lesson_id)
            score = lesson.get("canonicalScore")
            if isinstance(score, (int, float)) and not isinstance(score, bool):
                scores[lesson_id] = float(score)

        group_id = raw.get("groupId")
        groups.append(
            ReportGroup(
                source_group_id=str(group_id) if group_id is not None else None,
                type=GroupType(raw["type"]),
                similarity_score=float(similarity_of(raw)),
                recommended_canonical=raw.get("recommendedCanonical"),
                lesson_ids=tuple(lesson_ids),
                reported_scores=scores,
            )
        )
    return groups


def load_report(source: str, timeout: float = 15.0) -> List[ReportGroup]:
    """Fetch and parse the duplicate report, preserving its group order."""
    groups = parse_report(fetch_report_document(source, timeout=timeout))
    get_logger().debug("Loaded duplicate report", source=source, groups=len(groups))
    return groups
