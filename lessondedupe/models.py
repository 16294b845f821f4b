"""
Value types shared by the scoring, grouping and resolution code.

Lesson metadata is modelled as a fixed set of optional fields rather than an
open dictionary, so a missing field is always an empty tuple or None.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .normalize import compute_group_key

# Metadata fields counted by the completeness score.
COMPLETENESS_FIELDS = (
    "thematic_categories",
    "season_timing",
    "core_competencies",
    "cultural_heritage",
    "location_requirements",
    "activity_type",
    "lesson_format",
    "main_ingredients",
    "skills",
)

LIST_FIELDS = (
    "grade_levels",
    "thematic_categories",
    "season_timing",
    "core_competencies",
    "cultural_heritage",
    "location_requirements",
    "activity_type",
    "main_ingredients",
    "skills",
    "academic_integration",
    "social_emotional_learning",
    "cooking_methods",
    "observances_holidays",
    "tags",
)

# Fields a merge may fill on the canonical record. Title, content and
# timestamps always stay with the canonical.
MERGEABLE_FIELDS = ("summary", "objectives", "lesson_format") + LIST_FIELDS


class GroupType(str, Enum):
    EXACT = "exact"
    NEAR = "near"
    TITLE = "title"
    MIXED = "mixed"


@dataclass(frozen=True)
class LessonRecord:
    """A lesson plan as seen by the dedupe core."""

    lesson_id: str
    title: Optional[str] = None
    summary: Optional[str] = None
    objectives: Optional[str] = None
    content_text: Optional[str] = None
    lesson_format: Optional[str] = None
    grade_levels: Tuple[str, ...] = ()
    thematic_categories: Tuple[str, ...] = ()
    season_timing: Tuple[str, ...] = ()
    core_competencies: Tuple[str, ...] = ()
    cultural_heritage: Tuple[str, ...] = ()
    location_requirements: Tuple[str, ...] = ()
    activity_type: Tuple[str, ...] = ()
    main_ingredients: Tuple[str, ...] = ()
    skills: Tuple[str, ...] = ()
    academic_integration: Tuple[str, ...] = ()
    social_emotional_learning: Tuple[str, ...] = ()
    cooking_methods: Tuple[str, ...] = ()
    observances_holidays: Tuple[str, ...] = ()
    tags: Tuple[str, ...] = ()
    confidence_overall: Optional[float] = None
    lesson_plan_confidence: Optional[float] = None
    processing_notes: Optional[str] = None
    created_at: Optional[datetime] = None
    last_modified: Optional[datetime] = None
    archived: bool = False
    canonical_id: Optional[str] = None
    archived_at: Optional[datetime] = None

    @property
    def effective_timestamp(self) -> Optional[datetime]:
        return self.last_modified or self.created_at


@dataclass(frozen=True)
class ContentAnalysis:
    """Structural completeness of a lesson's free text."""

    total_score: float = 0.0
    components: Dict[str, bool] = field(default_factory=dict)
    component_score: float = 0.0
    quality_bonus: float = 0.0
    content_length: int = 0
    missing_components: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalScore": self.total_score,
            "components": dict(self.components),
            "contentLength": self.content_length,
            "breakdown": {
                "componentScore": self.component_score,
                "qualityBonus": self.quality_bonus,
                "missingComponents": list(self.missing_components),
            },
        }


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-component canonical score inputs, each normalized to [0, 1]."""

    content: float = 0.0
    completeness: float = 0.0
    recency: float = 0.0
    quality: float = 0.0
    notes: float = 0.0
    naming: float = 0.0
    content_details: Optional[ContentAnalysis] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "content": self.content,
            "completeness": self.completeness,
            "recency": self.recency,
            "quality": self.quality,
            "notes": self.notes,
            "naming": self.naming,
        }
        if self.content_details is not None:
            data["contentDetails"] = self.content_details.to_dict()
        return data


@dataclass(frozen=True)
class ScoredLesson:
    lesson: LessonRecord
    canonical_score: float
    breakdown: ScoreBreakdown


@dataclass(frozen=True)
class DuplicateGroup:
    """
    A pending duplicate group keyed by its member set.

    source_group_id is the report's transient id and is for display only.
    """

    group_key: str
    type: GroupType
    similarity_score: float
    recommended_canonical_id: str
    members: Tuple[str, ...]
    lessons: Tuple[LessonRecord, ...] = ()
    source_group_id: Optional[str] = None

    def __post_init__(self):
        if len(self.members) < 2:
            raise ValueError(f"Duplicate group {self.group_key!r} needs at least two members")
        if self.group_key != compute_group_key(self.members):
            raise ValueError(
                f"Group key {self.group_key!r} does not name members {list(self.members)!r}"
            )
        if self.recommended_canonical_id not in self.members:
            raise ValueError(
                f"Recommended canonical {self.recommended_canonical_id!r} "
                f"is not a member of {self.group_key!r}"
            )

    def lesson(self, lesson_id: str) -> Optional[LessonRecord]:
        for lesson in self.lessons:
            if lesson.lesson_id == lesson_id:
                return lesson
        return None


@dataclass(frozen=True)
class MergePolicy:
    merge_metadata: bool = False


@dataclass(frozen=True)
class TitleUpdate:
    """A title edited while its group was resolved."""

    lesson_id: str
    old_title: Optional[str]
    new_title: str

    def to_dict(self) -> Dict[str, Any]:
        return {"lessonId": self.lesson_id, "oldTitle": self.old_title, "newTitle": self.new_title}


@dataclass(frozen=True)
class ResolutionRecord:
    """Audit entry written exactly once per resolved group key."""

    group_key: str
    canonical_id: str
    archived_ids: Tuple[str, ...]
    type: GroupType
    similarity_score: float
    merge_applied: bool
    resolved_at: datetime
    notes: str
    resolved_by: Optional[str] = None
    title_updates: Tuple[TitleUpdate, ...] = ()


@dataclass(frozen=True)
class DismissalRecord:
    """A "keep all" decision: the group is not a duplicate and nothing is archived."""

    group_key: str
    lesson_ids: Tuple[str, ...]
    type: GroupType
    dismissed_at: datetime
    notes: str
    dismissed_by: Optional[str] = None
