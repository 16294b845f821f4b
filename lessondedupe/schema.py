import math
from typing import Any, Dict, List, Optional

from .models import LIST_FIELDS, GroupType, LessonRecord
from .normalize import parse_timestamp

GROUP_TYPES = {t.value for t in GroupType}

REQUIRED_LESSON_STR_FIELDS = ["lesson_id", "title"]
OPTIONAL_LESSON_STR_FIELDS = [
    "summary",
    "objectives",
    "content_text",
    "lesson_format",
    "processing_notes",
]

# Keys accepted in lesson import files, camelCase as exported upstream.
_CAMEL_ALIASES = {
    "lessonId": "lesson_id",
    "contentText": "content_text",
    "rawText": "content_text",
    "lessonFormat": "lesson_format",
    "processingNotes": "processing_notes",
    "createdAt": "created_at",
    "lastModified": "last_modified",
    "gradeLevels": "grade_levels",
    "thematicCategories": "thematic_categories",
    "seasonTiming": "season_timing",
    "coreCompetencies": "core_competencies",
    "culturalHeritage": "cultural_heritage",
    "locationRequirements": "location_requirements",
    "activityType": "activity_type",
    "mainIngredients": "main_ingredients",
    "academicIntegration": "academic_integration",
    "socialEmotionalLearning": "social_emotional_learning",
    "cookingMethods": "cooking_methods",
    "observancesHolidays": "observances_holidays",
}


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _is_score(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and 0.0 <= v <= 1.0


def similarity_of(group: Dict[str, Any]) -> Optional[float]:
    """Report groups carry either similarityScore or the older averageSimilarity."""
    value = group.get("similarityScore")
    if value is None:
        value = group.get("averageSimilarity")
    return value


def validate_report_group(group: Any) -> List[str]:
    """
    Returns a list of validation error messages for one report group.
    Empty list means valid.
    """
    if not isinstance(group, dict):
        return ["Group must be an object"]

    errors: List[str] = []

    if "groupId" in group and not isinstance(group["groupId"], (str, int)):
        errors.append("Field 'groupId' must be a string if provided")

    group_type = group.get("type")
    if group_type not in GROUP_TYPES:
        errors.append(f"Field 'type' must be one of {sorted(GROUP_TYPES)}, got {group_type!r}")

    similarity = similarity_of(group)
    if not _is_score(similarity):
        errors.append("Field 'similarityScore' must be a number in [0, 1]")

    recommended = group.get("recommendedCanonical")
    if recommended is not None and not isinstance(recommended, str):
        errors.append("Field 'recommendedCanonical' must be a string if provided")

    lessons = group.get("lessons")
    if not isinstance(lessons, list):
        errors.append("Missing required list field: lessons")
    else:
        for i, lesson in enumerate(lessons):
            if not isinstance(lesson, dict) or not _is_non_empty_str(lesson.get("lessonId")):
                errors.append(f"lessons[{i}] must be an object with a non-empty 'lessonId'")

    return errors


def validate_report(document: Any) -> List[str]:
    """Document-level checks. Per-group problems are handled by validate_report_group."""
    if not isinstance(document, dict):
        return ["Report must be a JSON object"]
    if not isinstance(document.get("groups"), list):
        return ["Report is missing the 'groups' list"]
    return []


def validate_lesson(data: Dict[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages for a lesson import entry.
    Expects keys already normalized to snake_case.
    """
    errors: List[str] = []

    for f in REQUIRED_LESSON_STR_FIELDS:
        if f not in data:
            errors.append(f"Missing required field: {f}")
        elif not _is_non_empty_str(data[f]):
            errors.append(f"Field '{f}' must be a non-empty string")

    for f in OPTIONAL_LESSON_STR_FIELDS:
        if data.get(f) is not None and not isinstance(data[f], str):
            errors.append(f"Field '{f}' must be a string if provided")

    for f in LIST_FIELDS:
        value = data.get(f)
        if value is None:
            continue
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            errors.append(f"Field '{f}' must be a list of strings if provided")

    return errors


def normalize_lesson_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    normalized = {}
    for key, value in data.items():
        normalized[_CAMEL_ALIASES.get(key, key)] = value

    # Upstream exports nest the AI confidence signals.
    confidence = normalized.pop("confidence", None)
    if isinstance(confidence, dict):
        normalized.setdefault("confidence_overall", confidence.get("overall"))
        normalized.setdefault("lesson_plan_confidence", confidence.get("lesson_plan_confidence"))
    return normalized


def _optional_float(value: Any) -> Optional[float]:
    """Numbers only; NaN and infinities (which json.load accepts) count as missing."""
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return float(value)
    return None


def lesson_from_dict(data: Dict[str, Any]) -> LessonRecord:
    """Build a LessonRecord from an import entry. Call validate_lesson first."""
    data = normalize_lesson_keys(data)
    values: Dict[str, Any] = {
        "lesson_id": data["lesson_id"],
        "title": data.get("title"),
        "confidence_overall": _optional_float(data.get("confidence_overall")),
        "lesson_plan_confidence": _optional_float(data.get("lesson_plan_confidence")),
        "created_at": parse_timestamp(data.get("created_at")),
        "last_modified": parse_timestamp(data.get("last_modified")),
    }
    for f in OPTIONAL_LESSON_STR_FIELDS:
        values[f] = data.get(f)
    for f in LIST_FIELDS:
        values[f] = tuple(data.get(f) or ())
    return LessonRecord(**values)
