"""
Content Feature Extraction for Canonical Scoring.

Responsibilities:
- Detect which structural lesson components appear in free text.
- Compute a bounded content-quality score with a list of missing components.

Non-Responsibilities:
- No weighting against other score components.
- No similarity between lessons.
- No persistence.

Invariant:
Missing or non-string text yields a zero score, never an error.
"""

import re
from typing import Any, Dict, List, Tuple

from lessondedupe.models import ContentAnalysis

# (component, patterns, weight). Weights sum to 1.0.
LESSON_COMPONENTS: Tuple[Tuple[str, Tuple[str, ...], float], ...] = (
    ("objectives", (r"objectives?:", r"learning goals?:", r"students will:", r"learners will:"), 0.15),
    ("materials", (r"materials?:", r"ingredients?:", r"supplies:", r"you('ll)? need:"), 0.15),
    ("procedures", (r"procedures?:", r"instructions?:", r"steps?:", r"directions?:", r"method:"), 0.20),
    ("timeEstimate", (r"\d+\s*(minutes?|mins?|hours?|hrs?)", r"duration:", r"time:"), 0.05),
    ("assessment", (r"assessment:", r"evaluation:", r"reflection:", r"discussion questions?:"), 0.10),
    ("vocabulary", (r"vocabulary:", r"key terms?:", r"words? to know:", r"glossary:"), 0.10),
    ("extensions", (r"extensions?:", r"variations?:", r"adaptations?:", r"differentiation:"), 0.10),
    ("safety", (r"safety:", r"caution:", r"be careful", r"supervision"), 0.05),
    ("academicConnections", (r"academic connections?:", r"curriculum links?:", r"standards?:", r"common core:"), 0.10),
)

_COMPILED = tuple(
    (name, tuple(re.compile(p, re.IGNORECASE) for p in patterns), weight)
    for name, patterns, weight in LESSON_COMPONENTS
)

QUALITY_BONUS_STEP = 0.05

_NUMBERED_STEPS = re.compile(r"\d+\.\s+\w+", re.MULTILINE)
_BULLET_GLYPHS = re.compile(r"[•·▪▫◦‣⁃]\s+\w+", re.MULTILINE)
_BULLET_DASHES = re.compile(r"^\s*[-*]\s+\w+", re.MULTILINE)
_MARKDOWN_HEADING = re.compile(r"^#+\s+.+$", re.MULTILINE)
_COLON_HEADING = re.compile(r"^[A-Z][A-Za-z ]+:$", re.MULTILINE)
_INSTRUCTIONAL_VERBS = re.compile(
    r"\b(cut|mix|plant|measure|observe|discuss|write|draw|create|prepare|add|stir|water|harvest)\b",
    re.IGNORECASE,
)


def quality_indicators(raw_text: str) -> Dict[str, bool]:
    return {
        "hasNumberedSteps": bool(_NUMBERED_STEPS.search(raw_text)),
        "hasBulletPoints": bool(_BULLET_GLYPHS.search(raw_text) or _BULLET_DASHES.search(raw_text)),
        "hasClearSections": (
            len(_MARKDOWN_HEADING.findall(raw_text)) >= 3
            or len(_COLON_HEADING.findall(raw_text)) >= 3
        ),
        "hasInstructionalLanguage": bool(_INSTRUCTIONAL_VERBS.search(raw_text)),
    }


def analyze_content(raw_text: Any) -> ContentAnalysis:
    """
    Score the structural completeness of a lesson's text.

    Each detected component adds its weight; each quality indicator adds
    0.05. The total is capped at 1.0.
    """
    if not isinstance(raw_text, str) or not raw_text.strip():
        return ContentAnalysis(
            missing_components=tuple(name for name, _, _ in LESSON_COMPONENTS),
            components={name: False for name, _, _ in LESSON_COMPONENTS},
        )

    components: Dict[str, bool] = {}
    missing: List[str] = []
    component_score = 0.0
    for name, patterns, weight in _COMPILED:
        found = any(p.search(raw_text) for p in patterns)
        components[name] = found
        if found:
            component_score += weight
        else:
            missing.append(name)

    bonus = QUALITY_BONUS_STEP * sum(1 for present in quality_indicators(raw_text).values() if present)
    total = min(component_score + bonus, 1.0)

    return ContentAnalysis(
        total_score=total,
        components=components,
        component_score=component_score,
        quality_bonus=bonus,
        content_length=len(raw_text),
        missing_components=tuple(missing),
    )
