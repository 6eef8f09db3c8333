"""Turn raw backend text into a canonical blueprint.

Pipeline: extract and parse the JSON object, check the required structure,
then normalize ``displayType`` tags. Structural failures raise
``BlueprintValidationError``; everything else becomes a warning.
"""

import copy
import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from polaris.exceptions import BlueprintValidationError
from polaris.generation.prompts import SECTION_DISPLAY_TYPES
from polaris.types import DisplayType

logger = logging.getLogger(__name__)

REQUIRED_SECTIONS: Tuple[str, ...] = ("metadata",)
METADATA_FIELDS: Tuple[str, ...] = ("title", "organization", "role", "generated_at")

_VALID_DISPLAY_TYPES = {t.value for t in DisplayType}
_FENCE_OPEN = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")


def _find_object_end(text: str, start: int) -> int:
    """Index just past the brace closing the object opened at *start*, or -1."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return -1


def extract_json_text(text: str) -> str:
    """Strip code fences, preamble and trailing commentary around a JSON object."""
    cleaned = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", text.strip())).strip()
    start = cleaned.find("{")
    if start < 0:
        return cleaned
    if start > 0:
        logger.debug("Removing %d characters of preamble", start)
    end = _find_object_end(cleaned, start)
    if end < 0:
        return cleaned[start:]
    if end < len(cleaned):
        logger.debug("Removing %d characters of trailing text", len(cleaned) - end)
    return cleaned[start:end]


def parse_blueprint_json(text: Optional[str]) -> Any:
    """Parse the JSON document contained in a backend response.

    Raises:
        BlueprintValidationError: ``EMPTY_RESPONSE`` for blank text,
            ``INVALID_JSON`` when no valid JSON can be recovered.
    """
    if not text or not text.strip():
        raise BlueprintValidationError("Backend returned an empty response", code="EMPTY_RESPONSE")

    candidate = extract_json_text(text)
    try:
        return json.loads(candidate)
    except ValueError as e:
        logger.error(
            "Failed to parse JSON: length=%d, start=%r, error=%s",
            len(candidate),
            candidate[:120],
            e,
        )
        raise BlueprintValidationError(
            "Response is not valid JSON",
            code="INVALID_JSON",
            details={"preview": candidate[:500], "error": str(e)},
        ) from e


def content_sections(blueprint: Dict[str, Any]) -> List[str]:
    return [k for k in blueprint if k != "metadata" and not k.startswith("_")]


def validate_blueprint_structure(
    blueprint: Any,
    required_sections: Sequence[str] = REQUIRED_SECTIONS,
) -> List[str]:
    """Check the top-level shape of a parsed blueprint.

    Returns:
        Warnings for non-critical issues (missing metadata fields, sections
        without ``displayType``).

    Raises:
        BlueprintValidationError: ``INVALID_STRUCTURE`` when *blueprint* is
            not an object, ``MISSING_SECTIONS`` when a required section is
            absent or there is no content section at all.
    """
    if not isinstance(blueprint, dict):
        raise BlueprintValidationError("Blueprint is not an object", code="INVALID_STRUCTURE")

    missing = [s for s in required_sections if not isinstance(blueprint.get(s), dict)]
    if missing:
        raise BlueprintValidationError(
            f"Blueprint missing required sections: {', '.join(missing)}",
            code="MISSING_SECTIONS",
            details={"missing": missing},
        )
    if not content_sections(blueprint):
        raise BlueprintValidationError(
            "Blueprint has no content sections",
            code="MISSING_SECTIONS",
            details={"missing": ["<content>"]},
        )

    warnings: List[str] = []
    metadata = blueprint.get("metadata")
    if isinstance(metadata, dict):
        for field in METADATA_FIELDS:
            if not metadata.get(field):
                warnings.append(f"metadata missing field '{field}'")
    for key in content_sections(blueprint):
        section = blueprint[key]
        if isinstance(section, dict) and not section.get("displayType"):
            warnings.append(f"section '{key}' missing displayType")
    return warnings


def infer_display_type(section_key: str, section: Dict[str, Any]) -> str:
    """Guess a display type from a section's content, then from its name."""
    phases = section.get("phases")
    modules = section.get("modules")
    if isinstance(phases, list) and phases and isinstance(phases[0], dict) and phases[0].get("start_date"):
        return DisplayType.TIMELINE.value
    if isinstance(modules, list) and modules and isinstance(modules[0], dict) and modules[0].get("duration"):
        return DisplayType.TIMELINE.value
    if isinstance(section.get("risks"), list) or isinstance(section.get("human_resources"), list):
        return DisplayType.TABLE.value
    if any(section.get(k) for k in ("objectives", "kpis", "metrics", "demographics")):
        return DisplayType.INFOGRAPHIC.value
    if section.get("chartConfig") or section.get("chartType"):
        return DisplayType.CHART.value

    key = section_key.lower()
    if any(hint in key for hint in ("timeline", "schedule", "implementation")):
        return DisplayType.TIMELINE.value
    if any(hint in key for hint in ("resource", "budget", "risk")):
        return DisplayType.TABLE.value
    if any(hint in key for hint in ("metric", "kpi", "objective", "audience", "assessment")):
        return DisplayType.INFOGRAPHIC.value
    return DisplayType.MARKDOWN.value


def normalize_blueprint(blueprint: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """Return a normalized copy of *blueprint* and the warnings raised on the way.

    Sections without ``displayType`` get an inferred one. Unknown types become
    ``markdown``. A type that differs from the one expected for a well-known
    section is kept, with a warning.
    """
    normalized = copy.deepcopy(blueprint)
    warnings: List[str] = []
    for key in content_sections(normalized):
        section = normalized[key]
        if not isinstance(section, dict):
            continue
        if not section.get("displayType"):
            section["displayType"] = infer_display_type(key, section)
            logger.debug("Inferred displayType '%s' for section '%s'", section["displayType"], key)
        if section["displayType"] not in _VALID_DISPLAY_TYPES:
            warnings.append(f"section '{key}' has unknown displayType '{section['displayType']}'")
            section["displayType"] = DisplayType.MARKDOWN.value
        expected = SECTION_DISPLAY_TYPES.get(key)
        if expected and section["displayType"] != expected:
            warnings.append(
                f"section '{key}' displayType '{section['displayType']}' differs from expected '{expected}'"
            )
    return normalized, warnings


def validate_and_normalize_blueprint(
    text: Optional[str],
    required_sections: Sequence[str] = REQUIRED_SECTIONS,
) -> Tuple[Dict[str, Any], List[str]]:
    """Full pipeline: parse, validate structure, normalize."""
    blueprint = parse_blueprint_json(text)
    warnings = validate_blueprint_structure(blueprint, required_sections)
    normalized, more = normalize_blueprint(blueprint)
    warnings.extend(more)
    for warning in warnings:
        logger.warning("Blueprint validation: %s", warning)
    return normalized, warnings
