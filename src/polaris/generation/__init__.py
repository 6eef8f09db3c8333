"""Blueprint generation: prompts, output validation, fallback policy, orchestration."""

from polaris.generation.fallback import decide_fallback
from polaris.generation.orchestrator import GenerationOrchestrator, RankedBackend
from polaris.generation.prompts import BLUEPRINT_SYSTEM_PROMPT, build_blueprint_prompt
from polaris.generation.validation import (
    normalize_blueprint,
    parse_blueprint_json,
    validate_and_normalize_blueprint,
    validate_blueprint_structure,
)

__all__ = [
    "decide_fallback",
    "GenerationOrchestrator",
    "RankedBackend",
    "BLUEPRINT_SYSTEM_PROMPT",
    "build_blueprint_prompt",
    "normalize_blueprint",
    "parse_blueprint_json",
    "validate_and_normalize_blueprint",
    "validate_blueprint_structure",
]
