"""Prompt construction for blueprint generation.

Every backend attempt for one request receives exactly the same prompts;
only the model and output budget change between attempts.
"""

import json
from datetime import datetime
from typing import Dict

from polaris.types import GenerationContext

BLUEPRINT_SYSTEM_PROMPT = """You are a senior learning experience designer with deep knowledge of \
instructional design, adult learning theory and organizational development.

Produce a learning blueprint that is specific to the organization and role described, \
immediately actionable, and measurable through concrete KPIs and assessments.

OUTPUT RULES:
1. Respond with a single JSON object. No markdown fences, no preamble, no commentary.
2. Every top-level section except "metadata" carries a "displayType" field.
3. Prefer specific, contextual recommendations over generic advice.

DISPLAY TYPES:
- "infographic": dashboard-style data (objectives, audiences, metrics)
- "markdown": narrative text
- "chart": quantitative data, with a "chartType" of bar, line, pie or radar
- "timeline": sequential or dated information
- "table": structured, comparable rows (resources, risks)"""

# Section name -> display type the renderer expects for it
SECTION_DISPLAY_TYPES: Dict[str, str] = {
    "executive_summary": "markdown",
    "learning_objectives": "infographic",
    "target_audience": "infographic",
    "instructional_strategy": "markdown",
    "content_outline": "timeline",
    "resources": "table",
    "assessment_strategy": "infographic",
    "implementation_timeline": "timeline",
    "risk_mitigation": "table",
    "success_metrics": "infographic",
    "sustainability_plan": "markdown",
}


def _numbered(items) -> str:
    if not items:
        return "(none provided)"
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, start=1))


def build_blueprint_prompt(context: GenerationContext, generated_at: datetime) -> str:
    """Render the user prompt for *context*.

    Args:
        context: Validated generation input.
        generated_at: Timestamp written into the requested metadata block.
            Passed in so that every attempt for one request is identical.
    """
    schema = {
        "metadata": {
            "title": "Blueprint title",
            "organization": context.organization,
            "role": context.role,
            "generated_at": generated_at.isoformat(),
            "version": "1.0",
        },
    }
    for section, display_type in SECTION_DISPLAY_TYPES.items():
        schema[section] = {"displayType": display_type, "...": "section content"}

    parts = [
        "Generate a comprehensive learning blueprint from the inputs below.",
        "",
        "ORGANIZATION CONTEXT:",
        f"- Organization: {context.organization or 'n/a'}",
        f"- Industry: {context.industry or 'n/a'}",
        f"- Role: {context.role or 'n/a'}",
        "",
        "STATIC QUESTIONNAIRE ANSWERS:",
        json.dumps(context.static_answers, indent=2, ensure_ascii=False, default=str),
        "",
        "DYNAMIC QUESTIONNAIRE ANSWERS:",
        json.dumps(context.dynamic_answers, indent=2, ensure_ascii=False, default=str),
        "",
        "PRIMARY LEARNING OBJECTIVES:",
        _numbered(context.learning_objectives),
        "",
        "OUTPUT SCHEMA (shape only, fill every section):",
        json.dumps(schema, indent=2, ensure_ascii=False),
    ]
    if context.additional_instructions:
        parts += ["", "ADDITIONAL INSTRUCTIONS:", context.additional_instructions]
    return "\n".join(parts)
