"""Questionnaire fingerprints and the field-overlap similarity heuristic."""

import hashlib
import json
from typing import Any, Mapping, Sequence

from polaris.types import CacheKeyComponents


def canonical_json(data: Any) -> str:
    """Serialize *data* to JSON with sorted keys and no insignificant whitespace.

    Two deep-equal mappings always produce the same string, regardless of
    key insertion order.
    """
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def digest(text: str) -> str:
    """Return the MD5 hex digest of *text* (32 characters)."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def normalize_value(value: Any) -> str:
    """Lower-case and trim a scalar answer. None becomes ""."""
    if value is None:
        return ""
    return str(value).strip().lower()


def _first_present(answers: Mapping[str, Any], fields: Sequence[str]) -> Any:
    for field in fields:
        value = answers.get(field)
        if value not in (None, ""):
            return value
    return None


def fingerprint(
    answers: Mapping[str, Any],
    domain_fields: Sequence[str],
    complexity_fields: Sequence[str],
    schema_version: str = "v1",
) -> CacheKeyComponents:
    """Derive the four cache fingerprints from a questionnaire answer map.

    Steps:
        1. Exact: MD5 of the canonical JSON of the whole map.
        2. Domain: MD5 of the normalized first present domain field.
        3. Complexity: MD5 of the normalized first present complexity field.
        4. Combined: MD5 of domain and complexity values together.

    Args:
        answers: Raw answer map (static questionnaire answers).
        domain_fields: Answer keys that describe the subject domain, by priority.
        complexity_fields: Answer keys that describe the learner level, by priority.
        schema_version: Cache schema tag, bumped to invalidate old rows.

    Returns:
        CacheKeyComponents, recomputed on every call (never persisted).
    """
    domain = normalize_value(_first_present(answers, domain_fields))
    complexity = normalize_value(_first_present(answers, complexity_fields))
    return CacheKeyComponents(
        exact_fingerprint=digest(canonical_json(answers)),
        domain_fingerprint=digest(domain),
        complexity_fingerprint=digest(complexity),
        combined_fingerprint=digest(canonical_json([domain, complexity])),
        schema_version=schema_version,
    )


def token_jaccard(a: str, b: str) -> float:
    """Jaccard similarity of the whitespace-split, lower-cased token sets."""
    tokens_a = set(a.lower().split())
    tokens_b = set(b.lower().split())
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


def answer_similarity(
    original: Mapping[str, Any],
    candidate: Mapping[str, Any],
    fields: Sequence[str],
    partial_floor: float = 0.7,
) -> float:
    """Score how interchangeable two answer maps are, from 0.0 to 1.0.

    For every comparable field present (not None) on either side: identical
    values score 1.0; two differing strings score their token Jaccard
    similarity when it exceeds *partial_floor*, else 0.0; anything else
    scores 0.0. The result is the mean over those fields, or 0.0 when no
    comparable field is present at all.
    """
    matched = 0.0
    compared = 0
    for field in fields:
        left = original.get(field)
        right = candidate.get(field)
        if left is None and right is None:
            continue
        compared += 1
        if left == right:
            matched += 1.0
        elif isinstance(left, str) and isinstance(right, str):
            partial = token_jaccard(left, right)
            if partial > partial_floor:
                matched += partial
    return matched / compared if compared else 0.0
