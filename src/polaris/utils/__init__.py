"""Utility functions for fingerprinting, similarity scoring and concurrency."""

from polaris.utils.fingerprint import (
    answer_similarity,
    canonical_json,
    digest,
    fingerprint,
    normalize_value,
    token_jaccard,
)
from polaris.utils.singleflight import SingleFlight
from polaris.utils.retry import RetryPolicy, now_ms

__all__ = [
    "answer_similarity",
    "canonical_json",
    "digest",
    "fingerprint",
    "normalize_value",
    "token_jaccard",
    "SingleFlight",
    "RetryPolicy",
    "now_ms",
]
