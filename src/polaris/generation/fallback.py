"""Classification of failed backend attempts into escalate / stop decisions."""

import logging
from typing import Optional

from polaris.exceptions import BackendError, BlueprintValidationError
from polaris.types import FallbackDecision, FallbackTrigger

logger = logging.getLogger(__name__)

# Requests the provider refused on their merits; another model would refuse them too
_FINAL_ERROR_TYPES = frozenset({"invalid_request_error", "content_policy"})
_PARSE_CODES = frozenset({"INVALID_JSON", "EMPTY_RESPONSE"})
_STRUCTURE_CODES = frozenset({"MISSING_SECTIONS", "INVALID_STRUCTURE"})


def _escalate(trigger: FallbackTrigger, reason: str, error: BaseException) -> FallbackDecision:
    return FallbackDecision(should_fallback=True, trigger=trigger, reason=reason, original_error=error)


def _stop(reason: str, error: BaseException) -> FallbackDecision:
    return FallbackDecision(should_fallback=False, reason=reason, original_error=error)


def _classify_backend_error(error: BackendError) -> FallbackDecision:
    status: Optional[int] = error.status_code
    error_type = error.error_type

    if error_type in _FINAL_ERROR_TYPES:
        return _stop(f"Request rejected by provider ({error_type})", error)
    if error_type == "unavailable":
        return _escalate(FallbackTrigger.BACKEND_UNAVAILABLE, "Backend unavailable", error)
    if error_type == "timeout" or status == 408:
        return _escalate(FallbackTrigger.TIMEOUT, "Request timed out", error)
    if error_type == "max_tokens_exceeded":
        return _escalate(FallbackTrigger.TOKEN_LIMIT, "Output exceeded the token budget", error)
    if status == 429 or error_type == "rate_limit_error":
        return _escalate(FallbackTrigger.RATE_LIMIT, "Rate limited by provider", error)
    if status in (401, 403):
        return _escalate(FallbackTrigger.INVALID_API_KEY, f"Authentication failed ({status})", error)
    if status is not None and status >= 500:
        return _escalate(FallbackTrigger.API_ERROR_5XX, f"Provider error ({status})", error)
    if status is not None and status >= 400:
        return _escalate(FallbackTrigger.API_ERROR_4XX, f"Client error ({status})", error)
    if error_type == "network_error":
        return _escalate(FallbackTrigger.NETWORK_ERROR, "Network error", error)
    if error_type == "parse_error":
        return _escalate(FallbackTrigger.JSON_PARSE_ERROR, "Provider response could not be parsed", error)
    return _stop(f"Unrecognized backend error (status={status}, type={error_type})", error)


def decide_fallback(error: BaseException) -> FallbackDecision:
    """Decide whether a failed attempt should move on to the next backend.

    Transient and backend-specific failures (outages, timeouts, rate limits,
    auth, HTTP errors, unparseable or structurally incomplete output) escalate.
    Rejections of the request itself and unrecognized errors do not.
    """
    if isinstance(error, BlueprintValidationError):
        if error.code in _PARSE_CODES:
            decision = _escalate(FallbackTrigger.JSON_PARSE_ERROR, f"Invalid output ({error.code})", error)
        elif error.code in _STRUCTURE_CODES:
            decision = _escalate(FallbackTrigger.MISSING_SECTIONS, f"Incomplete output ({error.code})", error)
        else:
            decision = _stop(f"Validation failed ({error.code})", error)
    elif isinstance(error, BackendError):
        decision = _classify_backend_error(error)
    else:
        decision = _stop(f"Unrecognized error: {type(error).__name__}", error)

    logger.info(
        "Fallback decision: escalate=%s, trigger=%s, reason=%s",
        decision.should_fallback,
        decision.trigger.value if decision.trigger else None,
        decision.reason,
    )
    return decision
