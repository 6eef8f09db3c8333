"""Anthropic Messages API backend over httpx."""

import logging
import math
from typing import Any, Dict, Optional

import httpx

from polaris.backends.http import HTTPBackendMixin, is_transient
from polaris.config import Settings
from polaris.exceptions import BackendError, BackendUnavailableError
from polaris.interfaces.backend import GenerationBackend
from polaris.types import BackendRequest, BackendResponse, TokenUsage
from polaris.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

_MAX_TRUNCATION_TRIES = 3
_BUDGET_GROWTH = 1.5


class AnthropicBackend(HTTPBackendMixin, GenerationBackend):
    """Claude models via ``POST /v1/messages``.

    Two independent retry loops live here:
        - Transport retries (``RetryPolicy``): timeouts, network errors, 429
          and 5xx are repeated against the same endpoint with backoff.
        - Truncation retries: a ``max_tokens`` stop reason is retried with a
          budget raised by 50%, capped at ``settings.max_allowed_tokens``.

    Args:
        settings: Polaris settings. If None, loads from environment.
        api_key: Overrides ``settings.anthropic_api_key``.
        client: Pre-built ``httpx.AsyncClient`` (tests, shared pools).
        retry_policy: Overrides the policy derived from settings.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self._settings = settings or Settings()
        self._api_key = api_key or self._settings.anthropic_api_key
        self._base_url = self._settings.anthropic_base_url
        self._timeout = self._settings.backend_timeout
        self._max_allowed_tokens = self._settings.max_allowed_tokens
        self._retry = retry_policy or RetryPolicy(
            max_retries=self._settings.backend_max_retries,
            base_delay=self._settings.backend_retry_base_delay,
        )
        if client is not None:
            self._client = client
            self._owns_client = False

    @property
    def name(self) -> str:
        return "anthropic"

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "content-type": "application/json",
            "x-api-key": self._api_key or "",
            "anthropic-version": self._settings.anthropic_version,
        }

    async def generate(self, request: BackendRequest) -> BackendResponse:
        if not self.is_configured:
            raise BackendUnavailableError("Anthropic API key is not configured", backend=self.name)

        budget = request.max_output_tokens
        for attempt in range(1, _MAX_TRUNCATION_TRIES + 1):
            logger.info(
                "Anthropic request: model=%s, max_tokens=%d, attempt=%d",
                request.model,
                budget,
                attempt,
            )
            data = await self._retry.run(
                lambda: self._post_json("/v1/messages", self._payload(request, budget), self.name),
                retry_on=(BackendError,),
                should_retry=is_transient,
            )
            response = self._parse(data, request.model)
            if response.stop_reason != "max_tokens":
                return response

            raised = min(math.ceil(budget * _BUDGET_GROWTH), self._max_allowed_tokens)
            if raised <= budget or attempt == _MAX_TRUNCATION_TRIES:
                break
            logger.warning(
                "Response truncated at max_tokens=%d, retrying with %d", budget, raised
            )
            budget = raised

        raise BackendError(
            f"Response was truncated at max_tokens ({budget}). "
            "The output is incomplete even at the highest allowed budget.",
            error_type="max_tokens_exceeded",
            backend=self.name,
        )

    @staticmethod
    def _payload(request: BackendRequest, max_tokens: int) -> Dict[str, Any]:
        return {
            "model": request.model,
            "max_tokens": max_tokens,
            "temperature": request.temperature,
            "system": request.system_prompt,
            "messages": [{"role": "user", "content": request.user_prompt}],
        }

    def _parse(self, data: Dict[str, Any], model: str) -> BackendResponse:
        blocks = data.get("content") or []
        text = "\n".join(
            block.get("text", "") for block in blocks if block.get("type") == "text"
        )
        usage: Optional[Dict[str, Any]] = data.get("usage") or {}
        return BackendResponse(
            text=text,
            usage=TokenUsage(
                input_units=int(usage.get("input_tokens", 0)),
                output_units=int(usage.get("output_tokens", 0)),
            ),
            model=data.get("model", model),
            stop_reason=data.get("stop_reason"),
        )
