"""Local Ollama backend used as the last-resort model."""

import logging
from typing import Any, Dict

import httpx

from polaris.backends.http import HTTPBackendMixin, is_transient
from polaris.config import Settings
from polaris.exceptions import BackendError, BackendUnavailableError
from polaris.interfaces.backend import GenerationBackend
from polaris.types import BackendRequest, BackendResponse, TokenUsage
from polaris.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)


class OllamaBackend(HTTPBackendMixin, GenerationBackend):
    """Chat completion against a local Ollama server (``POST /api/chat``).

    The model is asked for JSON output directly (``format: "json"``).
    Configured only when ``settings.ollama_base_url`` is set.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self._settings = settings or Settings()
        self._base_url = (base_url or self._settings.ollama_base_url or "").rstrip("/")
        self._timeout = self._settings.backend_timeout
        self._retry = retry_policy or RetryPolicy(
            max_retries=self._settings.backend_max_retries,
            base_delay=self._settings.backend_retry_base_delay,
        )
        if client is not None:
            self._client = client
            self._owns_client = False

    @property
    def name(self) -> str:
        return "ollama"

    @property
    def is_configured(self) -> bool:
        return bool(self._base_url)

    async def generate(self, request: BackendRequest) -> BackendResponse:
        if not self.is_configured:
            raise BackendUnavailableError("Ollama base URL is not configured", backend=self.name)

        payload: Dict[str, Any] = {
            "model": request.model,
            "stream": False,
            "format": "json",
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            "options": {
                "temperature": request.temperature,
                "num_predict": request.max_output_tokens,
            },
        }
        logger.info("Ollama request: model=%s", request.model)
        data = await self._retry.run(
            lambda: self._post_json("/api/chat", payload, self.name),
            retry_on=(BackendError,),
            should_retry=is_transient,
        )

        message = data.get("message") or {}
        text = message.get("content")
        if not isinstance(text, str):
            raise BackendError(
                "Unexpected Ollama response format", error_type="parse_error", backend=self.name
            )
        return BackendResponse(
            text=text,
            usage=TokenUsage(
                input_units=int(data.get("prompt_eval_count", 0)),
                output_units=int(data.get("eval_count", 0)),
            ),
            model=data.get("model", request.model),
            stop_reason="max_tokens" if data.get("done_reason") == "length" else "end_turn",
        )
