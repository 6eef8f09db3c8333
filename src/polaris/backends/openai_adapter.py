"""OpenAI-compatible chat completions backend (optional ``openai`` extra)."""

import logging

try:
    from openai import (
        APIConnectionError,
        APIStatusError,
        APITimeoutError,
        AsyncOpenAI,
        OpenAIError,
    )
except ImportError:
    raise ImportError(
        "OpenAI is required for OpenAIBackend. "
        "Install it with: pip install polaris-core[openai]"
    )

from polaris.exceptions import BackendError, BackendTimeoutError, BackendUnavailableError
from polaris.interfaces.backend import GenerationBackend
from polaris.types import BackendRequest, BackendResponse, TokenUsage

logger = logging.getLogger(__name__)


class OpenAIBackend(GenerationBackend):
    """Generation via the OpenAI SDK, usable with any compatible endpoint.

    Args:
        api_key: API key. If None, the SDK reads OPENAI_API_KEY.
        base_url: Alternative endpoint for OpenAI-compatible servers.
        client: Pre-built ``AsyncOpenAI`` client.
        max_retries: Transport retries delegated to the SDK.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        client: AsyncOpenAI | None = None,
        max_retries: int = 2,
    ):
        self._client = client
        if self._client is None:
            try:
                self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=max_retries)
            except OpenAIError as e:
                # The SDK refuses to build a client without a key
                logger.info("OpenAI backend not configured: %s", e)
                self._client = None

    @property
    def name(self) -> str:
        return "openai"

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    async def generate(self, request: BackendRequest) -> BackendResponse:
        if self._client is None:
            raise BackendUnavailableError("OpenAI client is not configured", backend=self.name)
        try:
            logger.info("OpenAI request: model=%s", request.model)
            completion = await self._client.chat.completions.create(
                model=request.model,
                max_tokens=request.max_output_tokens,
                temperature=request.temperature,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": request.system_prompt},
                    {"role": "user", "content": request.user_prompt},
                ],
            )
        except APITimeoutError as e:
            raise BackendTimeoutError(f"OpenAI request timed out: {e}", backend=self.name) from e
        except APIConnectionError as e:
            raise BackendError(
                f"OpenAI API connection error: {e}", error_type="network_error", backend=self.name
            ) from e
        except APIStatusError as e:
            error_type = None
            if isinstance(e.body, dict):
                error_type = (e.body.get("error") or {}).get("type") or e.body.get("type")
            raise BackendError(
                str(e), status_code=e.status_code, error_type=error_type, backend=self.name
            ) from e

        choice = completion.choices[0]
        usage = completion.usage
        return BackendResponse(
            text=choice.message.content or "",
            usage=TokenUsage(
                input_units=usage.prompt_tokens if usage else 0,
                output_units=usage.completion_tokens if usage else 0,
            ),
            model=completion.model,
            stop_reason="max_tokens" if choice.finish_reason == "length" else choice.finish_reason,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
