"""LiteLLM adapters for the metadata and embedding services.

Every outbound model call routes through this module. litellm's own retry
is left off; callers wrap these adapters in ``ingest.retry.with_retries``
so the retry budget is visible in config and logs. litellm exceptions are
mapped onto ServiceUnavailableError (retry) or ServiceError (give up).
"""

from __future__ import annotations

import os

import litellm

from storyindex.services.interfaces import EmbeddingService, TextCompletionService
from storyindex.utils.errors import ServiceError, ServiceUnavailableError
from storyindex.utils.logging import get_logger

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

logger = get_logger(__name__)

# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "together_ai": "TOGETHERAI_API_KEY",
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
    "lm_studio": None,
}

_RETRYABLE = (
    litellm.APIConnectionError,
    litellm.Timeout,
    litellm.RateLimitError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
)

_FATAL = (
    litellm.AuthenticationError,
    litellm.NotFoundError,
    litellm.BadRequestError,
    litellm.APIError,
)


def validate_api_key(model: str, api_base: str | None = None) -> None:
    """Check that the required API key env var is set for *model*.

    A custom *api_base* (local OpenAI-compatible server) needs no key.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    if api_base:
        return
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def _map_error(exc: Exception, provider: str) -> ServiceError:
    if isinstance(exc, _RETRYABLE):
        return ServiceUnavailableError(str(exc), provider_name=provider)
    return ServiceError(str(exc), provider_name=provider)


class LiteLLMCompletionService(TextCompletionService):
    """Chat completions through ``litellm.acompletion``."""

    def __init__(self, model: str, *, api_base: str | None = None, timeout_s: float = 120.0) -> None:
        self._model = model
        self._api_base = api_base
        self._timeout_s = timeout_s

    def get_provider_name(self) -> str:
        return f"litellm:{self._model}"

    async def complete(
        self,
        messages: list[dict[str, str]],
        *,
        json_mode: bool = True,
        temperature: float = 0.1,
    ) -> str:
        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "temperature": temperature,
            "timeout": self._timeout_s,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if self._api_base:
            kwargs["api_base"] = self._api_base

        try:
            response = await litellm.acompletion(**kwargs)
        except (*_RETRYABLE, *_FATAL) as exc:
            raise _map_error(exc, self.get_provider_name()) from exc

        content = response.choices[0].message.content or ""
        if not content.strip():
            raise ServiceError("Completion returned empty content", provider_name=self.get_provider_name())
        return content


class LiteLLMEmbeddingService(EmbeddingService):
    """Embeddings through ``litellm.aembedding``."""

    def __init__(self, model: str, *, api_base: str | None = None, timeout_s: float = 120.0) -> None:
        self._model = model
        self._api_base = api_base
        self._timeout_s = timeout_s

    @property
    def model_name(self) -> str:
        return self._model

    def get_provider_name(self) -> str:
        return f"litellm:{self._model}"

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        kwargs: dict = {"model": self._model, "input": texts, "timeout": self._timeout_s}
        if self._api_base:
            kwargs["api_base"] = self._api_base

        try:
            response = await litellm.aembedding(**kwargs)
        except (*_RETRYABLE, *_FATAL) as exc:
            raise _map_error(exc, self.get_provider_name()) from exc

        items = list(response.data)
        if items and all(_field(item, "index") is not None for item in items):
            items.sort(key=lambda item: _field(item, "index"))
        vectors = [list(_field(item, "embedding") or []) for item in items]
        logger.debug("embedding_batch", model=self._model, batch_size=len(texts))
        return vectors


def _field(item, name: str):
    """Read *name* from an embedding item that may be a dict or an object."""
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)
