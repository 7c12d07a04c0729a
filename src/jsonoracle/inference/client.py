"""
Model client.

Routes a model id to its backend and enforces the per-call deadline. Holds no
state that changes between calls, so one client serves every analysis.
"""

import asyncio
import logging
import time
from typing import Optional

from jsonoracle.config import Settings
from jsonoracle.exceptions import InvalidModel, ModelError, ModelTimeout
from jsonoracle.inference.base import CompletionBackend, CompletionResult, ModelProvider, ModelRef
from jsonoracle.inference.llm_logger import LLMLogger

logger = logging.getLogger(__name__)


class ModelClient:
    """Thin adapter over the configured completion backends."""

    def __init__(
        self,
        backends: dict[ModelProvider, CompletionBackend],
        default_timeout: float = 60.0,
        llm_logger: Optional[LLMLogger] = None,
    ):
        self.backends = dict(backends)
        self.default_timeout = default_timeout
        self.llm_logger = llm_logger

    async def complete(
        self, model_id: str, prompt: str, timeout: Optional[float] = None
    ) -> CompletionResult:
        """
        Run one completion.

        Args:
            model_id: Model identifier, optionally provider-prefixed
            prompt: Prompt text
            timeout: Deadline in seconds (defaults to the client's)

        Returns:
            CompletionResult with ``latency_ms`` measured around the whole call

        Raises:
            ModelTimeout: The call exceeded the deadline
            ModelUnavailable: The backend is unreachable or overloaded
            InvalidModel: No backend serves this model
        """
        ref = ModelRef.parse(model_id)
        backend = self.backends.get(ref.provider)
        if backend is None:
            raise InvalidModel(
                model_id, f"No backend configured for provider {ref.provider.value}"
            )

        deadline = timeout if timeout is not None else self.default_timeout
        request_id = self.llm_logger.log_request(model_id, prompt) if self.llm_logger else ""
        start_time = time.monotonic()
        try:
            result = await asyncio.wait_for(backend.complete(ref.name, prompt), deadline)
        except asyncio.TimeoutError as e:
            error = ModelTimeout(model_id, f"No response from {model_id} within {deadline}s")
            self._log_error(request_id, error)
            raise error from e
        except ModelError as e:
            self._log_error(request_id, e)
            raise

        result.latency_ms = (time.monotonic() - start_time) * 1000
        logger.debug(f"Model {model_id} answered in {result.latency_ms:.0f}ms")
        if self.llm_logger:
            self.llm_logger.log_response(request_id, result)
        return result

    def _log_error(self, request_id: str, error: ModelError) -> None:
        logger.debug(f"Model call failed: {error}")
        if self.llm_logger:
            self.llm_logger.log_error(request_id, error)

    async def aclose(self) -> None:
        for backend in self.backends.values():
            await backend.aclose()


def create_model_client(settings: Settings) -> ModelClient:
    """
    Build a ModelClient with every backend the settings make available.

    The Ollama-compatible backend is always present; the SDK backends are
    added when their API key is configured.
    """
    backends: dict[ModelProvider, CompletionBackend] = {}

    from jsonoracle.inference.ollama_backend import OllamaBackend

    backends[ModelProvider.DEFAULT] = OllamaBackend(
        base_url=settings.ollama_base_url,
        max_tokens=settings.model_max_tokens,
        temperature=settings.model_temperature,
    )

    if settings.openai_api_key:
        from jsonoracle.inference.openai_backend import OpenAIBackend

        backends[ModelProvider.OPENAI] = OpenAIBackend(
            api_key=settings.openai_api_key,
            max_tokens=settings.model_max_tokens,
            temperature=settings.model_temperature,
        )

    if settings.anthropic_api_key:
        from jsonoracle.inference.anthropic_backend import AnthropicBackend

        backends[ModelProvider.ANTHROPIC] = AnthropicBackend(
            api_key=settings.anthropic_api_key,
            max_tokens=settings.model_max_tokens,
            temperature=settings.model_temperature,
        )

    return ModelClient(
        backends,
        default_timeout=settings.model_timeout_seconds,
        llm_logger=LLMLogger(settings),
    )
