"""Base types for completion backends."""

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

from jsonoracle.exceptions import InvalidModel, ModelError, ModelTimeout, ModelUnavailable


class ModelProvider(str, enum.Enum):
    """Backend family a model id is routed to."""

    DEFAULT = "ollama"  # Ollama-compatible HTTP generate API
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


@dataclass(frozen=True)
class ModelRef:
    """
    A parsed model identifier.

    ``"openai:gpt-4o-mini"`` and ``"anthropic:claude-3-5-haiku-20241022"``
    select the SDK backends. Anything else (``"llama2"``, ``"llama2:13b"``)
    is passed unchanged to the default backend.
    """

    provider: ModelProvider
    name: str

    @classmethod
    def parse(cls, model_id: str) -> "ModelRef":
        prefix, sep, rest = model_id.partition(":")
        if sep and rest:
            lowered = prefix.lower()
            if lowered == ModelProvider.OPENAI.value:
                return cls(ModelProvider.OPENAI, rest)
            if lowered == ModelProvider.ANTHROPIC.value:
                return cls(ModelProvider.ANTHROPIC, rest)
            if lowered == ModelProvider.DEFAULT.value:
                return cls(ModelProvider.DEFAULT, rest)
        return cls(ModelProvider.DEFAULT, model_id)


@dataclass
class CompletionResult:
    """Standardized response from completion backends.

    Attributes:
        text: The generated text
        model: The model that answered (may differ from the requested name)
        latency_ms: Wall-clock time of the call in milliseconds
        prompt_tokens: Number of tokens in the prompt, when reported
        completion_tokens: Number of tokens in the completion, when reported
        finish_reason: Why generation stopped, when reported
    """

    text: str
    model: str
    latency_ms: float = 0.0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    finish_reason: Optional[str] = None
    raw: Any = field(default=None, repr=False)


def error_for_status(model_id: str, status_code: int, message: str = "") -> ModelError:
    """
    Map an HTTP status returned by a backend to a model error.

    404 means the model is unknown; 408 is a timeout; 429 and 5xx are
    transient. Any other 4xx means the request can never succeed for this
    model, so it is treated as terminal.
    """
    detail = message or f"HTTP {status_code}"
    if status_code == 404:
        return InvalidModel(model_id, f"Model {model_id} not found: {detail}")
    if status_code == 408:
        return ModelTimeout(model_id, f"Backend timed out for {model_id}: {detail}")
    if status_code == 429 or status_code >= 500:
        return ModelUnavailable(model_id, f"Backend unavailable for {model_id}: {detail}")
    return InvalidModel(model_id, f"Backend rejected {model_id}: {detail}")


class CompletionBackend(ABC):
    """Abstract base class for completion backends.

    Implementations translate their transport's failures into
    ``ModelTimeout``, ``ModelUnavailable`` or ``InvalidModel`` and must not
    keep per-call state.
    """

    @property
    @abstractmethod
    def provider(self) -> ModelProvider:
        """Return the provider this backend serves."""
        ...

    @abstractmethod
    async def complete(self, model_name: str, prompt: str) -> CompletionResult:
        """Generate a completion for ``prompt`` with ``model_name``.

        Raises:
            ModelTimeout: The backend did not answer in time
            ModelUnavailable: The backend is unreachable or overloaded
            InvalidModel: The backend does not serve this model
        """
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        return None
