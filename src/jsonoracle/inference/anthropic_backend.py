"""Anthropic completion backend."""

import logging
import time
from typing import Any, Optional

import anthropic
from anthropic import AsyncAnthropic

from jsonoracle.exceptions import ModelTimeout, ModelUnavailable
from jsonoracle.inference.base import (
    CompletionBackend,
    CompletionResult,
    ModelProvider,
    error_for_status,
)
from jsonoracle.inference.openai_backend import SYSTEM_PROMPT

logger = logging.getLogger(__name__)


class AnthropicBackend(CompletionBackend):
    """Anthropic Messages API via the async Anthropic Python SDK."""

    def __init__(
        self,
        api_key: str,
        max_tokens: int = 1500,
        temperature: float = 0.3,
        client: Optional[Any] = None,
    ):
        if not api_key and client is None:
            raise ValueError("Anthropic API key is required")

        self.client = client or AsyncAnthropic(api_key=api_key, max_retries=0)
        self.max_tokens = max_tokens
        self.temperature = temperature
        logger.info("Initialized Anthropic backend")

    @property
    def provider(self) -> ModelProvider:
        return ModelProvider.ANTHROPIC

    async def complete(self, model_name: str, prompt: str) -> CompletionResult:
        start_time = time.monotonic()
        try:
            response = await self.client.messages.create(
                model=model_name,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APITimeoutError as e:
            raise ModelTimeout(model_name, f"Anthropic request timed out: {e}") from e
        except anthropic.APIConnectionError as e:
            raise ModelUnavailable(model_name, f"Anthropic unreachable: {e}") from e
        except anthropic.APIStatusError as e:
            raise error_for_status(model_name, e.status_code, e.message) from e
        except anthropic.APIError as e:
            raise ModelUnavailable(model_name, f"Anthropic error: {e}") from e

        if not response.content:
            raise ModelUnavailable(model_name, "Anthropic returned no content")

        text = ""
        for block in response.content:
            if hasattr(block, "text"):
                text += block.text

        usage = response.usage
        return CompletionResult(
            text=text,
            model=response.model,
            latency_ms=(time.monotonic() - start_time) * 1000,
            prompt_tokens=usage.input_tokens if usage else 0,
            completion_tokens=usage.output_tokens if usage else 0,
            finish_reason=response.stop_reason,
            raw=response,
        )

    async def aclose(self) -> None:
        await self.client.close()
