"""OpenAI completion backend."""

import logging
import time
from typing import Any, Optional

import openai
from openai import AsyncOpenAI

from jsonoracle.exceptions import ModelTimeout, ModelUnavailable
from jsonoracle.inference.base import (
    CompletionBackend,
    CompletionResult,
    ModelProvider,
    error_for_status,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a careful data analyst. Follow the requested output format exactly."


class OpenAIBackend(CompletionBackend):
    """OpenAI chat completions via the async OpenAI Python SDK."""

    def __init__(
        self,
        api_key: str,
        max_tokens: int = 1500,
        temperature: float = 0.3,
        client: Optional[Any] = None,
    ):
        if not api_key and client is None:
            raise ValueError("OpenAI API key is required")

        # Retries and the deadline are owned by the orchestrator
        self.client = client or AsyncOpenAI(api_key=api_key, max_retries=0)
        self.max_tokens = max_tokens
        self.temperature = temperature
        logger.info("Initialized OpenAI backend")

    @property
    def provider(self) -> ModelProvider:
        return ModelProvider.OPENAI

    async def complete(self, model_name: str, prompt: str) -> CompletionResult:
        start_time = time.monotonic()
        try:
            response = await self.client.chat.completions.create(
                model=model_name,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except openai.APITimeoutError as e:
            raise ModelTimeout(model_name, f"OpenAI request timed out: {e}") from e
        except openai.APIConnectionError as e:
            raise ModelUnavailable(model_name, f"OpenAI unreachable: {e}") from e
        except openai.APIStatusError as e:
            raise error_for_status(model_name, e.status_code, e.message) from e
        except openai.APIError as e:
            raise ModelUnavailable(model_name, f"OpenAI error: {e}") from e

        if not response.choices:
            raise ModelUnavailable(model_name, "OpenAI returned no choices")

        usage = response.usage
        return CompletionResult(
            text=response.choices[0].message.content or "",
            model=response.model,
            latency_ms=(time.monotonic() - start_time) * 1000,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            finish_reason=response.choices[0].finish_reason,
            raw=response,
        )

    async def aclose(self) -> None:
        await self.client.close()
