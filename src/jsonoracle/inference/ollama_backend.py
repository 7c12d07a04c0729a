"""Ollama-compatible HTTP completion backend."""

import logging
import time
from typing import Optional

import httpx

from jsonoracle.exceptions import ModelTimeout, ModelUnavailable
from jsonoracle.inference.base import (
    CompletionBackend,
    CompletionResult,
    ModelProvider,
    error_for_status,
)

logger = logging.getLogger(__name__)


class OllamaBackend(CompletionBackend):
    """Calls ``POST /api/generate`` on an Ollama-compatible server (non-streaming)."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        max_tokens: int = 1500,
        temperature: float = 0.3,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.max_tokens = max_tokens
        self.temperature = temperature
        # The caller enforces the per-call deadline; no client-side timeout here
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=None)
        logger.info(f"Initialized Ollama backend at {self.base_url}")

    @property
    def provider(self) -> ModelProvider:
        return ModelProvider.DEFAULT

    async def complete(self, model_name: str, prompt: str) -> CompletionResult:
        start_time = time.monotonic()
        try:
            response = await self._client.post(
                "/api/generate",
                json={
                    "model": model_name,
                    "prompt": prompt,
                    "stream": False,
                    "options": {
                        "temperature": self.temperature,
                        "num_predict": self.max_tokens,
                    },
                },
            )
        except httpx.TimeoutException as e:
            raise ModelTimeout(model_name, f"Ollama request timed out: {e}") from e
        except httpx.TransportError as e:
            raise ModelUnavailable(model_name, f"Ollama unreachable: {e}") from e

        if response.status_code != 200:
            raise error_for_status(model_name, response.status_code, _error_text(response))

        try:
            body = response.json()
        except ValueError as e:
            raise ModelUnavailable(model_name, f"Malformed Ollama response: {e}") from e
        if not isinstance(body, dict) or not isinstance(body.get("response", ""), str):
            raise ModelUnavailable(model_name, "Malformed Ollama response: unexpected body")

        return CompletionResult(
            text=body.get("response", ""),
            model=body.get("model", model_name),
            latency_ms=(time.monotonic() - start_time) * 1000,
            prompt_tokens=body.get("prompt_eval_count", 0) or 0,
            completion_tokens=body.get("eval_count", 0) or 0,
            finish_reason=body.get("done_reason") or ("stop" if body.get("done") else None),
            raw=body,
        )

    async def aclose(self) -> None:
        await self._client.aclose()


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.text[:200]
