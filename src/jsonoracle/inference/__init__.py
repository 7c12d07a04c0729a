"""
Completion backends for analysis conversations.

Currently supported backends:
- Ollama-compatible HTTP servers (default for bare model ids)
- OpenAI (``openai:<model>``)
- Anthropic (``anthropic:<model>``)
"""

from jsonoracle.inference.base import (
    CompletionBackend,
    CompletionResult,
    ModelProvider,
    ModelRef,
)
from jsonoracle.inference.client import ModelClient, create_model_client

__all__ = [
    "CompletionBackend",
    "CompletionResult",
    "ModelClient",
    "ModelProvider",
    "ModelRef",
    "create_model_client",
]
