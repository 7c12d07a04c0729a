"""Integration registration, API keys and configuration."""

from jsonoracle.integrations.registry import (
    IntegrationRegistry,
    generate_api_key,
    hash_api_key,
    normalize_config,
    validate_webhook_url,
)

__all__ = [
    "IntegrationRegistry",
    "generate_api_key",
    "hash_api_key",
    "normalize_config",
    "validate_webhook_url",
]
