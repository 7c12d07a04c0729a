"""
Exponential backoff policy.

Shared by the conversation orchestrator (per-turn retries) and the callback
dispatcher (per-delivery retries).
"""

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    initial_delay: float = 0.5
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = False


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate delay before the next retry using exponential backoff.

    Args:
        attempt: Number of retries already made (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds, never more than ``config.max_delay`` (plus jitter)
    """
    delay = config.initial_delay * (config.exponential_base**attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        # Add up to 25% jitter to prevent thundering herd
        delay += delay * 0.25 * random.random()

    return delay
