"""
Multi-round, multi-model conversation orchestration.

Each round visits the requested models in caller order. Every model sees the
successful turns produced so far, including those of earlier models in the
same round, so the models build on each other's analysis.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence

from jsonoracle.exceptions import ModelError, ValidationError
from jsonoracle.inference.client import ModelClient
from jsonoracle.models.analysis import AnalysisMetrics, AnalysisOutcome, ConversationTurn
from jsonoracle.models.db import FailureReason
from jsonoracle.orchestration.insights import (
    count_data_points,
    extract_findings,
    sample_data,
    summarize,
)
from jsonoracle.prompts import Domain, PromptOptions, build_prompt
from jsonoracle.utils.retry import RetryConfig, calculate_delay

logger = logging.getLogger(__name__)

TurnCallback = Callable[[ConversationTurn], Awaitable[None]]


class ConversationOrchestrator:
    """
    Drives the conversation for one analysis request at a time per call.

    The orchestrator keeps no per-request state between calls; concurrent
    ``run`` calls are independent.
    """

    def __init__(
        self,
        model_client: ModelClient,
        timeout: float = 60.0,
        retry: Optional[RetryConfig] = None,
        max_rounds: int = 10,
        max_models: int = 5,
    ):
        self.model_client = model_client
        self.timeout = timeout
        self.retry = retry or RetryConfig(max_retries=2, initial_delay=1.0, max_delay=10.0)
        self.max_rounds = max_rounds
        self.max_models = max_models

    def validate(self, models: Sequence[str], rounds: int) -> None:
        """
        Reject requests that can never run.

        Raises:
            ValidationError: On an empty or oversized model set, or rounds out of range
        """
        if not models:
            raise ValidationError("InvalidRequest: at least one model is required")
        if any(not isinstance(m, str) or not m.strip() for m in models):
            raise ValidationError("InvalidRequest: model ids must be non-empty strings")
        if len(models) > self.max_models:
            raise ValidationError(
                f"InvalidRequest: at most {self.max_models} models per request"
            )
        if isinstance(rounds, bool) or not isinstance(rounds, int) or rounds < 1:
            raise ValidationError("InvalidRequest: rounds must be at least 1")
        if rounds > self.max_rounds:
            raise ValidationError(f"InvalidRequest: rounds must be at most {self.max_rounds}")

    async def run(
        self,
        domain: Domain | str,
        payload: Any,
        models: Sequence[str],
        rounds: int = 1,
        cancel_event: Optional[asyncio.Event] = None,
        accepted_at: Optional[float] = None,
        on_turn: Optional[TurnCallback] = None,
        options: Optional[PromptOptions] = None,
    ) -> AnalysisOutcome:
        """
        Run the conversation and derive its outcome.

        Args:
            domain: Domain enum or free-form tag
            payload: JSON payload under analysis
            models: Model ids in the order they speak each round
            rounds: Number of passes through ``models``
            cancel_event: Set by the owner to stop issuing model calls
            accepted_at: ``time.monotonic()`` when the request was accepted
            on_turn: Awaited after each turn is appended
            options: Analysis type and prompt customisation

        Returns:
            AnalysisOutcome; ``failure_reason`` is set when every model
            failed or the run was cancelled

        Raises:
            ValidationError: If the model set or rounds are invalid
        """
        self.validate(models, rounds)
        if not isinstance(domain, Domain):
            domain = Domain.parse(domain)
        started = accepted_at if accepted_at is not None else time.monotonic()
        cancel_event = cancel_event or asyncio.Event()

        turns: list[ConversationTurn] = []
        dropped: list[str] = []

        for round_number in range(1, rounds + 1):
            for model_id in models:
                if model_id in dropped:
                    continue
                if cancel_event.is_set():
                    logger.info(f"Conversation cancelled before round {round_number} {model_id}")
                    return self._finish(payload, turns, dropped, started, FailureReason.CANCELLED)

                turn = await self._take_turn(
                    domain, payload, turns, model_id, round_number, cancel_event, options
                )
                if turn is None:
                    # Response arrived after cancellation; discarded
                    return self._finish(payload, turns, dropped, started, FailureReason.CANCELLED)

                turns.append(turn)
                if turn.failed:
                    dropped.append(model_id)
                    logger.warning(
                        f"Dropping model {model_id} after {turn.attempts} attempt(s): {turn.error}"
                    )
                if on_turn is not None:
                    await on_turn(turn)

            if len(dropped) == len(set(models)):
                break

        if not any(not turn.failed for turn in turns):
            return self._finish(
                payload, turns, dropped, started, FailureReason.ALL_MODELS_UNAVAILABLE
            )
        return self._finish(payload, turns, dropped, started, None)

    async def _take_turn(
        self,
        domain: Domain,
        payload: Any,
        turns: list[ConversationTurn],
        model_id: str,
        round_number: int,
        cancel_event: asyncio.Event,
        options: Optional[PromptOptions] = None,
    ) -> Optional[ConversationTurn]:
        """
        Call one model, retrying transient failures.

        Returns:
            The successful turn, a failure marker once retries are exhausted
            or the error is terminal, or None when cancelled mid-turn
        """
        prompt = build_prompt(domain, payload, turns, model_id, options)
        attempts = 0
        total_latency_ms = 0.0

        while True:
            attempts += 1
            call_started = time.monotonic()
            try:
                result = await self.model_client.complete(model_id, prompt, self.timeout)
            except ModelError as e:
                total_latency_ms += (time.monotonic() - call_started) * 1000
                if cancel_event.is_set():
                    return None
                if e.retriable and attempts <= self.retry.max_retries:
                    delay = calculate_delay(attempts - 1, self.retry)
                    logger.warning(
                        f"Retry {attempts}/{self.retry.max_retries} for {model_id}: "
                        f"{e}, waiting {delay:.2f}s"
                    )
                    if await self._backoff(delay, cancel_event):
                        return None
                    continue
                return ConversationTurn(
                    index=len(turns),
                    round=round_number,
                    model=model_id,
                    prompt=prompt,
                    timestamp=datetime.now(timezone.utc),
                    latency_ms=total_latency_ms,
                    error=e.kind,
                    attempts=attempts,
                )
            except Exception as e:
                # Unexpected backend failure; terminal for this model only
                total_latency_ms += (time.monotonic() - call_started) * 1000
                logger.error(f"Model {model_id} failed unexpectedly: {e}", exc_info=True)
                if cancel_event.is_set():
                    return None
                return ConversationTurn(
                    index=len(turns),
                    round=round_number,
                    model=model_id,
                    prompt=prompt,
                    timestamp=datetime.now(timezone.utc),
                    latency_ms=total_latency_ms,
                    error=ModelError.kind,
                    attempts=attempts,
                )

            if cancel_event.is_set():
                return None
            return ConversationTurn(
                index=len(turns),
                round=round_number,
                model=model_id,
                prompt=prompt,
                response=result.text,
                timestamp=datetime.now(timezone.utc),
                latency_ms=result.latency_ms,
                attempts=attempts,
            )

    @staticmethod
    async def _backoff(delay: float, cancel_event: asyncio.Event) -> bool:
        """Wait ``delay`` seconds. Returns True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(cancel_event.wait(), delay)
        except asyncio.TimeoutError:
            return False
        return True

    def _finish(
        self,
        payload: Any,
        turns: list[ConversationTurn],
        dropped: list[str],
        started: float,
        failure: Optional[FailureReason],
    ) -> AnalysisOutcome:
        insights, recommendations = ([], []) if failure else extract_findings(turns)

        models_used: list[str] = []
        for turn in turns:
            if not turn.failed and turn.model not in models_used:
                models_used.append(turn.model)

        metrics = AnalysisMetrics(
            data_points=count_data_points(payload),
            total_duration_ms=(time.monotonic() - started) * 1000,
            turn_latencies_ms=[turn.latency_ms for turn in turns],
            models_used=models_used,
            models_dropped=list(dropped),
        )
        return AnalysisOutcome(
            turns=turns,
            insights=insights,
            recommendations=recommendations,
            metrics=metrics,
            summary=None if failure else summarize(turns),
            data_sample=sample_data(payload),
            failure_reason=failure.value if failure else None,
        )
