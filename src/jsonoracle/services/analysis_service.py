"""
Analysis service.

Single entry point for analysis submissions, shared by the HTTP API and the
CLI. A submission is authenticated, rate limited and validated before any
model is called; the conversation then runs under a bounded semaphore, the
result is stored, published to live subscribers and handed to the callback
dispatcher.
"""

import asyncio
import logging
import threading
import time
import uuid
from collections import deque
from typing import Any, Callable, Optional

from jsonoracle.db.connection import Database
from jsonoracle.db.repositories import (
    AnalysisRepository,
    DeliveryAttemptRepository,
    IntegrationRepository,
    InvalidTransitionError,
)
from jsonoracle.delivery import CallbackDispatcher
from jsonoracle.exceptions import (
    AuthError,
    IntegrationSuspendedError,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    ValidationError,
)
from jsonoracle.integrations import IntegrationRegistry, validate_webhook_url
from jsonoracle.models.analysis import AnalysisOutcome, ConversationTurn
from jsonoracle.models.db import (
    AnalysisResult,
    AnalysisStatus,
    DeliveryAttempt,
    FailureReason,
    Integration,
    TransportKind,
)
from jsonoracle.orchestration import ConversationOrchestrator
from jsonoracle.prompts import AnalysisType, Domain, PromptOptions
from jsonoracle.utils.locks import KeyedLocks
from jsonoracle.watch import ChangeWatcher
from jsonoracle.watch.watcher import ANALYSIS_KIND

logger = logging.getLogger(__name__)

# Upper bound for caller-supplied prompt text
MAX_PROMPT_TEXT_CHARS = 8000


def analysis_resource_id(analysis_id: uuid.UUID) -> str:
    return f"{ANALYSIS_KIND}:{analysis_id}"


class RateLimiter:
    """
    Sliding-window rate limiter keyed by integration id.

    A limit of 0 disables limiting.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: dict[Any, deque[float]] = {}

    def acquire(self, key: Any) -> None:
        """
        Count one submission for ``key``.

        Raises:
            RateLimitError: If ``key`` already used its allowance in the window
        """
        if self.limit <= 0:
            return
        now = self._clock()
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= now - self.window:
                hits.popleft()
            if len(hits) >= self.limit:
                retry_after = hits[0] + self.window - now
                raise RateLimitError(str(key), retry_after)
            hits.append(now)


class AnalysisService:
    """Façade over registry, orchestrator, watcher and dispatcher."""

    def __init__(
        self,
        database: Database,
        registry: IntegrationRegistry,
        orchestrator: ConversationOrchestrator,
        watcher: ChangeWatcher,
        dispatcher: CallbackDispatcher,
        rate_limiter: Optional[RateLimiter] = None,
        default_models: Optional[list[str]] = None,
        max_concurrent: int = 8,
    ):
        self.database = database
        self.registry = registry
        self.orchestrator = orchestrator
        self.watcher = watcher
        self.dispatcher = dispatcher
        self.rate_limiter = rate_limiter or RateLimiter(limit=0)
        self.default_models = list(default_models or [])

        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._result_locks = KeyedLocks()
        self._cancel_events: dict[uuid.UUID, asyncio.Event] = {}
        self._tasks: dict[uuid.UUID, asyncio.Task] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        watcher.register_loader(ANALYSIS_KIND, self._load_document)

    # Authentication

    def authorize(self, api_key: Optional[str]) -> Integration:
        """
        Resolve an API key to an integration that may submit work.

        Raises:
            AuthError: If the key is missing or invalid
            IntegrationSuspendedError: If the integration is suspended
        """
        if not api_key:
            raise AuthError("API key required")
        integration = self.registry.authenticate(api_key)
        if integration.is_suspended:
            raise IntegrationSuspendedError(str(integration.id))
        return integration

    def authorize_stream(self, api_key: Optional[str], resource_id: str) -> Integration:
        """
        Check that an API key may subscribe to a resource.

        Analysis resources are visible only to the integration that
        submitted them; file resources to any active integration.
        """
        integration = self.authorize(api_key)
        kind, _, name = (resource_id or "").partition(":")
        if kind == ANALYSIS_KIND:
            try:
                analysis_id = uuid.UUID(name)
            except ValueError:
                raise NotFoundError(f"Analysis {name!r} not found")
            self.get_result(analysis_id, api_key=api_key)
        return integration

    # Submission

    async def submit(
        self,
        api_key: Optional[str],
        integration_id: Optional[uuid.UUID],
        data: Any,
        domain: Optional[str] = None,
        models: Optional[list[str]] = None,
        rounds: int = 1,
        callback_url: Optional[str] = None,
        wait: bool = True,
        analysis_type: Optional[str] = None,
        custom_prompt: Optional[str] = None,
        custom_instructions: Optional[str] = None,
        output_format: Optional[str] = None,
    ) -> AnalysisResult:
        """
        Accept an analysis request.

        Args:
            api_key: Integration API key
            integration_id: Integration the caller claims to be (must match the key)
            data: JSON payload to analyse
            domain: Domain tag (defaults to the integration's configured domain)
            models: Ordered model ids (default to the integration's, then the service's)
            rounds: Conversation rounds
            callback_url: Overrides the integration's webhook URL for this request
            wait: Return the finished result (True) or the pending one at once
            analysis_type: Kind of analysis; unknown types run as ``general``
            custom_prompt: Replaces the built-in role and focus areas
            custom_instructions: Extra instructions appended to every prompt
            output_format: OutputFormat value or free-form style guidance

        Returns:
            The AnalysisResult (finished when ``wait`` is True)

        Raises:
            AuthError: Missing/invalid key, or key of a different integration
            IntegrationSuspendedError: Integration is suspended
            RateLimitError: Integration exceeded its submission rate
            ValidationError: Malformed request
        """
        accepted_at = time.monotonic()
        self._loop = asyncio.get_running_loop()
        options = PromptOptions(
            analysis_type=AnalysisType.parse(analysis_type),
            custom_prompt=custom_prompt or None,
            custom_instructions=custom_instructions or None,
            output_format=output_format or None,
        )
        integration, result, domain_tag, models = await asyncio.to_thread(
            self._accept, api_key, integration_id, data, domain, models, rounds,
            callback_url, options,
        )

        cancel_event = asyncio.Event()
        self._cancel_events[result.id] = cancel_event
        run = self._execute(
            integration, result, data, domain_tag, models, rounds, callback_url,
            accepted_at, cancel_event, options,
        )
        if wait:
            return await run

        task = asyncio.create_task(run, name=f"analysis-{result.id}")
        self._tasks[result.id] = task
        task.add_done_callback(lambda _t, rid=result.id: self._tasks.pop(rid, None))
        return result

    def _accept(
        self,
        api_key: Optional[str],
        integration_id: Optional[uuid.UUID],
        data: Any,
        domain: Optional[str],
        models: Optional[list[str]],
        rounds: int,
        callback_url: Optional[str],
        options: PromptOptions,
    ) -> tuple[Integration, AnalysisResult, str, list[str]]:
        """Authenticate, rate limit, validate and store the pending result."""
        integration = self.authorize(api_key)
        if integration_id is not None and integration_id != integration.id:
            raise AuthError("API key does not belong to this integration")

        self.rate_limiter.acquire(integration.id)

        config = integration.config or {}
        domain_tag = Domain.parse(domain or config.get("domain")).value
        models = list(models or config.get("models") or self.default_models)
        self.orchestrator.validate(models, rounds)
        if data is None:
            raise ValidationError("data is required")
        if callback_url:
            validate_webhook_url(callback_url)
        for name in ("custom_prompt", "custom_instructions", "output_format"):
            value = getattr(options, name)
            if value is not None and len(value) > MAX_PROMPT_TEXT_CHARS:
                raise ValidationError(
                    f"{name} must be at most {MAX_PROMPT_TEXT_CHARS} characters"
                )

        with self.database.session() as session:
            result = AnalysisRepository(session).create_pending(
                integration_id=integration.id,
                payload=data,
                domain=domain_tag,
                models=models,
                rounds=rounds,
                callback_url=callback_url,
                analysis_type=options.analysis_type.value,
                prompt_options=options.to_dict(),
            )
        self.registry.touch(integration.id)
        logger.info(
            f"Accepted analysis {result.id} for integration {integration.id}: "
            f"domain={domain_tag}, type={options.analysis_type.value}, "
            f"models={models}, rounds={rounds}"
        )
        return integration, result, domain_tag, models

    async def _execute(
        self,
        integration: Integration,
        pending: AnalysisResult,
        data: Any,
        domain: str,
        models: list[str],
        rounds: int,
        callback_url: Optional[str],
        accepted_at: float,
        cancel_event: asyncio.Event,
        options: Optional[PromptOptions] = None,
    ) -> AnalysisResult:
        result_id = pending.id
        stream = (integration.config or {}).get("notifications", {}).get("stream", True)
        try:
            async with self._semaphore:
                if cancel_event.is_set():
                    outcome = AnalysisOutcome(failure_reason=FailureReason.CANCELLED.value)
                    return await self._finish(integration, result_id, outcome, accepted_at,
                                              callback_url, stream)

                running = await asyncio.to_thread(
                    self._transition, result_id, AnalysisStatus.RUNNING
                )
                if stream:
                    self._publish(running)

                turns_so_far: list[ConversationTurn] = []

                async def on_turn(turn: ConversationTurn) -> None:
                    turns_so_far.append(turn)
                    if stream:
                        self._publish(running, turns_so_far)

                try:
                    outcome = await self.orchestrator.run(
                        domain,
                        data,
                        models,
                        rounds,
                        cancel_event=cancel_event,
                        accepted_at=accepted_at,
                        on_turn=on_turn,
                        options=options,
                    )
                except Exception as e:
                    logger.error(f"Analysis {result_id} crashed: {e}", exc_info=True)
                    outcome = AnalysisOutcome(failure_reason=FailureReason.INTERNAL_ERROR.value)

                return await self._finish(integration, result_id, outcome, accepted_at,
                                          callback_url, stream)
        finally:
            self._cancel_events.pop(result_id, None)

    async def _finish(
        self,
        integration: Integration,
        result_id: uuid.UUID,
        outcome: AnalysisOutcome,
        accepted_at: float,
        callback_url: Optional[str],
        stream: bool,
    ) -> AnalysisResult:
        status = AnalysisStatus.COMPLETED if outcome.succeeded else AnalysisStatus.FAILED
        try:
            result = await asyncio.to_thread(
                self._transition,
                result_id,
                status,
                failure_reason=outcome.failure_reason,
                turns=[turn.to_dict() for turn in outcome.turns],
                insights=[insight.to_dict() for insight in outcome.insights],
                recommendations=list(outcome.recommendations),
                metrics=outcome.metrics.to_dict(),
                summary=outcome.summary,
                data_sample=outcome.data_sample,
                processing_time=round(time.monotonic() - accepted_at, 3),
            )
        except InvalidTransitionError as e:
            # Finished elsewhere (e.g. cancelled after a restart); keep that outcome
            logger.warning(str(e))
            result = await asyncio.to_thread(self.get_result, result_id)

        logger.info(
            f"Analysis {result_id} {result.status}"
            + (f" ({result.failure_reason})" if result.failure_reason else "")
            + f": {len(outcome.turns)} turn(s), {result.insights_count} insight(s)"
        )
        if stream:
            self._publish(result)
        await self._dispatch(integration, result, callback_url)
        return result

    async def _dispatch(
        self, integration: Integration, result: AnalysisResult, callback_url: Optional[str]
    ) -> None:
        current = await asyncio.to_thread(self.registry.get, integration.id)
        if callback_url is None:
            if current is None or current.transport_kind != TransportKind.WEBHOOK.value:
                return
            if not (current.config or {}).get("notifications", {}).get("webhook", True):
                return
        try:
            self.dispatcher.deliver(current or integration, result, callback_url=callback_url)
        except RuntimeError as e:
            logger.warning(f"Could not enqueue delivery of {result.id}: {e}")

    # Cancellation and queries

    def cancel(
        self,
        analysis_id: uuid.UUID,
        api_key: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> AnalysisResult:
        """
        Cancel an analysis that has not finished.

        A running conversation stops before its next model call and ends as
        ``failed{Cancelled}``. An unfinished analysis with no live runner in
        this process is failed directly.

        Raises:
            NotFoundError: Unknown analysis, or not visible to the caller
            ValidationError: The analysis already finished
        """
        result = self.get_result(analysis_id, api_key=api_key, owner=owner)
        if AnalysisStatus(result.status).is_terminal:
            raise ValidationError(f"Analysis {analysis_id} already {result.status}")

        cancel_event = self._cancel_events.get(analysis_id)
        if cancel_event is not None:
            self._signal(cancel_event)
            logger.info(f"Cancellation requested for analysis {analysis_id}")
            return result

        try:
            result = self._transition(
                analysis_id,
                AnalysisStatus.FAILED,
                failure_reason=FailureReason.CANCELLED.value,
            )
        except InvalidTransitionError:
            return self.get_result(analysis_id)
        logger.info(f"Cancelled orphaned analysis {analysis_id}")
        self._publish(result)
        return result

    def get_result(
        self,
        analysis_id: uuid.UUID,
        api_key: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> AnalysisResult:
        """
        Fetch a result with its delivery attempts.

        With ``api_key`` or ``owner`` the result must belong to that caller.
        """
        with self.database.session() as session:
            result = AnalysisRepository(session).get(analysis_id)
            if result is None:
                raise NotFoundError(f"Analysis {analysis_id} not found")
            # Load relationships before the session closes
            result.delivery_attempts
            result.request
        self._check_access(result.integration_id, api_key, owner)
        return result

    def get_delivery_attempts(self, analysis_id: uuid.UUID) -> list[DeliveryAttempt]:
        with self.database.session() as session:
            return DeliveryAttemptRepository(session).get_by_result(analysis_id)

    def list_results(
        self,
        integration_id: uuid.UUID,
        limit: Optional[int] = 50,
        api_key: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> list[AnalysisResult]:
        """Most recent results of an integration, newest first."""
        self._check_access(integration_id, api_key, owner)
        with self.database.session() as session:
            return AnalysisRepository(session).get_by_integration(integration_id, limit=limit)

    def owner_stats(self, owner: str) -> dict[str, Any]:
        """Dashboard counters across an owner's integrations."""
        with self.database.session() as session:
            integration_repo = IntegrationRepository(session)
            integrations = integration_repo.get_by_owner(owner)
            stats = AnalysisRepository(session).stats_for_integrations(
                [integration.id for integration in integrations]
            )
        return {
            "total_integrations": len(integrations),
            "active_integrations": sum(1 for i in integrations if not i.is_suspended),
            **stats,
        }

    def recover_unfinished(self) -> int:
        """
        Fail analyses left pending or running by a previous process.

        Returns:
            Number of analyses marked failed
        """
        with self.database.session() as session:
            stale = [r.id for r in AnalysisRepository(session).get_unfinished()]
        recovered = 0
        for result_id in stale:
            if result_id in self._cancel_events:
                continue
            try:
                self._transition(
                    result_id,
                    AnalysisStatus.FAILED,
                    failure_reason=FailureReason.INTERNAL_ERROR.value,
                )
                recovered += 1
            except InvalidTransitionError:
                continue
        if recovered:
            logger.warning(f"Marked {recovered} interrupted analysis(es) as failed")
        return recovered

    async def shutdown(self) -> None:
        """Cancel running analyses and wait for them to record their outcome."""
        for cancel_event in list(self._cancel_events.values()):
            cancel_event.set()
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # Internals

    def _check_access(
        self, integration_id: uuid.UUID, api_key: Optional[str], owner: Optional[str]
    ) -> None:
        if api_key is not None:
            integration = self.authorize(api_key)
            if integration.id != integration_id:
                raise NotFoundError("Not found")
        if owner is not None:
            with self.database.session() as session:
                integration = IntegrationRepository(session).get(integration_id)
            if integration is None:
                raise NotFoundError(f"Integration {integration_id} not found")
            if integration.owner_id != owner:
                raise PermissionDeniedError(
                    f"Integration {integration_id} belongs to another owner"
                )

    def _signal(self, event: asyncio.Event) -> None:
        """Set an event owned by the service loop. Safe to call from any thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            event.set()
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            event.set()
        else:
            loop.call_soon_threadsafe(event.set)

    def _transition(
        self, result_id: uuid.UUID, status: AnalysisStatus, **fields: Any
    ) -> AnalysisResult:
        with self._result_locks.hold(result_id):
            with self.database.session() as session:
                return AnalysisRepository(session).transition(result_id, status, **fields)

    def _publish(
        self, result: AnalysisResult, turns: Optional[list[ConversationTurn]] = None
    ) -> None:
        document = result.to_dict()
        if turns is not None:
            document["turns"] = [turn.to_dict() for turn in turns]
        self.watcher.update_content(analysis_resource_id(result.id), document)

    def _load_document(self, name: str) -> dict[str, Any]:
        try:
            analysis_id = uuid.UUID(name)
        except ValueError:
            raise NotFoundError(f"Analysis {name!r} not found")
        with self.database.session() as session:
            result = AnalysisRepository(session).get(analysis_id)
            if result is None:
                raise NotFoundError(f"Analysis {name!r} not found")
            return result.to_dict()
