"""
Process-wide component wiring.

The API lifespan and the CLI build one ``ServiceContainer`` and pass its
components around explicitly; nothing here is a module-level global.
"""

import asyncio
import logging
from typing import Optional

import httpx

from jsonoracle.config import Settings, get_settings
from jsonoracle.db.connection import Database
from jsonoracle.delivery import CallbackDispatcher
from jsonoracle.inference import ModelClient, create_model_client
from jsonoracle.integrations import IntegrationRegistry
from jsonoracle.orchestration import ConversationOrchestrator
from jsonoracle.services.analysis_service import AnalysisService, RateLimiter
from jsonoracle.utils.retry import RetryConfig
from jsonoracle.watch import ChangeStreamer, ChangeWatcher

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Builds and owns every long-lived component."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        database: Optional[Database] = None,
        model_client: Optional[ModelClient] = None,
        webhook_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        s = self.settings

        self.database = database or Database.from_settings(s)
        self.registry = IntegrationRegistry(self.database, api_key_namespace=s.api_key_namespace)
        self.model_client = model_client or create_model_client(s)
        self.orchestrator = ConversationOrchestrator(
            self.model_client,
            timeout=s.model_timeout_seconds,
            retry=RetryConfig(
                max_retries=s.turn_max_retries,
                initial_delay=s.turn_retry_base_delay,
                max_delay=s.turn_retry_max_delay,
            ),
            max_rounds=s.max_rounds,
            max_models=s.max_models_per_request,
        )
        self.watcher = ChangeWatcher(
            root=s.watch_root,
            use_polling=s.watch_use_polling,
            poll_interval=s.watch_poll_interval,
            max_snapshot_bytes=s.stream_max_snapshot_bytes,
        )
        self.streamer = ChangeStreamer(self.watcher)
        self.dispatcher = CallbackDispatcher(
            self.database,
            workers=s.delivery_workers,
            max_attempts=s.delivery_max_attempts,
            base_delay=s.delivery_base_delay,
            max_delay=s.delivery_max_delay,
            timeout=s.delivery_timeout_seconds,
            client=webhook_client,
        )
        self.service = AnalysisService(
            self.database,
            self.registry,
            self.orchestrator,
            self.watcher,
            self.dispatcher,
            rate_limiter=RateLimiter(s.rate_limit_per_minute, window_seconds=60.0),
            default_models=s.default_models,
            max_concurrent=s.max_concurrent_analyses,
        )
        self._started = False

    async def start(self) -> None:
        """Create tables, start background components, recover stale analyses."""
        if self._started:
            return
        self.database.init_db()
        self.streamer.attach_loop(asyncio.get_running_loop())
        self.watcher.start()
        await self.dispatcher.start()
        self.service.recover_unfinished()
        self._started = True
        logger.info("Service container started")

    async def stop(self) -> None:
        """Stop components in reverse order of start."""
        if not self._started:
            return
        self._started = False
        try:
            await self.service.shutdown()
            await self.streamer.close()
            self.watcher.stop()
            await self.dispatcher.stop()
            await self.model_client.aclose()
        finally:
            self.database.dispose()
        logger.info("Service container stopped")
