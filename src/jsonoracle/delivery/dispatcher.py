"""
Webhook delivery of finished analyses.

``deliver`` only enqueues. Worker tasks take jobs off an asyncio queue and
make one attempt each; a failed attempt schedules its retry with
``loop.call_later`` so backoff never occupies a worker. Every attempt is
stored as a DeliveryAttempt row.
"""

import asyncio
import hashlib
import hmac
import json
import logging
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx

from jsonoracle.db.connection import Database
from jsonoracle.db.repositories import DeliveryAttemptRepository
from jsonoracle.exceptions import DeliveryFailure
from jsonoracle.models.db import (
    AnalysisResult,
    AnalysisStatus,
    DeliveryOutcome,
    Integration,
)
from jsonoracle.utils.retry import RetryConfig, calculate_delay

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-JsonOracle-Signature"
TIMESTAMP_HEADER = "X-JsonOracle-Timestamp"
EVENT_HEADER = "X-JsonOracle-Event"
ATTEMPT_HEADER = "X-JsonOracle-Delivery-Attempt"

# Receivers reject signatures older than this many seconds
DEFAULT_SIGNATURE_TOLERANCE = 300.0


def sign_payload(secret: str, body: bytes, timestamp: str) -> str:
    """
    Signature header value for a webhook body.

    The timestamp is part of the signed message (``"<timestamp>.<body>"``),
    so a captured request cannot be replayed under a fresh timestamp.
    """
    message = timestamp.encode() + b"." + body
    digest = hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(
    secret: str,
    body: bytes,
    signature: str,
    timestamp: str,
    tolerance: Optional[float] = DEFAULT_SIGNATURE_TOLERANCE,
    now: Optional[float] = None,
) -> bool:
    """
    Check received signature and timestamp headers, in constant time.

    Requests whose timestamp is more than ``tolerance`` seconds away from
    ``now`` are rejected; a tolerance of None disables the age check.
    """
    try:
        sent_at = int(timestamp)
    except (TypeError, ValueError):
        return False
    if tolerance is not None:
        current = time.time() if now is None else now
        if abs(current - sent_at) > tolerance:
            return False
    return hmac.compare_digest(sign_payload(secret, body, str(sent_at)), signature or "")


def build_webhook_payload(integration_id: uuid.UUID, result: AnalysisResult) -> dict[str, Any]:
    completed = result.status == AnalysisStatus.COMPLETED.value
    return {
        "event": "analysis_completed" if completed else "analysis_failed",
        "integration_id": str(integration_id),
        "analysis_id": str(result.id),
        "status": result.status,
        "result": result.to_dict(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@dataclass(frozen=True)
class DeliveryJob:
    integration_id: uuid.UUID
    result_id: uuid.UUID
    target_url: str
    secret: str
    payload: dict[str, Any]
    attempt: int = 1

    @property
    def key(self) -> tuple[uuid.UUID, str]:
        return (self.result_id, self.target_url)


class CallbackDispatcher:
    """
    Delivers results to webhooks with exponential backoff.

    Attempts for one (result, endpoint) pair are strictly sequential: a pair
    already queued, in flight or waiting for a retry is not enqueued again.
    """

    def __init__(
        self,
        database: Database,
        workers: int = 2,
        max_attempts: int = 5,
        base_delay: float = 2.0,
        max_delay: float = 300.0,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.database = database
        self.workers = workers
        self.max_attempts = max_attempts
        self.retry = RetryConfig(
            max_retries=max_attempts - 1,
            initial_delay=base_delay,
            max_delay=max_delay,
        )
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

        self._queue: Optional[asyncio.Queue[DeliveryJob]] = None
        self._tasks: list[asyncio.Task] = []
        self._timers: dict[tuple[uuid.UUID, str], asyncio.TimerHandle] = {}
        self._active: set[tuple[uuid.UUID, str]] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    def delay_for(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-indexed)."""
        return calculate_delay(attempt - 1, self.retry)

    async def start(self) -> None:
        if self._tasks:
            return
        self._queue = asyncio.Queue()
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"delivery-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info(f"Callback dispatcher started with {self.workers} worker(s)")

    async def stop(self) -> None:
        """Cancel pending retries and workers. Undelivered jobs are dropped."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._queue = None
        if self._active:
            logger.warning(f"Dispatcher stopped with {len(self._active)} undelivered result(s)")
        self._active.clear()
        self._idle.set()
        await self._client.aclose()
        logger.info("Callback dispatcher stopped")

    def deliver(
        self,
        integration: Integration,
        result: AnalysisResult,
        callback_url: Optional[str] = None,
    ) -> bool:
        """
        Enqueue delivery of a finished result.

        ``callback_url`` replaces the integration's webhook URL for this result.

        Returns:
            True if a delivery was enqueued, False if there is no target or
            the same delivery is already pending
        """
        if self._queue is None:
            raise RuntimeError("Dispatcher is not running")

        target_url = callback_url or integration.webhook_url
        if not target_url:
            logger.debug(f"No webhook target for result {result.id}")
            return False

        job = DeliveryJob(
            integration_id=integration.id,
            result_id=result.id,
            target_url=target_url,
            secret=integration.webhook_secret,
            payload=build_webhook_payload(integration.id, result),
        )
        if job.key in self._active:
            logger.info(f"Delivery of {result.id} to {target_url} already pending; ignored")
            return False

        self._active.add(job.key)
        self._idle.clear()
        self._queue.put_nowait(job)
        logger.debug(f"Enqueued delivery of {result.id} to {target_url}")
        return True

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until every enqueued delivery has succeeded or permanently failed."""
        await asyncio.wait_for(self._idle.wait(), timeout)

    async def _worker(self, worker_id: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            job = await queue.get()
            try:
                await self._attempt(job)
            except Exception as e:
                logger.error(
                    f"Worker {worker_id} failed processing delivery of {job.result_id}: {e}",
                    exc_info=True,
                )
                self._release(job)
            finally:
                queue.task_done()

    async def _attempt(self, job: DeliveryJob) -> None:
        status_code: Optional[int] = None
        try:
            status_code = await self._post(job)
        except DeliveryFailure as e:
            status_code = e.status_code
            error = str(e)
        else:
            await asyncio.to_thread(self._record, job, DeliveryOutcome.SUCCESS, status_code)
            logger.info(
                f"Delivered {job.result_id} to {job.target_url} on attempt {job.attempt}"
            )
            self._release(job)
            return

        if job.attempt >= self.max_attempts:
            await asyncio.to_thread(
                self._record, job, DeliveryOutcome.PERMANENT_FAILURE, status_code, error
            )
            logger.warning(
                f"Giving up on delivery of {job.result_id} to {job.target_url} "
                f"after {job.attempt} attempt(s): {error}"
            )
            self._release(job)
            return

        delay = self.delay_for(job.attempt)
        attempted_at = datetime.now(timezone.utc)
        await asyncio.to_thread(
            self._record,
            job,
            DeliveryOutcome.RETRIABLE_FAILURE,
            status_code,
            error,
            attempted_at + timedelta(seconds=delay),
            attempted_at,
        )
        logger.warning(
            f"Delivery {job.attempt}/{self.max_attempts} of {job.result_id} failed: "
            f"{error}, retrying in {delay:.2f}s"
        )
        loop = asyncio.get_running_loop()
        self._timers[job.key] = loop.call_later(
            delay, self._requeue, replace(job, attempt=job.attempt + 1)
        )

    async def _post(self, job: DeliveryJob) -> int:
        """
        Make one signed POST.

        Raises:
            DeliveryFailure: On a transport error or non-2xx response
        """
        body = json.dumps(job.payload, separators=(",", ":"), sort_keys=True).encode()
        timestamp = str(int(time.time()))
        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: sign_payload(job.secret, body, timestamp),
            TIMESTAMP_HEADER: timestamp,
            EVENT_HEADER: job.payload["event"],
            ATTEMPT_HEADER: str(job.attempt),
        }
        try:
            response = await self._client.post(
                job.target_url, content=body, headers=headers, timeout=self.timeout
            )
        except httpx.HTTPError as e:
            raise DeliveryFailure(f"Endpoint unreachable: {e}") from e

        if not response.is_success:
            raise DeliveryFailure(
                f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response.status_code

    def _requeue(self, job: DeliveryJob) -> None:
        self._timers.pop(job.key, None)
        if self._queue is None:
            return
        self._queue.put_nowait(job)

    def _release(self, job: DeliveryJob) -> None:
        self._active.discard(job.key)
        if not self._active:
            self._idle.set()

    def _record(
        self,
        job: DeliveryJob,
        outcome: DeliveryOutcome,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
        next_retry_at: Optional[datetime] = None,
        attempted_at: Optional[datetime] = None,
    ) -> None:
        with self.database.session() as session:
            DeliveryAttemptRepository(session).record(
                integration_id=job.integration_id,
                result_id=job.result_id,
                target_url=job.target_url,
                attempt_number=job.attempt,
                outcome=outcome,
                status_code=status_code,
                error=error,
                next_retry_at=next_retry_at,
                attempted_at=attempted_at,
            )
