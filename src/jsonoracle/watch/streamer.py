"""
Live-stream fan-out of change events.

Each subscriber receives a snapshot of the resource when it subscribes, then
one message per change event while it stays connected. Events missed while
disconnected are not replayed.
"""

import asyncio
import difflib
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from jsonoracle.watch.watcher import ChangeEvent, ChangeWatcher, WatchHandle

logger = logging.getLogger(__name__)


class StreamConnection(Protocol):
    """Anything that can push a JSON message to one client (e.g. a WebSocket)."""

    async def send_json(self, data: Any) -> None: ...


@dataclass
class Subscription:
    id: str
    resource_id: str
    connection: StreamConnection
    handle: WatchHandle
    last_fingerprint: Optional[str] = field(default=None)


def build_message(event: ChangeEvent, kind: str = "snapshot") -> dict[str, Any]:
    """
    Wire message for one event.

    A text change is sent as a unified diff (``kind="delta"``) when the diff
    is shorter than the new content; everything else is a full snapshot.
    """
    content = event.content
    if (
        kind == "delta"
        and isinstance(content, str)
        and isinstance(event.previous_content, str)
    ):
        diff = "".join(
            difflib.unified_diff(
                event.previous_content.splitlines(keepends=True),
                content.splitlines(keepends=True),
                fromfile="previous",
                tofile="current",
            )
        )
        if len(diff) < len(content):
            content = diff
        else:
            kind = "snapshot"
    else:
        kind = "snapshot"

    return {
        "resource_id": event.resource_id,
        "fingerprint": event.fingerprint,
        "timestamp": event.timestamp.isoformat(),
        "kind": kind,
        "content": content,
    }


class ChangeStreamer:
    """
    Maps resource ids to live subscriber connections.

    Pushes for one resource are serialised by a per-resource lock (asyncio
    locks wake waiters in FIFO order), so subscribers see events in the
    order the watcher emitted them. A subscriber whose send fails is dropped
    at that point; connections are never polled.
    """

    def __init__(self, watcher: ChangeWatcher):
        self.watcher = watcher
        self._subscriptions: dict[str, Subscription] = {}
        self._by_resource: dict[str, set[str]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending: set[asyncio.Future] = set()
        watcher.add_listener(self.notify)

    def attach_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Set the event loop that publishes events raised on other threads."""
        self._loop = loop

    def notify(self, event: ChangeEvent) -> None:
        """
        Schedule ``publish`` for an event. Safe to call from any thread.

        Calls made in order are published in order.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.debug(f"No event loop attached; dropping event for {event.resource_id}")
            return
        if not self._by_resource.get(event.resource_id):
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            future: asyncio.Future = loop.create_task(self.publish(event))
            self._pending.add(future)
            future.add_done_callback(self._pending.discard)
        else:
            asyncio.run_coroutine_threadsafe(self.publish(event), loop)

    async def subscribe(self, resource_id: str, connection: StreamConnection) -> str:
        """
        Subscribe a connection to a resource and send it the current snapshot.

        Returns:
            Subscription id

        Raises:
            ValidationError: If the resource id is invalid
            NotFoundError: If a logical resource does not exist
        """
        # Loading a resource may read a file or the database
        handle = await asyncio.to_thread(self.watcher.watch, resource_id)
        subscription = Subscription(
            id=uuid.uuid4().hex,
            resource_id=resource_id,
            connection=connection,
            handle=handle,
        )

        async with self._lock_for(resource_id):
            self._subscriptions[subscription.id] = subscription
            self._by_resource.setdefault(resource_id, set()).add(subscription.id)

            snapshot = self.watcher.snapshot(resource_id)
            if snapshot is not None:
                await self._send(subscription, build_message(snapshot), snapshot.fingerprint)

        logger.info(f"Subscription {subscription.id} opened for {resource_id}")
        return subscription.id

    async def unsubscribe(self, subscription_id: str) -> bool:
        """Remove a subscription. Returns False if it was already gone."""
        subscription = self._subscriptions.pop(subscription_id, None)
        if subscription is None:
            return False
        self._forget(subscription)
        logger.info(f"Subscription {subscription_id} closed for {subscription.resource_id}")
        return True

    async def publish(self, event: ChangeEvent) -> int:
        """
        Push an event to every current subscriber of its resource.

        Returns:
            Number of subscribers the event reached
        """
        async with self._lock_for(event.resource_id):
            delivered = 0
            subscription_ids = list(self._by_resource.get(event.resource_id, ()))
            delta = build_message(event, kind="delta")
            snapshot = build_message(event)
            for subscription_id in subscription_ids:
                subscription = self._subscriptions.get(subscription_id)
                if subscription is None:
                    continue
                if subscription.last_fingerprint == event.fingerprint:
                    continue
                # A delta only applies on top of the content the subscriber has
                if subscription.last_fingerprint == event.previous_fingerprint:
                    message = delta
                else:
                    message = snapshot
                if await self._send(subscription, message, event.fingerprint):
                    delivered += 1
            return delivered

    def subscriber_count(self, resource_id: str) -> int:
        return len(self._by_resource.get(resource_id, ()))

    async def drain(self) -> None:
        """Wait for publishes scheduled on this loop to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        for subscription_id in list(self._subscriptions):
            await self.unsubscribe(subscription_id)

    async def _send(
        self, subscription: Subscription, message: dict[str, Any], fingerprint: str
    ) -> bool:
        try:
            await subscription.connection.send_json(message)
        except Exception as e:
            logger.info(f"Dropping subscription {subscription.id} after failed send: {e}")
            if self._subscriptions.pop(subscription.id, None) is not None:
                self._forget(subscription)
            return False
        subscription.last_fingerprint = fingerprint
        return True

    def _forget(self, subscription: Subscription) -> None:
        subscribers = self._by_resource.get(subscription.resource_id)
        if subscribers is not None:
            subscribers.discard(subscription.id)
            if not subscribers:
                del self._by_resource[subscription.resource_id]
                lock = self._locks.get(subscription.resource_id)
                if lock is not None and not lock.locked():
                    del self._locks[subscription.resource_id]
        self.watcher.unwatch(subscription.handle)

    def _lock_for(self, resource_id: str) -> asyncio.Lock:
        lock = self._locks.get(resource_id)
        if lock is None:
            lock = self._locks[resource_id] = asyncio.Lock()
        return lock
