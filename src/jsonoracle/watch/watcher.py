"""
Change watcher for files and logical resources.

Resource ids take two forms:

- ``file:<relative path>``: a file under the watch root, observed with
  watchdog in the observer's own thread
- ``analysis:<uuid>``: the stored state of an analysis, pushed in by the
  analysis service through ``update_content``

A change event is emitted only when the content fingerprint differs from the
immediately previous one, so touch-without-modify produces nothing.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer
from watchdog.observers.polling import PollingObserver

from jsonoracle.exceptions import NotFoundError, ValidationError
from jsonoracle.utils.hashing import calculate_file_hash, calculate_json_hash

logger = logging.getLogger(__name__)

FILE_KIND = "file"
ANALYSIS_KIND = "analysis"
LOGICAL_KINDS = (ANALYSIS_KIND,)


@dataclass
class ChangeEvent:
    """A resource's content changed to a new fingerprint."""

    resource_id: str
    fingerprint: str
    timestamp: datetime
    content: Any = None
    previous_fingerprint: Optional[str] = None
    previous_content: Any = field(default=None, repr=False)


@dataclass(frozen=True)
class WatchHandle:
    """One holder's interest in a resource."""

    id: str
    resource_id: str


@dataclass
class WatchedResource:
    """Current known state of a watched resource."""

    resource_id: str
    kind: str
    path: Optional[Path] = None
    fingerprint: Optional[str] = None
    last_modified: Optional[datetime] = None
    content: Any = None
    handles: set[str] = field(default_factory=set)
    keep_alive: bool = False

    def snapshot(self) -> Optional[ChangeEvent]:
        if self.fingerprint is None:
            return None
        return ChangeEvent(
            resource_id=self.resource_id,
            fingerprint=self.fingerprint,
            timestamp=self.last_modified or datetime.now(timezone.utc),
            content=self.content,
        )


ChangeListener = Callable[[ChangeEvent], None]
ContentLoader = Callable[[str], Any]


class _ObserverHandler(FileSystemEventHandler):
    """Forwards watchdog events for watched files to the ChangeWatcher."""

    def __init__(self, watcher: "ChangeWatcher"):
        super().__init__()
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher._on_path_event(str(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher._on_path_event(str(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        # Editors save by writing a temp file and renaming it over the original
        if not event.is_directory:
            self.watcher._on_path_event(str(event.dest_path))


class ChangeWatcher:
    """
    Tracks watched resources and emits change events to listeners.

    Listeners are called synchronously, possibly from the observer thread,
    while the watcher's lock is held; they must only schedule work.
    """

    def __init__(
        self,
        root: Path | str = ".",
        use_polling: bool = False,
        poll_interval: float = 1.0,
        max_snapshot_bytes: int = 262_144,
    ):
        self.root = Path(root).expanduser().resolve()
        self.use_polling = use_polling
        self.poll_interval = poll_interval
        self.max_snapshot_bytes = max_snapshot_bytes

        self._lock = threading.RLock()
        self._resources: dict[str, WatchedResource] = {}
        self._paths: dict[str, str] = {}  # absolute path -> resource id
        self._listeners: list[ChangeListener] = []
        self._loaders: dict[str, ContentLoader] = {}
        self._observer: Optional[Any] = None

    # Lifecycle

    def start(self) -> None:
        """Start observing the watch root for file changes."""
        if self._observer is not None:
            return
        if not self.root.is_dir():
            logger.warning(f"Watch root {self.root} is not a directory; file watching disabled")
            return

        if self.use_polling:
            self._observer = PollingObserver(timeout=self.poll_interval)
        else:
            self._observer = Observer()
        self._observer.schedule(_ObserverHandler(self), str(self.root), recursive=True)
        self._observer.start()
        logger.info(f"Observer started for {self.root}")

    def stop(self) -> None:
        """Stop the observer thread."""
        if self._observer is None:
            return
        try:
            self._observer.stop()
            self._observer.join(timeout=3)
            if self._observer.is_alive():
                logger.warning("Observer thread did not stop cleanly")
            else:
                logger.info("Observer stopped")
        finally:
            self._observer = None

    # Registration

    def add_listener(self, listener: ChangeListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def register_loader(self, kind: str, loader: ContentLoader) -> None:
        """
        Provide current content for a logical resource kind.

        The loader is called with the name part of the resource id when the
        resource is first watched, and may raise NotFoundError.
        """
        if kind not in LOGICAL_KINDS:
            raise ValueError(f"Unknown logical resource kind: {kind!r}")
        with self._lock:
            self._loaders[kind] = loader

    # Watching

    def watch(self, resource_id: str, keep_alive: bool = False) -> WatchHandle:
        """
        Start watching a resource.

        Raises:
            ValidationError: If the id is malformed or points outside the root
            NotFoundError: If a logical resource does not exist
        """
        kind, name = self._parse(resource_id)
        handle = WatchHandle(id=uuid.uuid4().hex, resource_id=resource_id)

        with self._lock:
            resource = self._resources.get(resource_id)
            if resource is None:
                resource = self._create(resource_id, kind, name)
                self._resources[resource_id] = resource
                if resource.path is not None:
                    self._paths[str(resource.path)] = resource_id
                logger.debug(f"Watching {resource_id}")
            resource.handles.add(handle.id)
            resource.keep_alive = resource.keep_alive or keep_alive

        return handle

    def unwatch(self, handle: WatchHandle) -> None:
        """Release a handle; the resource is dropped with its last handle unless kept alive."""
        with self._lock:
            resource = self._resources.get(handle.resource_id)
            if resource is None:
                return
            resource.handles.discard(handle.id)
            self._maybe_destroy(resource)

    def set_keep_alive(self, resource_id: str, keep_alive: bool) -> None:
        with self._lock:
            resource = self._resources.get(resource_id)
            if resource is None:
                return
            resource.keep_alive = keep_alive
            self._maybe_destroy(resource)

    def is_watched(self, resource_id: str) -> bool:
        with self._lock:
            return resource_id in self._resources

    def get(self, resource_id: str) -> Optional[WatchedResource]:
        with self._lock:
            return self._resources.get(resource_id)

    def snapshot(self, resource_id: str) -> Optional[ChangeEvent]:
        """Current content of a watched resource, if known."""
        with self._lock:
            resource = self._resources.get(resource_id)
            return resource.snapshot() if resource else None

    # Change detection

    def check(self, resource_id: str) -> Optional[ChangeEvent]:
        """
        Re-read a file resource now.

        Returns:
            The emitted event, or None if the resource is unknown, missing,
            not a file resource, or unchanged
        """
        with self._lock:
            resource = self._resources.get(resource_id)
            if resource is None or resource.path is None:
                return None
            state = self._read_file(resource.path)
            if state is None:
                return None
            fingerprint, content = state
            return self._record(resource, fingerprint, content)

    def update_content(self, resource_id: str, content: Any) -> Optional[ChangeEvent]:
        """
        Replace the content of a logical resource.

        Unwatched resources are ignored; a later ``watch`` loads their
        current state through the registered loader.
        """
        with self._lock:
            resource = self._resources.get(resource_id)
            if resource is None or resource.path is not None:
                return None
            return self._record(resource, calculate_json_hash(content), content)

    # Internals

    def _parse(self, resource_id: str) -> tuple[str, str]:
        kind, sep, name = (resource_id or "").partition(":")
        if not sep or not name:
            raise ValidationError(f"Malformed resource id: {resource_id!r}")
        if kind != FILE_KIND and kind not in LOGICAL_KINDS:
            raise ValidationError(f"Unknown resource kind: {kind!r}")
        return kind, name

    def _create(self, resource_id: str, kind: str, name: str) -> WatchedResource:
        if kind == FILE_KIND:
            path = (self.root / name).resolve()
            if not path.is_relative_to(self.root):
                raise ValidationError(f"Resource {resource_id!r} is outside the watch root")
            resource = WatchedResource(resource_id=resource_id, kind=kind, path=path)
            state = self._read_file(path)
            if state is not None:
                resource.fingerprint, resource.content = state
                resource.last_modified = datetime.now(timezone.utc)
            return resource

        resource = WatchedResource(resource_id=resource_id, kind=kind)
        loader = self._loaders.get(kind)
        if loader is not None:
            content = loader(name)
            if content is not None:
                resource.content = content
                resource.fingerprint = calculate_json_hash(content)
                resource.last_modified = datetime.now(timezone.utc)
        elif kind == ANALYSIS_KIND:
            raise NotFoundError(f"No source registered for {resource_id!r}")
        return resource

    def _read_file(self, path: Path) -> Optional[tuple[str, Optional[str]]]:
        """Fingerprint and (bounded) text content of a file, or None if unreadable."""
        try:
            fingerprint = calculate_file_hash(path)
            if path.stat().st_size > self.max_snapshot_bytes:
                return fingerprint, None
            return fingerprint, path.read_text(encoding="utf-8", errors="replace")
        except (FileNotFoundError, ValueError):
            return None
        except OSError as e:
            logger.warning(f"Could not read watched file {path}: {e}")
            return None

    def _record(
        self, resource: WatchedResource, fingerprint: str, content: Any
    ) -> Optional[ChangeEvent]:
        if fingerprint == resource.fingerprint:
            logger.debug(f"No content change for {resource.resource_id}")
            return None

        event = ChangeEvent(
            resource_id=resource.resource_id,
            fingerprint=fingerprint,
            timestamp=datetime.now(timezone.utc),
            content=content,
            previous_fingerprint=resource.fingerprint,
            previous_content=resource.content,
        )
        resource.fingerprint = fingerprint
        resource.content = content
        resource.last_modified = event.timestamp

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Change listener failed for {resource.resource_id}: {e}", exc_info=True)
        return event

    def _maybe_destroy(self, resource: WatchedResource) -> None:
        if resource.handles or resource.keep_alive:
            return
        self._resources.pop(resource.resource_id, None)
        if resource.path is not None:
            self._paths.pop(str(resource.path), None)
        logger.debug(f"Stopped watching {resource.resource_id}")

    def _on_path_event(self, path: str) -> None:
        try:
            resolved = str(Path(path).resolve())
        except OSError:
            return
        with self._lock:
            resource_id = self._paths.get(resolved)
        if resource_id is not None:
            self.check(resource_id)
