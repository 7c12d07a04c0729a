"""Resource change watching and live streaming."""

from jsonoracle.watch.streamer import ChangeStreamer, StreamConnection, build_message
from jsonoracle.watch.watcher import (
    ChangeEvent,
    ChangeWatcher,
    WatchedResource,
    WatchHandle,
)

__all__ = [
    "ChangeEvent",
    "ChangeStreamer",
    "ChangeWatcher",
    "StreamConnection",
    "WatchHandle",
    "WatchedResource",
    "build_message",
]
