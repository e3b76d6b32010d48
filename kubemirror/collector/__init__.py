"""Watch-stream collection into the local cache."""

from kubemirror.collector.decode import DecodeError, decode_object
from kubemirror.collector.watcher import (
    SUPPORTED_KINDS,
    ResourceEventHandler,
    ResourceWatcher,
    WatcherError,
)

__all__ = [
    "SUPPORTED_KINDS",
    "DecodeError",
    "ResourceEventHandler",
    "ResourceWatcher",
    "WatcherError",
    "decode_object",
]
