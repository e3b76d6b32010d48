"""Reconciliation engine: worker pool, retry policy and sync barrier."""

from kubemirror.controller.controller import Controller
from kubemirror.controller.reconciler import CallbackReconciler, MirrorReconciler, Reconciler
from kubemirror.controller.retry import (
    DroppedOnShutdownError,
    ErrorSink,
    RetriesExhaustedError,
    RetryPolicy,
    log_error_sink,
)
from kubemirror.controller.sync import CacheSyncTimeoutError, wait_for_cache_sync

__all__ = [
    "CacheSyncTimeoutError",
    "CallbackReconciler",
    "Controller",
    "DroppedOnShutdownError",
    "ErrorSink",
    "MirrorReconciler",
    "Reconciler",
    "RetriesExhaustedError",
    "RetryPolicy",
    "log_error_sink",
    "wait_for_cache_sync",
]
