"""Prometheus metrics for kubemirror."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# Cache metrics
cache_resources = Gauge(
    "kubemirror_cache_resources",
    "Number of resources held in the local cache",
    ["kind"],
)

cache_synced = Gauge(
    "kubemirror_cache_synced",
    "Whether the initial list has been applied to the cache (0 or 1)",
    ["watcher"],
)

# Work queue metrics
workqueue_depth = Gauge(
    "kubemirror_workqueue_depth",
    "Current number of keys waiting in the work queue",
    ["name"],
)

workqueue_adds_total = Counter(
    "kubemirror_workqueue_adds_total",
    "Total keys added to the work queue",
    ["name"],
)

workqueue_retries_total = Counter(
    "kubemirror_workqueue_retries_total",
    "Total rate-limited re-adds",
    ["name"],
)

workqueue_queue_duration_seconds = Histogram(
    "kubemirror_workqueue_queue_duration_seconds",
    "Time a key spends waiting in the queue before a worker picks it up",
    ["name"],
    buckets=(0.001, 0.01, 0.1, 0.5, 1.0, 5.0, 10.0, 60.0),
)

# Reconcile metrics
reconcile_total = Counter(
    "kubemirror_reconcile_total",
    "Total reconciliations by path and result",
    ["path", "result"],
)

reconcile_duration_seconds = Histogram(
    "kubemirror_reconcile_duration_seconds",
    "Reconciliation duration in seconds",
    ["path"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

reconcile_dropped_total = Counter(
    "kubemirror_reconcile_dropped_total",
    "Total keys dropped after exhausting their retries",
)

# Watcher metrics
watcher_events_total = Counter(
    "kubemirror_watcher_events_total",
    "Total watch events received by type",
    ["watcher", "event_type"],
)

watcher_decode_errors_total = Counter(
    "kubemirror_watcher_decode_errors_total",
    "Total watch events rejected by the decode step",
    ["watcher"],
)

watcher_reconnects_total = Counter(
    "kubemirror_watcher_reconnects_total",
    "Total watcher reconnection attempts",
    ["watcher", "reason"],
)

watcher_relistings_total = Counter(
    "kubemirror_watcher_relistings_total",
    "Total watcher list operations",
    ["watcher"],
)

watcher_errors_total = Counter(
    "kubemirror_watcher_errors_total",
    "Total watcher errors",
    ["watcher", "status_code"],
)

watcher_backoff_seconds = Histogram(
    "kubemirror_watcher_backoff_seconds",
    "Watcher backoff duration in seconds",
    ["watcher"],
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)
