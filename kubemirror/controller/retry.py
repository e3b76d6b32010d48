"""Bounded retry policy for failed reconciliations."""

from __future__ import annotations

from collections.abc import Callable

from kubemirror.models.resources import ResourceKey
from kubemirror.observability.logging import get_logger
from kubemirror.observability.metrics import reconcile_dropped_total
from kubemirror.workqueue.queue import WorkQueue

_DEFAULT_MAX_RETRIES: int = 5

_log = get_logger("controller.retry")


class RetriesExhaustedError(Exception):
    """A key kept failing until the retry ceiling was reached."""

    def __init__(self, key: ResourceKey, cause: BaseException, attempts: int) -> None:
        super().__init__(f"dropping {key} after {attempts} attempts: {cause}")
        self.key = key
        self.cause = cause
        self.attempts = attempts


class DroppedOnShutdownError(RetriesExhaustedError):
    """A key failed while the queue was shutting down, so it could not be requeued."""

    def __init__(self, key: ResourceKey, cause: BaseException, attempts: int) -> None:
        super().__init__(key, cause, attempts)
        self.args = (f"dropping {key} during shutdown after {attempts} attempts: {cause}",)


ErrorSink = Callable[[RetriesExhaustedError], None]


def log_error_sink(error: RetriesExhaustedError) -> None:
    """Default sink: report the terminal failure as a structured log event."""
    _log.error(
        "reconcile_retries_exhausted",
        key=error.key,
        attempts=error.attempts,
        error=str(error.cause),
        error_type=type(error.cause).__name__,
    )


class RetryPolicy:
    """Requeue failed keys with backoff up to ``max_retries`` times.

    After the ceiling the key is forgotten and the failure goes to the error
    sink.  A later watch event for the key starts a fresh cycle.
    """

    def __init__(self, max_retries: int = _DEFAULT_MAX_RETRIES, error_sink: ErrorSink | None = None) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._max_retries = max_retries
        self._sink = error_sink or log_error_sink

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def handle_failure(self, queue: WorkQueue, key: ResourceKey, error: BaseException) -> bool:
        """Apply the policy to a failed attempt.

        Returns True if the key was requeued, False if it was dropped.
        """
        requeues = queue.num_requeues(key)
        if queue.shutting_down:
            # delayed adds are refused once shut_down() has been called
            self._drop(queue, DroppedOnShutdownError(key, error, attempts=requeues + 1))
            return False
        if requeues < self._max_retries:
            _log.info(
                "reconcile_failed_requeue",
                key=key,
                attempt=requeues + 1,
                max_retries=self._max_retries,
                error=str(error),
            )
            queue.add_rate_limited(key)
            return True

        self._drop(queue, RetriesExhaustedError(key, error, attempts=requeues + 1))
        return False

    def _drop(self, queue: WorkQueue, failure: RetriesExhaustedError) -> None:
        queue.forget(failure.key)
        reconcile_dropped_total.inc()
        try:
            self._sink(failure)
        except Exception as exc:
            _log.error("error_sink_failed", key=failure.key, error=str(exc), exc_info=True)
