"""Tests for kubemirror.controller.retry.RetryPolicy."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from kubemirror.controller.retry import DroppedOnShutdownError, RetriesExhaustedError, RetryPolicy, log_error_sink
from kubemirror.workqueue.queue import WorkQueue
from kubemirror.workqueue.rate_limiter import ExponentialFailureRateLimiter


def _mock_queue(requeues: int, shutting_down: bool = False) -> MagicMock:
    queue = MagicMock(spec=WorkQueue)
    queue.num_requeues.return_value = requeues
    queue.shutting_down = shutting_down
    return queue


class TestRetryPolicy:
    def test_below_ceiling_requeues_with_rate_limit(self) -> None:
        queue = _mock_queue(requeues=2)
        policy = RetryPolicy(max_retries=5)

        assert policy.handle_failure(queue, "ns/a", RuntimeError("boom")) is True

        queue.add_rate_limited.assert_called_once_with("ns/a")
        queue.forget.assert_not_called()

    def test_at_ceiling_forgets_and_reports(self) -> None:
        queue = _mock_queue(requeues=5)
        sink = MagicMock()
        policy = RetryPolicy(max_retries=5, error_sink=sink)
        cause = RuntimeError("still broken")

        assert policy.handle_failure(queue, "ns/a", cause) is False

        queue.add_rate_limited.assert_not_called()
        queue.forget.assert_called_once_with("ns/a")
        sink.assert_called_once()
        failure = sink.call_args.args[0]
        assert isinstance(failure, RetriesExhaustedError)
        assert failure.key == "ns/a"
        assert failure.cause is cause
        assert failure.attempts == 6

    def test_zero_retries_drops_on_first_failure(self) -> None:
        queue = _mock_queue(requeues=0)
        sink = MagicMock()
        policy = RetryPolicy(max_retries=0, error_sink=sink)

        assert policy.handle_failure(queue, "ns/a", RuntimeError("x")) is False
        sink.assert_called_once()

    def test_failing_sink_is_contained(self) -> None:
        queue = _mock_queue(requeues=5)
        sink = MagicMock(side_effect=RuntimeError("sink down"))
        policy = RetryPolicy(max_retries=5, error_sink=sink)

        assert policy.handle_failure(queue, "ns/a", RuntimeError("x")) is False
        queue.forget.assert_called_once_with("ns/a")

    def test_negative_ceiling_rejected(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=-1)

    def test_default_sink_logs_without_raising(self) -> None:
        log_error_sink(RetriesExhaustedError("ns/a", RuntimeError("x"), attempts=6))


class TestRetrySequence:
    async def test_exactly_five_requeues_then_drop(self) -> None:
        queue = WorkQueue(rate_limiter=ExponentialFailureRateLimiter(0.001, 0.01), name="retry-test")
        sink = MagicMock()
        policy = RetryPolicy(max_retries=5, error_sink=sink)

        outcomes = [policy.handle_failure(queue, "ns/a", RuntimeError("x")) for _ in range(6)]

        assert outcomes == [True] * 5 + [False]
        assert queue.num_requeues("ns/a") == 0
        sink.assert_called_once()
        queue.shut_down()

    async def test_fresh_cycle_after_drop(self) -> None:
        queue = WorkQueue(rate_limiter=ExponentialFailureRateLimiter(0.001, 0.01), name="retry-test")
        policy = RetryPolicy(max_retries=1, error_sink=MagicMock())

        assert policy.handle_failure(queue, "ns/a", RuntimeError("x")) is True
        assert policy.handle_failure(queue, "ns/a", RuntimeError("x")) is False
        assert policy.handle_failure(queue, "ns/a", RuntimeError("x")) is True
        queue.shut_down()


class TestFailureDuringShutdown:
    def test_reports_instead_of_requeueing(self) -> None:
        queue = _mock_queue(requeues=1, shutting_down=True)
        sink = MagicMock()
        policy = RetryPolicy(max_retries=5, error_sink=sink)
        cause = RuntimeError("boom")

        assert policy.handle_failure(queue, "ns/a", cause) is False

        queue.add_rate_limited.assert_not_called()
        queue.forget.assert_called_once_with("ns/a")
        failure = sink.call_args.args[0]
        assert isinstance(failure, DroppedOnShutdownError)
        assert isinstance(failure, RetriesExhaustedError)
        assert failure.cause is cause
        assert failure.attempts == 2
        assert "during shutdown" in str(failure)

    async def test_drained_key_failure_reaches_sink(self) -> None:
        from kubemirror.controller.controller import Controller
        from kubemirror.controller.reconciler import CallbackReconciler
        from kubemirror.models.resources import ResourceSnapshot

        sink = MagicMock()
        reconciler = CallbackReconciler(AsyncMock(side_effect=RuntimeError("boom")))
        controller = Controller(
            MagicMock(),
            reconciler,
            kind="Deployment",
            rate_limiter=ExponentialFailureRateLimiter(0.001, 0.01),
            error_sink=sink,
        )
        controller.cache.upsert(ResourceSnapshot(kind="Deployment", namespace="ns", name="a", resource_version="1"))
        controller.queue.add("ns/a")
        controller.queue.shut_down()

        assert await controller.process_next_item() is True

        sink.assert_called_once()
        assert isinstance(sink.call_args.args[0], DroppedOnShutdownError)
        assert controller.queue.num_requeues("ns/a") == 0
        assert len(controller.queue) == 0
