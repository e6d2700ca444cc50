# tests/test_triggers.py
"""Tests for triggered metrics and producer isolation."""

import asyncio
import threading
from datetime import timedelta

import pytest

from promtree import create_collector
from promtree.exceptions import ProducerError
from promtree.triggers import (
    DEFAULT_PRODUCER_TIMEOUT,
    TriggeredMetric,
    TriggerRegistry,
    callback_producer,
)

# =============================================================================
# PRODUCER FORM TESTS
# =============================================================================


class TestProducerForms:
    """Tests for async, sync and callback producers."""

    @pytest.mark.asyncio
    async def test_async_producer(self, root):
        gauge = root.gauge("queue_depth")

        async def producer(family):
            await asyncio.sleep(0)
            family.set(7)

        root.add_triggered_metric(gauge, producer)
        result = await root.collect()

        assert result.ok
        assert "queue_depth 7.0\n" in result.text

    @pytest.mark.asyncio
    async def test_sync_producer_runs_in_thread(self, root):
        gauge = root.gauge("worker_thread")
        threads = []

        def producer(family):
            threads.append(threading.current_thread())
            family.set(1)

        root.add_triggered_metric(gauge, producer)
        await root.collect()

        assert threads and threads[0] is not threading.main_thread()
        assert gauge.get() == 1.0

    @pytest.mark.asyncio
    async def test_callback_producer(self, root):
        counter = root.counter("jobs")

        @callback_producer
        def producer(family, done):
            family.increment(2)
            done()

        root.add_triggered_metric(counter, producer)
        result = await root.collect()

        assert result.ok
        assert "jobs 2.0\n" in result.text

    @pytest.mark.asyncio
    async def test_callback_from_other_thread(self, root):
        """Test done() may be called from a foreign thread."""
        gauge = root.gauge("remote")

        @callback_producer
        def producer(family, done):
            def work():
                family.set(42)
                done()

            threading.Thread(target=work).start()

        root.add_triggered_metric(gauge, producer)
        result = await root.collect()

        assert result.ok
        assert gauge.get() == 42.0

    @pytest.mark.asyncio
    async def test_callback_error(self, root):
        gauge = root.gauge("remote")

        @callback_producer
        def producer(family, done):
            done("backend unavailable")
            done()

        root.add_triggered_metric(gauge, producer)
        result = await root.collect()

        (error,) = result.errors
        assert error.family_name == "remote"
        assert "backend unavailable" in str(error)

    @pytest.mark.asyncio
    async def test_callback_exception_error(self, root):
        gauge = root.gauge("remote")

        @callback_producer
        def producer(family, done):
            done(KeyError("missing"))

        root.add_triggered_metric(gauge, producer)
        result = await root.collect()

        (error,) = result.errors
        assert isinstance(error.cause, KeyError)


# =============================================================================
# ISOLATION TESTS
# =============================================================================


class TestIsolation:
    """Tests for failure isolation between producers."""

    @pytest.mark.asyncio
    async def test_failing_producer_skipped(self, root):
        """Test a failing producer only removes its own family."""
        good = root.gauge("good")
        bad = root.gauge("bad", help="Never rendered")
        static = root.counter("static")
        static.increment()

        async def fill(family):
            family.set(1)

        async def fail(family):
            raise RuntimeError("boom")

        root.add_triggered_metric(good, fill)
        root.add_triggered_metric(bad, fail)
        result = await root.collect()

        assert not result.ok
        (error,) = result.errors
        assert isinstance(error, ProducerError)
        assert error.family_name == "bad"
        assert "boom" in str(error)
        assert "good 1.0\n" in result.text
        assert "static 1.0\n" in result.text
        assert "bad" not in result.text

    @pytest.mark.asyncio
    async def test_failed_family_returns_next_pass(self, root):
        gauge = root.gauge("flaky")
        calls = []

        async def producer(family):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("first call fails")
            family.set(len(calls))

        root.add_triggered_metric(gauge, producer)
        first = await root.collect()
        second = await root.collect()

        assert "flaky" not in first.text
        assert second.ok
        assert "flaky 2.0\n" in second.text

    @pytest.mark.asyncio
    async def test_timeout(self, root):
        slow = root.gauge("slow")
        fast = root.gauge("fast")

        async def hang(family):
            await asyncio.sleep(10)

        async def fill(family):
            family.set(1)

        root.add_triggered_metric(slow, hang, timeout=0.05)
        root.add_triggered_metric(fast, fill)
        result = await root.collect()

        (error,) = result.errors
        assert error.family_name == "slow"
        assert "timed out" in str(error)
        assert "fast 1.0\n" in result.text

    @pytest.mark.asyncio
    async def test_producers_run_concurrently(self, root):
        """Test producers overlap instead of running one after another."""
        started = asyncio.Event()
        gauges = [root.gauge("first"), root.gauge("second")]

        async def waiter(family):
            await asyncio.wait_for(started.wait(), timeout=1)
            family.set(1)

        async def releaser(family):
            started.set()
            family.set(2)

        root.add_triggered_metric(gauges[0], waiter)
        root.add_triggered_metric(gauges[1], releaser)
        result = await root.collect()

        assert result.ok
        assert gauges[0].get() == 1.0
        assert gauges[1].get() == 2.0

    @pytest.mark.asyncio
    async def test_producer_cancelled_internally(self, root):
        """Test a producer awaiting a cancelled future only fails its own family."""
        gauge = root.gauge("aborted")
        root.counter("healthy").increment()

        async def producer(family):
            future = asyncio.get_running_loop().create_future()
            future.cancel()
            await future

        root.add_triggered_metric(gauge, producer)
        result = await root.collect()

        (error,) = result.errors
        assert error.family_name == "aborted"
        assert isinstance(error.cause, asyncio.CancelledError)
        assert "healthy 1.0\n" in result.text

    @pytest.mark.asyncio
    async def test_collect_cancellation_propagates(self, root):
        gauge = root.gauge("hanging")

        async def producer(family):
            await asyncio.sleep(60)

        root.add_triggered_metric(gauge, producer)
        task = asyncio.create_task(root.collect())
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_hung_sync_producer_not_redispatched(self, root):
        """Test a timed-out sync producer holds one worker thread, not one per pass."""
        release = threading.Event()
        calls = []
        stuck = root.gauge("stuck")
        ok = root.gauge("ok")

        def block(family):
            calls.append(1)
            release.wait(5)
            family.set(1)

        def fill(family):
            family.set(1)

        entry = root.add_triggered_metric(stuck, block, timeout=0.05)
        root.add_triggered_metric(ok, fill, timeout=0.5)
        try:
            first = await root.collect()
            assert [e.family_name for e in first.errors] == ["stuck"]
            assert "timed out" in str(first.errors[0])

            for _ in range(3):
                result = await root.collect()
                (error,) = result.errors
                assert error.family_name == "stuck"
                assert "still running" in str(error)
                assert "ok 1.0\n" in result.text
            assert len(calls) == 1
        finally:
            release.set()

        await entry.pending
        result = await root.collect()
        assert result.ok
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_default_timeout_applies(self, clock):
        """Test a callback producer that never signals completion is abandoned."""
        root = create_collector(producer_timeout=0.05, clock=clock)
        gauge = root.gauge("silent")
        root.counter("healthy").increment()

        @callback_producer
        def producer(family, done):
            pass

        entry = root.add_triggered_metric(gauge, producer)
        result = await root.collect()

        assert entry.timeout == 0.05
        (error,) = result.errors
        assert error.family_name == "silent"
        assert "timed out" in str(error)
        assert "healthy 1.0\n" in result.text


# =============================================================================
# INTERVAL TESTS
# =============================================================================


class TestInterval:
    """Tests for interval-limited producers."""

    @pytest.mark.asyncio
    async def test_interval_limits_runs(self, root, clock):
        counter = root.counter("samples")

        async def producer(family):
            family.increment()

        entry = root.add_triggered_metric(counter, producer, interval=timedelta(seconds=10))

        await root.collect()
        clock.advance(5)
        await root.collect()
        assert entry.run_count == 1

        clock.advance(5)
        await root.collect()
        assert entry.run_count == 2
        assert counter.get() == 2.0

    @pytest.mark.asyncio
    async def test_error_does_not_advance_interval(self, root, clock):
        gauge = root.gauge("flaky")
        calls = []

        async def producer(family):
            calls.append(clock())
            if len(calls) == 1:
                raise RuntimeError("boom")

        entry = root.add_triggered_metric(gauge, producer, interval=60)

        await root.collect()
        assert entry.last_run is None
        assert entry.error_count == 1
        assert entry.last_error is not None

        clock.advance(1)
        await root.collect()
        assert entry.last_run == clock()
        assert entry.last_error is None
        assert len(calls) == 2


# =============================================================================
# REGISTRY TESTS
# =============================================================================


class TestTriggerRegistry:
    """Tests for TriggerRegistry bookkeeping."""

    def test_duplicate_registration(self, root):
        gauge = root.gauge("queue_depth")

        async def producer(family):
            family.set(1)

        registry = TriggerRegistry()
        first = registry.register(gauge, producer)
        second = registry.register(gauge, producer)
        assert first is second
        assert len(registry) == 1
        assert registry.entries() == [first]

    def test_is_due(self, root):
        entry = TriggeredMetric(family=root.gauge("g"), producer=lambda f: None, interval=10)
        assert entry.is_due(0)
        entry.record_success(100)
        assert not entry.is_due(105)
        assert entry.is_due(110)

    @pytest.mark.asyncio
    async def test_run_all_without_entries(self):
        assert await TriggerRegistry().run_all(0) == []

    def test_default_timeout(self, root):
        """Test entries registered without a timeout get the registry default."""
        registry = TriggerRegistry()
        assert registry.default_timeout == DEFAULT_PRODUCER_TIMEOUT

        entry = registry.register(root.gauge("g"), lambda family: None)
        assert entry.timeout == DEFAULT_PRODUCER_TIMEOUT

    def test_default_timeout_disabled(self, root):
        registry = TriggerRegistry(default_timeout=None)
        entry = registry.register(root.gauge("g"), lambda family: None)
        assert entry.timeout is None
