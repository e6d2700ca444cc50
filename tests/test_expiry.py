# tests/test_expiry.py
"""Tests for gauge expiry during collection."""

import pytest

from promtree.instances import GaugeInstance
from promtree.labels import EMPTY_LABELS


class TestGaugeInstanceExpiry:
    """Tests for GaugeInstance.expire."""

    def test_never_written(self):
        instance = GaugeInstance(EMPTY_LABELS, default_value=3, expiry_period=1)
        assert instance.expire(10_000) is False
        assert instance.snapshot() == 3

    def test_boundary_not_expired(self):
        """Test a write exactly one period old is still fresh."""
        instance = GaugeInstance(EMPTY_LABELS, expiry_period=1)
        instance.set(5, now=100)
        assert instance.expire(101) is False
        assert instance.snapshot() == 5

    def test_without_period(self):
        instance = GaugeInstance(EMPTY_LABELS)
        instance.set(5, now=0)
        assert instance.expire(1e9) is False

    def test_write_after_expiry_restarts_period(self):
        instance = GaugeInstance(EMPTY_LABELS, expiry_period=1)
        instance.set(5, now=0)
        assert instance.expire(2) is True
        instance.add(2, now=3)
        assert instance.snapshot() == 2
        assert instance.expire(3.5) is False


class TestCollectionExpiry:
    """Tests for expiry applied by CollectorNode.collect."""

    @pytest.mark.asyncio
    async def test_expired_value_reads_default(self, root, clock):
        """Test a gauge falls back to its default once its period elapses."""
        gauge = root.gauge("temperature", expires=True, expiry_period=1, default_value=0)
        gauge.set(5)

        clock.advance(2)
        result = await root.collect()

        assert result.expired == 1
        assert gauge.get() == 0.0
        assert "temperature 0.0\n" in result.text

    @pytest.mark.asyncio
    async def test_fresh_value_kept(self, root, clock):
        gauge = root.gauge("temperature", expires=True, expiry_period=1)
        gauge.set(5)

        clock.advance(0.5)
        result = await root.collect()

        assert result.expired == 0
        assert gauge.get() == 5.0
        assert "temperature 5.0\n" in result.text

    @pytest.mark.asyncio
    async def test_reset_applied_once(self, root, clock):
        gauge = root.gauge("temperature", expires=True, expiry_period=1)
        gauge.set(5)
        clock.advance(2)

        first = await root.collect()
        second = await root.collect()

        assert first.expired == 1
        assert second.expired == 0
        assert first.text == second.text

    @pytest.mark.asyncio
    async def test_only_stale_instances_reset(self, root, clock):
        gauge = root.gauge("temperature", expires=True, expiry_period=10, default_value=-1)
        gauge.set(1, labels={"room": "attic"})
        clock.advance(8)
        gauge.set(2, labels={"room": "cellar"})
        clock.advance(5)

        result = await root.collect()

        assert result.text == (
            "# TYPE temperature gauge\n"
            'temperature{room="attic"} -1.0\n'
            'temperature{room="cellar"} 2.0\n'
        )

    @pytest.mark.asyncio
    async def test_skipped_producer_value_expires(self, root, clock):
        """Test a value written by an interval-limited producer expires between runs."""
        gauge = root.gauge("sampled", expires=True, expiry_period=1)

        async def producer(family):
            family.set(9)

        root.add_triggered_metric(gauge, producer, interval=60)
        await root.collect()
        clock.advance(2)
        result = await root.collect()

        assert result.expired == 1
        assert "sampled 0.0\n" in result.text

    def test_expire_gauges_ignores_other_types(self, root, clock):
        root.counter("requests").increment()
        gauge = root.gauge("temperature", expires=True, expiry_period=1)
        gauge.set(5)
        clock.advance(5)
        assert root.expire_gauges() == 1
        assert root.get_family("requests").get() == 1.0
