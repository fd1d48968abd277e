"""Unit tests for background resource sampling."""

import time

from pipebench.application.resource_sampler import ResourceSampler
from pipebench.domain.models import ResourceSample


class TestResourceSampler:
    """Tests for ResourceSampler."""

    def test_take_sample(self) -> None:
        """Test a manual sample reads process figures."""
        sampler = ResourceSampler()

        sample = sampler.take_sample()

        assert sample.memory_mb > 0
        assert sample.thread_count >= 1
        assert len(sample.gc_counts) == 3
        assert sampler.samples == [sample]

    def test_retention_limit(self) -> None:
        """Test the oldest samples are dropped beyond max_samples."""
        sampler = ResourceSampler(max_samples=3)
        taken = [sampler.take_sample() for _ in range(5)]

        assert sampler.samples == taken[-3:]
        assert sampler.recent(2) == taken[-2:]

    def test_background_sampling(self) -> None:
        """Test the thread samples periodically and stops on request."""
        received: list[ResourceSample] = []
        sampler = ResourceSampler(interval=0.01, on_sample=received.append)

        sampler.start()
        assert sampler.is_running
        time.sleep(0.1)
        sampler.stop()

        assert not sampler.is_running
        assert len(received) >= 1
        count = len(sampler.samples)
        time.sleep(0.05)
        assert len(sampler.samples) == count

    def test_stop_without_start(self) -> None:
        """Test stopping an idle sampler is a no-op."""
        ResourceSampler().stop()

    def test_stats(self) -> None:
        """Test aggregate figures over retained samples."""
        sampler = ResourceSampler()
        assert sampler.get_stats()["samples_count"] == 0

        sampler.take_sample()
        sampler.take_sample()
        stats = sampler.get_stats()

        assert stats["samples_count"] == 2
        assert stats["peak_memory_mb"] >= stats["average_memory_mb"]

        sampler.clear_history()
        assert sampler.samples == []
