"""Background sampling of process resource usage."""

import gc
import threading
from collections.abc import Callable

import psutil

from pipebench.domain.models import ResourceSample
from pipebench.infrastructure.logger import get_logger

logger = get_logger(__name__)


class ResourceSampler:
    """Samples process memory, CPU and GC counters on a background thread."""

    def __init__(
        self,
        interval: float = 1.0,
        max_samples: int = 1000,
        on_sample: Callable[[ResourceSample], None] | None = None,
    ):
        """Initialize resource sampler.

        Args:
            interval: Seconds between samples
            max_samples: Retained sample count (oldest dropped first)
            on_sample: Optional callback invoked with each new sample
        """
        self.interval = interval
        self.max_samples = max_samples
        self.on_sample = on_sample
        self.samples: list[ResourceSample] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._process = psutil.Process()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start background sampling (no-op if already running)."""
        if self.is_running:
            return
        self._stop.clear()
        # Prime cpu_percent so the first sample reports a real value
        self._process.cpu_percent(interval=None)
        self._thread = threading.Thread(
            target=self._sample_loop, name="pipebench-resource-sampler", daemon=True
        )
        self._thread.start()
        logger.info("resource_sampling_started", interval=self.interval)

    def stop(self) -> None:
        """Stop sampling and block until the thread exits."""
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join()
        self._thread = None
        logger.info("resource_sampling_stopped", samples=len(self.samples))

    def _sample_loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                sample = self.take_sample()
            except psutil.Error as e:
                logger.error("resource_sample_error", error=str(e))
                continue
            if self.on_sample is not None:
                self.on_sample(sample)

    def take_sample(self) -> ResourceSample:
        """Capture one sample now and retain it."""
        memory_mb = self._process.memory_info().rss / (1024 * 1024)
        sample = ResourceSample(
            memory_mb=round(memory_mb, 2),
            cpu_percent=self._process.cpu_percent(interval=None),
            gc_counts=tuple(gc.get_count()),
            thread_count=self._process.num_threads(),
        )

        with self._lock:
            self.samples.append(sample)
            if len(self.samples) > self.max_samples:
                self.samples.pop(0)

        return sample

    def recent(self, count: int = 10) -> list[ResourceSample]:
        """Most recent samples, oldest first."""
        with self._lock:
            return list(self.samples[-count:])

    def get_stats(self) -> dict[str, float | int | None]:
        """Average and peak figures over retained samples."""
        with self._lock:
            samples = list(self.samples)

        if not samples:
            return {"samples_count": 0, "average_memory_mb": None, "peak_memory_mb": None}

        return {
            "samples_count": len(samples),
            "average_memory_mb": sum(s.memory_mb for s in samples) / len(samples),
            "peak_memory_mb": max(s.memory_mb for s in samples),
            "average_cpu_percent": sum(s.cpu_percent for s in samples) / len(samples),
        }

    def clear_history(self) -> None:
        """Drop retained samples."""
        with self._lock:
            self.samples.clear()
