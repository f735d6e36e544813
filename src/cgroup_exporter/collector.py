"""Prometheus collector implementation using composition pattern.

Provides a reusable collector that separates data fetching from metric
generation and adds scrape metadata (duration and error count).
"""

import time
from collections.abc import Callable, Iterator
from typing import Generic, TypeAlias, TypeVar

import structlog
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily
from prometheus_client.metrics_core import Metric
from prometheus_client.registry import Collector

logger = structlog.get_logger(__name__)

T = TypeVar("T")


Fetcher: TypeAlias = Callable[[], list[T]]
MetricsGenerator: TypeAlias = Callable[[list[T]], Iterator[Metric]]


class CgroupCollector(Collector, Generic[T]):
    """Prometheus collector for cgroup metrics using composition pattern.

    Separates concerns through dependency injection:
    - Data fetching (via Fetcher function with injected dependencies)
    - Metric generation (via MetricsGenerator function)
    - Scrape timing and error accounting (managed internally)

    Every scrape runs the fetcher; samples are never reused between scrapes.
    """

    def __init__(
        self,
        fetcher: Fetcher[T],
        generator: MetricsGenerator[T],
        scraper_description: str,
        metric_prefix: str = "cgroup_exporter",
    ):
        """Initialize the cgroup collector.

        Args:
            fetcher: Function that returns the samples of one pass (with
                dependencies pre-injected).
            generator: Function that generates Prometheus metrics from samples.
            scraper_description: Description of the scraped source for
                metric help and logging (e.g., the cgroup mountpoint).
            metric_prefix: Prefix for the scrape metadata metric names.
        """
        self._fetcher = fetcher
        self._generator = generator
        self._metric_prefix = metric_prefix
        self._scraper_desc = scraper_description

        # Track errors manually (no global Counter registration)
        self._error_count = 0

    def fetch_metrics(self) -> tuple[list[T], float]:
        """Run the fetcher and time it.

        Returns:
            Tuple of (data, fetch_duration) with the duration in seconds.
        """
        start = time.time()
        data = self._fetcher()
        duration = time.time() - start
        logger.debug("Fetched fresh data", duration_seconds=round(duration, 3))
        return data, duration

    def collect(self) -> Iterator[Metric]:
        """Collect metrics for Prometheus scrape.

        Called by Prometheus client during each scrape. Yields scrape metadata
        (duration and error count) followed by domain-specific metrics from the
        configured generator function.

        Yields:
            Prometheus Metric objects (metadata + domain metrics).
        """
        data: list[T] | None = None
        try:
            data, duration_value = self.fetch_metrics()
        except Exception:
            logger.exception(
                "Failed to fetch metrics for collection",
                source=self._scraper_desc,
            )
            self._error_count += 1
            duration_value = -1.0

        # Scrape duration metric (-1 indicates error)
        scrape_duration = GaugeMetricFamily(
            f"{self._metric_prefix}_scrape_duration_seconds",
            f"scrape duration from {self._scraper_desc} in seconds, "
            f"-1 indicates error",
        )
        scrape_duration.add_metric([], duration_value)
        yield scrape_duration

        # Error counter metric
        error_counter = CounterMetricFamily(
            f"{self._metric_prefix}_scrape_error",
            f"{self._scraper_desc} scrape errors",
        )
        error_counter.add_metric([], self._error_count)
        yield error_counter

        # Generate metrics from data using the injected generator (skip if error)
        if data is not None:
            yield from self._generator(data)
