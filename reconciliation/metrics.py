"""Prometheus gauges for the committed size of each named test set."""

from __future__ import annotations

import logging

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Gauge, generate_latest

from backend.db.enums import TestSetName

logger = logging.getLogger(__name__)


class PrometheusMetricsSink:
    """Metrics sink exposing `progress_total_tests` and `progress_passing_tests`."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self._registry = registry if registry is not None else CollectorRegistry()
        self._gauges = {
            TestSetName.TOTAL: Gauge(
                "progress_total_tests",
                "The total number of tests",
                registry=self._registry,
            ),
            TestSetName.PASSING: Gauge(
                "progress_passing_tests",
                "The number of passing tests",
                registry=self._registry,
            ),
        }

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def publish(self, set_name: TestSetName, count: int) -> None:
        self._gauges[set_name].set(float(count))
        logger.debug("Published %s test count %d", set_name.value, count)

    def value(self, set_name: TestSetName) -> float:
        """Current gauge value for set_name."""
        sample = self._registry.get_sample_value(f"progress_{set_name.value}_tests")
        return 0.0 if sample is None else sample

    def render(self) -> bytes:
        """Prometheus text exposition of the sink's registry."""
        return generate_latest(self._registry)
