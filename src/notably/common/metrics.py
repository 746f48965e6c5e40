"""
Prometheus metrics instrumentation.

Provides RED metrics (Rate, Errors, Duration) for the store, query and
storage layers. This module is a simple API wrapper around the metrics
registry.

Usage:
    from notably.common.metrics import create_component_metrics

    metrics = create_component_metrics("store")

    metrics.increment("facts_written_total", labels={"kind": "version"})

    with metrics.timer("store_operation_duration_seconds", labels={"operation": "put_fact"}):
        adapter.put_item(item)
"""

import datetime
import time
from contextlib import contextmanager
from typing import Dict, Generator, Optional

from notably.common.metrics_registry import (
    get_counter,
    get_gauge,
    get_histogram,
    initialize_platform_info,
)


class MetricsClient:
    """
    Lightweight wrapper around the Prometheus metrics registry.

    All metrics are pre-registered in metrics_registry.py, so a typo in a
    metric name fails fast with KeyError. A disabled client is a no-op.
    """

    def __init__(self, default_labels: Optional[Dict[str, str]] = None, enabled: bool = True):
        """
        Initialize metrics client.

        Args:
            default_labels: Default labels to apply to all metrics
                (e.g., {"service": "notably", "environment": "local"})
            enabled: When False every call is ignored
        """
        self.default_labels = default_labels or {}
        self.enabled = enabled

    def _merge_labels(self, labels: Optional[Dict[str, str]]) -> Dict[str, str]:
        """Merge provided labels with default labels."""
        merged = self.default_labels.copy()
        if labels:
            merged.update(labels)
        return merged

    def increment(
        self,
        metric_name: str,
        value: int = 1,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """
        Increment a counter metric.

        Args:
            metric_name: Name of the counter (without notably_ prefix)
            value: Amount to increment (default: 1)
            labels: Metric labels (merged with default labels)
        """
        if not self.enabled:
            return
        counter = get_counter(metric_name)
        counter.labels(**self._merge_labels(labels)).inc(value)

    def gauge(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """
        Set a gauge metric to a specific value.

        Args:
            metric_name: Name of the gauge (without notably_ prefix)
            value: Value to set
            labels: Metric labels (merged with default labels)
        """
        if not self.enabled:
            return
        gauge_metric = get_gauge(metric_name)
        gauge_metric.labels(**self._merge_labels(labels)).set(value)

    def histogram(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None,
    ) -> None:
        """
        Record a histogram observation.

        Args:
            metric_name: Name of the histogram (without notably_ prefix)
            value: Observed value (typically duration in seconds)
            labels: Metric labels (merged with default labels)
        """
        if not self.enabled:
            return
        histogram_metric = get_histogram(metric_name)
        histogram_metric.labels(**self._merge_labels(labels)).observe(value)

    @contextmanager
    def timer(
        self,
        metric_name: str,
        labels: Optional[Dict[str, str]] = None,
    ) -> Generator[None, None, None]:
        """
        Context manager for timing operations.

        Records the duration in a histogram metric even if the block raises.
        """
        start_time = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start_time
            self.histogram(metric_name, duration, labels)


def initialize_metrics(version: str, environment: str) -> None:
    """
    Initialize build info metric. Call once at application startup.

    Args:
        version: Package version (e.g., "0.1.0")
        environment: Environment name (e.g., "local", "production")
    """
    deployment = datetime.datetime.now(datetime.timezone.utc).isoformat()
    initialize_platform_info(version, environment, deployment)


def create_component_metrics(
    component: str,
    service: str = "notably",
    environment: Optional[str] = None,
) -> MetricsClient:
    """
    Create a metrics client with default labels for a component.

    Args:
        component: Component name (e.g., "store", "query", "storage")
        service: Service name (default: "notably")
        environment: Environment (defaults to config.environment)

    Returns:
        MetricsClient instance with default labels

    Example:
        metrics = create_component_metrics("store")
        metrics.increment("facts_written_total", labels={"kind": "tombstone"})
        # Results in: notably_facts_written_total{
        #     service="notably", environment="local", component="store", kind="tombstone"
        # }
    """
    from notably.common.config import config

    return MetricsClient(
        default_labels={
            "service": service,
            "environment": environment or config.environment,
            "component": component,
        },
        enabled=config.observability.enable_metrics,
    )
