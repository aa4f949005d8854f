"""
Core telemetry module for the auto-apply service.

Provides StatsD/DogStatsD reporting of timings, gauges and counters with a
decorator interface for timing sync and async callables. Reporting is a no-op
unless ``settings.metrics_enabled`` is set.
"""

import functools
import random
import socket
import statistics
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar, cast

from autoapply.core.config import settings
from autoapply.log.logging import logger


T = TypeVar('T')


class MetricNames:
    """
    Standardized metric names.

    Dashboards and alerts are keyed on these, so rename with care.
    """

    # Matching
    MATCHING_DURATION = "matching.duration"
    MATCH_SCORE = "matching.match.score"
    MATCH_COUNT = "matching.match.count"
    JOBS_CONSIDERED = "matching.jobs.considered"

    # Auto-apply
    APPLICATION_SUBMITTED = "autoapply.application.submitted"
    APPLICATION_SKIPPED = "autoapply.application.skipped"
    SUBMISSION_DURATION = "autoapply.submission.duration"

    # Batch runs
    RUN_DURATION = "run.duration"
    RUN_OUTCOME = "run.outcome"
    RUN_CANDIDATES = "run.candidates"
    RUN_CANDIDATE_FAILURES = "run.candidate.failures"

    # Offline evaluation
    EVALUATION_DURATION = "evaluation.duration"

    # Stores
    STORE_OPERATION_DURATION = "store.operation.duration"
    STORE_DUPLICATE_REJECTED = "store.application.duplicate_rejected"
    STORE_QUOTA_REJECTED = "store.application.quota_rejected"


class StatsDBackend:
    """
    StatsD metrics backend.

    Sends plain StatsD lines over UDP. Tags are dropped because the plain
    StatsD protocol has no tag support.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 8125, prefix: str = ""):
        self.host = host
        self.port = port
        self.prefix = f"{prefix}." if prefix else ""
        self.socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

    def _send_metric(self, metric_str: str) -> None:
        try:
            self.socket.sendto(metric_str.encode('utf-8'), (self.host, self.port))
        except OSError as e:
            logger.error(
                "Failed to send metric to StatsD server",
                error=str(e),
                host=self.host,
                port=self.port
            )

    def _format_tags(self, tags: Optional[Dict[str, str]]) -> str:
        return ""

    def _emit(self, name: str, value: Any, kind: str, tags: Optional[Dict[str, str]]) -> None:
        self._send_metric(f"{self.prefix}{name}:{value}|{kind}{self._format_tags(tags)}")

    def timing(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        """Report a timing given in seconds; StatsD expects milliseconds."""
        self._emit(name, value * 1000, "ms", tags)

    def gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
        self._emit(name, value, "g", tags)

    def incr(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None) -> None:
        self._emit(name, value, "c", tags)


class DogStatsDBackend(StatsDBackend):
    """StatsD backend with Datadog ``|#key:value`` tag support."""

    def _format_tags(self, tags: Optional[Dict[str, str]]) -> str:
        if not tags:
            return ""
        return "|#" + ",".join(f"{k}:{v}" for k, v in tags.items())


_metrics_backend: Optional[StatsDBackend] = None


def _get_statsd_client() -> Optional[StatsDBackend]:
    """
    Get or initialize the StatsD/DogStatsD client.

    Mocked in tests.
    """
    global _metrics_backend

    if _metrics_backend is None and settings.metrics_enabled:
        backend_cls = DogStatsDBackend if settings.datadog_api_key else StatsDBackend
        _metrics_backend = backend_cls(
            host=settings.metrics_host,
            port=settings.metrics_port,
            prefix=settings.metrics_prefix,
        )
        logger.info(
            "Initialized metrics backend",
            backend=backend_cls.__name__,
            host=settings.metrics_host,
            port=settings.metrics_port
        )

    return _metrics_backend


def _should_sample() -> bool:
    if not settings.metrics_enabled:
        return False
    if settings.metrics_sample_rate >= 1.0:
        return True
    return random.random() < settings.metrics_sample_rate


def report_timing(name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
    """
    Report a timing metric.

    Args:
        name: Metric name
        value: Timing value in seconds
        tags: Optional tags to include with the metric
    """
    if not _should_sample():
        return
    client = _get_statsd_client()
    if client:
        client.timing(name, value, tags)


def report_gauge(name: str, value: float, tags: Optional[Dict[str, str]] = None) -> None:
    if not _should_sample():
        return
    client = _get_statsd_client()
    if client:
        client.gauge(name, value, tags)


def increment_counter(name: str, tags: Optional[Dict[str, str]] = None, value: int = 1) -> None:
    if not _should_sample():
        return
    client = _get_statsd_client()
    if client:
        client.incr(name, value, tags)


def report_statistical_metrics(
    name: str,
    values: List[float],
    tags: Optional[Dict[str, str]] = None
) -> None:
    """
    Report min, max, mean, median, stddev and count gauges for ``values``.

    Each statistic is reported under ``<name>.<stat>``.
    """
    if not _should_sample() or not values:
        return

    report_gauge(f"{name}.min", min(values), tags)
    report_gauge(f"{name}.max", max(values), tags)
    report_gauge(f"{name}.mean", statistics.mean(values), tags)
    report_gauge(f"{name}.median", statistics.median(values), tags)
    report_gauge(f"{name}.stddev", statistics.stdev(values) if len(values) > 1 else 0, tags)
    report_gauge(f"{name}.count", len(values), tags)


def timer(metric_name: str, tags: Optional[Dict[str, str]] = None) -> Callable:
    """
    Decorator to time function execution.

    Example:
        @timer("matching.duration", {"direction": "candidate_to_jobs"})
        def score_all(...):
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            if not settings.metrics_enabled:
                return func(*args, **kwargs)

            start_time = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                report_timing(metric_name, time.perf_counter() - start_time, tags)

        return cast(Callable[..., T], wrapper)
    return decorator


def async_timer(metric_name: str, tags: Optional[Dict[str, str]] = None) -> Callable:
    """Decorator to time async function execution."""
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            if not settings.metrics_enabled:
                return await func(*args, **kwargs)

            start_time = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                report_timing(metric_name, time.perf_counter() - start_time, tags)

        return wrapper
    return decorator
