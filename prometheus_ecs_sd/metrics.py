"""Prometheus metrics for discovery cycles, held in a private registry."""

from __future__ import annotations

import logging

from prometheus_client import (
    CollectorRegistry,
    Counter,
    GCCollector,
    Histogram,
    Info,
    PlatformCollector,
    ProcessCollector,
    start_http_server,
)

from . import __version__
from .exceptions import ConfigError

logger = logging.getLogger(__name__)

NAMESPACE = "prometheus_ecs_sd"
REQUEST_BUCKETS = (0.001, 0.01, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0)


class DiscoveryMetrics:
    """Request latency and failure metrics for the ECS API, plus process metrics."""

    def __init__(self, registry: CollectorRegistry | None = None, process_metrics: bool = True):
        self.registry = registry if registry is not None else CollectorRegistry()

        self.request_duration = Histogram(
            f"{NAMESPACE}_request_duration_seconds",
            "Histogram of latencies for requests to the Alicloud ECS API.",
            buckets=REQUEST_BUCKETS,
            registry=self.registry,
        )
        self.request_failures = Counter(
            f"{NAMESPACE}_request_failures",
            "Total number of failed requests to the Alicloud ECS API.",
            registry=self.registry,
        )
        build_info = Info(f"{NAMESPACE}_build", "Build information.", registry=self.registry)
        build_info.info({"version": __version__})

        if process_metrics:
            ProcessCollector(registry=self.registry)
            PlatformCollector(registry=self.registry)
            GCCollector(registry=self.registry)

    def observe_request(self, seconds: float) -> None:
        self.request_duration.observe(seconds)

    def record_failure(self) -> None:
        self.request_failures.inc()


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split a "host:port" listen address; an empty host binds all interfaces."""
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        raise ConfigError(f"Invalid listen address: {address!r}")
    host = host.strip("[]") or "0.0.0.0"
    return host, int(port)


def start_metrics_server(address: str, metrics: DiscoveryMetrics) -> None:
    """Serve the metrics registry over HTTP on a daemon thread."""
    host, port = parse_listen_address(address)
    start_http_server(port, addr=host, registry=metrics.registry)
    logger.info("Metrics endpoint listening on %s:%d", host, port)
