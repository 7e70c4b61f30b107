"""Daemon wiring: discovery loop, file_sd writer thread, metrics endpoint and signals."""

from __future__ import annotations

import logging
import signal
import threading
from types import FrameType

from .config import AppConfig
from .discovery.discoverer import EcsDiscoverer
from .discovery.ecs_client import EcsClient
from .file_sd import Adapter, FileSDWriter
from .metrics import DiscoveryMetrics, start_metrics_server

logger = logging.getLogger(__name__)


class Daemon:
    """Refreshes ECS targets on an interval and publishes them to the file_sd output."""

    def __init__(self, config: AppConfig, metrics: DiscoveryMetrics | None = None):
        self._config = config
        self._stop = threading.Event()
        self._metrics = metrics if metrics is not None else DiscoveryMetrics()
        sd = config.ecs_sd_config
        self._discoverer = EcsDiscoverer(
            client=EcsClient(sd),
            metrics=self._metrics,
            port=sd.port,
            refresh_interval=sd.refresh_interval,
            filters=sd.filters,
        )
        self._writer = FileSDWriter(config.output.file)

    def run_once(self) -> bool:
        """Execute a single discovery cycle and write the output synchronously."""
        batch = self._discoverer.refresh()
        if batch is None:
            return False
        self._writer.apply(batch)
        return True

    def run(self) -> None:
        """Run until a shutdown signal."""
        self._install_signal_handlers()
        start_metrics_server(self._config.web.listen_address, self._metrics)

        adapter = Adapter(self._writer, self._stop, self._config.output.queue_size)
        adapter.start()

        logger.info(
            "Daemon started, refreshing every %.0fs",
            self._config.ecs_sd_config.refresh_interval,
            extra={"path": str(self._writer.path)},
        )
        self._discoverer.run(self._stop, adapter.submit)
        adapter.join()
        logger.info("Daemon stopped")

    def stop(self) -> None:
        self._stop.set()

    def _install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._handle_shutdown)
        signal.signal(signal.SIGINT, self._handle_shutdown)

    def _handle_shutdown(self, signum: int, frame: FrameType | None) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received %s, shutting down", sig_name)
        self._stop.set()
