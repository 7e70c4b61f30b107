"""Discovery loop: periodic refresh, snapshot diffing and tombstones for removed instances."""

from __future__ import annotations

import enum
import logging
import threading
import time
from typing import Callable, Sequence

from ..config import Filter
from ..exceptions import InventoryAPIError
from ..metrics import DiscoveryMetrics
from . import InventoryClient
from .models import TargetGroup
from .targets import build_target

logger = logging.getLogger(__name__)


class LoopState(enum.Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"
    TERMINATED = "terminated"


class EcsDiscoverer:
    """Turns the ECS inventory into target group batches, one batch per cycle.

    The discoverer exclusively owns the snapshot of sources published by the
    last successful cycle. A failed cycle emits nothing and leaves it as is.
    """

    def __init__(
        self,
        client: InventoryClient,
        metrics: DiscoveryMetrics,
        port: int,
        refresh_interval: float,
        filters: Sequence[Filter] = (),
    ):
        self._client = client
        self._metrics = metrics
        self._port = port
        self._refresh_interval = refresh_interval
        self._filters = list(filters)
        self._snapshot: frozenset[str] = frozenset()
        self._state = LoopState.IDLE

    @property
    def snapshot(self) -> frozenset[str]:
        return self._snapshot

    @property
    def state(self) -> LoopState:
        return self._state

    def refresh(self) -> list[TargetGroup] | None:
        """Run one discovery cycle.

        Returns the full batch (live groups followed by tombstones), or None
        when the inventory call failed.
        """
        start = time.monotonic()
        try:
            instances = self._client.list_instances(self._filters)
        except InventoryAPIError as exc:
            self._metrics.observe_request(time.monotonic() - start)
            self._metrics.record_failure()
            logger.error("Listing ECS instances failed: %s", exc)
            return None
        elapsed = time.monotonic() - start
        self._metrics.observe_request(elapsed)
        logger.debug(
            "Listed ECS instances",
            extra={"instances": len(instances), "elapsed_seconds": round(elapsed, 3)},
        )

        batch: list[TargetGroup] = []
        current: set[str] = set()
        for instance in instances:
            group = build_target(instance, self._port)
            if group is None:
                logger.warning("ECS instance %s has no private IP, skipping", instance.instance_id)
                continue
            logger.debug("Server added", extra={"source": group.source})
            current.add(group.source)
            batch.append(group)

        removed = sorted(self._snapshot - current)
        for source in removed:
            logger.debug("Server deleted", extra={"source": source})
            batch.append(TargetGroup.tombstone(source))

        self._snapshot = frozenset(current)

        logger.info(
            "Refresh complete",
            extra={"targets": len(current), "tombstones": len(removed)},
        )
        return batch

    def run(self, stop: threading.Event, emit: Callable[[list[TargetGroup]], None]) -> None:
        """Refresh every interval until stop is set.

        The first cycle starts immediately. Stop is only observed between
        cycles; a cycle in flight always completes. A cycle that overruns the
        interval leaves at most one tick pending, so the next one starts right
        away and cycles never overlap.
        """
        deadline = time.monotonic()
        while self._state is not LoopState.TERMINATED:
            self._state = LoopState.REFRESHING
            try:
                batch = self.refresh()
            except Exception:
                self._metrics.record_failure()
                logger.exception("Refresh failed unexpectedly")
                batch = None
            if batch is not None:
                emit(batch)
            self._state = LoopState.IDLE

            now = time.monotonic()
            deadline = max(deadline + self._refresh_interval, now)
            if stop.wait(deadline - now):
                self._state = LoopState.TERMINATED

        logger.info("Discovery loop stopped")
