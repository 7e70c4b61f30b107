"""ECS discovery package: inventory client Protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from ..config import Filter
    from .models import EcsInstance


@runtime_checkable
class InventoryClient(Protocol):
    """Protocol that every inventory client driven by the discoverer must satisfy."""

    def list_instances(self, filters: Sequence[Filter] | None = None) -> list[EcsInstance]:
        """Return every instance matching the filters, or raise InventoryAPIError."""
        ...
