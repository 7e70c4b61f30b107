"""Data models for discovered ECS instances and the target groups built from them."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class EcsInstance:
    """A single running ECS instance as returned by DescribeInstances."""

    instance_id: str
    name: str = ""
    instance_type: str = ""
    status: str = ""
    region_id: str = ""
    vpc_id: str = ""
    private_ips: tuple[str, ...] = ()
    public_ips: tuple[str, ...] = ()
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def source(self) -> str:
        """Target group source identifier, stable across cycles."""
        return f"ecs/{self.instance_id}"


@dataclass(frozen=True)
class TargetGroup:
    """One discovery unit: a source with zero or one address and a label set."""

    source: str
    targets: tuple[str, ...] = ()
    labels: dict[str, str] = field(default_factory=dict)

    @classmethod
    def tombstone(cls, source: str) -> TargetGroup:
        """A group that retracts a previously published source."""
        return cls(source=source)

    @property
    def is_tombstone(self) -> bool:
        return not self.targets and not self.labels

    def to_dict(self) -> dict:
        return {"targets": list(self.targets), "labels": dict(self.labels)}
