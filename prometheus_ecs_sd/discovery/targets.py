"""Conversion of ECS instances into Prometheus target groups."""

from __future__ import annotations

import re

from .models import EcsInstance, TargetGroup

META_PREFIX = "__meta_ecs_"

LABEL_INSTANCE_ID = META_PREFIX + "instance_id"
LABEL_INSTANCE_NAME = META_PREFIX + "instance_name"
LABEL_INSTANCE_TYPE = META_PREFIX + "instance_type"
LABEL_PRIVATE_IP = META_PREFIX + "private_ip"
LABEL_PUBLIC_IP = META_PREFIX + "public_ip"
LABEL_STATUS = META_PREFIX + "status"
LABEL_REGION_ID = META_PREFIX + "region_id"
LABEL_VPC_ID = META_PREFIX + "vpc_id"
LABEL_TAG_PREFIX = META_PREFIX + "tag_"

_INVALID_LABEL_CHARS = re.compile(r"[^a-zA-Z0-9_]")


def sanitize_label_name(name: str) -> str:
    """Replace every character that is not valid in a label name with '_'."""
    return _INVALID_LABEL_CHARS.sub("_", name)


def join_host_port(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def build_target(instance: EcsInstance, port: int) -> TargetGroup | None:
    """Build the target group for one instance.

    Returns None when the instance has no private IP: such an instance has
    nothing to scrape and is left out of the published set.
    """
    if not instance.private_ips:
        return None

    private_ip = instance.private_ips[0]
    labels = {
        LABEL_INSTANCE_ID: instance.instance_id,
        LABEL_INSTANCE_NAME: instance.name,
        LABEL_INSTANCE_TYPE: instance.instance_type,
        LABEL_PRIVATE_IP: private_ip,
        LABEL_STATUS: instance.status,
        LABEL_REGION_ID: instance.region_id,
        LABEL_VPC_ID: instance.vpc_id,
    }
    if instance.public_ips:
        labels[LABEL_PUBLIC_IP] = instance.public_ips[0]

    for key, value in instance.tags.items():
        if not key or not value:
            continue
        # Later tags win when two keys sanitize to the same name
        labels[LABEL_TAG_PREFIX + sanitize_label_name(key)] = value

    return TargetGroup(
        source=instance.source,
        targets=(join_host_port(private_ip, port),),
        labels=labels,
    )
