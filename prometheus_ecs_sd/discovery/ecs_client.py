"""Alibaba Cloud SDK client for listing running ECS instances."""

from __future__ import annotations

import json
import logging
import math
from typing import Any, Sequence

from aliyunsdkcore.acs_exception.exceptions import ClientException, ServerException
from aliyunsdkcore.client import AcsClient
from aliyunsdkecs.request.v20140526.DescribeInstancesRequest import DescribeInstancesRequest

from ..config import ECSSDConfig, Filter
from ..exceptions import InventoryAPIError
from .models import EcsInstance

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
DEFAULT_STATUS = "Running"
DEFAULT_NETWORK_TYPE = "vpc"


class EcsClient:
    """Enumerates ECS instances page by page, applying the configured filters."""

    def __init__(self, sd_config: ECSSDConfig):
        self._config = sd_config
        self._acs = AcsClient(sd_config.access_key, sd_config.secret_key, sd_config.region)

    def list_instances(self, filters: Sequence[Filter] | None = None) -> list[EcsInstance]:
        """Fetch every page and return the aggregated instances.

        Fails fast: an error on any page raises InventoryAPIError and the pages
        already fetched are discarded.
        """
        if filters is None:
            filters = self._config.filters

        first = self._describe_page(1, filters)
        # A missing count must not read as zero instances, which would retract every target
        try:
            total_pages = total_page_count(int(first["TotalCount"]), PAGE_SIZE)
        except (KeyError, TypeError, ValueError) as exc:
            raise InventoryAPIError(
                f"DescribeInstances returned an invalid TotalCount: {first.get('TotalCount')!r}"
            ) from exc

        instances = _parse_page(1, first)
        for page in range(2, total_pages + 1):
            logger.debug("Fetching page", extra={"page": page, "total_pages": total_pages})
            instances.extend(_parse_page(page, self._describe_page(page, filters)))

        logger.debug("Listed %d instances over %d pages", len(instances), max(total_pages, 1))
        return instances

    def _describe_page(self, page: int, filters: Sequence[Filter]) -> dict[str, Any]:
        request = build_request(page, PAGE_SIZE, filters)
        try:
            body = self._acs.do_action_with_exception(request)
        except ServerException as exc:
            raise InventoryAPIError(
                f"DescribeInstances page {page} failed: {exc.get_error_code()}: {exc.get_error_msg()}",
                code=exc.get_error_code(),
                request_id=exc.get_request_id(),
            ) from exc
        except ClientException as exc:
            raise InventoryAPIError(
                f"DescribeInstances page {page} failed: {exc.get_error_code()}: {exc.get_error_msg()}",
                code=exc.get_error_code(),
            ) from exc

        try:
            response = json.loads(body)
        except (TypeError, ValueError) as exc:
            raise InventoryAPIError(f"DescribeInstances page {page} returned invalid JSON") from exc
        if not isinstance(response, dict):
            raise InventoryAPIError(f"DescribeInstances page {page} returned an unexpected body")
        return response


def build_request(page: int, page_size: int, filters: Sequence[Filter]) -> DescribeInstancesRequest:
    """Build a DescribeInstances request for one page, defaults overridden by filters."""
    request = DescribeInstancesRequest()
    request.set_accept_format("json")
    request.set_protocol_type("https")
    request.set_Status(DEFAULT_STATUS)
    request.set_InstanceNetworkType(DEFAULT_NETWORK_TYPE)
    request.set_PageNumber(page)
    request.set_PageSize(page_size)

    for f in filters:
        if f.name == "InstanceIds":
            request.set_InstanceIds(f.value)
        elif f.name == "Status":
            request.set_Status(f.value)
        elif f.name == "Tag":
            for index, (key, value) in enumerate(split_tag_filter(f.value), start=1):
                request.add_query_param(f"Tag.{index}.Key", key)
                request.add_query_param(f"Tag.{index}.Value", value)
        elif f.name == "InstanceName":
            request.set_InstanceName(f.value)
        else:
            logger.debug("Ignoring unsupported filter %s", f.name)
    return request


def split_tag_filter(value: str) -> list[tuple[str, str]]:
    """Decompose "k1:v1,k2:v2" into key/value pairs, dropping malformed segments."""
    pairs: list[tuple[str, str]] = []
    for segment in value.split(","):
        parts = segment.split(":")
        if len(parts) != 2:
            logger.debug("Skipping malformed tag filter segment %r", segment)
            continue
        pairs.append((parts[0], parts[1]))
    return pairs


def total_page_count(total_count: int, page_size: int) -> int:
    return math.ceil(total_count / page_size)


def _parse_page(page: int, response: dict[str, Any]) -> list[EcsInstance]:
    """Parse one page of instances; a malformed body raises InventoryAPIError."""
    container = response.get("Instances")
    if container is None:
        container = {}
    raw_instances = container.get("Instance") if isinstance(container, dict) else None
    if raw_instances is None and isinstance(container, dict):
        raw_instances = []
    if not isinstance(raw_instances, list):
        raise InventoryAPIError(f"DescribeInstances page {page} returned a malformed instance list")
    try:
        return [_parse_instance(raw) for raw in raw_instances]
    except (TypeError, ValueError, AttributeError, KeyError) as exc:
        raise InventoryAPIError(f"DescribeInstances page {page} returned a malformed instance list") from exc


def _parse_instance(raw: dict[str, Any]) -> EcsInstance:
    """Parse a raw DescribeInstances entry into an EcsInstance."""
    vpc = raw.get("VpcAttributes") or {}
    private_ips = (vpc.get("PrivateIpAddress") or {}).get("IpAddress") or []
    public_ips = (raw.get("PublicIpAddress") or {}).get("IpAddress") or []

    tags: dict[str, str] = {}
    for tag in (raw.get("Tags") or {}).get("Tag") or []:
        tags[tag.get("TagKey", "")] = tag.get("TagValue", "")

    return EcsInstance(
        instance_id=raw.get("InstanceId", ""),
        name=raw.get("InstanceName", ""),
        instance_type=raw.get("InstanceType", ""),
        status=raw.get("Status", ""),
        region_id=raw.get("RegionId", ""),
        vpc_id=vpc.get("VpcId", ""),
        private_ips=tuple(private_ips),
        public_ips=tuple(public_ips),
        tags=tags,
    )
