"""Tests for the ECS inventory client."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
from aliyunsdkcore.acs_exception.exceptions import ClientException, ServerException

from prometheus_ecs_sd.config import ECSSDConfig, Filter
from prometheus_ecs_sd.discovery.ecs_client import (
    EcsClient,
    build_request,
    split_tag_filter,
    total_page_count,
)
from prometheus_ecs_sd.exceptions import InventoryAPIError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

DEFAULT_SD_CONFIG = ECSSDConfig(region="cn-hangzhou", access_key="ak", secret_key="sk")


def _raw_instance(
    instance_id="i-abc123",
    private_ips=("10.0.0.1",),
    public_ips=(),
    tags=None,
) -> dict:
    """Build a minimal instance dict as returned by DescribeInstances."""
    return {
        "InstanceId": instance_id,
        "InstanceName": f"web-{instance_id}",
        "InstanceType": "ecs.g6.large",
        "Status": "Running",
        "RegionId": "cn-hangzhou",
        "VpcAttributes": {
            "VpcId": "vpc-001",
            "PrivateIpAddress": {"IpAddress": list(private_ips)},
        },
        "PublicIpAddress": {"IpAddress": list(public_ips)},
        "Tags": {"Tag": tags if tags is not None else [{"TagKey": "env", "TagValue": "prod"}]},
    }


def _page_body(total_count: int, instances: list[dict]) -> bytes:
    return json.dumps({
        "TotalCount": total_count,
        "PageNumber": 1,
        "PageSize": 100,
        "Instances": {"Instance": instances},
    }).encode()


def _page_of(request) -> int:
    return int(request.get_query_params()["PageNumber"])


def _paged_api(total_count: int, fail_on_page: int | None = None):
    """Fake do_action_with_exception serving total_count instances, 100 per page."""
    requested: list[int] = []

    def _do_action(request):
        page = _page_of(request)
        requested.append(page)
        if page == fail_on_page:
            raise ServerException("Throttling", "Request was denied due to flow control.", 400, "req-1")
        start = (page - 1) * 100
        count = max(0, min(100, total_count - start))
        return _page_body(total_count, [_raw_instance(f"i-{start + n}") for n in range(count)])

    return _do_action, requested


def _make_client(acs_mock, sd_config=DEFAULT_SD_CONFIG) -> EcsClient:
    with patch("prometheus_ecs_sd.discovery.ecs_client.AcsClient") as MockAcs:
        MockAcs.return_value = acs_mock
        client = EcsClient(sd_config)
    return client


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestPagination:
    def test_250_records_take_three_requests(self):
        acs = MagicMock()
        acs.do_action_with_exception.side_effect, requested = _paged_api(250)

        instances = _make_client(acs).list_instances()

        assert requested == [1, 2, 3]
        assert len(instances) == 250
        assert len({inst.instance_id for inst in instances}) == 250

    def test_200_records_take_two_requests(self):
        acs = MagicMock()
        acs.do_action_with_exception.side_effect, requested = _paged_api(200)

        instances = _make_client(acs).list_instances()

        assert requested == [1, 2]
        assert len(instances) == 200

    def test_no_records_single_request(self):
        acs = MagicMock()
        acs.do_action_with_exception.side_effect, requested = _paged_api(0)

        assert _make_client(acs).list_instances() == []
        assert requested == [1]

    def test_failure_on_later_page_discards_partial_results(self):
        acs = MagicMock()
        acs.do_action_with_exception.side_effect, requested = _paged_api(250, fail_on_page=2)

        with pytest.raises(InventoryAPIError) as excinfo:
            _make_client(acs).list_instances()

        assert requested == [1, 2]
        assert excinfo.value.code == "Throttling"
        assert excinfo.value.request_id == "req-1"

    def test_failure_on_first_page(self):
        acs = MagicMock()
        acs.do_action_with_exception.side_effect = ClientException("SDK.HttpError", "connection reset")

        with pytest.raises(InventoryAPIError, match="SDK.HttpError"):
            _make_client(acs).list_instances()

    def test_invalid_json_body(self):
        acs = MagicMock()
        acs.do_action_with_exception.return_value = b"<html>bad gateway</html>"

        with pytest.raises(InventoryAPIError, match="invalid JSON"):
            _make_client(acs).list_instances()

    @pytest.mark.parametrize("body", [
        {"TotalCount": None, "Instances": {"Instance": []}},
        {"TotalCount": "many", "Instances": {"Instance": []}},
        {"Instances": {"Instance": []}},
        {"TotalCount": 1, "Instances": []},
        {"TotalCount": 1, "Instances": {"Instance": ["i-1"]}},
        {"TotalCount": 1, "Instances": {"Instance": [{"InstanceId": "i-1", "Tags": {"Tag": ["env"]}}]}},
        {"TotalCount": 1, "Instances": {"Instance": [{"InstanceId": "i-1", "VpcAttributes": "vpc-1"}]}},
    ])
    def test_malformed_body_raises_api_error(self, body):
        acs = MagicMock()
        acs.do_action_with_exception.return_value = json.dumps(body).encode()

        with pytest.raises(InventoryAPIError):
            _make_client(acs).list_instances()

    def test_malformed_later_page_raises_api_error(self):
        acs = MagicMock()
        acs.do_action_with_exception.side_effect = [
            _page_body(150, [_raw_instance(f"i-{n}") for n in range(100)]),
            json.dumps({"TotalCount": 150, "Instances": {"Instance": [42]}}).encode(),
        ]

        with pytest.raises(InventoryAPIError, match="page 2"):
            _make_client(acs).list_instances()

    def test_total_page_count(self):
        assert total_page_count(0, 100) == 0
        assert total_page_count(1, 100) == 1
        assert total_page_count(100, 100) == 1
        assert total_page_count(101, 100) == 2


class TestInstanceParsing:
    def test_fields_parsed(self):
        acs = MagicMock()
        acs.do_action_with_exception.return_value = _page_body(1, [
            _raw_instance(
                "i-001",
                private_ips=("10.0.0.5", "10.0.0.6"),
                public_ips=("47.0.0.1",),
                tags=[
                    {"TagKey": "env", "TagValue": "prod"},
                    {"TagKey": "team", "TagValue": "infra"},
                ],
            )
        ])

        inst = _make_client(acs).list_instances()[0]

        assert inst.instance_id == "i-001"
        assert inst.name == "web-i-001"
        assert inst.instance_type == "ecs.g6.large"
        assert inst.status == "Running"
        assert inst.region_id == "cn-hangzhou"
        assert inst.vpc_id == "vpc-001"
        assert inst.private_ips == ("10.0.0.5", "10.0.0.6")
        assert inst.public_ips == ("47.0.0.1",)
        assert inst.tags == {"env": "prod", "team": "infra"}
        assert inst.source == "ecs/i-001"

    def test_missing_optional_sections(self):
        acs = MagicMock()
        acs.do_action_with_exception.return_value = _page_body(1, [{"InstanceId": "i-bare"}])

        inst = _make_client(acs).list_instances()[0]

        assert inst.private_ips == ()
        assert inst.public_ips == ()
        assert inst.tags == {}
        assert inst.vpc_id == ""


class TestRequestFilters:
    def test_defaults(self):
        params = build_request(1, 100, []).get_query_params()
        assert params["Status"] == "Running"
        assert params["InstanceNetworkType"] == "vpc"
        assert int(params["PageNumber"]) == 1
        assert int(params["PageSize"]) == 100

    def test_status_filter_overrides_default(self):
        params = build_request(1, 100, [Filter("Status", "Stopped")]).get_query_params()
        assert params["Status"] == "Stopped"

    def test_instance_ids_and_name(self):
        filters = [
            Filter("InstanceIds", '["i-1","i-2"]'),
            Filter("InstanceName", "web-*"),
        ]
        params = build_request(1, 100, filters).get_query_params()
        assert params["InstanceIds"] == '["i-1","i-2"]'
        assert params["InstanceName"] == "web-*"

    def test_tag_filter_becomes_indexed_params(self):
        params = build_request(1, 100, [Filter("Tag", "env:prod,bad,team:infra")]).get_query_params()
        assert params["Tag.1.Key"] == "env"
        assert params["Tag.1.Value"] == "prod"
        assert params["Tag.2.Key"] == "team"
        assert params["Tag.2.Value"] == "infra"
        assert "Tag.3.Key" not in params

    def test_unknown_filter_ignored(self):
        params = build_request(1, 100, [Filter("ZoneId", "cn-hangzhou-b")]).get_query_params()
        assert "ZoneId" not in params

    def test_configured_filters_used_by_default(self):
        acs = MagicMock()
        acs.do_action_with_exception.return_value = _page_body(0, [])
        sd = ECSSDConfig(access_key="ak", secret_key="sk", filters=[Filter("Status", "Stopped")])

        _make_client(acs, sd).list_instances()

        request = acs.do_action_with_exception.call_args[0][0]
        assert request.get_query_params()["Status"] == "Stopped"

    def test_credentials_passed_to_sdk(self):
        with patch("prometheus_ecs_sd.discovery.ecs_client.AcsClient") as MockAcs:
            EcsClient(DEFAULT_SD_CONFIG)
            MockAcs.assert_called_once_with("ak", "sk", "cn-hangzhou")


class TestSplitTagFilter:
    def test_pairs_in_order(self):
        assert split_tag_filter("k1:v1,k2:v2") == [("k1", "v1"), ("k2", "v2")]

    def test_single_pair(self):
        assert split_tag_filter("env:prod") == [("env", "prod")]

    def test_malformed_segments_dropped(self):
        assert split_tag_filter("a:1,nocolon,b:2:3,c:3") == [("a", "1"), ("c", "3")]

    def test_all_malformed(self):
        assert split_tag_filter("justtext") == []

    def test_empty_parts_kept_when_one_colon(self):
        assert split_tag_filter("env:") == [("env", "")]
