from __future__ import annotations

import base64
from typing import Any, Callable

import httpx
import pytest
from ecs_image_builder.cloud import (
    CreateInstanceRequest,
    CreateSnapshotRequest,
    DiskMapping,
    EcsRpcClient,
    IOOptimized,
    PermanentCloudError,
    TransientConflictError,
)
from ecs_image_builder.cloud.rpc import RpcTransportError, create_instance_params, sign_params
from ecs_image_builder.core import AccessConfig

Handler = Callable[[httpx.Request], httpx.Response]


def _client(handler: Handler, *, token: str | None = None) -> EcsRpcClient:
    http = httpx.Client(transport=httpx.MockTransport(handler))
    access = AccessConfig(
        access_key="testid", secret_key="testsecret", region="cn-hangzhou", security_token=token
    )
    return EcsRpcClient(access=access, http=http, max_attempts=3, sleep=lambda _: None)


def _params(request: httpx.Request) -> dict[str, str]:
    return dict(request.url.params)


def test_sign_params_matches_published_example() -> None:
    # Worked example from the ECS signature documentation.
    params = {
        "Format": "XML",
        "AccessKeyId": "testid",
        "Action": "DescribeRegions",
        "SignatureMethod": "HMAC-SHA1",
        "SignatureNonce": "3ee8c1b8-83d3-44af-a94f-4e0ad82fd6cf",
        "Version": "2014-05-26",
        "SignatureVersion": "1.0",
        "Timestamp": "2016-02-23T12:46:24Z",
    }

    assert sign_params(params, "testsecret") == "OLeaidS1JvxuMvnyHOwuJ+uX5qY="


def test_requests_are_signed() -> None:
    seen: list[dict[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(_params(request))
        return httpx.Response(200, json={"Regions": {"Region": [{"RegionId": "cn-hangzhou"}]}})

    with _client(handler, token="sts-token") as c:
        regions = c.describe_regions()

    assert [r.region_id for r in regions] == ["cn-hangzhou"]
    q = seen[0]
    assert q["Action"] == "DescribeRegions"
    assert q["Version"] == "2014-05-26"
    assert q["SecurityToken"] == "sts-token"
    signature = q.pop("Signature")
    assert signature == sign_params(q, "testsecret")


def test_server_errors_are_retried_then_succeed() -> None:
    statuses = iter([503, 500, 200])

    def handler(request: httpx.Request) -> httpx.Response:
        status = next(statuses)
        if status != 200:
            return httpx.Response(status, json={"Code": "ServiceUnavailable", "Message": "busy"})
        return httpx.Response(200, json={"InstanceId": "i-123"})

    req = CreateInstanceRequest(
        client_token="tok",
        region_id="cn-hangzhou",
        instance_type="ecs.n1.tiny",
        image_id="ubuntu",
    )
    with _client(handler) as c:
        assert c.create_instance(req) == "i-123"


def test_throttling_exhausts_retries_as_transient_error() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(400, json={"Code": "Throttling.User", "Message": "slow down"})

    with _client(handler) as c, pytest.raises(TransientConflictError) as ei:
        c.describe_regions()

    assert calls == 3
    assert ei.value.code == "Throttling.User"


def test_state_conflicts_are_not_retried_by_the_transport() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(
            403,
            json={
                "Code": "IncorrectInstanceStatus.Initializing",
                "Message": "initializing",
                "RequestId": "req-1",
            },
        )

    with _client(handler) as c, pytest.raises(TransientConflictError) as ei:
        c.delete_instance("cn-hangzhou", "i-1")

    assert calls == 1
    assert ei.value.request_id == "req-1"
    assert ei.value.action == "DeleteInstance"


def test_permanent_errors_raise() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"Code": "InvalidParameter", "Message": "bad"})

    with _client(handler) as c, pytest.raises(PermanentCloudError):
        c.describe_images("cn-hangzhou", name="img")


def test_not_found_on_describe_is_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            404, json={"Code": "InvalidInstanceId.NotFound", "Message": "not found"}
        )

    with _client(handler) as c:
        assert c.describe_instance("cn-hangzhou", "i-1") is None


def test_transport_failures_surface_after_retries() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with _client(handler) as c, pytest.raises(RpcTransportError) as ei:
        c.describe_regions()

    assert ei.value.attempts == 3


def test_describe_image_parses_nested_lists() -> None:
    payload: dict[str, Any] = {
        "Images": {
            "Image": [
                {
                    "ImageId": "m-1",
                    "Status": "Creating",
                    "Progress": "42%",
                    "DiskDeviceMappings": {
                        "DiskDeviceMapping": [{"SnapshotId": "s-1"}, {"SnapshotId": "s-2"}]
                    },
                }
            ]
        }
    }

    def handler(request: httpx.Request) -> httpx.Response:
        assert _params(request)["ImageId"] == "m-1"
        return httpx.Response(200, json=payload)

    with _client(handler) as c:
        image = c.describe_image("cn-hangzhou", "m-1")

    assert image is not None
    assert image.progress == "42%"
    assert image.snapshot_ids == ["s-1", "s-2"]
    assert image.region_id == "cn-hangzhou"


def test_create_instance_params() -> None:
    req = CreateInstanceRequest(
        client_token="tok",
        region_id="cn-hangzhou",
        instance_type="ecs.n1.tiny",
        image_id="ubuntu",
        vswitch_id="vsw-1",
        user_data="#!/bin/sh\necho hi\n",
        io_optimized=IOOptimized.OPTIMIZED,
        system_disk=DiskMapping(disk_category="cloud_ssd", disk_size=40),
        data_disks=[DiskMapping(disk_size=100, delete_with_instance=False)],
    )

    p = create_instance_params(req)

    assert p["VSwitchId"] == "vsw-1"
    assert p["IoOptimized"] == "optimized"
    assert base64.b64decode(p["UserData"]).decode("utf-8") == "#!/bin/sh\necho hi\n"
    assert p["SystemDisk.Category"] == "cloud_ssd"
    assert p["SystemDisk.Size"] == "40"
    assert p["DataDisk.1.Size"] == "100"
    assert p["DataDisk.1.DeleteWithInstance"] == "false"
    assert "InternetChargeType" not in p


@pytest.mark.parametrize(
    "describe,code",
    [
        (lambda c: c.describe_eip("cn-hangzhou", "eip-1"), "InvalidAllocationId.NotFound"),
        (lambda c: c.describe_vpc("cn-hangzhou", "vpc-1"), "InvalidVpcId.NotFound"),
        (lambda c: c.describe_vswitch("cn-hangzhou", "vsw-1"), "InvalidVSwitchId.NotFound"),
    ],
)
def test_network_describes_treat_not_found_as_none(describe, code: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"Code": code, "Message": "not found"})

    with _client(handler) as c:
        assert describe(c) is None


def test_system_disk_snapshot_calls() -> None:
    seen: list[dict[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        params = _params(request)
        seen.append(params)
        if params["Action"] == "DescribeDisks":
            return httpx.Response(
                200,
                json={
                    "Disks": {
                        "Disk": [
                            {
                                "DiskId": "d-1",
                                "Status": "In_use",
                                "InstanceId": "i-1",
                                "Type": "system",
                            }
                        ]
                    }
                },
            )
        return httpx.Response(200, json={"SnapshotId": "s-1"})

    with _client(handler) as c:
        disks = c.describe_instance_disks("cn-hangzhou", "i-1", disk_type="system")
        snapshot_id = c.create_snapshot(
            CreateSnapshotRequest(client_token="tok", region_id="cn-hangzhou", disk_id="d-1")
        )

    assert [(d.disk_id, d.type) for d in disks] == [("d-1", "system")]
    assert snapshot_id == "s-1"
    assert seen[0]["InstanceId"] == "i-1"
    assert seen[0]["DiskType"] == "system"
    assert seen[1]["DiskId"] == "d-1"
    assert seen[1]["ClientToken"] == "tok"


def test_request_timeout_is_applied_to_owned_client() -> None:
    access = AccessConfig(access_key="a", secret_key="s", region="cn-hangzhou")

    with EcsRpcClient(access=access, request_timeout_s=3.5) as c:
        assert c._http.timeout.read == 3.5
        assert c._http.timeout.connect == 5.0
