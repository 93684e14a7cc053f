from __future__ import annotations

import base64
import hashlib
import hmac
import json
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, TypeVar
from urllib.parse import quote

import httpx
import structlog
from ecs_image_builder.core.config import DEFAULT_ENDPOINT, AccessConfig
from ecs_image_builder.core.errors import BuilderError
from pydantic import BaseModel
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import CloudApiError, ErrorKind, classify_error_code, cloud_error
from .models import (
    ALL_IMAGE_STATUSES,
    CopyImageRequest,
    CreateImageRequest,
    CreateInstanceRequest,
    CreateSnapshotRequest,
    Disk,
    DiskMapping,
    EipAddress,
    Image,
    Instance,
    Region,
    Snapshot,
    Vpc,
    VSwitch,
)

API_VERSION = "2014-05-26"
USER_AGENT = "ecs-image-builder/0.1"

_RETRYABLE_STATUSES: set[int] = {500, 502, 503, 504}

log = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


class RpcTransportError(BuilderError):
    def __init__(self, *, action: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(
            f"ECS {action} failed after {attempts} attempt(s): {last_error}"
        )
        self.action = action
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True, slots=True)
class _RetryableRpc(Exception):
    error: CloudApiError


def percent_encode(value: object) -> str:
    return quote(str(value), safe="~")


def sign_params(params: Mapping[str, str], secret: str, *, method: str = "GET") -> str:
    """
    ECS RPC signature v1.0 (HMAC-SHA1 over the canonicalized query string).
    """
    canonical = "&".join(
        f"{percent_encode(k)}={percent_encode(v)}" for k, v in sorted(params.items())
    )
    string_to_sign = f"{method}&{percent_encode('/')}&{percent_encode(canonical)}"
    digest = hmac.new(
        f"{secret}&".encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha1
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _bool(v: bool) -> str:
    return "true" if v else "false"


def _id_list(*ids: str) -> str:
    return json.dumps(list(ids))


def _disk_params(prefix: str, disk: DiskMapping) -> dict[str, str]:
    out: dict[str, str] = {}
    fields = {
        "DiskName": disk.disk_name,
        "Category": disk.disk_category,
        "Size": disk.disk_size,
        "SnapshotId": disk.snapshot_id,
        "Description": disk.description,
        "Device": disk.device,
    }
    for k, v in fields.items():
        if v not in (None, "", 0):
            out[f"{prefix}.{k}"] = str(v)
    return out


def create_instance_params(req: CreateInstanceRequest) -> dict[str, str]:
    params: dict[str, Any] = {
        "ClientToken": req.client_token,
        "RegionId": req.region_id,
        "InstanceType": req.instance_type,
        "ImageId": req.image_id,
        "SecurityGroupId": req.security_group_id,
        "InstanceName": req.instance_name,
        "ZoneId": req.zone_id,
        "VSwitchId": req.vswitch_id,
        "InternetChargeType": req.internet_charge_type,
        "InternetMaxBandwidthOut": req.internet_max_bandwidth_out,
        "IoOptimized": req.io_optimized.value,
        "Password": req.password,
    }
    if req.user_data:
        params["UserData"] = base64.b64encode(req.user_data.encode("utf-8")).decode(
            "ascii"
        )

    out = {k: str(v) for k, v in params.items() if v not in (None, "")}
    out.update(_disk_params("SystemDisk", req.system_disk))
    for n, disk in enumerate(req.data_disks, start=1):
        out.update(_disk_params(f"DataDisk.{n}", disk))
        out[f"DataDisk.{n}.DeleteWithInstance"] = _bool(disk.delete_with_instance)
    return out


def _items(payload: Mapping[str, Any], outer: str, inner: str, model: type[M]) -> list[M]:
    raw = (payload.get(outer) or {}).get(inner) or []
    return [model.model_validate(x) for x in raw]


def _first(payload: Mapping[str, Any], outer: str, inner: str, model: type[M]) -> Optional[M]:
    items = _items(payload, outer, inner, model)
    return items[0] if items else None


def make_http_client(
    *,
    timeout: httpx.Timeout | None = None,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    t = timeout or httpx.Timeout(connect=5.0, read=10.0, write=10.0, pool=5.0)
    return httpx.Client(
        timeout=t,
        headers={"User-Agent": USER_AGENT},
        transport=transport,
    )


class EcsRpcClient:
    """
    CloudClient over the ECS RPC API.

    Transport failures, 5xx and throttling are retried here with exponential
    backoff. Resource-state conflicts are not: they are raised as
    TransientConflictError for the polling layer to deal with.
    """

    def __init__(
        self,
        *,
        access: AccessConfig,
        endpoint: str = DEFAULT_ENDPOINT,
        http: httpx.Client | None = None,
        max_attempts: int = 3,
        request_timeout_s: float | None = None,
        backoff_base: float = 0.5,
        backoff_cap: float = 4.0,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        self.access = access
        self.endpoint = endpoint
        if http is None:
            timeout = (
                httpx.Timeout(request_timeout_s, connect=5.0)
                if request_timeout_s is not None
                else None
            )
            http = make_http_client(timeout=timeout)
            self._owns_http = True
        else:
            self._owns_http = False
        self._http = http
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self._sleep = sleep

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "EcsRpcClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ---- transport --------------------------------------------------------

    def _signed_params(self, action: str, params: Mapping[str, str]) -> dict[str, str]:
        q: dict[str, str] = {
            "Format": "JSON",
            "Version": API_VERSION,
            "AccessKeyId": self.access.access_key,
            "SignatureMethod": "HMAC-SHA1",
            "SignatureVersion": "1.0",
            "SignatureNonce": uuid.uuid4().hex,
            "Timestamp": _utc_timestamp(),
            "Action": action,
        }
        if self.access.security_token:
            q["SecurityToken"] = self.access.security_token
        q.update(params)
        q["Signature"] = sign_params(q, self.access.secret_key)
        return q

    def _send(self, action: str, params: Mapping[str, str]) -> dict[str, Any]:
        resp = self._http.get(self.endpoint, params=self._signed_params(action, params))
        try:
            body = resp.json()
        except ValueError:
            body = {}

        if resp.status_code == 200:
            return body

        err = cloud_error(
            code=str(body.get("Code") or f"HTTP{resp.status_code}"),
            message=str(body.get("Message") or resp.text[:200]),
            action=action,
            request_id=body.get("RequestId"),
            status_code=resp.status_code,
        )
        if resp.status_code in _RETRYABLE_STATUSES or err.code.startswith("Throttling"):
            raise _RetryableRpc(err)
        raise err

    def call(self, action: str, **params: Any) -> dict[str, Any]:
        clean = {k: str(v) for k, v in params.items() if v is not None}

        def _before_sleep(retry_state) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            sleep = retry_state.next_action.sleep if retry_state.next_action else None
            log.warning(
                "ecs.retry",
                action=action,
                attempt=retry_state.attempt_number,
                sleep_s=sleep,
                error=repr(exc.error if isinstance(exc, _RetryableRpc) else exc),
            )

        kw: dict[str, Any] = {}
        if self._sleep is not None:
            kw["sleep"] = self._sleep

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_base, max=self.backoff_cap),
            retry=retry_if_exception_type(
                (httpx.TimeoutException, httpx.TransportError, _RetryableRpc)
            ),
            before_sleep=_before_sleep,
            reraise=False,
            **kw,
        )

        try:
            return retrying(self._send, action, clean)
        except RetryError as re:
            last = re.last_attempt.exception()
            if isinstance(last, _RetryableRpc):
                raise last.error from None
            raise RpcTransportError(
                action=action,
                attempts=re.last_attempt.attempt_number,
                last_error=last or Exception("unknown"),
            ) from last

    def _call_tolerant(self, action: str, **params: Any) -> Optional[dict[str, Any]]:
        """Like `call`, but a not-yet-visible resource yields None."""
        try:
            return self.call(action, **params)
        except CloudApiError as e:
            if classify_error_code(e.code) is ErrorKind.NOT_READY:
                return None
            raise

    # ---- CloudClient ------------------------------------------------------

    def describe_regions(self) -> list[Region]:
        payload = self.call("DescribeRegions")
        return _items(payload, "Regions", "Region", Region)

    def create_instance(self, req: CreateInstanceRequest) -> str:
        payload = self.call("CreateInstance", **create_instance_params(req))
        return str(payload["InstanceId"])

    def describe_instance(self, region: str, instance_id: str) -> Optional[Instance]:
        payload = self._call_tolerant(
            "DescribeInstances", RegionId=region, InstanceIds=_id_list(instance_id)
        )
        return _first(payload, "Instances", "Instance", Instance) if payload else None

    def delete_instance(self, region: str, instance_id: str, *, force: bool = True) -> None:
        self.call("DeleteInstance", InstanceId=instance_id, Force=_bool(force))

    def create_image(self, req: CreateImageRequest) -> str:
        payload = self.call(
            "CreateImage",
            ClientToken=req.client_token,
            RegionId=req.region_id,
            ImageName=req.image_name,
            InstanceId=req.instance_id,
            SnapshotId=req.snapshot_id,
            ImageVersion=req.image_version,
            Description=req.description,
        )
        return str(payload["ImageId"])

    def describe_image(self, region: str, image_id: str) -> Optional[Image]:
        payload = self._call_tolerant(
            "DescribeImages",
            RegionId=region,
            ImageId=image_id,
            Status=ALL_IMAGE_STATUSES,
        )
        if not payload:
            return None
        image = _first(payload, "Images", "Image", Image)
        if image is not None and image.region_id is None:
            image = image.model_copy(update={"region_id": region})
        return image

    def describe_images(self, region: str, *, name: str) -> list[Image]:
        payload = self.call(
            "DescribeImages",
            RegionId=region,
            ImageName=name,
            ImageOwnerAlias="self",
            Status=ALL_IMAGE_STATUSES,
        )
        return [
            i.model_copy(update={"region_id": i.region_id or region})
            for i in _items(payload, "Images", "Image", Image)
        ]

    def delete_image(self, region: str, image_id: str, *, force: bool = False) -> None:
        self.call("DeleteImage", RegionId=region, ImageId=image_id, Force=_bool(force))

    def copy_image(self, req: CopyImageRequest) -> str:
        payload = self.call(
            "CopyImage",
            RegionId=req.region_id,
            ImageId=req.image_id,
            DestinationRegionId=req.destination_region_id,
            DestinationImageName=req.destination_image_name,
            DestinationDescription=req.destination_description,
        )
        return str(payload["ImageId"])

    def cancel_copy_image(self, region: str, image_id: str) -> None:
        self.call("CancelCopyImage", RegionId=region, ImageId=image_id)

    def describe_snapshot(self, region: str, snapshot_id: str) -> Optional[Snapshot]:
        payload = self._call_tolerant(
            "DescribeSnapshots", RegionId=region, SnapshotIds=_id_list(snapshot_id)
        )
        return _first(payload, "Snapshots", "Snapshot", Snapshot) if payload else None

    def delete_snapshot(self, region: str, snapshot_id: str, *, force: bool = False) -> None:
        self.call("DeleteSnapshot", SnapshotId=snapshot_id, Force=_bool(force))

    def describe_disk(self, region: str, disk_id: str) -> Optional[Disk]:
        payload = self._call_tolerant(
            "DescribeDisks", RegionId=region, DiskIds=_id_list(disk_id)
        )
        return _first(payload, "Disks", "Disk", Disk) if payload else None

    def describe_instance_disks(
        self, region: str, instance_id: str, *, disk_type: Optional[str] = None
    ) -> list[Disk]:
        payload = self.call(
            "DescribeDisks", RegionId=region, InstanceId=instance_id, DiskType=disk_type
        )
        return _items(payload, "Disks", "Disk", Disk)

    def create_snapshot(self, req: CreateSnapshotRequest) -> str:
        payload = self.call(
            "CreateSnapshot",
            ClientToken=req.client_token,
            DiskId=req.disk_id,
            SnapshotName=req.snapshot_name,
            Description=req.description,
        )
        return str(payload["SnapshotId"])

    def describe_eip(self, region: str, allocation_id: str) -> Optional[EipAddress]:
        payload = self._call_tolerant(
            "DescribeEipAddresses", RegionId=region, AllocationId=allocation_id
        )
        return _first(payload, "EipAddresses", "EipAddress", EipAddress) if payload else None

    def describe_vpc(self, region: str, vpc_id: str) -> Optional[Vpc]:
        payload = self._call_tolerant("DescribeVpcs", RegionId=region, VpcId=vpc_id)
        return _first(payload, "Vpcs", "Vpc", Vpc) if payload else None

    def describe_vswitch(self, region: str, vswitch_id: str) -> Optional[VSwitch]:
        payload = self._call_tolerant(
            "DescribeVSwitches", RegionId=region, VSwitchId=vswitch_id
        )
        return _first(payload, "VSwitches", "VSwitch", VSwitch) if payload else None
