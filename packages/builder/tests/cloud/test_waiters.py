from __future__ import annotations

import pytest
from ecs_image_builder.cloud import (
    CreateImageRequest,
    CreateInstanceRequest,
    ErrorKind,
    Image,
    InMemoryCloud,
    PermanentCloudError,
    ResourceNotReadyError,
    SimulationProfile,
    TransientConflictError,
    Vpc,
    classify_error_code,
    cloud_error,
)
from ecs_image_builder.cloud import waiters
from ecs_image_builder.cloud.waiters import (
    CreateAttempt,
    DeleteAttempt,
    create_accepted,
    delete_accepted,
    image_is_ready,
)
from ecs_image_builder.core import FetchError, WaitTimeoutError
from ecs_image_builder.polling import NOT_READY, READY, OutcomeKind


def _no_sleep(_: float) -> None:
    return None


@pytest.mark.parametrize(
    "code,kind",
    [
        ("InvalidInstanceId.NotFound", ErrorKind.NOT_READY),
        ("InvalidImageId.NotFound", ErrorKind.NOT_READY),
        ("IncorrectInstanceStatus.Initializing", ErrorKind.TRANSIENT),
        ("OperationConflict", ErrorKind.TRANSIENT),
        ("Throttling.Api", ErrorKind.TRANSIENT),
        ("InvalidParameter", ErrorKind.PERMANENT),
        ("Forbidden.RAM", ErrorKind.PERMANENT),
    ],
)
def test_classify_error_code(code: str, kind: ErrorKind) -> None:
    assert classify_error_code(code) is kind
    assert cloud_error(code=code, message="m").kind is kind


def test_cloud_error_picks_subclass() -> None:
    assert isinstance(cloud_error(code="IncorrectImageStatus", message="m"), TransientConflictError)
    assert isinstance(cloud_error(code="InvalidSnapshotId.NotFound", message="m"), ResourceNotReadyError)
    err = cloud_error(code="Bad", message="m", action="CopyImage", request_id="r-1")
    assert isinstance(err, PermanentCloudError)
    assert str(err) == "CopyImage failed with Bad: m (request_id=r-1)"


@pytest.mark.parametrize(
    "status,progress,expected",
    [
        ("Creating", "42%", OutcomeKind.NOT_READY),
        ("Creating", "100%", OutcomeKind.READY),
        ("Available", None, OutcomeKind.READY),
        ("CreateFailed", "0%", OutcomeKind.FATAL),
        ("UnAvailable", "10%", OutcomeKind.FATAL),
    ],
)
def test_image_is_ready(status: str, progress: str | None, expected: OutcomeKind) -> None:
    image = Image(image_id="m-1", status=status, progress=progress)
    assert image_is_ready(image).kind is expected


def test_delete_accepted_three_way() -> None:
    assert delete_accepted(DeleteAttempt("i-1")) is READY
    conflict = cloud_error(code="IncorrectInstanceStatus.Initializing", message="m")
    assert delete_accepted(DeleteAttempt("i-1", conflict)) is NOT_READY
    gone = cloud_error(code="InvalidInstanceId.NotFound", message="m")
    assert delete_accepted(DeleteAttempt("i-1", gone)) is READY

    denied = cloud_error(code="Forbidden", message="m")
    out = delete_accepted(DeleteAttempt("i-1", denied))
    assert out.kind is OutcomeKind.FATAL
    assert out.error is denied


def test_instance_deleted_retries_conflicts(cloud: InMemoryCloud) -> None:
    cloud.profile.delete_conflicts = 3
    instance_id = cloud.create_instance(
        CreateInstanceRequest(
            client_token="t", region_id="cn-hangzhou", instance_type="t", image_id="x"
        )
    )

    spec = waiters.instance_deleted(cloud, "cn-hangzhou", instance_id, timeout_s=60)
    attempt = spec.wait(interval_s=5, sleep=_no_sleep)

    assert attempt.accepted
    assert cloud.count("delete_instance") == 4
    assert instance_id not in cloud.instances


def test_image_deleted_fatal_error_is_raised() -> None:
    class _Denied(InMemoryCloud):
        def delete_image(self, region: str, image_id: str, *, force: bool = False) -> None:
            raise cloud_error(code="Forbidden.NotAllowed", message="denied")

    spec = waiters.image_deleted(_Denied(), "cn-hangzhou", "m-1", timeout_s=60)
    with pytest.raises(PermanentCloudError):
        spec.wait(interval_s=5, sleep=_no_sleep)


def test_describe_not_found_is_waited_out() -> None:
    class _Lagging(InMemoryCloud):
        lag: int = 2

        def describe_snapshot(self, region: str, snapshot_id: str):
            if self.lag > 0:
                self.lag -= 1
                raise cloud_error(code="InvalidSnapshotId.NotFound", message="not yet")
            return super().describe_snapshot(region, snapshot_id)

    lagging = _Lagging()
    image_id = lagging.add_existing_image("cn-hangzhou", "img")
    snapshot_id = lagging.images[("cn-hangzhou", image_id)].image.snapshot_ids[0]

    snap = waiters.snapshot_ready(lagging, "cn-hangzhou", snapshot_id, timeout_s=60).wait(
        interval_s=5, sleep=_no_sleep
    )
    assert snap.snapshot_id == snapshot_id


def test_describe_permanent_error_is_fetch_error() -> None:
    class _Broken(InMemoryCloud):
        def describe_instance(self, region: str, instance_id: str):
            raise cloud_error(code="InvalidParameter", message="bad id")

    spec = waiters.instance_status(_Broken(), "cn-hangzhou", "i-1", "Stopped", timeout_s=60)
    with pytest.raises(FetchError):
        spec.wait(interval_s=5, sleep=_no_sleep)


def test_status_waiters_time_out(cloud: InMemoryCloud) -> None:
    with pytest.raises(WaitTimeoutError) as ei:
        waiters.disk_status(cloud, "cn-hangzhou", "d-missing", "Available", timeout_s=10).wait(
            interval_s=5, sleep=_no_sleep
        )
    assert ei.value.attempts == 2
    assert "d-missing" in str(ei.value)


def test_create_accepted_three_way() -> None:
    assert create_accepted(CreateAttempt("m-1")) is READY
    settling = cloud_error(code="IncorrectInstanceStatus", message="m")
    assert create_accepted(CreateAttempt(error=settling)) is NOT_READY

    quota = cloud_error(code="QuotaExceed.Image", message="m")
    out = create_accepted(CreateAttempt(error=quota))
    assert out.kind is OutcomeKind.FATAL
    assert out.error is quota


def test_image_created_retries_transient_rejections() -> None:
    cloud = InMemoryCloud(profile=SimulationProfile(create_image_conflicts=2))
    req = CreateImageRequest(client_token="t", region_id="cn-hangzhou", image_name="img")

    attempt = waiters.image_created(cloud, req, timeout_s=60).wait(
        interval_s=5, sleep=_no_sleep
    )

    assert attempt.resource_id is not None
    assert cloud.count("create_image") == 3
    # one image despite the retries
    assert len(cloud.images) == 1


def test_describe_conflict_is_waited_out() -> None:
    class _BusyOnce(InMemoryCloud):
        busy: int = 1

        def describe_vpc(self, region: str, vpc_id: str):
            if self.busy:
                self.busy -= 1
                raise cloud_error(code="OperationConflict", message="busy")
            return Vpc(vpc_id=vpc_id, status="Available")

    spec = waiters.vpc_status(_BusyOnce(), "cn-hangzhou", "vpc-1", "Available", timeout_s=60)
    vpc = spec.wait(interval_s=5, sleep=_no_sleep)
    assert vpc.vpc_id == "vpc-1"
