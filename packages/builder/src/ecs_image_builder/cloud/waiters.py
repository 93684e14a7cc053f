"""
Per-resource-kind waits expressed as PollSpecs.

Each factory pairs a fetch (a describe call, or a delete attempt for the
compensating waits) with a pure predicate over its result.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from ecs_image_builder.polling import NOT_READY, READY, PollOutcome, PollSpec, fatal

from .client import CloudClient
from .errors import CloudApiError, ErrorKind, PermanentCloudError
from .models import (
    CreateImageRequest,
    CreateSnapshotRequest,
    Disk,
    EipAddress,
    Image,
    ImageStatus,
    Instance,
    Snapshot,
    SnapshotStatus,
    Vpc,
    VSwitch,
)

R = TypeVar("R")

PROGRESS_DONE = "100%"


def _tolerant(describe: Callable[[], Optional[R]]) -> Callable[[], Optional[R]]:
    # A not-yet-visible or busy resource is "not ready", not a fetch failure.
    def _fetch() -> Optional[R]:
        try:
            return describe()
        except CloudApiError as e:
            if e.kind in (ErrorKind.NOT_READY, ErrorKind.TRANSIENT):
                return None
            raise

    return _fetch


def _status_is(target: str) -> Callable[[object], bool]:
    def _check(res: object) -> bool:
        return getattr(res, "status", None) == target

    return _check


def instance_status(
    client: CloudClient, region: str, instance_id: str, status: str, *, timeout_s: int
) -> PollSpec[Instance]:
    return PollSpec(
        fetch=_tolerant(lambda: client.describe_instance(region, instance_id)),
        is_satisfied=_status_is(status),
        timeout_s=timeout_s,
        what=f"instance {instance_id} to be {status}",
    )


def image_is_ready(image: Image) -> PollOutcome:
    if image.status in (ImageStatus.CREATE_FAILED, ImageStatus.UNAVAILABLE):
        return fatal(
            PermanentCloudError(
                code=f"Image.{image.status}",
                message=f"image {image.image_id} entered status {image.status}",
            )
        )
    if image.progress == PROGRESS_DONE or image.status == ImageStatus.AVAILABLE:
        return READY
    return NOT_READY


def image_ready(
    client: CloudClient, region: str, image_id: str, *, timeout_s: int
) -> PollSpec[Image]:
    return PollSpec(
        fetch=_tolerant(lambda: client.describe_image(region, image_id)),
        is_satisfied=image_is_ready,
        timeout_s=timeout_s,
        what=f"image {image_id} in {region} to be ready",
    )


def snapshot_is_ready(snapshot: Snapshot) -> PollOutcome:
    if snapshot.status == SnapshotStatus.FAILED:
        return fatal(
            PermanentCloudError(
                code="Snapshot.failed",
                message=f"snapshot {snapshot.snapshot_id} failed",
            )
        )
    if snapshot.progress == PROGRESS_DONE or snapshot.status == SnapshotStatus.ACCOMPLISHED:
        return READY
    return NOT_READY


def snapshot_ready(
    client: CloudClient, region: str, snapshot_id: str, *, timeout_s: int
) -> PollSpec[Snapshot]:
    return PollSpec(
        fetch=_tolerant(lambda: client.describe_snapshot(region, snapshot_id)),
        is_satisfied=snapshot_is_ready,
        timeout_s=timeout_s,
        what=f"snapshot {snapshot_id} to be ready",
    )


def disk_status(
    client: CloudClient, region: str, disk_id: str, status: str, *, timeout_s: int
) -> PollSpec[Disk]:
    return PollSpec(
        fetch=_tolerant(lambda: client.describe_disk(region, disk_id)),
        is_satisfied=_status_is(status),
        timeout_s=timeout_s,
        what=f"disk {disk_id} to be {status}",
    )


def eip_status(
    client: CloudClient, region: str, allocation_id: str, status: str, *, timeout_s: int
) -> PollSpec[EipAddress]:
    return PollSpec(
        fetch=_tolerant(lambda: client.describe_eip(region, allocation_id)),
        is_satisfied=_status_is(status),
        timeout_s=timeout_s,
        what=f"eip {allocation_id} to be {status}",
    )


def vpc_status(
    client: CloudClient, region: str, vpc_id: str, status: str, *, timeout_s: int
) -> PollSpec[Vpc]:
    return PollSpec(
        fetch=_tolerant(lambda: client.describe_vpc(region, vpc_id)),
        is_satisfied=_status_is(status),
        timeout_s=timeout_s,
        what=f"vpc {vpc_id} to be {status}",
    )


def vswitch_status(
    client: CloudClient, region: str, vswitch_id: str, status: str, *, timeout_s: int
) -> PollSpec[VSwitch]:
    return PollSpec(
        fetch=_tolerant(lambda: client.describe_vswitch(region, vswitch_id)),
        is_satisfied=_status_is(status),
        timeout_s=timeout_s,
        what=f"vswitch {vswitch_id} to be {status}",
    )


# ---- creates ----------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CreateAttempt:
    """Outcome of one create call: the new resource id, or the rejection."""

    resource_id: Optional[str] = None
    error: Optional[CloudApiError] = None


def create_accepted(attempt: CreateAttempt) -> PollOutcome:
    if attempt.error is None:
        return READY
    # e.g. IncorrectInstanceStatus right after the instance reports Stopped
    if attempt.error.kind is ErrorKind.TRANSIENT:
        return NOT_READY
    return fatal(attempt.error)


def _attempt_create(create: Callable[[], str]) -> Callable[[], CreateAttempt]:
    def _fetch() -> CreateAttempt:
        try:
            return CreateAttempt(resource_id=create())
        except CloudApiError as e:
            return CreateAttempt(error=e)

    return _fetch


def created(create: Callable[[], str], *, what: str, timeout_s: int) -> PollSpec[CreateAttempt]:
    """
    Retry a create call while it is rejected with a transient conflict.

    The request must carry its client token so a retry that races an
    accepted call does not create a second resource.
    """
    return PollSpec(
        fetch=_attempt_create(create),
        is_satisfied=create_accepted,
        timeout_s=timeout_s,
        what=what,
    )


def image_created(
    client: CloudClient, req: CreateImageRequest, *, timeout_s: int
) -> PollSpec[CreateAttempt]:
    return created(
        lambda: client.create_image(req),
        what=f"image {req.image_name} to be accepted",
        timeout_s=timeout_s,
    )


def snapshot_created(
    client: CloudClient, req: CreateSnapshotRequest, *, timeout_s: int
) -> PollSpec[CreateAttempt]:
    return created(
        lambda: client.create_snapshot(req),
        what=f"snapshot of disk {req.disk_id} to be accepted",
        timeout_s=timeout_s,
    )


# ---- compensating deletes ---------------------------------------------------


@dataclass(frozen=True, slots=True)
class DeleteAttempt:
    """Outcome of one delete call: accepted, or the error it was rejected with."""

    resource_id: str
    error: Optional[CloudApiError] = None

    @property
    def accepted(self) -> bool:
        return self.error is None


def delete_accepted(attempt: DeleteAttempt) -> PollOutcome:
    if attempt.error is None:
        return READY
    if attempt.error.kind is ErrorKind.TRANSIENT:
        return NOT_READY
    if attempt.error.kind is ErrorKind.NOT_READY:
        # already gone
        return READY
    return fatal(attempt.error)


def _attempt_delete(resource_id: str, delete: Callable[[], None]) -> Callable[[], DeleteAttempt]:
    def _fetch() -> DeleteAttempt:
        try:
            delete()
        except CloudApiError as e:
            return DeleteAttempt(resource_id=resource_id, error=e)
        return DeleteAttempt(resource_id=resource_id)

    return _fetch


def instance_deleted(
    client: CloudClient, region: str, instance_id: str, *, timeout_s: int
) -> PollSpec[DeleteAttempt]:
    return PollSpec(
        fetch=_attempt_delete(
            instance_id, lambda: client.delete_instance(region, instance_id, force=True)
        ),
        is_satisfied=delete_accepted,
        timeout_s=timeout_s,
        what=f"deletion of instance {instance_id}",
    )


def image_deleted(
    client: CloudClient, region: str, image_id: str, *, timeout_s: int, force: bool = False
) -> PollSpec[DeleteAttempt]:
    return PollSpec(
        fetch=_attempt_delete(
            image_id, lambda: client.delete_image(region, image_id, force=force)
        ),
        is_satisfied=delete_accepted,
        timeout_s=timeout_s,
        what=f"deletion of image {image_id} in {region}",
    )


def snapshot_deleted(
    client: CloudClient, region: str, snapshot_id: str, *, timeout_s: int, force: bool = False
) -> PollSpec[DeleteAttempt]:
    return PollSpec(
        fetch=_attempt_delete(
            snapshot_id, lambda: client.delete_snapshot(region, snapshot_id, force=force)
        ),
        is_satisfied=delete_accepted,
        timeout_s=timeout_s,
        what=f"deletion of snapshot {snapshot_id}",
    )
