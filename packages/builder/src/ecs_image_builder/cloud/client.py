from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from .models import (
    CopyImageRequest,
    CreateImageRequest,
    CreateInstanceRequest,
    CreateSnapshotRequest,
    Disk,
    EipAddress,
    Image,
    Instance,
    Region,
    Snapshot,
    Vpc,
    VSwitch,
)


@runtime_checkable
class CloudClient(Protocol):
    """
    Resource-lifecycle surface of the ECS control plane used by the steps.

    Describe calls return None when the resource is not (yet) listed. Every
    call raises a CloudApiError subclass whose `kind` tells whether the
    failure is not-ready, a transient conflict, or permanent.
    """

    def describe_regions(self) -> list[Region]: ...

    def create_instance(self, req: CreateInstanceRequest) -> str: ...

    def describe_instance(self, region: str, instance_id: str) -> Optional[Instance]: ...

    def delete_instance(self, region: str, instance_id: str, *, force: bool = True) -> None: ...

    def create_image(self, req: CreateImageRequest) -> str: ...

    def describe_image(self, region: str, image_id: str) -> Optional[Image]: ...

    def describe_images(self, region: str, *, name: str) -> list[Image]: ...

    def delete_image(self, region: str, image_id: str, *, force: bool = False) -> None: ...

    def copy_image(self, req: CopyImageRequest) -> str: ...

    def cancel_copy_image(self, region: str, image_id: str) -> None: ...

    def describe_snapshot(self, region: str, snapshot_id: str) -> Optional[Snapshot]: ...

    def delete_snapshot(self, region: str, snapshot_id: str, *, force: bool = False) -> None: ...

    def create_snapshot(self, req: CreateSnapshotRequest) -> str: ...

    def describe_disk(self, region: str, disk_id: str) -> Optional[Disk]: ...

    def describe_instance_disks(
        self, region: str, instance_id: str, *, disk_type: Optional[str] = None
    ) -> list[Disk]: ...

    def describe_eip(self, region: str, allocation_id: str) -> Optional[EipAddress]: ...

    def describe_vpc(self, region: str, vpc_id: str) -> Optional[Vpc]: ...

    def describe_vswitch(self, region: str, vswitch_id: str) -> Optional[VSwitch]: ...
