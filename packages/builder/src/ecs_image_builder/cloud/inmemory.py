"""In-memory ECS control plane for simulated builds and tests.

Mimics the asynchronous behaviour the pipeline has to cope with: instances
start Pending and only reach Stopped after a few describes, images gain
progress per describe, and deletes of initializing instances are rejected
with a transient conflict for a configurable number of attempts.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from typing import Any, Optional

from .errors import cloud_error
from .models import (
    CopyImageRequest,
    CreateImageRequest,
    CreateInstanceRequest,
    CreateSnapshotRequest,
    Disk,
    DiskDeviceMapping,
    DiskType,
    EipAddress,
    Image,
    ImageStatus,
    Instance,
    InstanceStatus,
    Region,
    Snapshot,
    SnapshotStatus,
    Vpc,
    VSwitch,
)

DEFAULT_REGIONS: tuple[str, ...] = (
    "cn-hangzhou",
    "cn-shanghai",
    "cn-beijing",
    "cn-shenzhen",
    "cn-hongkong",
    "ap-southeast-1",
    "us-west-1",
    "eu-central-1",
)


@dataclass(slots=True)
class SimulationProfile:
    # describes an instance spends in Pending before it is Stopped
    instance_ready_after: int = 2
    # progress gained by an image per describe
    image_progress_step: int = 50
    # transient conflicts returned by delete_instance before it is accepted
    delete_conflicts: int = 0
    # transient conflicts returned by create_image before it is accepted
    create_image_conflicts: int = 0
    regions: tuple[str, ...] = DEFAULT_REGIONS


@dataclass(slots=True)
class _SimInstance:
    instance: Instance
    describes: int = 0
    delete_rejections_left: int = 0


@dataclass(slots=True)
class _SimImage:
    image: Image
    progress: int = 0
    copy_of: Optional[str] = None


@dataclass(slots=True)
class InMemoryCloud:
    profile: SimulationProfile = field(default_factory=SimulationProfile)

    calls: list[tuple[str, tuple[Any, ...]]] = field(default_factory=list)
    instances: dict[str, _SimInstance] = field(default_factory=dict)
    images: dict[tuple[str, str], _SimImage] = field(default_factory=dict)
    snapshots: dict[str, Snapshot] = field(default_factory=dict)
    disks: dict[str, Disk] = field(default_factory=dict)
    eips: dict[str, EipAddress] = field(default_factory=dict)
    vpcs: dict[str, Vpc] = field(default_factory=dict)
    vswitches: dict[str, VSwitch] = field(default_factory=dict)

    _ids: itertools.count = field(default_factory=lambda: itertools.count(1))
    _create_image_rejections: int = 0

    def _new_id(self, prefix: str) -> str:
        return f"{prefix}-sim{next(self._ids):06d}"

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, args))

    def count(self, name: str) -> int:
        return sum(1 for n, _ in self.calls if n == name)

    # ---- regions / instances ---------------------------------------------

    def describe_regions(self) -> list[Region]:
        self._record("describe_regions")
        return [Region(region_id=r) for r in self.profile.regions]

    def create_instance(self, req: CreateInstanceRequest) -> str:
        self._record("create_instance", req.region_id)
        instance_id = self._new_id("i")
        self.instances[instance_id] = _SimInstance(
            instance=Instance(
                instance_id=instance_id,
                status=InstanceStatus.PENDING.value,
                region_id=req.region_id,
                zone_id=req.zone_id,
                instance_name=req.instance_name,
                instance_type=req.instance_type,
                image_id=req.image_id,
            ),
            delete_rejections_left=self.profile.delete_conflicts,
        )
        disk_types = [DiskType.SYSTEM] + [DiskType.DATA] * len(req.data_disks)
        for disk_type in disk_types:
            disk_id = self._new_id("d")
            self.disks[disk_id] = Disk(
                disk_id=disk_id,
                status="In_use",
                instance_id=instance_id,
                type=disk_type.value,
            )
        return instance_id

    def describe_instance(self, region: str, instance_id: str) -> Optional[Instance]:
        self._record("describe_instance", region, instance_id)
        sim = self.instances.get(instance_id)
        if sim is None:
            return None
        sim.describes += 1
        if (
            sim.instance.status == InstanceStatus.PENDING
            and sim.describes > self.profile.instance_ready_after
        ):
            sim.instance = sim.instance.model_copy(
                update={"status": InstanceStatus.STOPPED.value}
            )
        return sim.instance

    def delete_instance(self, region: str, instance_id: str, *, force: bool = True) -> None:
        self._record("delete_instance", region, instance_id)
        sim = self.instances.get(instance_id)
        if sim is None:
            raise cloud_error(
                code="InvalidInstanceId.NotFound",
                message=f"instance {instance_id} not found",
                action="DeleteInstance",
            )
        if sim.delete_rejections_left > 0:
            sim.delete_rejections_left -= 1
            raise cloud_error(
                code="IncorrectInstanceStatus.Initializing",
                message="The current status of the instance does not support this operation.",
                action="DeleteInstance",
            )
        del self.instances[instance_id]
        for disk_id in [d for d, disk in self.disks.items() if disk.instance_id == instance_id]:
            del self.disks[disk_id]

    # ---- images -----------------------------------------------------------

    def _add_image(
        self,
        *,
        region: str,
        name: str,
        version: Optional[str] = None,
        snapshot_ids: list[str],
        copy_of: Optional[str] = None,
        image_id: Optional[str] = None,
    ) -> str:
        image_id = image_id or self._new_id("m")
        mappings = [DiskDeviceMapping(snapshot_id=s) for s in snapshot_ids]
        self.images[(region, image_id)] = _SimImage(
            image=Image(
                image_id=image_id,
                image_name=name,
                image_version=version,
                region_id=region,
                status=ImageStatus.CREATING.value,
                progress="0%",
                disk_device_mappings=mappings,
            ),
            copy_of=copy_of,
        )
        return image_id

    def create_image(self, req: CreateImageRequest) -> str:
        self._record("create_image", req.region_id, req.image_name)
        if self._create_image_rejections < self.profile.create_image_conflicts:
            self._create_image_rejections += 1
            raise cloud_error(
                code="IncorrectInstanceStatus",
                message="The current status of the resource does not support this operation.",
                action="CreateImage",
            )
        if req.instance_id is not None and req.instance_id not in self.instances:
            raise cloud_error(
                code="InvalidInstanceId.NotFound",
                message=f"instance {req.instance_id} not found",
                action="CreateImage",
            )
        snapshot_ids: list[str] = []
        if req.snapshot_id:
            snapshot_ids.append(req.snapshot_id)
        else:
            for disk_id, disk in self.disks.items():
                if disk.instance_id != req.instance_id:
                    continue
                sid = self._new_id("s")
                self.snapshots[sid] = Snapshot(
                    snapshot_id=sid,
                    status=SnapshotStatus.ACCOMPLISHED.value,
                    progress="100%",
                    source_disk_id=disk_id,
                )
                snapshot_ids.append(sid)
        return self._add_image(
            region=req.region_id,
            name=req.image_name,
            version=req.image_version,
            snapshot_ids=snapshot_ids,
        )

    def add_existing_image(
        self, region: str, name: str, *, snapshots: int = 1, image_id: Optional[str] = None
    ) -> str:
        """Seed an already available image, e.g. a name collision or a source image."""
        snapshot_ids = []
        for _ in range(snapshots):
            sid = self._new_id("s")
            self.snapshots[sid] = Snapshot(
                snapshot_id=sid, status=SnapshotStatus.ACCOMPLISHED.value, progress="100%"
            )
            snapshot_ids.append(sid)
        image_id = self._add_image(
            region=region, name=name, snapshot_ids=snapshot_ids, image_id=image_id
        )
        sim = self.images[(region, image_id)]
        sim.progress = 100
        sim.image = sim.image.model_copy(
            update={"status": ImageStatus.AVAILABLE.value, "progress": "100%"}
        )
        return image_id

    def _advance(self, sim: _SimImage) -> Image:
        if sim.image.status in (ImageStatus.CREATING, ImageStatus.WAITING):
            sim.progress = min(100, sim.progress + self.profile.image_progress_step)
            status = ImageStatus.AVAILABLE if sim.progress >= 100 else ImageStatus.CREATING
            sim.image = sim.image.model_copy(
                update={"progress": f"{sim.progress}%", "status": status.value}
            )
        return sim.image

    def describe_image(self, region: str, image_id: str) -> Optional[Image]:
        self._record("describe_image", region, image_id)
        sim = self.images.get((region, image_id))
        return self._advance(sim) if sim is not None else None

    def describe_images(self, region: str, *, name: str) -> list[Image]:
        self._record("describe_images", region, name)
        return [
            sim.image
            for (r, _), sim in self.images.items()
            if r == region and sim.image.image_name == name
        ]

    def delete_image(self, region: str, image_id: str, *, force: bool = False) -> None:
        self._record("delete_image", region, image_id)
        if self.images.pop((region, image_id), None) is None:
            raise cloud_error(
                code="InvalidImageId.NotFound",
                message=f"image {image_id} not found in {region}",
                action="DeleteImage",
            )

    def copy_image(self, req: CopyImageRequest) -> str:
        self._record("copy_image", req.region_id, req.image_id, req.destination_region_id)
        src = self.images.get((req.region_id, req.image_id))
        if src is None:
            raise cloud_error(
                code="InvalidImageId.NotFound",
                message=f"image {req.image_id} not found in {req.region_id}",
                action="CopyImage",
            )
        snapshot_ids = []
        for _ in src.image.snapshot_ids:
            sid = self._new_id("s")
            self.snapshots[sid] = Snapshot(
                snapshot_id=sid, status=SnapshotStatus.PROGRESSING.value, progress="0%"
            )
            snapshot_ids.append(sid)
        return self._add_image(
            region=req.destination_region_id,
            name=req.destination_image_name or src.image.image_name or req.image_id,
            version=src.image.image_version,
            snapshot_ids=snapshot_ids,
            copy_of=req.image_id,
        )

    def cancel_copy_image(self, region: str, image_id: str) -> None:
        self._record("cancel_copy_image", region, image_id)
        sim = self.images.get((region, image_id))
        if sim is None or sim.copy_of is None:
            raise cloud_error(
                code="InvalidImageId.NotFound",
                message=f"no copy {image_id} in {region}",
                action="CancelCopyImage",
            )
        if sim.image.status != ImageStatus.AVAILABLE:
            del self.images[(region, image_id)]

    # ---- snapshots, disks, network ----------------------------------------

    def describe_snapshot(self, region: str, snapshot_id: str) -> Optional[Snapshot]:
        self._record("describe_snapshot", region, snapshot_id)
        snap = self.snapshots.get(snapshot_id)
        if snap is not None and snap.status == SnapshotStatus.PROGRESSING:
            snap = snap.model_copy(
                update={"status": SnapshotStatus.ACCOMPLISHED.value, "progress": "100%"}
            )
            self.snapshots[snapshot_id] = snap
        return snap

    def delete_snapshot(self, region: str, snapshot_id: str, *, force: bool = False) -> None:
        self._record("delete_snapshot", region, snapshot_id)
        if self.snapshots.pop(snapshot_id, None) is None:
            raise cloud_error(
                code="InvalidSnapshotId.NotFound",
                message=f"snapshot {snapshot_id} not found",
                action="DeleteSnapshot",
            )

    def create_snapshot(self, req: CreateSnapshotRequest) -> str:
        self._record("create_snapshot", req.region_id, req.disk_id)
        if req.disk_id not in self.disks:
            raise cloud_error(
                code="InvalidDiskId.NotFound",
                message=f"disk {req.disk_id} not found",
                action="CreateSnapshot",
            )
        snapshot_id = self._new_id("s")
        self.snapshots[snapshot_id] = Snapshot(
            snapshot_id=snapshot_id,
            status=SnapshotStatus.PROGRESSING.value,
            progress="0%",
            source_disk_id=req.disk_id,
        )
        return snapshot_id

    def describe_disk(self, region: str, disk_id: str) -> Optional[Disk]:
        self._record("describe_disk", region, disk_id)
        return self.disks.get(disk_id)

    def describe_instance_disks(
        self, region: str, instance_id: str, *, disk_type: Optional[str] = None
    ) -> list[Disk]:
        self._record("describe_instance_disks", region, instance_id)
        return [
            d
            for d in self.disks.values()
            if d.instance_id == instance_id and (disk_type is None or d.type == disk_type)
        ]

    def describe_eip(self, region: str, allocation_id: str) -> Optional[EipAddress]:
        self._record("describe_eip", region, allocation_id)
        return self.eips.get(allocation_id)

    def describe_vpc(self, region: str, vpc_id: str) -> Optional[Vpc]:
        self._record("describe_vpc", region, vpc_id)
        return self.vpcs.get(vpc_id)

    def describe_vswitch(self, region: str, vswitch_id: str) -> Optional[VSwitch]:
        self._record("describe_vswitch", region, vswitch_id)
        return self.vswitches.get(vswitch_id)
