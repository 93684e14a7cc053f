from __future__ import annotations

from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_pascal


class InstanceStatus(StrEnum):
    PENDING = "Pending"
    STARTING = "Starting"
    RUNNING = "Running"
    STOPPING = "Stopping"
    STOPPED = "Stopped"


class ImageStatus(StrEnum):
    AVAILABLE = "Available"
    UNAVAILABLE = "UnAvailable"
    CREATING = "Creating"
    WAITING = "Waiting"
    CREATE_FAILED = "CreateFailed"


ALL_IMAGE_STATUSES = ",".join(s.value for s in ImageStatus)


class SnapshotStatus(StrEnum):
    PROGRESSING = "progressing"
    ACCOMPLISHED = "accomplished"
    FAILED = "failed"


class IOOptimized(StrEnum):
    NONE = "none"
    OPTIMIZED = "optimized"


class DiskType(StrEnum):
    SYSTEM = "system"
    DATA = "data"


def _unwrap(value: Any, key: str) -> Any:
    # ECS wraps every list in an object: {"DiskDeviceMapping": [...]}
    if isinstance(value, dict):
        return value.get(key) or []
    return value


class _Descriptor(BaseModel):
    """
    Provider-side resource as returned by a Describe* call.

    Only the id and status matter to the pipeline; the handful of other
    fields are kept for logs and artifacts, everything else is dropped.
    """

    model_config = ConfigDict(
        alias_generator=to_pascal,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class Region(_Descriptor):
    region_id: str
    local_name: Optional[str] = None


class Instance(_Descriptor):
    instance_id: str
    status: str
    region_id: Optional[str] = None
    zone_id: Optional[str] = None
    instance_name: Optional[str] = None
    instance_type: Optional[str] = None
    image_id: Optional[str] = None


class DiskDeviceMapping(_Descriptor):
    snapshot_id: Optional[str] = None
    device: Optional[str] = None
    size: Optional[str] = None
    type: Optional[str] = None


class Image(_Descriptor):
    image_id: str
    status: str
    image_name: Optional[str] = None
    image_version: Optional[str] = None
    region_id: Optional[str] = None
    progress: Optional[str] = None
    disk_device_mappings: list[DiskDeviceMapping] = Field(default_factory=list)

    @field_validator("disk_device_mappings", mode="before")
    @classmethod
    def _unwrap_mappings(cls, v: Any) -> Any:
        return _unwrap(v, "DiskDeviceMapping")

    @property
    def snapshot_ids(self) -> list[str]:
        return [m.snapshot_id for m in self.disk_device_mappings if m.snapshot_id]


class Snapshot(_Descriptor):
    snapshot_id: str
    status: str
    progress: Optional[str] = None
    source_disk_id: Optional[str] = None


class Disk(_Descriptor):
    disk_id: str
    status: str
    instance_id: Optional[str] = None
    type: Optional[str] = None


class EipAddress(_Descriptor):
    allocation_id: str
    status: str
    ip_address: Optional[str] = None


class Vpc(_Descriptor):
    vpc_id: str
    status: str


class VSwitch(_Descriptor):
    vswitch_id: str = Field(alias="VSwitchId")
    status: str
    vpc_id: Optional[str] = None


# ---- requests -------------------------------------------------------------


class DiskMapping(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    disk_name: Optional[str] = None
    disk_category: Optional[str] = None
    disk_size: Optional[int] = Field(default=None, ge=0)
    snapshot_id: Optional[str] = None
    description: Optional[str] = None
    delete_with_instance: bool = True
    device: Optional[str] = None


class CreateInstanceRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    client_token: str
    region_id: str
    instance_type: str
    image_id: str
    security_group_id: Optional[str] = None
    instance_name: Optional[str] = None
    zone_id: Optional[str] = None
    vswitch_id: Optional[str] = None
    user_data: Optional[str] = None
    internet_charge_type: Optional[str] = None
    internet_max_bandwidth_out: Optional[int] = None
    io_optimized: IOOptimized = IOOptimized.NONE
    password: Optional[str] = None
    system_disk: DiskMapping = Field(default_factory=DiskMapping)
    data_disks: list[DiskMapping] = Field(default_factory=list)


class CreateImageRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    client_token: str
    region_id: str
    image_name: str
    instance_id: Optional[str] = None
    snapshot_id: Optional[str] = None
    image_version: Optional[str] = None
    description: Optional[str] = None


class CopyImageRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    region_id: str
    image_id: str
    destination_region_id: str
    destination_image_name: Optional[str] = None
    destination_description: Optional[str] = None


class CreateSnapshotRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    client_token: str
    region_id: str
    disk_id: str
    snapshot_name: Optional[str] = None
    description: Optional[str] = None
