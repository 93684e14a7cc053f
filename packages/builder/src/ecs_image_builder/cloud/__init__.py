from .client import CloudClient
from .errors import (
    CloudApiError,
    ErrorKind,
    PermanentCloudError,
    ResourceNotReadyError,
    TransientConflictError,
    classify_error_code,
    cloud_error,
)
from .inmemory import InMemoryCloud, SimulationProfile
from .models import (
    CopyImageRequest,
    CreateImageRequest,
    CreateInstanceRequest,
    CreateSnapshotRequest,
    Disk,
    DiskMapping,
    DiskType,
    EipAddress,
    Image,
    ImageStatus,
    Instance,
    InstanceStatus,
    IOOptimized,
    Region,
    Snapshot,
    Vpc,
    VSwitch,
)
from .rpc import EcsRpcClient

__all__ = [
    "CloudClient",
    "CloudApiError",
    "ErrorKind",
    "PermanentCloudError",
    "ResourceNotReadyError",
    "TransientConflictError",
    "classify_error_code",
    "cloud_error",
    "InMemoryCloud",
    "SimulationProfile",
    "CopyImageRequest",
    "CreateImageRequest",
    "CreateInstanceRequest",
    "CreateSnapshotRequest",
    "Disk",
    "DiskMapping",
    "DiskType",
    "EipAddress",
    "Image",
    "ImageStatus",
    "Instance",
    "InstanceStatus",
    "IOOptimized",
    "Region",
    "Snapshot",
    "Vpc",
    "VSwitch",
    "EcsRpcClient",
]
